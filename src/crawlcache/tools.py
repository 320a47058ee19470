"""Helpers for typical crawl payloads: downloads, ZIP archives and CSV files.

* :func:`download` -- fetch a URL through a :class:`~crawlcache.client.Client`
  into a temporary file.
* :func:`scan_zip` -- call back once per archive member.
* :func:`scan_csv` -- call back once per CSV row, decoding legacy
  character sets (``shift_jis``, ``cp1252``, ...) on the way.

Scan callbacks stop a scan early by raising :class:`SkipAll`; the scan then
returns normally without calling ``done()``.

Example::

    path = download(client, "https://example.com/data.zip")

    def on_member(info, archive):
        if info is not None and info.filename.endswith(".csv"):
            with archive.open(info) as fh:
                scan_csv(fh, on_row, encoding="shift_jis")

    scan_zip(path, on_member)
"""

from __future__ import annotations

import csv
import io
import os
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import IO, TYPE_CHECKING, Callable, Optional, Protocol, Union

from crawlcache.exceptions import HTTPStatusError
from crawlcache.output import debug

if TYPE_CHECKING:
    from crawlcache.client import Client


class SkipAll(Exception):
    """Raised by a scan callback to stop the scan without calling ``done()``."""


# ------------------------------------------------------------------ #
# Download
# ------------------------------------------------------------------ #


def download(client: Client, url: str) -> Path:
    """GET *url* through *client* and save the body to a temporary file.

    The file is named ``crawl-*`` in the system temp directory; the caller
    removes it.

    Raises:
        HTTPStatusError: If the response status is not ``200``.
    """
    with client.get(url) as resp:
        if resp.status_code != 200:
            raise HTTPStatusError(resp.status, resp.status_code, url)

        fd, name = tempfile.mkstemp(prefix="crawl-")
        with os.fdopen(fd, "wb") as tmp:
            shutil.copyfileobj(resp.body, tmp)

    debug(f"Downloaded {url} to {name}")
    return Path(name)


# ------------------------------------------------------------------ #
# ZIP archives
# ------------------------------------------------------------------ #


class ZipMemberReader(Protocol):
    """Receives the members found by :func:`scan_zip`."""

    def read_file(self, info: zipfile.ZipInfo, archive: zipfile.ZipFile) -> None: ...

    def done(self) -> None: ...


class ZipMemberReaderFunc:
    """Adapts a plain function to :class:`ZipMemberReader`.

    ``read_file`` calls ``fn(info, archive)``; ``done`` calls
    ``fn(None, archive)`` with the archive still open.
    """

    def __init__(self, fn: Callable[[Optional[zipfile.ZipInfo], zipfile.ZipFile], None]) -> None:
        self._fn = fn
        self._archive: Optional[zipfile.ZipFile] = None

    def read_file(self, info: zipfile.ZipInfo, archive: zipfile.ZipFile) -> None:
        self._archive = archive
        self._fn(info, archive)

    def done(self) -> None:
        self._fn(None, self._archive)  # type: ignore[arg-type]


def scan_zip(
    path: Union[str, Path],
    reader: Union[ZipMemberReader, Callable[[Optional[zipfile.ZipInfo], zipfile.ZipFile], None]],
) -> None:
    """Call ``reader.read_file`` for each member of the archive at *path*.

    ``reader.done()`` is called after the last member unless a callback
    raised :class:`SkipAll`.
    """
    if not hasattr(reader, "read_file"):
        reader = ZipMemberReaderFunc(reader)  # type: ignore[arg-type]

    with zipfile.ZipFile(path) as archive:
        if isinstance(reader, ZipMemberReaderFunc):
            reader._archive = archive
        try:
            for info in archive.infolist():
                reader.read_file(info, archive)
        except SkipAll:
            return
        reader.done()


# ------------------------------------------------------------------ #
# CSV
# ------------------------------------------------------------------ #


class CsvRowReader(Protocol):
    """Receives the rows found by :func:`scan_csv`."""

    def read_row(self, index: int, row: list[str]) -> None: ...

    def done(self) -> None: ...


class CsvRowReaderFunc:
    """Adapts a plain function to :class:`CsvRowReader`.

    ``read_row`` calls ``fn(index, row)``; ``done`` calls ``fn(-1, None)``.
    """

    def __init__(self, fn: Callable[[int, Optional[list[str]]], None]) -> None:
        self._fn = fn

    def read_row(self, index: int, row: list[str]) -> None:
        self._fn(index, row)

    def done(self) -> None:
        self._fn(-1, None)


def scan_csv(
    stream: IO,
    reader: Union[CsvRowReader, Callable[[int, Optional[list[str]]], None]],
    encoding: Optional[str] = None,
) -> None:
    """Split CSV from *stream* into rows and pass each to ``reader.read_row``.

    Binary streams are decoded with *encoding* (UTF-8 when ``None``); text
    streams are read as-is. ``reader.done()`` is called after the last row
    unless a callback raised :class:`SkipAll`. The stream is left open.

    Raises:
        csv.Error: On malformed CSV.
        UnicodeDecodeError: If the bytes are not valid in *encoding*.
    """
    if not hasattr(reader, "read_row"):
        reader = CsvRowReaderFunc(reader)  # type: ignore[arg-type]

    wrapper: Optional[io.TextIOWrapper] = None
    if isinstance(stream, io.TextIOBase):
        text = stream
    else:
        wrapper = io.TextIOWrapper(stream, encoding=encoding or "utf-8", newline="")
        text = wrapper

    try:
        try:
            for index, row in enumerate(csv.reader(text)):
                reader.read_row(index, row)
        except SkipAll:
            return
        reader.done()
    finally:
        if wrapper is not None:
            wrapper.detach()
