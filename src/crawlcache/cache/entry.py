"""Cache entries: one request fingerprint bound to one stored response.

A cache entry is a single file inside a transaction directory, named by the
request fingerprint. The file has three consecutive segments:

1. the :class:`~crawlcache.models.RequestDescriptor` as one line of compact
   JSON terminated by ``\\n``;
2. the :class:`~crawlcache.models.ResponseDescriptor`, framed the same way;
3. the raw response body, verbatim, up to end of file.

Compact JSON escapes every newline inside strings, so each structured
segment is exactly one line and the body begins right after the second
``\\n``. No length fields are needed and no parser internals are consulted
to locate the body.

The fingerprint is the MD5 hex digest of ``method + url + payload`` where
``payload`` is at most the first :data:`PAYLOAD_PREFIX_SIZE` bytes of the
request body. Requests that differ only past that prefix share an entry.
"""

from __future__ import annotations

import hashlib
import io
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from crawlcache.exceptions import CacheEntryError
from crawlcache.models import RequestDescriptor, ResponseDescriptor

PAYLOAD_PREFIX_SIZE = 256

BodyOpener = Callable[[], BinaryIO]
"""Returns a fresh, independent binary stream over a request body."""

_D = TypeVar("_D", bound=BaseModel)


# ------------------------------------------------------------------ #
# Request / response views
# ------------------------------------------------------------------ #


@dataclass
class RequestView:
    """The parts of an outgoing request the cache engine reads.

    ``get_body`` must return a new stream on every call so reading the
    payload prefix never consumes the body that is actually transmitted.
    ``None`` means the request has no re-openable body.
    """

    method: str
    url: str
    get_body: Optional[BodyOpener] = None

    @classmethod
    def from_httpx(cls, request: httpx.Request) -> RequestView:
        """Adapt an :class:`httpx.Request`.

        Buffered content (bytes, form data, JSON) becomes the body accessor.
        Empty bodies and unread streaming bodies have no accessor.
        """
        try:
            content = request.content
        except httpx.RequestNotRead:
            content = b""

        get_body: Optional[BodyOpener] = None
        if content:
            get_body = lambda: io.BytesIO(content)  # noqa: E731
        return cls(method=request.method, url=str(request.url), get_body=get_body)


@dataclass
class ResponseView:
    """A response to be stored into a cache entry.

    ``body`` is either a readable binary stream or an iterable of byte
    chunks; it is copied verbatim after the descriptors.
    """

    status: str
    status_code: int
    proto: str = "HTTP/1.1"
    proto_major: int = 1
    proto_minor: int = 1
    headers: dict[str, list[str]] = field(default_factory=dict)
    content_length: int = -1
    transfer_encoding: list[str] = field(default_factory=list)
    uncompressed: bool = False
    body: Union[BinaryIO, Iterable[bytes], None] = None

    def descriptor(self) -> ResponseDescriptor:
        """Return the structured part of this response."""
        return ResponseDescriptor(
            status=self.status,
            status_code=self.status_code,
            proto=self.proto,
            proto_major=self.proto_major,
            proto_minor=self.proto_minor,
            headers=self.headers,
            content_length=self.content_length,
            transfer_encoding=self.transfer_encoding,
            uncompressed=self.uncompressed,
        )

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value of header *name* (case-insensitive)."""
        lowered = name.lower()
        for key, values in self.headers.items():
            if key.lower() == lowered and values:
                return values[0]
        return default


@dataclass
class CachedResponse(ResponseView):
    """A response loaded from a cache entry.

    ``body`` is the entry file itself, open and positioned at the first body
    byte. The caller owns it: close the response (or use it as a context
    manager) when done. ``request_method`` and ``request_url`` come from the
    stored request descriptor.
    """

    body: BinaryIO = None  # type: ignore[assignment]
    request_method: str = ""
    request_url: str = ""

    def read(self) -> bytes:
        """Read the remaining body bytes."""
        return self.body.read()

    def close(self) -> None:
        self.body.close()

    def __enter__(self) -> CachedResponse:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


# ------------------------------------------------------------------ #
# Fingerprinting
# ------------------------------------------------------------------ #


def read_payload(get_body: Optional[BodyOpener]) -> Optional[bytes]:
    """Read at most :data:`PAYLOAD_PREFIX_SIZE` bytes from a fresh body stream.

    Returns ``None`` when there is no body accessor. Errors raised by the
    accessor or while reading propagate.
    """
    if get_body is None:
        return None

    stream = get_body()
    try:
        chunks: list[bytes] = []
        remaining = PAYLOAD_PREFIX_SIZE
        while remaining > 0:
            chunk = stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
    finally:
        stream.close()
    return b"".join(chunks)


def fingerprint(method: str, url: str, payload: Optional[bytes]) -> str:
    """Return the cache key for a request as a 32-character hex string."""
    buf = bytearray(method.encode("utf-8"))
    buf += url.encode("utf-8")
    if payload:
        buf += payload
    return hashlib.md5(bytes(buf)).hexdigest()


def describe_request(request: RequestView) -> RequestDescriptor:
    """Build the stored request descriptor, reading the payload prefix."""
    return RequestDescriptor(
        method=request.method,
        url=request.url,
        payload=read_payload(request.get_body),
    )


# ------------------------------------------------------------------ #
# Entry
# ------------------------------------------------------------------ #


class CacheEntry:
    """Handle on the cache file for one request inside one transaction.

    Entries are cheap to construct; nothing touches the filesystem until
    :meth:`exists`, :meth:`store` or :meth:`load` is called.
    """

    def __init__(self, request: RequestDescriptor, path: Path) -> None:
        self._request = request
        self._path = path

    @classmethod
    def from_file(cls, path: Path) -> CacheEntry:
        """Open a handle on an existing entry file, reading back its request descriptor.

        Raises:
            OSError: If the file cannot be read.
            CacheEntryError: If the request descriptor is missing or malformed.
        """
        with open(path, "rb") as fh:
            request = _read_segment(fh, RequestDescriptor, path)
        return cls(request, path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def fingerprint(self) -> str:
        return self._path.name

    @property
    def request(self) -> RequestDescriptor:
        return self._request

    def exists(self) -> bool:
        """Return True if the entry file is present."""
        return self._path.exists()

    def store(self, response: ResponseView) -> None:
        """Write the request descriptor, response descriptor and body.

        The file is created (or truncated) in place. An error at any stage
        propagates and may leave a partial file behind.
        """
        with open(self._path, "wb") as fh:
            fh.write(_frame(self._request))
            fh.write(_frame(response.descriptor()))
            _copy_body(response.body, fh)

    def load(self) -> CachedResponse:
        """Open the entry and return a response whose body streams from it.

        Raises:
            OSError: If the file cannot be opened.
            CacheEntryError: If either descriptor is missing or malformed.
        """
        fh = open(self._path, "rb")
        try:
            request = _read_segment(fh, RequestDescriptor, self._path)
            descriptor = _read_segment(fh, ResponseDescriptor, self._path)
        except BaseException:
            fh.close()
            raise

        return CachedResponse(
            **descriptor.model_dump(),
            body=fh,
            request_method=request.method,
            request_url=request.url,
        )


def _frame(model: BaseModel) -> bytes:
    return model.model_dump_json().encode("utf-8") + b"\n"


def _read_segment(fh: BinaryIO, model: type[_D], path: Path) -> _D:
    line = fh.readline()
    if not line.endswith(b"\n"):
        raise CacheEntryError(f"Truncated cache entry {path}: missing {model.__name__}")
    try:
        return model.model_validate_json(line)
    except ValidationError as exc:
        raise CacheEntryError(f"Invalid {model.__name__} in cache entry {path}: {exc}") from exc


def _copy_body(body: Union[BinaryIO, Iterable[bytes], None], fh: BinaryIO) -> None:
    if body is None:
        return
    if hasattr(body, "read"):
        shutil.copyfileobj(body, fh)  # type: ignore[arg-type]
        return
    for chunk in body:
        fh.write(chunk)
