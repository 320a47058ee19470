"""Response adapters -- turn live responses into cacheable views.

This module bridges the transport layer and the cache engine. The cache only
knows :class:`~crawlcache.cache.ResponseView`; the functions here build one
from an :class:`httpx.Response` (:func:`response_view`) or from a local file
(:func:`file_response`), and summarise a loaded
:class:`~crawlcache.cache.CachedResponse` for display
(:func:`describe_response`).
"""

from __future__ import annotations

import os
from email.utils import formatdate
from pathlib import Path
from typing import Any

import httpx

from crawlcache.cache import CachedResponse, ResponseView

# Decoders httpx applies transparently when iterating the body.
_DECODED_ENCODINGS = {"gzip", "deflate", "br", "zstd"}


def canonical_header_key(name: str) -> str:
    """Return *name* in canonical MIME form, e.g. ``content-type`` -> ``Content-Type``."""
    return "-".join(part.capitalize() for part in name.split("-"))


def _parse_proto(http_version: str) -> tuple[str, int, int]:
    proto = http_version or "HTTP/1.1"
    _, _, version = proto.partition("/")
    major, _, minor = version.partition(".")
    try:
        return proto, int(major), int(minor or 0)
    except ValueError:
        return proto, 1, 1


def response_view(response: httpx.Response) -> ResponseView:
    """Build a :class:`ResponseView` from a streaming :class:`httpx.Response`.

    The body is taken from :meth:`httpx.Response.iter_bytes`, so a body sent
    with a ``Content-Encoding`` httpx can decode is stored decoded. In that
    case the view is flagged ``uncompressed``, and the ``Content-Encoding``
    and ``Content-Length`` headers are dropped because they no longer
    describe the stored bytes. ``Transfer-Encoding`` moves out of the
    headers into ``transfer_encoding``.
    """
    headers: dict[str, list[str]] = {}
    for name, value in response.headers.multi_items():
        headers.setdefault(canonical_header_key(name), []).append(value)

    transfer_encoding = [
        v.strip()
        for value in headers.pop("Transfer-Encoding", [])
        for v in value.split(",")
        if v.strip()
    ]

    encodings = {
        v.strip().lower()
        for value in headers.get("Content-Encoding", [])
        for v in value.split(",")
        if v.strip()
    }
    uncompressed = bool(encodings & _DECODED_ENCODINGS)

    content_length = -1
    if uncompressed:
        headers.pop("Content-Encoding", None)
        headers.pop("Content-Length", None)
    else:
        lengths = headers.get("Content-Length")
        if lengths:
            try:
                content_length = int(lengths[0])
            except ValueError:
                content_length = -1

    proto, major, minor = _parse_proto(response.http_version)
    reason = response.reason_phrase or ""
    return ResponseView(
        status=f"{response.status_code} {reason}".strip(),
        status_code=response.status_code,
        proto=proto,
        proto_major=major,
        proto_minor=minor,
        headers=headers,
        content_length=content_length,
        transfer_encoding=transfer_encoding,
        uncompressed=uncompressed,
        body=response.iter_bytes(),
    )


def file_response(path: Path) -> ResponseView:
    """Answer a ``GET file://`` request from the local filesystem.

    The returned view's ``body`` is an open file; the caller closes it.

    Raises:
        OSError: If the file cannot be opened or inspected.
    """
    fh = open(path, "rb")
    try:
        stat = os.fstat(fh.fileno())
    except BaseException:
        fh.close()
        raise

    headers = {
        "Content-Type": ["application/zip"],
        "X-Content-Type-Options": ["nosniff"],
        "Date": [formatdate(usegmt=True)],
        "Content-Length": [str(stat.st_size)],
        "Last-Modified": [formatdate(stat.st_mtime, usegmt=True)],
    }
    return ResponseView(
        status="200 OK",
        status_code=200,
        headers=headers,
        content_length=stat.st_size,
        body=fh,
    )


def file_url_path(url: httpx.URL) -> Path:
    """Map a ``file://host/path`` URL to ``/host/path``."""
    return Path("/", url.host, url.path.lstrip("/"))


def describe_response(response: CachedResponse) -> dict[str, Any]:
    """Summarise a cached response (everything but the body) as a plain dict."""
    return {
        "request": f"{response.request_method} {response.request_url}",
        "status": response.status,
        "proto": response.proto,
        "content_length": response.content_length,
        "transfer_encoding": response.transfer_encoding,
        "uncompressed": response.uncompressed,
        "headers": response.headers,
    }
