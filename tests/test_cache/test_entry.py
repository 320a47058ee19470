"""Tests for cache entries, fingerprints and the on-disk entry format."""

from __future__ import annotations

import hashlib
import io
import json
from pathlib import Path

import httpx
import pytest

from crawlcache.cache import (
    PAYLOAD_PREFIX_SIZE,
    CacheEntry,
    RequestView,
    ResponseView,
    fingerprint,
    read_payload,
)
from crawlcache.cache.entry import describe_request
from crawlcache.exceptions import CacheEntryError
from crawlcache.models import RequestDescriptor


def _entry(tmp_path: Path, method: str = "GET", url: str = "https://example.com/", payload=None) -> CacheEntry:
    descriptor = RequestDescriptor(method=method, url=url, payload=payload)
    return CacheEntry(descriptor, tmp_path / fingerprint(method, url, payload))


def _response(body: bytes = b"hello", **kwargs) -> ResponseView:
    kwargs.setdefault("status", "200 OK")
    kwargs.setdefault("status_code", 200)
    return ResponseView(body=io.BytesIO(body), **kwargs)


class _TrackingStream(io.BytesIO):
    closed_count = 0

    def close(self) -> None:
        type(self).closed_count += 1
        super().close()


# ------------------------------------------------------------------ #
# Fingerprints
# ------------------------------------------------------------------ #


class TestFingerprint:
    def test_md5_of_method_url_payload(self) -> None:
        expected = hashlib.md5(b"POSThttps://example.com/q=1").hexdigest()
        assert fingerprint("POST", "https://example.com/", b"q=1") == expected

    def test_no_payload_equals_empty_payload(self) -> None:
        assert fingerprint("GET", "https://example.com/", None) == fingerprint(
            "GET", "https://example.com/", b""
        )

    def test_method_and_url_distinguish(self) -> None:
        a = fingerprint("GET", "https://example.com/a", None)
        assert a != fingerprint("HEAD", "https://example.com/a", None)
        assert a != fingerprint("GET", "https://example.com/b", None)

    def test_same_request_same_fingerprint(self) -> None:
        req = RequestView("POST", "https://example.com/", lambda: io.BytesIO(b"x" * 10))
        first = describe_request(req)
        second = describe_request(req)
        assert fingerprint(first.method, first.url, first.payload) == fingerprint(
            second.method, second.url, second.payload
        )

    def test_bodies_differing_past_prefix_collide(self, tmp_path: Path) -> None:
        head = b"a" * PAYLOAD_PREFIX_SIZE
        one = describe_request(RequestView("POST", "u", lambda: io.BytesIO(head + b"one")))
        two = describe_request(RequestView("POST", "u", lambda: io.BytesIO(head + b"two")))
        assert one.payload == two.payload == head

    def test_bodies_differing_in_prefix_differ(self) -> None:
        one = describe_request(RequestView("POST", "u", lambda: io.BytesIO(b"one")))
        two = describe_request(RequestView("POST", "u", lambda: io.BytesIO(b"two")))
        assert fingerprint("POST", "u", one.payload) != fingerprint("POST", "u", two.payload)


class TestReadPayload:
    def test_none_accessor(self) -> None:
        assert read_payload(None) is None

    def test_short_body(self) -> None:
        assert read_payload(lambda: io.BytesIO(b"abc")) == b"abc"

    def test_truncates_to_prefix(self) -> None:
        assert len(read_payload(lambda: io.BytesIO(b"z" * 1000))) == PAYLOAD_PREFIX_SIZE

    def test_stream_is_closed(self) -> None:
        _TrackingStream.closed_count = 0
        read_payload(lambda: _TrackingStream(b"abc"))
        assert _TrackingStream.closed_count == 1

    def test_accessor_error_propagates(self) -> None:
        def broken():
            raise OSError("gone")

        with pytest.raises(OSError):
            read_payload(broken)


class TestRequestViewFromHttpx:
    def test_get_has_no_body(self) -> None:
        view = RequestView.from_httpx(httpx.Request("GET", "https://example.com/"))
        assert view.method == "GET"
        assert view.url == "https://example.com/"
        assert view.get_body is None

    def test_bytes_content_is_reopenable(self) -> None:
        view = RequestView.from_httpx(httpx.Request("POST", "https://example.com/", content=b"q=1"))
        assert view.get_body is not None
        assert view.get_body().read() == b"q=1"
        assert view.get_body().read() == b"q=1"

    def test_streaming_content_has_no_body(self) -> None:
        def gen():
            yield b"chunk"

        view = RequestView.from_httpx(httpx.Request("POST", "https://example.com/", content=gen()))
        assert view.get_body is None


# ------------------------------------------------------------------ #
# Store / load
# ------------------------------------------------------------------ #


class TestStoreLoad:
    def test_exists(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        assert not entry.exists()
        entry.store(_response())
        assert entry.exists()

    def test_roundtrip(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path, "POST", "https://example.com/form", b"q=1")
        entry.store(_response(
            b"<html>ok</html>",
            headers={"Content-Type": ["text/html"], "Set-Cookie": ["a=1", "b=2"]},
            content_length=15,
        ))

        with entry.load() as resp:
            assert resp.status == "200 OK"
            assert resp.status_code == 200
            assert resp.headers["Set-Cookie"] == ["a=1", "b=2"]
            assert resp.header("content-type") == "text/html"
            assert resp.content_length == 15
            assert resp.request_method == "POST"
            assert resp.request_url == "https://example.com/form"
            assert resp.read() == b"<html>ok</html>"

    def test_body_with_newlines_and_binary(self, tmp_path: Path) -> None:
        body = b"line1\nline2\n\x00\xff{\"json\": true}\n"
        entry = _entry(tmp_path)
        entry.store(_response(body))
        with entry.load() as resp:
            assert resp.read() == body

    def test_iterable_body(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.store(ResponseView(status="200 OK", status_code=200, body=iter([b"ab", b"cd"])))
        with entry.load() as resp:
            assert resp.read() == b"abcd"

    def test_empty_body(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.store(ResponseView(status="204 No Content", status_code=204))
        with entry.load() as resp:
            assert resp.read() == b""

    def test_file_layout(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path, "POST", "https://example.com/", b"\x00\x01")
        entry.store(_response(b"BODY"))

        raw = entry.path.read_bytes()
        request_line, response_line, body = raw.split(b"\n", 2)
        assert json.loads(request_line) == {
            "method": "POST",
            "url": "https://example.com/",
            "payload": "AAE=",
        }
        assert json.loads(response_line)["status_code"] == 200
        assert body == b"BODY"

    def test_null_payload_stored_as_null(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.store(_response())
        request_line = entry.path.read_bytes().split(b"\n", 1)[0]
        assert json.loads(request_line)["payload"] is None

    def test_store_overwrites(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.store(_response(b"first response, longer"))
        entry.store(_response(b"second"))
        with entry.load() as resp:
            assert resp.read() == b"second"

    def test_load_twice_is_independent(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.store(_response(b"data"))
        with entry.load() as first, entry.load() as second:
            assert first.read() == b"data"
            assert second.read() == b"data"

    def test_close_closes_file(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.store(_response())
        resp = entry.load()
        resp.close()
        assert resp.body.closed

    def test_load_missing_raises_oserror(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _entry(tmp_path).load()

    def test_load_truncated(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.path.write_bytes(b'{"method":"GET","url":"https://example.com/","payload":null}\n{"status":')
        with pytest.raises(CacheEntryError):
            entry.load()

    def test_load_garbage(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path)
        entry.path.write_bytes(b"not json\nnot json either\n")
        with pytest.raises(CacheEntryError):
            entry.load()

    def test_from_file(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path, "POST", "https://example.com/", b"abc")
        entry.store(_response())
        reread = CacheEntry.from_file(entry.path)
        assert reread.request == entry.request
        assert reread.fingerprint == entry.fingerprint
