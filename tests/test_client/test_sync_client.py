"""Tests for the caching, rate-limited HTTP client."""

from __future__ import annotations

import gzip
import json
import threading
import time
from pathlib import Path

import httpx
import pytest

from crawlcache.client import Client
from crawlcache.exceptions import (
    ConnectionError_,
    GateCancelledError,
    NoSuchTransactionError,
    TransactionNotStartedError,
)
from crawlcache.models import GlobalConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _html_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/html"},
        content=f"<p>{request.method} {request.url.path}</p>".encode(),
    )


def _echo_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": request.headers.get("content-type", "")},
        content=request.content,
    )


@pytest.fixture
def make_client(cache_root: Path, make_transport):
    """Build a Client over a RecordingTransport; yields (client, transport)."""
    clients: list[Client] = []

    def _make(handler=_html_handler, interval: float = 0, **kwargs):
        transport = make_transport(handler)
        http = httpx.Client(transport=transport)
        client = Client(cache_root, retention=3, interval=interval, http_client=http, **kwargs)
        clients.append(client)
        return client, transport

    yield _make
    for client in clients:
        client.close()


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    def test_request_without_transaction(self, make_client) -> None:
        client, transport = make_client()
        with pytest.raises(TransactionNotStartedError, match="not started transaction"):
            client.get("https://example.com/")
        assert transport.requests == []

    def test_set_unknown_transaction(self, make_client) -> None:
        client, _ = make_client()
        with pytest.raises(NoSuchTransactionError):
            client.set_transaction("nope")
        assert client.transaction is None

    def test_set_transaction(self, make_client) -> None:
        client, _ = make_client()
        first = client.new_transaction()
        client.new_transaction()
        assert client.set_transaction(first.name) == first
        assert client.transaction == first

    def test_last_transaction_resumes_across_clients(self, make_client) -> None:
        client, transport = make_client()
        client.new_transaction()
        with client.get("https://example.com/a") as resp:
            resp.read()

        again, again_transport = make_client()
        again.last_transaction()
        with again.get("https://example.com/a") as resp:
            assert resp.read() == b"<p>GET /a</p>"
        assert again_transport.requests == []

    def test_new_transaction_refetches(self, make_client) -> None:
        client, transport = make_client()
        client.new_transaction()
        client.get("https://example.com/").close()
        client.new_transaction()
        client.get("https://example.com/").close()
        assert len(transport.requests) == 2


# ---------------------------------------------------------------------------
# Cache behaviour
# ---------------------------------------------------------------------------


class TestCaching:
    def test_miss_then_hit(self, make_client) -> None:
        client, transport = make_client()
        client.new_transaction()

        with client.get("https://example.com/page") as first:
            body1 = first.read()
        with client.get("https://example.com/page") as second:
            body2 = second.read()

        assert body1 == body2 == b"<p>GET /page</p>"
        assert len(transport.requests) == 1

    def test_response_fields(self, make_client) -> None:
        client, _ = make_client()
        client.new_transaction()
        with client.get("https://example.com/page") as resp:
            assert resp.status == "200 OK"
            assert resp.status_code == 200
            assert resp.header("Content-Type") == "text/html"
            assert resp.request_method == "GET"
            assert resp.request_url == "https://example.com/page"

    def test_entry_written_in_transaction_directory(self, make_client) -> None:
        client, _ = make_client()
        tx = client.new_transaction()
        client.get("https://example.com/").close()
        assert len(tx.entry_paths()) == 1

    def test_error_status_is_cached(self, make_client) -> None:
        client, transport = make_client(lambda r: httpx.Response(404, content=b"missing"))
        client.new_transaction()
        for _ in range(2):
            with client.get("https://example.com/gone") as resp:
                assert resp.status_code == 404
                assert resp.status == "404 Not Found"
        assert len(transport.requests) == 1

    def test_head_and_get_are_distinct(self, make_client) -> None:
        client, transport = make_client()
        client.new_transaction()
        client.get("https://example.com/").close()
        client.head("https://example.com/").close()
        assert [r.method for r in transport.requests] == ["GET", "HEAD"]

    def test_gzip_body_stored_decoded(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-encoding": "gzip"},
                content=gzip.compress(b"decoded body"),
            )

        client, _ = make_client(handler)
        client.new_transaction()
        with client.get("https://example.com/") as resp:
            assert resp.uncompressed is True
            assert resp.header("Content-Encoding") is None
            assert resp.read() == b"decoded body"


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class TestPost:
    def test_post_form_sorted_and_encoded(self, make_client) -> None:
        client, transport = make_client(_echo_handler)
        client.new_transaction()
        with client.post_form("https://example.com/search", {"q": "a b", "page": 2}) as resp:
            assert resp.read() == b"page=2&q=a+b"
            assert resp.header("Content-Type") == "application/x-www-form-urlencoded"

    def test_post_form_multi_value(self, make_client) -> None:
        client, _ = make_client(_echo_handler)
        client.new_transaction()
        with client.post_form("https://example.com/", {"k": ["1", "2"]}) as resp:
            assert resp.read() == b"k=1&k=2"

    def test_post_json_compact(self, make_client) -> None:
        client, _ = make_client(_echo_handler)
        client.new_transaction()
        with client.post_json("https://example.com/api", {"a": 1, "b": [1, 2]}) as resp:
            assert resp.header("Content-Type") == "application/json"
            assert json.loads(resp.read()) == {"a": 1, "b": [1, 2]}

    def test_different_bodies_are_different_entries(self, make_client) -> None:
        client, transport = make_client(_echo_handler)
        client.new_transaction()
        client.post("https://example.com/", "text/plain", b"one").close()
        client.post("https://example.com/", "text/plain", b"two").close()
        client.post("https://example.com/", "text/plain", b"one").close()
        assert len(transport.requests) == 2

    def test_payload_recorded_in_entry(self, make_client) -> None:
        client, _ = make_client(_echo_handler)
        tx = client.new_transaction()
        client.post("https://example.com/", "text/plain", b"abc").close()
        line = tx.entry_paths()[0].read_bytes().split(b"\n", 1)[0]
        assert json.loads(line)["payload"] == "YWJj"


# ---------------------------------------------------------------------------
# Local files
# ---------------------------------------------------------------------------


class TestFileScheme:
    def test_build_request_keeps_file_scheme(self, make_client, tmp_path: Path) -> None:
        client, _ = make_client()
        request = client.build_request("GET", f"file://{tmp_path / 'data.zip'}", headers={"X-Trace": "1"})
        assert request.url.scheme == "file"
        assert request.url.path == str(tmp_path / "data.zip")
        assert request.headers["X-Trace"] == "1"

    def test_get_file_url(self, make_client, tmp_path: Path) -> None:
        archive = tmp_path / "data.zip"
        archive.write_bytes(b"PK\x03\x04fake")

        client, transport = make_client()
        client.new_transaction()
        with client.get(f"file://{archive}") as resp:
            assert resp.status_code == 200
            assert resp.header("Content-Type") == "application/zip"
            assert resp.header("X-Content-Type-Options") == "nosniff"
            assert resp.header("Content-Length") == str(len(b"PK\x03\x04fake"))
            assert resp.read() == b"PK\x03\x04fake"
        assert transport.requests == []

    def test_file_url_is_cached(self, make_client, tmp_path: Path) -> None:
        source = tmp_path / "data.zip"
        source.write_bytes(b"v1")
        client, _ = make_client()
        client.new_transaction()
        client.get(f"file://{source}").close()

        source.write_bytes(b"v2")
        with client.get(f"file://{source}") as resp:
            assert resp.read() == b"v1"

    def test_missing_file(self, make_client, tmp_path: Path) -> None:
        client, _ = make_client()
        client.new_transaction()
        with pytest.raises(FileNotFoundError):
            client.get(f"file://{tmp_path / 'missing.zip'}")


# ---------------------------------------------------------------------------
# Failures and the access gate
# ---------------------------------------------------------------------------


class TestFailures:
    def test_connect_error(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(handler)
        tx = client.new_transaction()
        with pytest.raises(ConnectionError_):
            client.get("https://example.com/")
        assert tx.entry_paths() == []

    def test_gate_released_after_error(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(handler)
        client.new_transaction()
        with pytest.raises(ConnectionError_):
            client.get("https://example.com/")
        client.gate.lock()
        client.gate.unlock()


class TestDecoding:
    def test_corrupt_gzip_body(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")

        client, _ = make_client(handler)
        client.new_transaction()
        with pytest.raises(ConnectionError_):
            client.get("https://example.com/")


class TestGate:
    def test_concurrent_misses_fetch_once(self, make_client) -> None:
        def slow_handler(request: httpx.Request) -> httpx.Response:
            time.sleep(0.05)
            return _html_handler(request)

        client, transport = make_client(slow_handler, interval=0.1)
        client.new_transaction()
        bodies: list[bytes] = []
        bodies_lock = threading.Lock()

        def worker() -> None:
            with client.get("https://example.com/a") as resp:
                body = resp.read()
            with bodies_lock:
                bodies.append(body)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(transport.requests) == 1
        assert bodies == [b"<p>GET /a</p>"] * 3

    def test_live_requests_are_spaced(self, make_client) -> None:
        client, _ = make_client(interval=0.2)
        client.new_transaction()
        start = time.monotonic()
        client.get("https://example.com/a").close()
        client.get("https://example.com/b").close()
        assert time.monotonic() - start >= 0.19

    def test_hits_do_not_wait(self, make_client) -> None:
        client, _ = make_client(interval=5)
        client.new_transaction()
        client.get("https://example.com/a").close()
        start = time.monotonic()
        client.get("https://example.com/a").close()
        assert time.monotonic() - start < 1

    def test_cancel_event(self, make_client) -> None:
        cancel = threading.Event()
        client, transport = make_client(cancel=cancel)
        client.new_transaction()
        client.get("https://example.com/a").close()

        cancel.set()
        with pytest.raises(GateCancelledError):
            client.get("https://example.com/b")
        with client.get("https://example.com/a") as resp:
            assert resp.read() == b"<p>GET /a</p>"
        assert len(transport.requests) == 1


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_from_config(self, tmp_path: Path, make_transport) -> None:
        config = GlobalConfig.model_validate(
            {"cache": {"directory": str(tmp_path / "c"), "retention": 7},
             "gate": {"interval_seconds": 0.5}}
        )
        http = httpx.Client(transport=make_transport(_html_handler))
        with Client.from_config(config, http_client=http) as client:
            assert client.store.root_dir == tmp_path / "c"
            assert client.store.retention == 7
            assert client.gate.interval == 0.5
        http.close()

    def test_owned_client_sends_user_agent(self, cache_root: Path) -> None:
        with Client(cache_root, retention=1, interval=0) as client:
            request = client.build_request("GET", "https://example.com/")
        assert request.headers["User-Agent"].startswith("crawlcache/")
