"""Caching, rate-limited HTTP client.

This module provides :class:`Client`, the blocking HTTP client used by
crawlers and by the ``crawlcache fetch`` command. It wraps
:class:`httpx.Client` and layers on:

- **Generational cache** -- every response is stored in the active
  :class:`~crawlcache.cache.Transaction` and always read back from it, so a
  cached answer and a fresh one look exactly the same to the caller.
- **Access gate** -- live requests go through an
  :class:`~crawlcache.gate.AccessGate`, one at a time, with a fixed pause
  between the end of one request and the start of the next.
- **Local files** -- ``GET file://...`` is answered from disk (and cached
  like any other response).

No retries are attempted; failures propagate to the caller.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlencode

import httpx

from crawlcache.cache import CachedResponse, CacheEntry, CacheStore, RequestView, Transaction
from crawlcache.client.response import file_response, file_url_path, response_view
from crawlcache.config import get_cache_dir
from crawlcache.exceptions import ConnectionError_, TransactionNotStartedError
from crawlcache.gate import AccessGate
from crawlcache.models import GlobalConfig, RequestConfig
from crawlcache.output import debug


class Client:
    """HTTP client with a generational response cache and an access gate.

    Opens a :class:`~crawlcache.cache.CacheStore` at *cache_dir*. A
    transaction must be selected (:meth:`new_transaction`,
    :meth:`last_transaction` or :meth:`set_transaction`) before the first
    request. Use as a context manager so the owned :class:`httpx.Client`
    is closed.

    Args:
        cache_dir: Cache root directory.
        retention: Number of transactions kept on disk.
        interval: Minimum pause between live requests (seconds or
            ``timedelta``).
        cancel: Optional event that aborts a pending wait on the gate.
        http_client: Transport to use instead of a client built from
            *request_config*. Not closed by :meth:`close`.
        request_config: Timeout, SSL, redirect and User-Agent settings.

    Example::

        with Client("~/.cache/crawlcache", retention=15, interval=2.0) as client:
            client.last_transaction()
            with client.get("https://example.com/") as resp:
                html = resp.read()
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        retention: int,
        interval: Union[float, timedelta],
        *,
        cancel: Optional[threading.Event] = None,
        http_client: Optional[httpx.Client] = None,
        request_config: Optional[RequestConfig] = None,
    ) -> None:
        self._store = CacheStore(cache_dir, retention)
        self._gate = AccessGate(interval)
        self._cancel = cancel
        self._tx: Optional[Transaction] = None

        self._owns_http = http_client is None
        if http_client is None:
            config = request_config or RequestConfig()
            http_client = httpx.Client(
                timeout=config.timeout,
                verify=config.verify_ssl,
                follow_redirects=config.follow_redirects,
                headers={"User-Agent": config.user_agent},
            )
        self._http = http_client

    @classmethod
    def from_config(
        cls,
        config: GlobalConfig,
        *,
        cancel: Optional[threading.Event] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> Client:
        """Build a client from a resolved :class:`~crawlcache.models.GlobalConfig`."""
        return cls(
            config.cache.directory or get_cache_dir(),
            config.cache.retention,
            config.gate.interval_seconds,
            cancel=cancel,
            http_client=http_client,
            request_config=config.request,
        )

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying transport if this client created it."""
        if self._owns_http:
            self._http.close()

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def gate(self) -> AccessGate:
        return self._gate

    @property
    def transaction(self) -> Optional[Transaction]:
        """The active transaction, or ``None`` before one is selected."""
        return self._tx

    def new_transaction(self) -> Transaction:
        """Start a new transaction and switch to it."""
        self._tx = self._store.new_transaction()
        return self._tx

    def last_transaction(self) -> Transaction:
        """Resume the newest transaction (creating one if the cache is empty)."""
        self._tx = self._store.last_transaction()
        return self._tx

    def set_transaction(self, name: str) -> Transaction:
        """Switch to the transaction called *name*.

        Raises:
            NoSuchTransactionError: If the transaction is not retained.
        """
        self._tx = self._store.get_transaction(name)
        return self._tx

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def build_request(self, method: str, url: str, **kwargs: Any) -> httpx.Request:
        """Build an :class:`httpx.Request` with this client's default headers.

        ``file://`` URLs have no host, which httpx would merge into a
        relative URL; they are built directly so the scheme survives.
        """
        if httpx.URL(url).scheme != "file":
            return self._http.build_request(method, url, **kwargs)

        headers = httpx.Headers(self._http.headers)
        headers.update(kwargs.pop("headers", None) or {})
        kwargs.pop("timeout", None)
        return httpx.Request(method, url, headers=headers, **kwargs)

    def do(self, request: httpx.Request) -> CachedResponse:
        """Send *request*, or replay it from the active transaction.

        The response is always loaded from the cache entry; close it when
        done.

        Raises:
            TransactionNotStartedError: If no transaction is selected.
            GateCancelledError: If the cancel event fired while waiting.
            ConnectionError_: On network failure.
        """
        if self._tx is None:
            raise TransactionNotStartedError("not started transaction")

        entry = self._tx.entry_for(RequestView.from_httpx(request))
        self._fetch_and_store(entry, request)
        return entry.load()

    def get(self, url: str, headers: Optional[Mapping[str, str]] = None) -> CachedResponse:
        """Issue a GET for *url*."""
        return self.do(self.build_request("GET", url, headers=headers))

    def head(self, url: str, headers: Optional[Mapping[str, str]] = None) -> CachedResponse:
        """Issue a HEAD for *url*."""
        return self.do(self.build_request("HEAD", url, headers=headers))

    def post(self, url: str, content_type: str, body: Any) -> CachedResponse:
        """Issue a POST with *body* sent as *content_type*.

        Bytes and strings are part of the cache key (first 256 bytes);
        streaming bodies are sent but not fingerprinted. For form or JSON
        payloads :meth:`post_form` and :meth:`post_json` are simpler.
        """
        request = self.build_request(
            "POST", url, headers={"Content-Type": content_type}, content=body
        )
        return self.do(request)

    def post_form(self, url: str, data: Union[Mapping[str, Any], list[tuple[str, Any]]]) -> CachedResponse:
        """POST *data* form-encoded. Mapping keys are sorted so the cache key is stable."""
        if isinstance(data, Mapping):
            data = sorted(data.items())
        body = urlencode(data, doseq=True)
        return self.post(url, "application/x-www-form-urlencoded", body)

    def post_json(self, url: str, data: Any) -> CachedResponse:
        """POST *data* serialised as compact JSON."""
        body = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return self.post(url, "application/json", body)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _fetch_and_store(self, entry: CacheEntry, request: httpx.Request) -> None:
        """Perform the live request and store it, unless *entry* already exists."""
        if entry.exists():
            debug(f"Cache hit: {request.method} {request.url} ({entry.fingerprint})")
            return
        debug(f"Cache miss: {request.method} {request.url} ({entry.fingerprint})")

        with self._gate.hold(self._cancel):
            if entry.exists():
                debug(f"Cache hit after gate wait: {request.method} {request.url}")
                return

            if request.method == "GET" and request.url.scheme == "file":
                view = file_response(file_url_path(request.url))
                try:
                    entry.store(view)
                finally:
                    view.body.close()  # type: ignore[union-attr]
                return

            try:
                response = self._http.send(request, stream=True)
            except httpx.RequestError as exc:
                raise ConnectionError_(f"{request.method} {request.url}: {exc}") from exc
            try:
                entry.store(response_view(response))
            except httpx.HTTPError as exc:
                raise ConnectionError_(f"{request.method} {request.url}: {exc}") from exc
            finally:
                response.close()
            debug(f"Stored {response.status_code} for {request.url} in {entry.path}")
