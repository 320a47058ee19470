"""HTTP client module for crawlcache.

Provides :class:`Client`, a blocking client that wraps :mod:`httpx` with a
generational response cache and an access gate, plus the adapters in
:mod:`crawlcache.client.response` that turn live responses into cacheable
views.

Example::

    from crawlcache.client import Client

    with Client(cache_dir, retention=3, interval=2.0) as client:
        client.new_transaction()
        resp = client.get("https://example.com/")
"""

from crawlcache.client.sync_client import Client

__all__ = ["Client"]
