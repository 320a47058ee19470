"""Generational, disk-backed response cache for crawlcache.

This package provides :class:`CacheStore`, which keeps a bounded number of
:class:`Transaction` generations under a root directory, and
:class:`CacheEntry`, the on-disk record binding one request fingerprint to
one stored response.

The cache is consumed by :class:`~crawlcache.client.Client`, which checks an
entry before going to the network and always reads the response back
through the entry.
"""

from crawlcache.cache.entry import (
    PAYLOAD_PREFIX_SIZE,
    CachedResponse,
    CacheEntry,
    RequestView,
    ResponseView,
    fingerprint,
    read_payload,
)
from crawlcache.cache.store import CacheStore, Transaction

__all__ = [
    "PAYLOAD_PREFIX_SIZE",
    "CacheEntry",
    "CacheStore",
    "CachedResponse",
    "RequestView",
    "ResponseView",
    "Transaction",
    "fingerprint",
    "read_payload",
]
