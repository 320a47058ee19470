"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~crawlcache.exceptions.CrawlcacheError` subclass.
Shell wrappers around a crawl can inspect the exit code to tell a missing
transaction from a network failure without parsing stderr.

Example::

    $ crawlcache fetch --tx 18c1f0a2b3d https://example.com/
    $ echo $?
    4   # EXIT_NOT_FOUND -- no such transaction
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or in an invalid state."""

EXIT_NOT_FOUND = 4
"""The requested transaction or resource was not found."""

EXIT_SERVER_ERROR = 5
"""The origin server returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CACHE_ERROR = 8
"""The cache directory holds a control record or entry that cannot be decoded."""

EXIT_CANCELLED = 130
"""The operation was cancelled before any network call was made."""
