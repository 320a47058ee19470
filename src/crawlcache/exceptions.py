"""Exception hierarchy for crawlcache.

All exceptions inherit from :class:`CrawlcacheError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`crawlcache.exit_codes`.
The top-level error handler in :func:`crawlcache.app.main` catches
``CrawlcacheError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Filesystem failures are not wrapped: :class:`OSError` raised while reading
or writing the cache propagates to the caller unchanged.

Subclass hierarchy::

    CrawlcacheError (exit 1)
    +-- InvalidUsageError           (exit 2)
    +-- TransactionNotStartedError  (exit 2)
    +-- NoSuchTransactionError      (exit 4)
    +-- HTTPStatusError             (exit 4 / 5 / 1)
    +-- ConnectionError_            (exit 6)
    +-- CacheError                  (exit 8)
    |   +-- CacheEntryError         (exit 8)
    +-- GateCancelledError          (exit 130)
    +-- ConfigError                 (exit 1)
"""

from __future__ import annotations

from crawlcache.exit_codes import (
    EXIT_CACHE_ERROR,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class CrawlcacheError(Exception):
    """Base exception for all crawlcache errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`crawlcache.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(CrawlcacheError):
    """Raised for invalid arguments such as a non-positive retention count."""

    exit_code = EXIT_INVALID_USAGE


class TransactionNotStartedError(CrawlcacheError):
    """Raised when a client sends a request before selecting a transaction."""

    exit_code = EXIT_INVALID_USAGE


class NoSuchTransactionError(CrawlcacheError):
    """Raised when a transaction name is not present in the store.

    Recoverable: the caller may retry with a valid name or start a new
    transaction.
    """

    exit_code = EXIT_NOT_FOUND

    def __init__(self, name: str):
        super().__init__(f"get transaction {name!r}: no such transaction")
        self.name = name


class HTTPStatusError(CrawlcacheError):
    """Raised by helpers that require a ``200 OK`` response."""

    def __init__(self, status: str, status_code: int, url: str):
        if status_code == 404:
            exit_code = EXIT_NOT_FOUND
        elif status_code >= 500:
            exit_code = EXIT_SERVER_ERROR
        else:
            exit_code = EXIT_GENERIC_FAILURE
        super().__init__(f"{url}: unexpected status {status}", exit_code)
        self.status_code = status_code
        self.url = url


class ConnectionError_(CrawlcacheError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class CacheError(CrawlcacheError):
    """Raised when the cache control record cannot be interpreted."""

    exit_code = EXIT_CACHE_ERROR


class CacheEntryError(CacheError):
    """Raised when a cache entry file holds undecodable descriptors.

    Usually the sign of a truncated write: entries are not written
    atomically.
    """


class GateCancelledError(CrawlcacheError):
    """Raised when a wait on the access gate is cancelled.

    No network call was made and the gate state was not modified; the
    caller must not call :meth:`~crawlcache.gate.AccessGate.unlock`.
    """

    exit_code = EXIT_CANCELLED


class ConfigError(CrawlcacheError):
    """Raised for configuration problems (invalid JSON, bad values, bad env vars)."""

    exit_code = EXIT_GENERIC_FAILURE
