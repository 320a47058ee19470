"""Generational cache store.

The store keeps captured responses in *transactions*: one directory per
generation under the cache root, named after the creation instant
(milliseconds since the epoch, lowercase hex). The newest-first list of
retained transactions is persisted in a control record, ``cache.json``::

    <root>/
        cache.json
        18c1f0a2b3d/
            5d41402abc4b2a76b9719d911017c592
            ...
        18c1f09e77a/
            ...

Only the ``retention`` newest transactions are kept; older ones are removed
from disk together with their entries whenever the list grows past the
limit, and once more when the store is opened.

The store does no locking. Creating transactions from several threads at
once is not supported.
"""

from __future__ import annotations

import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from crawlcache.cache.entry import CacheEntry, RequestView, describe_request, fingerprint
from crawlcache.config import atomic_write
from crawlcache.exceptions import CacheError, InvalidUsageError, NoSuchTransactionError
from crawlcache.models import ControlRecord, TransactionRecord
from crawlcache.output import debug

CONTROL_FILENAME = "cache.json"
CREATE_AT_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class Transaction:
    """One generation of cached entries.

    A transaction is a name plus a directory. It never deletes anything;
    retention is enforced by :class:`CacheStore`.
    """

    def __init__(self, name: str, create_at: str, directory: Path) -> None:
        self._name = name
        self._create_at = create_at
        self._directory = directory

    @property
    def name(self) -> str:
        return self._name

    @property
    def create_at(self) -> str:
        return self._create_at

    @property
    def directory(self) -> Path:
        return self._directory

    def entry_for(self, request: RequestView) -> CacheEntry:
        """Return the cache entry bound to *request*.

        Reads the payload prefix through ``request.get_body``; errors raised
        while doing so propagate and no entry is returned.
        """
        descriptor = describe_request(request)
        key = fingerprint(descriptor.method, descriptor.url, descriptor.payload)
        return CacheEntry(descriptor, self._directory / key)

    def entry_paths(self) -> list[Path]:
        """Return the entry files currently stored, sorted by name."""
        if not self._directory.is_dir():
            return []
        return sorted(p for p in self._directory.iterdir() if p.is_file())

    def to_record(self) -> TransactionRecord:
        return TransactionRecord(name=self._name, create_at=self._create_at)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transaction):
            return NotImplemented
        return self._name == other._name and self._directory == other._directory

    def __hash__(self) -> int:
        return hash((self._name, self._directory))

    def __repr__(self) -> str:
        return f"Transaction(name={self._name!r}, create_at={self._create_at!r})"


class CacheStore:
    """Owns the cache root, the retained transactions and the retention policy.

    Opening a store reads the control record (a missing record means an
    empty store), evicts transactions beyond *retention* and writes the
    trimmed record back.

    Args:
        root_dir: Cache root directory. Created on first write.
        retention: Maximum number of transactions kept on disk (>= 1).

    Raises:
        InvalidUsageError: If *retention* is not a positive integer.
        CacheError: If the control record exists but cannot be decoded.
        OSError: If the control record cannot be read, or an evicted
            transaction cannot be removed.

    Example::

        store = CacheStore("~/.cache/crawlcache", retention=3)
        tx = store.last_transaction()
        entry = tx.entry_for(RequestView("GET", "https://example.com/"))
    """

    def __init__(self, root_dir: Union[str, Path], retention: int) -> None:
        if isinstance(retention, bool) or not isinstance(retention, int) or retention < 1:
            raise InvalidUsageError(f"retention must be a positive integer, got {retention!r}")

        self._root = Path(root_dir).expanduser()
        self._retention = retention
        self._transactions: list[Transaction] = []

        self._load_control_record()
        self._discard()
        self._save_control_record()

    @property
    def root_dir(self) -> Path:
        return self._root

    @property
    def retention(self) -> int:
        return self._retention

    @property
    def control_path(self) -> Path:
        return self._root / CONTROL_FILENAME

    @property
    def transactions(self) -> list[Transaction]:
        """Retained transactions, newest first (a copy)."""
        return list(self._transactions)

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    def new_transaction(self) -> Transaction:
        """Create a transaction, make it the newest and enforce retention.

        The directory is created before the store is touched, so a failure
        there leaves the transaction list unchanged.
        """
        name, create_at = self._next_name()
        directory = self._root / name
        directory.mkdir(parents=True, exist_ok=True)

        tx = Transaction(name, create_at, directory)
        self._transactions.insert(0, tx)
        debug(f"New transaction {name} in {directory}")

        self._discard()
        self._save_control_record()
        return tx

    def last_transaction(self) -> Transaction:
        """Return the newest transaction, creating one if there is none."""
        if not self._transactions:
            self.new_transaction()
        return self._transactions[0]

    def get_transaction(self, name: str) -> Transaction:
        """Return the retained transaction called *name*.

        Raises:
            NoSuchTransactionError: If no retained transaction has that name.
        """
        for tx in self._transactions:
            if tx.name == name:
                return tx
        raise NoSuchTransactionError(name)

    @classmethod
    def recorded_count(cls, root_dir: Union[str, Path]) -> int:
        """Return how many transactions the control record under *root_dir* lists.

        Nothing is evicted or written. Commands that only inspect the cache
        use this to open a store without shrinking it.

        Raises:
            CacheError: If the control record exists but cannot be decoded.
        """
        record = _read_control_record(Path(root_dir).expanduser() / CONTROL_FILENAME)
        return len(record.transactions) if record is not None else 0

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _next_name(self) -> tuple[str, str]:
        """Derive a transaction name from the current instant.

        Two transactions created within the same millisecond would share a
        directory, so the value is bumped past the newest existing name.
        """
        millis = time.time_ns() // 1_000_000
        if self._transactions:
            try:
                newest = int(self._transactions[0].name, 16)
            except ValueError:
                newest = -1
            if millis <= newest:
                millis = newest + 1

        created = datetime.fromtimestamp(millis / 1000)
        create_at = created.strftime(CREATE_AT_FORMAT)[:-3]
        return format(millis, "x"), create_at

    def _discard(self) -> None:
        """Remove transactions beyond the retention count, oldest last in the list.

        A removal failure propagates; directories already removed stay
        removed and the list is left untrimmed.
        """
        if len(self._transactions) <= self._retention:
            return
        for tx in self._transactions[self._retention:]:
            debug(f"Discarding transaction {tx.name}")
            if tx.directory.exists():
                shutil.rmtree(tx.directory)
        del self._transactions[self._retention:]

    def _load_control_record(self) -> None:
        record = _read_control_record(self.control_path)
        if record is None:
            return

        self._transactions = [
            Transaction(r.name, r.create_at, self._root / r.name)
            for r in record.transactions
        ]

    def _save_control_record(self) -> None:
        record = ControlRecord(transactions=[tx.to_record() for tx in self._transactions])
        atomic_write(self.control_path, record.model_dump_json(indent=2) + "\n")


def _read_control_record(path: Path) -> Optional[ControlRecord]:
    """Decode the control record at *path*; ``None`` when it does not exist."""
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None

    try:
        return ControlRecord.model_validate_json(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValidationError) as exc:
        raise CacheError(f"Invalid control record at {path}: {exc}") from exc
