"""Access gate: a single-slot interval limiter for outbound requests.

:class:`AccessGate` lets exactly one caller at a time go to the network and
keeps at least ``interval`` seconds between one caller's release and the
next caller's admission. Spacing is anchored on release, not on the start
of the previous call, so a slow response never shortens the pause the
origin server gets.

Callers queue on the gate's internal lock. The caller at the head of the
queue then sleeps until the next allowed instant; that sleep, and only
that sleep, can be interrupted through a :class:`threading.Event`.

Example::

    gate = AccessGate(2.0)
    with gate.hold(cancel_event):
        response = http.send(request)
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional, Union

from crawlcache.exceptions import GateCancelledError, InvalidUsageError
from crawlcache.output import debug


class AccessGate:
    """Serialises outbound calls and enforces a minimum gap between them.

    Args:
        interval: Minimum time between an :meth:`unlock` and the next
            successful :meth:`lock`, in seconds or as a ``timedelta``.

    Raises:
        InvalidUsageError: If *interval* is negative.
    """

    def __init__(self, interval: Union[float, timedelta]) -> None:
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds < 0:
            raise InvalidUsageError(f"interval must not be negative, got {seconds}")
        self._interval = seconds
        self._next_allowed = 0.0  # time.monotonic() value; 0 admits the first caller at once
        self._lock = threading.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def next_allowed(self) -> float:
        """Monotonic-clock instant before which no caller is admitted."""
        return self._next_allowed

    def lock(self, cancel: Optional[threading.Event] = None) -> None:
        """Acquire the gate, waiting out the interval since the last release.

        Args:
            cancel: Optional event; if it is set before the wait ends the
                attempt is abandoned.

        Raises:
            GateCancelledError: If *cancel* fired first. The gate is left
                exactly as it was and :meth:`unlock` must not be called.
        """
        self._lock.acquire()
        try:
            delay = self._next_allowed - time.monotonic()
            if cancel is not None and cancel.is_set():
                raise GateCancelledError("access gate wait cancelled")
            if delay > 0:
                debug(f"Access gate: waiting {delay:.2f}s")
                if cancel is None:
                    time.sleep(delay)
                elif cancel.wait(delay):
                    raise GateCancelledError("access gate wait cancelled")
        except BaseException:
            self._lock.release()
            raise

    def unlock(self) -> None:
        """Release the gate and start the interval for the next caller.

        Raises:
            RuntimeError: If the gate is not held.
        """
        if not self._lock.locked():
            raise RuntimeError("unlock of unlocked access gate")
        self._next_allowed = time.monotonic() + self._interval
        self._lock.release()

    @contextmanager
    def hold(self, cancel: Optional[threading.Event] = None) -> Iterator[AccessGate]:
        """Hold the gate for the duration of a ``with`` block.

        :meth:`unlock` runs on exit only if :meth:`lock` succeeded.
        """
        self.lock(cancel)
        try:
            yield self
        finally:
            self.unlock()
