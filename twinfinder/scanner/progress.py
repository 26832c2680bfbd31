"""
Progress and cancellation plumbing for the scanner package.

Provides a cooperative cancellation token polled at suspension points and a
throttled progress reporter that is safe to call from worker threads.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ..config import PROGRESS_EVERY_N_ITEMS, PROGRESS_MIN_INTERVAL


class ScanCancelled(Exception):
    """Raised internally to unwind a pipeline once cancellation is observed."""


class CancelToken:
    """
    Shared cancellation flag.

    Cancellation is cooperative: workers poll ``cancelled`` between
    directories, between images and between pair checks. An optional
    external ``should_cancel`` callable is consulted as well, so a caller's
    own predicate can stop a scan without touching the token.
    """

    def __init__(self, should_cancel: Optional[Callable[[], bool]] = None):
        self._event = threading.Event()
        self._should_cancel = should_cancel

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once cancellation was requested here or by the external predicate."""
        if self._event.is_set():
            return True
        if self._should_cancel is not None and self._should_cancel():
            self._event.set()
            return True
        return False

    def __call__(self) -> bool:
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        """Raise ScanCancelled if cancellation was requested."""
        if self.cancelled:
            raise ScanCancelled()


def as_cancel_token(should_cancel) -> CancelToken:
    """Wrap a callable (or None) in a CancelToken; tokens pass through."""
    if isinstance(should_cancel, CancelToken):
        return should_cancel
    return CancelToken(should_cancel)


class ProgressReporter:
    """
    Throttled, monotonic progress reporting.

    Intermediate values are reported every ``every`` processed items (or when
    the last item completes), never more often than ``min_interval`` seconds
    apart, and never decrease. Intermediate reports stay below 1.0; the
    terminal 1.0 is emitted exactly once by ``finish()``.
    """

    def __init__(
        self,
        callback: Optional[Callable[[float], None]],
        total: int = 0,
        every: int = PROGRESS_EVERY_N_ITEMS,
        min_interval: float = PROGRESS_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._callback = callback
        self._total = max(0, total)
        self._every = max(1, every)
        self._min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._processed = 0
        self._last_value = 0.0
        self._last_time: Optional[float] = None
        self._finished = False

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def last_value(self) -> float:
        with self._lock:
            return self._last_value

    @property
    def finished(self) -> bool:
        with self._lock:
            return self._finished

    def set_total(self, total: int) -> None:
        """Set the number of items the scan will process."""
        with self._lock:
            self._total = max(0, total)

    def advance(self, count: int = 1) -> None:
        """Record ``count`` processed items and report if the cadence allows."""
        with self._lock:
            if self._finished:
                return
            self._processed += count
            if self._total <= 0:
                return
            at_cadence = (
                self._processed % self._every == 0 or
                self._processed >= self._total
            )
            if not at_cadence:
                return
            value = min(self._processed / self._total, 1.0)
            self._emit_locked(value)

    def report(self, value: float) -> None:
        """Report an explicit fraction, subject to the same throttling rules."""
        with self._lock:
            if self._finished:
                return
            self._emit_locked(max(0.0, min(value, 1.0)))

    def finish(self) -> None:
        """Emit the terminal 1.0; later calls do nothing."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._last_value = 1.0
            self._last_time = self._clock()
        if self._callback is not None:
            self._callback(1.0)

    def _emit_locked(self, value: float) -> None:
        # 1.0 is reserved for finish()
        if value >= 1.0 or value <= self._last_value:
            return
        now = self._clock()
        if self._last_time is not None and now - self._last_time < self._min_interval:
            return
        self._last_value = value
        self._last_time = now
        if self._callback is not None:
            self._callback(value)


__all__ = ['CancelToken', 'ScanCancelled', 'ProgressReporter', 'as_cancel_token']
