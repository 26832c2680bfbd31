"""
State management for twinfinder.

Holds the status, progress and results of the current scan so the CLI and
the JSON API can report on it while the scan runs on a worker thread.
Nothing is persisted: every scan recomputes its results from scratch.
"""

import threading
import time
from datetime import datetime
from typing import Optional

from .models import ScanOutcome
from .scanner.assembler import flatten_results, remove_folder, remove_image, sort_rows

# Statuses during which a scan or discovery is in flight
ACTIVE_STATUSES = ('discovering', 'scanning')


class ScanState:
    """
    Thread-safe snapshot of the current scan.

    Every attribute write goes through ``update()`` or one of the result
    methods so readers on other threads always see a consistent view.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.reset()

    def reset(self):
        """Reset state to initial values."""
        with self._lock:
            self._cancel_requested = False
            self.status = 'idle'  # idle, discovering, scanning, complete, cancelled, error
            self.progress = 0.0
            self.message = ''
            self.images_found = 0
            self.images_processed = 0
            self.results: list = []
            self.rows: list = []
            self.warnings: list[str] = []
            self.settings: dict = {}
            self.started_at: Optional[float] = None
            self.elapsed_seconds = 0.0
            self.last_updated: Optional[str] = None
            # Fields describing the committed results, restored after a cancel
            self._committed: dict = {}

    @property
    def cancel_requested(self) -> bool:
        """Check if cancel has been requested."""
        with self._lock:
            return self._cancel_requested

    def request_cancel(self):
        """Request cancellation of the current scan."""
        with self._lock:
            self._cancel_requested = True

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self.status in ACTIVE_STATUSES

    def update(self, **fields):
        """Set several attributes at once."""
        with self._lock:
            for name, value in fields.items():
                if not hasattr(self, name):
                    raise AttributeError(f"ScanState has no attribute {name!r}")
                setattr(self, name, value)
            self.last_updated = datetime.now().isoformat()

    def begin(self, status: str, settings: Optional[dict] = None, message: str = ''):
        """Enter an active status, clearing the cancel flag."""
        with self._lock:
            self._cancel_requested = False
            self._committed = {
                'settings': self.settings,
                'warnings': list(self.warnings),
                'elapsed_seconds': self.elapsed_seconds,
            }
            self.status = status
            self.progress = 0.0
            self.message = message
            self.warnings = []
            if settings is not None:
                self.settings = settings
            self.started_at = time.time()
            self.elapsed_seconds = 0.0
            self.last_updated = datetime.now().isoformat()

    def set_progress(self, value: float):
        """Record progress; values never go backwards within a scan."""
        with self._lock:
            if value > self.progress:
                self.progress = value
            if self.started_at is not None:
                self.elapsed_seconds = time.time() - self.started_at

    def apply_outcome(self, outcome: ScanOutcome, message: str):
        """
        Commit a finished scan.

        A cancelled scan leaves the earlier results in place together with the
        counters, warnings and timing that describe them.
        """
        with self._lock:
            self.status = 'cancelled' if outcome.cancelled else 'complete'
            if not outcome.cancelled:
                self.results = list(outcome.results)
                self.rows = list(outcome.rows)
                self.images_found = outcome.images_found
                self.images_processed = outcome.images_processed
                self.warnings = list(outcome.warnings)
                self.elapsed_seconds = outcome.elapsed_seconds
            else:
                for name, value in self._committed.items():
                    setattr(self, name, value)
            self.progress = 1.0
            self.message = message
            self.last_updated = datetime.now().isoformat()

    def fail(self, message: str):
        with self._lock:
            self.status = 'error'
            self.progress = 1.0
            self.message = message
            self.last_updated = datetime.now().isoformat()

    def remove_image(self, path: str) -> int:
        """
        Drop ``path`` from the current results and rows.

        Returns:
            Number of results removed or changed
        """
        with self._lock:
            updated = remove_image(self.results, path)
            changed = sum(1 for old in self.results if old not in updated)
            self.results = updated
            self.rows = sort_rows(flatten_results(updated))
            return changed

    def remove_folder(self, folder: str) -> int:
        with self._lock:
            updated = remove_folder(self.results, folder)
            changed = sum(1 for old in self.results if old not in updated)
            self.results = updated
            self.rows = sort_rows(flatten_results(updated))
            return changed

    def clear_results(self):
        with self._lock:
            self.results = []
            self.rows = []

    def to_status_dict(self) -> dict:
        """Return current status for API response."""
        with self._lock:
            return {
                'status': self.status,
                'progress': round(self.progress, 4),
                'message': self.message,
                'images_found': self.images_found,
                'images_processed': self.images_processed,
                'has_results': len(self.results) > 0,
                'result_count': len(self.results),
                'row_count': len(self.rows),
                'warnings': list(self.warnings),
                'settings': dict(self.settings),
                'elapsed_seconds': round(self.elapsed_seconds, 3),
                'cancel_requested': self._cancel_requested,
                'last_updated': self.last_updated,
            }

    def to_results_dict(self) -> dict:
        """Return results data for API response."""
        with self._lock:
            return {
                'results': [r.to_dict() for r in self.results],
                'settings': dict(self.settings),
            }

    def to_rows_dict(self, key: Optional[str] = None, reverse: Optional[bool] = None) -> dict:
        with self._lock:
            rows = sort_rows(self.rows, key, reverse) if key else list(self.rows)
            return {'rows': [row.to_dict() for row in rows]}


__all__ = ['ScanState', 'ACTIVE_STATUSES']
