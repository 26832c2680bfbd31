"""
Scan orchestration for twinfinder.

- run_scan: discovery -> signal extraction -> comparison -> assembly for one
  immutable ScanConfig, with throttled progress and cooperative cancellation
- ScanOrchestrator: runs one scan against a ScanState, absorbing failures
- ScanCoordinator: owns the worker that runs scans and folder discovery, one
  operation at a time
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..models import DiscoveryResult, ScanConfig, ScanMode, ScanOutcome
from ..resources import MemoryMonitor, ThumbnailCache
from ..scanner import (
    collect_image_files,
    discover_leaf_folders,
    find_similar_clusters,
    find_similar_pairs,
    flatten_results,
    group_pairs_into_results,
    list_image_files,
    sort_rows,
)
from ..scanner.extractors import ThumbnailFeatureExtractor
from ..scanner.progress import CancelToken, ProgressReporter, ScanCancelled, as_cancel_token
from ..selection import FolderSelection
from ..state import ScanState
from ..utils import formatters

# Module logger
_logger = logging.getLogger(__name__)


class ScanInProgressError(RuntimeError):
    """A scan or discovery is running and the caller asked not to cancel it."""


# =============================================================================
# Pipeline
# =============================================================================

def _build_batches(
    leaf_folders: list[str],
    config: ScanConfig,
    cancel: CancelToken,
    warnings: list[str],
) -> list[list[str]]:
    """
    Collect image files into comparison batches.

    One batch per leaf folder when ``top_level_only`` is set, otherwise a
    single global batch. Each batch is capped at ``max_batch_size`` files.
    """
    if config.top_level_only:
        batches = []
        seen: set[str] = set()
        for folder in leaf_folders:
            cancel.raise_if_cancelled()
            files = [f for f in list_image_files(folder) if f not in seen]
            seen.update(files)
            if files:
                batches.append(files)
    else:
        files = collect_image_files(leaf_folders, should_cancel=cancel)
        batches = [files] if files else []
    cancel.raise_if_cancelled()

    limit = config.max_batch_size
    if limit:
        capped = []
        for batch in batches:
            if len(batch) > limit:
                message = (
                    f"Limited processing to {formatters.format_number(limit)} of "
                    f"{formatters.format_number(len(batch))} files due to memory constraints"
                )
                _logger.warning(message)
                warnings.append(message)
                batch = batch[:limit]
            capped.append(batch)
        batches = capped
    return batches


def run_scan(
    roots: Iterable[str | Path],
    config: Optional[ScanConfig] = None,
    on_progress: Optional[Callable[[float], None]] = None,
    should_cancel=None,
    extractor=None,
    memory_monitor: Optional[MemoryMonitor] = None,
    leaf_folders: Optional[list[str]] = None,
) -> ScanOutcome:
    """
    Run one complete scan.

    Args:
        roots: Root directories to discover leaf folders under
        config: Scan settings snapshot (defaults to ScanConfig())
        on_progress: Called with values in (0, 1]; safe to call from workers.
            1.0 is delivered exactly once, also after cancellation or failure.
        should_cancel: CancelToken or callable polled at suspension points
        extractor: Feature extractor for the embedding pipeline
            (defaults to ThumbnailFeatureExtractor)
        memory_monitor: Optional memory-pressure monitor
        leaf_folders: Pre-discovered leaf folders; skips discovery when given

    Returns:
        ScanOutcome; cancelled scans carry no results

    Raises:
        ValueError: If the config is out of range
    """
    config = (config or ScanConfig()).validated()
    cancel = as_cancel_token(should_cancel)
    progress = ProgressReporter(on_progress)
    outcome = ScanOutcome()
    start = time.monotonic()

    try:
        if memory_monitor is not None:
            memory_monitor.begin()

        # Phase 1: leaf folders
        if leaf_folders is None:
            discovery = discover_leaf_folders(
                roots,
                ignored_folder_name=config.ignored_folder_name,
                max_folders=config.max_leaf_folders,
                should_cancel=cancel,
            )
            if discovery.truncated:
                outcome.warnings.append(
                    f"Discovery limited to {formatters.format_number(config.max_leaf_folders)} "
                    f"folders to prevent memory issues"
                )
            leaf_folders = discovery.leaf_folders
        cancel.raise_if_cancelled()
        _logger.info(f"Scanning {formatters.format_number(len(leaf_folders))} folder(s) ({config.mode.label})")

        # Phase 2: image files
        batches = _build_batches(leaf_folders, config, cancel, outcome.warnings)
        outcome.images_found = sum(len(batch) for batch in batches)
        progress.set_total(outcome.images_found)
        if not outcome.images_found:
            return outcome

        # Phase 3: signals and comparison
        if config.mode is ScanMode.FINGERPRINT:
            batch_result = find_similar_pairs(
                batches,
                config.similarity_threshold,
                max_workers=config.workers,
                progress=progress,
                should_cancel=cancel,
                memory_monitor=memory_monitor,
            )
            cancel.raise_if_cancelled()
            results = group_pairs_into_results(batch_result.pairs)
        else:
            batch_result = find_similar_clusters(
                batches,
                config.similarity_threshold,
                extractor or ThumbnailFeatureExtractor(),
                max_workers=config.workers,
                progress=progress,
                should_cancel=cancel,
                memory_monitor=memory_monitor,
            )
            cancel.raise_if_cancelled()
            results = batch_result.results
        if batch_result.cancelled:
            raise ScanCancelled()

        outcome.images_processed = batch_result.images_processed
        if batch_result.memory_limited:
            outcome.warnings.append("Stopped early due to high memory pressure")

        # Phase 4: assembly
        outcome.results = results
        outcome.rows = sort_rows(flatten_results(results))
        return outcome

    except ScanCancelled:
        _logger.info("Scan cancelled")
        outcome.cancelled = True
        outcome.results = []
        outcome.rows = []
        return outcome

    finally:
        outcome.elapsed_seconds = time.monotonic() - start
        progress.finish()


def summarize_outcome(outcome: ScanOutcome, config: ScanConfig) -> str:
    """One-line summary of a finished scan."""
    if outcome.error:
        return f"Error: {outcome.error}"
    if outcome.cancelled:
        return "Scan cancelled by user"
    if not outcome.images_found:
        return "No images found in the selected folders"
    if not outcome.results:
        return (
            f"No similar images found at {formatters.format_percent(config.similarity_threshold)} "
            f"similarity ({formatters.format_number(outcome.images_processed)} images compared)"
        )

    summary_parts = [
        f"Found {formatters.format_number(len(outcome.rows))} similar pairs in "
        f"{formatters.format_number(len(outcome.results))} groups ({config.mode.label})"
    ]
    summary_parts.append(f"• Completed in {formatters.format_time_estimate(outcome.elapsed_seconds)}")
    if outcome.images_skipped:
        summary_parts.append(f"• {formatters.format_number(outcome.images_skipped)} files could not be read")
    if outcome.warnings:
        summary_parts.append(f"• {len(outcome.warnings)} warning(s)")
    return ' '.join(summary_parts)


# =============================================================================
# Orchestrator
# =============================================================================

class ScanOrchestrator:
    """
    Runs a single scan and mirrors its progress into a ScanState.

    Failures are logged and recorded as an ``error`` status; the returned
    outcome then carries the error message and no results.
    """

    def __init__(
        self,
        scan_state: ScanState,
        roots: Iterable[str | Path],
        config: ScanConfig,
        cancel_token: Optional[CancelToken] = None,
        extractor=None,
        memory_monitor: Optional[MemoryMonitor] = None,
        leaf_folders: Optional[list[str]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        self.scan_state = scan_state
        self.roots = list(roots)
        self.config = config
        self.cancel_token = cancel_token or CancelToken()
        self.extractor = extractor
        self.memory_monitor = memory_monitor
        self.leaf_folders = leaf_folders
        self.on_progress = on_progress

    def _should_cancel(self) -> bool:
        return self.cancel_token.cancelled or self.scan_state.cancel_requested

    def _report(self, value: float) -> None:
        self.scan_state.set_progress(value)
        if self.on_progress is not None:
            self.on_progress(value)

    def run(self) -> ScanOutcome:
        """Execute the scan; never raises."""
        token = CancelToken(self._should_cancel)
        try:
            outcome = run_scan(
                self.roots,
                self.config,
                on_progress=self._report,
                should_cancel=token,
                extractor=self.extractor,
                memory_monitor=self.memory_monitor,
                leaf_folders=self.leaf_folders,
            )
        except Exception as e:
            _logger.exception(f"Scan error: {e}")
            outcome = ScanOutcome(error=str(e))
            self.scan_state.fail(summarize_outcome(outcome, self.config))
            return outcome

        message = summarize_outcome(outcome, self.config)
        self.scan_state.apply_outcome(outcome, message)
        _logger.info(message)
        return outcome


# =============================================================================
# Coordinator
# =============================================================================

class ScanCoordinator:
    """
    Serializes scans and folder discovery on a single worker thread.

    Starting a scan cancels and awaits whatever is running first, so at
    most one scan or discovery is ever in flight. Methods return futures;
    the calling thread never blocks on file I/O except while a running
    operation winds down.
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        extractor=None,
        memory_monitor: Optional[MemoryMonitor] = None,
        thumbnail_cache: Optional[ThumbnailCache] = None,
        scan_state: Optional[ScanState] = None,
        selection: Optional[FolderSelection] = None,
    ):
        self.config = (config or ScanConfig()).validated()
        self.extractor = extractor
        self.memory_monitor = memory_monitor
        self.thumbnail_cache = thumbnail_cache
        if memory_monitor is not None and thumbnail_cache is not None:
            memory_monitor.register_cache(thumbnail_cache)
        self.scan_state = scan_state or ScanState()
        self.selection = selection or FolderSelection(
            ignored_folder_name=self.config.ignored_folder_name,
            max_folders=self.config.max_leaf_folders,
        )
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='twinfinder-scan')
        self._lock = threading.Lock()
        # Held across check, cancel, wait and submit so starts never interleave
        self._submit_lock = threading.Lock()
        self._current: Optional[Future] = None
        self._current_token: Optional[CancelToken] = None

    # -------------------------------------------------------------------------
    # Operation control
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._current is not None and not self._current.done()

    def cancel(self) -> bool:
        """Request cancellation of the running operation. Returns False if idle."""
        with self._lock:
            future, token = self._current, self._current_token
        if future is None or future.done():
            return False
        if token is not None:
            token.cancel()
        self.scan_state.request_cancel()
        return True

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the running operation (if any) finishes."""
        with self._lock:
            future = self._current
        if future is not None:
            wait([future], timeout=timeout)

    def _cancel_and_wait(self) -> None:
        if self.cancel():
            _logger.info("Cancelling running operation before starting a new one")
        self.wait()

    def _submit(self, fn, token: CancelToken, cancel_running: bool) -> Future:
        with self._submit_lock:
            if self.is_running and not cancel_running:
                raise ScanInProgressError("A scan or folder discovery is already running")
            self._cancel_and_wait()
            with self._lock:
                self._current_token = token
                self._current = self._executor.submit(fn)
                return self._current

    # -------------------------------------------------------------------------
    # Scans
    # -------------------------------------------------------------------------

    def start_scan(
        self,
        roots: Optional[Iterable[str | Path]] = None,
        config: Optional[ScanConfig] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        cancel_running: bool = True,
    ) -> 'Future[ScanOutcome]':
        """
        Start a scan on the worker thread.

        Args:
            roots: Directories to discover and scan; when omitted, the active
                leaf folders of the current selection are scanned
            config: Settings for this scan (defaults to the coordinator's)
            on_progress: Extra progress callback, invoked from the worker
            cancel_running: Cancel a running operation first instead of
                raising ScanInProgressError

        Returns:
            Future resolving to the ScanOutcome
        """
        config = (config or self.config).validated()
        roots = None if roots is None else list(roots)
        token = CancelToken()

        def _run() -> ScanOutcome:
            # The selection is read here, after any running discovery has finished
            if roots is None:
                scan_roots = list(self.selection.parent_folders)
                leaf_folders = self.selection.active_leaf_folders()
            else:
                scan_roots, leaf_folders = roots, None
            orchestrator = ScanOrchestrator(
                self.scan_state,
                scan_roots,
                config,
                cancel_token=token,
                extractor=self.extractor,
                memory_monitor=self.memory_monitor,
                leaf_folders=leaf_folders,
                on_progress=on_progress,
            )
            self.scan_state.begin('scanning', config.to_dict(), 'Scanning for similar images...')
            return orchestrator.run()

        return self._submit(_run, token, cancel_running)

    # -------------------------------------------------------------------------
    # Folder discovery
    # -------------------------------------------------------------------------

    def _discovery(self, operation, paths, cancel_running: bool) -> 'Future[DiscoveryResult]':
        paths = list(paths)
        token = CancelToken()

        def _run() -> DiscoveryResult:
            self.scan_state.begin('discovering', message='Discovering folders...')
            try:
                result = operation(paths, should_cancel=CancelToken(
                    lambda: token.cancelled or self.scan_state.cancel_requested
                ))
            except Exception as e:
                _logger.exception(f"Discovery error: {e}")
                self.scan_state.fail(f"Error: {e}")
                return DiscoveryResult(cancelled=True)

            active = len(self.selection.active_leaf_folders())
            if result.cancelled:
                message = 'Folder discovery cancelled'
            else:
                message = f"{formatters.format_number(active)} folder(s) ready to scan"
            warnings = []
            if result.truncated:
                warnings.append(
                    f"Discovery limited to {formatters.format_number(self.selection.max_folders)} "
                    f"folders to prevent memory issues"
                )
            self.scan_state.update(status='idle', progress=1.0, message=message, warnings=warnings)
            return result

        return self._submit(_run, token, cancel_running)

    def add_roots(self, paths: Iterable[str | Path], cancel_running: bool = True) -> 'Future[DiscoveryResult]':
        """Select parent folders; already selected ones are rescanned."""
        return self._discovery(self.selection.add_parent_folders, paths, cancel_running)

    def ingest_paths(self, paths: Iterable[str | Path], cancel_running: bool = True) -> 'Future[DiscoveryResult]':
        """Add dropped folders as leaves or parents."""
        return self._discovery(self.selection.ingest_paths, paths, cancel_running)

    def rescan(self, paths: Iterable[str | Path], cancel_running: bool = True) -> 'Future[DiscoveryResult]':
        return self._discovery(self.selection.rescan, paths, cancel_running)

    def exclude_folder(self, path: str | Path) -> bool:
        return self.selection.exclude_leaf(path)

    def include_folder(self, path: str | Path) -> None:
        self.selection.include_leaf(path)

    # -------------------------------------------------------------------------
    # Deletion feedback
    # -------------------------------------------------------------------------

    def remove_image(self, path: str) -> int:
        """Drop a deleted image from the results; returns results affected."""
        if self.thumbnail_cache is not None:
            self.thumbnail_cache.remove_path(path)
        return self.scan_state.remove_image(path)

    def remove_folder(self, folder: str) -> int:
        """Drop a deleted folder from the results and the selection."""
        self.selection.remove_folder(folder)
        return self.scan_state.remove_folder(folder)

    def clear(self) -> None:
        """Cancel everything and forget selection and results."""
        with self._submit_lock:
            self._cancel_and_wait()
            self.selection.clear()
            self.scan_state.reset()
        if self.thumbnail_cache is not None:
            self.thumbnail_cache.clear()

    def shutdown(self, wait_for_running: bool = True) -> None:
        self.cancel()
        self._executor.shutdown(wait=wait_for_running)


__all__ = [
    'run_scan',
    'summarize_outcome',
    'ScanOrchestrator',
    'ScanCoordinator',
    'ScanInProgressError',
]
