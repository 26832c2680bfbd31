"""
Parallel processing module for the scanner package.

Runs a per-image function (fingerprinting, feature extraction) on a thread
pool while keeping results in input order, polling cancellation, reporting
progress and consulting the optional memory-pressure monitor.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config import DEFAULT_WORKERS, MEMORY_CHECK_EVERY_N_IMAGES
from .progress import ProgressReporter, as_cancel_token

_logger = logging.getLogger(__name__)


@dataclass
class ParallelOutcome:
    """
    Per-image values collected by ``process_images_parallel``.

    Attributes:
        paths: Paths that produced a value, in input order
        values: Values aligned with ``paths``
        attempted: Images handed to the worker function
        cancelled: Processing stopped because cancellation was requested
        memory_limited: Processing stopped because of memory pressure
    """
    paths: list = field(default_factory=list)
    values: list = field(default_factory=list)
    attempted: int = 0
    cancelled: bool = False
    memory_limited: bool = False


def _safe_call(func: Callable[[str], Any], path: str) -> Any:
    try:
        return func(path)
    except Exception as e:
        _logger.debug(f"Processing failed for {path}: {e}")
        return None


def process_images_parallel(
    filepaths: list[str],
    func: Callable[[str], Any],
    max_workers: int = DEFAULT_WORKERS,
    progress: Optional[ProgressReporter] = None,
    should_cancel=None,
    memory_monitor=None,
    chunk_size: int = MEMORY_CHECK_EVERY_N_IMAGES,
) -> ParallelOutcome:
    """
    Apply ``func`` to every path on a worker pool.

    Work is submitted in chunks. The cancellation token is consulted before
    each chunk and the memory monitor before every chunk after the first, so
    at least one chunk is always processed. Within a chunk, cancellation is
    polled as each future completes and outstanding futures are cancelled.
    A ``None`` return (or an exception) drops the image.

    Args:
        filepaths: Images to process, in discovery order
        func: Per-image function returning a value or None
        max_workers: Number of worker threads
        progress: Reporter advanced once per processed image
        should_cancel: CancelToken or callable
        memory_monitor: Optional MemoryMonitor consulted between chunks
        chunk_size: Images submitted between cancellation/memory checks

    Returns:
        ParallelOutcome with values ordered like ``filepaths``
    """
    cancel = as_cancel_token(should_cancel)
    outcome = ParallelOutcome()
    if not filepaths:
        return outcome

    collected: dict[int, Any] = {}
    chunk_size = max(1, chunk_size)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        for start in range(0, len(filepaths), chunk_size):
            if cancel.cancelled:
                outcome.cancelled = True
                break
            if start and memory_monitor is not None and memory_monitor.check():
                _logger.warning(
                    f"High memory pressure detected, stopping after {start:,} of "
                    f"{len(filepaths):,} images"
                )
                outcome.memory_limited = True
                break

            chunk = filepaths[start:start + chunk_size]
            futures = {
                executor.submit(_safe_call, func, path): start + offset
                for offset, path in enumerate(chunk)
            }
            outcome.attempted += len(chunk)

            for future in as_completed(futures):
                if future.cancelled():
                    continue
                collected[futures[future]] = future.result()
                if progress is not None:
                    progress.advance()
                if cancel.cancelled:
                    outcome.cancelled = True
                    for pending in futures:
                        pending.cancel()
                    break
            if outcome.cancelled:
                break

    for index in sorted(collected):
        value = collected[index]
        if value is not None:
            outcome.paths.append(filepaths[index])
            outcome.values.append(value)
    return outcome


__all__ = ['ParallelOutcome', 'process_images_parallel']
