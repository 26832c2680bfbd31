"""
Shared resources owned by the application shell.

- ThumbnailCache: bounded LRU of decoded preview thumbnails
- MemoryMonitor: resident-memory growth check consulted during per-image work

Both are constructed explicitly and injected; the scan engine treats them as
optional and never depends on a cache hit for correctness.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Optional

import psutil

from .config import (
    MEMORY_PRESSURE_LIMIT_BYTES,
    THUMBNAIL_BUCKETS,
    THUMBNAIL_CACHE_MAX_BYTES,
    THUMBNAIL_CACHE_MAX_ITEMS,
)
from .scanner.dependencies import Image, ImageOps

_logger = logging.getLogger(__name__)


def cache_bucket(dimension: float) -> int:
    """
    Round a requested display size up to a cache bucket.

    Bucketing keeps one cached thumbnail per size class instead of one per
    requested pixel size, e.g. 350 -> 640 and 1200 -> 1600.
    """
    for bucket in THUMBNAIL_BUCKETS:
        if dimension <= bucket:
            return bucket
    return THUMBNAIL_BUCKETS[-1]


def _image_cost(image: 'Image.Image') -> int:
    width, height = image.size
    return width * height * 4


class ThumbnailCache:
    """
    Thread-safe LRU cache of thumbnails keyed by (path, bucket).

    Entries are evicted least-recently-used first whenever the item count or
    the estimated decoded size (4 bytes per pixel) exceeds its limit.
    """

    def __init__(
        self,
        max_items: int = THUMBNAIL_CACHE_MAX_ITEMS,
        max_bytes: int = THUMBNAIL_CACHE_MAX_BYTES,
    ):
        self.max_items = max_items
        self.max_bytes = max_bytes
        self._items: OrderedDict[tuple[str, int], 'Image.Image'] = OrderedDict()
        self._costs: dict[tuple[str, int], int] = {}
        self._total_bytes = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: tuple[str, int]) -> bool:
        with self._lock:
            return key in self._items

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    def get(self, path: str, bucket: int) -> Optional['Image.Image']:
        key = (str(path), bucket)
        with self._lock:
            image = self._items.get(key)
            if image is not None:
                self._items.move_to_end(key)
            return image

    def put(self, path: str, bucket: int, image: 'Image.Image') -> None:
        key = (str(path), bucket)
        cost = _image_cost(image)
        with self._lock:
            if key in self._items:
                self._total_bytes -= self._costs.pop(key)
                del self._items[key]
            self._items[key] = image
            self._costs[key] = cost
            self._total_bytes += cost
            self._evict_locked()

    def _evict_locked(self) -> None:
        while self._items and (
            len(self._items) > self.max_items or self._total_bytes > self.max_bytes
        ):
            key, _ = self._items.popitem(last=False)
            self._total_bytes -= self._costs.pop(key)

    def remove_path(self, path: str) -> None:
        """Drop every bucket cached for ``path`` (e.g. after deletion)."""
        path = str(path)
        with self._lock:
            for key in [k for k in self._items if k[0] == path]:
                del self._items[key]
                self._total_bytes -= self._costs.pop(key)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._costs.clear()
            self._total_bytes = 0

    def get_or_create(self, path: str | Path, max_dimension: float) -> Optional['Image.Image']:
        """
        Return a cached thumbnail, decoding and caching it on a miss.

        Args:
            path: Image file
            max_dimension: Requested display size in pixels

        Returns:
            RGB thumbnail no larger than the bucket size, or None if the
            image cannot be decoded
        """
        bucket = cache_bucket(max_dimension)
        cached = self.get(str(path), bucket)
        if cached is not None:
            return cached
        try:
            with Image.open(path) as img:
                img.draft('RGB', (bucket, bucket))
                thumb = ImageOps.exif_transpose(img).convert('RGB')
                thumb.thumbnail((bucket, bucket), Image.Resampling.LANCZOS)
        except Exception as e:
            _logger.debug(f"Thumbnail failed for {path}: {e}")
            return None
        self.put(str(path), bucket, thumb)
        return thumb


def _process_rss() -> int:
    return psutil.Process().memory_info().rss


class MemoryMonitor:
    """
    Resident-memory pressure check.

    Pressure is measured as growth of the process's resident set size over
    a baseline recorded by ``begin()`` at scan start, so memory already held
    when the scan starts (a loaded embedding model, for example) does not
    count against the limit. Without a baseline the full resident size is
    compared. ``check()`` returns True under pressure, clearing every
    registered cache first.
    """

    def __init__(
        self,
        limit_bytes: int = MEMORY_PRESSURE_LIMIT_BYTES,
        rss_reader: Callable[[], int] = _process_rss,
    ):
        self.limit_bytes = limit_bytes
        self.baseline_bytes = 0
        self._rss_reader = rss_reader
        self._caches: list = []
        self._lock = threading.Lock()

    def register_cache(self, cache) -> None:
        """Register an object with a ``clear()`` method to empty under pressure."""
        with self._lock:
            if cache not in self._caches:
                self._caches.append(cache)

    def resident_bytes(self) -> int:
        try:
            return int(self._rss_reader())
        except (psutil.Error, OSError) as e:
            _logger.debug(f"Could not read resident memory: {e}")
            return 0

    def begin(self) -> None:
        """Record the current resident size as the baseline for a new scan."""
        self.baseline_bytes = self.resident_bytes()
        _logger.debug(f"Memory baseline {self.baseline_bytes / (1024 * 1024):.0f} MB")

    def growth_bytes(self) -> int:
        return max(0, self.resident_bytes() - self.baseline_bytes)

    def under_pressure(self) -> bool:
        return self.growth_bytes() > self.limit_bytes

    def clear_caches(self) -> None:
        with self._lock:
            caches = list(self._caches)
        for cache in caches:
            cache.clear()

    def check(self) -> bool:
        if not self.under_pressure():
            return False
        _logger.warning(
            f"Resident memory grew by more than {self.limit_bytes / (1024 * 1024):.0f} MB, "
            f"clearing caches"
        )
        self.clear_caches()
        return True


__all__ = [
    'cache_bucket',
    'ThumbnailCache',
    'MemoryMonitor',
]
