"""
Fingerprint engine ("Basic Scan").

Computes a 64-bit block fingerprint per image (8x8 grayscale grid, one bit
per cell set when the cell is at least the grid mean) and compares every
unordered pair of fingerprints by Hamming distance.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import (
    DEFAULT_WORKERS,
    FINGERPRINT_BITS,
    FINGERPRINT_SIZE,
)
from ..models import ComparisonPair
from .dependencies import Image, ImageOps, imagehash, np
from .parallel import process_images_parallel
from .progress import ProgressReporter, as_cancel_token

_logger = logging.getLogger(__name__)


def block_hash(image: 'Image.Image', hash_size: int = FINGERPRINT_SIZE) -> 'imagehash.ImageHash':
    """
    Block hash of a PIL image.

    The image is converted to grayscale and downsampled to a
    ``hash_size`` x ``hash_size`` grid; a cell's bit is set when its
    brightness is >= the grid mean.

    Args:
        image: PIL image (any mode)
        hash_size: Grid side length (default 8, giving 64 bits)

    Returns:
        imagehash.ImageHash wrapping the boolean grid
    """
    gray = image.convert('L').resize((hash_size, hash_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(gray, dtype=np.float64)
    return imagehash.ImageHash(pixels >= pixels.mean())


def fingerprint_value(image_hash: 'imagehash.ImageHash') -> int:
    """Integer view of a hash: bit i corresponds to grid cell i in row-major order."""
    value = 0
    for i, bit in enumerate(image_hash.hash.flatten()):
        if bit:
            value |= 1 << i
    return value


def compute_fingerprint(filepath: str | Path) -> Optional[int]:
    """
    Compute the 64-bit fingerprint of an image file.

    Args:
        filepath: Path to the image

    Returns:
        Fingerprint as an int, or None if the image cannot be decoded
    """
    try:
        with Image.open(filepath) as img:
            # Let JPEG decode at reduced size; output stays deterministic
            img.draft('L', (FINGERPRINT_SIZE * 8, FINGERPRINT_SIZE * 8))
            img.load()
            oriented = ImageOps.exif_transpose(img)
            return fingerprint_value(block_hash(oriented))
    except Exception as e:
        _logger.debug(f"Fingerprint failed for {filepath}: {e}")
        return None


def hamming_distance(a: int, b: int) -> int:
    """Number of differing bits between two fingerprints."""
    return bin(a ^ b).count('1')


def max_distance_for_threshold(threshold: float) -> int:
    """
    Convert a similarity threshold (0-1) to a maximum Hamming distance.

    ``clamp(round((1 - threshold) * 64), 0, 64)`` with halves rounded up.
    """
    raw = math.floor((1.0 - threshold) * FINGERPRINT_BITS + 0.5)
    return max(0, min(FINGERPRINT_BITS, raw))


def similarity_for_distance(distance: int) -> float:
    return 1.0 - distance / FINGERPRINT_BITS


def _popcount64(values: 'np.ndarray') -> 'np.ndarray':
    as_bytes = values.astype('<u8').view(np.uint8).reshape(-1, 8)
    return np.unpackbits(as_bytes, axis=1).sum(axis=1)


def compare_fingerprints(
    paths: list[str],
    fingerprints: list[int],
    max_distance: int,
    should_cancel=None,
) -> list[ComparisonPair]:
    """
    Exhaustive pairwise comparison.

    For i < j (input order) a pair (paths[i], paths[j]) is emitted when the
    Hamming distance is at most ``max_distance``. Pairs come out in
    (i, j) order; callers sort by similarity afterwards.

    Args:
        paths: Image paths, aligned with ``fingerprints``
        fingerprints: 64-bit fingerprints
        max_distance: Maximum Hamming distance (0-64)
        should_cancel: CancelToken or callable, polled between rows

    Returns:
        Matching pairs; partial if cancelled
    """
    assert len(paths) == len(fingerprints), "paths and fingerprints must be aligned"
    if len(paths) != len(fingerprints):
        _logger.error("Fingerprint list misaligned with paths; truncating")
    count = min(len(paths), len(fingerprints))
    if count < 2:
        return []

    cancel = as_cancel_token(should_cancel)
    values = np.array(fingerprints[:count], dtype=np.uint64)
    pairs: list[ComparisonPair] = []

    # One row (image i against every later image) per cancellation poll
    for i in range(count - 1):
        if cancel.cancelled:
            break
        distances = _popcount64(values[i + 1:] ^ values[i])
        for offset in np.flatnonzero(distances <= max_distance):
            j = i + 1 + int(offset)
            pairs.append(ComparisonPair(
                reference=paths[i],
                candidate=paths[j],
                similarity=similarity_for_distance(int(distances[offset])),
            ))
    return pairs


@dataclass
class FingerprintBatchResult:
    """Pairs and counters from running the fingerprint engine over batches."""
    pairs: list = field(default_factory=list)
    images_processed: int = 0
    cancelled: bool = False
    memory_limited: bool = False


def find_similar_pairs(
    batches: list[list[str]],
    threshold: float,
    max_workers: int = DEFAULT_WORKERS,
    progress: Optional[ProgressReporter] = None,
    should_cancel=None,
    memory_monitor=None,
) -> FingerprintBatchResult:
    """
    Fingerprint and compare images, one pairing pass per batch.

    Pass a single batch to compare every image with every other one, or one
    batch per folder to restrict pairing to images in the same folder.

    Returns:
        FingerprintBatchResult whose pairs are sorted by descending similarity
    """
    cancel = as_cancel_token(should_cancel)
    max_distance = max_distance_for_threshold(threshold)
    outcome = FingerprintBatchResult()

    for index, batch in enumerate(batches):
        if cancel.cancelled:
            outcome.cancelled = True
            break
        if index and memory_monitor is not None and memory_monitor.check():
            _logger.warning(
                f"High memory pressure detected, skipping {len(batches) - index:,} "
                f"remaining batch(es)"
            )
            outcome.memory_limited = True
            break
        hashed = process_images_parallel(
            batch,
            compute_fingerprint,
            max_workers=max_workers,
            progress=progress,
            should_cancel=cancel,
            memory_monitor=memory_monitor,
        )
        outcome.images_processed += len(hashed.paths)
        if hashed.cancelled or cancel.cancelled:
            outcome.cancelled = True
            break
        outcome.pairs.extend(
            compare_fingerprints(hashed.paths, hashed.values, max_distance, cancel)
        )
        if hashed.memory_limited:
            outcome.memory_limited = True
            break

    if cancel.cancelled:
        outcome.cancelled = True
    # Stable sort keeps input order among equal similarities
    outcome.pairs.sort(key=lambda p: -p.similarity)
    return outcome


__all__ = [
    'block_hash',
    'fingerprint_value',
    'compute_fingerprint',
    'hamming_distance',
    'max_distance_for_threshold',
    'similarity_for_distance',
    'compare_fingerprints',
    'find_similar_pairs',
    'FingerprintBatchResult',
]
