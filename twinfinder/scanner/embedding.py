"""
Embedding engine ("Enhanced Scan").

Feature vectors come from an injected extractor; images are grouped by a
single pass over the similarity graph:

    for each image i (original order) not yet clustered:
        members = [i] + every later unclustered j with sim(i, j) >= threshold

Clusters are therefore stars around their seed, not cliques. Singletons are
dropped. Within a cluster the reference is the lexicographically smaller
path of the first near-identical pair, falling back to the smallest path,
and every other member is scored by its best similarity to any peer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from ..config import (
    COMPARISONS_PER_CANCEL_CHECK,
    DEFAULT_WORKERS,
    EXACT_MATCH_EPSILON,
)
from ..models import ComparisonResult, SimilarImage
from .parallel import process_images_parallel
from .progress import ProgressReporter, as_cancel_token

_logger = logging.getLogger(__name__)


@runtime_checkable
class FeatureExtractor(Protocol):
    """
    Capability contract for embedding extractors.

    ``extract`` returns a fixed-length vector or None when the image cannot
    be processed. ``distance`` must be >= 0, symmetric, and 0 for identical
    input. Extractors that cannot be called from several threads at once
    set ``thread_safe = False``.
    """

    def extract(self, path: str) -> Optional[Any]:
        ...

    def distance(self, a: Any, b: Any) -> float:
        ...


def similarity_from_distance(distance: float) -> float:
    """Map an unbounded distance into (0, 1]: ``1 / (1 + distance)``."""
    return 1.0 / (1.0 + max(0.0, float(distance)))


class _PairSimilarity:
    """Memoized pairwise similarity over a list of vectors."""

    def __init__(self, vectors: list, distance: Callable[[Any, Any], float]):
        self._vectors = vectors
        self._distance = distance
        self._cache: dict[tuple[int, int], float] = {}

    def __call__(self, i: int, j: int) -> float:
        key = (i, j) if i < j else (j, i)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            value = similarity_from_distance(self._distance(self._vectors[i], self._vectors[j]))
        except Exception as e:
            _logger.debug(f"Distance computation failed for pair {key}: {e}")
            value = 0.0
        self._cache[key] = value
        return value


def choose_reference(
    members: list[int],
    paths: list[str],
    sim: Callable[[int, int], float],
    exact_eps: float = EXACT_MATCH_EPSILON,
) -> int:
    """
    Pick the reference of a cluster.

    The first pair (in member order) with similarity >= ``exact_eps`` wins,
    and the lexicographically smaller path of that pair becomes the
    reference. Without such a pair the smallest path wins.
    """
    for a in range(len(members)):
        for b in range(a + 1, len(members)):
            ia, ib = members[a], members[b]
            if sim(ia, ib) >= exact_eps:
                return ia if paths[ia] <= paths[ib] else ib
    return min(members, key=lambda idx: paths[idx])


def best_similarities(
    members: list[int],
    sim: Callable[[int, int], float],
) -> dict[int, float]:
    """Each member's highest similarity to any other member of its cluster."""
    best: dict[int, float] = {}
    for i in members:
        best[i] = max((sim(i, j) for j in members if j != i), default=0.0)
    return best


def cluster_feature_vectors(
    paths: list[str],
    vectors: list,
    threshold: float,
    distance: Callable[[Any, Any], float],
    should_cancel=None,
    exact_eps: float = EXACT_MATCH_EPSILON,
) -> list[ComparisonResult]:
    """
    Group feature vectors into clusters of similar images.

    Args:
        paths: Image paths, aligned with ``vectors``
        vectors: Feature vectors
        threshold: Minimum similarity between a seed and a member
        distance: Extractor distance function
        should_cancel: CancelToken or callable polled between pair checks
        exact_eps: Similarity treated as "the same picture"

    Returns:
        One ComparisonResult per cluster of two or more images: reference
        first at 1.0, remaining members by descending score. Clusters built
        before a cancellation are returned.
    """
    assert len(paths) == len(vectors), "paths and vectors must be aligned"
    if len(paths) != len(vectors):
        _logger.error("Feature vectors misaligned with paths; truncating")
    n = min(len(paths), len(vectors))
    if n < 2:
        return []

    cancel = as_cancel_token(should_cancel)
    sim = _PairSimilarity(vectors[:n], distance)
    used = [False] * n
    results: list[ComparisonResult] = []
    checks = 0

    for i in range(n):
        if used[i]:
            continue
        if cancel.cancelled:
            break
        members = [i]
        for j in range(i + 1, n):
            if used[j]:
                continue
            checks += 1
            if checks % COMPARISONS_PER_CANCEL_CHECK == 0 and cancel.cancelled:
                return results
            if sim(i, j) >= threshold:
                members.append(j)
                used[j] = True
        used[i] = True
        if len(members) < 2:
            continue

        ref_idx = choose_reference(members, paths, sim, exact_eps)
        best = best_similarities(members, sim)
        tail = []
        for idx in members:
            if idx == ref_idx:
                continue
            score = best.get(idx, 0.0)
            if score >= exact_eps:
                score = 1.0
            tail.append(SimilarImage(path=paths[idx], similarity=score))
        tail.sort(key=lambda s: -s.similarity)

        results.append(ComparisonResult(
            reference=paths[ref_idx],
            similars=[SimilarImage(path=paths[ref_idx], similarity=1.0)] + tail,
        ))

    return results


@dataclass
class EmbeddingBatchResult:
    """Clusters and counters from running the embedding engine over batches."""
    results: list = field(default_factory=list)
    images_processed: int = 0
    cancelled: bool = False
    memory_limited: bool = False


def find_similar_clusters(
    batches: list[list[str]],
    threshold: float,
    extractor: FeatureExtractor,
    max_workers: int = DEFAULT_WORKERS,
    progress: Optional[ProgressReporter] = None,
    should_cancel=None,
    memory_monitor=None,
) -> EmbeddingBatchResult:
    """
    Extract feature vectors and cluster them, one pass per batch.

    Images whose extraction fails are dropped. Extractors flagged with
    ``thread_safe = False`` run on a single worker.
    """
    cancel = as_cancel_token(should_cancel)
    workers = max_workers if getattr(extractor, 'thread_safe', True) else 1
    outcome = EmbeddingBatchResult()

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
        extracted = process_images_parallel(
            batch,
            extractor.extract,
            max_workers=workers,
            progress=progress,
            should_cancel=cancel,
            memory_monitor=memory_monitor,
        )
        outcome.images_processed += len(extracted.paths)
        if extracted.cancelled or cancel.cancelled:
            outcome.cancelled = True
            break
        outcome.results.extend(cluster_feature_vectors(
            extracted.paths,
            extracted.values,
            threshold,
            extractor.distance,
            should_cancel=cancel,
        ))
        if extracted.memory_limited:
            outcome.memory_limited = True
            break

    if cancel.cancelled:
        outcome.cancelled = True
    return outcome


__all__ = [
    'FeatureExtractor',
    'similarity_from_distance',
    'choose_reference',
    'best_similarities',
    'cluster_feature_vectors',
    'find_similar_clusters',
    'EmbeddingBatchResult',
]
