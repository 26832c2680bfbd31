"""
Result assembly module for the scanner package.

Turns engine output into the hierarchical result model (reference image plus
ranked similar images) and the flattened table view, applies deletion
feedback to existing results, and aggregates cross-folder relationships.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from ..models import (
    ROW_ID_SEPARATOR,
    ComparisonPair,
    ComparisonResult,
    SimilarImage,
    TableRow,
    parent_folder,
)

_logger = logging.getLogger(__name__)


# =============================================================================
# Grouping and flattening
# =============================================================================

def group_pairs_into_results(pairs: Iterable[ComparisonPair]) -> list[ComparisonResult]:
    """
    Group flat comparison pairs by reference path.

    Members of each group are sorted by descending similarity and groups are
    sorted by their best similarity, descending. Both sorts are stable, so
    ties keep the order in which the pairs arrived.

    Args:
        pairs: Pairs from the fingerprint engine

    Returns:
        One ComparisonResult per distinct reference
    """
    grouped: dict[str, list[SimilarImage]] = {}
    for pair in pairs:
        grouped.setdefault(pair.reference, []).append(
            SimilarImage(path=pair.candidate, similarity=pair.similarity)
        )

    results = [
        ComparisonResult(
            reference=reference,
            similars=sorted(similars, key=lambda s: -s.similarity),
        )
        for reference, similars in grouped.items()
    ]
    results.sort(key=lambda r: -r.best_similarity)
    return results


def flatten_results(results: Iterable[ComparisonResult]) -> list[TableRow]:
    """
    Flatten results into table rows.

    Emits one row per entry whose path differs from the result's reference,
    so the 100% reference anchor of clustered results never shows up.
    Rows sharing an id (same reference and similar path) are emitted once.
    """
    rows: list[TableRow] = []
    seen: set[str] = set()
    for result in results:
        for similar in result.similars:
            if similar.path == result.reference:
                continue
            row = TableRow(
                reference=result.reference,
                similar=similar.path,
                percent=similar.similarity,
            )
            if row.id in seen:
                continue
            seen.add(row.id)
            rows.append(row)
    return rows


def regroup_rows(rows: Iterable[TableRow]) -> dict[str, list[tuple[str, float]]]:
    """
    Rebuild ``reference -> [(similar, percent), ...]`` from table rows.

    Lists are sorted by descending percent, matching the order inside a
    ComparisonResult.
    """
    grouped: dict[str, list[tuple[str, float]]] = defaultdict(list)
    for row in rows:
        grouped[row.reference].append((row.similar, row.percent))
    return {
        reference: sorted(entries, key=lambda e: -e[1])
        for reference, entries in grouped.items()
    }


def decode_row_id(row_id: str) -> Optional[tuple[str, str]]:
    """Split a row id back into (reference, similar), or None if malformed."""
    reference, sep, similar = row_id.partition(ROW_ID_SEPARATOR)
    if not sep or not reference or not similar:
        return None
    return reference, similar


_ROW_SORT_KEYS = {
    'reference': lambda row: row.reference,
    'similar': lambda row: row.similar,
    'percent': lambda row: row.percent,
    'cross_folder': lambda row: row.is_cross_folder,
}


def sort_rows(
    rows: Iterable[TableRow],
    key: Optional[str] = None,
    reverse: Optional[bool] = None,
) -> list[TableRow]:
    """
    Sort table rows for display or export.

    Without a key, rows are ordered by descending percent. ``reverse``
    defaults to True for percent and False for the other keys.

    Raises:
        ValueError: If ``key`` is not a sortable column
    """
    key = key or 'percent'
    if key not in _ROW_SORT_KEYS:
        raise ValueError(f"Cannot sort rows by {key!r}")
    if reverse is None:
        reverse = key == 'percent'
    return sorted(rows, key=_ROW_SORT_KEYS[key], reverse=reverse)


# =============================================================================
# Deletion feedback
# =============================================================================

def remove_image(results: Iterable[ComparisonResult], path: str) -> list[ComparisonResult]:
    """
    Apply the removal of one image to a result list.

    A result whose reference is ``path``, or that keeps no entry besides its
    reference, is dropped; otherwise ``path`` is removed from its similars.
    """
    updated: list[ComparisonResult] = []
    for result in results:
        remaining = result.without(path)
        if remaining is not None:
            updated.append(remaining)
    return updated


def remove_folder(results: Iterable[ComparisonResult], folder: str) -> list[ComparisonResult]:
    """
    Apply the removal of a whole folder to a result list.

    Results whose reference lives directly in ``folder`` are dropped; entries
    living in it are stripped from the others, and results left without a
    non-reference entry are dropped.
    """
    folder = os.path.normpath(folder)
    updated: list[ComparisonResult] = []
    for result in results:
        if os.path.normpath(parent_folder(result.reference)) == folder:
            continue
        kept = [
            s for s in result.similars
            if os.path.normpath(parent_folder(s.path)) != folder
        ]
        if not any(s.path != result.reference for s in kept):
            continue
        if len(kept) == len(result.similars):
            updated.append(result)
        else:
            updated.append(ComparisonResult(reference=result.reference, similars=kept, id=result.id))
    return updated


# =============================================================================
# Folder relationships
# =============================================================================

@dataclass(frozen=True)
class OrderedFolderPair:
    """Dominant direction of cross-folder matches between two folders."""
    reference: str
    match: str
    count: int

    def to_dict(self) -> dict:
        return {'reference': self.reference, 'match': self.match, 'count': self.count}


def folder_display_name(folder: str) -> str:
    """Short "parent/folder" label; just the folder name at the top level."""
    folder = folder.rstrip(os.sep) or os.sep
    name = os.path.basename(folder)
    parent = os.path.basename(os.path.dirname(folder))
    if not parent or parent == os.sep or parent == name:
        return name or folder
    return f"{parent}/{name}"


def folder_representatives(rows: Iterable[TableRow]) -> dict[str, str]:
    """First image seen for every folder taking part in a match."""
    reps: dict[str, str] = {}
    for row in rows:
        reps.setdefault(row.reference_folder, row.reference)
        reps.setdefault(row.similar_folder, row.similar)
    return reps


def cross_folder_counts(rows: Iterable[TableRow]) -> dict[str, int]:
    """Cross-folder rows per folder, counted on both sides of each row."""
    counts: dict[str, int] = defaultdict(int)
    for row in rows:
        if not row.is_cross_folder:
            continue
        counts[row.reference_folder] += 1
        counts[row.similar_folder] += 1
    return dict(counts)


def folder_pairs(rows: Iterable[TableRow]) -> list[tuple[str, str]]:
    """Unique unordered folder pairs linked by at least one cross-folder row."""
    pairs = {
        tuple(sorted((row.reference_folder, row.similar_folder)))
        for row in rows
        if row.is_cross_folder
    }
    return sorted(pairs)


def ordered_folder_pairs(rows: Iterable[TableRow]) -> list[OrderedFolderPair]:
    """
    Majority direction (reference folder -> match folder) per folder pair.

    For each unordered pair the direction with more rows wins; a tie goes to
    the lexicographically smaller folder as reference. Pairs are sorted by
    count (descending), then reference, then match.
    """
    totals: dict[tuple[str, str], list[int]] = defaultdict(lambda: [0, 0])
    for row in rows:
        if not row.is_cross_folder:
            continue
        ref, match = row.reference_folder, row.similar_folder
        if ref <= match:
            totals[(ref, match)][0] += 1
        else:
            totals[(match, ref)][1] += 1

    ordered = []
    for (a, b), (forward, backward) in totals.items():
        if backward > forward:
            ordered.append(OrderedFolderPair(reference=b, match=a, count=backward))
        else:
            ordered.append(OrderedFolderPair(reference=a, match=b, count=forward))
    ordered.sort(key=lambda p: (-p.count, p.reference, p.match))
    return ordered


__all__ = [
    'group_pairs_into_results',
    'flatten_results',
    'regroup_rows',
    'decode_row_id',
    'sort_rows',
    'remove_image',
    'remove_folder',
    'OrderedFolderPair',
    'folder_display_name',
    'folder_representatives',
    'cross_folder_counts',
    'folder_pairs',
    'ordered_folder_pairs',
]
