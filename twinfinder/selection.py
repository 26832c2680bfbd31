"""
Folder selection model.

Tracks the parent folders a user selected, the leaf folders discovered
beneath them and the leaves the user excluded. Discovery itself is
synchronous here; callers that must not block run these methods on a worker
(see ``api.orchestrator.ScanCoordinator``).
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Iterable

from .config import DEFAULT_IGNORED_FOLDER_NAME, MAX_LEAF_FOLDERS
from .models import DiscoveryResult
from .scanner.file_discovery import (
    directory_contains_images,
    discover_leaf_folders,
    normalize_path,
)
from .scanner.progress import as_cancel_token

_logger = logging.getLogger(__name__)


def is_descendant(path: str, root: str) -> bool:
    """True if ``path`` is ``root`` or lies somewhere below it."""
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def _directories(paths: Iterable[str | Path]) -> list[str]:
    """Normalized existing directories from ``paths``, duplicates removed."""
    dirs: list[str] = []
    for path in paths:
        normalized = normalize_path(path)
        if os.path.isdir(normalized) and normalized not in dirs:
            dirs.append(normalized)
        elif not os.path.isdir(normalized):
            _logger.debug(f"Ignoring non-directory selection: {path}")
    return dirs


class FolderSelection:
    """
    Thread-safe selection of parent folders, leaves and exclusions.

    Attributes:
        ignored_folder_name: Folder name skipped below each parent
        max_folders: Global leaf folder cap
    """

    def __init__(
        self,
        ignored_folder_name: str = DEFAULT_IGNORED_FOLDER_NAME,
        max_folders: int = MAX_LEAF_FOLDERS,
    ):
        self.ignored_folder_name = ignored_folder_name
        self.max_folders = max_folders
        self._parents: list[str] = []
        self._leaves: list[str] = []
        self._excluded: set[str] = set()
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def parent_folders(self) -> list[str]:
        with self._lock:
            return list(self._parents)

    @property
    def leaf_folders(self) -> list[str]:
        with self._lock:
            return list(self._leaves)

    @property
    def excluded_folders(self) -> list[str]:
        with self._lock:
            return sorted(self._excluded)

    def active_leaf_folders(self) -> list[str]:
        """Discovered leaves minus exclusions, in discovery order."""
        with self._lock:
            return [leaf for leaf in self._leaves if leaf not in self._excluded]

    def to_dict(self) -> dict:
        with self._lock:
            return {
                'parent_folders': list(self._parents),
                'leaf_folders': list(self._leaves),
                'excluded_folders': sorted(self._excluded),
                'active_leaf_folders': [l for l in self._leaves if l not in self._excluded],
            }

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_parent_folders(self, paths: Iterable[str | Path], should_cancel=None) -> DiscoveryResult:
        """
        Select parent folders.

        New parents are walked and their leaves appended; parents that were
        already selected get a targeted rescan instead.

        Returns:
            Combined DiscoveryResult of the new leaves
        """
        cancel = as_cancel_token(should_cancel)
        dirs = _directories(paths)
        with self._lock:
            existing = set(self._parents)
            to_append = [d for d in dirs if d not in existing]
            to_rescan = [d for d in dirs if d in existing]
            self._parents.extend(to_append)
            self._excluded = {
                ex for ex in self._excluded
                if not any(is_descendant(ex, parent) for parent in to_append)
            }
            remaining = self.max_folders - len(self._leaves)

        result = DiscoveryResult()
        if to_append:
            if remaining <= 0:
                result.truncated = True
                _logger.warning(
                    f"Discovery limited to {self.max_folders:,} folders to prevent memory issues"
                )
            else:
                result = discover_leaf_folders(
                    to_append,
                    ignored_folder_name=self.ignored_folder_name,
                    max_folders=remaining,
                    should_cancel=cancel,
                )
                if not result.cancelled:
                    self._merge_leaves(result.leaf_folders)

        if to_rescan and not cancel.cancelled:
            rescanned = self.rescan(to_rescan, should_cancel=cancel)
            result.leaf_folders.extend(
                leaf for leaf in rescanned.leaf_folders if leaf not in result.leaf_folders
            )
            result.truncated = result.truncated or rescanned.truncated
            result.cancelled = result.cancelled or rescanned.cancelled
        return result

    def rescan(self, parents: Iterable[str | Path], should_cancel=None) -> DiscoveryResult:
        """
        Rediscover the leaves below ``parents`` only.

        Leaves previously found under these parents are replaced by the fresh
        discovery and exclusions under them are dropped; everything outside
        their subtrees is kept. A cancelled rescan changes nothing.
        """
        parents = _directories(parents)
        if not parents:
            return DiscoveryResult()
        with self._lock:
            outside = [
                leaf for leaf in self._leaves
                if not any(is_descendant(leaf, p) for p in parents)
            ]
            remaining = self.max_folders - len(outside)

        result = discover_leaf_folders(
            parents,
            ignored_folder_name=self.ignored_folder_name,
            max_folders=max(1, remaining),
            should_cancel=should_cancel,
        )
        if result.cancelled:
            return result

        with self._lock:
            self._leaves = [
                leaf for leaf in self._leaves
                if not any(is_descendant(leaf, p) for p in parents)
            ]
            self._excluded = {
                ex for ex in self._excluded
                if not any(is_descendant(ex, p) for p in parents)
            }
        self._merge_leaves(result.leaf_folders)
        _logger.info(f"Rescanned {len(parents)} folder(s): {len(result.leaf_folders)} leaf folder(s)")
        return result

    def add_leaf_folders(self, paths: Iterable[str | Path]) -> list[str]:
        """Add leaves directly (no walk) and lift any exclusion on them."""
        dirs = _directories(paths)
        with self._lock:
            self._excluded.difference_update(dirs)
        return self._merge_leaves(dirs)

    def ingest_paths(self, paths: Iterable[str | Path], should_cancel=None) -> DiscoveryResult:
        """
        Add dropped or pasted folders.

        A folder that directly contains images is taken as a leaf; any other
        folder is treated as a parent and walked.
        """
        leaves: list[str] = []
        parents: list[str] = []
        for directory in _directories(paths):
            if directory_contains_images(directory):
                leaves.append(directory)
            else:
                parents.append(directory)

        added = self.add_leaf_folders(leaves) if leaves else []
        result = self.add_parent_folders(parents, should_cancel) if parents else DiscoveryResult()
        result.leaf_folders = added + [l for l in result.leaf_folders if l not in added]
        return result

    def exclude_leaf(self, path: str | Path) -> bool:
        """Exclude a discovered leaf from scanning. Returns False if unknown."""
        leaf = normalize_path(path)
        with self._lock:
            if leaf not in self._leaves:
                return False
            self._excluded.add(leaf)
            return True

    def include_leaf(self, path: str | Path) -> None:
        with self._lock:
            self._excluded.discard(normalize_path(path))

    def remove_folder(self, path: str | Path) -> None:
        """Forget a folder that no longer exists (leaf list and exclusions)."""
        folder = normalize_path(path)
        with self._lock:
            self._leaves = [leaf for leaf in self._leaves if leaf != folder]
            self._excluded.discard(folder)

    def clear(self) -> None:
        with self._lock:
            self._parents.clear()
            self._leaves.clear()
            self._excluded.clear()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _merge_leaves(self, leaves: Iterable[str]) -> list[str]:
        """Append unseen leaves (respecting the cap) and reconcile exclusions."""
        added: list[str] = []
        with self._lock:
            seen = set(self._leaves)
            for leaf in leaves:
                if leaf in seen:
                    continue
                if len(self._leaves) >= self.max_folders:
                    _logger.warning(
                        f"Discovery limited to {self.max_folders:,} folders to prevent memory issues"
                    )
                    break
                self._leaves.append(leaf)
                seen.add(leaf)
                added.append(leaf)
            self._reconcile_locked()
        return added

    def _reconcile_locked(self) -> None:
        # Exclusions only make sense for leaves that are still discovered
        discovered = set(self._leaves)
        self._excluded = {ex for ex in self._excluded if ex in discovered}


__all__ = ['FolderSelection', 'is_descendant']
