"""
File discovery module for the scanner package.

Finds "leaf" folders (folders that directly contain image files) under the
selected roots and enumerates the images inside them.

Notes:
    - Hidden entries (dot-files and dot-folders) are never visited
    - A folder named like the ignored folder name is skipped below a root,
      but a root with that name is still scanned
    - Unreadable directories are skipped silently
    - Directory entries are visited in sorted order so discovery order, and
      therefore result order, is deterministic
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from ..config import IMAGE_EXTENSIONS, MAX_LEAF_FOLDERS
from ..models import DiscoveryResult
from .progress import CancelToken, as_cancel_token

_logger = logging.getLogger(__name__)


def normalize_path(path: str | Path) -> str:
    """Absolute path with ``~``, ``.``, ``..`` and symlinks resolved."""
    return os.path.realpath(os.path.abspath(os.path.expanduser(str(path))))


def normalize_ignored_name(name: Optional[str]) -> str:
    return (name or '').strip().lower()


def is_image_file(name: str) -> bool:
    """True if ``name`` carries a recognized image extension (case-insensitive)."""
    return os.path.splitext(name)[1].lower() in IMAGE_EXTENSIONS


def _is_hidden(name: str) -> bool:
    return name.startswith('.')


def _scan_entries(directory: str) -> Optional[list[os.DirEntry]]:
    """Sorted, non-hidden entries of ``directory`` or None if unreadable."""
    try:
        with os.scandir(directory) as it:
            entries = [e for e in it if not _is_hidden(e.name)]
    except OSError as e:
        _logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return None
    entries.sort(key=lambda e: e.name)
    return entries


def _has_any_subdirectory(directory: str) -> bool:
    """True if ``directory`` has any subdirectory, hidden or ignored ones included."""
    try:
        with os.scandir(directory) as it:
            return any(entry.is_dir() for entry in it)
    except OSError:
        return False


def _split_entries(
    entries: Iterable[os.DirEntry],
    ignored_name: str,
) -> tuple[list[str], bool]:
    """Return (qualifying subdirectories, has image files) for a listing."""
    subdirectories: list[str] = []
    has_images = False
    for entry in entries:
        try:
            if entry.is_dir():
                if ignored_name and entry.name.lower() == ignored_name:
                    continue
                subdirectories.append(entry.path)
            elif entry.is_file() and is_image_file(entry.name):
                has_images = True
        except OSError:
            continue
    return subdirectories, has_images


def directory_contains_images(directory: str | Path) -> bool:
    """Quick check: does ``directory`` directly contain an image file?"""
    entries = _scan_entries(str(directory))
    if entries is None:
        return False
    for entry in entries:
        try:
            if entry.is_file() and is_image_file(entry.name):
                return True
        except OSError:
            continue
    return False


def find_leaf_folders(
    root: str | Path,
    ignored_folder_name: str = '',
    should_cancel=None,
    limit: Optional[int] = None,
) -> list[str]:
    """
    Find leaf folders below a single root.

    A root with no subdirectories at all is returned as-is; one whose only
    subdirectories are hidden or ignored is returned only if it directly
    contains images. Otherwise the tree is walked depth-first: every folder
    that directly contains an image is recorded, and its subdirectories are
    still visited.

    Args:
        root: Directory to walk
        ignored_folder_name: Folder name to skip below the root (case-insensitive)
        should_cancel: CancelToken or callable polled between directories
        limit: Stop after this many leaves

    Returns:
        Normalized leaf folder paths in discovery order
    """
    cancel = as_cancel_token(should_cancel)
    ignored_name = normalize_ignored_name(ignored_folder_name)
    root_path = normalize_path(root)

    if not os.path.isdir(root_path):
        return []

    entries = _scan_entries(root_path)
    if entries is None:
        return []
    root_subdirs, root_has_images = _split_entries(entries, ignored_name)
    if not root_subdirs:
        if root_has_images or not _has_any_subdirectory(root_path):
            return [root_path]
        return []

    leaves: list[str] = []
    if root_has_images:
        leaves.append(root_path)

    # Symlinked directories can form loops
    visited = {root_path}

    # Explicit stack instead of recursion; deep trees must not hit the recursion limit
    stack = list(reversed(root_subdirs))
    while stack:
        if limit is not None and len(leaves) >= limit:
            break
        if cancel.cancelled:
            break
        directory = normalize_path(stack.pop())
        if directory in visited:
            continue
        visited.add(directory)
        entries = _scan_entries(directory)
        if entries is None:
            continue
        subdirs, has_images = _split_entries(entries, ignored_name)
        if has_images:
            leaves.append(directory)
        stack.extend(reversed(subdirs))

    if limit is not None:
        leaves = leaves[:limit]
    return leaves


def discover_leaf_folders(
    roots: Iterable[str | Path],
    ignored_folder_name: str = '',
    max_folders: int = MAX_LEAF_FOLDERS,
    should_cancel=None,
) -> DiscoveryResult:
    """
    Discover leaf folders under several roots, honoring the global cap.

    Args:
        roots: Root directories, in selection order
        ignored_folder_name: Folder name to skip below each root
        max_folders: Global leaf folder cap
        should_cancel: CancelToken or callable polled between directories

    Returns:
        DiscoveryResult with deduplicated leaves; ``truncated`` is set when
        the cap was reached
    """
    cancel: CancelToken = as_cancel_token(should_cancel)
    result = DiscoveryResult()
    seen: set[str] = set()

    for root in roots:
        if cancel.cancelled:
            result.cancelled = True
            break
        remaining = max_folders - len(result.leaf_folders)
        if remaining <= 0:
            result.truncated = True
            break
        # One extra leaf tells us whether the cap actually cut something off
        leaves = find_leaf_folders(root, ignored_folder_name, cancel, limit=remaining + 1)
        for leaf in leaves:
            if leaf in seen:
                continue
            if len(result.leaf_folders) >= max_folders:
                result.truncated = True
                break
            seen.add(leaf)
            result.leaf_folders.append(leaf)
        if result.truncated:
            break

    if cancel.cancelled:
        result.cancelled = True
    if result.truncated:
        _logger.warning(
            f"Discovery limited to {max_folders:,} folders to prevent memory issues"
        )
    return result


def list_image_files(folder: str | Path) -> list[str]:
    """
    List image files directly inside ``folder``.

    Returns:
        Absolute paths sorted by file name; empty if the folder is unreadable
    """
    folder_path = normalize_path(folder)
    entries = _scan_entries(folder_path)
    if entries is None:
        return []
    files = []
    for entry in entries:
        try:
            if entry.is_file() and is_image_file(entry.name):
                files.append(os.path.join(folder_path, entry.name))
        except OSError:
            continue
    return files


def collect_image_files(
    folders: Iterable[str | Path],
    should_cancel=None,
) -> list[str]:
    """
    Gather image files from leaf folders in folder order.

    Files reachable through more than one folder (symlinks) are listed once.
    """
    cancel = as_cancel_token(should_cancel)
    images: list[str] = []
    seen: set[str] = set()
    for folder in folders:
        if cancel.cancelled:
            break
        for path in list_image_files(folder):
            resolved = os.path.realpath(path)
            if resolved in seen:
                continue
            seen.add(resolved)
            images.append(path)
    return images


__all__ = [
    'normalize_path',
    'normalize_ignored_name',
    'is_image_file',
    'directory_contains_images',
    'find_leaf_folders',
    'discover_leaf_folders',
    'list_image_files',
    'collect_image_files',
]
