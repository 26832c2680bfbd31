"""
Input validation for twinfinder.

Validators return ``(is_valid, error_message)`` tuples so the CLI and the
JSON API can report problems without raising.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

from ..models import ScanMode


def validate_path_in_directory(filepath: str, base_directory: str) -> bool:
    """
    Validate that a file path is within the expected base directory.

    Examples:
        >>> validate_path_in_directory('/home/user/photos/img.jpg', '/home/user/photos')
        True
        >>> validate_path_in_directory('/etc/passwd', '/home/user/photos')
        False
    """
    try:
        file_resolved = Path(filepath).resolve()
        base_resolved = Path(base_directory).resolve()
        return str(file_resolved).startswith(str(base_resolved) + os.sep) or \
               str(file_resolved) == str(base_resolved)
    except (OSError, RuntimeError, ValueError):
        return False


def validate_directory(directory: str) -> tuple[bool, str]:
    """
    Validate that a directory exists and is readable.

    Examples:
        >>> validate_directory('/nonexistent/directory')
        (False, 'Directory not found: /nonexistent/directory')
    """
    if not directory:
        return False, "Directory path is required"

    directory = os.path.expanduser(directory)

    if not os.path.exists(directory):
        return False, f"Directory not found: {directory}"

    if not os.path.isdir(directory):
        return False, f"Path is not a directory: {directory}"

    if not os.access(directory, os.R_OK):
        return False, f"Cannot read directory (permission denied): {directory}"

    return True, ""


def validate_directories(directories: Iterable[str]) -> tuple[bool, str]:
    """Validate a non-empty list of directories; stops at the first problem."""
    directories = list(directories or [])
    if not directories:
        return False, "At least one directory is required"
    for directory in directories:
        is_valid, error = validate_directory(directory)
        if not is_valid:
            return False, error
    return True, ""


def validate_threshold(threshold: float) -> tuple[bool, str]:
    """
    Validate a similarity threshold (0-1).

    Examples:
        >>> validate_threshold(0.9)
        (True, '')
        >>> validate_threshold(90)
        (False, 'Threshold must be between 0 and 1')
    """
    if isinstance(threshold, bool):
        return False, "Threshold must be a number"
    try:
        threshold = float(threshold)
    except (ValueError, TypeError):
        return False, "Threshold must be a number"
    if not 0.0 <= threshold <= 1.0:
        return False, "Threshold must be between 0 and 1"
    return True, ""


def validate_mode(mode: str) -> tuple[bool, str]:
    try:
        ScanMode.parse(mode)
    except ValueError:
        return False, f"Unknown scan mode: {mode} (use 'basic' or 'enhanced')"
    return True, ""


def validate_scan_params(
    directories: Iterable[str],
    threshold: Optional[float] = None,
    mode: Optional[str] = None,
    workers: Optional[int] = None,
    max_folders: Optional[int] = None,
) -> tuple[bool, str]:
    """
    Validate all scan parameters.

    Args:
        directories: Root directories to scan
        threshold: Similarity threshold (optional)
        mode: Scan mode name (optional)
        workers: Number of worker threads (optional)
        max_folders: Leaf folder cap (optional)

    Returns:
        Tuple of (is_valid, error_message)
    """
    is_valid, error = validate_directories(directories)
    if not is_valid:
        return False, error

    if threshold is not None:
        is_valid, error = validate_threshold(threshold)
        if not is_valid:
            return False, error

    if mode is not None:
        is_valid, error = validate_mode(mode)
        if not is_valid:
            return False, error

    if workers is not None:
        try:
            workers = int(workers)
            if not 1 <= workers <= 32:
                return False, "Workers must be between 1 and 32"
        except (ValueError, TypeError):
            return False, "Workers must be an integer"

    if max_folders is not None:
        try:
            if int(max_folders) < 1:
                return False, "Folder limit must be at least 1"
        except (ValueError, TypeError):
            return False, "Folder limit must be an integer"

    return True, ""


__all__ = [
    'validate_path_in_directory',
    'validate_directory',
    'validate_directories',
    'validate_threshold',
    'validate_mode',
    'validate_scan_params',
]
