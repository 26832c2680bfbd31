"""
Formatting utilities for twinfinder.

Provides human-readable formatting for numbers, time estimates, file sizes
and similarity percentages.
"""

from __future__ import annotations


def format_number(n: int) -> str:
    """
    Format large numbers with commas for readability.

    Examples:
        >>> format_number(1000)
        '1,000'
        >>> format_number(1234567)
        '1,234,567'
    """
    return f"{n:,}"


def format_time_estimate(seconds: float) -> str:
    """
    Format seconds into human-readable time estimate.

    Examples:
        >>> format_time_estimate(45)
        '45s'
        >>> format_time_estimate(150)
        '2m 30s'
        >>> format_time_estimate(3665)
        '1h 1m'
    """
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        return f"{int(seconds / 60)}m {int(seconds % 60)}s"
    else:
        hours = int(seconds / 3600)
        minutes = int((seconds % 3600) / 60)
        return f"{hours}h {minutes}m"


def format_size(size_bytes: float) -> str:
    """Format a byte count in human-readable form."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def format_percent(similarity: float) -> str:
    """
    Format a 0-1 similarity as a percentage with one decimal.

    Examples:
        >>> format_percent(0.96875)
        '96.9%'
        >>> format_percent(1.0)
        '100.0%'
    """
    return f"{similarity * 100:.1f}%"


__all__ = ['format_number', 'format_time_estimate', 'format_size', 'format_percent']
