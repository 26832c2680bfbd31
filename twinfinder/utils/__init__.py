"""
Utilities package for twinfinder.

Provides:
- formatters: Human-readable formatting for numbers, time, sizes and percentages
- validators: Input validation returning (is_valid, message) tuples
- exporters: Export scan results to CSV or TXT files
"""

from __future__ import annotations

# Import submodules for convenient access
from . import formatters
from . import validators
from . import exporters

# Export commonly used functions
from .formatters import format_number, format_time_estimate, format_size, format_percent
from .validators import (
    validate_path_in_directory,
    validate_directory,
    validate_directories,
    validate_threshold,
    validate_mode,
    validate_scan_params,
)
from .exporters import export_results, rows_to_csv

__all__ = [
    # Submodules
    'formatters',
    'validators',
    'exporters',
    # Formatters
    'format_number',
    'format_time_estimate',
    'format_size',
    'format_percent',
    # Validators
    'validate_path_in_directory',
    'validate_directory',
    'validate_directories',
    'validate_threshold',
    'validate_mode',
    'validate_scan_params',
    # Exporters
    'export_results',
    'rows_to_csv',
]
