"""
Export functionality for twinfinder.

Writes scan results as CSV (one row per matched pair) or as a plain-text
report grouped by reference image.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable, TextIO

from ..models import ComparisonResult, TableRow
from ..scanner.assembler import sort_rows
from .formatters import format_percent

CSV_HEADER = ['Reference', 'Match', 'Similarity', 'Cross-Folder', 'Reference Folder', 'Match Folder']


def _export_csv(rows: Iterable[TableRow], file_handle: TextIO) -> None:
    """
    Export table rows to CSV.

    Fields containing a comma, quote or line break are quoted, with embedded
    quotes doubled.
    """
    writer = csv.writer(file_handle, lineterminator='\n')
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow([
            row.reference,
            row.similar,
            format_percent(row.percent),
            'Yes' if row.is_cross_folder else 'No',
            row.reference_folder,
            row.similar_folder,
        ])


def _export_txt(results: Iterable[ComparisonResult], file_handle: TextIO) -> None:
    """Export results grouped by reference image."""
    file_handle.write("SIMILAR IMAGE REPORT\n")
    file_handle.write("=" * 70 + "\n")
    for i, result in enumerate(results, 1):
        file_handle.write(f"\nGroup {i}:\n")
        file_handle.write(f"  [REF]   {result.reference}\n")
        for similar in result.matches:
            file_handle.write(f"  {format_percent(similar.similarity):>7} {similar.path}\n")


def rows_to_csv(rows: Iterable[TableRow]) -> str:
    """Render rows as CSV text, ordered by descending similarity."""
    buffer = io.StringIO()
    _export_csv(sort_rows(rows), buffer)
    return buffer.getvalue()


def export_results(
    results: list[ComparisonResult],
    rows: list[TableRow],
    output_path: Path,
    export_format: str = 'csv',
) -> None:
    """
    Export scan results to a file.

    Args:
        results: Hierarchical results (used by the TXT report)
        rows: Flattened rows (used by the CSV export)
        output_path: Path to output file
        export_format: 'csv' or 'txt'

    Raises:
        ValueError: If export_format is not 'txt' or 'csv'
        OSError: If file cannot be written
    """
    if export_format not in ('txt', 'csv'):
        raise ValueError(f"Unsupported export format: {export_format}. Use 'txt' or 'csv'.")

    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        if export_format == 'txt':
            _export_txt(results, f)
        else:
            _export_csv(sort_rows(rows), f)


__all__ = ['export_results', 'rows_to_csv', 'CSV_HEADER']
