"""
Report formatting and display for the CLI interface.

Prints scan results grouped by reference image, followed by the folders
that share the most cross-folder matches.
"""

from __future__ import annotations

import logging

from ..models import ComparisonResult, ScanConfig, ScanOutcome
from ..scanner.assembler import folder_display_name, ordered_folder_pairs
from ..utils.formatters import format_number, format_percent

# Folder relationships listed at the end of the report
MAX_FOLDER_PAIRS_SHOWN = 10


def _print_section_header(title: str) -> None:
    """Print a section header with divider lines."""
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)


def _print_result(group_number: int, result: ComparisonResult) -> None:
    matches = result.matches
    print(f"\nGroup {group_number} ({len(matches) + 1} files):")
    print(f"  [REF]   {result.reference}")
    for similar in matches:
        print(f"  {format_percent(similar.similarity):>7} {similar.path}")


def print_similarity_report(
    outcome: ScanOutcome,
    config: ScanConfig,
    logger: logging.Logger,
) -> None:
    """
    Print a report of the similar images found.

    Args:
        outcome: Finished scan
        config: Settings the scan ran with
        logger: Logger for warnings collected during the scan
    """
    print("\n" + "=" * 70)
    print(f"SIMILAR IMAGE REPORT ({config.mode.label}, "
          f"threshold {format_percent(config.similarity_threshold)})")
    print("=" * 70)

    for warning in outcome.warnings:
        logger.warning(warning)

    cross_folder = sum(1 for row in outcome.rows if row.is_cross_folder)
    print(f"\nImages compared: {format_number(outcome.images_processed)} "
          f"of {format_number(outcome.images_found)}")
    print(f"Similar pairs found: {format_number(len(outcome.rows))} "
          f"in {format_number(len(outcome.results))} groups "
          f"({format_number(cross_folder)} across folders)")

    if not outcome.results:
        print("\nNo similar images found at this threshold.")
        print("=" * 70)
        return

    _print_section_header("GROUPS")
    for i, result in enumerate(outcome.results, 1):
        _print_result(i, result)

    pairs = ordered_folder_pairs(outcome.rows)
    if pairs:
        _print_section_header("FOLDER RELATIONSHIPS (reference -> match)")
        for pair in pairs[:MAX_FOLDER_PAIRS_SHOWN]:
            print(f"  {folder_display_name(pair.reference)} -> "
                  f"{folder_display_name(pair.match)}: {format_number(pair.count)}")
        if len(pairs) > MAX_FOLDER_PAIRS_SHOWN:
            print(f"  ... and {format_number(len(pairs) - MAX_FOLDER_PAIRS_SHOWN)} more")

    print("\n" + "=" * 70)


__all__ = ['print_similarity_report']
