"""
Argument parsing for the CLI interface.

Options left unset fall back to the user configuration (environment
variables, then ~/.twinfinder/config.json, then built-in defaults).
"""

from __future__ import annotations

import argparse
from pathlib import Path


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description='Find duplicate and visually similar images across folders',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ~/Pictures
      Basic scan (fast fingerprints) at the default threshold

  %(prog)s ~/Pictures /Volumes/Backup/Photos --threshold 0.95
      Strict matching across two folder trees

  %(prog)s ~/Pictures --mode enhanced --top-level-only
      Feature-vector clustering, only within each folder

  %(prog)s ~/Pictures --export results.csv
      Export matched pairs to CSV for external review
        """
    )

    # Positional arguments
    parser.add_argument(
        'roots',
        type=Path,
        nargs='+',
        help='Folders to scan for similar images'
    )

    # Scanning options
    parser.add_argument(
        '-t', '--threshold',
        type=float,
        default=None,
        help='Similarity threshold (0-1, higher=stricter)'
    )

    parser.add_argument(
        '-m', '--mode',
        choices=['basic', 'enhanced'],
        default=None,
        help='basic: 64-bit fingerprints; enhanced: feature-vector clustering'
    )

    parser.add_argument(
        '--top-level-only',
        action='store_true',
        default=None,
        help='Only compare images that live in the same folder'
    )

    parser.add_argument(
        '--ignore-folder',
        dest='ignored_folder_name',
        default=None,
        metavar='NAME',
        help='Skip subfolders with this name (case-insensitive). Use "" to disable'
    )

    parser.add_argument(
        '--max-folders',
        type=int,
        default=None,
        help='Stop folder discovery after this many folders'
    )

    parser.add_argument(
        '--max-batch-size',
        type=int,
        default=None,
        help='Maximum files compared in one pass (0 = unlimited)'
    )

    parser.add_argument(
        '--extractor',
        choices=['thumbnail', 'clip'],
        default=None,
        help='Feature extractor for enhanced scans (clip needs the "clip" extra)'
    )

    # Performance options
    parser.add_argument(
        '-w', '--workers',
        type=int,
        default=None,
        help='Number of parallel workers'
    )

    # Export options
    parser.add_argument(
        '-e', '--export',
        type=Path,
        help='Export results to file'
    )

    parser.add_argument(
        '--export-format',
        choices=['csv', 'txt'],
        default='csv',
        help='Export format. Default: csv'
    )

    # Output options
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable the progress bar (useful for piping output)'
    )

    return parser


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Examples:
        >>> args = parse_arguments(['/path/to/photos', '--threshold', '0.9'])
        >>> args.threshold
        0.9
    """
    parser = create_parser()
    return parser.parse_args(argv)


__all__ = [
    'create_parser',
    'parse_arguments',
]
