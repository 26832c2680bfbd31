"""
CLI workflow orchestration for twinfinder.

Provides the CLIOrchestrator class that coordinates the CLI scanning
workflow from argument parsing through final reporting and export.
"""

from __future__ import annotations

import logging
from concurrent.futures import TimeoutError as FutureTimeoutError

from ..api.orchestrator import ScanCoordinator
from ..resources import MemoryMonitor
from ..scanner.dependencies import HAS_TQDM, _tqdm_class
from ..scanner.extractors import create_extractor
from ..models import ScanMode
from ..user_config import get_user_config
from ..utils.exporters import export_results
from ..utils.formatters import format_time_estimate
from ..utils.validators import validate_scan_params
from .arg_parser import parse_arguments
from .reporting import print_similarity_report

# Seconds between checks for Ctrl+C while the scan runs
_POLL_INTERVAL = 0.25

# Exit code for an interrupted scan (128 + SIGINT)
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure logging for the CLI.

    Args:
        verbose: Enable verbose (DEBUG level) logging

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    return logging.getLogger(__name__)


class _ProgressBar:
    """Feeds 0-1 progress values into a tqdm bar scaled to 100."""

    def __init__(self):
        self._bar = _tqdm_class(total=100, desc="Scanning", unit="%",
                                bar_format='{l_bar}{bar}| {n:.0f}% [{elapsed}<{remaining}]')
        self._last = 0.0

    def __call__(self, value: float) -> None:
        step = value * 100 - self._last
        if step > 0:
            self._bar.update(step)
            self._last += step

    def close(self) -> None:
        self._bar.close()


class CLIOrchestrator:
    """
    Orchestrates the CLI scanning workflow.

    The scan itself runs on a ScanCoordinator worker so Ctrl+C can cancel
    it cooperatively instead of tearing down the worker pool.
    """

    def __init__(self, argv=None):
        """Initialize the orchestrator."""
        self.argv = argv
        self.logger = None
        self.args = None
        self.config = None
        self.extractor = None
        self.memory_monitor = None
        self.show_progress = False
        self.outcome = None

    def run(self) -> int:
        """
        Execute the complete CLI workflow.

        Returns:
            Exit code (0 for success, 1 for error, 130 when interrupted)

        Workflow phases:
        1. Setup & argument parsing
        2. Validation
        3. Configuration
        4. Scanning
        5. Reporting & export
        """
        # Phase 1: Setup
        exit_code = self._setup_phase()
        if exit_code != 0:
            return exit_code

        # Phase 2: Validation
        exit_code = self._validate_phase()
        if exit_code != 0:
            return exit_code

        # Phase 3: Configuration
        exit_code = self._configure_phase()
        if exit_code != 0:
            return exit_code

        # Phase 4: Scanning
        exit_code = self._scan_phase()
        if exit_code != 0:
            return exit_code

        # Phase 5: Reporting
        return self._report_phase()

    def _setup_phase(self) -> int:
        """
        Phase 1: Parse arguments and setup logging.

        Returns:
            0 for success, non-zero for error
        """
        self.args = parse_arguments(self.argv)
        self.logger = setup_logging(self.args.verbose)
        return 0

    def _validate_phase(self) -> int:
        """
        Phase 2: Validate arguments.

        Returns:
            0 for success, 1 for validation error
        """
        is_valid, error = validate_scan_params(
            [str(root) for root in self.args.roots],
            threshold=self.args.threshold,
            mode=self.args.mode,
            workers=self.args.workers,
            max_folders=self.args.max_folders,
        )
        if not is_valid:
            self.logger.error(error)
            return 1
        return 0

    def _configure_phase(self) -> int:
        """Phase 3: Resolve settings against the user configuration."""
        user_config = get_user_config()
        try:
            self.config = user_config.scan_config(
                similarity_threshold=self.args.threshold,
                mode=self.args.mode,
                top_level_only=self.args.top_level_only,
                ignored_folder_name=self.args.ignored_folder_name,
                max_leaf_folders=self.args.max_folders,
                max_batch_size=self.args.max_batch_size,
                workers=self.args.workers,
            )
        except ValueError as e:
            self.logger.error(f"Invalid configuration: {e}")
            return 1

        if self.config.mode is ScanMode.EMBEDDING:
            name = self.args.extractor or user_config.feature_extractor
            try:
                self.extractor = create_extractor(name)
            except ImportError as e:
                self.logger.error(f"Feature extractor '{name}' is unavailable: {e}")
                self.logger.info("Install with: pip install twinfinder[clip]")
                return 1
            except ValueError as e:
                self.logger.error(str(e))
                return 1
            self.logger.debug(f"Using feature extractor: {name}")

        self.memory_monitor = MemoryMonitor(user_config.memory_limit_bytes)
        self.show_progress = HAS_TQDM and not self.args.no_progress
        return 0

    def _scan_phase(self) -> int:
        """
        Phase 4: Discover folders and compare images.

        Returns:
            0 for success, 1 on failure, 130 when interrupted
        """
        self.logger.info(
            f"Scanning {len(self.args.roots)} folder tree(s) "
            f"({self.config.mode.label}, threshold={self.config.similarity_threshold})..."
        )
        coordinator = ScanCoordinator(
            self.config,
            extractor=self.extractor,
            memory_monitor=self.memory_monitor,
        )
        progress_bar = _ProgressBar() if self.show_progress else None

        try:
            future = coordinator.start_scan(
                roots=[str(root) for root in self.args.roots],
                on_progress=progress_bar,
            )
            while True:
                try:
                    self.outcome = future.result(timeout=_POLL_INTERVAL)
                    break
                except FutureTimeoutError:
                    continue
        except KeyboardInterrupt:
            if progress_bar is not None:
                progress_bar.close()
                progress_bar = None
            self.logger.info("Interrupted - cancelling scan...")
            coordinator.cancel()
            coordinator.wait()
            return EXIT_INTERRUPTED
        finally:
            if progress_bar is not None:
                progress_bar.close()
            coordinator.shutdown()

        if self.outcome.error:
            self.logger.error(f"Scan failed: {self.outcome.error}")
            return 1

        self.logger.info(
            f"Compared {self.outcome.images_processed:,} images "
            f"in {format_time_estimate(self.outcome.elapsed_seconds)}"
        )
        return 0

    def _report_phase(self) -> int:
        """Phase 5: Display report, handle exports."""
        print_similarity_report(self.outcome, self.config, self.logger)

        if self.args.export:
            try:
                export_results(
                    self.outcome.results,
                    self.outcome.rows,
                    self.args.export,
                    self.args.export_format,
                )
            except OSError as e:
                self.logger.error(f"Export failed: {e}")
                return 1
            self.logger.info(f"Results exported to: {self.args.export}")
        return 0


__all__ = ['CLIOrchestrator', 'setup_logging', 'EXIT_INTERRUPTED']
