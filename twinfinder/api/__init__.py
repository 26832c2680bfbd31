"""
API package for twinfinder.

Provides the Flask routes and the scan orchestration they drive.
"""

from __future__ import annotations

from .orchestrator import (
    ScanCoordinator,
    ScanInProgressError,
    ScanOrchestrator,
    run_scan,
)
from .routes import api

__all__ = ['api', 'run_scan', 'ScanOrchestrator', 'ScanCoordinator', 'ScanInProgressError']
