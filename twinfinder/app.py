#!/usr/bin/env python3
"""
twinfinder - JSON API Server
============================
A local HTTP API for selecting folders, running scans in the background,
polling progress and reviewing similar-image results.

Run with: python -m twinfinder serve
Or: python -m twinfinder.app

Options:
    -q, --quiet     Quiet mode - suppress all output except errors
    -v, --verbose   Verbose mode - show all Flask request logs
    -p, --port      Port to run on (default: 5000)
    --host          Interface to bind (default: 127.0.0.1)
"""

import argparse
import atexit
import logging
from typing import Optional

from flask import Flask

from .api import api
from .api.orchestrator import ScanCoordinator
from .api.routes import EXTENSION_KEY
from .models import ScanMode
from .resources import MemoryMonitor, ThumbnailCache
from .scanner.extractors import create_extractor
from .user_config import get_user_config


# Logging levels
LOG_QUIET = 0    # No output except errors
LOG_MINIMAL = 1  # Startup info only (default)
LOG_VERBOSE = 2  # All Flask request logs

_logger = logging.getLogger(__name__)


def create_coordinator() -> ScanCoordinator:
    """Build a ScanCoordinator from the user configuration."""
    user_config = get_user_config()
    config = user_config.scan_config()

    extractor = None
    if config.mode is ScanMode.EMBEDDING or user_config.feature_extractor != 'thumbnail':
        try:
            extractor = create_extractor(user_config.feature_extractor)
        except ImportError as e:
            _logger.warning(
                f"Feature extractor '{user_config.feature_extractor}' unavailable ({e}); "
                f"enhanced scans will use the thumbnail extractor"
            )

    return ScanCoordinator(
        config,
        extractor=extractor,
        memory_monitor=MemoryMonitor(user_config.memory_limit_bytes),
        thumbnail_cache=ThumbnailCache(),
    )


def create_app(log_level: int = LOG_MINIMAL, coordinator: Optional[ScanCoordinator] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        log_level: Logging verbosity level
        coordinator: Scan coordinator to serve (built from the user
            configuration when omitted)

    Returns:
        Configured Flask app instance
    """
    app = Flask(__name__)

    # Configure logging based on level
    if log_level < LOG_VERBOSE:
        # Suppress Flask's default request logging
        log = logging.getLogger('werkzeug')
        log.setLevel(logging.ERROR if log_level == LOG_QUIET else logging.WARNING)

    app.extensions[EXTENSION_KEY] = coordinator or create_coordinator()

    # Register routes
    app.register_blueprint(api)

    return app


def suppress_flask_banner():
    """Suppress Flask's development server banner and startup messages."""
    try:
        import flask.cli
        flask.cli.show_server_banner = lambda *args, **kwargs: None
    except (ImportError, AttributeError):
        pass

    # Suppress werkzeug's startup log messages
    logging.getLogger('werkzeug').setLevel(logging.ERROR)


def main(argv=None):
    """Main entry point for the API server."""
    # Parse command line arguments
    parser = argparse.ArgumentParser(
        description='twinfinder - JSON API server',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Quiet mode - suppress all output except errors'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose mode - show all Flask request logs'
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        default=5000,
        help='Port to run the server on (default: 5000)'
    )
    parser.add_argument(
        '--host',
        default='127.0.0.1',
        help='Interface to bind (default: 127.0.0.1)'
    )

    args = parser.parse_args(argv)

    # Determine log level
    if args.quiet:
        log_level = LOG_QUIET
    elif args.verbose:
        log_level = LOG_VERBOSE
    else:
        log_level = LOG_MINIMAL

    logging.basicConfig(
        level=logging.ERROR if log_level == LOG_QUIET else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    url = f'http://{args.host}:{args.port}'

    # Print startup message (unless quiet)
    if log_level >= LOG_MINIMAL:
        print()
        print("  TWINFINDER - similar image finder")
        print()
        print(f"  Server running at: {url}")
        print(f"    Status: {url}/api/status")
        print()
        print("  Press Ctrl+C to stop")
        print()

    # Suppress Flask banner for non-verbose modes
    if log_level < LOG_VERBOSE:
        suppress_flask_banner()

    # Create the app
    app = create_app(log_level)
    coordinator = app.extensions[EXTENSION_KEY]

    # Stop any running scan on exit
    atexit.register(coordinator.shutdown, False)

    # Run Flask
    try:
        app.run(
            host=args.host,
            port=args.port,
            debug=False,
            threaded=True,
            use_reloader=False
        )
    except KeyboardInterrupt:
        if log_level >= LOG_MINIMAL:
            print("\n  Server stopped\n")


if __name__ == '__main__':
    main()
