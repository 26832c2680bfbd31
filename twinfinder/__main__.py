"""
Allow running the package with: python -m twinfinder

Subcommands:
    python -m twinfinder cli /path/to/photos   # Scan from the command line
    python -m twinfinder /path/to/photos       # Same as 'cli'
    python -m twinfinder serve                 # Start the JSON API server
    python -m twinfinder gui                   # Alias for 'serve'
    python -m twinfinder config                # Show resolved settings
    python -m twinfinder config --init         # Create example config file
"""

import sys


def _config_command(argv) -> int:
    from .scanner import has_heif_support
    from .user_config import get_user_config

    config = get_user_config()

    if '--init' in argv or '-i' in argv:
        # Create example config file
        if config.create_example_config():
            print("✓ Created example configuration file at:")
            print(f"  {config.config_file_path}")
            print("\nEdit this file to customize twinfinder settings.")
            return 0
        print("✗ Failed to create configuration file.")
        return 1

    # Show current config path and values
    print(f"Configuration file: {config.config_file_path}")
    if config.config_file_path.exists():
        print("Status: ✓ Found")
    else:
        print("Status: ✗ Not found (using defaults)")
        print("\nRun 'python -m twinfinder config --init' to create one.")

    print("\nCurrent settings:")
    print(f"  similarity_threshold: {config.similarity_threshold}")
    print(f"  scan_mode: {config.scan_mode.value}")
    print(f"  top_level_only: {config.top_level_only}")
    print(f"  ignored_folder_name: {config.ignored_folder_name!r}")
    print(f"  max_leaf_folders: {config.max_leaf_folders:,}")
    print(f"  max_batch_size: {config.max_batch_size:,}")
    print(f"  workers: {config.workers}")
    print(f"  memory_limit_mb: {config.memory_limit_bytes // (1024 * 1024):,}")
    print(f"  feature_extractor: {config.feature_extractor}")

    print(f"\nHEIC/HEIF decoding: {'available' if has_heif_support() else 'unavailable (pip install pillow-heif)'}")
    return 0


def main(argv=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    command = argv[0] if argv else None

    if command == 'cli':
        from .cli import main as cli_main
        return cli_main(argv[1:])
    if command in ('serve', 'gui'):
        from .app import main as server_main
        server_main(argv[1:])
        return 0
    if command == 'config':
        return _config_command(argv[1:])
    if command is None:
        print(__doc__.strip())
        return 0
    # Anything else is treated as CLI arguments
    from .cli import main as cli_main
    return cli_main(argv)


if __name__ == '__main__':
    sys.exit(main())
