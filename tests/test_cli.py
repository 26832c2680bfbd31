"""
Tests for the command-line interface and the package entry point.
"""

import csv

import pytest

from twinfinder.__main__ import main as package_main
from twinfinder.cli import CLIOrchestrator, main as cli_main
from twinfinder.cli.arg_parser import parse_arguments


@pytest.fixture(autouse=True)
def isolated_config(temp_dir, monkeypatch):
    """Keep the CLI away from the real ~/.twinfinder directory."""
    from twinfinder.user_config import get_user_config

    for name in ('TWINFINDER_THRESHOLD', 'TWINFINDER_MODE', 'TWINFINDER_WORKERS'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('TWINFINDER_CONFIG_DIR', str(temp_dir / 'config'))
    get_user_config().reload()
    yield
    get_user_config().reload()


class TestParseArguments:
    """Test argument parsing."""

    def test_defaults_left_to_user_config(self, temp_dir):
        args = parse_arguments([str(temp_dir)])
        assert args.threshold is None
        assert args.mode is None
        assert args.top_level_only is None
        assert args.export_format == 'csv'

    def test_options(self, temp_dir):
        args = parse_arguments([
            str(temp_dir), '-t', '0.95', '-m', 'enhanced', '--top-level-only',
            '--ignore-folder', '', '--extractor', 'thumbnail', '-w', '2',
        ])
        assert args.threshold == 0.95
        assert args.mode == 'enhanced'
        assert args.top_level_only is True
        assert args.ignored_folder_name == ''
        assert args.workers == 2

    def test_roots_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])


class TestCLIOrchestrator:
    """Test the CLI workflow end to end."""

    def test_report(self, photo_tree, capsys):
        exit_code = CLIOrchestrator([photo_tree['root'], '-t', '0.9', '--no-progress']).run()
        out = capsys.readouterr().out

        assert exit_code == 0
        assert 'SIMILAR IMAGE REPORT' in out
        assert photo_tree['sunset_copy'] in out
        assert 'library/alpha -> library/beta: 1' in out

    def test_no_results(self, photo_tree, capsys):
        exit_code = cli_main([photo_tree['root'], '-t', '0.9', '--top-level-only', '--no-progress'])
        assert exit_code == 0
        assert 'No similar images found' in capsys.readouterr().out

    def test_enhanced_mode(self, photo_tree, capsys):
        exit_code = cli_main([photo_tree['root'], '-m', 'enhanced', '-t', '0.95', '--no-progress'])
        assert exit_code == 0
        assert 'Enhanced Scan' in capsys.readouterr().out

    def test_export(self, photo_tree, temp_dir):
        out = temp_dir / 'pairs.csv'
        exit_code = cli_main([photo_tree['root'], '-t', '0.9', '--no-progress', '-e', str(out)])

        assert exit_code == 0
        with open(out, newline='', encoding='utf-8') as f:
            records = list(csv.reader(f))
        assert records[0][0] == 'Reference'
        assert records[1][2] == '100.0%'

    def test_missing_directory(self, temp_dir):
        assert cli_main([str(temp_dir / 'missing'), '--no-progress']) == 1

    def test_invalid_threshold(self, photo_tree):
        assert cli_main([photo_tree['root'], '-t', '7', '--no-progress']) == 1


class TestPackageMain:
    """Test the python -m twinfinder dispatcher."""

    def test_cli_subcommand(self, photo_tree):
        assert package_main(['cli', photo_tree['root'], '--no-progress']) == 0

    def test_bare_paths_run_cli(self, photo_tree):
        assert package_main([photo_tree['root'], '--no-progress']) == 0

    def test_config_show(self, capsys):
        assert package_main(['config']) == 0
        out = capsys.readouterr().out
        assert 'similarity_threshold' in out
        assert 'Not found' in out
        assert 'HEIC/HEIF decoding' in out

    def test_config_init(self, temp_dir, capsys):
        assert package_main(['config', '--init']) == 0
        assert (temp_dir / 'config' / 'config.json').exists()

    def test_usage(self, capsys):
        assert package_main([]) == 0
        assert 'python -m twinfinder' in capsys.readouterr().out
