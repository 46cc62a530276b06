"""Tests for CLI interface."""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from diskdive.cli import app
from diskdive.config import load_settings
from diskdive.models import DirEntry

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep settings, cache and log file inside the test directory."""
    monkeypatch.setenv("DISKDIVE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.delenv("DISKDIVE_ANALYZE_PATH", raising=False)
    with patch("diskdive.cli.load_settings") as load:
        load.side_effect = lambda: load_settings(tmp_path / "config.json")
        yield


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "root"
    (root / "photos").mkdir(parents=True)
    (root / "photos" / "img.raw").write_bytes(b"x" * 2000)
    (root / "notes.txt").write_bytes(b"x" * 10)
    return root


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "diskdive version" in result.stdout

    def test_version_short_flag(self):
        result = runner.invoke(app, ["-v"])
        assert result.exit_code == 0
        assert "diskdive version" in result.stdout


class TestHelp:
    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "explore" in result.stdout
        assert "report" in result.stdout

    def test_explore_help(self):
        result = runner.invoke(app, ["explore", "--help"])
        assert result.exit_code == 0
        assert "--no-cache" in result.stdout


class TestExplore:
    def test_launches_tui_for_directory(self, tree):
        with patch("diskdive.tui.run_tui") as run_tui, patch("diskdive.cli.start_prefetch") as prefetch:
            result = runner.invoke(app, ["explore", str(tree)])

        assert result.exit_code == 0
        assert run_tui.call_args[0][0] == str(tree.resolve())
        prefetch.return_value.cancel.assert_called_once()

    def test_default_is_overview(self):
        with patch("diskdive.tui.run_tui") as run_tui, patch("diskdive.cli.start_prefetch"):
            result = runner.invoke(app, [])

        assert result.exit_code == 0
        assert run_tui.call_args[0][0] is None

    def test_bare_path_explores(self, tree):
        with patch("diskdive.tui.run_tui") as run_tui, patch("diskdive.cli.start_prefetch"):
            result = runner.invoke(app, [str(tree)])

        assert result.exit_code == 0
        assert run_tui.call_args[0][0] == str(tree.resolve())

    def test_path_from_environment(self, tree, monkeypatch):
        monkeypatch.setenv("DISKDIVE_ANALYZE_PATH", str(tree))
        with patch("diskdive.tui.run_tui") as run_tui, patch("diskdive.cli.start_prefetch"):
            result = runner.invoke(app, ["explore"])

        assert result.exit_code == 0
        assert run_tui.call_args[0][0] == str(tree.resolve())

    def test_missing_directory(self, tmp_path):
        with patch("diskdive.tui.run_tui") as run_tui:
            result = runner.invoke(app, ["explore", str(tmp_path / "nope")])

        assert result.exit_code == 1
        assert "No such directory" in result.stdout
        run_tui.assert_not_called()

    def test_file_is_rejected(self, tree):
        result = runner.invoke(app, ["explore", str(tree / "notes.txt")])
        assert result.exit_code == 1
        assert "Not a directory" in result.stdout

    def test_no_cache_disables_persistence(self, tree):
        with patch("diskdive.tui.run_tui") as run_tui:
            result = runner.invoke(app, ["explore", str(tree), "--no-cache"])

        assert result.exit_code == 0
        assert run_tui.call_args.kwargs["settings"].persist_cache is False
        assert run_tui.call_args.kwargs["cache"].persist is False


class TestReport:
    def test_report(self, tree):
        result = runner.invoke(app, ["report", str(tree)])

        assert result.exit_code == 0
        assert "Largest Items" in result.stdout
        assert "photos" in result.stdout
        assert "Largest Files" in result.stdout

    def test_second_report_uses_cache(self, tree):
        runner.invoke(app, ["report", str(tree)])
        result = runner.invoke(app, ["report", str(tree)])

        assert result.exit_code == 0
        assert "Using cached scan" in result.stdout

    def test_missing_directory(self, tmp_path):
        result = runner.invoke(app, ["report", str(tmp_path / "nope")])
        assert result.exit_code == 1


class TestWarm:
    def test_stores_overview_sizes(self, tree):
        entries = [DirEntry(name="Home", path=str(tree), is_dir=True, size=-1)]
        with patch("diskdive.cli.create_overview_entries", return_value=entries):
            result = runner.invoke(app, ["warm", "--timeout", "10"])
        assert result.exit_code == 0
        assert "Stored 1 folder sizes" in result.stdout
        assert "Home" in result.stdout

    def test_refuses_without_persistence(self, monkeypatch):
        monkeypatch.setenv("DISKDIVE_NO_CACHE", "1")
        result = runner.invoke(app, ["warm"])
        assert result.exit_code == 1
        assert "nothing to warm" in result.stdout


class TestConfig:
    def test_shows_settings(self):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Configuration" in result.stdout
        assert "cache_dir" in result.stdout
