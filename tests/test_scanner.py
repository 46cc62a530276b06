"""Tests for the directory scanner."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from diskdive.errors import ScanError
from diskdive.scanner import ScanProgress, measure_size, scan_path


def _write(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


@pytest.fixture
def tree(tmp_path):
    """root/a (100 bytes), root/b (50 bytes, nested), root/c.txt (5 bytes)."""
    _write(tmp_path / "a" / "big.bin", 100)
    _write(tmp_path / "b" / "deep" / "mid.bin", 30)
    _write(tmp_path / "b" / "small.bin", 20)
    _write(tmp_path / "c.txt", 5)
    (tmp_path / "empty").mkdir()
    return tmp_path


class TestScanPath:
    def test_entries_sorted_by_size(self, tree):
        result = scan_path(str(tree))

        assert [e.name for e in result.entries] == ["a", "b", "c.txt"]
        assert [e.size for e in result.entries] == [100, 50, 5]
        assert result.total_size == 155
        assert result.total_files == 4

    def test_total_is_sum_of_entries(self, tree):
        result = scan_path(str(tree))
        assert result.total_size == sum(e.size for e in result.entries)

    def test_empty_children_excluded(self, tree):
        result = scan_path(str(tree))
        assert "empty" not in [e.name for e in result.entries]

    def test_directory_flags(self, tree):
        result = scan_path(str(tree))
        by_name = {e.name: e for e in result.entries}
        assert by_name["a"].is_dir
        assert not by_name["c.txt"].is_dir
        assert by_name["a"].last_access is not None

    def test_large_files_top_k(self, tree):
        result = scan_path(str(tree), large_file_count=2)

        assert [f.size for f in result.large_files] == [100, 30]
        assert result.large_files[0].name == "big.bin"
        assert result.large_files[1].path == str(tree / "b" / "deep" / "mid.bin")

    def test_large_files_disabled(self, tree):
        result = scan_path(str(tree), large_file_count=0)
        assert result.large_files == []

    def test_single_worker_matches_pool(self, tree):
        serial = scan_path(str(tree), max_workers=1)
        pooled = scan_path(str(tree), max_workers=8)
        assert serial.entries == pooled.entries
        assert serial.large_files == pooled.large_files

    def test_symlinks_not_followed(self, tree, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside")
        _write(outside / "huge.bin", 1000)
        os.symlink(outside, tree / "link")

        result = scan_path(str(tree))
        assert result.total_size == 155
        assert "link" not in [e.name for e in result.entries]

    def test_progress_counters(self, tree):
        progress = ScanProgress()
        scan_path(str(tree), progress)

        files, dirs, size = progress.snapshot()
        assert files == 4
        assert size == 155
        assert dirs >= 4
        assert progress.current_path

    def test_unreadable_child_is_skipped(self, tree):
        real_scandir = os.scandir
        blocked = str(tree / "b" / "deep")

        def scandir(path):
            if str(path) == blocked:
                raise PermissionError(13, "Permission denied", path)
            return real_scandir(path)

        with patch("diskdive.scanner.os.scandir", side_effect=scandir):
            result = scan_path(str(tree))

        by_name = {e.name: e for e in result.entries}
        assert by_name["b"].size == 20
        assert result.total_size == 125

    def test_missing_root(self, tmp_path):
        with pytest.raises(ScanError) as exc_info:
            scan_path(str(tmp_path / "missing"))
        assert exc_info.value.path == str(tmp_path / "missing")

    def test_root_is_file(self, tree):
        with pytest.raises(ScanError):
            scan_path(str(tree / "c.txt"))

    def test_cancelled_scan_stops_early(self, tree):
        progress = ScanProgress()
        progress.cancel()

        result = scan_path(str(tree), progress)
        assert progress.cancelled
        # Root-level files are still listed; subtrees are not walked
        assert [e.name for e in result.entries] == ["c.txt"]


class TestMeasureSize:
    def test_directory(self, tree):
        assert measure_size(str(tree)) == 155

    def test_file(self, tree):
        assert measure_size(str(tree / "c.txt")) == 5

    def test_missing(self, tmp_path):
        with pytest.raises(ScanError):
            measure_size(str(tmp_path / "nope"))
