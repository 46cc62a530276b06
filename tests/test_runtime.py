"""Tests for background command execution."""

import os
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from diskdive.cache import ResultCache
from diskdive.config import Settings
from diskdive.dedup import SingleFlight
from diskdive.errors import ScanError
from diskdive.messages import (
    DeleteCommand,
    DeleteFinished,
    OpenCommand,
    OpenFinished,
    OverviewProbeCommand,
    OverviewSizeMeasured,
    QuitCommand,
    SaveOverviewSizeCommand,
    SaveScanCommand,
    ScanCommand,
    ScanFinished,
    TickCommand,
)
from diskdive.models import DeleteOutcome, ScanResult
from diskdive.runtime import CommandRunner, failure_message


@pytest.fixture
def subject(tmp_path):
    path = tmp_path / "subject"
    path.mkdir()
    (path / "f.bin").write_bytes(b"x" * 10)
    return str(path)


@pytest.fixture
def cache(tmp_path):
    return ResultCache(cache_dir=tmp_path / "cache")


def _wait_for_waiter(flights, key):
    """Block until a second request has attached to the call for `key`."""
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        with flights._lock:
            call = flights._calls.get(key)
            if call is not None and call.waiters:
                return
        time.sleep(0.01)
    raise AssertionError(f"nothing joined {key}")


class TestIsBackground:
    def test_classification(self, cache):
        runner = CommandRunner(cache)
        assert runner.is_background(ScanCommand(path="/"))
        assert runner.is_background(SaveOverviewSizeCommand(path="/", size=1))
        assert not runner.is_background(TickCommand())
        assert not runner.is_background(QuitCommand())


class TestScan:
    def test_scans_and_reports_mtime(self, cache, subject):
        runner = CommandRunner(cache)
        message = runner.run(ScanCommand(path=subject))

        assert isinstance(message, ScanFinished)
        assert message.error is None
        assert message.result.total_size == 10
        assert message.mod_time == os.stat(subject).st_mtime
        assert not message.from_cache

    def test_served_from_disk_cache(self, cache, subject):
        entry = cache.put(subject, ScanResult(total_size=99))
        cache.save_to_disk(subject, entry)
        scan = MagicMock()
        runner = CommandRunner(cache, scan=scan)

        message = runner.run(ScanCommand(path=subject))

        assert message.from_cache
        assert message.result.total_size == 99
        scan.assert_not_called()

    def test_missing_path(self, cache, tmp_path):
        runner = CommandRunner(cache)
        message = runner.run(ScanCommand(path=str(tmp_path / "missing")))

        assert message.result is None
        assert message.error

    def test_scan_error(self, cache, subject):
        runner = CommandRunner(cache, scan=MagicMock(side_effect=ScanError(subject, "denied")))
        message = runner.run(ScanCommand(path=subject))
        assert message.error == "denied"

    def test_uses_settings(self, cache, subject):
        scan = MagicMock(return_value=ScanResult())
        settings = Settings(large_file_count=5, scan_workers=2)
        runner = CommandRunner(cache, settings=settings, scan=scan)

        runner.run(ScanCommand(path=subject))

        assert scan.call_args.kwargs == {"large_file_count": 5, "max_workers": 2}

    def test_goes_through_single_flight(self, cache, subject):
        flights = MagicMock(spec=SingleFlight)
        flights.do.return_value = ((123.0, ScanResult(total_size=3)), True)
        runner = CommandRunner(cache, flights=flights)

        message = runner.run(ScanCommand(path=subject, generation=2))

        assert flights.do.call_args[0][0] == (subject, 2)
        assert message.result.total_size == 3
        assert message.mod_time == 123.0
        assert message.generation == 2

    def test_joined_scan_keeps_mtime_from_before_walk(self, cache, subject):
        started = threading.Event()
        release = threading.Event()

        def slow_scan(path, progress, **kwargs):
            started.set()
            release.wait(5)
            return ScanResult(total_size=10)

        runner = CommandRunner(cache, scan=slow_scan)
        before = os.stat(subject).st_mtime
        messages = []

        def request():
            messages.append(runner.run(ScanCommand(path=subject)))

        first = threading.Thread(target=request)
        first.start()
        assert started.wait(5)

        # The tree changes while the walk is under way
        (Path(subject) / "late.bin").write_bytes(b"x")
        os.utime(subject, (before + 10, before + 10))

        second = threading.Thread(target=request)
        second.start()
        _wait_for_waiter(runner.flights, (subject, 0))
        release.set()
        first.join(5)
        second.join(5)

        assert [m.mod_time for m in messages] == [before, before]
        cache.put(subject, messages[1].result, messages[1].mod_time)
        assert cache.get(subject) == (None, False)

    def test_new_generation_does_not_join_older_scan(self, cache, subject):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def scan(path, progress, **kwargs):
            calls.append(path)
            if len(calls) == 1:
                started.set()
                release.wait(5)
            return ScanResult(total_size=len(calls))

        runner = CommandRunner(cache, scan=scan)
        old = []
        worker = threading.Thread(target=lambda: old.append(runner.run(ScanCommand(path=subject))))
        worker.start()
        assert started.wait(5)

        fresh = runner.run(ScanCommand(path=subject, generation=1))
        release.set()
        worker.join(5)

        assert len(calls) == 2
        assert fresh.generation == 1
        assert old[0].generation == 0

    def test_unexpected_error_becomes_message(self, cache, subject):
        runner = CommandRunner(cache, scan=MagicMock(side_effect=ValueError("bad data")))
        message = runner.run(ScanCommand(path=subject))

        assert isinstance(message, ScanFinished)
        assert message.error == "bad data"


class TestProbe:
    def test_success(self, cache):
        runner = CommandRunner(cache, measure=MagicMock(return_value=123))
        message = runner.run(OverviewProbeCommand(path="/x", index=2))
        assert message == OverviewSizeMeasured(path="/x", index=2, size=123)

    def test_failure(self, cache):
        runner = CommandRunner(cache, measure=MagicMock(side_effect=ScanError("/x", "gone")))
        message = runner.run(OverviewProbeCommand(path="/x", index=0))
        assert message.error == "gone"


class TestDeleteAndOpen:
    def test_delete(self, cache):
        outcome = DeleteOutcome(removed=["/x"], item_count=1)
        delete = MagicMock(return_value=outcome)
        runner = CommandRunner(cache, settings=Settings(trash_timeout=7), delete=delete)

        message = runner.run(DeleteCommand(paths=("/x",)))

        assert message == DeleteFinished(outcome=outcome, paths=("/x",))
        assert delete.call_args.kwargs == {"timeout": 7}

    def test_delete_crash_reported(self, cache):
        runner = CommandRunner(cache, delete=MagicMock(side_effect=RuntimeError("boom")))
        message = runner.run(DeleteCommand(paths=("/x",)))

        assert message.outcome.errors == ["boom"]
        assert message.outcome.removed == []

    def test_open(self, cache):
        open_ = MagicMock(return_value=["failed"])
        runner = CommandRunner(cache, open_=open_)

        message = runner.run(OpenCommand(paths=("/a", "/b"), reveal=True))

        assert message == OpenFinished(errors=("failed",), reveal=True)
        assert open_.call_args[0][0] == ["/a", "/b"]


class TestSaves:
    def test_save_scan(self, cache, subject):
        runner = CommandRunner(cache)
        entry = cache.put(subject, ScanResult(total_size=1, total_files=1))

        assert runner.run(SaveScanCommand(path=subject, entry=entry)) is None
        assert cache.load_from_disk(subject) is not None

    def test_save_overview_size(self, cache):
        runner = CommandRunner(cache)
        assert runner.run(SaveOverviewSizeCommand(path="/x", size=5)) is None
        assert cache.load_overview_size("/x") == 5


class TestFailureMessage:
    def test_save_commands_have_none(self):
        assert failure_message(SaveOverviewSizeCommand(path="/x", size=1), "e") is None

    def test_open(self):
        assert failure_message(OpenCommand(paths=("/x",)), "e") == OpenFinished(errors=("e",))
