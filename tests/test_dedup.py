"""Tests for single-flight deduplication."""

import threading
import time

import pytest

from diskdive.dedup import SingleFlight


class TestSingleFlight:
    def test_sequential_calls_run_each_time(self):
        flights = SingleFlight()
        calls = []

        def fn():
            calls.append(1)
            return len(calls)

        assert flights.do("k", fn) == (1, False)
        assert flights.do("k", fn) == (2, False)

    def test_concurrent_calls_share_one_execution(self):
        flights = SingleFlight()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def fn():
            calls.append(1)
            started.set()
            release.wait(5)
            return {"value": 42}

        results = []

        def caller():
            results.append(flights.do("/path", fn))

        leader = threading.Thread(target=caller)
        leader.start()
        assert started.wait(5)

        waiters = [threading.Thread(target=caller) for _ in range(3)]
        for t in waiters:
            t.start()
        # Give the waiters time to attach
        time.sleep(0.1)
        release.set()
        for t in [leader, *waiters]:
            t.join(5)

        assert len(calls) == 1
        assert len(results) == 4
        values = [value for value, _ in results]
        assert all(v is values[0] for v in values)
        assert all(shared for _, shared in results)

    def test_error_propagates_to_waiters(self):
        flights = SingleFlight()
        started = threading.Event()
        release = threading.Event()

        def fn():
            started.set()
            release.wait(5)
            raise ValueError("boom")

        errors = []

        def caller():
            try:
                flights.do("k", fn)
            except ValueError as e:
                errors.append(e)

        leader = threading.Thread(target=caller)
        leader.start()
        assert started.wait(5)
        waiter = threading.Thread(target=caller)
        waiter.start()
        time.sleep(0.1)
        release.set()
        leader.join(5)
        waiter.join(5)

        assert len(errors) == 2
        assert errors[0] is errors[1]

    def test_key_cleared_after_completion(self):
        flights = SingleFlight()
        seen = []

        def fn():
            seen.append(flights.in_flight("k"))
            return None

        flights.do("k", fn)
        assert seen == [True]
        assert not flights.in_flight("k")

    def test_key_cleared_after_error(self):
        flights = SingleFlight()

        def fn():
            raise RuntimeError("fail")

        with pytest.raises(RuntimeError):
            flights.do("k", fn)
        assert not flights.in_flight("k")

    def test_distinct_keys_run_independently(self):
        flights = SingleFlight()
        assert flights.do("a", lambda: 1) == (1, False)
        assert flights.do("b", lambda: 2) == (2, False)
