"""
Tests for the bounded work dispatcher.

Covers:
- Completeness (one result per item, duplicates included)
- Failure isolation
- Concurrency bound
- FIFO behaviour with a single worker
- Empty input and non-positive worker counts
- Per-item resource factory lifetime
- Faults escaping the worker boundary
"""
import math
import os
import sys
import threading
import time
from contextlib import contextmanager
from unittest.mock import MagicMock, Mock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tenantkit.dispatcher import BoundedDispatcher, DispatchError, run_bounded
from tenantkit.models import ResultSet

# =============================================================================
# Helpers
# =============================================================================


class ConcurrencyProbe:
    """Worker that records how many invocations overlap."""

    def __init__(self, duration: float = 0.02, fail_for=()):
        self.duration = duration
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()
        self.running = 0
        self.max_running = 0
        self.calls = []

    def __call__(self, item):
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self.calls.append(item)
        try:
            time.sleep(self.duration)
            if item in self.fail_for:
                raise LookupError("not found")
            return {"item": item, "count": len(item)}
        finally:
            with self._lock:
                self.running -= 1


# =============================================================================
# Completeness
# =============================================================================

class TestCompleteness:
    """Every submitted item yields exactly one result."""

    @pytest.mark.parametrize("count,max_workers", [(0, 1), (1, 1), (7, 3), (25, 10), (4, 10)])
    def test_result_count_matches_input(self, count, max_workers):
        items = [f"g{i}" for i in range(count)]
        results = run_bounded(items, ConcurrencyProbe(duration=0.001), max_workers=max_workers)

        assert len(results) == count
        assert sorted(r.item for r in results) == sorted(items)

    def test_duplicate_identifiers_run_independently(self):
        probe = ConcurrencyProbe(duration=0.001)
        results = run_bounded(["A", "A", "B"], probe, max_workers=2)

        assert len(results) == 3
        assert [r.item for r in results].count("A") == 2
        assert probe.calls.count("A") == 2

    def test_accepts_generator_input(self):
        results = run_bounded((f"g{i}" for i in range(5)), lambda item: item.upper(), max_workers=2)
        assert sorted(r.payload for r in results) == ["G0", "G1", "G2", "G3", "G4"]

    def test_returns_result_set(self):
        results = run_bounded(["a"], lambda item: 1, max_workers=1)
        assert isinstance(results, ResultSet)


# =============================================================================
# Isolation
# =============================================================================

class TestFailureIsolation:
    """A failing item never suppresses the others."""

    def test_failures_recorded_per_item(self):
        items = [f"g{i}" for i in range(10)]
        failing = {"g2", "g5", "g9"}
        results = run_bounded(items, ConcurrencyProbe(duration=0.005, fail_for=failing), max_workers=3)

        assert sorted(r.item for r in results.failures()) == sorted(failing)
        assert sorted(r.item for r in results.successes()) == sorted(set(items) - failing)
        for failure in results.failures():
            assert failure.error == "not found"
            assert failure.error_type == "LookupError"

    def test_all_items_fail(self):
        def always_fails(item):
            raise RuntimeError(f"boom {item}")

        results = run_bounded(["a", "b", "c"], always_fails, max_workers=2)

        summary = results.summary()
        assert summary.total == 3
        assert summary.failed == 3
        assert {r.error for r in results} == {"boom a", "boom b", "boom c"}

    def test_exception_without_message_uses_type_name(self):
        def fails(item):
            raise ValueError()

        results = run_bounded(["x"], fails, max_workers=1)
        assert results.failures()[0].error == "ValueError"

    def test_system_exit_in_worker_is_captured(self):
        def exits(item):
            if item == "bad":
                sys.exit(3)
            return item

        results = run_bounded(["ok", "bad", "ok2"], exits, max_workers=2)

        assert len(results) == 3
        failure = results.failures()[0]
        assert failure.item == "bad"
        assert failure.error_type == "SystemExit"

    def test_example_scenario(self):
        """Five groups, two workers, g3 missing."""
        unit = 0.3
        probe = ConcurrencyProbe(duration=unit, fail_for={"g3"})

        started = time.monotonic()
        results = run_bounded(["g1", "g2", "g3", "g4", "g5"], probe, max_workers=2)
        elapsed = time.monotonic() - started

        assert len(results) == 5
        by_item = {r.item: r for r in results}
        assert by_item["g3"].ok is False
        assert by_item["g3"].error == "not found"
        assert all(by_item[g].ok for g in ("g1", "g2", "g4", "g5"))
        assert by_item["g1"].payload == {"item": "g1", "count": 2}
        assert probe.max_running <= 2
        # ceil(5/2) = 3 units, well short of 5 sequential units
        assert elapsed >= math.ceil(5 / 2) * unit * 0.95
        assert elapsed < 5 * unit


# =============================================================================
# Concurrency Bound
# =============================================================================

class TestConcurrencyBound:
    """No more than max_workers items run at once."""

    @pytest.mark.parametrize("max_workers", [1, 3, 10])
    def test_max_running_never_exceeds_limit(self, max_workers):
        probe = ConcurrencyProbe(duration=0.02)
        items = [f"g{i}" for i in range(max_workers * 3)]

        results = run_bounded(items, probe, max_workers=max_workers)

        assert len(results) == len(items)
        assert 1 <= probe.max_running <= max_workers

    def test_limit_is_reached_when_work_allows(self):
        probe = ConcurrencyProbe(duration=0.1)
        run_bounded([f"g{i}" for i in range(8)], probe, max_workers=4)
        assert probe.max_running == 4

    def test_terminates_within_bounded_time(self):
        probe = ConcurrencyProbe(duration=0.05)
        started = time.monotonic()
        run_bounded([f"g{i}" for i in range(20)], probe, max_workers=5)
        elapsed = time.monotonic() - started

        # 20 / 5 = 4 rounds of 0.05s; allow generous scheduling slack
        assert elapsed < 4 * 0.05 * 5


# =============================================================================
# Ordering
# =============================================================================

class TestOrdering:
    """FIFO start order; single worker means sequential completion."""

    def test_single_worker_completes_in_submission_order(self):
        items = [f"g{i}" for i in range(8)]
        completed = []

        dispatcher = BoundedDispatcher(
            ConcurrencyProbe(duration=0.001),
            max_workers=1,
            on_result=lambda r: completed.append(r.item),
        )
        results = dispatcher.run(items)

        assert completed == items
        assert [r.item for r in results.snapshot()] == items

    def test_start_order_is_fifo(self):
        probe = ConcurrencyProbe(duration=0.01)
        items = [f"g{i}" for i in range(6)]
        run_bounded(items, probe, max_workers=1)
        assert probe.calls == items


# =============================================================================
# Degenerate Input
# =============================================================================

class TestDegenerateInput:
    """Empty input or a non-positive limit means no work and no error."""

    def test_empty_input_never_calls_worker(self):
        worker = Mock()
        results = run_bounded([], worker, max_workers=5)

        assert len(results) == 0
        worker.assert_not_called()

    @pytest.mark.parametrize("max_workers", [0, -1])
    def test_non_positive_limit_never_calls_worker(self, max_workers):
        worker = Mock()
        results = run_bounded(["a", "b"], worker, max_workers=max_workers)

        assert len(results) == 0
        worker.assert_not_called()

    def test_non_positive_limit_creates_no_pool(self):
        with patch("tenantkit.dispatcher.ThreadPoolExecutor") as mock_pool:
            run_bounded(["a"], Mock(), max_workers=0)
        mock_pool.assert_not_called()

    @pytest.mark.parametrize("poll_interval", [0, -0.5])
    def test_non_positive_poll_interval_rejected(self, poll_interval):
        worker = Mock()
        with pytest.raises(ValueError, match="poll_interval"):
            BoundedDispatcher(worker, max_workers=2, poll_interval=poll_interval)
        worker.assert_not_called()


# =============================================================================
# Resource Factory
# =============================================================================

class TestResourceFactory:
    """Each item gets its own resource, released on every exit path."""

    def _tracking_factory(self):
        state = {"opened": 0, "closed": 0, "resources": []}
        lock = threading.Lock()

        @contextmanager
        def factory():
            resource = object()
            with lock:
                state["opened"] += 1
                state["resources"].append(resource)
            try:
                yield resource
            finally:
                with lock:
                    state["closed"] += 1

        return factory, state

    def test_one_resource_per_item(self):
        factory, state = self._tracking_factory()
        seen = []
        lock = threading.Lock()

        def worker(item, resource):
            with lock:
                seen.append(resource)
            return item

        results = run_bounded(["a", "b", "c", "a"], worker, max_workers=2, resource_factory=factory)

        assert len(results) == 4
        assert state["opened"] == 4
        assert state["closed"] == 4
        assert len({id(r) for r in seen}) == 4

    def test_resource_released_when_worker_fails(self):
        factory, state = self._tracking_factory()

        def worker(item, resource):
            raise ConnectionError("session dropped")

        results = run_bounded(["a", "b"], worker, max_workers=2, resource_factory=factory)

        assert results.summary().failed == 2
        assert state["opened"] == state["closed"] == 2

    def test_factory_failure_is_item_failure(self):
        def factory():
            raise PermissionError("bad secret")

        worker = Mock()
        results = run_bounded(["a", "b"], worker, max_workers=2, resource_factory=factory)

        assert results.summary().failed == 2
        assert {r.error for r in results} == {"bad secret"}
        worker.assert_not_called()


# =============================================================================
# Callbacks And Dispatcher Errors
# =============================================================================

class TestCallbacksAndErrors:
    """on_result behaviour and dispatcher-internal failures."""

    def test_on_result_called_once_per_item(self):
        seen = []
        dispatcher = BoundedDispatcher(lambda item: item, max_workers=3, on_result=seen.append)
        dispatcher.run(["a", "b", "c", "d"])
        assert sorted(r.item for r in seen) == ["a", "b", "c", "d"]

    def test_on_result_runs_in_dispatcher_thread(self):
        threads = set()
        dispatcher = BoundedDispatcher(
            lambda item: item,
            max_workers=3,
            on_result=lambda r: threads.add(threading.current_thread().name),
        )
        dispatcher.run(["a", "b", "c"])
        assert threads == {threading.current_thread().name}

    def test_failing_callback_does_not_lose_results(self):
        def bad_callback(result):
            raise KeyError("display")

        dispatcher = BoundedDispatcher(lambda item: item, max_workers=2, on_result=bad_callback)
        results = dispatcher.run(["a", "b", "c"])
        assert len(results) == 3

    def test_pool_creation_failure_raises_dispatch_error(self):
        with patch("tenantkit.dispatcher.ThreadPoolExecutor", side_effect=RuntimeError("no threads")):
            with pytest.raises(DispatchError, match="no threads"):
                run_bounded(["a"], Mock(), max_workers=2)

    def test_submit_failure_raises_dispatch_error(self):
        executor = MagicMock()
        executor.__enter__.return_value = executor
        executor.__exit__.return_value = False
        executor.submit.side_effect = RuntimeError("can't start new thread")

        with patch("tenantkit.dispatcher.ThreadPoolExecutor", return_value=executor):
            with pytest.raises(DispatchError, match="can't start new thread"):
                run_bounded(["a"], Mock(), max_workers=2)

    def test_durations_recorded(self):
        results = run_bounded(["a"], ConcurrencyProbe(duration=0.05), max_workers=1)
        assert results.snapshot()[0].duration_seconds >= 0.04
