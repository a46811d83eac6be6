"""
Tests for result data models.
"""
import os
import sys
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tenantkit.models import GroupActivity, ResultSet, RunSummary, WorkResult


class TestWorkResult:
    """Tests for WorkResult constructors and serialization."""

    def test_success(self):
        result = WorkResult.success("Sales", {"count": 3}, 1.5)
        assert result.ok
        assert result.status == "success"
        assert result.payload == {"count": 3}
        assert result.error is None

    def test_failure_from_exception(self):
        result = WorkResult.failure("Sales", LookupError("not found"))
        assert not result.ok
        assert result.status == "failure"
        assert result.error == "not found"
        assert result.error_type == "LookupError"

    def test_to_dict_expands_payload(self):
        activity = GroupActivity(group_id="g-1", display_name="Sales", category="Security", member_count=4)
        data = WorkResult.success("Sales", activity, 0.12345).to_dict()

        assert data['status'] == "success"
        assert data['payload']['member_count'] == 4
        assert data['duration_seconds'] == 0.123


class TestResultSet:
    """Tests for the concurrent result collection."""

    def test_summary(self):
        results = ResultSet()
        results.append(WorkResult.success("a", 1))
        results.append(WorkResult.failure("b", RuntimeError("x")))
        results.append(WorkResult.success("c", 2))

        assert results.summary() == RunSummary(total=3, succeeded=2, failed=1)
        assert [r.item for r in results.successes()] == ["a", "c"]
        assert [r.item for r in results.failures()] == ["b"]

    def test_empty(self):
        results = ResultSet()
        assert len(results) == 0
        assert list(results) == []
        assert results.summary().to_dict() == {'total': 0, 'succeeded': 0, 'failed': 0}

    def test_concurrent_appends(self):
        results = ResultSet()

        def append_many(prefix):
            for i in range(500):
                results.append(WorkResult.success(f"{prefix}{i}", i))

        threads = [threading.Thread(target=append_many, args=(f"t{n}-",)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4000
        assert len({r.item for r in results}) == 4000

    def test_iteration_is_snapshot(self):
        results = ResultSet()
        results.append(WorkResult.success("a", 1))
        for _ in results:
            results.append(WorkResult.success("b", 2))
        assert len(results) == 2


class TestGroupActivity:
    """Tests for the group payload."""

    def test_to_row_drops_metadata(self):
        activity = GroupActivity(
            group_id="g-1",
            display_name="Sales",
            category="Microsoft365",
            metadata={'requested_as': 'sales@contoso.com'},
        )
        row = activity.to_row()
        assert 'metadata' not in row
        assert row['display_name'] == "Sales"
        assert activity.to_dict()['metadata'] == {'requested_as': 'sales@contoso.com'}
