"""
Tests for scripts/generate_activity_workbook.py.

Covers:
- split_results / sum_columns helpers
- generate_workbook sheets and totals, from a JSON file written by the report module
"""
import os
import sys

import pytest
from openpyxl import load_workbook

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scripts.generate_activity_workbook import (
    generate_workbook,
    split_results,
    sum_columns,
)
from tenantkit.models import GroupActivity, ResultSet, WorkResult
from tenantkit.report import write_report_files


def _activity(name, members, mailboxes, active):
    return GroupActivity(
        group_id=f"id-{name}", display_name=name, category="Microsoft365",
        member_count=members, mailbox_count=mailboxes,
        no_mailbox_count=members - mailboxes, active_30_days=active,
    )


@pytest.fixture
def report_json(tmp_path):
    results = ResultSet()
    results.append(WorkResult.success("Sales", _activity("Sales", 10, 8, 6)))
    results.append(WorkResult.success("HR", _activity("HR", 4, 4, 1)))
    results.append(WorkResult.failure("Ghost", LookupError("not found")))
    paths = write_report_files(results, str(tmp_path), "20260101_000000", run_id="run-1")
    return paths['json']


class TestHelpers:
    """Tests for split_results and sum_columns."""

    def test_split_results(self):
        records = [
            {'item': 'a', 'status': 'success', 'payload': {'member_count': 1}},
            {'item': 'b', 'status': 'failure', 'payload': None, 'error': 'boom'},
        ]
        successes, failures = split_results(records)
        assert successes == [{'member_count': 1}]
        assert [f['item'] for f in failures] == ['b']

    def test_sum_columns_treats_missing_as_zero(self):
        totals = sum_columns([{'member_count': 3, 'mailbox_count': None}, {'member_count': 2}])
        assert totals['member_count'] == 5
        assert totals['mailbox_count'] == 0
        assert totals['never_signed_in'] == 0


class TestGenerateWorkbook:
    """Tests for generate_workbook."""

    def test_sheets_and_totals(self, report_json, tmp_path, capsys):
        output = str(tmp_path / "activity.xlsx")
        totals = generate_workbook(report_json, output)

        assert totals['member_count'] == 14
        assert totals['mailbox_count'] == 12
        assert totals['active_30_days'] == 7

        wb = load_workbook(output)
        assert wb.sheetnames == ["Summary", "Groups", "Failures"]

        groups = wb["Groups"]
        assert groups.cell(row=1, column=1).value == "Group"
        assert [groups.cell(row=r, column=1).value for r in (2, 3)] == ["HR", "Sales"]
        assert groups.max_row == 3

        failures = wb["Failures"]
        assert failures.cell(row=2, column=1).value == "Ghost"
        assert failures.cell(row=2, column=3).value == "not found"

        summary = wb["Summary"]
        assert summary['A4'].value == "Groups processed"
        assert summary['B4'].value == 3
        assert summary['B6'].value == 1

        assert "Group Activity Workbook Generated" in capsys.readouterr().out

    def test_no_failures_sheet_when_all_succeed(self, tmp_path):
        results = ResultSet()
        results.append(WorkResult.success("HR", _activity("HR", 2, 1, 1)))
        paths = write_report_files(results, str(tmp_path), "ts")

        output = str(tmp_path / "ok.xlsx")
        generate_workbook(paths['json'], output)

        assert load_workbook(output).sheetnames == ["Summary", "Groups"]
