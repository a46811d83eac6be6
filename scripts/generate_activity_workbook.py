#!/usr/bin/env python3
"""
Generate a Group Activity Excel workbook from a gma_groups_*.json file

Creates an Excel workbook with:
- Summary tab: run counts and tenant-wide mailbox / sign-in totals
- Groups tab: one row per successfully processed group
- Failures tab: groups that could not be processed (if any)
"""
import json
import sys
from typing import Any, Dict, List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

GROUP_COLUMNS = [
    ('display_name', 'Group', 35),
    ('category', 'Type', 24),
    ('mail', 'Mail', 35),
    ('member_count', 'Members', 10),
    ('nested_group_count', 'Nested Groups', 14),
    ('mailbox_count', 'Mailboxes', 11),
    ('no_mailbox_count', 'No Mailbox', 11),
    ('active_30_days', '<= 30 days', 11),
    ('active_90_days', '31-90 days', 11),
    ('active_180_days', '91-180 days', 12),
    ('inactive_over_180_days', '> 180 days', 11),
    ('never_signed_in', 'Never', 9),
    ('sign_in_unavailable', 'Unknown', 10),
]

TOTAL_KEYS = [key for key, _, _ in GROUP_COLUMNS[3:]]


def load_results(filepath: str) -> Dict[str, Any]:
    """Load report JSON file."""
    with open(filepath) as f:
        return json.load(f)


def split_results(results: List[Dict]) -> tuple:
    """Return (success payloads, failure records)."""
    successes = [r['payload'] for r in results if r.get('status') == 'success' and r.get('payload')]
    failures = [r for r in results if r.get('status') != 'success']
    return successes, failures


def sum_columns(groups: List[Dict]) -> Dict[str, int]:
    return {key: sum(g.get(key, 0) or 0 for g in groups) for key in TOTAL_KEYS}


def generate_workbook(report_path: str, output_path: str) -> Dict[str, int]:
    report = load_results(report_path)
    groups, failures = split_results(report.get('results', []))
    groups.sort(key=lambda g: (g.get('display_name') or '').lower())
    totals = sum_columns(groups)

    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_font_white = Font(bold=True, color="FFFFFF")
    fail_fill = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    thin_border = Border(
        left=Side(style='thin'), right=Side(style='thin'),
        top=Side(style='thin'), bottom=Side(style='thin')
    )

    wb = Workbook()

    # Summary
    ws_summary = wb.active
    ws_summary.title = "Summary"
    ws_summary['A1'] = "Group Mailbox Activity"
    ws_summary['A1'].font = Font(bold=True, size=16)
    ws_summary['A2'] = f"Generated: {report.get('generated_at', '')}"

    summary = report.get('summary', {})
    summary_rows = [
        ("Groups processed", summary.get('total', len(groups) + len(failures))),
        ("Succeeded", summary.get('succeeded', len(groups))),
        ("Failed", summary.get('failed', len(failures))),
        (None, None),
    ]
    summary_rows.extend((label, totals[key]) for key, label, _ in GROUP_COLUMNS[3:])

    for row_idx, (label, value) in enumerate(summary_rows, start=4):
        if label is None:
            continue
        ws_summary.cell(row=row_idx, column=1, value=label).font = Font(bold=True)
        ws_summary.cell(row=row_idx, column=2, value=value)
    ws_summary.column_dimensions['A'].width = 30
    ws_summary.column_dimensions['B'].width = 15

    # Groups
    ws_groups = wb.create_sheet("Groups")
    for col_idx, (_, label, width) in enumerate(GROUP_COLUMNS, start=1):
        cell = ws_groups.cell(row=1, column=col_idx, value=label)
        cell.font = header_font_white
        cell.fill = header_fill
        cell.border = thin_border
        cell.alignment = Alignment(horizontal='center')
        ws_groups.column_dimensions[cell.column_letter].width = width

    for row_idx, group in enumerate(groups, start=2):
        for col_idx, (key, _, _) in enumerate(GROUP_COLUMNS, start=1):
            cell = ws_groups.cell(row=row_idx, column=col_idx, value=group.get(key))
            cell.border = thin_border

    ws_groups.freeze_panes = 'A2'
    if groups:
        last_col = ws_groups.cell(row=1, column=len(GROUP_COLUMNS)).column_letter
        ws_groups.auto_filter.ref = f"A1:{last_col}{len(groups) + 1}"

    # Failures
    if failures:
        ws_failures = wb.create_sheet("Failures")
        for col_idx, label in enumerate(["Group", "Error Type", "Message"], start=1):
            cell = ws_failures.cell(row=1, column=col_idx, value=label)
            cell.font = header_font_white
            cell.fill = header_fill
        for row_idx, failure in enumerate(failures, start=2):
            values = [failure.get('item'), failure.get('error_type'), failure.get('error')]
            for col_idx, value in enumerate(values, start=1):
                cell = ws_failures.cell(row=row_idx, column=col_idx, value=value)
                cell.fill = fail_fill
                cell.alignment = Alignment(wrap_text=True, vertical='top')
        for col, width in {'A': 35, 'B': 25, 'C': 80}.items():
            ws_failures.column_dimensions[col].width = width

    wb.save(output_path)

    print(f"Group Activity Workbook Generated: {output_path}")
    print("=" * 60)
    print(f"Groups: {len(groups)}  Failed: {len(failures)}")
    print(f"Members: {totals['member_count']:,}  Mailboxes: {totals['mailbox_count']:,}")
    return totals


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print("Usage: generate_activity_workbook.py <gma_groups_*.json> [output.xlsx]")
        sys.exit(1)
    report_path = sys.argv[1]
    output_path = sys.argv[2] if len(sys.argv) > 2 else report_path.rsplit('.', 1)[0] + '.xlsx'

    generate_workbook(report_path, output_path)
