"""
Report outputs for a finished ResultSet: CSV/JSON files, an HTML summary
and optional SMTP delivery.
"""
import html
import logging
import mimetypes
import os
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_SMTP_PORT
from .models import ResultSet
from .utils import get_timestamp, write_csv, write_json

logger = logging.getLogger(__name__)

CSV_FIELDNAMES = [
    'item',
    'status',
    'group_id',
    'display_name',
    'category',
    'mail',
    'member_count',
    'nested_group_count',
    'mailbox_count',
    'no_mailbox_count',
    'active_30_days',
    'active_90_days',
    'active_180_days',
    'inactive_over_180_days',
    'never_signed_in',
    'sign_in_unavailable',
    'error',
    'error_type',
]

HTML_COLUMNS = [
    ('display_name', 'Group'),
    ('category', 'Type'),
    ('member_count', 'Members'),
    ('mailbox_count', 'Mailboxes'),
    ('active_30_days', '&le; 30 days'),
    ('active_90_days', '31-90 days'),
    ('active_180_days', '91-180 days'),
    ('inactive_over_180_days', '&gt; 180 days'),
    ('never_signed_in', 'Never'),
]


def results_to_rows(result_set: ResultSet) -> List[Dict[str, Any]]:
    """Flatten results into CSV rows, successes first, each block sorted by item."""
    rows = []
    ordered = sorted(result_set, key=lambda r: (not r.ok, r.item.lower()))
    for result in ordered:
        row: Dict[str, Any] = {'item': result.item, 'status': result.status}
        if result.ok and result.payload is not None:
            row.update(result.payload.to_row())
        else:
            row['error'] = result.error
            row['error_type'] = result.error_type
        rows.append(row)
    return rows


def write_report_files(result_set: ResultSet, output_dir: str, file_ts: str,
                       run_id: Optional[str] = None) -> Dict[str, str]:
    """Write CSV and JSON outputs; returns {'csv': path, 'json': path}."""
    os.makedirs(output_dir, exist_ok=True)
    paths = {
        'csv': os.path.join(output_dir, f'gma_groups_{file_ts}.csv'),
        'json': os.path.join(output_dir, f'gma_groups_{file_ts}.json'),
    }

    write_csv(results_to_rows(result_set), paths['csv'], fieldnames=CSV_FIELDNAMES)
    write_json({
        'run_id': run_id,
        'generated_at': get_timestamp(),
        'summary': result_set.summary().to_dict(),
        'results': [r.to_dict() for r in result_set],
    }, paths['json'])
    return paths


def render_html_report(result_set: ResultSet, title: str = "Group Mailbox Activity",
                       generated_at: Optional[str] = None) -> str:
    """Render a standalone HTML page; every value is escaped."""
    summary = result_set.summary()
    generated_at = generated_at or get_timestamp()
    esc = html.escape

    header_cells = "".join(f"<th>{label}</th>" for _, label in HTML_COLUMNS)
    success_rows = []
    for result in sorted(result_set.successes(), key=lambda r: r.item.lower()):
        row = result.payload.to_row()
        cells = "".join(f"<td>{esc(str(row.get(key, '')))}</td>" for key, _ in HTML_COLUMNS)
        success_rows.append(f"<tr>{cells}</tr>")

    failure_rows = [
        f"<tr><td>{esc(r.item)}</td><td>{esc(r.error_type or '')}</td><td>{esc(r.error or '')}</td></tr>"
        for r in sorted(result_set.failures(), key=lambda r: r.item.lower())
    ]

    parts = [
        "<!DOCTYPE html>",
        "<html><head><meta charset=\"utf-8\">",
        f"<title>{esc(title)}</title>",
        "<style>",
        "body { font-family: Segoe UI, Arial, sans-serif; font-size: 13px; }",
        "table { border-collapse: collapse; margin-bottom: 16px; }",
        "th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: left; }",
        "th { background: #0078d4; color: #fff; }",
        ".failed { color: #a80000; }",
        "</style></head><body>",
        f"<h2>{esc(title)}</h2>",
        f"<p>Generated {esc(generated_at)}</p>",
        f"<p>Processed: {summary.total} &middot; Succeeded: {summary.succeeded} "
        f"&middot; <span class=\"failed\">Failed: {summary.failed}</span></p>",
    ]
    if success_rows:
        parts.append(f"<table><thead><tr>{header_cells}</tr></thead><tbody>")
        parts.extend(success_rows)
        parts.append("</tbody></table>")
    if failure_rows:
        parts.append("<h3 class=\"failed\">Failed groups</h3>")
        parts.append("<table><thead><tr><th>Group</th><th>Error type</th><th>Message</th></tr></thead><tbody>")
        parts.extend(failure_rows)
        parts.append("</tbody></table>")
    parts.append("</body></html>")
    return "\n".join(parts)


def write_html_report(result_set: ResultSet, output_dir: str, file_ts: str) -> str:
    path = os.path.join(output_dir, f'gma_groups_{file_ts}.html')
    with open(path, 'w', encoding='utf-8') as f:
        f.write(render_html_report(result_set))
    print(f"Wrote {path}")
    return path


def build_report_email(html_body: str, subject: str, sender: str, recipients: List[str],
                       attachments: Optional[List[str]] = None) -> EmailMessage:
    """Assemble the report message with HTML body and file attachments."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg.set_content("This report requires an HTML-capable mail client.")
    msg.add_alternative(html_body, subtype="html")

    for attachment in attachments or []:
        ctype, _ = mimetypes.guess_type(attachment)
        maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
        with open(attachment, "rb") as f:
            msg.add_attachment(
                f.read(),
                maintype=maintype,
                subtype=subtype,
                filename=Path(attachment).name,
            )
    return msg


def send_report_email(msg: EmailMessage, smtp_settings: Dict[str, Any]) -> None:
    """
    Send a message via SMTP.

    ``smtp_settings`` keys: host, port, starttls, username. The password is
    taken from GMA_SMTP_PASSWORD and never from config.
    """
    host = smtp_settings.get('host')
    if not host:
        raise ValueError("SMTP host is not configured")
    port = int(smtp_settings.get('port') or DEFAULT_SMTP_PORT)
    username = smtp_settings.get('username')
    password = os.environ.get('GMA_SMTP_PASSWORD')

    logger.info(f"Sending report to {msg['To']} via {host}:{port}")
    with smtplib.SMTP(host, port, timeout=60) as smtp:
        if smtp_settings.get('starttls', True):
            smtp.starttls()
        if username and password:
            smtp.login(username, password)
        smtp.send_message(msg)
    logger.info("Report e-mail sent")
