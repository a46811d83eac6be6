#!/usr/bin/env python3
"""
Group Mailbox Activity Report

Reports, for each listed group, how many members it really has (transitive,
deduplicated), how many of them have an Exchange Online mailbox and how
recently they signed in. Groups are processed concurrently; each one opens
its own Microsoft Graph session, and a failing group never stops the others.

Requirements:
- Azure AD App Registration with following API permissions (Application type):
  - Group.Read.All
  - User.Read.All
  - AuditLog.Read.All (sign-in activity)
  - MailboxSettings.Read (mailbox probe)

Usage:
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"

    python group_activity_report.py --groups "Sales Team,finance@contoso.com"
    python group_activity_report.py --groups-file groups.txt --max-workers 5 --html
"""
import argparse
import logging
import os
import sys
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional

from tenantkit.config import (
    ConfigError,
    dedupe_groups,
    generate_sample_config,
    load_config,
    read_groups_file,
)
from tenantkit.constants import DEFAULT_MAX_WORKERS, DEFAULT_OUTPUT_DIR, DEFAULT_POLL_INTERVAL
from tenantkit.dispatcher import BoundedDispatcher, DispatchError
from tenantkit.graph import graph_session
from tenantkit.group_activity import GroupActivityWorker
from tenantkit.models import ResultSet
from tenantkit.report import (
    build_report_email,
    render_html_report,
    send_report_email,
    write_html_report,
    write_report_files,
)
from tenantkit.utils import (
    ProgressTracker,
    generate_run_id,
    print_summary_table,
    setup_logging,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Group Mailbox Activity Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Using environment variables (client secret MUST be env var)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"
    python group_activity_report.py --groups "Sales Team,HR"

    # Group list from a file, 5 concurrent groups, HTML report mailed out
    python group_activity_report.py --groups-file groups.txt --max-workers 5 \\
        --html --email-to it-team@contoso.com

Security Note:
    Client secrets must be provided via MS365_CLIENT_SECRET environment
    variable to avoid exposing secrets in shell history or process listings.
        """
    )

    parser.add_argument('--groups',
                        help='Comma-separated group names, mail addresses or object IDs')
    parser.add_argument('--groups-file',
                        help='File with one group identifier per line')
    parser.add_argument('--tenant-id',
                        help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id',
                        help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    # Client secret is env-var only (no CLI arg to avoid shell history exposure)
    parser.add_argument('--max-workers', type=int,
                        help=f'Groups processed concurrently (default: {DEFAULT_MAX_WORKERS})')
    parser.add_argument('--poll-interval', type=float,
                        help=f'Seconds between completion checks (default: {DEFAULT_POLL_INTERVAL})')
    parser.add_argument('--output-dir', '-o',
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--html', action='store_true',
                        help='Also write an HTML report')
    parser.add_argument('--email-to',
                        help='Comma-separated recipients for the HTML report (needs smtp config)')
    parser.add_argument('--smtp-host',
                        help='SMTP server (or smtp.host in config)')
    parser.add_argument('--config',
                        help='YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    parser.add_argument('--log-level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def resolve_group_list(config: Dict[str, Any], groups_file: Optional[str]) -> List[str]:
    groups = list(config.get('groups') or [])
    if groups_file:
        groups.extend(read_groups_file(groups_file))

    unique = dedupe_groups(groups)
    if len(unique) < len(groups):
        logger.info(f"Removed {len(groups) - len(unique)} duplicate group identifiers")
    return unique


def run_report(groups: List[str], config: Dict[str, Any], client_secret: str) -> ResultSet:
    """Dispatch one worker per group and return the collected results."""
    session_factory = partial(
        graph_session, config['tenant_id'], config['client_id'], client_secret
    )

    with ProgressTracker("Group Activity", total_items=len(groups)) as tracker:
        dispatcher = BoundedDispatcher(
            GroupActivityWorker(),
            max_workers=int(config.get('max_workers', DEFAULT_MAX_WORKERS)),
            poll_interval=float(config.get('poll_interval', DEFAULT_POLL_INTERVAL)),
            resource_factory=session_factory,
            on_result=tracker.record_result,
            thread_name_prefix="group",
        )
        return dispatcher.run(groups)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return EXIT_OK

    try:
        config = load_config(args)
    except (ConfigError, FileNotFoundError) as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR

    log_level = 'DEBUG' if args.verbose else config.get('log_level', 'INFO')
    output_dir = config.get('output', DEFAULT_OUTPUT_DIR)
    setup_logging(log_level, output_dir)

    client_secret = os.environ.get('MS365_CLIENT_SECRET')
    if not config.get('tenant_id') or not config.get('client_id') or not client_secret:
        print("ERROR: Missing credentials. Please provide:")
        print("  --tenant-id or MS365_TENANT_ID environment variable")
        print("  --client-id or MS365_CLIENT_ID environment variable")
        print("  MS365_CLIENT_SECRET environment variable (required for security)")
        print("\nRun with --help for more information.")
        return EXIT_ERROR

    try:
        groups = resolve_group_list(config, args.groups_file)
    except OSError as e:
        print(f"ERROR: Could not read groups file: {e}")
        return EXIT_ERROR

    if not groups:
        print("No groups to process. Use --groups, --groups-file or 'groups' in config.")
        return EXIT_OK

    tenant_id = config['tenant_id']
    print(f"Tenant: {tenant_id[:8]}...{tenant_id[-4:]}")
    print(f"Groups: {len(groups)}  Workers: {config.get('max_workers', DEFAULT_MAX_WORKERS)}")
    print(f"Output: {output_dir}\n")

    run_id = generate_run_id()
    try:
        results = run_report(groups, config, client_secret)
    except DispatchError as e:
        logger.error(f"Dispatcher failed: {e}")
        print(f"ERROR: Could not run the report: {e}")
        return EXIT_ERROR

    print_summary_table(results)

    file_ts = datetime.now().strftime('%Y%m%d_%H%M%S')
    paths = write_report_files(results, output_dir, file_ts, run_id=run_id)

    if args.html or config.get('smtp', {}).get('recipients'):
        paths['html'] = write_html_report(results, output_dir, file_ts)

    smtp_settings = config.get('smtp', {})
    recipients = smtp_settings.get('recipients')
    if recipients and not len(results):
        logger.info("No groups were processed; report e-mail not sent")
    elif recipients:
        summary = results.summary()
        msg = build_report_email(
            render_html_report(results),
            subject=f"Group Mailbox Activity - {summary.succeeded}/{summary.total} groups",
            sender=smtp_settings.get('sender') or smtp_settings.get('username') or '',
            recipients=recipients,
            attachments=[p for p in (paths['csv'],) if os.path.exists(p)],
        )
        try:
            send_report_email(msg, smtp_settings)
        except (OSError, ValueError) as e:  # smtplib.SMTPException is an OSError
            logger.error(f"Failed to send report e-mail: {e}")

    print(f"\nOutput files in: {output_dir}")
    return EXIT_PARTIAL if results.failures() else EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
