"""
Utility functions for the group activity report.

Logging Level Standards:
------------------------
- ERROR: Failures that stop the whole run
         "Failed to create worker pool: {e}"
- WARNING: Per-group failures, throttling retries
           "Failed Sales-Team: not found"
- INFO: Progress messages, counts
        "Dispatching 42 items with up to 10 workers"
- DEBUG: Per-member details that don't affect the group result
         "User {id} has no mailbox"
"""
import csv
import hashlib
import json
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from rich.progress import TaskID

    from .models import ResultSet

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (Exception,),
    predicate: Optional[Callable[[BaseException], bool]] = None,
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Works on plain and ``async`` functions alike (tenacity detects
    coroutines).

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1)
        max_wait: Maximum wait time between retries in seconds (default: 60)
        exceptions: Tuple of exception types to retry on (default: all Exceptions)
        predicate: Optional extra check; only exceptions for which it returns
            True are retried

    Example:
        @retry_with_backoff(max_attempts=5, predicate=is_throttling_error)
        async def fetch_group(client, group_id):
            ...
    """
    def should_retry(exc: BaseException) -> bool:
        if not isinstance(exc, exceptions):
            return False
        return predicate(exc) if predicate else True

    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)  # type: ignore[return-value]
    return decorator


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for a dispatch run with rich display.

    Falls back to simple print statements if stdout is not a TTY (e.g., when
    piping output).

    Usage:
        with ProgressTracker("Group Activity", total_items=len(groups)) as tracker:
            dispatcher = BoundedDispatcher(worker, on_result=tracker.record_result)
            results = dispatcher.run(groups)
    """

    def __init__(
        self,
        title: str,
        total_items: int = 0,
        show_progress: bool = True
    ):
        self.title = title
        self.total_items = total_items
        self.show_progress = show_progress and sys.stdout.isatty()

        self.completed_items = 0
        self.succeeded = 0
        self.failed = 0
        self.total_members = 0

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional["TaskID"] = None

    def __enter__(self):
        if self.show_progress:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(self.title, total=self.total_items or 1)
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.title} Starting")
            print(f"{'='*60}")
            if self.total_items:
                print(f"Groups: {self.total_items}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._progress is not None:
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def record_result(self, result) -> None:
        """Advance progress for one finished WorkResult."""
        self.completed_items += 1
        if result.ok:
            self.succeeded += 1
            self.total_members += getattr(result.payload, 'member_count', 0) or 0
        else:
            self.failed += 1

        if self._progress is not None:
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                advance=1,
                description=f"{self.title} [{result.item}]"
            )
        else:
            status = "ok" if result.ok else f"FAILED ({result.error})"
            print(f"  [{self.completed_items}/{self.total_items}] {result.item}: {status}")

    def _print_summary_rich(self):
        table = Table(title=f"{self.title} Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Processed", f"{self.completed_items:,}")
        table.add_row("Succeeded", f"{self.succeeded:,}")
        table.add_row("Failed", f"{self.failed:,}")
        table.add_row("Members", f"{self.total_members:,}")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        print(f"\n{'='*60}")
        print(f"{self.title} Complete")
        print(f"{'='*60}")
        print(f"  Processed: {self.completed_items:,}")
        print(f"  Succeeded: {self.succeeded:,}")
        print(f"  Failed:    {self.failed:,}")
        print(f"  Members:   {self.total_members:,}")
        print()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when Graph returns an auth error, so failure records can tell a
    permission problem apart from a missing group.
    """
    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


# Graph error codes that indicate auth/permission issues
M365_AUTH_ERROR_CODES = {'Authorization_RequestDenied', 'InvalidAuthenticationToken', 'Forbidden'}

# HTTP status codes that indicate auth/permission issues
AUTH_STATUS_CODES = {401, 403}


def is_auth_error(exc: Exception) -> bool:
    """
    True when ``exc`` means the app could not sign in or lacks a permission.

    Recognised:
    - azure-identity ClientAuthenticationError (bad secret, unknown tenant)
    - Graph ODataError / APIError with 401/403 status or auth error codes
    """
    exc_type_name = type(exc).__name__

    if exc_type_name == 'ClientAuthenticationError':
        return True

    if exc_type_name in ('ODataError', 'APIError'):
        status_code = getattr(exc, 'response_status_code', None)
        if status_code in AUTH_STATUS_CODES:
            return True
        error = getattr(exc, 'error', None)
        if error:
            error_code = getattr(error, 'code', '')
            return error_code in M365_AUTH_ERROR_CODES

    return False


def check_and_raise_auth_error(exc: Exception, context: str, provider: str) -> None:
    """
    Re-raise ``exc`` as AuthError when it is an auth failure; otherwise return
    so the caller can re-raise the original.
    """
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            provider=provider,
            original_error=exc
        ) from exc


def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """Stable 8-character SHA256 digest of an identifier, optionally prefixed."""
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_LOG_REDACT_PATTERNS = [
    # E-mail addresses / UPNs - keep the domain for context
    (re.compile(r'\b([A-Za-z0-9._%+\'-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b'),
     lambda m: f"user-{hash_sensitive_id(m.group(1).lower())}@{m.group(2)}"),
    # GUIDs (tenant, object and client IDs)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
]


def redact_log_message(message: str) -> str:
    """
    Redact object IDs and e-mail addresses from a log message.

    The same value always hashes the same way, so log lines can still be
    correlated with each other.
    """
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """Rewrites object IDs and addresses in both the message and its args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ('azure', 'httpx', 'httpcore', 'msal', 'kiota_http')


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger: stderr always, plus a redacted
    gma_log_<timestamp>.log under ``output_dir`` when given.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"gma_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs never carry raw IDs or addresses
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)


def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    # Owner read/write only: reports list group membership details
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2, default=str)
    except Exception:
        os.close(fd)
        raise
    print(f"Wrote {filepath}")


def write_csv(data: List[Dict], filepath: str, fieldnames: Optional[List[str]] = None) -> None:
    """Write data to CSV file with secure permissions."""
    if not data:
        return

    if not fieldnames:
        fieldnames = list(data[0].keys())

    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction='ignore')
        writer.writeheader()
        writer.writerows(data)
    print(f"Wrote {filepath}")


def print_summary_table(result_set: "ResultSet") -> None:
    """Print per-group results as a table to console."""
    results = sorted(result_set, key=lambda r: r.item.lower())
    if not results:
        print("No groups processed.")
        return

    headers = ["Group", "Category", "Members", "Mailboxes", "Active 30d", "Status"]
    rows = []

    for r in results:
        if r.ok:
            activity = r.payload
            rows.append([
                activity.display_name,
                activity.category,
                str(activity.member_count),
                str(activity.mailbox_count),
                str(activity.active_30_days),
                "ok",
            ])
        else:
            rows.append([r.item, "", "", "", "", f"FAILED: {r.error}"])

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print("\n" + header_line)
    print(separator)

    for row in rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))

    summary = result_set.summary()
    print(separator)
    print(f"Processed: {summary.total}  Succeeded: {summary.succeeded}  Failed: {summary.failed}")
    print()
