"""
Data models for the group activity report.
"""
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .constants import STATUS_FAILURE, STATUS_SUCCESS


@dataclass(frozen=True)
class WorkResult:
    """
    Outcome of one dispatched work item.

    Exactly one of ``payload`` (on success) or ``error`` (on failure) is
    meaningful; ``ok`` tells which.
    """
    item: str
    ok: bool
    payload: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def success(cls, item: str, payload: Any, duration_seconds: float = 0.0) -> "WorkResult":
        return cls(item=item, ok=True, payload=payload, duration_seconds=duration_seconds)

    @classmethod
    def failure(cls, item: str, error: BaseException, duration_seconds: float = 0.0) -> "WorkResult":
        message = str(error) or type(error).__name__
        return cls(
            item=item,
            ok=False,
            error=message,
            error_type=type(error).__name__,
            duration_seconds=duration_seconds,
        )

    @property
    def status(self) -> str:
        return STATUS_SUCCESS if self.ok else STATUS_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        payload = self.payload
        if payload is not None and hasattr(payload, 'to_dict'):
            payload = payload.to_dict()
        return {
            'item': self.item,
            'status': self.status,
            'payload': payload,
            'error': self.error,
            'error_type': self.error_type,
            'duration_seconds': round(self.duration_seconds, 3),
        }


@dataclass
class RunSummary:
    """Processed/succeeded/failed counts for one batch."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


class ResultSet:
    """
    Append-only collection of WorkResults, safe for concurrent insertion.

    Iteration works on a snapshot, so readers never see a list that is being
    appended to. No ordering is guaranteed relative to submission order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: List[WorkResult] = []

    def append(self, result: WorkResult) -> None:
        with self._lock:
            self._results.append(result)

    def snapshot(self) -> List[WorkResult]:
        with self._lock:
            return list(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __iter__(self) -> Iterator[WorkResult]:
        return iter(self.snapshot())

    def successes(self) -> List[WorkResult]:
        return [r for r in self.snapshot() if r.ok]

    def failures(self) -> List[WorkResult]:
        return [r for r in self.snapshot() if not r.ok]

    def summary(self) -> RunSummary:
        results = self.snapshot()
        succeeded = sum(1 for r in results if r.ok)
        return RunSummary(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
        )


@dataclass
class GroupActivity:
    """
    Per-group activity aggregate produced by the group worker.

    Sign-in counters are exclusive buckets; every deduplicated member lands
    in exactly one of them.
    """
    group_id: str
    display_name: str
    category: str
    mail: Optional[str] = None
    member_count: int = 0
    nested_group_count: int = 0
    mailbox_count: int = 0
    no_mailbox_count: int = 0
    active_30_days: int = 0
    active_90_days: int = 0
    active_180_days: int = 0
    inactive_over_180_days: int = 0
    never_signed_in: int = 0
    sign_in_unavailable: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    def to_row(self) -> Dict[str, Any]:
        """Flat row for CSV output (metadata dropped)."""
        row = self.to_dict()
        row.pop('metadata', None)
        return row
