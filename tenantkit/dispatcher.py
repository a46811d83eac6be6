"""
Bounded work dispatcher.

Runs a fixed list of independent work items through a thread pool with at
most ``max_workers`` executing at once. Every item produces exactly one
WorkResult: a worker that raises is recorded as a failure and the batch keeps
going. Only the dispatcher thread appends to the ResultSet; workers hand their
results back by value.

Usage:
    dispatcher = BoundedDispatcher(count_members, max_workers=5)
    results = dispatcher.run(["Sales", "Finance", "HR"])
    for result in results.failures():
        print(result.item, result.error)

    # Per-item resources (e.g. one Graph session per group)
    dispatcher = BoundedDispatcher(
        worker,
        max_workers=10,
        resource_factory=lambda: graph_session(tenant, client, secret),
    )
"""
import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, ContextManager, Deque, Dict, Iterable, Optional, Tuple

from .constants import DEFAULT_MAX_WORKERS, DEFAULT_POLL_INTERVAL
from .models import ResultSet, WorkResult

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Raised when the dispatcher itself cannot run (not for per-item failures)."""


class BoundedDispatcher:
    """
    Fan work items out across a bounded pool of worker threads.

    Args:
        worker: Callable taking one item (or ``(item, resource)`` when
            ``resource_factory`` is set) and returning a payload.
        max_workers: Concurrency limit. Zero or negative means "do nothing".
        poll_interval: Longest time (seconds) the control loop waits for a
            completion before re-checking the queue. Must be positive.
        resource_factory: Optional zero-argument callable returning a context
            manager. Entered once per item inside the worker thread and always
            exited, whatever the outcome.
        on_result: Optional callback invoked in the dispatcher thread after
            each result is recorded (progress display, live logging).
        thread_name_prefix: Name prefix for the pool's threads.
    """

    def __init__(
        self,
        worker: Callable[..., Any],
        max_workers: int = DEFAULT_MAX_WORKERS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        resource_factory: Optional[Callable[[], ContextManager[Any]]] = None,
        on_result: Optional[Callable[[WorkResult], None]] = None,
        thread_name_prefix: str = "dispatch",
    ):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self.worker = worker
        self.max_workers = max_workers
        self.poll_interval = poll_interval
        self.resource_factory = resource_factory
        self.on_result = on_result
        self.thread_name_prefix = thread_name_prefix

    def run(self, items: Iterable[str]) -> ResultSet:
        """
        Execute every item and return the collected results.

        Items start in FIFO order; completion order is whatever the workers
        produce. ``len(result) == len(items)`` when this returns.

        Raises:
            DispatchError: If the thread pool cannot be created or a worker
                thread cannot be started.
        """
        work_items = list(items)
        result_set = ResultSet()

        if self.max_workers <= 0 or not work_items:
            logger.debug(
                f"Nothing to dispatch (items={len(work_items)}, max_workers={self.max_workers})"
            )
            return result_set

        pending: Deque[str] = deque(work_items)
        in_flight: Dict[Future, Tuple[str, float]] = {}

        logger.info(f"Dispatching {len(work_items)} items with up to {self.max_workers} workers")

        try:
            executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix=self.thread_name_prefix,
            )
        except (RuntimeError, ValueError) as e:
            raise DispatchError(f"Failed to create worker pool: {e}") from e

        with executor:
            while pending or in_flight:
                while pending and len(in_flight) < self.max_workers:
                    item = pending.popleft()
                    try:
                        future = executor.submit(self._execute, item)
                    except RuntimeError as e:
                        raise DispatchError(f"Failed to start worker for {item}: {e}") from e
                    in_flight[future] = (item, time.monotonic())

                done, _ = wait(
                    list(in_flight),
                    timeout=self.poll_interval,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    item, started = in_flight.pop(future)
                    self._record(result_set, self._harvest(future, item, started))

        summary = result_set.summary()
        logger.info(
            f"Dispatch complete: {summary.total} processed, "
            f"{summary.succeeded} succeeded, {summary.failed} failed"
        )
        return result_set

    def _execute(self, item: str) -> WorkResult:
        """Body of one execution context. Never raises for worker errors."""
        started = time.monotonic()
        try:
            if self.resource_factory is None:
                payload = self.worker(item)
            else:
                with self.resource_factory() as resource:
                    payload = self.worker(item, resource)
        except Exception as e:
            return WorkResult.failure(item, e, time.monotonic() - started)
        return WorkResult.success(item, payload, time.monotonic() - started)

    def _harvest(self, future: Future, item: str, started: float) -> WorkResult:
        try:
            return future.result()
        except BaseException as e:
            # SystemExit and similar escape _execute's boundary and surface here
            logger.error(f"Worker for {item} terminated abnormally: {e!r}")
            return WorkResult.failure(item, e, time.monotonic() - started)

    def _record(self, result_set: ResultSet, result: WorkResult) -> None:
        result_set.append(result)
        if result.ok:
            logger.debug(f"Completed {result.item} in {result.duration_seconds:.2f}s")
        else:
            logger.warning(f"Failed {result.item}: {result.error}")

        if self.on_result:
            try:
                self.on_result(result)
            except Exception as e:
                logger.warning(f"Result callback failed for {result.item}: {e}")


def run_bounded(
    items: Iterable[str],
    worker: Callable[..., Any],
    max_workers: int = DEFAULT_MAX_WORKERS,
    **kwargs: Any,
) -> ResultSet:
    """Convenience wrapper: build a BoundedDispatcher and run it once."""
    return BoundedDispatcher(worker, max_workers=max_workers, **kwargs).run(items)
