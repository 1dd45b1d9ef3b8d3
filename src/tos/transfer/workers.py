"""Bounded worker pool shared by the multipart orchestrators.

The pool runs ``min(task_num, len(tasks))`` daemon worker threads fed by a
scheduler thread through a bounded queue (capacity ``min(workers, 100)``).
Every finished task produces one :class:`PartOutcome` which the controller
consumes through :meth:`TransferWorkerPool.outcomes`.

Stopping comes from two sources: the caller's :class:`~tos.cancellation.CancelHook`
and the pool's own abort flag (set by the controller on fatal errors).
Workers and the scheduler check both between tasks, so a part already on
the wire finishes (or fails) before its worker exits.

**Usage:**

    pool = TransferWorkerPool(parts, upload_one, task_num=4, cancel_hook=hook)
    pool.start()
    for outcome in pool.outcomes():
        ...
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Sequence, TypeVar

from ..cancellation import CancelHook
from ..consts import FATAL_MULTIPART_STATUS, MAX_TASK_QUEUE
from ..events import DataTransferListener, DataTransferStatus, DataTransferType

__all__ = ["PartOutcome", "TransferWorkerPool", "TransferProgress", "drive_pool", "is_fatal_error"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLL_INTERVAL = 0.05

_STOP = object()


@dataclass
class PartOutcome(Generic[T]):
    task: T
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TransferWorkerPool(Generic[T]):
    """Run ``run(task)`` for every task on a bounded set of threads."""

    def __init__(
        self,
        tasks: Sequence[T],
        run: Callable[[T], Any],
        *,
        task_num: int,
        cancel_hook: Optional[CancelHook] = None,
        name: str = "tos-transfer",
    ) -> None:
        self._tasks = list(tasks)
        self._run = run
        self._cancel_hook = cancel_hook
        self._name = name
        self.worker_count = min(max(task_num, 1), len(self._tasks))
        self._tasks_queue: "Queue[Any]" = Queue(maxsize=max(1, min(self.worker_count, MAX_TASK_QUEUE)))
        self._outcomes: "Queue[PartOutcome[T]]" = Queue()
        self._abort = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def total(self) -> int:
        return len(self._tasks)

    def stopped(self) -> bool:
        if self._abort.is_set():
            return True
        return self._cancel_hook is not None and self._cancel_hook.is_cancelled()

    def abort(self) -> None:
        """Stop dispatching; workers exit after their current task."""
        self._abort.set()

    def start(self) -> None:
        for i in range(self.worker_count):
            thread = threading.Thread(target=self._worker_loop, daemon=True, name=f"{self._name}-worker-{i}")
            thread.start()
            self._threads.append(thread)
        scheduler = threading.Thread(target=self._scheduler_loop, daemon=True, name=f"{self._name}-scheduler")
        scheduler.start()
        self._threads.append(scheduler)
        logger.debug(
            "transfer pool started",
            extra={"workers": self.worker_count, "tasks": len(self._tasks), "pool": self._name},
        )

    def _put(self, item: Any) -> bool:
        while not self.stopped():
            try:
                self._tasks_queue.put(item, timeout=POLL_INTERVAL)
                return True
            except Full:
                continue
        return False

    def _scheduler_loop(self) -> None:
        for task in self._tasks:
            if not self._put(task):
                logger.debug("scheduler stopped before dispatching every task", extra={"pool": self._name})
                return
        for _ in range(self.worker_count):
            if not self._put(_STOP):
                return

    def _worker_loop(self) -> None:
        while not self.stopped():
            try:
                task = self._tasks_queue.get(timeout=POLL_INTERVAL)
            except Empty:
                continue
            if task is _STOP or self.stopped():
                break
            try:
                result = self._run(task)
            except Exception as exc:  # the controller decides what a failure means
                self._outcomes.put(PartOutcome(task, error=exc))
            else:
                self._outcomes.put(PartOutcome(task, result=result))

    def outcomes(self) -> Iterator[PartOutcome[T]]:
        """Yield outcomes until every task reported or the pool was stopped.

        Once stopped, outcomes already queued are still yielded, without
        waiting for parts that are in flight.
        """
        received = 0
        while received < len(self._tasks):
            if self.stopped():
                yield from self.drain()
                return
            try:
                outcome = self._outcomes.get(timeout=POLL_INTERVAL)
            except Empty:
                continue
            received += 1
            yield outcome

    def drain(self) -> Iterator[PartOutcome[T]]:
        """Yield the queued outcomes without blocking."""
        while True:
            try:
                yield self._outcomes.get_nowait()
            except Empty:
                return

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout=timeout)


class TransferProgress:
    """Aggregate per-part progress into one listener stream.

    Each part reports its own consumed count; a part that restarts after a
    retry reports a smaller count and the aggregate shrinks accordingly.
    """

    def __init__(self, listener: Optional[DataTransferListener], total: int, consumed: int = 0) -> None:
        self._listener = listener
        self.total = total
        self.consumed = consumed
        self._per_part: Dict[int, int] = {}
        self._lock = threading.Lock()

    def _post(self, kind: DataTransferType, rw_once: int = 0) -> None:
        if self._listener is None:
            return
        self._listener(
            DataTransferStatus(
                consumed_bytes=self.consumed,
                total_bytes=self.total,
                rw_once_bytes=rw_once,
                type=kind,
            )
        )

    def started(self) -> None:
        with self._lock:
            self._post(DataTransferType.STARTED)

    def succeeded(self) -> None:
        with self._lock:
            self._post(DataTransferType.SUCCEEDED)

    def failed(self) -> None:
        with self._lock:
            self._post(DataTransferType.FAILED)

    def advance(self, part_number: int, part_consumed: int) -> None:
        with self._lock:
            delta = part_consumed - self._per_part.get(part_number, 0)
            self._per_part[part_number] = part_consumed
            if delta == 0:
                return
            self.consumed += delta
            self._post(DataTransferType.RW, delta)

    def part_listener(self, part_number: int) -> Optional[DataTransferListener]:
        """Listener to attach to one part's body reader."""
        if self._listener is None:
            return None

        def _on_status(status: DataTransferStatus) -> None:
            if status.type is DataTransferType.RW:
                self.advance(part_number, status.consumed_bytes)

        return _on_status


def is_fatal_error(exc: BaseException) -> bool:
    """Server statuses after which a multipart transfer can never succeed."""
    return getattr(exc, "status_code", None) in FATAL_MULTIPART_STATUS


def drive_pool(
    pool: TransferWorkerPool[T],
    *,
    on_success: Callable[[T, Any], None],
    on_failed: Callable[[T, BaseException], None],
    on_fatal: Callable[[T, BaseException], None],
) -> List[BaseException]:
    """Start ``pool`` and dispatch its outcomes to the callbacks.

    Returns the non-fatal errors.  A fatal error stops the pool, runs
    ``on_fatal`` and is re-raised.  After a cancel the parts that were in
    flight are waited for, and the ones that completed still reach
    ``on_success``.  Worker threads are joined before returning.
    """
    errors: List[BaseException] = []
    pool.start()
    try:
        for outcome in pool.outcomes():
            if outcome.ok:
                on_success(outcome.task, outcome.result)
                continue
            error = outcome.error
            if is_fatal_error(error):
                pool.abort()
                logger.warning(
                    "fatal part error, aborting transfer",
                    extra={"status_code": getattr(error, "status_code", None), "error": str(error)},
                )
                on_fatal(outcome.task, error)
                raise error
            errors.append(error)
            on_failed(outcome.task, error)
        if pool.stopped():
            pool.join()
            for outcome in pool.drain():
                if outcome.ok:
                    on_success(outcome.task, outcome.result)
                else:
                    errors.append(outcome.error)
                    on_failed(outcome.task, outcome.error)
    finally:
        pool.abort()
        pool.join()
    return errors
