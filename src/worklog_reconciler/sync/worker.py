"""Background execution of reconciliation operations."""

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from worklog_reconciler.sync.reconciler import PushReconciler, PushResult, RevertResult
from worklog_reconciler.sync.recovery import RecoveryReconstructor

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Kind of message published by the worker."""

    PROGRESS = "progress"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True)
class Notification:
    """One-way message from the worker to the front end."""

    kind: NotificationKind
    operation: str
    done: int = 0
    total: int = 0
    entry_id: str | None = None
    result: Any = None
    error: str | None = None


class ReconciliationWorker:
    """Runs push, revert and reconstruct off the calling thread.

    Jobs run one at a time in submission order. Progress and outcomes are
    published as notifications that the front end drains; the front end never
    touches the store while a job is running.
    """

    def __init__(
        self,
        reconciler: PushReconciler,
        reconstructor: RecoveryReconstructor | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.reconstructor = reconstructor or RecoveryReconstructor(
            reconciler.store, reconciler.ledger, lock=reconciler.lock
        )
        self.notifications: queue.Queue[Notification] = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reconciler")
        self._cancel_events: set[threading.Event] = set()
        self._events_lock = threading.Lock()

    def submit_push(self, entry_ids: list[str]) -> "Future[PushResult]":
        """Queue a push of the given entries."""
        ids = list(entry_ids)
        return self._submit(
            "push",
            lambda cancel, progress: self.reconciler.push(ids, cancel=cancel, progress=progress),
        )

    def submit_revert(self, batch_id: str, confirmation: str) -> "Future[RevertResult]":
        """Queue a revert of a history batch."""
        return self._submit(
            "revert",
            lambda cancel, progress: self.reconciler.revert(
                batch_id, confirmation, cancel=cancel, progress=progress
            ),
        )

    def submit_reconstruct(self) -> Future:
        """Queue reconstruction of missing history batches."""
        return self._submit("reconstruct", lambda cancel, progress: self.reconstructor.reconstruct())

    def cancel(self) -> None:
        """Ask every queued or running job to stop before its next entry."""
        with self._events_lock:
            for event in self._cancel_events:
                event.set()
        logger.info("Cancellation requested")

    def drain(self) -> list[Notification]:
        """Take every notification published so far."""
        drained = []
        while True:
            try:
                drained.append(self.notifications.get_nowait())
            except queue.Empty:
                return drained

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs and optionally wait for running ones."""
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ReconciliationWorker":
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()

    def _submit(self, operation: str, job: Callable[[threading.Event, Callable], Any]) -> Future:
        cancel = threading.Event()
        with self._events_lock:
            self._cancel_events.add(cancel)

        def progress(done: int, total: int, entry_id: str) -> None:
            self.notifications.put(
                Notification(NotificationKind.PROGRESS, operation, done, total, entry_id)
            )

        def run() -> Any:
            try:
                result = job(cancel, progress)
            except Exception as e:
                logger.error(f"{operation} failed: {e}", exc_info=True)
                self.notifications.put(
                    Notification(NotificationKind.FAILED, operation, error=str(e))
                )
                raise
            finally:
                with self._events_lock:
                    self._cancel_events.discard(cancel)
            self.notifications.put(
                Notification(NotificationKind.FINISHED, operation, result=result)
            )
            return result

        return self._executor.submit(run)
