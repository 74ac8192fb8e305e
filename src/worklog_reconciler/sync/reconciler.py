"""Push of staged worklogs to the remote ledger, and revert of pushed batches."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Protocol

from worklog_reconciler.config import ReconcilerConfig
from worklog_reconciler.errors import ConsistencyError, InvalidTransition, RemoteError
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import (
    BatchMember,
    BatchStatus,
    EntryStatus,
    HistoryBatch,
    WorklogEntry,
)
from worklog_reconciler.ledger.store import WorklogStore
from worklog_reconciler.utils.duration import format_hours

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class RemoteLedger(Protocol):
    """Remote system of record for worklogs."""

    def create_worklog(
        self,
        issue_key: str,
        duration_seconds: int,
        started_at: datetime,
        comment: str,
    ) -> str:
        """Create a worklog and return its remote id. Raises RemoteError."""
        ...

    def delete_worklog(self, issue_key: str, remote_id: str) -> None:
        """Delete a worklog. Raises RemoteError."""
        ...


@dataclass
class PushResult:
    """Results from a push operation."""

    succeeded: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    batch_id: str | None = None

    def __str__(self) -> str:
        return (
            f"Pushed: {len(self.succeeded)}, "
            f"Skipped: {len(self.skipped)}, "
            f"Failed: {len(self.failed)}, "
            f"Cancelled: {len(self.cancelled)}"
        )


@dataclass
class RevertResult:
    """Results from a revert operation."""

    batch_id: str
    status: BatchStatus
    reverted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Reverted: {len(self.reverted)}, "
            f"Failed: {len(self.failed)}, "
            f"Cancelled: {len(self.cancelled)}, "
            f"Batch: {self.status.value}"
        )


class PushReconciler:
    """Keeps local worklog state consistent with the remote ledger.

    Entries within one operation are processed sequentially in a fixed order.
    All operations on one reconciler are serialized, since the remote ledger
    offers no transaction spanning several calls.
    """

    def __init__(
        self,
        store: WorklogStore,
        ledger: HistoryLedger,
        remote: RemoteLedger,
        config: ReconcilerConfig | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            store: Worklog entries.
            ledger: History batches.
            remote: Remote ledger client.
            config: Push and revert settings.
        """
        self.store = store
        self.ledger = ledger
        self.remote = remote
        self.config = config or ReconcilerConfig()
        self.lock = threading.RLock()

    def push(
        self,
        entry_ids: Iterable[str],
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> PushResult:
        """Push staged entries and record the successful ones as a batch.

        A failure on one entry never aborts the others. An entry that already
        carries a remote id is skipped, so a retried push never creates a
        second remote worklog for it.

        Args:
            entry_ids: Entries to push, in push order.
            cancel: Checked between entries; stops before the next entry.
            progress: Called after each entry with (done, total, entry_id).

        Returns:
            Per-entry outcome and the id of the created batch, if any.
        """
        with self.lock:
            ordered = list(dict.fromkeys(entry_ids))
            result = PushResult()
            pushed: list[WorklogEntry] = []
            logger.info(f"Pushing {len(ordered)} worklogs")

            for index, entry_id in enumerate(ordered):
                if cancel is not None and cancel.is_set():
                    result.cancelled = ordered[index:]
                    logger.warning(f"Push cancelled, {len(result.cancelled)} worklogs left staged")
                    break

                entry = self._push_one(entry_id, result)
                if entry is not None:
                    pushed.append(entry)
                if progress is not None:
                    progress(index + 1, len(ordered), entry_id)

            if pushed:
                batch = self.ledger.append(HistoryBatch.create(self._snapshot(pushed)))
                result.batch_id = batch.id

            logger.info(f"Push complete: {result}")
            return result

    def revert(
        self,
        batch_id: str,
        confirmation: str,
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> RevertResult:
        """Delete a batch's worklogs from the remote ledger.

        The confirmation must equal the batch total rendered as canonical
        decimal hours (e.g. "12.5"). Members still pushed are retried, so a
        partially reverted batch can be reverted again with the same
        confirmation.

        Args:
            batch_id: Batch to revert.
            confirmation: Total hours typed by the user.
            cancel: Checked between members.
            progress: Called after each member with (done, total, entry_id).

        Returns:
            Per-member outcome and the resulting batch status.

        Raises:
            ValidationError: If the batch does not exist.
            InvalidTransition: If the batch is already fully reverted.
            ConsistencyError: On a confirmation mismatch or inconsistent
                local state. Nothing is mutated in either case.
        """
        with self.lock:
            batch = self.ledger.require(batch_id)
            if batch.status == BatchStatus.REVERTED:
                raise InvalidTransition(f"Batch {batch_id} is already reverted")

            expected = format_hours(batch.total_seconds)
            if confirmation != expected:
                raise ConsistencyError(
                    f"Confirmation {confirmation!r} does not match batch total {expected!r} hours"
                )
            self._check_batch(batch)

            pending = [
                member
                for member in batch.members
                if self.store.require(member.entry_id).status == EntryStatus.PUSHED
            ]
            result = RevertResult(batch_id=batch_id, status=batch.status)
            logger.info(f"Reverting {len(pending)} worklogs of batch {batch_id}")

            for index, member in enumerate(pending):
                if cancel is not None and cancel.is_set():
                    result.cancelled = [m.entry_id for m in pending[index:]]
                    logger.warning(f"Revert cancelled, {len(result.cancelled)} worklogs left pushed")
                    break

                self._revert_one(member, result)
                if progress is not None:
                    progress(index + 1, len(pending), member.entry_id)

            result.status = self._batch_status(batch)
            if result.status != batch.status:
                self.ledger.set_status(batch_id, result.status)

            logger.info(f"Revert of {batch_id} complete: {result}")
            return result

    def _push_one(self, entry_id: str, result: PushResult) -> WorklogEntry | None:
        entry = self.store.get(entry_id)
        if entry is None:
            result.failed[entry_id] = "Unknown worklog entry"
            return None

        if entry.remote_id is not None:
            logger.info(f"Skipping {entry_id}: already pushed as {entry.remote_id}")
            result.skipped[entry_id] = f"Already pushed as {entry.remote_id}"
            return None

        if entry.status != EntryStatus.STAGED:
            result.failed[entry_id] = f"Entry is {entry.status.value}, only staged entries can be pushed"
            return None

        limit_error = self._check_daily_limit(entry)
        if limit_error:
            logger.warning(f"Not pushing {entry_id}: {limit_error}")
            self.store.record_error(entry_id, limit_error)
            result.failed[entry_id] = limit_error
            return None

        try:
            remote_id = self.remote.create_worklog(
                entry.issue_key,
                entry.duration_seconds,
                entry.started_at,
                entry.comment,
            )
        except RemoteError as e:
            logger.error(f"Failed to push {entry_id} to {entry.issue_key}: {e}")
            self.store.record_error(entry_id, str(e))
            result.failed[entry_id] = str(e)
            return None

        try:
            updated = self.store.transition(entry_id, EntryStatus.PUSHED, remote_id=remote_id)
        except OSError as e:
            reason = f"Pushed as {remote_id} but the worklog could not be saved: {e}"
            logger.error(f"{entry_id}: {reason}", exc_info=True)
            result.failed[entry_id] = reason
            return None

        logger.info(
            f"Pushed {entry_id}: {format_hours(entry.duration_seconds)}h on "
            f"{entry.issue_key} -> {remote_id}"
        )
        result.succeeded.append(entry_id)
        return updated

    def _revert_one(self, member: BatchMember, result: RevertResult) -> None:
        try:
            self.remote.delete_worklog(member.issue_key, member.remote_id)
        except RemoteError as e:
            if not (e.not_found and self.config.treat_missing_as_deleted):
                logger.error(f"Failed to delete {member.remote_id} on {member.issue_key}: {e}")
                self.store.record_error(member.entry_id, str(e))
                result.failed[member.entry_id] = str(e)
                return
            logger.info(f"Worklog {member.remote_id} already missing remotely, marking reverted")

        self.store.transition(member.entry_id, EntryStatus.REVERTED)
        result.reverted.append(member.entry_id)
        logger.debug(f"Reverted {member.entry_id} ({member.remote_id} on {member.issue_key})")

    def _check_daily_limit(self, entry: WorklogEntry) -> str | None:
        limit = self.config.daily_hours_limit
        if limit is None:
            return None
        day = entry.started_at.date()
        logged = sum(
            other.duration_seconds
            for other in self.store.on_day(day)
            if other.status == EntryStatus.PUSHED
        )
        if logged + entry.duration_seconds > limit * 3600:
            return (
                f"Daily limit of {limit}h exceeded on {day}: "
                f"{format_hours(logged)}h already pushed"
            )
        return None

    def _check_batch(self, batch: HistoryBatch) -> None:
        batch.check_consistency()
        for member in batch.members:
            entry = self.store.get(member.entry_id)
            if entry is None:
                raise ConsistencyError(f"Batch {batch.id} references unknown entry {member.entry_id}")
            if entry.status not in (EntryStatus.PUSHED, EntryStatus.REVERTED):
                raise ConsistencyError(
                    f"Batch {batch.id} member {entry.id} is {entry.status.value}"
                )
            if entry.remote_id != member.remote_id:
                raise ConsistencyError(
                    f"Batch {batch.id} member {entry.id} has remote id {entry.remote_id!r}, "
                    f"expected {member.remote_id!r}"
                )

    def _batch_status(self, batch: HistoryBatch) -> BatchStatus:
        statuses = [self.store.require(m.entry_id).status for m in batch.members]
        reverted = sum(1 for status in statuses if status == EntryStatus.REVERTED)
        if reverted == len(statuses):
            return BatchStatus.REVERTED
        if reverted > 0:
            return BatchStatus.PARTIALLY_REVERTED
        return batch.status

    @staticmethod
    def _snapshot(entries: list[WorklogEntry]) -> list[BatchMember]:
        return [
            BatchMember(
                entry_id=entry.id,
                issue_key=entry.issue_key,
                remote_id=entry.remote_id,
                duration_seconds=entry.duration_seconds,
            )
            for entry in entries
        ]
