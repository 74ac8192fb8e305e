"""Authoritative collection of worklog entries."""

import logging
from datetime import date, datetime, timezone
from typing import Iterable

from worklog_reconciler.errors import ConsistencyError, InvalidTransition, ValidationError
from worklog_reconciler.ledger.models import (
    ENTRY_TRANSITIONS,
    REMOTE_STATUSES,
    EntrySource,
    EntryStatus,
    WorklogEntry,
    short_md5,
    utcnow,
)
from worklog_reconciler.utils.storage import StorageManager

logger = logging.getLogger(__name__)


def validate_entry_fields(issue_key: str, duration_seconds: int) -> None:
    """Reject malformed entry input.

    Raises:
        ValidationError: On an empty issue key or a non-positive duration.
    """
    if not issue_key or not issue_key.strip():
        raise ValidationError("Issue key must not be empty")
    if duration_seconds <= 0:
        raise ValidationError(f"Duration must be positive, got {duration_seconds}s")


def new_entry(
    issue_key: str,
    duration_seconds: int,
    started_at: datetime,
    comment: str = "",
    source: EntrySource = EntrySource.MANUAL,
    meeting_id: str | None = None,
) -> WorklogEntry:
    """Build a validated Draft entry with a deterministic id.

    Args:
        issue_key: Issue the time is logged against.
        duration_seconds: Logged time, must be positive.
        started_at: Start of the logged interval (aware datetime, stored in UTC).
        comment: Free-text comment.
        source: Where the entry came from.
        meeting_id: Originating meeting, if any.

    Returns:
        New Draft entry, not yet stored.

    Raises:
        ValidationError: On malformed input.
    """
    validate_entry_fields(issue_key, duration_seconds)
    if started_at.tzinfo is None:
        raise ValidationError("Start timestamp must be timezone aware")
    issue_key = issue_key.strip().upper()
    started_at = started_at.astimezone(timezone.utc)
    return WorklogEntry(
        id=short_md5(issue_key, started_at.isoformat()),
        issue_key=issue_key,
        duration_seconds=duration_seconds,
        started_at=started_at,
        comment=comment,
        source=source,
        meeting_id=meeting_id,
    )


def check_entry_invariants(entry: WorklogEntry) -> None:
    """Verify that remote_id is set exactly when the entry reached the remote.

    Raises:
        ConsistencyError: If the invariant does not hold.
    """
    has_remote_status = entry.status in REMOTE_STATUSES
    if has_remote_status != (entry.remote_id is not None):
        raise ConsistencyError(
            f"Entry {entry.id} has status {entry.status.value} "
            f"but remote id {entry.remote_id!r}"
        )


class WorklogStore:
    """Owns worklog entries and applies status transitions.

    Entries are never deleted once they reached the remote ledger; reverted
    entries stay as tombstones. When a storage manager is given, every
    mutation is persisted immediately.
    """

    def __init__(
        self,
        entries: Iterable[WorklogEntry] = (),
        storage: StorageManager | None = None,
    ) -> None:
        self._entries: dict[str, WorklogEntry] = {}
        for entry in entries:
            check_entry_invariants(entry)
            self._entries[entry.id] = entry
        self.storage = storage

    @classmethod
    def load(cls, storage: StorageManager) -> "WorklogStore":
        """Load the store from persistent storage."""
        return cls(storage.load_worklogs(), storage=storage)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def get(self, entry_id: str) -> WorklogEntry | None:
        return self._entries.get(entry_id)

    def require(self, entry_id: str) -> WorklogEntry:
        """Get an entry or raise ValidationError for unknown ids."""
        entry = self._entries.get(entry_id)
        if entry is None:
            raise ValidationError(f"Unknown worklog entry: {entry_id}")
        return entry

    def all(self) -> list[WorklogEntry]:
        """All entries ordered by start time, then id."""
        return sorted(self._entries.values(), key=lambda e: (e.started_at, e.id))

    def by_status(self, *statuses: EntryStatus) -> list[WorklogEntry]:
        return [entry for entry in self.all() if entry.status in statuses]

    def on_day(self, day: date) -> list[WorklogEntry]:
        """Entries whose start falls on the given UTC day."""
        return [entry for entry in self.all() if entry.started_at.date() == day]

    def logged_for_meeting(self, meeting_id: str, day: date) -> bool:
        """Check whether a meeting already has an entry on the given day."""
        return any(
            entry.meeting_id == meeting_id and entry.status != EntryStatus.REVERTED
            for entry in self.on_day(day)
        )

    def add(self, entry: WorklogEntry) -> WorklogEntry:
        """Add a new Draft entry.

        Raises:
            ValidationError: On malformed input or a duplicate id.
        """
        validate_entry_fields(entry.issue_key, entry.duration_seconds)
        if entry.status != EntryStatus.DRAFT or entry.remote_id is not None:
            raise ValidationError(f"New entry {entry.id} must be a draft without remote id")
        if entry.id in self._entries:
            raise ValidationError(f"Worklog entry {entry.id} already exists")

        self._entries[entry.id] = entry
        self._persist()
        logger.debug(f"Added draft {entry.id} for {entry.issue_key}")
        return entry

    def add_many(self, entries: Iterable[WorklogEntry]) -> list[WorklogEntry]:
        """Add several Draft entries, validating all of them first."""
        pending = list(entries)
        seen: set[str] = set()
        for entry in pending:
            validate_entry_fields(entry.issue_key, entry.duration_seconds)
            if entry.status != EntryStatus.DRAFT or entry.remote_id is not None:
                raise ValidationError(f"New entry {entry.id} must be a draft without remote id")
            if entry.id in self._entries or entry.id in seen:
                raise ValidationError(f"Worklog entry {entry.id} already exists")
            seen.add(entry.id)

        for entry in pending:
            self._entries[entry.id] = entry
        if pending:
            self._persist()
        return pending

    def transition(
        self,
        entry_id: str,
        target: EntryStatus,
        remote_id: str | None = None,
    ) -> WorklogEntry:
        """Move an entry to a new status.

        Args:
            entry_id: Entry to transition.
            target: Target status.
            remote_id: Remote identifier, required when pushing.

        Returns:
            The updated entry.

        Raises:
            ValidationError: If the entry is unknown or remote_id is missing.
            InvalidTransition: If the transition is not allowed.
        """
        entry = self.require(entry_id)
        if target not in ENTRY_TRANSITIONS[entry.status]:
            raise InvalidTransition(
                f"Cannot move entry {entry_id} from {entry.status.value} to {target.value}"
            )

        update: dict[str, object] = {"status": target, "last_error": None}
        if target == EntryStatus.PUSHED:
            if not remote_id:
                raise ValidationError(f"Pushing entry {entry_id} requires a remote id")
            update.update(remote_id=remote_id, pushed_at=utcnow())

        updated = entry.model_copy(update=update)
        check_entry_invariants(updated)
        self._entries[entry_id] = updated
        self._persist()
        return updated

    def record_error(self, entry_id: str, reason: str) -> WorklogEntry:
        """Attach a failure reason to an entry without changing its status."""
        updated = self.require(entry_id).model_copy(update={"last_error": reason})
        self._entries[entry_id] = updated
        self._persist()
        return updated

    def discard(self, entry_id: str) -> None:
        """Drop an entry that never reached the remote ledger.

        Raises:
            InvalidTransition: If the entry was pushed or reverted.
        """
        entry = self.require(entry_id)
        if entry.status in REMOTE_STATUSES:
            raise InvalidTransition(
                f"Entry {entry_id} is {entry.status.value} and cannot be discarded"
            )
        del self._entries[entry_id]
        self._persist()

    def _persist(self) -> None:
        if self.storage is not None:
            self.storage.save_worklogs(self.all())
