"""Pydantic models for worklog entries, history batches and their inputs."""

import hashlib
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from worklog_reconciler.errors import ConsistencyError


def short_md5(*parts: object) -> str:
    """Build an 8 character identifier from the md5 of the joined parts."""
    joined = "-".join(str(part) for part in parts)
    return hashlib.md5(joined.encode("utf-8")).hexdigest()[:8]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class EntryStatus(str, Enum):
    """Lifecycle status of a worklog entry."""

    DRAFT = "draft"
    STAGED = "staged"
    PUSHED = "pushed"
    REVERTED = "reverted"


class EntrySource(str, Enum):
    """Where a worklog entry came from."""

    MEETING = "meeting"
    CODING_SESSION = "coding_session"
    MANUAL = "manual"


class BatchStatus(str, Enum):
    """Revert status of a history batch."""

    ACTIVE = "active"
    PARTIALLY_REVERTED = "partially_reverted"
    REVERTED = "reverted"


# Every EntryStatus member must appear as a key.
ENTRY_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.DRAFT: frozenset({EntryStatus.STAGED}),
    EntryStatus.STAGED: frozenset({EntryStatus.DRAFT, EntryStatus.PUSHED}),
    EntryStatus.PUSHED: frozenset({EntryStatus.REVERTED}),
    EntryStatus.REVERTED: frozenset(),
}

REMOTE_STATUSES = frozenset({EntryStatus.PUSHED, EntryStatus.REVERTED})


class WorklogEntry(BaseModel):
    """A single unit of logged time tied to one issue key."""

    model_config = ConfigDict(frozen=True)

    id: str
    issue_key: str
    duration_seconds: int
    started_at: datetime
    comment: str = ""
    source: EntrySource = EntrySource.MANUAL
    status: EntryStatus = EntryStatus.DRAFT
    remote_id: str | None = None
    meeting_id: str | None = None
    last_error: str | None = None
    pushed_at: datetime | None = None

    @model_validator(mode="after")
    def check_remote_id(self) -> "WorklogEntry":
        if (self.status in REMOTE_STATUSES) != (self.remote_id is not None):
            raise ValueError(
                f"Entry {self.id} has status {self.status.value} but remote id {self.remote_id!r}"
            )
        return self

    @property
    def ended_at(self) -> datetime:
        """End of the logged interval."""
        return self.started_at + timedelta(seconds=self.duration_seconds)

    @property
    def has_remote(self) -> bool:
        """True if the entry exists on the remote ledger."""
        return self.status in REMOTE_STATUSES

    @property
    def duration_hours(self) -> float:
        return self.duration_seconds / 3600


class BatchMember(BaseModel):
    """Snapshot of one pushed entry, captured at push time."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    issue_key: str
    remote_id: str
    duration_seconds: int


class HistoryBatch(BaseModel):
    """Auditable record of one successful push."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    members: tuple[BatchMember, ...]
    total_seconds: int
    status: BatchStatus = BatchStatus.ACTIVE
    recovered: bool = False

    @classmethod
    def create(
        cls,
        members: list[BatchMember],
        created_at: datetime | None = None,
        recovered: bool = False,
    ) -> "HistoryBatch":
        """Create a batch whose total is computed from its members.

        Args:
            members: Ordered member snapshots.
            created_at: Creation time. Defaults to now.
            recovered: True if synthesized by recovery.

        Returns:
            New active history batch.
        """
        created_at = created_at or utcnow()
        entry_ids = ",".join(member.entry_id for member in members)
        return cls(
            id=short_md5(created_at.isoformat(), entry_ids),
            created_at=created_at,
            members=tuple(members),
            total_seconds=sum(member.duration_seconds for member in members),
            recovered=recovered,
        )

    @property
    def entry_ids(self) -> list[str]:
        return [member.entry_id for member in self.members]

    def check_consistency(self) -> None:
        """Verify the stored total equals the member sum.

        Raises:
            ConsistencyError: If the total does not match.
        """
        member_sum = sum(member.duration_seconds for member in self.members)
        if member_sum != self.total_seconds:
            raise ConsistencyError(
                f"Batch {self.id} total {self.total_seconds}s does not match "
                f"member sum {member_sum}s"
            )


class MeetingRecord(BaseModel):
    """Calendar meeting, optionally linked to an issue."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    description: str = ""
    start: AwareDatetime
    end: AwareDatetime
    linked_issue_key: str | None = None

    @property
    def duration_seconds(self) -> int:
        return int((self.end - self.start).total_seconds())


class CodingSession(BaseModel):
    """A coding session derived from repository activity."""

    model_config = ConfigDict(frozen=True)

    id: str
    start: AwareDatetime
    end: AwareDatetime
    repo: str
    description: str = ""
    issue_keys: list[str] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> int:
        return int((self.end - self.start).total_seconds())


class Issue(BaseModel):
    """An issue known to the remote ledger."""

    model_config = ConfigDict(frozen=True)

    key: str
    summary: str = ""
    sprint_seconds: int = 0
