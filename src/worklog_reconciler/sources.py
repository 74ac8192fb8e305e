"""Read-only sources of candidate time records and their conversion to drafts."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Protocol

import pydantic

from worklog_reconciler.errors import ValidationError
from worklog_reconciler.ledger.models import CodingSession, EntrySource, MeetingRecord, WorklogEntry
from worklog_reconciler.ledger.store import WorklogStore, new_entry

logger = logging.getLogger(__name__)


class MeetingSource(Protocol):
    """Yields calendar meetings for a date range."""

    def meetings_between(self, start: datetime, end: datetime) -> Iterable[MeetingRecord]:
        ...


class SessionSource(Protocol):
    """Yields coding sessions for a date range."""

    def sessions_between(self, start: datetime, end: datetime) -> Iterable[CodingSession]:
        ...


def meeting_to_entry(meeting: MeetingRecord) -> WorklogEntry | None:
    """Draft entry for a linked meeting, or None if it is unlinked or empty."""
    if not meeting.linked_issue_key or meeting.duration_seconds <= 0:
        return None
    return new_entry(
        issue_key=meeting.linked_issue_key,
        duration_seconds=meeting.duration_seconds,
        started_at=meeting.start,
        comment=f"Meeting: {meeting.title or 'Untitled'}",
        source=EntrySource.MEETING,
        meeting_id=meeting.id,
    )


def session_to_entry(session: CodingSession) -> WorklogEntry | None:
    """Draft entry for a coding session, logged against its first issue key."""
    if not session.issue_keys or session.duration_seconds <= 0:
        return None
    description = session.description or session.repo
    return new_entry(
        issue_key=session.issue_keys[0],
        duration_seconds=session.duration_seconds,
        started_at=session.start,
        comment=f"Coding: {description}",
        source=EntrySource.CODING_SESSION,
    )


def drafts_from_records(
    meetings: Iterable[MeetingRecord],
    sessions: Iterable[CodingSession],
    store: WorklogStore | None = None,
) -> list[WorklogEntry]:
    """Convert linked meetings and sessions into Draft entries.

    Meetings already logged on their day, and records whose entry id already
    exists in the store, are left out.

    Args:
        meetings: Meeting records, ideally already linked.
        sessions: Coding sessions.
        store: Existing entries to deduplicate against.

    Returns:
        Proposed Draft entries, not yet stored.
    """
    drafts: dict[str, WorklogEntry] = {}
    for meeting in meetings:
        day = meeting.start.astimezone(timezone.utc).date()
        if store is not None and store.logged_for_meeting(meeting.id, day):
            logger.debug(f"Meeting '{meeting.title}' already logged on {day}")
            continue
        entry = meeting_to_entry(meeting)
        if entry is None:
            logger.debug(f"No issue linked to meeting '{meeting.title}'")
            continue
        drafts.setdefault(entry.id, entry)

    for session in sessions:
        entry = session_to_entry(session)
        if entry is not None:
            drafts.setdefault(entry.id, entry)

    if store is not None:
        return [entry for entry in drafts.values() if entry.id not in store]
    return list(drafts.values())


class JsonRecordSource:
    """Meetings and coding sessions exported to a JSON file.

    The file holds ``{"meetings": [...], "sessions": [...]}``; both keys are
    optional. Serves as both a meeting source and a session source.
    Timestamps must carry a UTC offset.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        try:
            with open(path) as f:
                data = json.load(f)
            self.meetings = [MeetingRecord.model_validate(item) for item in data.get("meetings", [])]
            self.sessions = [CodingSession.model_validate(item) for item in data.get("sessions", [])]
        except (json.JSONDecodeError, pydantic.ValidationError) as e:
            raise ValidationError(f"Invalid records file {path}: {e}") from e
        logger.debug(
            f"Loaded {len(self.meetings)} meetings and {len(self.sessions)} sessions from {path}"
        )

    def meetings_between(self, start: datetime, end: datetime) -> list[MeetingRecord]:
        return [m for m in self.meetings if start <= m.start < end]

    def sessions_between(self, start: datetime, end: datetime) -> list[CodingSession]:
        return [s for s in self.sessions if start <= s.start < end]
