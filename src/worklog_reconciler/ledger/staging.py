"""Draft and staged status management for worklog entries."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from worklog_reconciler.errors import InvalidTransition, WorklogError
from worklog_reconciler.ledger.models import EntrySource, EntryStatus, WorklogEntry
from worklog_reconciler.ledger.store import WorklogStore, new_entry

logger = logging.getLogger(__name__)


@dataclass
class TransitionReport:
    """Per-entry outcome of a staging operation."""

    changed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def __str__(self) -> str:
        return (
            f"Changed: {len(self.changed)}, "
            f"Unchanged: {len(self.unchanged)}, "
            f"Failed: {len(self.failed)}"
        )


class StagingManager:
    """Governs Draft <-> Staged transitions and the creation of drafts."""

    def __init__(self, store: WorklogStore) -> None:
        self.store = store

    def create_draft(
        self,
        issue_key: str,
        duration_seconds: int,
        started_at: datetime,
        comment: str = "",
        source: EntrySource = EntrySource.MANUAL,
        meeting_id: str | None = None,
    ) -> WorklogEntry:
        """Create and store a new Draft entry.

        Raises:
            ValidationError: On malformed input or a duplicate entry.
        """
        entry = new_entry(
            issue_key=issue_key,
            duration_seconds=duration_seconds,
            started_at=started_at,
            comment=comment,
            source=source,
            meeting_id=meeting_id,
        )
        return self.store.add(entry)

    def add_drafts(self, entries: Iterable[WorklogEntry]) -> list[WorklogEntry]:
        """Store proposed Draft entries, all or none."""
        added = self.store.add_many(entries)
        logger.info(f"Added {len(added)} draft worklogs")
        return added

    def stage(self, entry_ids: Iterable[str]) -> TransitionReport:
        """Mark entries as ready to push. Already staged entries are left alone."""
        return self._apply(entry_ids, self._stage_one)

    def unstage(self, entry_ids: Iterable[str]) -> TransitionReport:
        """Move staged entries back to draft. Drafts are left alone."""
        return self._apply(entry_ids, self._unstage_one)

    def reset(self, entry_ids: Iterable[str]) -> TransitionReport:
        """Move staged entries back to draft. Any other status is an error."""
        return self._apply(entry_ids, self._reset_one)

    def stage_all(self) -> TransitionReport:
        """Stage every draft entry."""
        drafts = [entry.id for entry in self.store.by_status(EntryStatus.DRAFT)]
        return self.stage(drafts)

    def discard_drafts(self) -> TransitionReport:
        """Drop every Draft or Staged entry that never reached the remote ledger."""
        report = TransitionReport()
        for entry in self.store.by_status(EntryStatus.DRAFT, EntryStatus.STAGED):
            self.store.discard(entry.id)
            report.changed.append(entry.id)
        logger.info(f"Discarded {len(report.changed)} unpushed worklogs")
        return report

    def _apply(self, entry_ids: Iterable[str], operation) -> TransitionReport:
        report = TransitionReport()
        for entry_id in dict.fromkeys(entry_ids):
            try:
                changed = operation(entry_id)
            except WorklogError as e:
                logger.warning(f"Skipping {entry_id}: {e}")
                report.failed[entry_id] = str(e)
                continue
            if changed:
                report.changed.append(entry_id)
            else:
                report.unchanged.append(entry_id)
        return report

    def _stage_one(self, entry_id: str) -> bool:
        entry = self.store.require(entry_id)
        if entry.status == EntryStatus.STAGED:
            return False
        if entry.status != EntryStatus.DRAFT:
            raise InvalidTransition(f"Cannot stage {entry.status.value} entry {entry_id}")
        self.store.transition(entry_id, EntryStatus.STAGED)
        logger.debug(f"Staged worklog {entry_id} for {entry.issue_key}")
        return True

    def _unstage_one(self, entry_id: str) -> bool:
        entry = self.store.require(entry_id)
        if entry.status == EntryStatus.DRAFT:
            return False
        if entry.status != EntryStatus.STAGED:
            raise InvalidTransition(f"Cannot unstage {entry.status.value} entry {entry_id}")
        self.store.transition(entry_id, EntryStatus.DRAFT)
        logger.debug(f"Unstaged worklog {entry_id} for {entry.issue_key}")
        return True

    def _reset_one(self, entry_id: str) -> bool:
        entry = self.store.require(entry_id)
        if entry.status != EntryStatus.STAGED:
            raise InvalidTransition(f"Only staged entries can be reset, {entry_id} is {entry.status.value}")
        self.store.transition(entry_id, EntryStatus.DRAFT)
        return True
