"""Reconstruction of missing history batches from pushed entries."""

import logging
import threading
from datetime import date, timedelta
from typing import ContextManager

from worklog_reconciler.config import RecoveryConfig
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import BatchMember, EntryStatus, HistoryBatch, WorklogEntry
from worklog_reconciler.ledger.store import WorklogStore

logger = logging.getLogger(__name__)


class RecoveryReconstructor:
    """Rebuilds history batches for pushed entries no batch covers.

    Entries with a recorded push time are grouped by proximity: a new group
    starts whenever two consecutive push times are further apart than the
    configured window. Entries without a push time are grouped by the UTC
    day they started on.
    """

    def __init__(
        self,
        store: WorklogStore,
        ledger: HistoryLedger,
        config: RecoveryConfig | None = None,
        lock: ContextManager | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.config = config or RecoveryConfig()
        self.lock = lock or threading.RLock()

    def uncovered(self) -> list[WorklogEntry]:
        """Pushed entries that no batch references."""
        covered = self.ledger.covered_entry_ids()
        return [e for e in self.store.by_status(EntryStatus.PUSHED) if e.id not in covered]

    def reconstruct(self) -> list[HistoryBatch]:
        """Create recovered batches for uncovered pushed entries.

        Returns:
            Newly created batches; empty if every pushed entry is covered.
        """
        with self.lock:
            return self._reconstruct()

    def _reconstruct(self) -> list[HistoryBatch]:
        entries = self.uncovered()
        if not entries:
            logger.debug("All pushed worklogs are already covered by history")
            return []

        created = []
        for group in self._group(entries):
            if any(entry.pushed_at for entry in group):
                created_at = max(entry.pushed_at for entry in group if entry.pushed_at)
            else:
                created_at = max(entry.started_at for entry in group)
            members = [
                BatchMember(
                    entry_id=entry.id,
                    issue_key=entry.issue_key,
                    remote_id=entry.remote_id,
                    duration_seconds=entry.duration_seconds,
                )
                for entry in group
            ]
            created.append(
                self.ledger.append(HistoryBatch.create(members, created_at=created_at, recovered=True))
            )

        logger.info(f"Recovered {len(created)} history batches for {len(entries)} pushed worklogs")
        return created

    def _group(self, entries: list[WorklogEntry]) -> list[list[WorklogEntry]]:
        timed = sorted((e for e in entries if e.pushed_at), key=lambda e: (e.pushed_at, e.id))
        untimed = sorted((e for e in entries if not e.pushed_at), key=lambda e: (e.started_at, e.id))
        window = timedelta(minutes=self.config.window_minutes)

        groups: list[list[WorklogEntry]] = []
        for entry in timed:
            if groups and entry.pushed_at - groups[-1][-1].pushed_at <= window:
                groups[-1].append(entry)
            else:
                groups.append([entry])

        by_day: dict[date, list[WorklogEntry]] = {}
        for entry in untimed:
            by_day.setdefault(entry.started_at.date(), []).append(entry)
        groups.extend(by_day[day] for day in sorted(by_day))
        return groups
