"""Tests for the history ledger."""

from datetime import datetime, timedelta, timezone

import pytest

from worklog_reconciler.errors import ConsistencyError, ValidationError
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import BatchMember, BatchStatus, HistoryBatch
from worklog_reconciler.utils import StorageManager


def _batch(*entry_ids: str, created_at: datetime | None = None) -> HistoryBatch:
    members = [
        BatchMember(entry_id=entry_id, issue_key="PROJ-1", remote_id=f"r-{entry_id}", duration_seconds=3600)
        for entry_id in entry_ids
    ]
    return HistoryBatch.create(members, created_at=created_at)


class TestHistoryLedger:
    """Test HistoryLedger functionality."""

    def test_append_and_get(self, ledger: HistoryLedger) -> None:
        """Test recording a batch."""
        batch = ledger.append(_batch("a", "b"))

        assert ledger.require(batch.id) == batch
        assert len(ledger) == 1
        assert ledger.covered_entry_ids() == {"a", "b"}

    def test_append_empty_rejected(self, ledger: HistoryLedger) -> None:
        """Test that batches need at least one member."""
        with pytest.raises(ValidationError):
            ledger.append(HistoryBatch.create([]))

    def test_append_inconsistent_rejected(self, ledger: HistoryLedger) -> None:
        """Test that a wrong total is refused."""
        broken = _batch("a").model_copy(update={"total_seconds": 10})

        with pytest.raises(ConsistencyError):
            ledger.append(broken)
        assert len(ledger) == 0

    def test_append_duplicate_rejected(self, ledger: HistoryLedger) -> None:
        """Test that the same batch cannot be recorded twice."""
        batch = ledger.append(_batch("a"))

        with pytest.raises(ValidationError):
            ledger.append(batch)

    def test_all_newest_first(self, ledger: HistoryLedger) -> None:
        """Test listing order."""
        now = datetime(2024, 5, 6, 18, tzinfo=timezone.utc)
        old = ledger.append(_batch("a", created_at=now - timedelta(days=1)))
        new = ledger.append(_batch("b", created_at=now))

        assert [b.id for b in ledger.all()] == [new.id, old.id]

    def test_set_status(self, ledger: HistoryLedger) -> None:
        """Test updating the revert status."""
        batch = ledger.append(_batch("a"))

        updated = ledger.set_status(batch.id, BatchStatus.REVERTED)

        assert updated.status == BatchStatus.REVERTED
        assert updated.members == batch.members

    def test_unknown_batch(self, ledger: HistoryLedger) -> None:
        """Test lookup of an unknown batch."""
        assert ledger.get("nope") is None
        with pytest.raises(ValidationError):
            ledger.require("nope")

    def test_reload(self, storage_manager: StorageManager) -> None:
        """Test that batches survive a reload."""
        ledger = HistoryLedger(storage=storage_manager)
        batch = ledger.append(_batch("a", "b"))
        ledger.set_status(batch.id, BatchStatus.PARTIALLY_REVERTED)

        reloaded = HistoryLedger.load(storage_manager)

        assert reloaded.require(batch.id).status == BatchStatus.PARTIALLY_REVERTED
        assert reloaded.require(batch.id).entry_ids == ["a", "b"]
