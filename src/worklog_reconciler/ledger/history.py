"""Append-only ledger of history batches."""

import logging
from typing import Iterable

from worklog_reconciler.errors import ValidationError
from worklog_reconciler.ledger.models import BatchStatus, HistoryBatch
from worklog_reconciler.utils.storage import StorageManager

logger = logging.getLogger(__name__)


class HistoryLedger:
    """Owns history batches. Batches are appended, updated in status, never removed."""

    def __init__(
        self,
        batches: Iterable[HistoryBatch] = (),
        storage: StorageManager | None = None,
    ) -> None:
        self._batches: dict[str, HistoryBatch] = {}
        for batch in batches:
            batch.check_consistency()
            self._batches[batch.id] = batch
        self.storage = storage

    @classmethod
    def load(cls, storage: StorageManager) -> "HistoryLedger":
        """Load the ledger from persistent storage."""
        return cls(storage.load_history(), storage=storage)

    def __len__(self) -> int:
        return len(self._batches)

    def get(self, batch_id: str) -> HistoryBatch | None:
        return self._batches.get(batch_id)

    def require(self, batch_id: str) -> HistoryBatch:
        """Get a batch or raise ValidationError for unknown ids."""
        batch = self._batches.get(batch_id)
        if batch is None:
            raise ValidationError(f"Unknown history batch: {batch_id}")
        return batch

    def all(self) -> list[HistoryBatch]:
        """All batches, most recent first."""
        return sorted(self._batches.values(), key=lambda b: (b.created_at, b.id), reverse=True)

    def covered_entry_ids(self) -> set[str]:
        """Ids of every entry referenced by any batch."""
        return {entry_id for batch in self._batches.values() for entry_id in batch.entry_ids}

    def append(self, batch: HistoryBatch) -> HistoryBatch:
        """Append a new batch.

        Raises:
            ConsistencyError: If the batch total does not match its members.
            ValidationError: If the batch is empty or its id already exists.
        """
        batch.check_consistency()
        if not batch.members:
            raise ValidationError("History batch must have at least one member")
        if batch.id in self._batches:
            raise ValidationError(f"History batch {batch.id} already exists")

        self._batches[batch.id] = batch
        self._persist()
        logger.info(
            f"Recorded {'recovered ' if batch.recovered else ''}batch {batch.id} "
            f"with {len(batch.members)} worklogs"
        )
        return batch

    def set_status(self, batch_id: str, status: BatchStatus) -> HistoryBatch:
        """Update the revert status of a batch."""
        updated = self.require(batch_id).model_copy(update={"status": status})
        self._batches[batch_id] = updated
        self._persist()
        return updated

    def _persist(self) -> None:
        if self.storage is not None:
            self.storage.save_history(list(self._batches.values()))
