"""Local worklog state: entries, staging and push history.

Only the data model is re-exported here; the store, ledger and staging
manager live in their own modules since they depend on storage.
"""

from worklog_reconciler.ledger.models import (
    BatchMember,
    BatchStatus,
    CodingSession,
    EntrySource,
    EntryStatus,
    HistoryBatch,
    Issue,
    MeetingRecord,
    WorklogEntry,
)

__all__ = [
    "BatchMember",
    "BatchStatus",
    "CodingSession",
    "EntrySource",
    "EntryStatus",
    "HistoryBatch",
    "Issue",
    "MeetingRecord",
    "WorklogEntry",
]
