"""Pytest configuration and fixtures."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from worklog_reconciler.config import Config
from worklog_reconciler.errors import RemoteError
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import EntryStatus, WorklogEntry
from worklog_reconciler.ledger.staging import StagingManager
from worklog_reconciler.ledger.store import WorklogStore, new_entry
from worklog_reconciler.utils import StorageManager

MONDAY = datetime(2024, 5, 6, tzinfo=timezone.utc)


class FakeRemoteLedger:
    """In-memory remote ledger that records every call."""

    def __init__(self) -> None:
        self.worklogs: dict[str, tuple[str, int]] = {}
        self.create_calls: list[str] = []
        self.delete_calls: list[str] = []
        self.fail_create: dict[str, RemoteError] = {}
        self.fail_delete: dict[str, RemoteError] = {}
        self._next_id = 10000

    def create_worklog(self, issue_key: str, duration_seconds: int, started_at: datetime, comment: str) -> str:
        self.create_calls.append(issue_key)
        if issue_key in self.fail_create:
            raise self.fail_create[issue_key]
        self._next_id += 1
        remote_id = str(self._next_id)
        self.worklogs[remote_id] = (issue_key, duration_seconds)
        return remote_id

    def delete_worklog(self, issue_key: str, remote_id: str) -> None:
        self.delete_calls.append(remote_id)
        if remote_id in self.fail_delete:
            raise self.fail_delete[remote_id]
        if remote_id not in self.worklogs:
            raise RemoteError(f"Worklog {remote_id} not found", status_code=404, not_found=True)
        del self.worklogs[remote_id]


@pytest.fixture
def temp_config_dir() -> Path:
    """Create a temporary configuration directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_manager(temp_config_dir: Path) -> StorageManager:
    """Create a storage manager with temporary directory."""
    return StorageManager(temp_config_dir)


@pytest.fixture
def config(temp_config_dir: Path) -> Config:
    """Create a config instance with temporary directory."""
    return Config(temp_config_dir)


@pytest.fixture
def store(storage_manager: StorageManager) -> WorklogStore:
    """Create an empty, persisted worklog store."""
    return WorklogStore(storage=storage_manager)


@pytest.fixture
def ledger(storage_manager: StorageManager) -> HistoryLedger:
    """Create an empty, persisted history ledger."""
    return HistoryLedger(storage=storage_manager)


@pytest.fixture
def staging(store: WorklogStore) -> StagingManager:
    """Create a staging manager over the store."""
    return StagingManager(store)


@pytest.fixture
def remote() -> FakeRemoteLedger:
    """Create a fake remote ledger."""
    return FakeRemoteLedger()


@pytest.fixture
def make_entry():
    """Factory for Draft entries starting on Monday 2024-05-06 (UTC)."""

    def factory(
        issue_key: str = "PROJ-1",
        hours: float = 1.0,
        start_hour: int = 9,
        day_offset: int = 0,
        comment: str = "",
    ) -> WorklogEntry:
        started_at = MONDAY + timedelta(days=day_offset, hours=start_hour)
        return new_entry(issue_key, int(hours * 3600), started_at, comment=comment)

    return factory


@pytest.fixture
def add_staged(store: WorklogStore, staging: StagingManager, make_entry):
    """Add entries to the store and stage them. Returns their ids."""

    def factory(*specs: tuple[str, float]) -> list[str]:
        ids = []
        for index, (issue_key, hours) in enumerate(specs):
            entry = store.add(make_entry(issue_key, hours, start_hour=index))
            ids.append(entry.id)
        staging.stage(ids)
        assert all(store.require(i).status == EntryStatus.STAGED for i in ids)
        return ids

    return factory
