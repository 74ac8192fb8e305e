"""Tests for the background reconciliation worker."""

import threading

import pytest

from worklog_reconciler.errors import ConsistencyError
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import EntryStatus
from worklog_reconciler.ledger.store import WorklogStore
from worklog_reconciler.sync.reconciler import PushReconciler
from worklog_reconciler.sync.worker import NotificationKind, ReconciliationWorker


@pytest.fixture
def worker(store: WorklogStore, ledger: HistoryLedger, remote):
    """Create a worker and shut it down after the test."""
    worker = ReconciliationWorker(PushReconciler(store, ledger, remote))
    yield worker
    worker.shutdown()


class TestReconciliationWorker:
    """Test ReconciliationWorker functionality."""

    def test_push_publishes_progress_and_result(self, worker: ReconciliationWorker, store: WorklogStore, add_staged) -> None:
        """Test notifications for a successful push."""
        ids = add_staged(("PROJ-1", 1), ("PROJ-2", 1))

        result = worker.submit_push(ids).result(timeout=5)
        notes = worker.drain()

        assert result.succeeded == ids
        assert [n.kind for n in notes] == [
            NotificationKind.PROGRESS,
            NotificationKind.PROGRESS,
            NotificationKind.FINISHED,
        ]
        assert (notes[1].done, notes[1].total) == (2, 2)
        assert notes[-1].result is result
        assert all(store.require(i).status == EntryStatus.PUSHED for i in ids)

    def test_failure_published(self, worker: ReconciliationWorker, add_staged) -> None:
        """Test that an aborted operation is reported and re-raised."""
        ids = add_staged(("PROJ-1", 2))
        batch_id = worker.submit_push(ids).result(timeout=5).batch_id
        worker.drain()

        future = worker.submit_revert(batch_id, "3")

        with pytest.raises(ConsistencyError):
            future.result(timeout=5)
        notes = worker.drain()
        assert notes[-1].kind == NotificationKind.FAILED
        assert notes[-1].operation == "revert"

    def test_jobs_run_in_order(self, worker: ReconciliationWorker, ledger: HistoryLedger, add_staged) -> None:
        """Test that a revert queued after a push sees the pushed batch."""
        ids = add_staged(("PROJ-1", 1))
        push = worker.submit_push(ids)
        batch_id = push.result(timeout=5).batch_id

        revert = worker.submit_revert(batch_id, "1")

        assert revert.result(timeout=5).reverted == ids

    def test_cancel(self, store: WorklogStore, ledger: HistoryLedger, remote, add_staged) -> None:
        """Test that cancel stops a running push between entries."""
        ids = add_staged(("PROJ-1", 1), ("PROJ-2", 1), ("PROJ-3", 1))
        started = threading.Event()
        release = threading.Event()
        original = remote.create_worklog

        def slow_create(*args):
            started.set()
            release.wait(timeout=5)
            return original(*args)

        remote.create_worklog = slow_create
        with ReconciliationWorker(PushReconciler(store, ledger, remote)) as worker:
            future = worker.submit_push(ids)
            assert started.wait(timeout=5)
            worker.cancel()
            release.set()
            result = future.result(timeout=5)

        assert result.succeeded == ids[:1]
        assert result.cancelled == ids[1:]

    def test_reconstruct(self, worker: ReconciliationWorker, ledger: HistoryLedger) -> None:
        """Test that reconstruction runs on the worker."""
        assert worker.submit_reconstruct().result(timeout=5) == []
        assert worker.drain()[-1].kind == NotificationKind.FINISHED
