"""Tests for push and revert reconciliation."""

import threading

import pytest

from worklog_reconciler.config import ReconcilerConfig
from worklog_reconciler.errors import ConsistencyError, InvalidTransition, RemoteError, ValidationError
from worklog_reconciler.ledger.history import HistoryLedger
from worklog_reconciler.ledger.models import BatchStatus, EntryStatus
from worklog_reconciler.ledger.store import WorklogStore, check_entry_invariants
from worklog_reconciler.sync.reconciler import PushReconciler

from conftest import FakeRemoteLedger


@pytest.fixture
def reconciler(store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger) -> PushReconciler:
    """Create a reconciler over the fake remote ledger."""
    return PushReconciler(store, ledger, remote)


def _assert_invariants(store: WorklogStore, ledger: HistoryLedger) -> None:
    for entry in store.all():
        check_entry_invariants(entry)
    for batch in ledger.all():
        batch.check_consistency()


class TestPush:
    """Test PushReconciler.push."""

    def test_partial_failure_records_only_successes(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that a failing entry stays staged and is left out of the batch."""
        a, b = add_staged(("PROJ-X", 2), ("PROJ-Y", 1.5))
        remote.fail_create["PROJ-Y"] = RemoteError("Issue does not exist", status_code=400)

        result = reconciler.push([a, b])

        assert result.succeeded == [a]
        assert list(result.failed) == [b]
        entry_a = store.require(a)
        assert entry_a.status == EntryStatus.PUSHED
        assert entry_a.remote_id is not None
        entry_b = store.require(b)
        assert entry_b.status == EntryStatus.STAGED
        assert entry_b.last_error == "Issue does not exist"

        batches = ledger.all()
        assert len(batches) == 1
        assert batches[0].id == result.batch_id
        assert batches[0].entry_ids == [a]
        assert batches[0].total_seconds == 7200
        _assert_invariants(store, ledger)

    def test_save_failure_after_create_keeps_batch(
        self,
        reconciler: PushReconciler,
        store: WorklogStore,
        ledger: HistoryLedger,
        remote: FakeRemoteLedger,
        add_staged,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that a disk error on one entry still records the batch for the others."""
        a, b = add_staged(("PROJ-1", 1), ("PROJ-2", 1))
        save = store.storage.save_worklogs
        calls = []

        def flaky_save(entries):
            calls.append(len(entries))
            if len(calls) == 2:
                raise OSError("No space left on device")
            save(entries)

        monkeypatch.setattr(store.storage, "save_worklogs", flaky_save)

        result = reconciler.push([a, b])

        assert result.succeeded == [a]
        assert "could not be saved" in result.failed[b]
        assert len(remote.worklogs) == 2
        assert ledger.require(result.batch_id).entry_ids == [a]

    def test_all_failed_creates_no_batch(
        self, reconciler: PushReconciler, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that no batch is recorded without a success."""
        (a,) = add_staged(("PROJ-X", 1))
        remote.fail_create["PROJ-X"] = RemoteError("Unauthorized", status_code=401)

        result = reconciler.push([a])

        assert result.batch_id is None
        assert len(ledger) == 0

    def test_push_twice_creates_once(
        self, reconciler: PushReconciler, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that a retried push never calls create again for the same entry."""
        a, b = add_staged(("PROJ-X", 1), ("PROJ-Y", 1))
        remote.fail_create["PROJ-Y"] = RemoteError("timeout")
        reconciler.push([a, b])
        del remote.fail_create["PROJ-Y"]

        result = reconciler.push([a, b])

        assert remote.create_calls == ["PROJ-X", "PROJ-Y", "PROJ-Y"]
        assert list(result.skipped) == [a]
        assert result.succeeded == [b]
        assert len(ledger) == 2

    def test_duplicate_ids_pushed_once(
        self, reconciler: PushReconciler, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that repeated ids in one call are collapsed."""
        (a,) = add_staged(("PROJ-X", 1))

        reconciler.push([a, a])

        assert remote.create_calls == ["PROJ-X"]

    def test_draft_and_unknown_fail_without_call(
        self, reconciler: PushReconciler, store: WorklogStore, remote: FakeRemoteLedger, make_entry
    ) -> None:
        """Test that only staged entries reach the remote."""
        draft = store.add(make_entry("PROJ-X"))

        result = reconciler.push([draft.id, "missing"])

        assert set(result.failed) == {draft.id, "missing"}
        assert remote.create_calls == []

    def test_order_is_preserved(
        self, reconciler: PushReconciler, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that entries are pushed and snapshotted in the given order."""
        ids = add_staged(("PROJ-1", 1), ("PROJ-2", 1), ("PROJ-3", 1))

        result = reconciler.push(list(reversed(ids)))

        assert remote.create_calls == ["PROJ-3", "PROJ-2", "PROJ-1"]
        assert ledger.require(result.batch_id).entry_ids == list(reversed(ids))

    def test_cancel_between_entries(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, add_staged
    ) -> None:
        """Test that cancellation keeps what was already pushed."""
        ids = add_staged(("PROJ-1", 1), ("PROJ-2", 1), ("PROJ-3", 1))
        cancel = threading.Event()

        def progress(done: int, total: int, entry_id: str) -> None:
            if done == 1:
                cancel.set()

        result = reconciler.push(ids, cancel=cancel, progress=progress)

        assert result.succeeded == ids[:1]
        assert result.cancelled == ids[1:]
        assert store.require(ids[1]).status == EntryStatus.STAGED
        assert ledger.require(result.batch_id).entry_ids == ids[:1]

    def test_daily_limit(
        self, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that entries over the daily limit are not pushed."""
        reconciler = PushReconciler(store, ledger, remote, ReconcilerConfig(daily_hours_limit=8))
        a, b = add_staged(("PROJ-1", 6), ("PROJ-2", 3))

        result = reconciler.push([a, b])

        assert result.succeeded == [a]
        assert "Daily limit" in result.failed[b]
        assert remote.create_calls == ["PROJ-1"]
        assert store.require(b).last_error == result.failed[b]

    def test_progress_reported(self, reconciler: PushReconciler, add_staged) -> None:
        """Test progress callback after each entry."""
        ids = add_staged(("PROJ-1", 1), ("PROJ-2", 1))
        calls = []

        reconciler.push(ids, progress=lambda done, total, entry_id: calls.append((done, total, entry_id)))

        assert calls == [(1, 2, ids[0]), (2, 2, ids[1])]


class TestRevert:
    """Test PushReconciler.revert."""

    def _push(self, reconciler: PushReconciler, add_staged, *specs: tuple[str, float]) -> str:
        ids = add_staged(*specs)
        result = reconciler.push(ids)
        assert result.succeeded == ids
        return result.batch_id

    def test_confirmation_must_match(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that a wrong confirmation mutates nothing, the right one reverts all."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 8), ("PROJ-2", 4.5))
        before = (store.all(), ledger.all())

        with pytest.raises(ConsistencyError):
            reconciler.revert(batch_id, "12")

        assert (store.all(), ledger.all()) == before
        assert remote.delete_calls == []

        result = reconciler.revert(batch_id, "12.5")

        assert result.status == BatchStatus.REVERTED
        assert ledger.require(batch_id).status == BatchStatus.REVERTED
        assert all(e.status == EntryStatus.REVERTED for e in store.all())
        assert all(e.remote_id is not None for e in store.all())
        _assert_invariants(store, ledger)

    @pytest.mark.parametrize("confirmation", ["12.50", " 12.5", "12,5", "12.5h"])
    def test_confirmation_is_exact(
        self, reconciler: PushReconciler, remote: FakeRemoteLedger, add_staged, confirmation: str
    ) -> None:
        """Test that only the canonical hours string is accepted."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 8), ("PROJ-2", 4.5))

        with pytest.raises(ConsistencyError):
            reconciler.revert(batch_id, confirmation)
        assert remote.delete_calls == []

    def test_partial_failure_then_retry(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test partial revert and a retry that only touches the failed member."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 1), ("PROJ-2", 1), ("PROJ-3", 1))
        batch = ledger.require(batch_id)
        failing = batch.members[1]
        remote.fail_delete[failing.remote_id] = RemoteError("Service unavailable", status_code=503)

        result = reconciler.revert(batch_id, "3")

        assert result.status == BatchStatus.PARTIALLY_REVERTED
        assert list(result.failed) == [failing.entry_id]
        assert store.require(failing.entry_id).status == EntryStatus.PUSHED
        assert store.require(failing.entry_id).last_error == "Service unavailable"
        assert ledger.require(batch_id).status == BatchStatus.PARTIALLY_REVERTED

        del remote.fail_delete[failing.remote_id]
        remote.delete_calls.clear()
        retry = reconciler.revert(batch_id, "3")

        assert remote.delete_calls == [failing.remote_id]
        assert retry.reverted == [failing.entry_id]
        assert retry.status == BatchStatus.REVERTED
        _assert_invariants(store, ledger)

    def test_all_failed_keeps_status(
        self, reconciler: PushReconciler, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that a revert where nothing succeeds leaves the batch active."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 2))
        member = ledger.require(batch_id).members[0]
        remote.fail_delete[member.remote_id] = RemoteError("Forbidden", status_code=403)

        result = reconciler.revert(batch_id, "2")

        assert result.status == BatchStatus.ACTIVE
        assert ledger.require(batch_id).status == BatchStatus.ACTIVE

    def test_reverted_batch_rejected(self, reconciler: PushReconciler, add_staged) -> None:
        """Test that a fully reverted batch cannot be reverted again."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 2))
        reconciler.revert(batch_id, "2")

        with pytest.raises(InvalidTransition):
            reconciler.revert(batch_id, "2")

    def test_unknown_batch(self, reconciler: PushReconciler) -> None:
        """Test revert of a batch that does not exist."""
        with pytest.raises(ValidationError):
            reconciler.revert("nope", "1")

    def test_missing_remote_worklog_fails_by_default(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that a worklog deleted elsewhere is reported as a failure."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 2))
        member = ledger.require(batch_id).members[0]
        del remote.worklogs[member.remote_id]

        result = reconciler.revert(batch_id, "2")

        assert list(result.failed) == [member.entry_id]
        assert store.require(member.entry_id).status == EntryStatus.PUSHED

    def test_missing_remote_worklog_treated_as_deleted(
        self, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test the option that accepts an already deleted worklog."""
        reconciler = PushReconciler(store, ledger, remote, ReconcilerConfig(treat_missing_as_deleted=True))
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 2))
        member = ledger.require(batch_id).members[0]
        del remote.worklogs[member.remote_id]

        result = reconciler.revert(batch_id, "2")

        assert result.reverted == [member.entry_id]
        assert result.status == BatchStatus.REVERTED

    def test_inconsistent_local_state_aborts(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, remote: FakeRemoteLedger, add_staged
    ) -> None:
        """Test that a member whose remote id diverged aborts before any delete."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 1), ("PROJ-2", 1))
        member = ledger.require(batch_id).members[1]
        tampered = store.require(member.entry_id).model_copy(update={"remote_id": "other"})
        store._entries[member.entry_id] = tampered

        with pytest.raises(ConsistencyError):
            reconciler.revert(batch_id, "2")

        assert remote.delete_calls == []
        assert ledger.require(batch_id).status == BatchStatus.ACTIVE

    def test_cancel_leaves_rest_pushed(
        self, reconciler: PushReconciler, store: WorklogStore, ledger: HistoryLedger, add_staged
    ) -> None:
        """Test cancellation between members."""
        batch_id = self._push(reconciler, add_staged, ("PROJ-1", 1), ("PROJ-2", 1))
        cancel = threading.Event()
        cancel.set()

        result = reconciler.revert(batch_id, "2", cancel=cancel)

        assert result.reverted == []
        assert len(result.cancelled) == 2
        assert result.status == BatchStatus.ACTIVE
        assert all(e.status == EntryStatus.PUSHED for e in store.all())
