"""Tests for deletion reconciliation.

Covers:
- Full enumeration {A, B} against local {A, B, C} yields exactly C
- Incremental fetches never produce candidates
- Protected and archived entities are never candidates
- Each policy's effect on the store
- Empty-enumeration guard
- Per-candidate failure isolation
"""

import logging

import pytest

from notion_mirror.errors import StoreError
from notion_mirror.sync.models import (
    DeletionCandidate,
    DeletionPolicy,
    FetchMode,
)
from notion_mirror.sync.reconciler import DeletionReconciler
from notion_mirror.sync.store import InMemoryContentStore, LocalEntity


def _entity(local_id, remote_id, **kwargs):
    return LocalEntity(
        local_id=local_id,
        remote_id=remote_id,
        collection_id=kwargs.pop("collection_id", "db"),
        **kwargs,
    )


@pytest.fixture
def store():
    store = InMemoryContentStore()
    for n in ("A", "B", "C"):
        store.add(_entity(f"L{n}", f"R{n}"))
    return store


class FlakyStore(InMemoryContentStore):
    """Store refusing to delete chosen local ids."""

    def __init__(self, fail_ids):
        super().__init__()
        self.fail_ids = set(fail_ids)

    def soft_delete(self, local_id):
        if local_id in self.fail_ids:
            raise StoreError("locked")
        super().soft_delete(local_id)


class TestFindCandidates:
    """Tests for DeletionReconciler.find_candidates()."""

    def test_missing_remote_id_is_candidate(self, store):
        reconciler = DeletionReconciler(store)
        assert reconciler.find_candidates("db", {"RA", "RB"}) == [
            DeletionCandidate(local_id="LC", remote_id="RC")
        ]

    def test_incremental_never_yields_candidates(self, store):
        reconciler = DeletionReconciler(store)
        assert (
            reconciler.find_candidates("db", set(), FetchMode.INCREMENTAL)
            == []
        )

    def test_other_collections_ignored(self, store):
        store.add(_entity("LX", "RX", collection_id="other"))
        reconciler = DeletionReconciler(store)
        ids = [c.local_id for c in reconciler.find_candidates("db", set())]
        assert "LX" not in ids

    def test_protected_and_archived_skipped(self):
        store = InMemoryContentStore()
        store.add(_entity("LP", "RP", protected=True))
        store.add(_entity("LR", "RR", archived=True))
        store.add(_entity("LN", "RN"))
        reconciler = DeletionReconciler(store)
        assert [c.local_id for c in reconciler.find_candidates("db", {"RX"})] == [
            "LN"
        ]


class TestReconcile:
    """Tests for DeletionReconciler.reconcile()."""

    def test_soft_delete_archives(self, store):
        result = DeletionReconciler(store).reconcile("db", {"RA", "RB"})
        assert result.policy is DeletionPolicy.SOFT_DELETE
        assert [c.local_id for c in result.applied] == ["LC"]
        assert store.get("LC").archived is True
        assert store.find_by_remote_id("RC") is not None
        assert store.get("LA").archived is False

    def test_hard_delete_removes_link(self, store):
        reconciler = DeletionReconciler(
            store, policy=DeletionPolicy.HARD_DELETE
        )
        result = reconciler.reconcile("db", {"RA", "RB"})
        assert len(result.applied) == 1
        assert store.get("LC") is None
        assert store.find_by_remote_id("RC") is None

    def test_report_only_changes_nothing(self, store, caplog):
        with caplog.at_level(logging.INFO):
            result = DeletionReconciler(store).reconcile(
                "db", {"RA", "RB"}, policy=DeletionPolicy.REPORT_ONLY
            )
        assert [c.local_id for c in result.candidates] == ["LC"]
        assert result.applied == []
        assert store.get("LC").archived is False
        assert "RC" in caplog.text and "LC" in caplog.text

    def test_policy_override(self, store):
        reconciler = DeletionReconciler(store)
        reconciler.reconcile(
            "db", {"RA", "RB"}, policy=DeletionPolicy.HARD_DELETE
        )
        assert store.get("LC") is None

    def test_incremental_changes_nothing(self, store):
        result = DeletionReconciler(store).reconcile(
            "db", set(), FetchMode.INCREMENTAL
        )
        assert result.candidates == []
        assert all(not e.archived for e in store.all())

    def test_second_pass_is_noop(self, store):
        reconciler = DeletionReconciler(store)
        reconciler.reconcile("db", {"RA", "RB"})
        again = reconciler.reconcile("db", {"RA", "RB"})
        assert again.candidates == []

    def test_apply_logs_both_ids(self, store, caplog):
        with caplog.at_level(logging.INFO):
            DeletionReconciler(store).reconcile("db", {"RA", "RB"})
        assert "LC" in caplog.text
        assert "RC" in caplog.text


class TestEmptyEnumerationGuard:
    """An empty enumeration never wipes a collection by default."""

    def test_destructive_policy_skipped(self, store):
        result = DeletionReconciler(store).reconcile("db", set())
        assert len(result.candidates) == 3
        assert result.applied == []
        assert "empty" in result.skipped_reason
        assert all(not e.archived for e in store.all())

    def test_guard_can_be_disabled(self, store):
        reconciler = DeletionReconciler(store, allow_empty_enumeration=True)
        result = reconciler.reconcile("db", set())
        assert len(result.applied) == 3
        assert result.skipped_reason is None


class TestFailureIsolation:
    def test_one_failure_does_not_stop_others(self):
        store = FlakyStore({"L2"})
        for n in range(1, 4):
            store.add(_entity(f"L{n}", f"R{n}"))
        store.add(_entity("Lkeep", "Rkeep"))

        result = DeletionReconciler(store).reconcile("db", {"Rkeep"})

        assert [c.local_id for c in result.applied] == ["L1", "L3"]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.local_id == "L2"
        assert failure.remote_id == "R2"
        assert failure.error == "locked"
        assert store.get("L1").archived and store.get("L3").archived
