"""Tests for the durable change queue and the offline editing window."""

from __future__ import annotations

import pytest

from beads_sync.sync.models import EditSet, IssueStatus
from beads_sync.sync.queue import ChangeQueue
from beads_sync.sync.state import StateFile


def _reopen(queue: ChangeQueue, state_dir, clock) -> ChangeQueue:
    return ChangeQueue(StateFile(state_dir, "pending", "octo__tracker"), clock=clock)


class TestEnqueue:
    """Tests for ChangeQueue.enqueue()."""

    def test_enqueue_creates_entry(self, queue, make_record, clock):
        base = make_record()
        entry = queue.enqueue("bd-1", EditSet(title="New"), base)
        assert entry is not None
        assert entry.record_id == "bd-1"
        assert entry.record_title == "Fix login redirect"
        assert entry.base == base
        assert entry.created_at == clock.now
        assert entry.revision == 0
        assert len(queue) == 1
        assert "bd-1" in queue

    def test_inert_edits_are_not_queued(self, queue, make_record):
        assert queue.enqueue("bd-1", EditSet(), make_record()) is None
        assert len(queue) == 0

    def test_base_must_match_record(self, queue, make_record):
        with pytest.raises(ValueError, match="does not match"):
            queue.enqueue("bd-2", EditSet(title="x"), make_record("bd-1"))

    def test_second_edit_folds_into_entry(self, queue, make_record):
        base = make_record()
        first = queue.enqueue("bd-1", EditSet(title="A", assignee="al"), base)
        second = queue.enqueue(
            "bd-1", EditSet(title="B"), make_record(title="Moved on")
        )
        assert second.entry_id == first.entry_id
        assert second.edits.title == "B"
        assert second.edits.assignee == "al"
        assert second.revision == 1
        assert second.base == base
        assert len(queue) == 1

    def test_queue_order_is_insertion_order(self, queue, make_record):
        for rid in ("bd-3", "bd-1", "bd-2"):
            queue.enqueue(rid, EditSet(title="x"), make_record(rid))
        assert [e.record_id for e in queue.list()] == ["bd-3", "bd-1", "bd-2"]


class TestCreate:
    def test_enqueue_create(self, queue, make_record):
        record = make_record("bd-new", title="Brand new")
        entry = queue.enqueue_create(record)
        assert entry.is_create
        assert entry.new_record == record
        assert entry.base is None
        assert entry.summary == "Created record"

    def test_duplicate_create_rejected(self, queue, make_record):
        queue.enqueue_create(make_record("bd-new"))
        with pytest.raises(ValueError, match="already has a pending change"):
            queue.enqueue_create(make_record("bd-new"))

    def test_edit_folds_into_pending_create(self, queue, make_record):
        queue.enqueue_create(make_record("bd-new", title="Draft"))
        folded = queue.enqueue(
            "bd-new", EditSet(title="Final", status=IssueStatus.IN_PROGRESS),
            make_record("bd-new", title="Draft"),
        )
        assert folded.new_record.title == "Final"
        assert folded.new_record.status is IssueStatus.IN_PROGRESS
        assert folded.record_title == "Final"
        assert folded.edits.is_empty


class TestRemoval:
    def test_remove(self, queue, make_record):
        queue.enqueue("bd-1", EditSet(title="x"), make_record())
        assert queue.remove("bd-1") is True
        assert queue.remove("bd-1") is False

    def test_remove_with_stale_revision_keeps_entry(self, queue, make_record):
        queue.enqueue("bd-1", EditSet(title="x"), make_record())
        queue.fold("bd-1", EditSet(title="y"))
        assert queue.remove("bd-1", revision=0) is False
        assert queue.get("bd-1").edits.title == "y"
        assert queue.remove("bd-1", revision=1) is True

    def test_remove_with_stale_entry_id_keeps_entry(self, queue, make_record):
        first = queue.enqueue("bd-1", EditSet(title="x"), make_record())
        queue.discard(first.entry_id)
        queue.enqueue("bd-1", EditSet(assignee="alice"), make_record())
        assert queue.remove("bd-1", revision=0, entry_id=first.entry_id) is False
        assert queue.get("bd-1").edits.assignee == "alice"

    def test_discard_by_entry_id(self, queue, make_record):
        entry = queue.enqueue("bd-1", EditSet(title="x"), make_record())
        assert queue.discard("nope") is None
        assert queue.discard(entry.entry_id) == entry
        assert len(queue) == 0

    def test_fold_without_entry_raises(self, queue):
        with pytest.raises(KeyError):
            queue.fold("bd-9", EditSet(title="x"))


class TestRebase:
    """A pass synced part of a folded entry."""

    def test_synced_fields_become_base(self, queue, make_record):
        settled = queue.enqueue("bd-1", EditSet(title="First"), make_record())
        queue.fold("bd-1", EditSet(title="Second", priority=3))

        rebased = queue.rebase(settled, make_record(title="First"))

        assert rebased.base.title == "First"
        assert int(rebased.base.priority) == 2
        assert rebased.edits.title == "Second"
        assert int(rebased.edits.priority) == 3
        assert rebased.entry_id == settled.entry_id

    def test_folded_create_becomes_edit(self, queue, make_record):
        settled = queue.enqueue_create(make_record("bd-new", title="Draft"))
        queue.fold("bd-new", EditSet(title="Final"))
        synced = make_record("bd-new", title="Draft")

        rebased = queue.rebase(settled, synced)

        assert not rebased.is_create
        assert rebased.base == synced
        assert rebased.edits == EditSet(title="Final")

    def test_replaced_entry_is_left_alone(self, queue, make_record):
        settled = queue.enqueue("bd-1", EditSet(title="First"), make_record())
        queue.discard(settled.entry_id)
        fresh = queue.enqueue("bd-1", EditSet(assignee="alice"), make_record())

        assert queue.rebase(settled, make_record(title="First")) is None
        assert queue.get("bd-1") == fresh


class TestReplaceEdits:
    def test_replace_edits_and_override_base(self, queue, make_record):
        queue.enqueue("bd-1", EditSet(title="Local"), make_record(title="Base"))
        replaced = queue.replace_edits(
            "bd-1", EditSet(title="Decided"), {"title": "Remote"}
        )
        assert replaced.edits.title == "Decided"
        assert replaced.base.title == "Remote"
        assert replaced.revision == 1

    def test_replace_edits_missing_entry(self, queue):
        with pytest.raises(KeyError):
            queue.replace_edits("bd-1", EditSet(title="x"))


class TestPersistence:
    """Every mutation is durable before the call returns."""

    def test_entries_survive_reopen(self, queue, make_record, state_dir, clock):
        queue.enqueue("bd-1", EditSet(title="x", priority=3), make_record())
        queue.enqueue_create(make_record("bd-2"))
        reopened = _reopen(queue, state_dir, clock)
        assert [e.record_id for e in reopened.list()] == ["bd-1", "bd-2"]
        assert reopened.get("bd-1") == queue.get("bd-1")
        assert reopened.get("bd-2").is_create

    def test_removal_survives_reopen(self, queue, make_record, state_dir, clock):
        queue.enqueue("bd-1", EditSet(title="x"), make_record())
        queue.remove("bd-1")
        assert len(_reopen(queue, state_dir, clock)) == 0

    def test_unreadable_entry_dropped_on_load(self, state_dir, clock, caplog):
        storage = StateFile(state_dir, "pending", "octo__tracker")
        storage.save({"entries": [{"record_id": "bd-1"}]})
        assert len(ChangeQueue(storage, clock=clock)) == 0
        assert "unreadable" in caplog.text

    def test_unreadable_offline_expiry_dropped_on_load(
        self, state_dir, clock, make_record, caplog
    ):
        storage = StateFile(state_dir, "pending", "octo__tracker")
        queue = ChangeQueue(storage, clock=clock)
        queue.enqueue("bd-1", EditSet(title="x"), make_record())
        data = storage.load()
        data["offline_editing"] = {"enabled": True, "expires_at": "tomorrow"}
        storage.save(data)

        reopened = ChangeQueue(storage, clock=clock)

        assert reopened.offline_editing_active() is False
        assert reopened.offline_expires_at is None
        assert [e.record_id for e in reopened.list()] == ["bd-1"]
        assert "unreadable offline window expiry" in caplog.text


class TestOfflineWindow:
    """Tests for the offline editing window."""

    def test_disabled_by_default(self, queue):
        assert queue.offline_editing_active() is False
        assert queue.offline_time_remaining() == ""

    def test_enable_sets_expiry(self, queue, clock):
        expires = queue.enable_offline_editing(2)
        assert queue.offline_editing_active() is True
        assert queue.offline_expires_at == expires
        assert queue.offline_time_remaining() == "2h 0m"

    def test_non_positive_window_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.enable_offline_editing(0)

    def test_remaining_minutes_only(self, queue, clock):
        queue.enable_offline_editing(1)
        clock.advance(minutes=15)
        assert queue.offline_time_remaining() == "45m"

    def test_expiry_disables_window(self, queue, clock):
        queue.enable_offline_editing(1)
        clock.advance(hours=1)
        assert queue.offline_time_remaining() == "expired"
        assert queue.offline_editing_active() is False
        assert queue.offline_expires_at is None

    def test_expiry_keeps_queued_entries(self, queue, clock, make_record):
        queue.enable_offline_editing(1)
        queue.enqueue("bd-1", EditSet(title="x"), make_record())
        clock.advance(hours=2)
        assert queue.offline_editing_active() is False
        assert len(queue) == 1

    def test_window_survives_reopen(self, queue, state_dir, clock):
        queue.enable_offline_editing(3)
        reopened = _reopen(queue, state_dir, clock)
        assert reopened.offline_editing_active() is True
        assert reopened.offline_expires_at == queue.offline_expires_at

    def test_disable(self, queue):
        queue.enable_offline_editing(3)
        queue.disable_offline_editing()
        assert queue.offline_editing_active() is False
