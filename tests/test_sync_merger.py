"""Tests for the three-way field merge."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from beads_sync.sync.merger import (
    apply_edits,
    apply_resolution,
    coerce_display_value,
    display_value,
    merge,
)
from beads_sync.sync.models import (
    Conflicted,
    EditSet,
    IssueStatus,
    Merged,
    PriorityLevel,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestCleanMerge:
    """Edits apply when the remote side left the field alone."""

    def test_takes_local_when_remote_unchanged(self, make_record):
        base = make_record()
        result = merge(base, EditSet(title="New title"), base, now=NOW)
        assert isinstance(result, Merged)
        assert result.record.title == "New title"
        assert result.record.updated_at == NOW

    def test_untouched_fields_come_from_remote(self, make_record):
        base = make_record()
        remote = make_record(assignee="bob", priority=4)
        result = merge(base, EditSet(title="Local"), remote, now=NOW)
        assert isinstance(result, Merged)
        assert result.record.title == "Local"
        assert result.record.assignee == "bob"
        assert result.record.priority is PriorityLevel.CRITICAL

    def test_independent_fields_both_survive(self, make_record):
        base = make_record()
        remote = make_record(status="in_progress")
        result = merge(base, EditSet(assignee="alice"), remote, now=NOW)
        assert isinstance(result, Merged)
        assert result.record.status is IssueStatus.IN_PROGRESS
        assert result.record.assignee == "alice"

    def test_non_editable_fields_pass_through_from_remote(self, make_record):
        base = make_record()
        remote = make_record(
            comments="[remote comment]", parent="bd-0", issue_type="epic",
            labels=["x"],
        )
        result = merge(base, EditSet(title="T"), remote, now=NOW)
        assert isinstance(result, Merged)
        assert result.record.comments == "[remote comment]"
        assert result.record.parent == "bd-0"
        assert result.record.issue_type.value == "epic"
        assert result.record.model_extra == {"labels": ["x"]}

    def test_empty_string_clears_optional_field(self, make_record):
        base = make_record(assignee="alice")
        result = merge(base, EditSet(assignee=""), base, now=NOW)
        assert isinstance(result, Merged)
        assert result.record.assignee is None

    def test_default_clock_used_when_now_omitted(self, make_record):
        base = make_record()
        result = merge(base, EditSet(title="X"), base)
        assert isinstance(result, Merged)
        assert result.record.updated_at > base.updated_at


class TestConvergence:
    """Identical changes on both sides are not conflicts."""

    def test_remote_already_equals_edit(self, make_record):
        base = make_record()
        remote = make_record(title="Same")
        result = merge(base, EditSet(title="Same"), remote, now=NOW)
        assert isinstance(result, Merged)
        assert result.record is remote or result.record == remote

    def test_empty_edit_set_returns_remote_verbatim(self, make_record):
        base = make_record()
        remote = make_record(title="Remote")
        result = merge(base, EditSet(), remote, now=NOW)
        assert isinstance(result, Merged)
        assert result.record == remote

    def test_none_and_empty_description_compare_equal(self, make_record):
        base = make_record(description=None)
        remote = make_record(description=None)
        result = merge(base, EditSet(description=""), remote, now=NOW)
        assert isinstance(result, Merged)
        assert result.record == remote

    def test_merge_is_idempotent(self, make_record):
        base = make_record()
        edits = EditSet(title="Once", priority=PriorityLevel.HIGH)
        first = merge(base, edits, base, now=NOW)
        assert isinstance(first, Merged)
        second = merge(base, edits, first.record, now=NOW)
        assert isinstance(second, Merged)
        assert second.record == first.record


class TestConflicts:
    """Both sides changed the same field to different values."""

    def test_conflicting_title(self, make_record):
        base = make_record(title="Base")
        remote = make_record(title="Remote")
        result = merge(base, EditSet(title="Local"), remote, now=NOW)
        assert isinstance(result, Conflicted)
        assert len(result.fields) == 1
        field = result.fields[0]
        assert field.field_name == "title"
        assert field.base_value == "Base"
        assert field.local_value == "Local"
        assert field.remote_value == "Remote"

    def test_placeholder_keeps_remote_for_conflicting_field(self, make_record):
        base = make_record(title="Base")
        remote = make_record(title="Remote")
        edits = EditSet(title="Local", assignee="alice")
        result = merge(base, edits, remote, now=NOW)
        assert isinstance(result, Conflicted)
        assert result.placeholder.title == "Remote"
        assert result.placeholder.assignee == "alice"

    def test_display_values_for_enums(self, make_record):
        base = make_record(status="open", priority=2)
        remote = make_record(status="closed", priority=1)
        edits = EditSet(status=IssueStatus.IN_PROGRESS, priority=PriorityLevel.HIGH)
        result = merge(base, edits, remote, now=NOW)
        assert isinstance(result, Conflicted)
        by_name = {f.field_name: f for f in result.fields}
        assert by_name["status"].remote_value == "closed"
        assert by_name["status"].local_value == "in_progress"
        assert by_name["priority"].base_value == "2"
        assert by_name["priority"].local_value == "3"

    def test_absent_optional_displays_as_empty(self, make_record):
        base = make_record(assignee=None)
        remote = make_record(assignee="bob")
        result = merge(base, EditSet(assignee="alice"), remote, now=NOW)
        assert isinstance(result, Conflicted)
        assert result.fields[0].base_value == ""

    def test_fields_reported_in_field_order(self, make_record):
        base = make_record()
        remote = make_record(title="R", assignee="bob", description="R")
        edits = EditSet(assignee="alice", title="L", description="L")
        result = merge(base, edits, remote, now=NOW)
        assert isinstance(result, Conflicted)
        assert [f.field_name for f in result.fields] == [
            "title",
            "description",
            "assignee",
        ]

    def test_inputs_not_mutated(self, make_record):
        base = make_record(title="Base")
        remote = make_record(title="Remote")
        edits = EditSet(title="Local")
        merge(base, edits, remote, now=NOW)
        assert base.title == "Base"
        assert remote.title == "Remote"
        assert edits.title == "Local"


class TestApplyEdits:
    def test_overlays_changed_fields(self, make_record):
        record = make_record()
        updated = apply_edits(record, EditSet(status=IssueStatus.CLOSED), now=NOW)
        assert updated.status is IssueStatus.CLOSED
        assert updated.updated_at == NOW
        assert record.status is IssueStatus.OPEN

    def test_empty_edits_return_same_record(self, make_record):
        record = make_record()
        assert apply_edits(record, EditSet(), now=NOW) is record


class TestResolutionValues:
    def test_display_value_round_trip(self):
        assert display_value("priority", PriorityLevel.LOW) == "1"
        assert coerce_display_value("priority", "1") is PriorityLevel.LOW
        assert coerce_display_value("status", "closed") is IssueStatus.CLOSED

    def test_apply_resolution_sets_field(self):
        edits = apply_resolution(EditSet(title="x"), "status", "closed")
        assert edits.status is IssueStatus.CLOSED
        assert edits.title == "x"

    @pytest.mark.parametrize(
        "field_name,value",
        [
            ("status", "done"),
            ("priority", "7"),
            ("priority", "high"),
            ("issue_type", "bug"),
        ],
    )
    def test_invalid_decisions_rejected(self, field_name, value):
        with pytest.raises(ValueError):
            coerce_display_value(field_name, value)
