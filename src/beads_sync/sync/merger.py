"""Three-way field merge for the sync engine.

Key design choices:

* Resolution is per **whole field** (title, description, status, priority,
  assignee); there is no text diffing inside a field.
* The remote record is the starting point: it is the most recent committed
  state, so untouched fields and fields the editor never saw (type, parent,
  comments, unknown extras) always come from remote.
* ``merge()`` is pure.  The clock is injected through ``now`` so identical
  inputs give identical output.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from beads_sync.sync.models import (
    EDITABLE_FIELDS,
    ConflictingField,
    Conflicted,
    EditSet,
    IssueStatus,
    Merged,
    MergeResult,
    PriorityLevel,
    Record,
    utcnow,
)

# Optional string fields compare with ``None`` treated as "".
_OPTIONAL_TEXT_FIELDS = frozenset({"description", "assignee"})


def display_value(field_name: str, value: Any) -> str:
    """Return the display string used in conflicts for a field value."""
    if value is None:
        return ""
    if field_name == "status":
        return IssueStatus(value).value
    if field_name == "priority":
        return str(int(value))
    return str(value)


def _comparable(field_name: str, value: Any) -> Any:
    if field_name in _OPTIONAL_TEXT_FIELDS:
        return value or ""
    if field_name == "status" and value is not None:
        return IssueStatus(value).value
    if field_name == "priority" and value is not None:
        return int(value)
    return value


def _stored(field_name: str, value: Any) -> Any:
    # An empty string edit clears an optional field.
    if field_name in _OPTIONAL_TEXT_FIELDS and value == "":
        return None
    return value


def merge(
    base: Record,
    edits: EditSet,
    remote: Record,
    *,
    now: datetime | None = None,
) -> MergeResult:
    """Merge local *edits* made against *base* into *remote*.

    For every field touched by *edits*:

    * remote unchanged since *base*  -> take the edited value;
    * remote already equals the edit -> take it, no conflict;
    * otherwise                      -> ``ConflictingField``.

    Untouched fields take the remote value.

    Args:
        base: Record snapshot the edits were made against.
        edits: Local field changes.
        remote: Current committed record.
        now: Timestamp stamped into ``updated_at`` when the merge changes
            anything.  Defaults to the current UTC time.

    Returns:
        ``Merged`` with the record to write, or ``Conflicted`` as soon as one
        field conflicts.  When the merged record equals *remote* field for
        field, *remote* itself is returned.
    """
    conflicts: list[ConflictingField] = []
    update: dict[str, Any] = {}

    for name in EDITABLE_FIELDS:
        local_value = getattr(edits, name)
        if local_value is None:
            continue

        base_value = getattr(base, name)
        remote_value = getattr(remote, name)

        if _comparable(name, remote_value) == _comparable(name, base_value):
            update[name] = _stored(name, local_value)
        elif _comparable(name, remote_value) == _comparable(name, local_value):
            continue
        else:
            conflicts.append(
                ConflictingField(
                    field_name=name,
                    base_value=display_value(name, base_value),
                    local_value=display_value(name, local_value),
                    remote_value=display_value(name, remote_value),
                )
            )

    changed = {
        name: value
        for name, value in update.items()
        if value != getattr(remote, name)
    }

    if conflicts:
        return Conflicted(
            fields=conflicts, placeholder=remote.model_copy(update=changed)
        )

    if not changed:
        return Merged(record=remote)

    changed["updated_at"] = now or utcnow()
    return Merged(record=remote.model_copy(update=changed))


def apply_edits(
    record: Record, edits: EditSet, *, now: datetime | None = None
) -> Record:
    """Apply *edits* directly to *record* (local optimistic view)."""
    if edits.is_empty:
        return record
    update: dict[str, Any] = {
        name: _stored(name, getattr(edits, name))
        for name in edits.changed_fields
    }
    update["updated_at"] = now or utcnow()
    return record.model_copy(update=update)


def coerce_display_value(field_name: str, value: str) -> Any:
    """Convert a display string back into a typed field value.

    Raises:
        ValueError: If *field_name* is not editable or *value* is not a valid
            value for it.
    """
    if field_name not in EDITABLE_FIELDS:
        raise ValueError(f"Field '{field_name}' cannot be resolved")
    if field_name == "status":
        return IssueStatus(value)
    if field_name == "priority":
        try:
            return PriorityLevel(int(value))
        except (TypeError, ValueError):
            raise ValueError(
                f"Invalid priority '{value}': must be an integer 1-4"
            ) from None
    return value


def apply_resolution(edits: EditSet, field_name: str, value: str) -> EditSet:
    """Return *edits* with *field_name* set from a display-string decision."""
    typed = coerce_display_value(field_name, value)
    return edits.model_copy(update={field_name: typed})
