"""Pydantic models for the issue sync engine.

Defines the core data contracts used across all sync modules:

- ``Record``: One issue, stored as a single JSON line in the beads file.
- ``EditSet``: Sparse set of field changes produced by one editing session.
- ``QueuedEdit``: An ``EditSet`` plus its merge-ancestor snapshot.
- ``ConflictingField`` / ``Conflict``: Unresolved per-field divergence.
- ``Merged`` / ``Conflicted``: Tagged results of a three-way merge.
- ``SyncReport``: Aggregate results for one reconcile pass.

All models are frozen (immutable) for safety; "mutation" is done with
``model_copy(update=...)``.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

# Internet date-time, with or without fractional seconds.
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Exactly two variants are accepted: ``2024-01-01T00:00:00Z`` and
    ``2024-01-01T00:00:00.123Z`` (``Z`` or a numeric ``+HH:MM`` offset).

    Raises:
        ValueError: If *value* matches neither variant.
    """
    match = _TIMESTAMP_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    stamp, fraction, offset = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    if offset == "Z":
        offset = "+00:00"
    parsed = datetime.fromisoformat(f"{stamp}.{micros}{offset}")
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format *value* in the single form the writer emits."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class IssueStatus(str, Enum):
    """Workflow status of a record."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"

    @property
    def display_name(self) -> str:
        return {
            IssueStatus.OPEN: "Open",
            IssueStatus.IN_PROGRESS: "In Progress",
            IssueStatus.CLOSED: "Closed",
        }[self]


class PriorityLevel(IntEnum):
    """Ordinal priority, 1 (lowest) to 4 (highest)."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


class IssueType(str, Enum):
    """Kind of work a record tracks."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"


# Fields that local editing sessions may change, in merge/display order.
EDITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "priority",
    "assignee",
)


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


class Record(BaseModel):
    """One issue entity.

    Unknown keys present in the beads file are preserved as extras so that
    rewriting the file never drops fields written by other tools.

    Attributes:
        id: Stable identity, assigned once at creation. The merge key.
        title: Short summary.
        description: Optional long-form text.
        status: Workflow status.
        priority: Ordinal priority 1-4.
        issue_type: Kind of work.
        assignee: Optional assignee login.
        created_at: Creation timestamp (required).
        updated_at: Last update timestamp.
        closed_at: Close timestamp.
        parent: Optional id of a parent record (non-owning reference).
        comments: Opaque comments blob.
    """

    id: str = Field(min_length=1)
    title: str
    description: str | None = None
    status: IssueStatus
    priority: PriorityLevel
    issue_type: IssueType
    assignee: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    parent: str | None = None
    comments: str | None = None

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("created_at", "updated_at", "closed_at", mode="before")
    @classmethod
    def _decode_timestamp(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_timestamp(value)
        if value is None or isinstance(value, datetime):
            return value
        # Numeric epochs and other shapes are not part of the file format.
        raise ValueError(f"Invalid timestamp: {value!r}")

    def to_json_dict(self) -> dict[str, Any]:
        """Return the record as a JSON-ready dict using the file's key names."""
        data = self.model_dump(mode="json")
        for key in ("created_at", "updated_at", "closed_at"):
            stamp = getattr(self, key)
            data[key] = format_timestamp(stamp) if stamp is not None else None
        data["priority"] = int(self.priority)
        return data

    def field_values(self) -> dict[str, Any]:
        """Return the editable field values keyed by field name."""
        return {name: getattr(self, name) for name in EDITABLE_FIELDS}


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


class EditSet(BaseModel):
    """Sparse set of proposed field changes to one record.

    ``None`` means "unchanged". For ``description`` and ``assignee`` an empty
    string means "clear the value".
    """

    title: str | None = None
    description: str | None = None
    status: IssueStatus | None = None
    priority: PriorityLevel | None = None
    assignee: str | None = None

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        """True when no field is touched. Inert edit sets are never queued."""
        return not self.changed_fields

    @property
    def changed_fields(self) -> list[str]:
        return [
            name for name in EDITABLE_FIELDS if getattr(self, name) is not None
        ]

    def merged_with(self, later: EditSet) -> EditSet:
        """Return the field-wise union, with *later* winning per field."""
        update = {name: getattr(later, name) for name in later.changed_fields}
        return self.model_copy(update=update)


class QueuedEdit(BaseModel):
    """An ``EditSet`` waiting for synchronization.

    Attributes:
        entry_id: Stable queue-entry identity.
        record_id: Identity of the record being edited.
        record_title: Title at edit time, for display.
        edits: Pending field changes.
        base: Record as known locally at edit time; the merge ancestor.
        new_record: Set when the entry creates a record instead of editing.
        created_at: When the entry was first queued.
        revision: Incremented each time another edit is folded in.
    """

    entry_id: str
    record_id: str
    record_title: str
    edits: EditSet
    base: Record | None = None
    new_record: Record | None = None
    created_at: datetime
    revision: int = 0

    model_config = {"frozen": True}

    @property
    def is_create(self) -> bool:
        return self.new_record is not None

    @property
    def summary(self) -> str:
        if self.is_create:
            return "Created record"
        fields = self.edits.changed_fields
        if len(fields) == 1:
            return f"Changed {fields[0]}"
        return f"Changed {len(fields)} fields"


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class ConflictingField(BaseModel):
    """One field that diverged on both sides, as display strings."""

    field_name: str
    base_value: str
    local_value: str
    remote_value: str

    model_config = {"frozen": True}


class FieldDecision(BaseModel):
    """A user (or strategy) decision for one conflicting field.

    Attributes:
        value: The chosen display value.
        remote_value: The remote value the decision was made against. It
            becomes the merge ancestor for this field on the next pass.
    """

    value: str
    remote_value: str

    model_config = {"frozen": True}


class Conflict(BaseModel):
    """Unresolved divergence for one record.

    A conflict stays open until every field is resolved; resolving a field
    moves it from ``fields`` into ``decisions``.
    """

    conflict_id: str
    record_id: str
    record_title: str
    fields: list[ConflictingField]
    decisions: dict[str, FieldDecision] = {}
    created_at: datetime

    model_config = {"frozen": True}

    @property
    def is_resolved(self) -> bool:
        return not self.fields

    def field(self, name: str) -> ConflictingField | None:
        for item in self.fields:
            if item.field_name == name:
                return item
        return None


# ---------------------------------------------------------------------------
# Merge results
# ---------------------------------------------------------------------------


class Merged(BaseModel):
    """Clean merge outcome."""

    record: Record

    model_config = {"frozen": True}


class Conflicted(BaseModel):
    """Merge outcome with at least one conflicting field.

    ``placeholder`` carries the remote value for every conflicting field and
    the merged value for the rest; it is never written.
    """

    fields: list[ConflictingField]
    placeholder: Record

    model_config = {"frozen": True}


MergeResult = Merged | Conflicted


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class SyncState(str, Enum):
    """Observable orchestrator state."""

    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    COMMITTING = "committing"
    CONFLICTS_PENDING = "conflicts_pending"


class SyncStatus(BaseModel):
    """Snapshot of orchestrator state handed to subscribers."""

    state: SyncState
    pending: int = 0
    conflicts: int = 0
    last_sync: datetime | None = None
    last_error: str | None = None

    model_config = {"frozen": True}


class TransientFailure(BaseModel):
    """A queued edit that could not be synced this pass; retried next pass."""

    record_id: str
    error: str

    model_config = {"frozen": True}


class MissingTarget(BaseModel):
    """A queued edit discarded because its record no longer exists remotely."""

    entry_id: str
    record_id: str
    record_title: str

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one reconcile call.

    Attributes:
        started_at: When the call started.
        completed_at: When it finished.
        attempts: Number of fetch/merge/commit attempts (2 after a
            precondition retry).
        written: Record ids committed to the store.
        unchanged: Record ids whose edits were already reflected remotely.
        conflicts: Conflicts raised by this pass.
        transient: Edits that failed transiently.
        missing: Edits discarded because their target was deleted.
        warnings: Human-readable warnings (e.g. malformed remote lines).
        skipped_lines: Number of unparseable lines in the remote file.
        records: The authoritative record set after this pass.
    """

    started_at: datetime
    completed_at: datetime | None = None
    attempts: int = 0
    written: list[str] = []
    unchanged: list[str] = []
    conflicts: list[Conflict] = []
    transient: list[TransientFailure] = []
    missing: list[MissingTarget] = []
    warnings: list[str] = []
    skipped_lines: int = 0
    records: list[Record] = []

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def has_failures(self) -> bool:
        return bool(self.transient)

    @property
    def duration(self) -> timedelta | None:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def summary(self) -> str:
        """Format a human-readable summary of the pass.

        Returns:
            Multi-line summary string with counts by outcome.
        """
        lines = [
            "Sync report",
            f"  Attempts:   {self.attempts}",
            f"  Written:    {len(self.written)}",
            f"  Unchanged:  {len(self.unchanged)}",
            f"  Conflicts:  {len(self.conflicts)}",
            f"  Transient:  {len(self.transient)}",
            f"  Missing:    {len(self.missing)}",
            f"  Warnings:   {len(self.warnings)}",
            f"  Records:    {len(self.records)}",
        ]
        return "\n".join(lines)
