"""Conflict tracking and resolution strategies for the sync engine.

Provides:

- ``ConflictSet``: Durable set of open conflicts, at most one per record.
  Resolving a field moves it into the conflict's decisions; once no field
  remains the conflict is ready to dissolve.
- ``resolution_edits()``: Turns a fully resolved conflict back into an
  ``EditSet`` for the next reconcile pass.  Decisions are never committed
  directly; they go through the merge again so a remote change made after
  the decision is still detected.
- Strategies: ``ManualResolver`` (leave conflicts for a human),
  ``LocalWinsResolver`` and ``RemoteWinsResolver`` (decide every field
  immediately).

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from pydantic import ValidationError

from beads_sync.sync.merger import apply_resolution, coerce_display_value
from beads_sync.sync.models import (
    Conflict,
    ConflictingField,
    EditSet,
    FieldDecision,
    utcnow,
)
from beads_sync.sync.state import StateFile

logger = logging.getLogger(__name__)

# Sides understood by ``ConflictSet.resolve_field``.
KEEP_LOCAL = "local"
KEEP_REMOTE = "remote"


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolution strategies must satisfy."""

    def choose(self, field: ConflictingField) -> str | None:
        """Pick a side for one conflicting field.

        Args:
            field: The conflicting field.

        Returns:
            ``"local"``, ``"remote"``, or ``None`` to leave the field for a
            human decision.
        """
        ...  # pragma: no cover


class ManualResolver:
    """Leave every conflict for the user."""

    def choose(self, field: ConflictingField) -> str | None:
        return None


class LocalWinsResolver:
    """Always resolve conflicts in favour of the local edit."""

    def choose(self, field: ConflictingField) -> str | None:
        return KEEP_LOCAL


class RemoteWinsResolver:
    """Always resolve conflicts in favour of the remote value."""

    def choose(self, field: ConflictingField) -> str | None:
        return KEEP_REMOTE


_STRATEGY_MAP: dict[str, type] = {
    "manual": ManualResolver,
    "local-wins": LocalWinsResolver,
    "remote-wins": RemoteWinsResolver,
}

STRATEGIES = tuple(sorted(_STRATEGY_MAP))


def create_resolver(strategy: str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"manual"``, ``"local-wins"``, ``"remote-wins"``.

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Conflict set
# ---------------------------------------------------------------------------


class ConflictSet:
    """Durable collection of open conflicts keyed by record id.

    Args:
        storage: State document the conflicts are persisted to.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        storage: StateFile,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._conflicts: dict[str, Conflict] = {}
        self._load()

    def list(self) -> list[Conflict]:
        return list(self._conflicts.values())

    def get(self, record_id: str) -> Conflict | None:
        return self._conflicts.get(record_id)

    def __len__(self) -> int:
        return len(self._conflicts)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._conflicts

    def upsert(
        self,
        record_id: str,
        record_title: str,
        fields: list[ConflictingField],
    ) -> Conflict:
        """Create or refresh the conflict for *record_id*.

        An existing conflict keeps its identity and any decision for a
        field that is not conflicting again.
        """
        existing = self._conflicts.get(record_id)
        if existing is None:
            conflict = Conflict(
                conflict_id=str(uuid.uuid4()),
                record_id=record_id,
                record_title=record_title,
                fields=fields,
                created_at=self._clock(),
            )
        else:
            names = {item.field_name for item in fields}
            conflict = existing.model_copy(
                update={
                    "record_title": record_title,
                    "fields": fields,
                    "decisions": {
                        name: decision
                        for name, decision in existing.decisions.items()
                        if name not in names
                    },
                }
            )
        self._conflicts[record_id] = conflict
        self._persist()
        logger.info(
            "Conflict on %s: %s",
            record_id,
            ", ".join(item.field_name for item in fields),
        )
        return conflict

    def resolve_field(
        self,
        record_id: str,
        field_name: str,
        side: str | None = None,
        *,
        value: str | None = None,
    ) -> Conflict:
        """Record a decision for one field of an open conflict.

        Args:
            record_id: Record whose conflict to update.
            field_name: Conflicting field to decide.
            side: ``"local"`` or ``"remote"`` to keep that side's value.
            value: Explicit display value, taken literally.

        Returns:
            The updated conflict; ``is_resolved`` is ``True`` once no field
            remains.

        Raises:
            KeyError: If there is no open conflict for *record_id* or the
                field is not part of it.
            ValueError: If not exactly one of *side* and *value* is given,
                *side* is unknown, or *value* is invalid for the field.
        """
        if (side is None) == (value is None):
            raise ValueError("Provide exactly one of a side or a value")
        if side is not None and side not in (KEEP_LOCAL, KEEP_REMOTE):
            raise ValueError(f"Invalid choice '{side}': use local or remote")
        conflict = self._conflicts.get(record_id)
        if conflict is None:
            raise KeyError(f"No open conflict for record '{record_id}'")
        item = conflict.field(field_name)
        if item is None:
            raise KeyError(
                f"Field '{field_name}' is not conflicting on '{record_id}'"
            )

        if side == KEEP_LOCAL:
            value = item.local_value
        elif side == KEEP_REMOTE:
            value = item.remote_value
        # Reject values that cannot be turned back into an edit.
        coerce_display_value(field_name, value)

        decisions = dict(conflict.decisions)
        decisions[field_name] = FieldDecision(
            value=value, remote_value=item.remote_value
        )
        updated = conflict.model_copy(
            update={
                "fields": [
                    other
                    for other in conflict.fields
                    if other.field_name != field_name
                ],
                "decisions": decisions,
            }
        )
        self._conflicts[record_id] = updated
        self._persist()
        logger.info(
            "Resolved %s on %s (%d fields left)",
            field_name,
            record_id,
            len(updated.fields),
        )
        return updated

    def auto_resolve(
        self, record_id: str, resolver: ConflictResolver
    ) -> Conflict | None:
        """Let *resolver* decide every field it can.

        Returns:
            The updated conflict, or ``None`` if no conflict is open.
        """
        conflict = self._conflicts.get(record_id)
        if conflict is None:
            return None
        for item in list(conflict.fields):
            side = resolver.choose(item)
            if side is not None:
                conflict = self.resolve_field(record_id, item.field_name, side)
        return conflict

    def remove(self, record_id: str) -> Conflict | None:
        conflict = self._conflicts.pop(record_id, None)
        if conflict is not None:
            self._persist()
        return conflict

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self._storage.load()
        for raw in data.get("conflicts", []):
            try:
                conflict = Conflict.model_validate(raw)
            except ValidationError as exc:
                logger.error("Dropping unreadable conflict: %s", exc)
                continue
            self._conflicts[conflict.record_id] = conflict

    def _persist(self) -> None:
        self._storage.save(
            {
                "conflicts": [
                    conflict.model_dump(mode="json")
                    for conflict in self._conflicts.values()
                ]
            }
        )


def resolution_edits(
    conflict: Conflict, edits: EditSet
) -> tuple[EditSet, dict[str, Any]]:
    """Convert the decisions of a resolved conflict into pending edits.

    Args:
        conflict: A conflict whose ``fields`` list is empty.
        edits: The queued edits the conflict arose from.

    Returns:
        ``(edits, base_overrides)``: *edits* with every decided field set to
        its decision, and the remote value each decision was made against,
        to be used as that field's merge ancestor.
    """
    overrides: dict[str, Any] = {}
    for name, decision in conflict.decisions.items():
        edits = apply_resolution(edits, name, decision.value)
        remote = coerce_display_value(name, decision.remote_value)
        if name in ("description", "assignee") and remote == "":
            remote = None
        overrides[name] = remote
    return edits, overrides
