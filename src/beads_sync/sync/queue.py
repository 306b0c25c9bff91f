"""Durable queue of not-yet-synchronized edits.

The ``ChangeQueue`` holds at most one ``QueuedEdit`` per record id.  A second
edit to a record that is already queued is folded into the existing entry
(later field values win) without touching its base snapshot, so the merge
ancestor always stays the record as it was when editing started.  Only a
pass that synced part of a folded entry moves its base forward, for the
fields it synced.

The queue also owns the offline editing window: a flag plus an expiry
instant, checked against an injected clock on every query.  Expiry only
blocks *new* offline edits; it never drops queued entries.

Every mutation is persisted through ``StateFile`` before the method returns.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from beads_sync.sync.merger import apply_edits
from beads_sync.sync.models import (
    EDITABLE_FIELDS,
    EditSet,
    QueuedEdit,
    Record,
    utcnow,
)
from beads_sync.sync.state import StateFile

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ChangeQueue:
    """Ordered, durable collection of pending edits keyed by record id.

    Args:
        storage: State document the queue is persisted to.
        clock: Returns the current aware UTC time.
    """

    def __init__(self, storage: StateFile, clock: Clock = utcnow) -> None:
        self._storage = storage
        self._clock = clock
        self._entries: dict[str, QueuedEdit] = {}
        self._offline_enabled = False
        self._offline_expires_at: datetime | None = None
        self._load()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> list[QueuedEdit]:
        """Return a snapshot of queued entries in queue order."""
        return list(self._entries.values())

    def get(self, record_id: str) -> QueuedEdit | None:
        return self._entries.get(record_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._entries

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def enqueue(
        self, record_id: str, edits: EditSet, base: Record
    ) -> QueuedEdit | None:
        """Queue *edits* for *record_id* with *base* as merge ancestor.

        Folds into the existing entry when one is already queued.

        Returns:
            The queued entry, or ``None`` when *edits* is inert.

        Raises:
            ValueError: If *base* is not a snapshot of *record_id*.
        """
        if edits.is_empty:
            logger.debug("Ignoring inert edit set for %s", record_id)
            return None
        if base.id != record_id:
            raise ValueError(
                f"Base snapshot '{base.id}' does not match record '{record_id}'"
            )
        if record_id in self._entries:
            return self.fold(record_id, edits)

        entry = QueuedEdit(
            entry_id=str(uuid.uuid4()),
            record_id=record_id,
            record_title=base.title,
            edits=edits,
            base=base,
            created_at=self._clock(),
        )
        self._entries[record_id] = entry
        self._persist()
        logger.info(
            "Queued %s for %s (%d pending)",
            entry.summary.lower(),
            record_id,
            len(self._entries),
        )
        return entry

    def enqueue_create(self, record: Record) -> QueuedEdit:
        """Queue a brand-new record to be appended to the store.

        Raises:
            ValueError: If an entry for ``record.id`` is already queued.
        """
        if record.id in self._entries:
            raise ValueError(f"Record '{record.id}' already has a pending change")
        entry = QueuedEdit(
            entry_id=str(uuid.uuid4()),
            record_id=record.id,
            record_title=record.title,
            edits=EditSet(),
            new_record=record,
            created_at=self._clock(),
        )
        self._entries[record.id] = entry
        self._persist()
        logger.info("Queued creation of %s", record.id)
        return entry

    def fold(self, record_id: str, edits: EditSet) -> QueuedEdit:
        """Merge *edits* into the queued entry for *record_id*.

        Later field values win; the base snapshot is never advanced.

        Raises:
            KeyError: If nothing is queued for *record_id*.
        """
        existing = self._entries.get(record_id)
        if existing is None:
            raise KeyError(f"No pending change for record '{record_id}'")
        if edits.is_empty:
            return existing

        if existing.is_create:
            assert existing.new_record is not None
            folded = existing.model_copy(
                update={
                    "new_record": apply_edits(
                        existing.new_record, edits, now=self._clock()
                    ),
                    "record_title": edits.title or existing.record_title,
                    "revision": existing.revision + 1,
                }
            )
        else:
            folded = existing.model_copy(
                update={
                    "edits": existing.edits.merged_with(edits),
                    "revision": existing.revision + 1,
                }
            )
        self._entries[record_id] = folded
        self._persist()
        logger.info(
            "Folded edit into pending change for %s (revision %d)",
            record_id,
            folded.revision,
        )
        return folded

    def replace_edits(
        self,
        record_id: str,
        edits: EditSet,
        base_overrides: dict[str, Any] | None = None,
    ) -> QueuedEdit:
        """Replace the edits of a queued entry.

        Used when a conflict is fully resolved: *edits* carries the decided
        values and *base_overrides* sets the merge ancestor of each decided
        field to the remote value the decision was made against.

        Raises:
            KeyError: If nothing is queued for *record_id*.
        """
        existing = self._entries.get(record_id)
        if existing is None:
            raise KeyError(f"No pending change for record '{record_id}'")
        update: dict[str, Any] = {
            "edits": edits,
            "revision": existing.revision + 1,
        }
        if existing.base is not None and base_overrides:
            update["base"] = existing.base.model_copy(update=base_overrides)
        replaced = existing.model_copy(update=update)
        self._entries[record_id] = replaced
        self._persist()
        return replaced

    def remove(
        self,
        record_id: str,
        *,
        revision: int | None = None,
        entry_id: str | None = None,
    ) -> bool:
        """Remove the entry for *record_id*.

        Args:
            record_id: Record whose entry to remove.
            revision: When given, only remove if the entry is still at this
                revision; an entry folded since is kept for the next pass.
            entry_id: When given, only remove if the entry still has this
                identity; an entry discarded and queued again is kept.

        Returns:
            ``True`` if an entry was removed.
        """
        existing = self._entries.get(record_id)
        if existing is None:
            return False
        if entry_id is not None and existing.entry_id != entry_id:
            logger.info("Keeping %s: replaced during sync", record_id)
            return False
        if revision is not None and existing.revision != revision:
            logger.info(
                "Keeping %s: folded during sync (revision %d -> %d)",
                record_id,
                revision,
                existing.revision,
            )
            return False
        del self._entries[record_id]
        self._persist()
        return True

    def rebase(self, settled: QueuedEdit, synced: Record) -> QueuedEdit | None:
        """Move a folded entry past the part of it a pass already synced.

        *settled* is the entry as the pass saw it and *synced* the record
        the store now holds.  Each field *settled* changed takes its synced
        value as merge ancestor, so a later edit of the same field is not
        taken for a remote change.  A folded create becomes an edit of the
        created record.

        Returns:
            The rebased entry, or ``None`` if the entry was discarded or
            replaced meanwhile.
        """
        existing = self._entries.get(settled.record_id)
        if existing is None or existing.entry_id != settled.entry_id:
            return None

        if existing.is_create:
            assert existing.new_record is not None
            rebased = existing.model_copy(
                update={
                    "edits": _difference(synced, existing.new_record),
                    "base": synced,
                    "new_record": None,
                }
            )
        elif existing.base is not None:
            synced_values = {
                name: getattr(synced, name)
                for name in settled.edits.changed_fields
            }
            rebased = existing.model_copy(
                update={"base": existing.base.model_copy(update=synced_values)}
            )
        else:
            return existing

        self._entries[settled.record_id] = rebased
        self._persist()
        logger.info(
            "Rebased pending change for %s on synced fields", settled.record_id
        )
        return rebased

    def discard(self, entry_id: str) -> QueuedEdit | None:
        """Discard the entry with queue-entry identity *entry_id*.

        Returns:
            The discarded entry, or ``None`` if no entry matched.
        """
        for record_id, entry in self._entries.items():
            if entry.entry_id == entry_id:
                del self._entries[record_id]
                self._persist()
                logger.info("Discarded pending change for %s", record_id)
                return entry
        return None

    # ------------------------------------------------------------------
    # Offline editing window
    # ------------------------------------------------------------------

    def enable_offline_editing(self, hours: float) -> datetime:
        """Permit offline edits for *hours* from now.

        Returns:
            The expiry instant.

        Raises:
            ValueError: If *hours* is not positive.
        """
        if hours <= 0:
            raise ValueError("Offline editing window must be positive")
        self._offline_enabled = True
        self._offline_expires_at = self._clock() + timedelta(hours=hours)
        self._persist()
        logger.info(
            "Offline editing enabled until %s",
            self._offline_expires_at.isoformat(),
        )
        return self._offline_expires_at

    def disable_offline_editing(self) -> None:
        self._offline_enabled = False
        self._offline_expires_at = None
        self._persist()

    def offline_editing_active(self) -> bool:
        """Return whether offline edits are currently permitted.

        An expired window is switched off (and persisted) on this check.
        """
        if not self._offline_enabled:
            return False
        expires_at = self._offline_expires_at
        if expires_at is not None and self._clock() >= expires_at:
            logger.info("Offline editing window expired")
            self.disable_offline_editing()
            return False
        return True

    @property
    def offline_expires_at(self) -> datetime | None:
        return self._offline_expires_at

    def offline_time_remaining(self) -> str:
        """Format the remaining offline window, e.g. ``"2h 5m"``."""
        expires_at = self._offline_expires_at
        if expires_at is None:
            return ""
        remaining = int((expires_at - self._clock()).total_seconds())
        if remaining <= 0:
            return "expired"
        hours, rest = divmod(remaining, 3600)
        minutes = rest // 60
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self._storage.load()
        for raw in data.get("entries", []):
            try:
                entry = QueuedEdit.model_validate(raw)
            except ValidationError as exc:
                logger.error("Dropping unreadable pending change: %s", exc)
                continue
            self._entries[entry.record_id] = entry

        window = data.get("offline_editing") or {}
        self._offline_enabled = bool(window.get("enabled", False))
        self._offline_expires_at = None
        expires_raw = window.get("expires_at")
        if expires_raw:
            try:
                self._offline_expires_at = datetime.fromisoformat(expires_raw)
            except (TypeError, ValueError):
                logger.error(
                    "Dropping unreadable offline window expiry: %r", expires_raw
                )
                self._offline_enabled = False
        if self._entries:
            logger.info(
                "Loaded %d pending changes from %s",
                len(self._entries),
                self._storage.path,
            )

    def _persist(self) -> None:
        expires_at = self._offline_expires_at
        self._storage.save(
            {
                "entries": [
                    entry.model_dump(mode="json")
                    for entry in self._entries.values()
                ],
                "offline_editing": {
                    "enabled": self._offline_enabled,
                    "expires_at": expires_at.isoformat()
                    if expires_at
                    else None,
                },
            }
        )


def _difference(before: Record, after: Record) -> EditSet:
    """Edits that turn *before* into *after* on the editable fields."""
    update: dict[str, Any] = {}
    for name in EDITABLE_FIELDS:
        value = getattr(after, name)
        if value == getattr(before, name):
            continue
        if value is None and name in ("description", "assignee"):
            value = ""
        update[name] = value
    return EditSet.model_validate(update)
