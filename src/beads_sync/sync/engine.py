"""Reconcile orchestrator for offline-first issue sync.

The ``SyncOrchestrator`` ties together the store, change queue, merge
engine and conflict set into one reconcile pass.  A pass:

1. Reads every record and the version token from the store.
2. Snapshots the queue, leaving entries with an open conflict alone.
3. Discards entries whose record no longer exists remotely.
4. Merges each remaining entry against the current remote record.
5. Commits every clean merge in a single write guarded by the token,
   restarting once from step 1 if the store moved underneath it.
6. Applies queue removals and conflict upserts, and builds a ``SyncReport``.

Queue and conflict mutations are only applied once a pass reaches its end,
so a cancelled or retried attempt leaves no partial state.  Concurrent
``reconcile()`` calls share the in-flight pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from beads_sync.sync.merger import apply_edits, merge
from beads_sync.sync.models import (
    Conflict,
    ConflictingField,
    EditSet,
    Merged,
    MissingTarget,
    QueuedEdit,
    Record,
    SyncReport,
    SyncState,
    SyncStatus,
    TransientFailure,
    utcnow,
)
from beads_sync.sync.queue import ChangeQueue
from beads_sync.sync.resolver import (
    ConflictResolver,
    ConflictSet,
    ManualResolver,
    resolution_edits,
)
from beads_sync.sync.store import (
    Committed,
    PreconditionFailed,
    RepositoryStore,
    StoreSnapshot,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

# Total fetch/merge/commit attempts per reconcile call.
MAX_ATTEMPTS = 2

StatusCallback = Callable[[SyncStatus], None]


class OfflineEditingDisabledError(RuntimeError):
    """Raised when an edit is submitted offline without an active window."""


@dataclass
class _Attempt:
    """Outcome of one fetch/merge/commit attempt, not yet applied."""

    snapshot: StoreSnapshot | None = None
    records: list[Record] = field(default_factory=list)
    staged: list[QueuedEdit] = field(default_factory=list)
    unchanged: list[QueuedEdit] = field(default_factory=list)
    missing: list[QueuedEdit] = field(default_factory=list)
    conflicts: list[tuple[QueuedEdit, list[ConflictingField]]] = field(
        default_factory=list
    )
    transient: list[TransientFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    committed: bool = False
    precondition_failed: bool = False
    error: str | None = None


class SyncOrchestrator:
    """Run reconcile passes for one record store.

    Args:
        store: The authoritative record store.
        queue: Durable queue of pending edits.
        conflicts: Durable set of open conflicts.
        resolver: Strategy applied to new conflicts; defaults to manual.
        clock: Returns the current aware UTC time.
        online: Initial connectivity.
    """

    def __init__(
        self,
        store: RepositoryStore,
        queue: ChangeQueue,
        conflicts: ConflictSet,
        *,
        resolver: ConflictResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
        online: bool = True,
    ) -> None:
        self.store = store
        self.queue = queue
        self.conflicts = conflicts
        self.resolver = resolver or ManualResolver()
        self._clock = clock
        self._online = online

        self._state = self._resting_state()
        self._inflight: asyncio.Task[SyncReport] | None = None
        self._waiters = 0
        self._subscribers: list[StatusCallback] = []
        self._records: list[Record] = []
        self._last_sync: datetime | None = None
        self._last_error: str | None = None
        self._last_report: SyncReport | None = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def online(self) -> bool:
        return self._online

    @property
    def last_records(self) -> list[Record]:
        """Records as of the last successful read."""
        return list(self._records)

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            pending=len(self.queue),
            conflicts=len(self.conflicts),
            last_sync=self._last_sync,
            last_error=self._last_error,
        )

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Call *callback* with the new status on every state change.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        status = self.status()
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception:
                logger.exception("Sync status subscriber failed")

    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.debug("Sync state %s -> %s", self._state.value, state.value)
            self._state = state
        self._notify()

    def _resting_state(self) -> SyncState:
        if len(self.conflicts):
            return SyncState.CONFLICTS_PENDING
        return SyncState.IDLE

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    async def reconcile(self) -> SyncReport:
        """Run one reconcile pass, or join the pass already running.

        Transient store failures are reported, not raised.  Cancelling one
        caller leaves the pass running for the others; the pass itself is
        cancelled only when every caller waiting on it has been cancelled.

        Raises:
            StoreConfigurationError: If the store is unusable as configured.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._run())
            self._waiters = 0
        task = self._inflight
        self._waiters += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            last_waiter = task is self._inflight and self._waiters == 1
            if last_waiter and not task.done():
                task.cancel()
                # Let the pass unwind before the caller sees the cancellation.
                await asyncio.wait({task})
            raise
        finally:
            if task is self._inflight:
                self._waiters -= 1

    async def _run(self) -> SyncReport:
        started_at = self._clock()
        attempt = _Attempt()
        attempts = 0
        try:
            while attempts < MAX_ATTEMPTS:
                attempts += 1
                attempt = await self._attempt()
                if not attempt.precondition_failed:
                    break
                logger.info(
                    "Store changed during sync (attempt %d of %d)",
                    attempts,
                    MAX_ATTEMPTS,
                )

            if attempt.precondition_failed:
                message = "Store changed during sync; will retry next pass"
                attempt.transient.extend(
                    TransientFailure(record_id=entry.record_id, error=message)
                    for entry in attempt.staged
                )
                attempt.error = message

            self._apply(attempt)
        except BaseException:
            self._set_state(self._resting_state())
            raise
        self._state = self._resting_state()

        completed_at = self._clock()
        if attempt.error is None:
            self._last_sync = completed_at
        self._last_error = attempt.error

        report = SyncReport(
            started_at=started_at,
            completed_at=completed_at,
            attempts=attempts,
            written=[entry.record_id for entry in attempt.staged]
            if attempt.committed
            else [],
            unchanged=[entry.record_id for entry in attempt.unchanged],
            conflicts=[
                conflict
                for entry, _ in attempt.conflicts
                if (conflict := self.conflicts.get(entry.record_id)) is not None
            ],
            transient=attempt.transient,
            missing=[
                MissingTarget(
                    entry_id=entry.entry_id,
                    record_id=entry.record_id,
                    record_title=entry.record_title,
                )
                for entry in attempt.missing
            ],
            warnings=attempt.warnings,
            skipped_lines=attempt.snapshot.skipped_lines
            if attempt.snapshot
            else 0,
            records=self.last_records,
        )
        self._last_report = report
        self._notify()
        logger.info(
            "Sync finished: %d written, %d unchanged, %d conflicts, "
            "%d transient, %d missing",
            len(report.written),
            len(report.unchanged),
            len(report.conflicts),
            len(report.transient),
            len(report.missing),
        )
        return report

    async def _attempt(self) -> _Attempt:
        attempt = _Attempt()
        pending = [
            entry
            for entry in self.queue.list()
            if entry.record_id not in self.conflicts
        ]

        self._set_state(SyncState.FETCHING)
        try:
            snapshot = await self.store.read()
        except StoreUnavailableError as exc:
            logger.warning("Could not read store: %s", exc)
            attempt.error = str(exc)
            attempt.transient = [
                TransientFailure(record_id=entry.record_id, error=str(exc))
                for entry in pending
            ]
            return attempt

        attempt.snapshot = snapshot
        attempt.records = list(snapshot.records)
        if snapshot.skipped_lines:
            attempt.warnings.append(
                f"Skipped {snapshot.skipped_lines} malformed line(s) in the "
                "remote file"
            )
        if snapshot.raw_size and not snapshot.records:
            attempt.warnings.append(
                "Remote file is not empty but contains no readable records"
            )
        for warning in attempt.warnings:
            logger.warning(warning)

        self._set_state(SyncState.MERGING)
        self._merge_pending(attempt, pending)

        if not attempt.staged:
            return attempt

        self._set_state(SyncState.COMMITTING)
        try:
            outcome = await self.store.write(
                attempt.records,
                snapshot.version,
                message=_commit_message(attempt.staged),
            )
        except StoreUnavailableError as exc:
            logger.warning("Could not write store: %s", exc)
            attempt.error = str(exc)
            attempt.transient.extend(
                TransientFailure(record_id=entry.record_id, error=str(exc))
                for entry in attempt.staged
            )
            attempt.records = list(snapshot.records)
            return attempt

        if isinstance(outcome, PreconditionFailed):
            attempt.precondition_failed = True
            attempt.records = list(snapshot.records)
        elif isinstance(outcome, Committed):
            attempt.committed = True
        return attempt

    def _merge_pending(
        self, attempt: _Attempt, pending: list[QueuedEdit]
    ) -> None:
        now = self._clock()
        index = {record.id: pos for pos, record in enumerate(attempt.records)}

        for entry in pending:
            position = index.get(entry.record_id)

            if entry.is_create:
                assert entry.new_record is not None
                if position is not None:
                    logger.info(
                        "%s already exists remotely; dropping create",
                        entry.record_id,
                    )
                    attempt.unchanged.append(entry)
                else:
                    index[entry.record_id] = len(attempt.records)
                    attempt.records.append(entry.new_record)
                    attempt.staged.append(entry)
                continue

            if position is None or entry.base is None:
                logger.info(
                    "%s no longer exists remotely; discarding pending change",
                    entry.record_id,
                )
                attempt.missing.append(entry)
                continue

            remote = attempt.records[position]
            result = merge(entry.base, entry.edits, remote, now=now)
            if isinstance(result, Merged):
                if result.record == remote:
                    attempt.unchanged.append(entry)
                else:
                    attempt.records[position] = result.record
                    attempt.staged.append(entry)
            else:
                attempt.conflicts.append((entry, result.fields))

    def _apply(self, attempt: _Attempt) -> None:
        """Apply the queue and conflict changes of a finished attempt."""
        if attempt.snapshot is not None:
            self._records = list(attempt.records)

        settled = [entry for entry in attempt.unchanged if not entry.is_create]
        if attempt.committed:
            settled.extend(attempt.staged)
        synced = {record.id: record for record in attempt.records}
        for entry in settled:
            if self.queue.remove(
                entry.record_id, revision=entry.revision, entry_id=entry.entry_id
            ):
                continue
            # Folded while the pass ran: keep the rest, synced part done.
            if (record := synced.get(entry.record_id)) is not None:
                self.queue.rebase(entry, record)
        # A create whose id already existed is dropped, never rebased.
        dropped = [entry for entry in attempt.unchanged if entry.is_create]
        for entry in [*attempt.missing, *dropped]:
            self.queue.remove(
                entry.record_id, revision=entry.revision, entry_id=entry.entry_id
            )

        for entry, fields in attempt.conflicts:
            self.conflicts.upsert(entry.record_id, entry.record_title, fields)
            resolved = self.conflicts.auto_resolve(
                entry.record_id, self.resolver
            )
            if resolved is not None and resolved.is_resolved:
                self._dissolve(resolved)

    def _dissolve(self, conflict: Conflict) -> None:
        """Turn a fully resolved conflict back into pending edits."""
        entry = self.queue.get(conflict.record_id)
        if entry is not None:
            edits, overrides = resolution_edits(conflict, entry.edits)
            self.queue.replace_edits(conflict.record_id, edits, overrides)
        self.conflicts.remove(conflict.record_id)
        logger.info("Conflict on %s resolved", conflict.record_id)

    # ------------------------------------------------------------------
    # Local operations
    # ------------------------------------------------------------------

    def _check_can_edit(self) -> None:
        if not self._online and not self.queue.offline_editing_active():
            raise OfflineEditingDisabledError(
                "Offline editing is disabled. Enable it to queue changes "
                "while offline."
            )

    async def submit(self, record: Record, edits: EditSet) -> QueuedEdit | None:
        """Queue *edits* against *record* and reconcile when online.

        Args:
            record: The record as the editor saw it; the merge ancestor.
            edits: Field changes.

        Returns:
            The queued entry, or ``None`` for an inert edit set.

        Raises:
            OfflineEditingDisabledError: If offline without an active
                offline editing window.
        """
        if edits.is_empty:
            return None
        self._check_can_edit()
        entry = self.queue.enqueue(record.id, edits, record)
        self._notify()
        if self._online:
            await self.reconcile()
        return entry

    async def create(self, record: Record) -> QueuedEdit:
        """Queue a brand-new record and reconcile when online."""
        self._check_can_edit()
        entry = self.queue.enqueue_create(record)
        self._notify()
        if self._online:
            await self.reconcile()
        return entry

    async def resolve_conflict(
        self,
        record_id: str,
        field_name: str,
        side: str | None = None,
        *,
        value: str | None = None,
    ) -> Conflict:
        """Decide one conflicting field.

        Once every field is decided the conflict dissolves into pending
        edits, merged again on the next pass (immediately when online).

        Raises:
            KeyError: If there is no such conflict or field.
            ValueError: If the side or value is not valid for the field.
        """
        conflict = self.conflicts.resolve_field(
            record_id, field_name, side, value=value
        )
        if conflict.is_resolved:
            self._dissolve(conflict)
            self._state = self._resting_state()
            self._notify()
            if self._online:
                await self.reconcile()
        else:
            self._notify()
        return conflict

    def discard(self, entry_id: str) -> QueuedEdit | None:
        """Drop a pending entry and any conflict on its record."""
        entry = self.queue.discard(entry_id)
        if entry is not None:
            self.conflicts.remove(entry.record_id)
            if self._inflight is None or self._inflight.done():
                self._state = self._resting_state()
            self._notify()
        return entry

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._online = online
        self._notify()

    def local_view(self) -> list[Record]:
        """Return the last known records with pending edits applied."""
        records = list(self._records)
        index = {record.id: pos for pos, record in enumerate(records)}
        now = self._clock()
        for entry in self.queue.list():
            position = index.get(entry.record_id)
            if entry.is_create:
                if position is None and entry.new_record is not None:
                    index[entry.record_id] = len(records)
                    records.append(entry.new_record)
                continue
            if position is not None:
                records[position] = apply_edits(
                    records[position], entry.edits, now=now
                )
        return records

    def get_record(self, record_id: str) -> Record | None:
        for record in self.local_view():
            if record.id == record_id:
                return record
        return None


def _commit_message(staged: list[QueuedEdit]) -> str:
    if len(staged) == 1:
        entry = staged[0]
        verb = "Create" if entry.is_create else "Update"
        return f"{verb} issue {entry.record_id}"
    return f"Sync {len(staged)} issues"
