"""Offline-first issue sync engine.

Public API for keeping a local, possibly offline, view of an issue tracker
in step with a newline-delimited JSON record file stored in a GitHub
repository.

Architecture
------------
The remote file is the only source of truth.  Local edits are queued as
sparse field changes together with the record as it was when editing
started (the merge ancestor).  A reconcile pass merges every queued edit
three-way against the current remote record and commits the result in one
write guarded by the file's version token.  Fields changed on both sides
become conflicts for a human (or a strategy) to decide.

Modules:

- ``engine``    -- ``SyncOrchestrator``: reconcile passes, submit, resolve.
- ``store``     -- ``RepositoryStore`` contract, GitHub adapter, probe.
- ``queue``     -- ``ChangeQueue``: durable pending edits, offline window.
- ``resolver``  -- ``ConflictSet`` and resolution strategies.
- ``merger``    -- Three-way per-field merge.
- ``codec``     -- Record file parse/serialize.
- ``state``     -- ``StateFile``: atomic JSON state documents.
- ``models``    -- Record, EditSet, QueuedEdit, Conflict, SyncReport.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from beads_sync.sync import (
        ChangeQueue, ConflictSet, GitHubRepositoryStore, StateFile,
        SyncOrchestrator, format_sync_report,
    )

    state_dir = Path(".beads_sync")
    orchestrator = SyncOrchestrator(
        store=GitHubRepositoryStore(client, "octo", "tracker", ".beads/issues.jsonl"),
        queue=ChangeQueue(StateFile(state_dir, "pending", "octo__tracker")),
        conflicts=ConflictSet(StateFile(state_dir, "conflicts", "octo__tracker")),
    )

    report = await orchestrator.reconcile()
    print(format_sync_report(report))
"""

from .codec import ParseResult, SkippedLine, parse, parse_records, serialize
from .engine import OfflineEditingDisabledError, SyncOrchestrator
from .merger import apply_edits, apply_resolution, merge
from .models import (
    Conflict,
    ConflictingField,
    EditSet,
    QueuedEdit,
    Record,
    SyncReport,
    SyncState,
    SyncStatus,
)
from .queue import ChangeQueue
from .reporter import (
    format_conflict,
    format_pending,
    format_status,
    format_sync_report,
    report_to_json,
)
from .resolver import ConflictSet, create_resolver
from .state import StateFile
from .store import (
    Committed,
    GitHubRepositoryStore,
    MemoryRepositoryStore,
    PreconditionFailed,
    RepositoryStore,
    StoreConfigurationError,
    StoreSnapshot,
    StoreUnavailableError,
    probe_repository,
)

__all__ = [
    "ChangeQueue",
    "Committed",
    "Conflict",
    "ConflictSet",
    "ConflictingField",
    "EditSet",
    "GitHubRepositoryStore",
    "MemoryRepositoryStore",
    "OfflineEditingDisabledError",
    "ParseResult",
    "PreconditionFailed",
    "QueuedEdit",
    "Record",
    "RepositoryStore",
    "SkippedLine",
    "StateFile",
    "StoreConfigurationError",
    "StoreSnapshot",
    "StoreUnavailableError",
    "SyncOrchestrator",
    "SyncReport",
    "SyncState",
    "SyncStatus",
    "apply_edits",
    "apply_resolution",
    "create_resolver",
    "format_conflict",
    "format_pending",
    "format_status",
    "format_sync_report",
    "merge",
    "parse",
    "parse_records",
    "probe_repository",
    "report_to_json",
    "serialize",
]
