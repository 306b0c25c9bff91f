"""MCP tool handlers for reading and editing issue records.

Reads go through the orchestrator's local view, so pending edits show up
immediately.  Writes are queued and, when online, reconciled right away.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Any

import mcp.types as types

from ...sync.models import (
    EditSet,
    IssueStatus,
    IssueType,
    PriorityLevel,
    Record,
    utcnow,
)
from ...sync.reporter import format_sync_report, report_to_json
from ...validators import validate_record_id
from .errors import format_record, format_record_line, require_str, text_result
from .registry import ToolContext, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_ID_PREFIX = "bd"

_STATUS_VALUES = [status.value for status in IssueStatus]
_TYPE_VALUES = [kind.value for kind in IssueType]

_EDITABLE_PROPERTIES: dict[str, Any] = {
    "title": {"type": "string", "description": "New title"},
    "description": {
        "type": "string",
        "description": "New description; empty string clears it",
    },
    "status": {"type": "string", "enum": _STATUS_VALUES},
    "priority": {
        "type": "integer",
        "minimum": 1,
        "maximum": 4,
        "description": "1 (low) to 4 (critical)",
    },
    "assignee": {
        "type": "string",
        "description": "Assignee login; empty string unassigns",
    },
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


ISSUE_TOOLS: list[types.Tool] = [
    types.Tool(
        name="issue_list",
        description=(
            "List issue records, including changes not yet synced. "
            "Optionally filter by status or assignee."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": _STATUS_VALUES},
                "assignee": {"type": "string"},
            },
            "required": [],
        },
    ),
    types.Tool(
        name="issue_get",
        description="Get one issue record by id, including pending changes.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Record id"},
            },
            "required": ["id"],
        },
    ),
    types.Tool(
        name="issue_edit",
        description=(
            "Change fields of an issue. The change is queued and synced "
            "immediately when online; edits that collide with a remote "
            "change become conflicts (see conflict_list)."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Record id"},
                **_EDITABLE_PROPERTIES,
            },
            "required": ["id"],
        },
    ),
    types.Tool(
        name="issue_create",
        description="Create a new issue. An id is generated when omitted.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Record id (optional)"},
                "title": {"type": "string"},
                "description": {"type": "string"},
                "status": {
                    "type": "string",
                    "enum": _STATUS_VALUES,
                    "default": "open",
                },
                "priority": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 4,
                    "default": 2,
                },
                "issue_type": {
                    "type": "string",
                    "enum": _TYPE_VALUES,
                    "default": "task",
                },
                "assignee": {"type": "string"},
                "parent": {"type": "string", "description": "Parent record id"},
            },
            "required": ["title"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _ensure_loaded(ctx: ToolContext) -> None:
    """Run a first reconcile if nothing has been read from the store yet."""
    orchestrator = ctx.orchestrator
    if orchestrator.last_sync is None and orchestrator.online:
        await orchestrator.reconcile()


def _parse_edits(args: dict) -> EditSet:
    update: dict[str, Any] = {}
    for name in _EDITABLE_PROPERTIES:
        if args.get(name) is not None:
            update[name] = args[name]
    if "title" in update and not str(update["title"]).strip():
        raise ValueError("title cannot be empty")
    return EditSet.model_validate(update)


def _record_id(args: dict) -> str:
    record_id = require_str(args, "id")
    is_valid, error = validate_record_id(record_id)
    if not is_valid:
        raise ValueError(error)
    return record_id


def _new_record_id(existing: list[Record]) -> str:
    """Generate ``<prefix>-<hex>`` using the most common existing prefix."""
    prefixes = Counter(
        record.id.rsplit("-", 1)[0] for record in existing if "-" in record.id
    )
    prefix = prefixes.most_common(1)[0][0] if prefixes else DEFAULT_ID_PREFIX
    taken = {record.id for record in existing}
    while True:
        candidate = f"{prefix}-{uuid.uuid4().hex[:6]}"
        if candidate not in taken:
            return candidate


def _sync_suffix(ctx: ToolContext) -> str:
    orchestrator = ctx.orchestrator
    if not orchestrator.online:
        remaining = orchestrator.queue.offline_time_remaining()
        return f"Offline: change queued ({remaining} of offline editing left)."
    report = orchestrator.last_report
    return format_sync_report(report) if report else ""


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_list(ctx: ToolContext, args: dict) -> types.CallToolResult:
    await _ensure_loaded(ctx)
    records = ctx.orchestrator.local_view()

    status = args.get("status")
    if status:
        wanted = IssueStatus(status)
        records = [record for record in records if record.status == wanted]
    assignee = args.get("assignee")
    if assignee:
        records = [record for record in records if record.assignee == assignee]

    pending = {entry.record_id for entry in ctx.orchestrator.queue.list()}
    lines = [f"{len(records)} issues:"]
    for record in records:
        marker = " *" if record.id in pending else ""
        lines.append(f"  {format_record_line(record)}{marker}")
    if pending:
        lines.append("")
        lines.append("* has changes not yet synced")

    return text_result(
        "\n".join(lines),
        {
            "issues": [record.to_json_dict() for record in records],
            "pending": sorted(pending),
        },
    )


async def _handle_get(ctx: ToolContext, args: dict) -> types.CallToolResult:
    record_id = _record_id(args)
    await _ensure_loaded(ctx)
    record = ctx.orchestrator.get_record(record_id)
    if record is None:
        raise KeyError(f"No record '{record_id}'")

    text = format_record(record)
    entry = ctx.orchestrator.queue.get(record_id)
    if entry is not None:
        text += f"\n\nPending: {entry.summary}"
    if record_id in ctx.orchestrator.conflicts:
        text += "\nConflict: unresolved (see conflict_list)"
    return text_result(text, {"issue": record.to_json_dict()})


async def _handle_edit(ctx: ToolContext, args: dict) -> types.CallToolResult:
    record_id = _record_id(args)
    edits = _parse_edits(args)
    if edits.is_empty:
        raise ValueError(
            "No fields to change. Provide at least one of: "
            + ", ".join(_EDITABLE_PROPERTIES)
        )

    await _ensure_loaded(ctx)
    orchestrator = ctx.orchestrator
    # The merge ancestor is the record as last read; a queued entry keeps
    # its own base when further edits are folded in.
    base = next(
        (r for r in orchestrator.last_records if r.id == record_id), None
    )
    queued = orchestrator.queue.get(record_id)
    if base is None and queued is not None and queued.is_create:
        base = queued.new_record
    if base is None:
        raise KeyError(f"No record '{record_id}'")

    entry = await orchestrator.submit(base, edits)
    text = f"{record_id}: {', '.join(edits.changed_fields)} updated locally."
    suffix = _sync_suffix(ctx)
    if suffix:
        text += "\n\n" + suffix
    structured: dict[str, Any] = {
        "id": record_id,
        "changed_fields": edits.changed_fields,
        "pending": entry is not None and record_id in orchestrator.queue,
        "conflict": record_id in orchestrator.conflicts,
    }
    if orchestrator.online and orchestrator.last_report is not None:
        structured["sync"] = report_to_json(orchestrator.last_report)
    return text_result(text, structured)


async def _handle_create(ctx: ToolContext, args: dict) -> types.CallToolResult:
    title = require_str(args, "title")
    await _ensure_loaded(ctx)
    orchestrator = ctx.orchestrator

    record_id = args.get("id")
    if record_id:
        record_id = _record_id(args)
        if orchestrator.get_record(record_id) is not None:
            raise ValueError(f"Record '{record_id}' already exists")
    else:
        record_id = _new_record_id(orchestrator.local_view())

    now = utcnow()
    record = Record(
        id=record_id,
        title=title,
        description=args.get("description") or None,
        status=IssueStatus(args.get("status", "open")),
        priority=PriorityLevel(int(args.get("priority", 2))),
        issue_type=IssueType(args.get("issue_type", "task")),
        assignee=args.get("assignee") or None,
        created_at=now,
        updated_at=now,
        parent=args.get("parent") or None,
    )
    await orchestrator.create(record)

    text = f"Created {record_id}: {title}"
    suffix = _sync_suffix(ctx)
    if suffix:
        text += "\n\n" + suffix
    return text_result(
        text,
        {
            "issue": record.to_json_dict(),
            "pending": record_id in orchestrator.queue,
        },
    )


ISSUE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=ISSUE_TOOLS[0],
        permissions=frozenset({"ISSUE_VIEW"}),
        handler=_handle_list,
    ),
    ToolSpec(
        tool=ISSUE_TOOLS[1],
        permissions=frozenset({"ISSUE_VIEW"}),
        handler=_handle_get,
    ),
    ToolSpec(
        tool=ISSUE_TOOLS[2],
        permissions=frozenset({"ISSUE_EDIT"}),
        handler=_handle_edit,
    ),
    ToolSpec(
        tool=ISSUE_TOOLS[3],
        permissions=frozenset({"ISSUE_EDIT"}),
        handler=_handle_create,
    ),
]
