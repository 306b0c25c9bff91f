"""MCP tool handlers for synchronization, conflicts and offline editing.

Defines:

- ``sync_run`` -- run a reconcile pass and return the report.
- ``sync_status`` -- state, pending changes and the offline window.
- ``sync_discard`` -- drop a pending change.
- ``conflict_list`` / ``conflict_resolve`` -- inspect and decide conflicts.
- ``offline_enable`` / ``offline_disable`` -- manage offline editing.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import mcp.types as types

from ...sync.models import SyncReport
from ...sync.reporter import (
    format_conflict,
    format_pending,
    format_status,
    format_sync_report,
    report_to_json,
)
from ...sync.resolver import KEEP_LOCAL, KEEP_REMOTE
from .errors import require_str, text_result
from .registry import ToolContext, ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_run",
        description=(
            "Synchronize pending changes with the repository. Clean merges "
            "are committed in one write; fields changed on both sides "
            "become conflicts."
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
                "format": {
                    "type": "string",
                    "enum": ["text", "json"],
                    "default": "text",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_status",
        description=(
            "Show sync state, pending changes, open conflicts and the "
            "offline editing window."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_discard",
        description=(
            "Discard a pending change by entry id (see sync_status). Any "
            "conflict on the same record is dropped too."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "entry_id": {"type": "string", "description": "Pending entry id"},
            },
            "required": ["entry_id"],
        },
    ),
    types.Tool(
        name="conflict_list",
        description=(
            "List unresolved conflicts with base, local and remote values "
            "for every conflicting field."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="conflict_resolve",
        description=(
            "Decide one conflicting field: keep the local value, keep the "
            "remote value, or supply a new value. When every field is "
            "decided the record is merged again on the next sync."
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
                "field": {
                    "type": "string",
                    "enum": [
                        "title",
                        "description",
                        "status",
                        "priority",
                        "assignee",
                    ],
                },
                "choice": {
                    "type": "string",
                    "enum": [KEEP_LOCAL, KEEP_REMOTE],
                },
                "value": {
                    "type": "string",
                    "description": "Explicit value instead of a side",
                },
            },
            "required": ["id", "field"],
        },
    ),
    types.Tool(
        name="offline_enable",
        description=(
            "Work offline: stop syncing and allow edits to be queued for "
            "the given number of hours."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "hours": {
                    "type": "number",
                    "exclusiveMinimum": 0,
                    "description": "Window length (default from config)",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="offline_disable",
        description="Go back online and sync everything queued while offline.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _report_result(
    report: SyncReport, output_format: str, prefix: str = ""
) -> types.CallToolResult:
    structured = report_to_json(report)
    if output_format == "json":
        return text_result(json.dumps(structured, indent=2), structured)
    return text_result(prefix + format_sync_report(report), structured)


async def _handle_sync_run(ctx: ToolContext, args: dict) -> types.CallToolResult:
    output_format = args.get("format", "text")
    if output_format not in ("text", "json"):
        raise ValueError(f"Invalid format '{output_format}': use text or json")
    if not ctx.orchestrator.online:
        raise ValueError(
            "Offline editing is active. Call offline_disable to sync."
        )
    report = await ctx.orchestrator.reconcile()
    return _report_result(report, output_format)


async def _handle_sync_status(
    ctx: ToolContext, args: dict
) -> types.CallToolResult:
    orchestrator = ctx.orchestrator
    queue = orchestrator.queue
    status = orchestrator.status()
    remaining = (
        queue.offline_time_remaining() if queue.offline_editing_active() else ""
    )
    entries = queue.list()

    text = "\n\n".join(
        [
            f"Repository: {ctx.config.repo} ({ctx.config.path})",
            format_status(status, remaining),
            format_pending(entries),
        ]
    )
    structured: dict[str, Any] = {
        **status.model_dump(mode="json"),
        "online": orchestrator.online,
        "offline_editing": {
            "active": bool(remaining),
            "remaining": remaining,
        },
        "entries": [
            {
                "entry_id": entry.entry_id,
                "record_id": entry.record_id,
                "record_title": entry.record_title,
                "summary": entry.summary,
                "revision": entry.revision,
            }
            for entry in entries
        ],
    }
    return text_result(text, structured)


async def _handle_sync_discard(
    ctx: ToolContext, args: dict
) -> types.CallToolResult:
    entry_id = require_str(args, "entry_id")
    entry = ctx.orchestrator.discard(entry_id)
    if entry is None:
        raise KeyError(f"No pending change with entry id '{entry_id}'")
    return text_result(
        f"Discarded pending change for {entry.record_id} ({entry.summary})",
        {"entry_id": entry_id, "record_id": entry.record_id},
    )


async def _handle_conflict_list(
    ctx: ToolContext, args: dict
) -> types.CallToolResult:
    conflicts = ctx.orchestrator.conflicts.list()
    if not conflicts:
        text = "No open conflicts."
    else:
        text = "\n\n".join(format_conflict(conflict) for conflict in conflicts)
    return text_result(
        text,
        {"conflicts": [conflict.model_dump(mode="json") for conflict in conflicts]},
    )


async def _handle_conflict_resolve(
    ctx: ToolContext, args: dict
) -> types.CallToolResult:
    record_id = require_str(args, "id")
    field_name = require_str(args, "field")
    choice = args.get("choice")
    value = args.get("value")
    if (choice is None) == (value is None):
        raise ValueError("Provide exactly one of 'choice' or 'value'")
    if choice is not None and choice not in (KEEP_LOCAL, KEEP_REMOTE):
        raise ValueError(f"Invalid choice '{choice}': use local or remote")

    conflict = await ctx.orchestrator.resolve_conflict(
        record_id,
        field_name,
        choice,
        value=None if value is None else str(value),
    )
    if conflict.is_resolved:
        text = f"All conflicts on {record_id} decided."
        if ctx.orchestrator.online and ctx.orchestrator.last_report:
            text += "\n\n" + format_sync_report(ctx.orchestrator.last_report)
        else:
            text += " The decision will be synced when back online."
    else:
        remaining = ", ".join(item.field_name for item in conflict.fields)
        text = f"Decided {field_name} on {record_id}. Still conflicting: {remaining}"
    return text_result(
        text,
        {
            "id": record_id,
            "resolved": conflict.is_resolved,
            "remaining_fields": [item.field_name for item in conflict.fields],
        },
    )


async def _handle_offline_enable(
    ctx: ToolContext, args: dict
) -> types.CallToolResult:
    hours = float(args.get("hours") or ctx.config.offline_hours)
    expires_at = ctx.orchestrator.queue.enable_offline_editing(hours)
    ctx.orchestrator.set_online(False)
    remaining = ctx.orchestrator.queue.offline_time_remaining()
    return text_result(
        f"Offline editing enabled ({remaining} remaining). "
        "Changes are queued until offline_disable.",
        {"expires_at": expires_at.isoformat(), "remaining": remaining},
    )


async def _handle_offline_disable(
    ctx: ToolContext, args: dict
) -> types.CallToolResult:
    ctx.orchestrator.queue.disable_offline_editing()
    ctx.orchestrator.set_online(True)
    report = await ctx.orchestrator.reconcile()
    return _report_result(report, "text", prefix="Back online.\n\n")


_VIEW = frozenset({"ISSUE_VIEW"})
_EDIT = frozenset({"ISSUE_EDIT"})
_RUN = frozenset({"SYNC_RUN"})

SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SYNC_TOOLS[0], permissions=_RUN, handler=_handle_sync_run),
    ToolSpec(tool=SYNC_TOOLS[1], permissions=_VIEW, handler=_handle_sync_status),
    ToolSpec(tool=SYNC_TOOLS[2], permissions=_EDIT, handler=_handle_sync_discard),
    ToolSpec(tool=SYNC_TOOLS[3], permissions=_VIEW, handler=_handle_conflict_list),
    ToolSpec(
        tool=SYNC_TOOLS[4], permissions=_EDIT, handler=_handle_conflict_resolve
    ),
    ToolSpec(tool=SYNC_TOOLS[5], permissions=_RUN, handler=_handle_offline_enable),
    ToolSpec(
        tool=SYNC_TOOLS[6], permissions=_RUN, handler=_handle_offline_disable
    ),
]
