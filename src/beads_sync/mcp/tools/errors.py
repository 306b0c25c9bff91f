"""Error response builders and shared utilities for MCP tool handlers."""

from typing import Any

import mcp.types as types

from ...sync.models import Record, format_timestamp


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            offline_disabled, store_unavailable, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Examples:
        >>> build_error_response("not_found", "No record 'bd-1'", "Use issue_list to find records.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def text_result(
    text: str, structured: dict[str, Any] | None = None
) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def require_str(args: dict, key: str) -> str:
    """Return a required, non-blank string argument.

    Raises:
        ValueError: If missing or blank.
    """
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} is required")
    return value.strip()


# ---------------------------------------------------------------------------
# Shared formatting utilities
# ---------------------------------------------------------------------------


def format_record_line(record: Record) -> str:
    """One-line record summary: ``bd-1 [open] P2 Title (@alice)``."""
    line = (
        f"{record.id} [{record.status.value}] P{int(record.priority)} "
        f"{record.title}"
    )
    if record.assignee:
        line += f" (@{record.assignee})"
    return line


def format_record(record: Record) -> str:
    """Multi-line record display for issue_get."""
    lines = [
        f"{record.id}: {record.title}",
        f"  Status:   {record.status.display_name}",
        f"  Priority: {int(record.priority)} ({record.priority.display_name})",
        f"  Type:     {record.issue_type.value}",
        f"  Assignee: {record.assignee or '-'}",
        f"  Created:  {format_timestamp(record.created_at)}",
    ]
    if record.updated_at:
        lines.append(f"  Updated:  {format_timestamp(record.updated_at)}")
    if record.closed_at:
        lines.append(f"  Closed:   {format_timestamp(record.closed_at)}")
    if record.parent:
        lines.append(f"  Parent:   {record.parent}")
    if record.description:
        lines.append("")
        lines.append(record.description)
    return "\n".join(lines)
