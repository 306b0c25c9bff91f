"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_report`` -- post-reconcile summary.
- ``format_conflict`` -- one conflict, field by field, for review.
- ``format_pending`` -- pending changes with their summaries.
- ``format_status`` -- orchestrator state and offline window.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import format_timestamp

if TYPE_CHECKING:
    from .models import Conflict, QueuedEdit, SyncReport, SyncStatus

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a reconcile report as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append("Sync report")
    lines.append(f"Started: {format_timestamp(report.started_at)}")
    if report.completed_at:
        lines.append(f"Completed: {format_timestamp(report.completed_at)}")
    if report.attempts > 1:
        lines.append(f"Attempts: {report.attempts}")
    lines.append("")

    lines.append(
        f"{len(report.records)} records: "
        f"{len(report.written)} written, "
        f"{len(report.unchanged)} unchanged, "
        f"{len(report.conflicts)} conflicts, "
        f"{len(report.transient)} failed, "
        f"{len(report.missing)} discarded"
    )
    lines.append("")

    if report.written:
        lines.append("Written:")
        for record_id in report.written:
            lines.append(f"  {record_id}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for conflict in report.conflicts:
            names = ", ".join(item.field_name for item in conflict.fields)
            lines.append(f"  {conflict.record_id}: {names}")
        lines.append("")

    if report.transient:
        lines.append("Failed (will retry):")
        for failure in report.transient:
            lines.append(f"  {failure.record_id}: {failure.error}")
        lines.append("")

    if report.missing:
        lines.append("Discarded (record deleted remotely):")
        for target in report.missing:
            lines.append(f"  {target.record_id} ({target.record_title})")
        lines.append("")

    if report.warnings:
        lines.append("Warnings:")
        for warning in report.warnings:
            lines.append(f"  {warning}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_conflict(conflict: Conflict) -> str:
    """Format a conflict with base, local and remote values per field."""
    lines = [f"Conflict on {conflict.record_id}: {conflict.record_title}"]
    for item in conflict.fields:
        lines.append(f"  {item.field_name}:")
        lines.append(f"    base:   {item.base_value!r}")
        lines.append(f"    local:  {item.local_value!r}")
        lines.append(f"    remote: {item.remote_value!r}")
    for name, decision in conflict.decisions.items():
        lines.append(f"  {name}: decided {decision.value!r}")
    return "\n".join(lines)


def format_pending(entries: list[QueuedEdit]) -> str:
    if not entries:
        return "No pending changes."
    lines = [f"{len(entries)} pending changes:"]
    for entry in entries:
        lines.append(
            f"  [{entry.entry_id}] {entry.record_id} "
            f"({entry.record_title}): {entry.summary}"
        )
    return "\n".join(lines)


def format_status(status: SyncStatus, offline_remaining: str = "") -> str:
    """Format orchestrator status for display.

    Args:
        status: Current status snapshot.
        offline_remaining: Offline window display, e.g. ``"2h 5m"``.
    """
    lines = [
        f"State: {status.state.value}",
        f"Pending changes: {status.pending}",
        f"Open conflicts: {status.conflicts}",
    ]
    if status.last_sync is not None:
        lines.append(f"Last sync: {format_timestamp(status.last_sync)}")
    if status.last_error:
        lines.append(f"Last error: {status.last_error}")
    if offline_remaining:
        lines.append(f"Offline editing: {offline_remaining}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.  Records are omitted;
    only their count is included.

    Args:
        report: The sync report.

    Returns:
        Dict with timings, counts, and per-outcome details.
    """
    return {
        "started_at": format_timestamp(report.started_at),
        "completed_at": format_timestamp(report.completed_at)
        if report.completed_at
        else None,
        "attempts": report.attempts,
        "counts": {
            "records": len(report.records),
            "written": len(report.written),
            "unchanged": len(report.unchanged),
            "conflicts": len(report.conflicts),
            "transient": len(report.transient),
            "missing": len(report.missing),
            "skipped_lines": report.skipped_lines,
        },
        "written": list(report.written),
        "unchanged": list(report.unchanged),
        "conflicts": [
            conflict.model_dump(mode="json") for conflict in report.conflicts
        ],
        "transient": [
            failure.model_dump(mode="json") for failure in report.transient
        ],
        "missing": [target.model_dump(mode="json") for target in report.missing],
        "warnings": list(report.warnings),
    }
