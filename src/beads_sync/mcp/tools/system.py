"""System tool handlers: repository probing."""

import logging

import mcp.types as types

from ...sync.store import probe_repository
from ...validators import validate_repo_slug
from .errors import text_result
from .registry import ToolContext, ToolSpec

logger = logging.getLogger(__name__)


SYSTEM_TOOLS = [
    types.Tool(
        name="repo_probe",
        description=(
            "Check whether a GitHub repository holds an issue store (a "
            "'.beads' directory). Defaults to the configured repository."
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
                "repo": {
                    "type": "string",
                    "description": "Repository slug, owner/name",
                },
            },
            "required": [],
        },
    )
]


async def _handle_repo_probe(ctx: ToolContext, args: dict) -> types.CallToolResult:
    slug = (args.get("repo") or ctx.config.repo).strip()
    is_valid, error = validate_repo_slug(slug)
    if not is_valid:
        raise ValueError(error)
    owner, name = slug.split("/")
    marker = ctx.config.marker_dir

    found = await probe_repository(ctx.client, owner, name, marker)
    if found:
        text = f"{slug} has a '{marker}' directory and can be synced."
    else:
        text = f"{slug} has no '{marker}' directory; it is not an issue store."
    return text_result(text, {"repo": slug, "marker": marker, "found": found})


SYSTEM_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYSTEM_TOOLS[0],
        permissions=frozenset(),
        handler=_handle_repo_probe,
    ),
]
