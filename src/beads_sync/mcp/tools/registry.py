"""ToolSpec and ToolRegistry for permission-based tool filtering.

Key concepts:
- ToolContext: What every handler receives -- the GitHub client, the sync
  orchestrator and the loaded configuration.
- ToolSpec: Immutable dataclass linking a Tool definition, required permissions,
  and an async handler with signature (ctx, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed permissions at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
- load_permissions_file: Reads a simple text file of permission names.

Permissions:
    ISSUE_VIEW   read records, conflicts and sync status
    ISSUE_EDIT   queue edits, creates and conflict decisions
    SYNC_RUN     run reconcile passes and change the offline window
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...config import Config
from ...core.client import GitHubClient
from ...sync.engine import OfflineEditingDisabledError, SyncOrchestrator
from ...sync.store import StoreConfigurationError, StoreUnavailableError

logger = logging.getLogger(__name__)

KNOWN_PERMISSIONS = frozenset({"ISSUE_VIEW", "ISSUE_EDIT", "SYNC_RUN"})


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Objects shared by all tool handlers for one server run."""

    client: GitHubClient
    orchestrator: SyncOrchestrator
    config: Config


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Permissions required to use this tool.
            Empty frozenset means the tool is always available.
        handler: Async handler with signature (ctx, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[ToolContext, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional permission-based filtering.

    If allowed_permissions is None, all specs are included.
    Otherwise, a spec is included only if:
    - its permissions set is empty (always available), or
    - its permissions are a subset of allowed_permissions.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_permissions is None
                or not spec.permissions
                or spec.permissions <= allowed_permissions
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        ctx: ToolContext,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Sync engine exceptions are translated into structured error
        responses with corrective actions.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(ctx, args)
        except KeyError as e:
            return build_error_response(
                "not_found",
                str(e.args[0]) if e.args else str(e),
                "Use issue_list or conflict_list to see what exists.",
            )
        except OfflineEditingDisabledError as e:
            return build_error_response(
                "offline_disabled",
                str(e),
                "Call offline_enable to allow edits while offline.",
            )
        except StoreUnavailableError as e:
            logger.warning("Store unavailable in %s: %s", name, e)
            return build_error_response(
                "store_unavailable",
                str(e),
                "Check network access and the GitHub token, then retry.",
            )
        except StoreConfigurationError as e:
            return build_error_response(
                "configuration_error",
                str(e),
                "Fix BEADS_REPO and BEADS_PATH, then restart the server.",
            )
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Retry later or check the server log.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load permissions from a text file.

    Format: one permission per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only access
        ISSUE_VIEW

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file names an unknown permission or is empty.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Invalid permission '{stripped}' at line {line_num} in {path}. "
                f"Expected one of {', '.join(sorted(KNOWN_PERMISSIONS))}."
            )
        permissions.add(stripped)
    if not permissions:
        raise ValueError(
            f"No permissions found in {path}. File must contain at least one permission."
        )
    return frozenset(permissions)
