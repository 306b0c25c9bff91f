"""MCP tool handlers for the sync engine.

Each module defines its ``types.Tool`` list and the matching ``ToolSpec``
list; the server registers ``ALL_SPECS``.
"""

from .errors import build_error_response
from .issues import ISSUE_SPECS, ISSUE_TOOLS
from .registry import ToolContext, ToolRegistry, ToolSpec, load_permissions_file
from .sync import SYNC_SPECS, SYNC_TOOLS
from .system import SYSTEM_SPECS, SYSTEM_TOOLS

ALL_SPECS: list[ToolSpec] = SYSTEM_SPECS + ISSUE_SPECS + SYNC_SPECS

__all__ = [
    "build_error_response",
    # Registry
    "ToolContext",
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "ISSUE_SPECS",
    "SYNC_SPECS",
    "SYSTEM_SPECS",
    # Tool lists
    "ISSUE_TOOLS",
    "SYNC_TOOLS",
    "SYSTEM_TOOLS",
]
