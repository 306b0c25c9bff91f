"""MCP server for offline-first issue sync using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents read and edit issue records stored in a GitHub repository, with
edits queued locally and synchronized through the sync engine.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import DEFAULT_LOG_FILE, setup_logging
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolContext,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.errors import text_result
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("beads-sync")

# Global tool context (initialized in main)
_context: ToolContext | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(ctx: ToolContext, args: dict) -> types.CallToolResult:
    """Handle ping tool -- validate the GitHub token."""
    try:
        login = await run_sync(ctx.client.validate_connection)
    except Exception as e:
        return build_error_response(
            "connection_failed",
            f"GitHub connection failed: {e}",
            "Check GITHUB_TOKEN and GITHUB_API_URL.",
        )
    return text_result(
        f"beads-sync connected to GitHub as {login}. "
        f"Repository: {ctx.config.repo}",
        {"login": login, "repo": ctx.config.repo, "version": __version__},
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test GitHub connectivity and return the authenticated login",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> ToolContext:
    """Get the global ToolContext.

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _context is None:
        raise RuntimeError(
            "Tool context not initialized. Server lifespan not started."
        )
    return _context


def set_context(context: ToolContext | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    ctx = get_context()
    try:
        return await get_registry().call_tool(name, arguments, ctx)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, optionally filtered by a permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging goes to a file only: stdout carries JSON-RPC.

    Args:
        config_overrides: Optional dict of CLI values (token, repo, path,
            debug, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout.
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    set_registry(build_registry(overrides.get("permissions_file")))

    # The context is installed here rather than inside the lifespan so that
    # running this file as __main__ does not set a second module copy.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(
            ToolContext(
                client=ctx["client"],
                orchestrator=ctx["orchestrator"],
                config=ctx["config"],
            )
        )
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="beads-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="beads-sync - MCP server for offline-first issue sync over GitHub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .beads_sync/config.yml)
  beads-sync

  # Sync a specific repository
  beads-sync --repo octo/tracker

  # Custom record file and log location
  beads-sync --path .beads/issues.jsonl --log-file /var/log/beads-sync.log

  # Read-only tools
  beads-sync --permissions-file read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )

    parser.add_argument(
        "--token",
        help="Override GitHub token (visible in process list -- prefer GITHUB_TOKEN env var)",
    )
    parser.add_argument(
        "--repo",
        help="Override repository slug owner/name (takes precedence over BEADS_REPO)",
    )
    parser.add_argument(
        "--path",
        help="Override record file path (takes precedence over BEADS_PATH)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (ISSUE_VIEW, ISSUE_EDIT, SYNC_RUN), # for comments.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"beads-sync version {__version__}",
    )

    args = parser.parse_args()

    config_overrides: dict = {}
    for key in ("token", "repo", "path", "log_file", "permissions_file"):
        value = getattr(args, key)
        if value:
            config_overrides[key] = value
    if args.debug:
        config_overrides["debug"] = True

    shown = [k for k in config_overrides if k != "token"]
    if shown:
        print(
            f"Config overrides from CLI: {', '.join(shown)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
