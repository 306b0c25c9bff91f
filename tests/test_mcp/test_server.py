"""Tests for MCP server wiring: registry construction, dispatch and ping."""

from unittest.mock import patch

import pytest

from beads_sync.mcp import server
from beads_sync.mcp.server import (
    build_registry,
    get_context,
    get_registry,
    handle_call_tool,
    handle_list_tools,
    set_context,
    set_registry,
)


@pytest.fixture
def installed(tool_ctx):
    """Install a full registry and context, restoring the globals after."""
    set_registry(build_registry())
    set_context(tool_ctx)
    yield tool_ctx
    set_context(None)
    set_registry(None)


def _text(result) -> str:
    return result.content[0].text


class TestBuildRegistry:
    def test_all_tools_include_ping(self):
        names = [tool.name for tool in build_registry().list_tools()]
        assert names[0] == "ping"
        assert "issue_edit" in names
        assert "offline_disable" in names

    def test_permissions_file_filters(self, tmp_path, capsys):
        path = tmp_path / "read-only.permissions"
        path.write_text("ISSUE_VIEW\n")

        registry = build_registry(str(path))

        names = {tool.name for tool in registry.list_tools()}
        assert {"ping", "repo_probe", "issue_list", "conflict_list"} <= names
        assert "conflict_resolve" not in names
        assert "Permissions file:" in capsys.readouterr().err


class TestGlobals:
    def test_context_required(self):
        set_context(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_context()

    def test_registry_required(self):
        set_registry(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_registry()


class TestHandlers:
    async def test_list_tools(self, installed):
        tools = await handle_list_tools()
        assert len(tools) == get_registry().tool_count()

    async def test_unknown_tool(self, installed):
        result = await handle_call_tool("issue_delete", {})
        assert result.isError
        assert _text(result).startswith("Error (unknown_tool): Unknown tool: issue_delete")

    async def test_dispatch(self, installed):
        result = await handle_call_tool("conflict_list", None)
        assert _text(result) == "No open conflicts."


class TestPing:
    async def test_ping(self, installed):
        with patch.object(server, "run_sync", return_value="octocat"):
            result = await handle_call_tool("ping", {})
        assert _text(result) == (
            "beads-sync connected to GitHub as octocat. Repository: octo/tracker"
        )
        assert result.structuredContent["login"] == "octocat"

    async def test_ping_failure(self, installed):
        with patch.object(
            server, "run_sync", side_effect=ConnectionError("refused")
        ):
            result = await handle_call_tool("ping", {})
        assert result.isError
        assert "Error (connection_failed): GitHub connection failed: refused" in _text(
            result
        )
