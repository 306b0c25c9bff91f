"""Tests for beads_sync.mcp.lifespan -- server startup/shutdown lifecycle.

Tests the server_lifespan() async context manager which:
- Loads config (CLI overrides > env > YAML > defaults)
- Creates GitHubClient and validates the token
- Initializes the concurrency semaphore
- Checks the repository holds an issue store
- Builds the sync orchestrator from persisted state
- Fails fast on config errors, connection failures or a missing marker
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from beads_sync.config import Config
from beads_sync.mcp.lifespan import _load_settings, build_orchestrator, server_lifespan
from beads_sync.sync.engine import SyncOrchestrator
from beads_sync.sync.resolver import LocalWinsResolver

# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _make_config(tmp_path, **overrides):
    defaults = {
        "github_token": "ghp_test",
        "repo": "octo/tracker",
        "state_dir": str(tmp_path / "state"),
        "max_parallel_requests": 5,
    }
    defaults.update(overrides)
    return Config(**defaults)


def _patched(config, *, login="octocat", found=True, client=None):
    """Patch everything server_lifespan() reaches outside the process."""
    client = client or MagicMock()
    return (
        patch("beads_sync.mcp.lifespan._load_settings", return_value=config),
        patch("beads_sync.mcp.lifespan.GitHubClient", return_value=client),
        patch("beads_sync.mcp.lifespan.run_sync", return_value=login),
        patch("beads_sync.mcp.lifespan.init_semaphore"),
        patch(
            "beads_sync.mcp.lifespan.probe_repository",
            new=AsyncMock(return_value=found),
        ),
        patch("beads_sync.mcp.lifespan._stderr_print"),
    )


# -------------------------------------------------------------------------
# server_lifespan() -- successful startup
# -------------------------------------------------------------------------


class TestServerLifespanSuccess:
    """Tests for the happy path through server_lifespan()."""

    async def test_successful_startup(self, tmp_path):
        config = _make_config(tmp_path)
        client = MagicMock()
        p_load, p_client, p_run, p_sem, p_probe, p_print = _patched(
            config, client=client
        )
        with (
            p_load,
            p_client,
            p_run as mock_run,
            p_sem as mock_sem,
            p_probe as mock_probe,
            p_print,
        ):
            async with server_lifespan() as ctx:
                assert ctx["client"] is client
                assert ctx["config"] is config
                assert isinstance(ctx["orchestrator"], SyncOrchestrator)
                mock_run.assert_called_once_with(client.validate_connection)
                mock_sem.assert_called_once_with(5)
                mock_probe.assert_awaited_once_with(
                    client, "octo", "tracker", ".beads"
                )

    async def test_overrides_passed_to_settings(self, tmp_path):
        config = _make_config(tmp_path)
        p_load, p_client, p_run, p_sem, p_probe, p_print = _patched(config)
        with p_load as mock_load, p_client, p_run, p_sem, p_probe, p_print:
            async with server_lifespan(config_overrides={"repo": "a/b"}):
                pass
        mock_load.assert_called_once_with({"repo": "a/b"})


# -------------------------------------------------------------------------
# server_lifespan() -- failures
# -------------------------------------------------------------------------


class TestServerLifespanFailures:
    async def test_config_error(self):
        with (
            patch(
                "beads_sync.mcp.lifespan._load_settings",
                side_effect=ValueError("GitHub token not found"),
            ),
            patch("beads_sync.mcp.lifespan._stderr_print"),
        ):
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with server_lifespan():
                    pass

    async def test_connection_failure(self, tmp_path):
        config = _make_config(tmp_path)
        p_load, p_client, _, p_sem, p_probe, p_print = _patched(config)
        with (
            p_load,
            p_client,
            patch(
                "beads_sync.mcp.lifespan.run_sync",
                side_effect=ConnectionError("refused"),
            ),
            p_sem,
            p_probe,
            p_print,
        ):
            with pytest.raises(RuntimeError, match="GitHub connection failed"):
                async with server_lifespan():
                    pass

    async def test_missing_marker(self, tmp_path):
        config = _make_config(tmp_path)
        p_load, p_client, p_run, p_sem, p_probe, p_print = _patched(
            config, found=False
        )
        with p_load, p_client, p_run, p_sem, p_probe, p_print:
            with pytest.raises(RuntimeError, match="not an issue store"):
                async with server_lifespan():
                    pass


# -------------------------------------------------------------------------
# Helpers under test
# -------------------------------------------------------------------------


class TestBuildOrchestrator:
    def test_wires_strategy_and_state_files(self, tmp_path):
        config = _make_config(tmp_path, conflict_strategy="local-wins")
        orchestrator = build_orchestrator(MagicMock(), config)
        assert isinstance(orchestrator.resolver, LocalWinsResolver)
        assert orchestrator.store.location == "octo/tracker:.beads/issues.jsonl"
        assert len(orchestrator.queue) == 0
        assert len(orchestrator.conflicts) == 0


class TestLoadSettings:
    def test_env_and_yaml(self, tmp_path, monkeypatch):
        for name in ("GITHUB_TOKEN", "BEADS_REPO", "BEADS_PATH", "BEADS_BRANCH"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        config_file = tmp_path / "config.yml"
        config_file.write_text(
            "github:\n  repo: yaml/repo\n  branch: main\n", encoding="utf-8"
        )
        monkeypatch.setenv("BEADS_SYNC_CONFIG", str(config_file))
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        monkeypatch.chdir(tmp_path)

        with (
            patch("beads_sync.mcp.lifespan.load_dotenv"),
            patch("beads_sync.mcp.lifespan._stderr_print"),
        ):
            config = _load_settings({"path": "issues/all.jsonl"})

        assert config.github_token == "ghp_env"
        assert config.repo == "yaml/repo"
        assert config.branch == "main"
        assert config.path == "issues/all.jsonl"
