"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import GitHubClient
from ..sync.engine import SyncOrchestrator
from ..sync.queue import ChangeQueue
from ..sync.resolver import ConflictSet, create_resolver
from ..sync.state import StateFile
from ..sync.store import GitHubRepositoryStore, probe_repository

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def _load_settings(config_overrides: dict[str, Any]) -> Config:
    """Merge CLI > env (.env) > YAML > defaults into a validated Config."""
    # .env first so ${VAR} references in YAML can see its values
    load_dotenv()

    yaml_fallbacks: dict[str, Any] | None = None
    sources = []
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        yaml_fallbacks = unified.fallbacks()
        sources.append(f"config file: {config_files[0]}")

    config = load_config(
        token=config_overrides.get("token"),
        repo=config_overrides.get("repo"),
        path=config_overrides.get("path"),
        debug=config_overrides.get("debug", False),
        yaml_fallbacks=yaml_fallbacks,
    )

    if config_overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    source_desc = ", ".join(sources)
    logger.info("Configuration loaded from: %s", source_desc)
    _stderr_print(f"  Configuration loaded from: {source_desc}")
    return config


def build_orchestrator(
    client: GitHubClient, config: Config
) -> SyncOrchestrator:
    """Wire store, queue and conflict set for the configured repository."""
    state_dir = Path(config.state_dir)
    profile = config.profile_name
    return SyncOrchestrator(
        store=GitHubRepositoryStore(
            client, config.owner, config.repo_name, config.path
        ),
        queue=ChangeQueue(StateFile(state_dir, "pending", profile)),
        conflicts=ConflictSet(StateFile(state_dir, "conflicts", profile)),
        resolver=create_resolver(config.conflict_strategy),
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load configuration (CLI > env vars > .env > YAML > defaults)
    - Validate the GitHub token
    - Check that the repository holds an issue store (marker directory)
    - Build the sync orchestrator and restore pending changes from disk

    Yields:
        Dict with 'client', 'orchestrator' and 'config'.

    Raises:
        RuntimeError: If configuration is invalid, GitHub is unreachable, or
            the repository is not an issue store.
    """
    logger.info("MCP server starting...")
    _stderr_print("beads-sync MCP server starting...")

    try:
        config = _load_settings(config_overrides or {})
        logger.info("Repository: %s (%s)", config.repo, config.path)
        _stderr_print(f"  Repository: {config.repo} ({config.path})")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure GITHUB_TOKEN and BEADS_REPO are set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure GITHUB_TOKEN and BEADS_REPO are set."
        ) from e

    logger.info("Validating GitHub connection...")
    _stderr_print("  Validating GitHub connection...")
    try:
        client = GitHubClient(config)
        login = await run_sync(client.validate_connection)
        logger.info("Authenticated to GitHub as %s", login)
        _stderr_print(f"  Authenticated as {login}")
        init_semaphore(config.max_parallel_requests)
        found = await probe_repository(
            client, config.owner, config.repo_name, config.marker_dir
        )
    except Exception as e:
        logger.error("Failed to connect to GitHub: %s", e)
        _stderr_print("ERROR: GitHub connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check GITHUB_TOKEN and GITHUB_API_URL.")
        raise RuntimeError(
            f"GitHub connection failed: {e}. Check GITHUB_TOKEN and GITHUB_API_URL."
        ) from e

    if not found:
        message = (
            f"{config.repo} has no '{config.marker_dir}' directory; "
            "it is not an issue store"
        )
        logger.error(message)
        _stderr_print(f"ERROR: {message}")
        raise RuntimeError(message)

    orchestrator = build_orchestrator(client, config)
    pending = len(orchestrator.queue)
    if pending:
        _stderr_print(f"  Restored {pending} pending changes")
    _stderr_print(f"  Conflict strategy: {config.conflict_strategy}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"client": client, "orchestrator": orchestrator, "config": config}

    logger.info("MCP server shutting down")
    _stderr_print("beads-sync MCP server shutting down.")
