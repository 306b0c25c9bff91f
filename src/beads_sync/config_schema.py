"""Schema for the YAML configuration file.

Pydantic models for the ``github``, ``sync`` and ``logging`` sections.
Every field is optional or defaulted so that an empty file, or no file at
all, is valid; the environment and CLI fill in the rest.

Usage:
    from beads_sync.config_schema import build_config

    unified = build_config(load_hierarchical_config())
    fallbacks = unified.fallbacks()
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitHubConfig(BaseModel):
    """Repository and API connection settings."""

    token: str | None = Field(default=None, description="GitHub token")
    repo: str | None = Field(
        default=None, description="Repository slug, owner/name"
    )
    path: str | None = Field(default=None, description="Record file path")
    branch: str | None = Field(default=None, description="Branch to sync")
    api_url: str | None = Field(default=None, description="API base URL")
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Maximum concurrent GitHub requests (1-100)",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Local state and conflict handling."""

    state_dir: str | None = Field(
        default=None, description="Directory for pending changes and conflicts"
    )
    conflict_strategy: Literal["manual", "local-wins", "remote-wins"] = (
        "manual"
    )
    offline_hours: float = Field(
        default=4.0, gt=0, description="Default offline editing window"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = "text"

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """All config file sections, each with defaults."""

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def fallbacks(self) -> dict[str, Any]:
        """Flatten ``github`` and ``sync`` into the dict ``load_config`` takes.

        ``None`` values are dropped so they never mask a default.
        """
        flat = {**self.github.model_dump(), **self.sync.model_dump()}
        return {key: value for key, value in flat.items() if value is not None}


def build_config(raw_data: dict | None) -> UnifiedConfig:
    """Validate the raw dict from ``load_hierarchical_config()``.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section has invalid values.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)
