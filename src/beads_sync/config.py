"""Configuration for the beads-sync MCP server.

Reads GitHub connection and sync settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITHUB_TOKEN: Personal access or OAuth token (required)
    BEADS_REPO: Repository slug, ``owner/name`` (required)
    BEADS_PATH: Record file path (optional, default: .beads/issues.jsonl)
    BEADS_BRANCH: Branch to read and commit to (optional, default branch if unset)
    GITHUB_API_URL: API base URL (optional, default: https://api.github.com)
    BEADS_MAX_PARALLEL_REQUESTS: Max parallel GitHub requests (optional, default: 4)
    BEADS_STATE_DIR: Directory for pending changes and conflicts (optional, default: .beads_sync)
    BEADS_CONFLICT_STRATEGY: manual, local-wins or remote-wins (optional, default: manual)
    BEADS_OFFLINE_HOURS: Default offline editing window in hours (optional, default: 4)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .sync.resolver import STRATEGIES
from .validators import validate_repo_path, validate_repo_slug

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_RECORDS_PATH = ".beads/issues.jsonl"


@dataclass
class Config:
    github_token: str
    repo: str
    path: str = DEFAULT_RECORDS_PATH
    branch: str | None = None
    api_url: str = DEFAULT_API_URL
    debug: bool = False
    max_parallel_requests: int = 4
    state_dir: str = ".beads_sync"
    conflict_strategy: str = "manual"
    offline_hours: float = 4.0

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def repo_name(self) -> str:
        return self.repo.split("/", 1)[1]

    @property
    def marker_dir(self) -> str:
        """Directory whose presence marks a repository as a record store."""
        return self.path.strip("/").split("/", 1)[0]

    @property
    def profile_name(self) -> str:
        """Name used for this repository's state files."""
        return f"{self.owner}__{self.repo_name}"


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a value is malformed or a credential is empty.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid GitHub API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid GitHub API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.github_token.strip():
        raise ValueError(
            "GitHub token cannot be empty. Set GITHUB_TOKEN environment variable."
        )

    config.repo = config.repo.strip()
    is_valid, error = validate_repo_slug(config.repo)
    if not is_valid:
        raise ValueError(f"{error}. Set BEADS_REPO=owner/name.")

    is_valid, error = validate_repo_path(config.path)
    if not is_valid:
        raise ValueError(error)

    if config.conflict_strategy not in STRATEGIES:
        raise ValueError(
            f"Invalid conflict strategy '{config.conflict_strategy}': must be one of {', '.join(STRATEGIES)}"
        )

    if config.offline_hours <= 0:
        raise ValueError(
            f"Invalid offline window '{config.offline_hours}': must be a positive number of hours"
        )

    if parsed.scheme == "http":
        logger.warning(
            "WARNING: GitHub API URL uses plain http. Use only for development."
        )


def _int_setting(
    env_key: str,
    fb: dict,
    fb_key: str,
    default: int,
    low: int,
    high: int,
) -> int:
    raw = os.getenv(env_key)
    if raw is None:
        return int(fb.get(fb_key, default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    token: str | None = None,
    repo: str | None = None,
    path: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override GitHub token.
        repo: Override repository slug.
        path: Override record file path.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML ``github`` and
            ``sync`` sections.  Used when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config (token, repo) is missing after
            checking all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default/error ---

    github_token = token or os.getenv("GITHUB_TOKEN") or fb.get("token")
    if not github_token:
        raise ValueError(
            "GitHub token not found. Set GITHUB_TOKEN environment variable, "
            "pass --token CLI argument, or add 'token' to config.yml."
        )

    repo_slug = repo or os.getenv("BEADS_REPO") or fb.get("repo")
    if not repo_slug:
        raise ValueError(
            "Repository not found. Set BEADS_REPO=owner/name, "
            "pass --repo CLI argument, or add 'repo' to config.yml."
        )

    records_path = (
        path or os.getenv("BEADS_PATH") or fb.get("path") or DEFAULT_RECORDS_PATH
    )
    branch = os.getenv("BEADS_BRANCH") or fb.get("branch") or None
    api_url = os.getenv("GITHUB_API_URL") or fb.get("api_url") or DEFAULT_API_URL
    state_dir = os.getenv("BEADS_STATE_DIR") or fb.get("state_dir") or ".beads_sync"
    strategy = (
        os.getenv("BEADS_CONFLICT_STRATEGY")
        or fb.get("conflict_strategy")
        or "manual"
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("BEADS_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    max_parallel = _int_setting(
        "BEADS_MAX_PARALLEL_REQUESTS", fb, "max_parallel_requests", 4, 1, 100
    )

    offline_raw = os.getenv("BEADS_OFFLINE_HOURS")
    if offline_raw is not None:
        try:
            offline_hours = float(offline_raw)
        except ValueError:
            raise ValueError(
                f"Invalid BEADS_OFFLINE_HOURS '{offline_raw}': must be a number of hours"
            ) from None
    else:
        offline_hours = float(fb.get("offline_hours", 4.0))

    config = Config(
        github_token=github_token.strip(),
        repo=repo_slug.strip(),
        path=records_path.strip(),
        branch=branch,
        api_url=api_url,
        debug=final_debug,
        max_parallel_requests=max_parallel,
        state_dir=state_dir,
        conflict_strategy=strategy,
        offline_hours=offline_hours,
    )

    validate_config(config)

    return config
