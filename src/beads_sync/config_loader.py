"""
YAML configuration discovery and loading for beads-sync.

Config files are found by convention, may pull in other files with
``!include``, and may reference environment variables as ``${VAR}`` or
``${VAR:-default}``.  When several files exist, the project file wins over
the global one section by section.

Usage:
    from beads_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BEADS_SYNC_CONFIG"
PROJECT_CONFIG = Path(".beads_sync") / "config.yml"
GLOBAL_CONFIG = Path(".config") / "beads_sync" / "config.yml"

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` references in *value*.

    An unset or empty variable expands to its default, or to "" when there
    is none.  An unterminated ``${`` is left as is.
    """

    def _expand(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_REF.sub(_expand, value)


def _expand_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _expand_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand_tree(item) for item in node]
    return node


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with an ``!include`` tag.

    A subclass keeps the tag off the global ``yaml.SafeLoader``.  Each
    loader carries the chain of files being loaded to reject cycles.
    """

    include_chain: tuple[Path, ...] = ()


def _construct_include(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by ``!include <path>``.

    Relative paths resolve against the including file's directory.
    """
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    if target in loader.include_chain:
        cycle = " -> ".join(str(p) for p in (*loader.include_chain, target))
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml_file(target, _chain=(*loader.include_chain, target))


ConfigLoader.add_constructor("!include", _construct_include)


def load_yaml_file(path: Path, *, _chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, following ``!include`` tags."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_chain = _chain or (path,)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return the config files that exist, highest precedence first.

    Search order:
        1. ``$BEADS_SYNC_CONFIG`` (explicit path)
        2. ``./.beads_sync/config.yml`` (project)
        3. ``~/.config/beads_sync/config.yml`` (user)
    """
    candidates: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates.append(Path.cwd() / PROJECT_CONFIG)
    candidates.append(Path.home() / GLOBAL_CONFIG)

    found: list[Path] = []
    for path in candidates:
        if path.exists() and path not in found:
            found.append(path)
    return found


_STARTER_CONFIG = """\
# beads-sync configuration
#
# Every setting can also come from the environment:
#   GITHUB_TOKEN, BEADS_REPO, BEADS_PATH, BEADS_BRANCH, GITHUB_API_URL,
#   BEADS_STATE_DIR, BEADS_CONFLICT_STRATEGY, BEADS_OFFLINE_HOURS
#
# github:
#   token: ${GITHUB_TOKEN}
#   repo: owner/name
#   path: .beads/issues.jsonl
#   branch: main
#   max_parallel_requests: 4
#
# sync:
#   state_dir: .beads_sync
#   conflict_strategy: manual   # manual | local-wins | remote-wins
#   offline_hours: 4
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to create the starter.  Defaults to
            ``./.beads_sync/config.yml``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]

    config_path = target or Path.cwd() / PROJECT_CONFIG
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered config file and merge them.

    Files are applied from lowest to highest precedence; a top-level
    section in a higher file replaces the same section from a lower one.
    Environment references are expanded after the merge.

    Returns:
        The merged mapping, or ``{}`` when no file exists.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        data = load_yaml_file(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s) -- skipping",
                path,
                type(data).__name__,
            )
    return _expand_tree(merged)
