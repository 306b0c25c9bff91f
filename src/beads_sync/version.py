"""Version checks for detecting a stale editable install."""

import tomllib
from pathlib import Path


def check_version_consistency(
    pyproject_path: Path | None = None,
) -> tuple[bool, str]:
    """Check that the runtime version matches the version in pyproject.toml.

    Args:
        pyproject_path: Location of pyproject.toml.  Defaults to the
            project root of a source checkout.

    Returns:
        Tuple of (is_consistent, message).  A missing pyproject.toml (a
        regular wheel install) counts as consistent.
    """
    from . import __version__ as runtime_version

    if pyproject_path is None:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"

    if not pyproject_path.exists():
        return True, f"Running beads-sync {runtime_version}"

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    source_version = data.get("project", {}).get("version", "unknown")
    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"
