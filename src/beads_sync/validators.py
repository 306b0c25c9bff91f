"""
Input validation functions for beads-sync.

Provides validation for repository slugs, record file paths and record ids
to ensure they meet requirements before making GitHub API calls or queueing
edits.
"""

import re

# GitHub owner and repository names: letters, digits, '-', '_' and '.'.
_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Record id")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_repo_slug(slug: str) -> tuple[bool, str]:
    """
    Validate an ``owner/name`` repository slug.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.
    """
    if not slug or not slug.strip():
        return (
            False,
            format_validation_error("Repository", "cannot be empty"),
        )

    parts = slug.strip().split("/")
    if len(parts) != 2 or not all(parts):
        return (
            False,
            format_validation_error(
                "Repository", f"'{slug}' must have the form owner/name"
            ),
        )

    for part in parts:
        if not _NAME_RE.match(part) or part in (".", ".."):
            return (
                False,
                format_validation_error(
                    "Repository", f"'{slug}' contains invalid characters"
                ),
            )

    return (True, "")


def validate_repo_path(path: str) -> tuple[bool, str]:
    """
    Validate a file path inside the repository.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot contain '..' segments (path traversal protection)
        - Cannot have empty path segments (e.g., '.beads//issues.jsonl')
    """
    if not path or not path.strip():
        return (
            False,
            format_validation_error("Path", "cannot be empty"),
        )

    segments = path.strip("/").split("/")
    if ".." in segments:
        return (
            False,
            format_validation_error("Path", "cannot contain '..'"),
        )

    if "" in segments:
        return (
            False,
            format_validation_error(
                "Path", "cannot have empty path segments"
            ),
        )

    return (True, "")


def validate_record_id(record_id: str) -> tuple[bool, str]:
    """
    Validate a record id.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot contain whitespace or control characters
    """
    if not record_id or not record_id.strip():
        return (
            False,
            format_validation_error("Record id", "cannot be empty"),
        )

    if any(ch.isspace() or not ch.isprintable() for ch in record_id):
        return (
            False,
            format_validation_error(
                "Record id", "cannot contain whitespace"
            ),
        )

    return (True, "")
