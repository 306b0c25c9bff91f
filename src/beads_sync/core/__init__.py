"""GitHub access shared between the sync engine and the MCP server."""

from .async_utils import run_sync, run_sync_limited
from .client import GitHubAPIError, GitHubClient, GitHubPreconditionError

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "GitHubPreconditionError",
    "run_sync",
    "run_sync_limited",
]
