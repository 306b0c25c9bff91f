"""Shared pytest fixtures for beads-sync tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from beads_sync.config import Config
from beads_sync.sync.models import Record
from beads_sync.sync.queue import ChangeQueue
from beads_sync.sync.resolver import ConflictSet
from beads_sync.sync.state import StateFile

load_dotenv()

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live GitHub repository",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live GitHub repository"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeClock:
    """Settable clock for code that takes a ``clock`` callable."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def build_record(record_id: str = "bd-1", **overrides) -> Record:
    """Build a valid Record with sensible defaults."""
    data = {
        "id": record_id,
        "title": "Fix login redirect",
        "description": "Users land on a blank page",
        "status": "open",
        "priority": 2,
        "issue_type": "task",
        "assignee": None,
        "created_at": EPOCH,
        "updated_at": EPOCH,
    }
    data.update(overrides)
    return Record.model_validate(data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_record():
    """Factory fixture returning ``build_record``."""
    return build_record


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / ".beads_sync"


@pytest.fixture
def queue(state_dir: Path, clock: FakeClock) -> ChangeQueue:
    return ChangeQueue(StateFile(state_dir, "pending", "octo__tracker"), clock=clock)


@pytest.fixture
def conflict_set(state_dir: Path, clock: FakeClock) -> ConflictSet:
    return ConflictSet(
        StateFile(state_dir, "conflicts", "octo__tracker"), clock=clock
    )


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        github_token="ghp_test",
        repo="octo/tracker",
        api_url="https://api.github.com",
    )


@pytest.fixture
def mock_github_client(mock_config):
    """Create a mock GitHubClient instance for testing."""
    from beads_sync.core.client import GitHubClient

    client = MagicMock(spec=GitHubClient)
    client.config = mock_config
    return client


@pytest.fixture
def mock_response():
    """Factory fixture for creating requests.Response mocks."""

    def _create_response(status_code=200, json_data=None, text=None):
        from unittest.mock import Mock

        response = Mock()
        response.status_code = status_code
        response.json.return_value = json_data if json_data is not None else {}
        response.text = text if text is not None else str(json_data or "")
        return response

    return _create_response


# ---------------------------------------------------------------------------
# Orchestrator and MCP tool fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store():
    """In-memory store holding two records."""
    from beads_sync.sync.store import MemoryRepositoryStore

    return MemoryRepositoryStore(
        [
            build_record("bd-1"),
            build_record(
                "bd-2",
                title="Add dark mode",
                description=None,
                status="in_progress",
                assignee="alice",
            ),
        ]
    )


@pytest.fixture
def orchestrator(memory_store, queue, conflict_set, clock):
    from beads_sync.sync.engine import SyncOrchestrator

    return SyncOrchestrator(memory_store, queue, conflict_set, clock=clock)


@pytest.fixture
def tool_ctx(mock_github_client, orchestrator, mock_config):
    from beads_sync.mcp.tools.registry import ToolContext

    return ToolContext(
        client=mock_github_client, orchestrator=orchestrator, config=mock_config
    )
