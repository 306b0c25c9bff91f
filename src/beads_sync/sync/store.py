"""Record store contract and its GitHub-backed adapter.

The sync engine depends only on ``RepositoryStore``:

- ``read()`` returns every record plus an opaque version token;
- ``write(records, expected_version)`` replaces the whole record file if and
  only if it still has that version, returning ``Committed`` or
  ``PreconditionFailed``.

``PreconditionFailed`` is an expected outcome, not an exception.  I/O
failures raise ``StoreUnavailableError`` (transient); a store that cannot
work at all raises ``StoreConfigurationError``.

``GitHubRepositoryStore`` maps the contract onto the repository contents
endpoint: the version token is the file's blob SHA and ``None`` stands for
"file does not exist yet".  Lines it could not parse on read are carried
through the next write made with the same token, so a rewrite never drops
them.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import requests

from beads_sync.core.async_utils import run_sync_limited
from beads_sync.core.client import (
    GitHubAPIError,
    GitHubClient,
    GitHubPreconditionError,
)
from beads_sync.sync.codec import parse, serialize
from beads_sync.sync.models import Record

logger = logging.getLogger(__name__)

VersionToken = str | None


# ---------------------------------------------------------------------------
# Errors and outcomes
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for record store failures."""


class StoreUnavailableError(StoreError):
    """Transient failure: network, timeout, rate limit or server error."""


class StoreConfigurationError(StoreError):
    """The store is not usable as configured (programmer error)."""


@dataclass(frozen=True)
class StoreSnapshot:
    """Result of ``RepositoryStore.read()``.

    Attributes:
        records: Decoded records in file order.
        version: Token to pass to the next ``write()``.
        skipped_lines: Number of lines that could not be decoded.
        raw_size: Size of the raw file in bytes.
    """

    records: list[Record]
    version: VersionToken
    skipped_lines: int = 0
    raw_size: int = 0


@dataclass(frozen=True)
class Committed:
    """The write was applied; *version* is the store's new token."""

    version: str


@dataclass(frozen=True)
class PreconditionFailed:
    """The store changed since the token was read; nothing was written."""

    reason: str = ""


WriteOutcome = Committed | PreconditionFailed


class RepositoryStore(Protocol):
    """Whole-file record store with optimistic concurrency."""

    async def read(self) -> StoreSnapshot:
        ...  # pragma: no cover

    async def write(
        self,
        records: Sequence[Record],
        expected_version: VersionToken,
        *,
        message: str | None = None,
    ) -> WriteOutcome:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# GitHub adapter
# ---------------------------------------------------------------------------


class GitHubRepositoryStore:
    """``RepositoryStore`` backed by one file in a GitHub repository.

    Args:
        client: GitHub REST client.
        owner: Repository owner.
        repo: Repository name.
        path: Path of the record file, e.g. ``.beads/issues.jsonl``.
    """

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        path: str,
    ) -> None:
        if not owner or not repo or not path:
            raise StoreConfigurationError(
                "GitHub store needs an owner, a repository and a file path"
            )
        self.client = client
        self.owner = owner
        self.repo = repo
        self.path = path
        # Unparseable raw lines, keyed by the token they were read with.
        self._carried: dict[VersionToken, list[bytes]] = {}

    @property
    def location(self) -> str:
        return f"{self.owner}/{self.repo}:{self.path}"

    async def read(self) -> StoreSnapshot:
        try:
            contents = await run_sync_limited(
                self.client.get_file, self.owner, self.repo, self.path
            )
        except (requests.RequestException, GitHubAPIError) as exc:
            raise StoreUnavailableError(
                f"Could not read {self.location}: {exc}"
            ) from exc

        if contents is None:
            logger.info("%s does not exist yet -- empty store", self.location)
            self._carried = {None: []}
            return StoreSnapshot(records=[], version=None)

        result = parse(contents.content)
        self._carried = {contents.sha: [line.raw for line in result.skipped]}
        logger.debug(
            "Read %d records from %s (sha %s)",
            len(result.records),
            self.location,
            contents.sha,
        )
        return StoreSnapshot(
            records=result.records,
            version=contents.sha,
            skipped_lines=result.skipped_count,
            raw_size=len(contents.content),
        )

    async def write(
        self,
        records: Sequence[Record],
        expected_version: VersionToken,
        *,
        message: str | None = None,
    ) -> WriteOutcome:
        carried = self._carried.get(expected_version, [])
        data = serialize(records, carried)
        commit_message = message or f"Update {len(records)} issues"
        try:
            new_sha = await run_sync_limited(
                self.client.put_file,
                self.owner,
                self.repo,
                self.path,
                data,
                expected_version,
                commit_message,
            )
        except GitHubPreconditionError as exc:
            logger.info("Precondition failed on %s: %s", self.location, exc)
            return PreconditionFailed(reason=str(exc))
        except (requests.RequestException, GitHubAPIError) as exc:
            raise StoreUnavailableError(
                f"Could not write {self.location}: {exc}"
            ) from exc

        self._carried = {new_sha: carried}
        logger.info(
            "Committed %d records to %s (sha %s)",
            len(records),
            self.location,
            new_sha,
        )
        return Committed(version=new_sha)


async def probe_repository(
    client: GitHubClient, owner: str, repo: str, marker: str = ".beads"
) -> bool:
    """Return whether *marker* exists in the repository.

    Used once before a repository is registered for sync.  Absence is a
    normal ``False``.

    Raises:
        StoreUnavailableError: If the check itself fails.
    """
    try:
        return await run_sync_limited(client.path_exists, owner, repo, marker)
    except (requests.RequestException, GitHubAPIError) as exc:
        raise StoreUnavailableError(
            f"Could not probe {owner}/{repo}/{marker}: {exc}"
        ) from exc


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class MemoryRepositoryStore:
    """``RepositoryStore`` kept in memory, for tests and local development.

    Versions are increasing integers rendered as strings; ``None`` until the
    first write.
    """

    def __init__(self, records: Sequence[Record] | None = None) -> None:
        self.records: list[Record] = list(records or [])
        self._counter = 1 if records else 0
        self.writes: list[list[Record]] = []

    @property
    def version(self) -> VersionToken:
        return str(self._counter) if self._counter else None

    def replace(self, records: Sequence[Record]) -> None:
        """Overwrite the contents as another writer would."""
        self.records = list(records)
        self._counter += 1

    async def read(self) -> StoreSnapshot:
        return StoreSnapshot(records=list(self.records), version=self.version)

    async def write(
        self,
        records: Sequence[Record],
        expected_version: VersionToken,
        *,
        message: str | None = None,
    ) -> WriteOutcome:
        if expected_version != self.version:
            return PreconditionFailed(
                reason=f"expected {expected_version}, store at {self.version}"
            )
        self.replace(records)
        self.writes.append(list(records))
        return Committed(version=str(self._counter))
