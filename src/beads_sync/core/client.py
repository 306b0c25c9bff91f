import base64
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import requests

from .. import __version__
from ..validators import validate_repo_path

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

USER_AGENT = f"beads-sync/{__version__}"


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST API returns an error status."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


class GitHubPreconditionError(GitHubAPIError):
    """Raised when a contents write is rejected because the blob SHA is stale."""


@dataclass(frozen=True)
class FileContents:
    """A file read from the contents endpoint.

    Attributes:
        path: Repository path of the file.
        sha: Blob SHA; required by the next update of this file.
        content: Decoded file bytes.
    """

    path: str
    sha: str
    content: bytes


class GitHubClient:
    def __init__(self, config: "Config"):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Return the current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.github_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": USER_AGENT,
            }
        )
        return session

    def _contents_url(self, owner: str, repo: str, path: str) -> str:
        is_valid, error = validate_repo_path(path)
        if not is_valid:
            raise ValueError(error)
        return (
            f"{self.api_url}/repos/{quote(owner)}/{quote(repo)}"
            f"/contents/{quote(path.strip('/'))}"
        )

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> requests.Response:
        """
        Make a request against the GitHub REST API.

        Network failures propagate as ``requests.RequestException``.
        """
        session = self._get_session()
        response = session.request(
            method,
            url,
            params=params,
            json=json_body,
            timeout=(10, 60),
        )
        logger.debug(
            "%s %s -> %d", method, url, response.status_code
        )
        return response

    @staticmethod
    def _raise_for_status(
        response: requests.Response, action: str
    ) -> None:
        if response.status_code < 400:
            return
        try:
            message = response.json().get("message", "")
        except ValueError:
            message = response.text
        raise GitHubAPIError(
            f"GitHub API {action} failed with {response.status_code}: {message}",
            status=response.status_code,
            response_text=response.text,
        )

    def get_current_user(self) -> dict[str, Any]:
        """
        Return the authenticated user (GET /user).
        """
        response = self._request("GET", f"{self.api_url}/user")
        self._raise_for_status(response, "get user")
        return response.json()

    def validate_connection(self) -> str:
        """
        Validate the token by fetching the authenticated user.
        Returns the user's login if successful.
        """
        user = self.get_current_user()
        return str(user.get("login", ""))

    def path_exists(self, owner: str, repo: str, path: str) -> bool:
        """
        Return True if *path* (file or directory) exists in the repository.

        A 404 is a normal ``False``; other errors raise ``GitHubAPIError``.
        """
        params = {"ref": self.config.branch} if self.config.branch else None
        response = self._request(
            "GET", self._contents_url(owner, repo, path), params=params
        )
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"probe {path}")
        return True

    def get_file(
        self, owner: str, repo: str, path: str
    ) -> FileContents | None:
        """
        Read a file and its blob SHA.

        Returns:
            ``FileContents``, or ``None`` if the file does not exist.

        Raises:
            GitHubAPIError: On any other error status, or if *path* is a
                directory.
        """
        params = {"ref": self.config.branch} if self.config.branch else None
        response = self._request(
            "GET", self._contents_url(owner, repo, path), params=params
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, f"read {path}")

        payload = response.json()
        if isinstance(payload, list) or payload.get("type") != "file":
            raise GitHubAPIError(f"'{path}' is not a file")

        sha = payload["sha"]
        encoded = payload.get("content") or ""
        if payload.get("encoding") == "base64":
            content = base64.b64decode(encoded.replace("\n", ""))
        elif payload.get("size", 0) > 0:
            # Files over 1 MB come back without inline content.
            content = self._get_blob(owner, repo, sha)
        else:
            content = b""
        return FileContents(path=payload.get("path", path), sha=sha, content=content)

    def _get_blob(self, owner: str, repo: str, sha: str) -> bytes:
        url = f"{self.api_url}/repos/{quote(owner)}/{quote(repo)}/git/blobs/{sha}"
        response = self._request("GET", url)
        self._raise_for_status(response, f"read blob {sha}")
        payload = response.json()
        return base64.b64decode(payload.get("content", "").replace("\n", ""))

    def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: bytes,
        sha: str | None,
        message: str,
    ) -> str:
        """
        Create or update a file, guarded by the blob SHA.

        Args:
            owner: Repository owner.
            repo: Repository name.
            path: File path in the repository.
            content: New file bytes.
            sha: Blob SHA from the last read; ``None`` only when creating
                the file.
            message: Commit message.

        Returns:
            The new blob SHA.

        Raises:
            GitHubPreconditionError: If *sha* no longer matches the file
                (someone else wrote first).
            GitHubAPIError: On any other error status.
        """
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
        }
        if sha is not None:
            body["sha"] = sha
        if self.config.branch:
            body["branch"] = self.config.branch

        response = self._request(
            "PUT", self._contents_url(owner, repo, path), json_body=body
        )
        if response.status_code == 409 or (
            response.status_code == 422 and "sha" in response.text.lower()
        ):
            raise GitHubPreconditionError(
                f"Write to {path} rejected: file changed since it was read",
                status=response.status_code,
                response_text=response.text,
            )
        self._raise_for_status(response, f"write {path}")
        return response.json()["content"]["sha"]
