"""Remote store over the GitHub REST API."""

from __future__ import annotations

import base64
import logging
import random
import time
from datetime import datetime
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from .exceptions import (
    RemoteAuthError,
    RemoteConflictError,
    RemoteEmptyError,
    RemoteError,
    RemoteNotFoundError,
    RemotePermissionError,
    RemoteRateLimitError,
)
from .interfaces import (
    ChangedFile,
    CommitInfo,
    Comparison,
    RemoteFile,
    RepoInfo,
    TreeChange,
)
from .model import RemoteEntry, RemoteIndex

__all__ = ["GitHubRemote", "DEFAULT_API_URL"]

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"

_EMPTY_REPO_MARKER = "Git Repository is empty"
# The compare API lists at most this many files and drops the rest silently.
COMPARE_FILE_LIMIT = 300

_STATUS = {
    "added": "added",
    "copied": "added",
    "removed": "removed",
    "modified": "modified",
    "changed": "modified",
    "renamed": "renamed",
}


class _RetryableError(Exception):
    """Internal: a response worth retrying, with the error to raise if we give up."""

    def __init__(self, error: RemoteError, retry_after: float | None = None):
        super().__init__(str(error))
        self.error = error
        self.retry_after = retry_after


def _parse_time(value: str | None) -> int:
    """Epoch seconds from an ISO-8601 timestamp, 0 when missing."""
    if not value:
        return 0
    return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())


def _error_message(response: httpx.Response) -> str:
    msg = f"GitHub API error {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return f"{msg}: {text}" if text else msg
    if isinstance(data, dict) and data.get("message"):
        return f"{msg}: {data['message']}"
    return msg


class GitHubRemote:
    """A :class:`~treesync.interfaces.RemoteStore` for one GitHub repository.

    Transient failures (network errors, 429, 5xx and rate-limited 403)
    are retried with exponential backoff and jitter, honouring
    ``Retry-After``.  A 409 is surfaced immediately as
    :class:`RemoteConflictError`.
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        base_url: str = DEFAULT_API_URL,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            token: Personal access or installation token.
            owner: Repository owner (user or organisation).
            repo: Repository name.
            base_url: API root, for GitHub Enterprise.
            max_retries: Retry attempts after the first request.
            retry_delay: Initial backoff delay in seconds.
            timeout: Request timeout in seconds.
        """
        self.token = token
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._client: httpx.Client | None = None

    def __repr__(self) -> str:
        return f"GitHubRemote({self.owner}/{self.repo})"

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": API_VERSION,
                },
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> GitHubRemote:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- transport ---------------------------------------------------------

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with +/- 25% jitter."""
        base_delay = self.retry_delay * (2**attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _check(self, response: httpx.Response) -> None:
        """Raise the error matching a non-2xx *response*."""
        status = response.status_code
        if status < 400:
            return
        message = _error_message(response)
        retry_after = response.headers.get("Retry-After")
        delay = float(retry_after) if retry_after and retry_after.isdigit() else None

        if status == 401:
            raise RemoteAuthError(
                "GitHub authentication failed (401); check the token and its repo scope",
                status=status,
            )
        if status == 403:
            if delay is not None or response.headers.get("X-RateLimit-Remaining") == "0":
                raise _RetryableError(RemoteRateLimitError(message, status=status), delay)
            raise RemotePermissionError(message, status=status)
        if status == 404:
            raise RemoteNotFoundError(message, status=status)
        if status == 409:
            if _EMPTY_REPO_MARKER in message:
                raise RemoteEmptyError(message, status=status)
            raise RemoteConflictError(message, status=status)
        if status == 429:
            raise _RetryableError(RemoteRateLimitError(message, status=status), delay)
        if status >= 500:
            raise _RetryableError(RemoteError(message, status=status))
        raise RemoteError(message, status=status)

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request with retry logic.

        Returns:
            Response JSON data (``{}`` for an empty body).

        Raises:
            RemoteError: If the request fails for good.
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                self._check(response)
                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError as e:
                    raise RemoteError(f"Invalid JSON from {method} {endpoint}") from e
            except _RetryableError as e:
                if attempt >= self.max_retries:
                    raise e.error from None
                delay = e.retry_after if e.retry_after is not None else self._calculate_retry_delay(attempt)
                logger.debug("%s %s: %s; retrying in %.2fs", method, endpoint, e, delay)
                time.sleep(delay)
            except httpx.RequestError as e:
                if attempt >= self.max_retries:
                    raise RemoteError(f"Network error: {e}") from e
                delay = self._calculate_retry_delay(attempt)
                logger.debug("%s %s: network error %s; retrying in %.2fs", method, endpoint, e, delay)
                time.sleep(delay)
        raise RemoteError("Request failed after all retry attempts")

    def _repo_path(self, suffix: str = "") -> str:
        return f"/repos/{quote(self.owner, safe='')}/{quote(self.repo, safe='')}{suffix}"

    def _contents_path(self, path: str) -> str:
        return self._repo_path(f"/contents/{quote(path.strip('/'), safe='/')}")

    # -- tree reading ------------------------------------------------------

    def list_tree(self, ref: str) -> RemoteIndex:
        """Every blob reachable from *ref*; ``{}`` for an empty repository or missing ref."""
        try:
            data = self._request(
                "GET", self._repo_path(f"/git/trees/{quote(ref, safe='')}"),
                params={"recursive": "1"},
            )
        except RemoteNotFoundError:
            return {}
        if data.get("truncated"):
            raise RemoteError(f"Tree listing of {ref} was truncated by GitHub")
        return {
            entry["path"]: RemoteEntry(entry["path"], entry["sha"], entry.get("size") or 0)
            for entry in data.get("tree", [])
            if entry.get("type") == "blob"
        }

    def get_commit_info(self, branch: str) -> CommitInfo | None:
        try:
            data = self._request("GET", self._repo_path(f"/commits/{quote(branch, safe='')}"))
        except RemoteNotFoundError:
            return None
        committer = (data.get("commit") or {}).get("committer") or {}
        return CommitInfo(data["sha"], _parse_time(committer.get("date")))

    def get_commit_tree(self, commit_id: str) -> str:
        data = self._request("GET", self._repo_path(f"/git/commits/{quote(commit_id, safe='')}"))
        return data["tree"]["sha"]

    def compare_commits(self, base: str, head: str) -> Comparison:
        try:
            data = self._request(
                "GET",
                self._repo_path(f"/compare/{quote(base, safe='')}...{quote(head, safe='')}"),
            )
        except RemoteEmptyError:
            return Comparison((), 0)
        raw_files = data.get("files") or []
        if len(raw_files) >= COMPARE_FILE_LIMIT:
            raise RemoteError(
                f"Comparison {base[:7]}...{head[:7]} lists {len(raw_files)} files; "
                "the API may have dropped some"
            )
        files = []
        for f in raw_files:
            status = _STATUS.get(f.get("status"))
            if status is None:
                continue
            files.append(ChangedFile(
                f["filename"],
                status,
                previous_path=f.get("previous_filename"),
                object_id=f.get("sha") if status != "removed" else None,
            ))
        commits = data.get("commits") or []
        head_time = 0
        if commits:
            committer = (commits[-1].get("commit") or {}).get("committer") or {}
            head_time = _parse_time(committer.get("date"))
        return Comparison(tuple(files), head_time)

    # -- single-file access ------------------------------------------------

    def get_file(self, path: str, ref: str) -> RemoteFile:
        data = self._request("GET", self._contents_path(path), params={"ref": ref})
        if isinstance(data, list) or data.get("type") != "file":
            raise RemoteNotFoundError(f"{path} is not a file at {ref}")
        if data.get("encoding") == "base64":
            content = base64.b64decode(data.get("content", "").replace("\n", ""))
        else:
            # Files over 1 MB come back without content; read the blob instead.
            blob = self._request("GET", self._repo_path(f"/git/blobs/{data['sha']}"))
            content = base64.b64decode(blob.get("content", "").replace("\n", ""))
        return RemoteFile(content, data["sha"])

    def put_file(
        self, path: str, content: bytes, message: str, *,
        expected_id: str | None = None, branch: str,
    ) -> None:
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if expected_id is not None:
            body["sha"] = expected_id
        self._request("PUT", self._contents_path(path), json=body)

    def delete_file(
        self, path: str, message: str, *, expected_id: str, branch: str,
    ) -> None:
        self._request(
            "DELETE", self._contents_path(path),
            json={"message": message, "sha": expected_id, "branch": branch},
        )

    # -- object writing ----------------------------------------------------

    def create_blob(self, content: bytes) -> str:
        data = self._request(
            "POST", self._repo_path("/git/blobs"),
            json={"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"},
        )
        return data["sha"]

    def create_tree(self, base_tree: str | None, changes: Sequence[TreeChange]) -> str:
        body: dict[str, Any] = {
            "tree": [
                {"path": c.path, "mode": "100644", "type": "blob", "sha": c.object_id}
                for c in changes
            ],
        }
        if base_tree:
            body["base_tree"] = base_tree
        return self._request("POST", self._repo_path("/git/trees"), json=body)["sha"]

    def create_commit(self, message: str, tree: str, parents: Sequence[str]) -> str:
        data = self._request(
            "POST", self._repo_path("/git/commits"),
            json={"message": message, "tree": tree, "parents": list(parents)},
        )
        return data["sha"]

    def update_ref(self, branch: str, commit_id: str, *, expected: str | None = None) -> None:
        """Fast-forward ``heads/<branch>`` to *commit_id*, creating it when missing.

        The API cannot compare-and-swap on *expected*; the non-forced
        update rejects anything that is not a fast-forward instead, which
        covers a concurrent push since *commit_id* descends from *expected*.
        """
        ref = f"heads/{branch}"
        try:
            self._request(
                "PATCH", self._repo_path(f"/git/refs/{quote(ref, safe='/')}"),
                json={"sha": commit_id, "force": False},
            )
            return
        except RemoteNotFoundError:
            pass
        except RemoteError as e:
            if e.status != 422:
                raise
            if "does not exist" not in str(e):
                raise RemoteConflictError(str(e), status=e.status) from e
        logger.debug("Creating ref %s", ref)
        self._request(
            "POST", self._repo_path("/git/refs"),
            json={"ref": f"refs/{ref}", "sha": commit_id},
        )

    # -- inspection --------------------------------------------------------

    def get_repo_info(self) -> RepoInfo:
        data = self._request("GET", self._repo_path())
        permissions = data.get("permissions") or {}
        return RepoInfo(
            private=bool(data.get("private")),
            can_pull=permissions.get("pull", True),
            can_push=permissions.get("push", True),
        )
