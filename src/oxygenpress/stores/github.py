from __future__ import annotations

import base64
import json
import logging
import time
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from ..errors import MalformedDocumentError, NotFoundError, RevisionConflictError, TransportError
from ..models import StoredFile
from ..utils import log_event, truncate
from .base import ContentStore, join_path

PLACEHOLDER_NAME = ".gitkeep"
PLACEHOLDER_CONTENT = "# Auto-created directory"


class GitHubContentStore(ContentStore):
    """Content store backed by the GitHub repository contents API.

    Every write is a commit on ``branch``. Updates and deletes carry the blob
    SHA of the file they replace; when the caller does not pass one it is
    fetched first, so a missing file surfaces as ``NotFoundError``.
    """

    name = "github"

    def __init__(
        self,
        owner: str,
        repo: str,
        branch: str,
        token: str,
        *,
        base_path: str = "",
        api_url: str = "https://api.github.com",
        timeout_seconds: int = 20,
        user_agent: str = "oxygenpress/0.1",
        directory_retries: int = 4,
        directory_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.token = token
        self.base_path = base_path.strip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self.directory_retries = directory_retries
        self.directory_backoff_seconds = directory_backoff_seconds
        self.sleep = sleep
        self.logger = logger or logging.getLogger("oxygenpress.stores.github")

    # -- HTTP plumbing -------------------------------------------------

    def _repo_url(self, suffix: str = "") -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}{suffix}"

    def _contents_url(self, path: str, with_ref: bool = False) -> str:
        full_path = join_path(self.base_path, path)
        url = self._repo_url(f"/contents/{quote(full_path)}")
        if with_ref:
            url += "?" + urlencode({"ref": self.branch})
        return url

    def _request(
        self, method: str, url: str, payload: dict[str, Any] | None = None
    ) -> tuple[int, Any]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self.user_agent,
        }
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                status = response.getcode()
                body = response.read()
        except HTTPError as exc:
            status = exc.code
            body = exc.read() or b""
        except URLError as exc:
            raise TransportError(f"GitHub connection error: {exc.reason}") from exc
        return status, _parse_body(body)

    def _raise_for(self, status: int, data: Any, path: str) -> None:
        message = truncate(_error_message(data) or f"HTTP {status}")
        if status == 404:
            raise NotFoundError(path)
        if status == 409 or (status == 422 and "sha" in message.lower()):
            raise RevisionConflictError(f"GitHub rejected the write: {message}", filename=path)
        raise TransportError(
            f"GitHub API error {status}: {message}", status=status, filename=path
        )

    # -- ContentStore --------------------------------------------------

    def get(self, path: str) -> StoredFile | None:
        status, data = self._request("GET", self._contents_url(path, with_ref=True))
        if status == 404:
            return None
        if status != 200:
            self._raise_for(status, data, path)
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            return None
        raw = base64.b64decode(data.get("content") or "")
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedDocumentError(f"file is not valid UTF-8: {exc.reason}", filename=path) from exc
        return StoredFile(path=path, content=content, revision=str(data["sha"]))

    def read(self, path: str) -> StoredFile:
        current = self.get(path)
        if current is None:
            raise NotFoundError(path)
        return current

    def create(self, path: str, content: str, message: str) -> StoredFile:
        return self._put(path, content, message, revision=None)

    def update(
        self, path: str, content: str, message: str, revision: str | None = None
    ) -> StoredFile:
        if revision is None:
            revision = self.read(path).revision
        return self._put(path, content, message, revision=revision)

    def delete(self, path: str, message: str, revision: str | None = None) -> None:
        if revision is None:
            revision = self.read(path).revision
        payload = {"message": message, "sha": revision, "branch": self.branch}
        status, data = self._request("DELETE", self._contents_url(path), payload)
        if status not in (200, 204):
            self._raise_for(status, data, path)
        log_event(self.logger, logging.INFO, "github_file_deleted", path=path)

    def list(self, directory: str = "", extension: str = ".md") -> list[str]:
        return sorted(
            str(item.get("name"))
            for item in self._listing(directory)
            if item.get("type") == "file" and str(item.get("name", "")).endswith(extension)
        )

    def list_directories(self, directory: str = "") -> list[str]:
        return sorted(
            str(item.get("name"))
            for item in self._listing(directory)
            if item.get("type") == "dir"
        )

    def ensure_directory(self, directory: str) -> None:
        if not directory or self._directory_exists(directory):
            return
        placeholder = join_path(directory, PLACEHOLDER_NAME)
        try:
            self.create(placeholder, PLACEHOLDER_CONTENT, f"Create category directory: {directory}")
        except RevisionConflictError:
            log_event(self.logger, logging.INFO, "github_placeholder_exists", path=placeholder)
        # The contents API can lag behind the commit that created the directory.
        for attempt in range(self.directory_retries):
            if self._directory_exists(directory):
                return
            delay = self.directory_backoff_seconds * (2**attempt)
            log_event(
                self.logger,
                logging.DEBUG,
                "github_directory_pending",
                directory=directory,
                attempt=attempt + 1,
                delay=delay,
            )
            self.sleep(delay)
        if not self._directory_exists(directory):
            raise TransportError(
                f"directory not visible after {self.directory_retries} retries",
                filename=directory,
            )

    # -- repository actions -------------------------------------------

    def trigger_workflow(self, workflow_id: str, ref: str | None = None) -> None:
        url = self._repo_url(f"/actions/workflows/{quote(workflow_id)}/dispatches")
        status, data = self._request("POST", url, {"ref": ref or self.branch})
        if status not in (200, 201, 204):
            self._raise_for(status, data, workflow_id)
        log_event(self.logger, logging.INFO, "github_workflow_dispatched", workflow=workflow_id)

    def repo_info(self) -> dict[str, Any]:
        status, data = self._request("GET", self._repo_url())
        if status != 200:
            self._raise_for(status, data, f"{self.owner}/{self.repo}")
        return data

    def _listing(self, directory: str) -> list[dict[str, Any]]:
        status, data = self._request("GET", self._contents_url(directory, with_ref=True))
        if status == 404:
            return []
        if status != 200:
            self._raise_for(status, data, directory)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def _directory_exists(self, directory: str) -> bool:
        status, data = self._request("GET", self._contents_url(directory, with_ref=True))
        if status == 404:
            return False
        if status != 200:
            self._raise_for(status, data, directory)
        return isinstance(data, list)

    def _put(self, path: str, content: str, message: str, revision: str | None) -> StoredFile:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if revision:
            payload["sha"] = revision
        status, data = self._request("PUT", self._contents_url(path), payload)
        if status not in (200, 201):
            self._raise_for(status, data, path)
        log_event(
            self.logger,
            logging.INFO,
            "github_file_committed",
            path=path,
            status=status,
            update=bool(revision),
        )
        sha = ((data or {}).get("content") or {}).get("sha") or ""
        return StoredFile(path=path, content=content, revision=str(sha))


def _parse_body(body: bytes) -> Any:
    if not body:
        return {}
    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"message": text}


def _error_message(data: Any) -> str:
    if isinstance(data, dict):
        return str(data.get("message") or "")
    return str(data or "")
