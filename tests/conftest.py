from __future__ import annotations

import base64
import io
import json
from datetime import datetime, timedelta, timezone
from urllib.error import HTTPError
from urllib.parse import unquote, urlsplit

import pytest

from oxygenpress.stores import GitHubContentStore, blob_revision

REPO_PREFIX = "/repos/owner/repo"


class _Response:
    def __init__(self, status: int, payload) -> None:
        self.status = status
        self._body = b"" if payload is None else json.dumps(payload).encode("utf-8")

    def getcode(self) -> int:
        return self.status

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeGitHub:
    """In-memory stand-in for the repository contents and actions endpoints."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.directory_lag = 0
        self.dispatch_status = 204
        self.fail_next: tuple[int, str] | None = None

    def urlopen(self, request, timeout=None):
        method = request.get_method()
        path = unquote(urlsplit(request.full_url).path)
        body = json.loads(request.data.decode("utf-8")) if request.data else None
        self.requests.append((method, path, body))
        assert request.get_header("Authorization") == "Bearer token"

        if self.fail_next is not None:
            status, message = self.fail_next
            self.fail_next = None
            raise self._error(request.full_url, status, {"message": message})
        if path == REPO_PREFIX:
            return _Response(200, {"full_name": "owner/repo"})
        if path.startswith(REPO_PREFIX + "/actions/workflows/"):
            if self.dispatch_status >= 400:
                raise self._error(request.full_url, self.dispatch_status, {"message": "workflow disabled"})
            return _Response(self.dispatch_status, None)
        repo_path = path[len(REPO_PREFIX + "/contents/") :]
        if method == "GET":
            return self._get(request.full_url, repo_path)
        if method == "PUT":
            return self._put(request.full_url, repo_path, body)
        if method == "DELETE":
            return self._delete(request.full_url, repo_path, body)
        raise AssertionError(f"unexpected request {method} {path}")

    def text(self, repo_path: str) -> str:
        return self.files[repo_path].decode("utf-8")

    def methods(self) -> list[str]:
        return [method for method, _path, _body in self.requests]

    def _get(self, url: str, repo_path: str):
        if repo_path in self.files:
            data = self.files[repo_path]
            return _Response(
                200,
                {
                    "type": "file",
                    "name": repo_path.rsplit("/", 1)[-1],
                    "path": repo_path,
                    "sha": blob_revision(data),
                    "content": base64.encodebytes(data).decode("ascii"),
                },
            )
        prefix = repo_path.rstrip("/") + "/"
        children: dict[str, str] = {}
        for name in self.files:
            if not name.startswith(prefix):
                continue
            rest = name[len(prefix) :]
            head = rest.split("/", 1)[0]
            children[head] = "dir" if "/" in rest else "file"
        if not children:
            raise self._error(url, 404, {"message": "Not Found"})
        if self.directory_lag > 0:
            self.directory_lag -= 1
            raise self._error(url, 404, {"message": "Not Found"})
        return _Response(
            200, [{"name": name, "type": kind} for name, kind in sorted(children.items())]
        )

    def _put(self, url: str, repo_path: str, body: dict):
        existing = self.files.get(repo_path)
        sha = body.get("sha")
        if existing is not None and not sha:
            raise self._error(url, 422, {"message": 'Invalid request.\n\n"sha" wasn\'t supplied.'})
        if existing is not None and sha != blob_revision(existing):
            raise self._error(url, 409, {"message": "is at a different sha than expected"})
        if existing is None and sha:
            raise self._error(url, 404, {"message": "Not Found"})
        data = base64.b64decode(body["content"])
        self.files[repo_path] = data
        status = 200 if existing is not None else 201
        return _Response(status, {"content": {"sha": blob_revision(data)}, "commit": {"sha": "c0ffee"}})

    def _delete(self, url: str, repo_path: str, body: dict):
        existing = self.files.get(repo_path)
        if existing is None:
            raise self._error(url, 404, {"message": "Not Found"})
        if body.get("sha") != blob_revision(existing):
            raise self._error(url, 409, {"message": "sha mismatch"})
        del self.files[repo_path]
        return _Response(200, {"commit": {"sha": "c0ffee"}})

    @staticmethod
    def _error(url: str, status: int, payload: dict) -> HTTPError:
        body = io.BytesIO(json.dumps(payload).encode("utf-8"))
        return HTTPError(url, status, payload.get("message", ""), None, body)


class TickingClock:
    def __init__(self, start: datetime | None = None, step_seconds: float = 1.0) -> None:
        self.current = start or datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_github(monkeypatch):
    fake = FakeGitHub()
    monkeypatch.setattr("oxygenpress.stores.github.urlopen", fake.urlopen)
    return fake


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def github_store(fake_github, sleeps):
    return GitHubContentStore(
        "owner",
        "repo",
        "main",
        "token",
        base_path="src/content/blogs",
        sleep=sleeps,
    )


@pytest.fixture
def clock():
    return TickingClock()
