from __future__ import annotations

import hashlib
import posixpath
from abc import ABC, abstractmethod

from ..models import StoredFile


def blob_revision(content: bytes) -> str:
    """Git blob SHA-1, the revision identifier both backends agree on."""
    header = f"blob {len(content)}\0".encode("ascii")
    return hashlib.sha1(header + content).hexdigest()


def join_path(*parts: str) -> str:
    cleaned = [part.strip("/") for part in parts if part and part.strip("/")]
    return posixpath.join(*cleaned) if cleaned else ""


class ContentStore(ABC):
    """Markdown files addressed by a ``/``-separated path relative to the store root."""

    name = "content_store"

    @abstractmethod
    def read(self, path: str) -> StoredFile:
        """Return the file at ``path`` or raise ``NotFoundError``."""

    @abstractmethod
    def get(self, path: str) -> StoredFile | None:
        """Return the file at ``path`` or ``None`` when it does not exist."""

    @abstractmethod
    def create(self, path: str, content: str, message: str) -> StoredFile:
        """Write a new file; an existing file at ``path`` is a revision conflict."""

    @abstractmethod
    def update(
        self, path: str, content: str, message: str, revision: str | None = None
    ) -> StoredFile:
        """Replace an existing file, checking ``revision`` when given."""

    @abstractmethod
    def delete(self, path: str, message: str, revision: str | None = None) -> None:
        """Remove an existing file."""

    @abstractmethod
    def list(self, directory: str = "", extension: str = ".md") -> list[str]:
        """File names (not paths) directly inside ``directory``, sorted."""

    @abstractmethod
    def list_directories(self, directory: str = "") -> list[str]:
        """Names of the subdirectories directly inside ``directory``, sorted."""

    @abstractmethod
    def ensure_directory(self, directory: str) -> None:
        """Make ``directory`` exist so files can be listed under it."""

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def upsert(self, path: str, content: str, message: str) -> StoredFile:
        current = self.get(path)
        if current is None:
            return self.create(path, content, message)
        return self.update(path, content, message, revision=current.revision)
