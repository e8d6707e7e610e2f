from __future__ import annotations

import logging
import os
from pathlib import Path

from ..errors import MalformedDocumentError, NotFoundError, RevisionConflictError, TransportError
from ..models import StoredFile
from ..utils import log_event
from .base import ContentStore, blob_revision


class LocalContentStore(ContentStore):
    name = "local"

    def __init__(self, root: str | os.PathLike[str], logger: logging.Logger | None = None) -> None:
        self.root = Path(root)
        self.logger = logger or logging.getLogger("oxygenpress.stores.local")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        root = self.root.resolve()
        if target != root and root not in target.parents:
            raise TransportError(f"path escapes content root: {path}", filename=path)
        return target

    def get(self, path: str) -> StoredFile | None:
        target = self._resolve(path)
        if not target.is_file():
            return None
        try:
            raw = target.read_bytes()
        except OSError as exc:
            raise TransportError(str(exc), filename=path) from exc
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedDocumentError(f"file is not valid UTF-8: {exc.reason}", filename=path) from exc
        return StoredFile(path=path, content=content, revision=blob_revision(raw))

    def read(self, path: str) -> StoredFile:
        current = self.get(path)
        if current is None:
            raise NotFoundError(path)
        return current

    def create(self, path: str, content: str, message: str) -> StoredFile:
        if self._resolve(path).exists():
            raise RevisionConflictError("file already exists", filename=path)
        return self._write(path, content, message)

    def update(
        self, path: str, content: str, message: str, revision: str | None = None
    ) -> StoredFile:
        current = self.read(path)
        if revision is not None and revision != current.revision:
            raise RevisionConflictError(
                f"stale revision {revision[:8]} (current {current.revision[:8]})",
                filename=path,
            )
        return self._write(path, content, message)

    def delete(self, path: str, message: str, revision: str | None = None) -> None:
        current = self.read(path)
        if revision is not None and revision != current.revision:
            raise RevisionConflictError("stale revision", filename=path)
        try:
            self._resolve(path).unlink()
        except OSError as exc:
            raise TransportError(str(exc), filename=path) from exc
        log_event(self.logger, logging.INFO, "file_deleted", path=path, message=message)

    def list(self, directory: str = "", extension: str = ".md") -> list[str]:
        target = self._resolve(directory) if directory else self.root
        if not target.is_dir():
            return []
        return sorted(
            entry.name
            for entry in target.iterdir()
            if entry.is_file() and entry.name.endswith(extension)
        )

    def list_directories(self, directory: str = "") -> list[str]:
        target = self._resolve(directory) if directory else self.root
        if not target.is_dir():
            return []
        return sorted(
            entry.name
            for entry in target.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def ensure_directory(self, directory: str) -> None:
        try:
            self._resolve(directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransportError(str(exc), filename=directory) from exc

    def _write(self, path: str, content: str, message: str) -> StoredFile:
        target = self._resolve(path)
        data = content.encode("utf-8")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise TransportError(str(exc), filename=path) from exc
        log_event(self.logger, logging.INFO, "file_written", path=path, message=message)
        return StoredFile(path=path, content=content, revision=blob_revision(data))
