from __future__ import annotations

import logging
import os
import posixpath
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

from .config import Config
from .errors import MalformedDocumentError, NotFoundError, PublishError, TransportError, ValidationError
from .frontmatter import decode, encode
from .models import ArticleMetadata, ArticleRecord, BatchReport, PublishResult, StoredFile
from .normalize import normalize_metadata
from .slug import article_filename, filename_stem, slugify
from .stores import ContentStore, join_path
from .utils import iso_timestamp, log_event, utc_now

STATE_PUBLISHED = "published"
STATE_DRAFT_SAVED = "draft_saved"
STATE_UPDATED = "updated"
STATE_DELETED = "deleted"
STATE_FAILED = "failed"

EXCERPT_FALLBACK_CHARS = 200
FALLBACK_CATEGORY = "其他"


@dataclass(frozen=True)
class WorkflowSettings:
    default_category: str
    drafts_dir: str = "drafts"
    category_subdirs: bool = False
    article_url_prefix: str = "/blogs"
    batch_delay_seconds: float = 1.0
    redeploy: bool = True
    workflow_id: str | None = None

    @classmethod
    def from_config(cls, config: Config) -> "WorkflowSettings":
        return cls(
            default_category=config.publishing.default_category,
            drafts_dir=config.store.drafts_dir,
            category_subdirs=config.publishing.category_subdirs,
            article_url_prefix=config.site.article_url_prefix,
            batch_delay_seconds=config.publishing.batch_delay_seconds,
            redeploy=config.publishing.redeploy,
            workflow_id=config.github.workflow_id or None,
        )


@dataclass(frozen=True)
class _PreparedArticle:
    path: str
    filename: str
    text: str
    metadata: ArticleMetadata


class PublishWorkflow:
    """Normalize, name, encode and persist articles against one content store.

    Request-level operations (``publish``, ``save_draft``, ``update``,
    ``delete``, ``promote_draft``, ``commit_file``) never raise for a
    ``PublishError``; they return a failed ``PublishResult`` instead. Queries
    (``read``, ``list_published``, ``list_drafts``) raise.
    """

    def __init__(
        self,
        store: ContentStore,
        settings: WorkflowSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or logging.getLogger("oxygenpress.workflow")

    # -- request operations -------------------------------------------

    def publish(self, raw: Mapping[str, Any] | None, body: str) -> PublishResult:
        try:
            prepared = self._prepare_publish(raw, body, self.clock())
            self._create(prepared, f"Publish article: {prepared.metadata.title}")
        except PublishError as exc:
            return self._failed("publish", exc)
        return self._published(prepared)

    def save_draft(self, raw: Mapping[str, Any] | None, body: str) -> PublishResult:
        try:
            now = self.clock()
            metadata = self._normalize(raw, body, now)
            slug = self._slug_for(metadata.title)
            taken = set(self.store.list(self.settings.drafts_dir))
            filename = _disambiguated_filename(slug, now, taken)
            document = replace(metadata, draft=True, created_at=iso_timestamp(now))
            prepared = _PreparedArticle(
                path=join_path(self.settings.drafts_dir, filename),
                filename=filename,
                text=encode(body, document),
                metadata=document,
            )
            self._create(prepared, f"Save draft: {document.title}")
        except PublishError as exc:
            return self._failed("save_draft", exc)
        log_event(self.logger, logging.INFO, "draft_saved", path=prepared.path)
        return PublishResult(
            success=True,
            state=STATE_DRAFT_SAVED,
            filename=prepared.filename,
            path=prepared.path,
            title=document.title,
        )

    def update(self, filename: str, raw: Mapping[str, Any] | None, body: str) -> PublishResult:
        try:
            path = self._published_path(filename)
            current = self.store.read(path)
            now = self.clock()
            metadata = self._normalize(raw, body, now)
            previous = self._decode_existing(current.content)
            slug = (previous.slug if previous else "") or self._slug_for(metadata.title)
            document = replace(
                metadata,
                slug=slug,
                draft=False,
                published_at=previous.published_at if previous else None,
                updated_at=iso_timestamp(now),
                extra=dict(previous.extra) if previous else {},
            )
            self._persist(
                path,
                lambda: self.store.update(
                    path,
                    encode(body, document),
                    f"Update article: {document.title}",
                    revision=current.revision,
                ),
            )
        except PublishError as exc:
            return self._failed("update", exc)
        log_event(self.logger, logging.INFO, "article_updated", path=path)
        return PublishResult(
            success=True,
            state=STATE_UPDATED,
            filename=filename,
            path=path,
            title=document.title,
            slug=slug,
            url=self._article_url(path),
        )

    def delete(self, filename: str, *, draft: bool = False) -> PublishResult:
        try:
            path = self._draft_path(filename) if draft else self._published_path(filename)
            current = self.store.read(path)
            self._persist(
                path,
                lambda: self.store.delete(
                    path, f"Delete article: {filename}", revision=current.revision
                ),
            )
        except PublishError as exc:
            return self._failed("delete", exc)
        log_event(self.logger, logging.INFO, "article_deleted", path=path)
        return PublishResult(success=True, state=STATE_DELETED, filename=filename, path=path)

    def promote_draft(self, filename: str) -> PublishResult:
        """Publish a saved draft: copy it into the published namespace, then delete it."""
        try:
            draft_path = self._draft_path(filename)
            current = self.store.read(draft_path)
            metadata, body = decode(current.content)
            prepared = self._prepare_publish(
                raw_from_metadata(metadata), body, self.clock(), extra=metadata.extra
            )
            self._create(prepared, f"Publish article: {prepared.metadata.title}")
            self._persist(
                draft_path,
                lambda: self.store.delete(
                    draft_path, f"Remove published draft: {filename}", revision=current.revision
                ),
            )
        except PublishError as exc:
            return self._failed("promote_draft", exc)
        return self._published(prepared)

    def commit_file(self, path: str, content: str, file_name: str) -> PublishResult:
        """Write an already-encoded document as-is, creating or replacing it."""
        try:
            if not (file_name or "").strip():
                raise ValidationError("fileName")
            if not (content or "").strip():
                raise ValidationError("content")
            target = _checked_relative_path(path, "path")
            self._persist(
                target, lambda: self.store.upsert(target, content, f"Publish article: {file_name}")
            )
        except PublishError as exc:
            return self._failed("commit_file", exc)
        log_event(self.logger, logging.INFO, "file_committed", path=target, store=self.store.name)
        return PublishResult(success=True, state=STATE_PUBLISHED, filename=file_name, path=target)

    # -- queries -------------------------------------------------------

    def read(self, filename: str, *, draft: bool = False) -> ArticleRecord:
        path = self._draft_path(filename) if draft else self._published_path(filename)
        current = self.store.read(path)
        try:
            metadata, body = decode(current.content)
        except MalformedDocumentError as exc:
            exc.filename = path
            raise
        return ArticleRecord(
            metadata=metadata,
            body=body,
            filename=filename,
            path=path,
            revision=current.revision,
        )

    def list_published(self, category: str | None = None) -> list[dict[str, Any]]:
        """Summaries of every published article; ``filename`` is the path ``read`` accepts.

        With ``category_subdirs`` a category selects its folder, otherwise it
        filters on the stored ``category`` field.
        """
        if category and self.settings.category_subdirs:
            directory = self._published_dir(category)
            entries = [(directory, name) for name in self.store.list(directory)]
        else:
            entries = self._published_entries()
        summaries = []
        for directory, name in entries:
            loaded = self._load(join_path(directory, name))
            if loaded is None:
                continue
            stored, metadata, body = loaded
            summary = self._summary(join_path(directory, name), metadata, body, stored)
            if category and not self.settings.category_subdirs and summary["category"] != category:
                continue
            summary["publishedAt"] = metadata.published_at or summary["date"]
            summary["slug"] = metadata.slug or slugify(summary["title"])
            summaries.append(summary)
        return summaries

    def list_drafts(self) -> list[dict[str, Any]]:
        directory = self.settings.drafts_dir
        summaries = []
        for name in self.store.list(directory):
            loaded = self._load(join_path(directory, name))
            if loaded is None:
                continue
            stored, metadata, body = loaded
            summary = self._summary(name, metadata, body, stored)
            summary["createdAt"] = metadata.created_at or summary["date"]
            summaries.append(summary)
        return summaries

    # -- batch ---------------------------------------------------------

    def publish_batch(self, source_dir: str | os.PathLike[str], redeploy: bool | None = None) -> BatchReport:
        source = Path(source_dir)
        if not source.is_dir():
            raise NotFoundError(str(source))
        files = sorted(
            entry for entry in source.iterdir() if entry.is_file() and entry.suffix == ".md"
        )
        log_event(self.logger, logging.INFO, "batch_start", source=source, files=len(files))

        results: list[dict[str, Any]] = []
        for index, entry in enumerate(files):
            if index and self.settings.batch_delay_seconds > 0:
                # Spaces out commits for the remote API's rate limit.
                self.sleep(self.settings.batch_delay_seconds)
            result = self._publish_source_file(entry)
            results.append(
                {
                    "file": entry.name,
                    "success": result.success,
                    "filename": result.filename,
                    "path": result.path,
                    "error": result.error,
                }
            )

        succeeded = sum(1 for item in results if item["success"])
        should_redeploy = self.settings.redeploy if redeploy is None else redeploy
        redeployed = bool(succeeded) and should_redeploy and self._trigger_redeploy()
        report = BatchReport(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
            redeploy_triggered=redeployed,
        )
        log_event(
            self.logger,
            logging.INFO,
            "batch_complete",
            total=report.total,
            succeeded=report.succeeded,
            failed=report.failed,
            redeploy_triggered=report.redeploy_triggered,
        )
        return report

    def publish_file(self, source_file: str | os.PathLike[str]) -> PublishResult:
        return self._publish_source_file(Path(source_file))

    def _publish_source_file(self, source: Path) -> PublishResult:
        try:
            try:
                text = source.read_text(encoding="utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedDocumentError(
                    f"file is not valid UTF-8: {exc.reason}", filename=source.name
                ) from exc
            except OSError as exc:
                raise TransportError(str(exc), filename=source.name) from exc
            try:
                metadata, body = decode(text)
            except MalformedDocumentError as exc:
                exc.filename = source.name
                raise
            raw = raw_from_metadata(metadata)
            if not raw.get("title"):
                raw["title"] = source.stem
            prepared = self._prepare_publish(raw, body, self.clock(), extra=metadata.extra)
            with staged_document(prepared.text, logger=self.logger) as staged:
                self._create(
                    replace(prepared, text=staged.read_text(encoding="utf-8")),
                    f"Add new article: {prepared.metadata.title}",
                )
        except PublishError as exc:
            return self._failed("publish_file", exc, source=source.name)
        return self._published(prepared)

    def _trigger_redeploy(self) -> bool:
        trigger = getattr(self.store, "trigger_workflow", None)
        if trigger is None or not self.settings.workflow_id:
            log_event(self.logger, logging.INFO, "redeploy_skipped", store=self.store.name)
            return False
        try:
            trigger(self.settings.workflow_id)
        except PublishError as exc:
            log_event(
                self.logger,
                logging.WARNING,
                "redeploy_failed",
                workflow=self.settings.workflow_id,
                error=exc,
            )
            return False
        return True

    # -- internals -----------------------------------------------------

    def _normalize(self, raw: Mapping[str, Any] | None, body: str, now: datetime) -> ArticleMetadata:
        return normalize_metadata(
            raw,
            body,
            default_category=self.settings.default_category,
            today=now.date(),
        )

    def _slug_for(self, title: str) -> str:
        slug = slugify(title)
        if not slug:
            raise ValidationError("title", "title does not contain any usable characters")
        return slug

    def _prepare_publish(
        self,
        raw: Mapping[str, Any] | None,
        body: str,
        now: datetime,
        extra: Mapping[str, Any] | None = None,
    ) -> _PreparedArticle:
        metadata = self._normalize(raw, body, now)
        slug = self._slug_for(metadata.title)
        directory = self._published_dir(metadata.category)
        if directory:
            self.store.ensure_directory(directory)
        filename = self._resolve_filename(directory, slug, now)
        document = replace(
            metadata,
            slug=slug,
            draft=False,
            published_at=iso_timestamp(now),
            extra=dict(extra or {}),
        )
        return _PreparedArticle(
            path=join_path(directory, filename),
            filename=filename,
            text=encode(body, document),
            metadata=document,
        )

    def _resolve_filename(self, directory: str, slug: str, now: datetime) -> str:
        # Checked across every category folder, not only the target directory.
        entries = self._published_entries()
        if not self._has_collision(entries, slug):
            return article_filename(slug)
        log_event(self.logger, logging.INFO, "slug_collision", slug=slug, directory=directory)
        return _disambiguated_filename(slug, now, {name for _directory, name in entries})

    def _has_collision(self, entries: list[tuple[str, str]], slug: str) -> bool:
        if any(name.startswith(f"{slug}.") for _directory, name in entries):
            return True
        for directory, name in entries:
            loaded = self._load(join_path(directory, name))
            if loaded is not None and loaded[1].slug == slug:
                return True
        return False

    def _published_entries(self) -> list[tuple[str, str]]:
        """``(directory, name)`` for every published document, root first."""
        directories = [""] + [
            name for name in self.store.list_directories() if name != self.settings.drafts_dir
        ]
        return [
            (directory, name) for directory in directories for name in self.store.list(directory)
        ]

    def _load(self, path: str) -> tuple[StoredFile, ArticleMetadata, str] | None:
        try:
            stored = self.store.get(path)
            if stored is None:
                return None
            metadata, body = decode(stored.content)
        except MalformedDocumentError as exc:
            log_event(self.logger, logging.WARNING, "malformed_document", file=path, error=exc)
            return None
        return stored, metadata, body

    def _decode_existing(self, content: str, name: str | None = None) -> ArticleMetadata | None:
        try:
            metadata, _body = decode(content)
        except MalformedDocumentError as exc:
            log_event(self.logger, logging.WARNING, "malformed_document", file=name, error=exc)
            return None
        return metadata

    def _summary(
        self, filename: str, metadata: ArticleMetadata, body: str, stored: StoredFile
    ) -> dict[str, Any]:
        excerpt = metadata.excerpt or body[:EXCERPT_FALLBACK_CHARS] + "..."
        return {
            "filename": filename,
            "title": metadata.title or filename_stem(posixpath.basename(filename)),
            "date": metadata.date or self.clock().date().isoformat(),
            "category": metadata.category or FALLBACK_CATEGORY,
            "tags": list(metadata.tags),
            "excerpt": excerpt,
            "readTime": metadata.read_time or 1,
            "draft": metadata.draft,
            "size": len(stored.content.encode("utf-8")),
        }

    def _create(self, prepared: _PreparedArticle, message: str) -> None:
        self._persist(prepared.path, lambda: self.store.create(prepared.path, prepared.text, message))

    def _persist(self, path: str, write: Callable[[], Any]) -> Any:
        try:
            return write()
        except PublishError as exc:
            if not exc.filename:
                exc.filename = path
            raise

    def _published_dir(self, category: str | None) -> str:
        if self.settings.category_subdirs and category:
            return _checked_relative_path(category, "category")
        return ""

    def _published_path(self, filename: str) -> str:
        return _checked_relative_path(filename, "filename")

    def _draft_path(self, filename: str) -> str:
        return join_path(self.settings.drafts_dir, _checked_relative_path(filename, "filename"))

    def _article_url(self, path: str) -> str:
        return f"{self.settings.article_url_prefix}/{filename_stem(posixpath.basename(path))}"

    def _published(self, prepared: _PreparedArticle) -> PublishResult:
        metadata = prepared.metadata
        log_event(
            self.logger,
            logging.INFO,
            "article_published",
            path=prepared.path,
            slug=metadata.slug,
            store=self.store.name,
        )
        return PublishResult(
            success=True,
            state=STATE_PUBLISHED,
            filename=prepared.path,
            path=prepared.path,
            title=metadata.title,
            slug=metadata.slug,
            url=self._article_url(prepared.path),
        )

    def _failed(self, action: str, exc: PublishError, **fields: Any) -> PublishResult:
        log_event(
            self.logger,
            logging.WARNING,
            f"{action}_failed",
            error_type=exc.kind,
            error=exc,
            **fields,
        )
        return PublishResult(
            success=False,
            state=STATE_FAILED,
            filename=exc.filename,
            error=str(exc),
            error_type=exc.kind,
        )


@contextmanager
def staged_document(text: str, logger: logging.Logger | None = None) -> Iterator[Path]:
    """Write ``text`` to a temporary file that is removed however the block exits."""
    handle = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", prefix="temp_", suffix=".md", delete=False
    )
    path = Path(handle.name)
    try:
        with handle:
            handle.write(text)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            log_event(
                logger or logging.getLogger("oxygenpress.workflow"),
                logging.WARNING,
                "staged_cleanup_failed",
                path=path,
                error=exc,
            )


def raw_from_metadata(metadata: ArticleMetadata) -> dict[str, Any]:
    return {
        "title": metadata.title,
        "date": metadata.date,
        "category": metadata.category,
        "tags": list(metadata.tags),
        "excerpt": metadata.excerpt,
        "readTime": metadata.read_time,
    }


def _checked_relative_path(value: str, field: str) -> str:
    cleaned = (value or "").strip().replace("\\", "/").strip("/")
    if not cleaned:
        raise ValidationError(field)
    if any(part in ("", ".", "..") for part in cleaned.split("/")):
        raise ValidationError(field, f"invalid {field}: {value}")
    return cleaned


def _disambiguated_filename(slug: str, now: datetime, taken: set[str]) -> str:
    filename = article_filename(slug, collision=True, now=now)
    sequence = 1
    while filename in taken:
        sequence += 1
        filename = article_filename(slug, collision=True, now=now, sequence=sequence)
    return filename
