from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ArticleMetadata:
    title: str
    date: str
    category: str
    tags: list[str]
    excerpt: str
    read_time: int
    slug: str = ""
    draft: bool = False
    published_at: str | None = None
    updated_at: str | None = None
    created_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ArticleRecord:
    metadata: ArticleMetadata
    body: str
    filename: str | None = None
    path: str | None = None
    revision: str | None = None


@dataclass(frozen=True)
class StoredFile:
    path: str
    content: str
    revision: str


@dataclass(frozen=True)
class PublishResult:
    success: bool
    state: str
    filename: str | None = None
    path: str | None = None
    title: str | None = None
    slug: str | None = None
    url: str | None = None
    error: str | None = None
    error_type: str | None = None


@dataclass(frozen=True)
class BatchReport:
    total: int
    succeeded: int
    failed: int
    results: list[dict[str, Any]]
    redeploy_triggered: bool
