from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Mapping

from .errors import ValidationError
from .models import ArticleMetadata

WORDS_PER_MINUTE = 300

ALLOWED_FIELDS = frozenset({"title", "date", "category", "tags", "excerpt", "readTime"})

_WHITESPACE = re.compile(r"\s+")


def estimate_read_time(body: str) -> int:
    words = [word for word in _WHITESPACE.split((body or "").strip()) if word]
    return max(1, math.ceil(len(words) / WORDS_PER_MINUTE))


def add_tag(tags: list[str], tag: str) -> list[str]:
    """Editor-side tag add: trimmed, non-empty, and only if not already present."""
    value = (tag or "").strip()
    if not value or value in tags:
        return list(tags)
    return [*tags, value]


def normalize_metadata(
    raw: Mapping[str, Any] | None,
    body: str,
    *,
    default_category: str,
    today: date,
    require_body: bool = True,
    require_category: bool = False,
) -> ArticleMetadata:
    raw = dict(raw or {})
    unknown = sorted(key for key in raw if key not in ALLOWED_FIELDS)
    if unknown:
        raise ValidationError(unknown[0], f"unknown metadata field: {', '.join(unknown)}")

    title = _string(raw.get("title"), "title").strip()
    if not title:
        raise ValidationError("title")
    if require_body and not (body or "").strip():
        raise ValidationError("content")

    category = _string(raw.get("category"), "category").strip()
    if not category:
        if require_category:
            raise ValidationError("category")
        category = default_category

    read_time = _read_time(raw.get("readTime"))
    if not read_time:
        read_time = estimate_read_time(body)

    return ArticleMetadata(
        title=title,
        date=_iso_date(raw.get("date"), today),
        category=category,
        tags=_tags(raw.get("tags")),
        excerpt=_string(raw.get("excerpt"), "excerpt").strip(),
        read_time=read_time,
    )


def _string(value: Any, field: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple, set)):
        raise ValidationError(field, f"{field} must be a string")
    return str(value)


def _iso_date(value: Any, today: date) -> str:
    if value is None or value == "":
        return today.isoformat()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip().split("T")[0]
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError as exc:
        raise ValidationError("date", "date must be an ISO calendar date (YYYY-MM-DD)") from exc


def _tags(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValidationError("tags", "tags must be a list of strings")
    tags: list[str] = []
    for item in items:
        if isinstance(item, (dict, list, tuple)):
            raise ValidationError("tags", "tags must be a list of strings")
        cleaned = str(item).strip()
        if cleaned:
            tags.append(cleaned)
    return tags


def _read_time(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError("readTime", "readTime must be a whole number of minutes")
    try:
        minutes = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("readTime", "readTime must be a whole number of minutes") from exc
    if minutes < 0:
        raise ValidationError("readTime", "readTime must not be negative")
    return minutes
