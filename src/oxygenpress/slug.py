from __future__ import annotations

import re
from datetime import datetime

from .utils import iso_timestamp

_CJK = r"\u3400-\u4dbf\u4e00-\u9fff"
_DISALLOWED = re.compile(rf"[^a-z0-9_\s\-{_CJK}]")
_SEPARATORS = re.compile(r"[\s_\-]+")

MARKDOWN_EXTENSION = ".md"


def slugify(title: str) -> str:
    """Lower-case, URL- and filename-safe identifier for ``title``.

    ASCII letters, digits and CJK ideographs survive; runs of whitespace,
    underscores and hyphens become a single hyphen. Returns ``""`` when
    nothing survives.
    """
    value = (title or "").lower().strip()
    value = _DISALLOWED.sub("", value)
    value = _SEPARATORS.sub("-", value)
    return value.strip("-")


def filename_timestamp(now: datetime) -> str:
    return iso_timestamp(now).replace(":", "-").replace(".", "-")


def article_filename(
    slug: str, *, collision: bool = False, now: datetime | None = None, sequence: int = 0
) -> str:
    """``<slug>.md``, or ``<slug>-<timestamp>[-<sequence>].md`` when disambiguating."""
    if not collision:
        return f"{slug}{MARKDOWN_EXTENSION}"
    if now is None:
        raise ValueError("a timestamp is required to disambiguate a colliding filename")
    suffix = f"-{sequence}" if sequence else ""
    return f"{slug}-{filename_timestamp(now)}{suffix}{MARKDOWN_EXTENSION}"


def filename_stem(filename: str) -> str:
    if filename.endswith(MARKDOWN_EXTENSION):
        return filename[: -len(MARKDOWN_EXTENSION)]
    return filename
