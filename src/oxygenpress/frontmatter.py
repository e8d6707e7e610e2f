from __future__ import annotations

from datetime import date, datetime
from typing import Any

import yaml

from .errors import MalformedDocumentError
from .models import ArticleMetadata

DELIMITER = "---"

# File keys in the order they are written.
_FIELD_KEYS = (
    ("title", "title"),
    ("date", "date"),
    ("category", "category"),
    ("tags", "tags"),
    ("readTime", "read_time"),
    ("excerpt", "excerpt"),
    ("draft", "draft"),
    ("slug", "slug"),
    ("publishedAt", "published_at"),
    ("createdAt", "created_at"),
    ("updatedAt", "updated_at"),
)
_KNOWN_KEYS = frozenset(key for key, _ in _FIELD_KEYS)


class _FrontmatterDumper(yaml.SafeDumper):
    """Plain keys, double-quoted strings, flow-style sequences."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


def _represent_str(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", value, style='"')


def _represent_list(dumper: yaml.SafeDumper, value: list) -> yaml.SequenceNode:
    return dumper.represent_sequence("tag:yaml.org,2002:seq", value, flow_style=True)


def _represent_dict(dumper: yaml.SafeDumper, value: dict) -> yaml.MappingNode:
    pairs = []
    for key, item in value.items():
        if isinstance(key, str):
            key_node = yaml.ScalarNode("tag:yaml.org,2002:str", key)
        else:
            key_node = dumper.represent_data(key)
        pairs.append((key_node, dumper.represent_data(item)))
    return yaml.MappingNode("tag:yaml.org,2002:map", pairs, flow_style=False)


_FrontmatterDumper.add_representer(str, _represent_str)
_FrontmatterDumper.add_representer(list, _represent_list)
_FrontmatterDumper.add_representer(tuple, _represent_list)
_FrontmatterDumper.add_representer(dict, _represent_dict)


def frontmatter_dict(metadata: ArticleMetadata) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key, attr in _FIELD_KEYS:
        value = getattr(metadata, attr)
        if value is None:
            continue
        if key == "slug" and not value:
            continue
        data[key] = value
    for key, value in metadata.extra.items():
        if key not in data:
            data[key] = value
    return data


def encode(body: str, metadata: ArticleMetadata) -> str:
    block = yaml.dump(
        frontmatter_dict(metadata),
        Dumper=_FrontmatterDumper,
        allow_unicode=True,
        sort_keys=False,
        default_flow_style=False,
        width=float("inf"),
    )
    return f"{DELIMITER}\n{block}{DELIMITER}\n\n" + (body or "")


def decode(text: str) -> tuple[ArticleMetadata, str]:
    lines = (text or "").split("\n")
    markers = [index for index, line in enumerate(lines) if line.strip() == DELIMITER][:2]
    if len(markers) < 2:
        raise MalformedDocumentError("frontmatter block not found")
    start, end = markers
    block = "\n".join(line.rstrip("\r") for line in lines[start + 1 : end])
    try:
        data = yaml.safe_load(block) if block.strip() else {}
    except yaml.YAMLError as exc:
        raise MalformedDocumentError(f"frontmatter is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedDocumentError("frontmatter must be a mapping of key: value pairs")

    rest = lines[end + 1 :]
    if rest and not rest[0].strip():
        rest = rest[1:]
    return _metadata_from_dict(data), "\n".join(rest)


def _metadata_from_dict(data: dict[str, Any]) -> ArticleMetadata:
    return ArticleMetadata(
        title=_text(data.get("title")),
        date=_text(data.get("date")),
        category=_text(data.get("category")),
        tags=_tag_list(data.get("tags")),
        excerpt=_text(data.get("excerpt")),
        read_time=_minutes(data.get("readTime")),
        slug=_text(data.get("slug")),
        draft=_flag(data.get("draft")),
        published_at=_optional_text(data.get("publishedAt")),
        updated_at=_optional_text(data.get("updatedAt")),
        created_at=_optional_text(data.get("createdAt")),
        extra={key: value for key, value in data.items() if key not in _KNOWN_KEYS},
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    return _text(value)


def _tag_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "on", "1")
    return bool(value)


def _minutes(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
