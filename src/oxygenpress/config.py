from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "config.yml"


@dataclass(frozen=True)
class SiteConfig:
    name: str
    start_date: date
    article_url_prefix: str


@dataclass(frozen=True)
class StoreConfig:
    backend: str
    content_root: str
    drafts_dir: str


@dataclass(frozen=True)
class GitHubConfig:
    owner: str
    repo: str
    branch: str
    token: str
    api_url: str
    timeout_seconds: int
    user_agent: str
    workflow_id: str
    directory_retries: int
    directory_backoff_seconds: float


@dataclass(frozen=True)
class PublishingConfig:
    default_category: str
    category_subdirs: bool
    batch_source_dir: str
    batch_delay_seconds: float
    redeploy: bool


@dataclass(frozen=True)
class Config:
    site: SiteConfig
    store: StoreConfig
    github: GitHubConfig
    publishing: PublishingConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "site": {
        "name": "OxygenBlog",
        "start_date": "2025-09-24",
        "article_url_prefix": "/blogs",
    },
    "store": {
        "backend": "local",
        "content_root": "src/content/blogs",
        "drafts_dir": "drafts",
    },
    "github": {
        "owner": "",
        "repo": "",
        "branch": "main",
        "token": "",
        "api_url": "https://api.github.com",
        "timeout_seconds": 20,
        "user_agent": "oxygenpress/0.1",
        "workflow_id": "deploy.yml",
        "directory_retries": 4,
        "directory_backoff_seconds": 0.5,
    },
    "publishing": {
        "default_category": "技术",
        "category_subdirs": False,
        "batch_source_dir": "temp-publish",
        "batch_delay_seconds": 1.0,
        "redeploy": True,
    },
}

STORE_BACKENDS = ("local", "github")

ENV_OVERRIDES = {
    "BLOG_GITHUB_TOKEN": ("github", "token"),
    "BLOG_GITHUB_OWNER": ("github", "owner"),
    "BLOG_GITHUB_REPO": ("github", "repo"),
    "BLOG_GITHUB_BRANCH": ("github", "branch"),
    "OP_STORE_BACKEND": ("store", "backend"),
    "OP_CONTENT_ROOT": ("store", "content_root"),
}


def load_config(path: str | None = None, env: Mapping[str, str] | None = None) -> Config:
    env = os.environ if env is None else env
    cfg = _deep_copy(DEFAULT_CONFIG)
    config_path = path or env.get("OP_CONFIG_PATH")
    if config_path:
        cfg = _deep_merge(cfg, _read_yaml(config_path))
    elif Path(DEFAULT_CONFIG_PATH).is_file():
        cfg = _deep_merge(cfg, _read_yaml(DEFAULT_CONFIG_PATH))
    for name, (section, key) in ENV_OVERRIDES.items():
        value = env.get(name)
        if value:
            cfg.setdefault(section, {})[key] = value
    # YAML dates come back as date objects; the schema holds them as strings.
    return build_config(_deep_copy(cfg))


def build_config(cfg: dict[str, Any]) -> Config:
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def require_github(config: Config) -> GitHubConfig:
    github = config.github
    missing = [
        name
        for name, value in (
            ("token", github.token),
            ("owner", github.owner),
            ("repo", github.repo),
            ("branch", github.branch),
        )
        if not value
    ]
    if missing:
        raise ConfigError(
            "GitHub configuration incomplete, missing: " + ", ".join(f"github.{m}" for m in missing)
        )
    return github


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if errors:
        return errors
    backend = cfg["store"]["backend"]
    if backend not in STORE_BACKENDS:
        errors.append(f"config.store.backend must be one of {', '.join(STORE_BACKENDS)}")
    try:
        date.fromisoformat(cfg["site"]["start_date"])
    except ValueError:
        errors.append("config.site.start_date must be YYYY-MM-DD")
    if not cfg["publishing"]["default_category"].strip():
        errors.append("config.publishing.default_category must not be empty")
    if cfg["github"]["directory_retries"] < 1:
        errors.append("config.github.directory_retries must be at least 1")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    site_cfg = cfg["site"]
    store_cfg = cfg["store"]
    github_cfg = cfg["github"]
    publishing_cfg = cfg["publishing"]

    site = SiteConfig(
        name=str(site_cfg["name"]),
        start_date=date.fromisoformat(site_cfg["start_date"]),
        article_url_prefix=str(site_cfg["article_url_prefix"]).rstrip("/"),
    )

    store = StoreConfig(
        backend=str(store_cfg["backend"]),
        content_root=str(store_cfg["content_root"]),
        drafts_dir=str(store_cfg["drafts_dir"]).strip("/"),
    )

    github = GitHubConfig(
        owner=str(github_cfg["owner"]),
        repo=str(github_cfg["repo"]),
        branch=str(github_cfg["branch"]),
        token=str(github_cfg["token"]),
        api_url=str(github_cfg["api_url"]),
        timeout_seconds=int(github_cfg["timeout_seconds"]),
        user_agent=str(github_cfg["user_agent"]),
        workflow_id=str(github_cfg["workflow_id"]),
        directory_retries=int(github_cfg["directory_retries"]),
        directory_backoff_seconds=float(github_cfg["directory_backoff_seconds"]),
    )

    publishing = PublishingConfig(
        default_category=str(publishing_cfg["default_category"]).strip(),
        category_subdirs=bool(publishing_cfg["category_subdirs"]),
        batch_source_dir=str(publishing_cfg["batch_source_dir"]),
        batch_delay_seconds=float(publishing_cfg["batch_delay_seconds"]),
        redeploy=bool(publishing_cfg["redeploy"]),
    )

    return Config(site=site, store=store, github=github, publishing=publishing)


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file must contain a mapping: {path}")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = _deep_copy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value, default=str))
