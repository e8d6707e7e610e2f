from __future__ import annotations

import logging
import time
from typing import Callable

from ..config import Config, require_github
from .base import ContentStore, blob_revision, join_path
from .github import GitHubContentStore
from .local import LocalContentStore

__all__ = [
    "ContentStore",
    "GitHubContentStore",
    "LocalContentStore",
    "blob_revision",
    "build_store",
    "join_path",
]


def build_store(
    config: Config,
    *,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger | None = None,
) -> ContentStore:
    if config.store.backend == "github":
        github = require_github(config)
        return GitHubContentStore(
            github.owner,
            github.repo,
            github.branch,
            github.token,
            base_path=config.store.content_root,
            api_url=github.api_url,
            timeout_seconds=github.timeout_seconds,
            user_agent=github.user_agent,
            directory_retries=github.directory_retries,
            directory_backoff_seconds=github.directory_backoff_seconds,
            sleep=sleep,
            logger=logger,
        )
    return LocalContentStore(config.store.content_root, logger=logger)
