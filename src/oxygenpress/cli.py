from __future__ import annotations

import argparse
import logging
import os
import sys

from .config import Config, ConfigError, load_config
from .errors import PublishError
from .frontmatter import decode
from .models import PublishResult
from .stores import build_store
from .utils import configure_logging, json_dumps, log_event
from .workflow import PublishWorkflow, WorkflowSettings, raw_from_metadata


def _setup_logging() -> logging.Logger:
    return configure_logging("oxygenpress")


def _load_workflow(
    args: argparse.Namespace, logger: logging.Logger
) -> tuple[Config, PublishWorkflow] | None:
    try:
        config = load_config(args.config)
        store = build_store(config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None
    return config, PublishWorkflow(store, WorkflowSettings.from_config(config), logger=logger)


def _build_workflow(args: argparse.Namespace, logger: logging.Logger) -> PublishWorkflow | None:
    loaded = _load_workflow(args, logger)
    return loaded[1] if loaded else None


def _report(logger: logging.Logger, result: PublishResult) -> int:
    if result.success:
        log_event(
            logger,
            logging.INFO,
            result.state,
            filename=result.filename,
            path=result.path,
            url=result.url or "n/a",
        )
        return 0
    log_event(logger, logging.ERROR, "failed", error_type=result.error_type, error=result.error)
    return 1


def _read_body_file(path: str) -> tuple[dict, str]:
    with open(path, "r", encoding="utf-8") as handle:
        metadata, body = decode(handle.read())
    raw = raw_from_metadata(metadata)
    if not raw["title"]:
        raw["title"] = os.path.splitext(os.path.basename(path))[0]
    return raw, body


def _cmd_publish(args: argparse.Namespace, logger: logging.Logger) -> int:
    workflow = _build_workflow(args, logger)
    if workflow is None:
        return 1
    return _report(logger, workflow.publish_file(args.path))


def _cmd_publish_dir(args: argparse.Namespace, logger: logging.Logger) -> int:
    loaded = _load_workflow(args, logger)
    if loaded is None:
        return 1
    config, workflow = loaded
    source_dir = args.directory or config.publishing.batch_source_dir
    try:
        report = workflow.publish_batch(source_dir, redeploy=False if args.no_redeploy else None)
    except PublishError as exc:
        log_event(logger, logging.ERROR, "batch_source_missing", error=str(exc))
        return 1
    for item in report.results:
        if item["success"]:
            logger.info("ok      %s -> %s", item["file"], item["path"])
        else:
            logger.info("failed  %s: %s", item["file"], item["error"])
    logger.info("total=%d succeeded=%d failed=%d", report.total, report.succeeded, report.failed)
    if report.total and not report.succeeded:
        return 1
    return 0


def _cmd_draft(args: argparse.Namespace, logger: logging.Logger) -> int:
    workflow = _build_workflow(args, logger)
    if workflow is None:
        return 1
    try:
        loaded = _read_body_file(args.path)
    except (OSError, UnicodeDecodeError, PublishError) as exc:
        log_event(logger, logging.ERROR, "draft_source_unreadable", path=args.path, error=str(exc))
        return 1
    raw, body = loaded
    return _report(logger, workflow.save_draft(raw, body))


def _cmd_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    workflow = _build_workflow(args, logger)
    if workflow is None:
        return 1
    try:
        rows = workflow.list_drafts() if args.drafts else workflow.list_published(args.category)
    except PublishError as exc:
        log_event(logger, logging.ERROR, "list_failed", error=str(exc))
        return 1
    sys.stdout.write(json_dumps(rows) + "\n")
    return 0


def _cmd_delete(args: argparse.Namespace, logger: logging.Logger) -> int:
    workflow = _build_workflow(args, logger)
    if workflow is None:
        return 1
    return _report(logger, workflow.delete(args.filename, draft=args.draft))


def _cmd_promote(args: argparse.Namespace, logger: logging.Logger) -> int:
    workflow = _build_workflow(args, logger)
    if workflow is None:
        return 1
    return _report(logger, workflow.promote_draft(args.filename))


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    log_event(logger, logging.INFO, "api_start", host=args.host, port=args.port)
    uvicorn.run("oxygenpress.api:app", host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oxygenpress", description="Blog article publisher")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to OP_CONFIG_PATH or ./config.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    publish_parser = subparsers.add_parser("publish", help="Publish a single Markdown file")
    publish_parser.add_argument("path", help="Markdown file with a frontmatter block")
    publish_parser.set_defaults(func=_cmd_publish)

    batch_parser = subparsers.add_parser(
        "publish-dir", help="Publish every Markdown file in a directory"
    )
    batch_parser.add_argument(
        "directory",
        nargs="?",
        default=None,
        help="Source directory (defaults to publishing.batch_source_dir)",
    )
    batch_parser.add_argument(
        "--no-redeploy",
        action="store_true",
        help="Skip the redeploy workflow dispatch after the batch",
    )
    batch_parser.set_defaults(func=_cmd_publish_dir)

    draft_parser = subparsers.add_parser("draft", help="Save a Markdown file as a draft")
    draft_parser.add_argument("path", help="Markdown file with a frontmatter block")
    draft_parser.set_defaults(func=_cmd_draft)

    list_parser = subparsers.add_parser("list", help="List published articles or drafts")
    list_parser.add_argument("--drafts", action="store_true", help="List drafts instead")
    list_parser.add_argument("--category", default=None, help="Category directory to list")
    list_parser.set_defaults(func=_cmd_list)

    delete_parser = subparsers.add_parser("delete", help="Delete an article")
    delete_parser.add_argument("filename", help="Stored filename, e.g. hello-world.md")
    delete_parser.add_argument("--draft", action="store_true", help="Delete from drafts")
    delete_parser.set_defaults(func=_cmd_delete)

    promote_parser = subparsers.add_parser("promote", help="Publish a saved draft")
    promote_parser.add_argument("filename", help="Draft filename")
    promote_parser.set_defaults(func=_cmd_promote)

    serve_parser = subparsers.add_parser("serve", help="Run the publish HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)
