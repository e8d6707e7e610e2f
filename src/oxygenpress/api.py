from __future__ import annotations

import dataclasses
import logging
import os

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import Config, load_config
from .errors import ConfigError, PublishError
from .models import PublishResult
from .stores import build_store
from .utils import log_event, utc_now, uptime_since
from .workflow import PublishWorkflow, WorkflowSettings

app = FastAPI(title="oxygenpress publish API")

logger = logging.getLogger("oxygenpress.api")

STATUS_BY_ERROR = {
    "validation_error": 400,
    "not_found": 404,
    "revision_conflict": 409,
    "malformed_document": 422,
    "transport_error": 502,
}


class MetadataPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = ""
    date: str | None = None
    category: str | None = None
    tags: list[str] | str = Field(default_factory=list)
    excerpt: str = ""
    readTime: int | str | None = None


class ArticlePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = ""
    metadata: MetadataPayload = Field(default_factory=MetadataPayload)


class ArticleUpdatePayload(ArticlePayload):
    filename: str = ""


class FileCommitPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fileName: str = ""
    content: str = ""
    path: str = ""


def _require_token(request: Request) -> None:
    token = os.environ.get("OP_ADMIN_TOKEN")
    if not token:
        return
    header = request.headers.get("Authorization", "")
    if header != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="unauthorized")


def get_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _workflow_for(config: Config) -> PublishWorkflow:
    try:
        store = build_store(config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", backend=config.store.backend, error=exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return PublishWorkflow(store, WorkflowSettings.from_config(config))


def _with_backend(config: Config, backend: str) -> Config:
    return dataclasses.replace(config, store=dataclasses.replace(config.store, backend=backend))


def get_workflow(config: Config = Depends(get_config)) -> PublishWorkflow:
    return _workflow_for(config)


def get_github_workflow(config: Config = Depends(get_config)) -> PublishWorkflow:
    return _workflow_for(_with_backend(config, "github"))


def get_local_workflow(config: Config = Depends(get_config)) -> PublishWorkflow:
    return _workflow_for(_with_backend(config, "local"))


def _respond(result: PublishResult, message: str) -> JSONResponse:
    if not result.success:
        return JSONResponse(
            {"success": False, "error": result.error, "errorType": result.error_type},
            status_code=STATUS_BY_ERROR.get(result.error_type or "", 500),
        )
    data = {
        key: value
        for key, value in dataclasses.asdict(result).items()
        if value is not None and key not in ("success", "error", "error_type")
    }
    return JSONResponse({"success": True, "message": message, "data": data})


def _error_response(exc: PublishError) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": str(exc), "errorType": exc.kind},
        status_code=STATUS_BY_ERROR.get(exc.kind, 500),
    )


@app.get("/health")
def health() -> dict[str, object]:
    now = utc_now()
    try:
        uptime = uptime_since(load_config().site.start_date, now)
    except ConfigError:
        uptime = None
    return {"ok": True, "version": _get_version(), "time": now.isoformat(), "uptime": uptime}


@app.post("/api/blogs/publish", dependencies=[Depends(_require_token)])
def publish_article(
    payload: ArticlePayload, workflow: PublishWorkflow = Depends(get_workflow)
) -> JSONResponse:
    result = workflow.publish(payload.metadata.model_dump(exclude_none=True), payload.content)
    return _respond(result, "article published")


@app.get("/api/blogs/publish")
def list_published(
    category: str | None = None, workflow: PublishWorkflow = Depends(get_workflow)
) -> JSONResponse:
    try:
        data = workflow.list_published(category)
    except PublishError as exc:
        return _error_response(exc)
    return JSONResponse({"success": True, "data": data})


@app.get("/api/blogs/publish/{filename:path}")
def read_published(filename: str, workflow: PublishWorkflow = Depends(get_workflow)) -> JSONResponse:
    try:
        record = workflow.read(filename)
    except PublishError as exc:
        return _error_response(exc)
    return JSONResponse(
        {
            "success": True,
            "data": {
                "filename": record.filename,
                "metadata": dataclasses.asdict(record.metadata),
                "content": record.body,
            },
        }
    )


@app.put("/api/blogs/publish", dependencies=[Depends(_require_token)])
def update_article(
    payload: ArticleUpdatePayload, workflow: PublishWorkflow = Depends(get_workflow)
) -> JSONResponse:
    result = workflow.update(
        payload.filename, payload.metadata.model_dump(exclude_none=True), payload.content
    )
    return _respond(result, "article updated")


@app.delete("/api/blogs/publish", dependencies=[Depends(_require_token)])
def delete_article(
    filename: str = "", workflow: PublishWorkflow = Depends(get_workflow)
) -> JSONResponse:
    return _respond(workflow.delete(filename), "article deleted")


@app.post("/api/blogs/save-draft", dependencies=[Depends(_require_token)])
def save_draft(
    payload: ArticlePayload, workflow: PublishWorkflow = Depends(get_workflow)
) -> JSONResponse:
    result = workflow.save_draft(payload.metadata.model_dump(exclude_none=True), payload.content)
    return _respond(result, "draft saved")


@app.get("/api/blogs/save-draft")
def list_drafts(workflow: PublishWorkflow = Depends(get_workflow)) -> JSONResponse:
    try:
        data = workflow.list_drafts()
    except PublishError as exc:
        return _error_response(exc)
    return JSONResponse({"success": True, "data": data})


@app.post("/api/blogs/drafts/{filename:path}/publish", dependencies=[Depends(_require_token)])
def promote_draft(filename: str, workflow: PublishWorkflow = Depends(get_workflow)) -> JSONResponse:
    return _respond(workflow.promote_draft(filename), "draft published")


@app.post("/api/publish", dependencies=[Depends(_require_token)])
def commit_to_github(
    payload: FileCommitPayload, workflow: PublishWorkflow = Depends(get_github_workflow)
) -> JSONResponse:
    result = workflow.commit_file(payload.path, payload.content, payload.fileName)
    return _respond(result, "article committed")


@app.post("/api/publish/local", dependencies=[Depends(_require_token)])
def commit_locally(
    payload: FileCommitPayload, workflow: PublishWorkflow = Depends(get_local_workflow)
) -> JSONResponse:
    result = workflow.commit_file(payload.path, payload.content, payload.fileName)
    return _respond(result, "article saved")


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("oxygenpress")
    except Exception:  # noqa: BLE001
        return "unknown"
