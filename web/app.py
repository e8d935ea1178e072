"""Web API — live session status for the second-screen dashboard.

Routes (JSON bodies, including on DELETE):
  GET    /api/sessions          -> full session list
  POST   /api/sessions          -> register {directory, source?}
  PUT    /api/sessions          -> update {directory, summary?, status?, githubIssues?}
  DELETE /api/sessions          -> remove {directory}
  POST   /api/sessions/tasks    -> add task {directory, text}
  PUT    /api/sessions/tasks    -> edit/toggle task {directory, taskId, text?, completed?}
  DELETE /api/sessions/tasks    -> delete task {directory, taskId}
  GET    /health                -> liveness + counts
  WS     /ws                    -> full session list on connect and on every change

All API errors return consistent JSON: {"error": "message", "code": "ERROR_CODE"}

Handlers are ``async def`` so every store mutation runs on the event loop
thread and completes before the next request is looked at.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

# Ensure second_screen is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from second_screen.config import DashboardSettings, load_settings
from second_screen.errors import NotFoundError, ValidationError
from second_screen.notify import ChangeNotifier, Observer
from second_screen.persistence import DebouncedSnapshot, load_snapshot
from second_screen.store import SessionStore
from second_screen.sweeper import ExpirySweeper
from second_screen.validation import (
    MAX_SOURCE,
    MAX_SUMMARY,
    MAX_TASK_TEXT,
    require_field,
    validate_directory,
    validate_github_issues,
    validate_optional_bool,
    validate_optional_string,
    validate_status,
    validate_string_length,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------


def _error_response(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status_code)


async def _read_body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError as e:  # JSONDecodeError or UnicodeDecodeError
        raise ValidationError("Request body is not valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _directory(body: dict) -> str:
    return validate_directory(require_field(body, "directory"))


def _task_id(body: dict) -> str:
    return validate_string_length(require_field(body, "taskId"), "taskId", 64)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: DashboardSettings | None = None) -> FastAPI:
    """Build a dashboard app that owns its own store, notifier and sweeper."""
    settings = settings or load_settings()

    store = SessionStore(auto_create=settings.auto_create_on_update)
    snapshot = DebouncedSnapshot(
        settings.data_file, store.list, delay=settings.save_debounce_seconds
    )
    notifier = ChangeNotifier(store, snapshot)
    sweeper = ExpirySweeper(
        store,
        notifier,
        interval=settings.sweep_interval_seconds,
        task_ttl=timedelta(seconds=settings.task_ttl_seconds),
        session_ttl=timedelta(seconds=settings.session_archive_ttl_seconds),
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        store.replace_all(load_snapshot(settings.data_file))
        if sweeper.sweep():
            logger.info("Purged stale data from previous run")
        sweeper.start()
        logger.info(
            "Second screen dashboard tracking %d session(s), snapshot at %s",
            len(store), settings.data_file,
        )
        try:
            yield
        finally:
            await sweeper.stop()
            logger.info("Shutting down, flushing pending snapshot")
            snapshot.flush()

    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.snapshot = snapshot
    app.state.notifier = notifier
    app.state.sweeper = sweeper

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc)
        return _error_response(str(exc), "VALIDATION_ERROR", 400)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(str(exc), "NOT_FOUND", 404)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
        return _error_response("Internal server error", "INTERNAL_ERROR", 500)

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    @app.get("/api/sessions")
    async def list_sessions():
        return JSONResponse(store.to_list())

    @app.post("/api/sessions")
    async def register_session(request: Request):
        body = await _read_body(request)
        directory = _directory(body)
        source = validate_optional_string(body.get("source"), "source", MAX_SOURCE)
        session, created = store.register(directory, source)
        notifier.publish()
        return JSONResponse(session.to_dict(), status_code=201 if created else 200)

    @app.put("/api/sessions")
    async def update_session(request: Request):
        body = await _read_body(request)
        directory = _directory(body)
        summary = validate_optional_string(body.get("summary"), "summary", MAX_SUMMARY)
        status = validate_status(body.get("status"))
        issues = validate_github_issues(body.get("githubIssues"))
        result = store.update_session(
            directory, summary=summary, status=status, github_issues=issues
        )
        if result.changed:
            notifier.publish()
        return JSONResponse(result.session.to_dict())

    @app.delete("/api/sessions")
    async def remove_session(request: Request):
        body = await _read_body(request)
        if store.remove_session(_directory(body)):
            notifier.publish()
        return Response(status_code=204)

    # -----------------------------------------------------------------------
    # Tasks
    # -----------------------------------------------------------------------

    @app.post("/api/sessions/tasks")
    async def add_task(request: Request):
        body = await _read_body(request)
        directory = _directory(body)
        text = validate_string_length(require_field(body, "text"), "text", MAX_TASK_TEXT)
        task = store.add_task(directory, text)
        notifier.publish()
        return JSONResponse(task.to_dict(), status_code=201)

    @app.put("/api/sessions/tasks")
    async def update_task(request: Request):
        body = await _read_body(request)
        directory = _directory(body)
        task_id = _task_id(body)
        text = body.get("text")
        if text is not None:
            text = validate_string_length(text, "text", MAX_TASK_TEXT)
        completed = validate_optional_bool(body.get("completed"), "completed")
        task, changed = store.update_task(directory, task_id, text=text, completed=completed)
        if changed:
            notifier.publish()
        return JSONResponse(task.to_dict())

    @app.delete("/api/sessions/tasks")
    async def delete_task(request: Request):
        body = await _read_body(request)
        directory = _directory(body)
        if store.delete_task(directory, _task_id(body)):
            notifier.publish()
        return Response(status_code=204)

    # -----------------------------------------------------------------------
    # Health + push channel
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "sessions": len(store),
            "observers": notifier.observer_count,
        }

    @app.websocket("/ws")
    async def push_channel(websocket: WebSocket):
        await websocket.accept()
        observer = notifier.subscribe()
        sender = asyncio.create_task(_pump(websocket, observer))
        try:
            # Inbound messages are ignored; receiving only detects disconnects.
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            notifier.unsubscribe(observer)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender

    return app


async def _pump(websocket: WebSocket, observer: Observer) -> None:
    """Forward every state the observer receives to its socket."""
    while True:
        payload = await observer.next_message()
        try:
            await websocket.send_json(payload)
        except Exception as exc:
            logger.debug("Send to observer %d failed: %s", observer.id, exc)
            observer.close()
            return
