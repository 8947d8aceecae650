"""FastAPI application exposing backup, archive inspection and restore."""
from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backup.api import BackupService, OperationHandle
from backup.errors import OperationInProgressError, TemplateError
from backup.reader import ArchiveView, tree_to_dict
from backup.types import BackupResult

from . import __version__
from .auth import APIKeyAuth
from .models import (
    BackupRequest,
    HealthResponse,
    OpenArchiveRequest,
    OperationStartedResponse,
    OperationStatusResponse,
    RestoreRequest,
    TemplateLoadRequest,
    TemplateLoadResponse,
    TemplateSaveRequest,
    TemplateSaveResponse,
)

LOGGER = logging.getLogger("konserve.api")

DEFAULT_OPERATION_LIMIT = 32


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    service: BackupService
    api_key: Optional[str]
    cors_origins: Sequence[str]
    app_version: str = __version__
    lan_only: bool = True
    operation_limit: int = DEFAULT_OPERATION_LIMIT


_LOCAL_CLIENT_SENTINELS = {
    "127.0.0.1",
    "::1",
    "localhost",
    "testclient",
}


def _normalise_remote_host(host: Optional[str]) -> Optional[str]:
    if host is None:
        return None
    value = host.strip().lower()
    if not value:
        return None
    if value.startswith("::ffff:"):
        value = value.split("::ffff:")[-1]
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    if "%" in value:  # strip IPv6 scope id
        value = value.split("%", 1)[0]
    return value


def _is_loopback_host(host: Optional[str]) -> bool:
    value = _normalise_remote_host(host)
    if value is None:
        return True
    return value in _LOCAL_CLIENT_SENTINELS or value.startswith("127.")


def _serialise_value(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, BackupResult):
        return {
            "archive_path": str(value.archive_path),
            "entries": list(value.entries),
            "total_bytes": value.total_bytes,
        }
    if isinstance(value, ArchiveView):
        return {
            "archive_path": str(value.archive_path),
            "locations": dict(value.key_map),
            "tree": tree_to_dict(value.tree),
        }
    if isinstance(value, dict):
        return dict(value)
    return {"value": str(value)}


class _OperationRegistry:
    """Started operations by id; beyond *limit* the oldest finished ones are dropped."""

    def __init__(self, limit: int = DEFAULT_OPERATION_LIMIT) -> None:
        self._handles: Dict[str, OperationHandle] = {}
        self._limit = max(1, int(limit))
        self._lock = threading.Lock()

    def add(self, handle: OperationHandle) -> str:
        operation_id = secrets.token_hex(8)
        with self._lock:
            self._handles[operation_id] = handle
            self._evict_finished()
        return operation_id

    def _evict_finished(self) -> None:
        excess = len(self._handles) - self._limit
        if excess <= 0:
            return
        for operation_id in list(self._handles):
            if excess <= 0:
                break
            if self._handles[operation_id].poll() is not None:
                del self._handles[operation_id]
                excess -= 1

    def get(self, operation_id: str) -> Optional[OperationHandle]:
        with self._lock:
            return self._handles.get(operation_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="Konserve Local API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    auth_dependency = APIKeyAuth(config.api_key)
    service = config.service
    operations = _OperationRegistry(config.operation_limit)
    lan_only = bool(config.lan_only)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        client_host = request.client.host if request.client else None
        try:
            if lan_only and not _is_loopback_host(client_host):
                LOGGER.warning("Rejected non-local HTTP request from %s", client_host or "<unknown>")
                response = JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "LAN access disabled"})
            else:
                response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            LOGGER.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                client_host or "-",
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": jsonable_encoder(exc.errors())},
        )

    def started(handle: OperationHandle) -> OperationStartedResponse:
        operation_id = operations.add(handle)
        return OperationStartedResponse(operation_id=operation_id, kind=handle.kind, status=handle.status)

    @app.get("/v1/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            ok=True,
            version=config.app_version,
            time_utc=datetime.now(timezone.utc).isoformat(),
            operations=len(operations),
        )

    @app.post("/v1/backup", response_model=OperationStartedResponse, status_code=status.HTTP_202_ACCEPTED)
    def start_backup(body: BackupRequest, _: Optional[str] = Depends(auth_dependency)) -> OperationStartedResponse:
        try:
            handle = service.start_backup(body.paths, body.destination)
        except OperationInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return started(handle)

    @app.post("/v1/restore/open", response_model=OperationStartedResponse, status_code=status.HTTP_202_ACCEPTED)
    def open_archive(body: OpenArchiveRequest, _: Optional[str] = Depends(auth_dependency)) -> OperationStartedResponse:
        try:
            handle = service.open_archive_for_restore(body.archive)
        except OperationInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return started(handle)

    @app.post("/v1/restore", response_model=OperationStartedResponse, status_code=status.HTTP_202_ACCEPTED)
    def start_restore(body: RestoreRequest, _: Optional[str] = Depends(auth_dependency)) -> OperationStartedResponse:
        try:
            handle = service.start_restore(body.archive, body.selected, home=body.home)
        except OperationInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return started(handle)

    @app.get("/v1/operations/{operation_id}", response_model=OperationStatusResponse)
    def operation_status(operation_id: str, _: Optional[str] = Depends(auth_dependency)) -> OperationStatusResponse:
        handle = operations.get(operation_id)
        if handle is None:
            raise HTTPException(status_code=404, detail="unknown operation")
        outcome = handle.poll()
        return OperationStatusResponse(
            operation_id=operation_id,
            kind=handle.kind,
            progress=handle.progress.get(),
            status=handle.status,
            finished=outcome is not None,
            ok=outcome.ok if outcome is not None else None,
            error=str(outcome.error) if outcome is not None and outcome.error is not None else None,
            result=_serialise_value(outcome.value) if outcome is not None else None,
        )

    @app.post("/v1/templates/load", response_model=TemplateLoadResponse)
    def template_load(body: TemplateLoadRequest, _: Optional[str] = Depends(auth_dependency)) -> TemplateLoadResponse:
        try:
            loaded = service.load_template(body.path, home=body.home)
        except TemplateError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return TemplateLoadResponse(valid=loaded.valid, skipped=loaded.skipped)

    @app.post("/v1/templates/save", response_model=TemplateSaveResponse)
    def template_save(body: TemplateSaveRequest, _: Optional[str] = Depends(auth_dependency)) -> TemplateSaveResponse:
        try:
            target = service.save_template(body.paths, body.path)
        except TemplateError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return TemplateSaveResponse(path=str(target))

    return app


__all__ = [
    "APIServerConfig",
    "create_app",
]
