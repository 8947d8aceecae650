"""Pydantic schemas for the Konserve local API."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
    time_utc: str = Field(..., description="Current UTC timestamp in ISO8601 format.")
    operations: int = Field(..., ge=0, description="Operations the server still tracks.")


class BackupRequest(BaseModel):
    paths: List[str] = Field(..., description="Absolute files and folders to pack.")
    destination: Optional[str] = Field(
        None, description="Folder receiving a timestamped archive, or an explicit .tar path."
    )


class OpenArchiveRequest(BaseModel):
    archive: str = Field(..., description="Path of the archive to inspect.")


class RestoreRequest(BaseModel):
    archive: str = Field(..., description="Path of the archive to restore.")
    selected: Optional[List[str]] = Field(
        None, description="Tree paths to restore ('/'-separated). Omit to restore everything."
    )
    home: Optional[str] = Field(None, description="Home directory recorded profile paths are moved onto.")


class OperationStartedResponse(BaseModel):
    operation_id: str
    kind: str
    status: str


class OperationStatusResponse(BaseModel):
    operation_id: str
    kind: str
    progress: int = Field(..., ge=0, le=101, description="0..100 while running, 101 once finished.")
    status: str
    finished: bool
    ok: Optional[bool] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class TemplateLoadRequest(BaseModel):
    path: str
    home: Optional[str] = None


class TemplateLoadResponse(BaseModel):
    valid: List[str]
    skipped: List[str]


class TemplateSaveRequest(BaseModel):
    path: str
    paths: List[str] = Field(default_factory=list)


class TemplateSaveResponse(BaseModel):
    path: str


__all__ = [
    "BackupRequest",
    "HealthResponse",
    "OpenArchiveRequest",
    "OperationStartedResponse",
    "OperationStatusResponse",
    "RestoreRequest",
    "TemplateLoadRequest",
    "TemplateLoadResponse",
    "TemplateSaveRequest",
    "TemplateSaveResponse",
]
