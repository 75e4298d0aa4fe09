"""Request / response schemas for the remedy API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorStatusEnum(str, Enum):
    detected = "detected"
    fixed = "fixed"
    failed = "failed"
    ignored = "ignored"


# ---------------------------------------------------------------------------
# Project / fragment schemas
# ---------------------------------------------------------------------------

class ProjectCreate(BaseModel):
    name: str
    sandbox_provider: str | None = Field(
        None, description="Sandbox provider tag; the configured default when omitted"
    )


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    sandbox_provider: str | None = None
    active_fragment_id: str | None = None
    sandbox_id: str | None = None
    sandbox_url: str | None = None
    sandbox_expires_at: datetime | None = None
    created_at: datetime | None = None


class FragmentCreate(BaseModel):
    title: str
    files: dict[str, str] = Field(default_factory=dict)
    activate: bool = Field(True, description="Make the new fragment the active one")


class FragmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    version: int
    title: str
    files: dict[str, str]
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Sandbox schemas
# ---------------------------------------------------------------------------

class SandboxCreate(BaseModel):
    fragment_id: str | None = None
    template: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class CommitRequest(BaseModel):
    message: str = Field(..., min_length=1)


class ExecRequest(BaseModel):
    command: str = Field(..., min_length=1)
    cwd: str | None = None
    timeout: int | None = Field(None, gt=0, description="Seconds; the provider default when omitted")


# ---------------------------------------------------------------------------
# Error schemas
# ---------------------------------------------------------------------------

class DetectRequest(BaseModel):
    project_id: str
    fragment_id: str | None = None


class AutoFixRequest(BaseModel):
    project_id: str
    fragment_id: str | None = None


class DetectedErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    severity: str
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    auto_fixable: bool = False
    details: dict[str, Any] = Field(default_factory=dict)
    status: ErrorStatusEnum
    fix_attempts: int = 0
