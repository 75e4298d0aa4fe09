"""Project, fragment, sandbox and error-record API routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from remedy.api.deps import get_manager, get_orchestrator, get_store
from remedy.db.models import ErrorStatus
from remedy.engine.orchestrator import (
    AutoFixOrchestrator,
    ErrorNotFoundError,
    ProjectNotFoundError,
)
from remedy.engine.sandbox import SandboxManager
from remedy.engine.state_machine import InvalidTransitionError
from remedy.models.schemas import (
    CommitRequest,
    DetectedErrorResponse,
    ExecRequest,
    ErrorStatusEnum,
    FragmentCreate,
    FragmentResponse,
    ProjectCreate,
    ProjectResponse,
    SandboxCreate,
)
from remedy.providers.sandbox.base import (
    ProviderNotConfiguredError,
    SandboxError,
    UnsupportedOperationError,
)
from remedy.store.base import FragmentStore, RecordNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


async def _require_project(store: FragmentStore, project_id: str):
    project = await store.get_project(project_id)
    if project is None:
        raise HTTPException(404, f"Project {project_id} not found")
    return project


# ---------------------------------------------------------------------------
# Projects and fragments
# ---------------------------------------------------------------------------

@router.post("", response_model=ProjectResponse)
async def create_project(req: ProjectCreate, store: FragmentStore = Depends(get_store)):
    return await store.create_project(req.name, req.sandbox_provider)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, store: FragmentStore = Depends(get_store)):
    return await _require_project(store, project_id)


@router.post("/{project_id}/fragments", response_model=FragmentResponse)
async def create_fragment(
    project_id: str, req: FragmentCreate, store: FragmentStore = Depends(get_store)
):
    await _require_project(store, project_id)
    return await store.create_fragment(project_id, req.title, req.files, activate=req.activate)


@router.get("/{project_id}/fragments", response_model=list[FragmentResponse])
async def list_fragments(project_id: str, store: FragmentStore = Depends(get_store)):
    await _require_project(store, project_id)
    return await store.list_fragments(project_id)


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------

@router.get("/{project_id}/sandbox")
async def get_sandbox(project_id: str, manager: SandboxManager = Depends(get_manager)):
    await _require_project(manager.store, project_id)
    info = await manager.get_sandbox(project_id)
    if info is None:
        raise HTTPException(404, "No live sandbox for this project")
    return info.to_dict()


@router.post("/{project_id}/sandbox")
async def create_sandbox(
    project_id: str,
    req: SandboxCreate,
    manager: SandboxManager = Depends(get_manager),
):
    try:
        info = await manager.create_sandbox(
            project_id, req.fragment_id, req.template, req.options or None
        )
    except RecordNotFoundError as e:
        raise HTTPException(404, str(e))
    except ProviderNotConfiguredError as e:
        raise HTTPException(400, str(e))
    except SandboxError as e:
        logger.warning("Sandbox creation for project %s failed: %s", project_id, e)
        raise HTTPException(502, str(e))
    return info.to_dict()


@router.delete("/{project_id}/sandbox")
async def delete_sandbox(project_id: str, manager: SandboxManager = Depends(get_manager)):
    try:
        deleted = await manager.delete_sandbox(project_id)
    except RecordNotFoundError as e:
        raise HTTPException(404, str(e))
    return {"deleted": deleted}


@router.post("/{project_id}/sandbox/commit")
async def commit_sandbox(
    project_id: str,
    req: CommitRequest,
    manager: SandboxManager = Depends(get_manager),
):
    try:
        commit = await manager.create_git_commit(project_id, req.message)
    except RecordNotFoundError as e:
        raise HTTPException(404, str(e))
    except UnsupportedOperationError as e:
        raise HTTPException(400, str(e))
    except SandboxError as e:
        raise HTTPException(502, str(e))
    return {"commit": commit}


@router.post("/{project_id}/sandbox/exec")
async def exec_in_sandbox(
    project_id: str,
    req: ExecRequest,
    manager: SandboxManager = Depends(get_manager),
):
    """Run a command in the live sandbox. A non-zero exit code is not an HTTP error."""
    await _require_project(manager.store, project_id)
    info = await manager.get_sandbox(project_id)
    if info is None:
        raise HTTPException(404, "No live sandbox for this project")
    try:
        result = await manager.execute_command(info.handle, req.command, req.cwd, req.timeout)
    except SandboxError as e:
        raise HTTPException(502, str(e))
    return result.to_dict()


# ---------------------------------------------------------------------------
# Error records
# ---------------------------------------------------------------------------

@router.get("/{project_id}/errors", response_model=list[DetectedErrorResponse])
async def list_errors(
    project_id: str,
    status: ErrorStatusEnum | None = None,
    orch: AutoFixOrchestrator = Depends(get_orchestrator),
):
    try:
        errors = await orch.list_errors(
            project_id, ErrorStatus(status.value) if status else None
        )
    except ProjectNotFoundError as e:
        raise HTTPException(404, str(e))
    return [DetectedErrorResponse(**e.to_dict()) for e in errors]


@router.post("/{project_id}/errors/{error_id}/ignore", response_model=DetectedErrorResponse)
async def ignore_error(
    project_id: str,
    error_id: str,
    orch: AutoFixOrchestrator = Depends(get_orchestrator),
):
    try:
        error = await orch.acknowledge_error(project_id, error_id)
    except (ProjectNotFoundError, ErrorNotFoundError) as e:
        raise HTTPException(404, str(e))
    except InvalidTransitionError as e:
        raise HTTPException(409, str(e))
    return DetectedErrorResponse(**error.to_dict())
