"""Error detection and auto-fix API routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from remedy.api.deps import get_orchestrator
from remedy.engine.orchestrator import (
    AutoFixOrchestrator,
    FragmentNotFoundError,
    ProjectNotFoundError,
)
from remedy.models.schemas import AutoFixRequest, DetectRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/errors", tags=["errors"])


@router.post("/detect")
async def detect_errors(
    req: DetectRequest, orch: AutoFixOrchestrator = Depends(get_orchestrator)
):
    try:
        result = await orch.detect_errors(req.project_id, req.fragment_id)
    except (ProjectNotFoundError, FragmentNotFoundError) as e:
        raise HTTPException(404, str(e))
    return result.to_dict()


@router.post("/auto-fix")
async def auto_fix(
    req: AutoFixRequest, orch: AutoFixOrchestrator = Depends(get_orchestrator)
):
    try:
        outcome = await orch.auto_fix(req.project_id, req.fragment_id)
    except (ProjectNotFoundError, FragmentNotFoundError) as e:
        raise HTTPException(404, str(e))
    # PromotionError and anything unexpected fall through to ErrorHandlingMiddleware
    return outcome.to_dict()
