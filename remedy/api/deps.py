"""FastAPI dependency injection helpers for remedy.

Components are created once in the application lifespan and kept on
``app.state``; these helpers hand them to routes and are the seams tests
override.
"""

from __future__ import annotations

from fastapi import Request

from remedy.engine.orchestrator import AutoFixOrchestrator
from remedy.engine.sandbox import SandboxManager
from remedy.store.base import FragmentStore


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialised. It is created in the app lifespan.")
    return value


def get_orchestrator(request: Request) -> AutoFixOrchestrator:
    return _state(request, "orchestrator")


def get_manager(request: Request) -> SandboxManager:
    return _state(request, "sandbox_manager")


def get_store(request: Request) -> FragmentStore:
    return _state(request, "store")
