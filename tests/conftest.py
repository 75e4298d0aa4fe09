"""Shared test fixtures for remedy."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from remedy.config import AutoFixConfig
from remedy.db.models import Base
from remedy.engine.detector import ErrorDetector
from remedy.engine.events import EventBus
from remedy.engine.orchestrator import AutoFixOrchestrator
from remedy.engine.sandbox import SandboxManager
from remedy.engine.state_machine import StateMachine
from remedy.providers.ai.base import FixProposal, FixProvider
from remedy.providers.base import HealthStatus
from remedy.providers.sandbox.base import (
    CommandResult,
    FileMeta,
    SandboxHandle,
    SandboxProvider,
    SandboxRecord,
    SandboxUnreachableError,
)
from remedy.store.sql import SqlFragmentStore


# --- Fake providers ---


class FakeSandboxProvider(SandboxProvider):
    """In-memory sandbox backend.

    Tests flip ``unreachable``, ``probe_delay``, ``exec_error`` and
    ``write_error`` to simulate a misbehaving backend.
    """

    TAG = "container"
    FEATURES = frozenset({"templates"})

    def __init__(self, tag: str = "container", features: set[str] | None = None) -> None:
        super().__init__({})
        self.TAG = tag
        if features is not None:
            self.FEATURES = frozenset(features)
        self.records: dict[str, SandboxRecord] = {}
        self.files: dict[str, dict[str, str]] = {}
        self.unreachable: set[str] = set()
        self.probe_delay = 0.0
        self.get_error: Exception | None = None
        self.exec_error: Exception | None = None
        self.write_error: Exception | None = None
        self.exec_results: dict[str, CommandResult] = {}
        self.commands: list[str] = []
        self.commits: list[str] = []
        self.deleted: list[str] = []

    async def health_check(self) -> HealthStatus:
        return HealthStatus(healthy=True, message="fake ok")

    async def create(self, project_id, seed_files=None, template=None, options=None):
        sandbox_id = f"{self.TAG}-{len(self.records) + 1}"
        record = SandboxRecord(
            sandbox_id=sandbox_id,
            url=f"https://{sandbox_id}.sandbox.test",
            metadata={"template": template or self.default_template},
        )
        self.records[sandbox_id] = record
        self.files[sandbox_id] = dict(seed_files or {})
        return record

    async def get(self, sandbox_id):
        if self.get_error is not None:
            raise self.get_error
        return self.records.get(sandbox_id)

    async def list_files(self, handle: SandboxHandle):
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if handle.sandbox_id in self.unreachable:
            raise SandboxUnreachableError(f"{handle.sandbox_id} is stopped")
        return {
            path: FileMeta(size=len(content))
            for path, content in self.files.get(handle.sandbox_id, {}).items()
        }

    async def exec(self, handle, command, cwd=None, timeout=None):
        self.commands.append(command)
        if self.exec_error is not None:
            raise self.exec_error
        return self.exec_results.get(command, CommandResult())

    async def write_files(self, handle, files):
        if self.write_error is not None:
            raise self.write_error
        self.files.setdefault(handle.sandbox_id, {}).update(files)

    async def delete(self, handle):
        self.deleted.append(handle.sandbox_id)
        self.records.pop(handle.sandbox_id, None)
        self.files.pop(handle.sandbox_id, None)

    async def create_git_commit(self, handle, message):
        if not self.supports("git"):
            return await super().create_git_commit(handle, message)
        self.commits.append(message)
        return f"{len(self.commits):040x}"


Responder = Callable[[dict[str, Any], dict[str, str]], Any]


class FakeFixProvider(FixProvider):
    """Fix provider driven by a test-supplied responder.

    The responder receives the error context and the file map and returns a
    :class:`FixProposal` (or a dict), raises, or is a coroutine function.
    Without one every fix is declined.
    """

    def __init__(self, responder: Responder | None = None) -> None:
        super().__init__({})
        self.responder = responder
        self.calls: list[dict[str, Any]] = []
        self.sandboxes: list[SandboxHandle | None] = []

    async def propose_fix(self, error_context, current_files, sandbox=None):
        self.calls.append(error_context)
        self.sandboxes.append(sandbox)
        if self.responder is None:
            return FixProposal(success=False, reason="no fix available")
        result = self.responder(error_context, current_files)
        if asyncio.iscoroutine(result):
            result = await result
        return result


# --- Helpers ---


async def seed_project(store, files, title="Initial", sandbox_provider=None):
    """Create a project with one active fragment holding *files*."""
    project = await store.create_project("demo", sandbox_provider)
    fragment = await store.create_fragment(project.id, title, files, activate=True)
    return project, fragment


async def drain(queue: asyncio.Queue) -> list[dict]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


# --- Fixtures ---


@pytest.fixture
def state_machine():
    return StateMachine()


@pytest.fixture
async def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlFragmentStore(session_factory)


@pytest.fixture
def container_provider():
    return FakeSandboxProvider("container", {"templates", "auto_install"})


@pytest.fixture
def vm_provider():
    return FakeSandboxProvider("vm", {"git", "snapshots", "templates"})


@pytest.fixture
def manager(store, container_provider, vm_provider):
    return SandboxManager(
        store,
        {"container": container_provider, "vm": vm_provider},
        default_provider="container",
        probe_timeout=0.2,
    )


@pytest.fixture
def detector(manager):
    return ErrorDetector(manager)


@pytest.fixture
def fix_provider():
    return FakeFixProvider()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def orchestrator(store, detector, fix_provider, manager, events):
    return AutoFixOrchestrator(
        store=store,
        detector=detector,
        fix_provider=fix_provider,
        manager=manager,
        events=events,
        config=AutoFixConfig(fix_timeout=1.0),
    )
