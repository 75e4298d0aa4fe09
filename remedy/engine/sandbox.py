"""Unified sandbox manager: one interface over every sandbox provider.

The manager resolves which provider owns a project, normalizes provider
records into :class:`SandboxInfo`, and uses file listing as the liveness
probe.  A sandbox whose control-plane record exists but whose files cannot
be listed is reported as absent, which tells callers to recreate it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from remedy.providers.base import HealthStatus
from remedy.providers.sandbox.base import (
    CommandResult,
    FileMeta,
    ProviderNotConfiguredError,
    SandboxError,
    SandboxHandle,
    SandboxProvider,
    SandboxUnreachableError,
    UnsupportedOperationError,
)
from remedy.store.base import FragmentStore, ProjectRecord, RecordNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class SandboxInfo:
    """Normalized view of a live sandbox.

    Built fresh on every :meth:`SandboxManager.get_sandbox` call and only
    valid for the duration of that call.
    """

    provider: str
    sandbox_id: str
    url: str | None = None
    expires_at: datetime | None = None
    files: dict[str, FileMeta] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def handle(self) -> SandboxHandle:
        return SandboxHandle(provider=self.provider, sandbox_id=self.sandbox_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "sandbox_id": self.sandbox_id,
            "url": self.url,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "files": {
                path: {"size": meta.size, "modified": meta.modified}
                for path, meta in self.files.items()
            },
            "metadata": dict(self.metadata),
        }


class SandboxManager:
    """Provider-agnostic sandbox lifecycle operations."""

    def __init__(
        self,
        store: FragmentStore,
        providers: dict[str, SandboxProvider],
        default_provider: str = "container",
        probe_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self._providers = providers
        self.default_provider = default_provider
        self.probe_timeout = probe_timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def provider(self, tag: str) -> SandboxProvider:
        provider = self._providers.get(tag)
        if provider is None:
            raise ProviderNotConfiguredError(f"Sandbox provider '{tag}' is not configured")
        return provider

    def _provider_for(self, project: ProjectRecord) -> SandboxProvider:
        return self.provider(project.sandbox_provider or self.default_provider)

    async def _require_project(self, project_id: str) -> ProjectRecord:
        project = await self.store.get_project(project_id)
        if project is None:
            raise RecordNotFoundError(f"Project {project_id} not found")
        return project

    async def _probe(
        self, provider: SandboxProvider, handle: SandboxHandle
    ) -> dict[str, FileMeta] | None:
        """List files under a bounded timeout. ``None`` means not reachable."""
        try:
            return await asyncio.wait_for(
                provider.list_files(handle), timeout=self.probe_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Liveness probe for sandbox %s timed out after %.1fs",
                handle.sandbox_id, self.probe_timeout,
            )
        except Exception as exc:
            logger.warning("Liveness probe for sandbox %s failed: %s", handle.sandbox_id, exc)
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_sandbox(self, project_id: str) -> SandboxInfo | None:
        """Return the project's live sandbox, or ``None`` if it is absent or dead.

        The stored sandbox reference is left in place when the probe fails,
        so callers can tell "died" apart from "never created" by looking at
        the project record.
        """
        project = await self.store.get_project(project_id)
        if project is None or not project.sandbox_id:
            return None

        provider = self._provider_for(project)
        try:
            record = await provider.get(project.sandbox_id)
        except Exception as exc:
            logger.warning(
                "Sandbox lookup for project %s (%s) failed: %s",
                project_id, project.sandbox_id, exc,
            )
            return None
        if record is None:
            logger.info("Sandbox %s no longer exists for project %s",
                        project.sandbox_id, project_id)
            return None
        if record.inactive:
            logger.warning("Sandbox %s for project %s is %s", record.sandbox_id, project_id,
                           record.state)
            return None

        handle = provider.handle(record.sandbox_id)
        files = await self._probe(provider, handle)
        if files is None:
            logger.warning(
                "Sandbox %s for project %s has a record but is unreachable",
                record.sandbox_id, project_id,
            )
            return None

        return SandboxInfo(
            provider=provider.TAG,
            sandbox_id=record.sandbox_id,
            url=record.url or project.sandbox_url,
            expires_at=record.expires_at or project.sandbox_expires_at,
            files=files,
            metadata=dict(record.metadata),
        )

    async def create_sandbox(
        self,
        project_id: str,
        fragment_id: str | None = None,
        template: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> SandboxInfo:
        project = await self._require_project(project_id)
        provider = self._provider_for(project)

        seed_files: dict[str, str] | None = None
        if fragment_id:
            fragment = await self.store.get_fragment(fragment_id)
            if fragment is None or fragment.project_id != project_id:
                raise RecordNotFoundError(
                    f"Fragment {fragment_id} not found in project {project_id}"
                )
            seed_files = fragment.files

        record = await provider.create(project_id, seed_files, template, options)
        await self.store.set_sandbox_record(
            project_id, record.sandbox_id, record.url, record.expires_at
        )

        handle = provider.handle(record.sandbox_id)
        files = await self._probe(provider, handle)
        if files is None:
            # Freshly created sandboxes may still be booting
            logger.warning("Sandbox %s created but file listing is not available yet",
                           record.sandbox_id)
            files = {}

        return SandboxInfo(
            provider=provider.TAG,
            sandbox_id=record.sandbox_id,
            url=record.url,
            expires_at=record.expires_at,
            files=files,
            metadata=dict(record.metadata),
        )

    async def execute_command(
        self,
        handle: SandboxHandle,
        command: str,
        cwd: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        return await self.provider(handle.provider).exec(handle, command, cwd, timeout)

    async def write_files(self, handle: SandboxHandle, files: dict[str, str]) -> None:
        await self.provider(handle.provider).write_files(handle, files)

    async def delete_sandbox(self, project_id: str) -> bool:
        """Delete the project's sandbox and forget it. Returns ``False`` if none was set."""
        project = await self._require_project(project_id)
        if not project.sandbox_id:
            return False
        provider = self._provider_for(project)
        try:
            await provider.delete(provider.handle(project.sandbox_id))
        except SandboxError as exc:
            logger.warning("Deleting sandbox %s failed: %s", project.sandbox_id, exc)
        await self.store.clear_sandbox_record(project_id)
        return True

    async def create_git_commit(self, project_id: str, message: str) -> str:
        project = await self._require_project(project_id)
        provider = self._provider_for(project)
        if not provider.supports("git"):
            raise UnsupportedOperationError(
                "Git commits are only supported on providers with the 'git' feature "
                f"(project uses '{provider.TAG}')"
            )
        info = await self.get_sandbox(project_id)
        if info is None:
            raise SandboxUnreachableError(f"No reachable sandbox for project {project_id}")
        return await provider.create_git_commit(info.handle, message)

    async def supports_feature(self, project_id: str, feature: str) -> bool:
        project = await self._require_project(project_id)
        return self._provider_for(project).supports(feature)

    def provider_config(self, tag: str) -> dict[str, Any]:
        provider = self.provider(tag)
        return {
            "provider": provider.TAG,
            "workdir": provider.workdir,
            "default_template": provider.default_template,
            "features": sorted(provider.FEATURES),
        }

    async def health(self) -> dict[str, HealthStatus]:
        results: dict[str, HealthStatus] = {}
        for tag, provider in self._providers.items():
            try:
                results[tag] = await provider.health_check()
            except Exception as exc:
                results[tag] = HealthStatus(healthy=False, message=str(exc))
        return results

    async def cleanup(self) -> None:
        for tag, provider in self._providers.items():
            try:
                await provider.cleanup()
            except Exception as e:
                logger.error("Error cleaning up sandbox provider [%s]: %s", tag, e)
