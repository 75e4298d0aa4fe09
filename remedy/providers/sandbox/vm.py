"""Git-backed VM sandbox provider.

A sandbox is a long-lived VM holding a git checkout; a project works on its
own branch inside it.  Unlike the container backend, the control plane
keeps reporting VMs that are stopped or archived, so "found" does not mean
"reachable".
"""

from __future__ import annotations

import logging
import posixpath
import shlex
from typing import Any

import httpx

from remedy.providers.base import HealthStatus
from remedy.providers.sandbox.base import (
    EXCLUDED_DIRS,
    CommandResult,
    FileMeta,
    SandboxCommandError,
    SandboxHandle,
    SandboxProvider,
    SandboxRecord,
    SandboxUnreachableError,
    is_manifest_path,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class VMSandboxProvider(SandboxProvider):
    """Sandbox provider for a VM workspace API with a toolbox endpoint.

    Config keys:

    - ``base_url`` -- API endpoint.
    - ``token`` -- optional bearer token.
    - ``timeout`` -- HTTP timeout in seconds (default ``30``).
    - ``branch_prefix`` -- prefix of per-project branches (default ``project/``).
    - ``max_depth`` -- directory depth walked when listing (default ``12``).
    - ``max_files`` -- manifest size cap (default ``5000``).
    """

    TAG = "vm"
    FEATURES = frozenset({"git", "snapshots", "templates"})
    WORKDIR = "/home/sandbox/workspace"
    DEFAULT_TEMPLATE = "vite-template"

    CONFIG_SCHEMA = [
        {"name": "base_url", "type": "string", "required": True},
        {"name": "token", "type": "secret"},
        {"name": "branch_prefix", "type": "string", "default": "project/"},
    ]

    def __init__(
        self, config: dict[str, Any] | None = None, client: httpx.AsyncClient | None = None
    ) -> None:
        super().__init__(config)
        self._client = client
        self._branch_prefix: str = self.config.get("branch_prefix", "project/")
        self._max_depth: int = int(self.config.get("max_depth", 12))
        self._max_files: int = int(self.config.get("max_files", 5000))

    async def initialize(self) -> None:
        if self._client is None:
            headers = {}
            if self.config.get("token"):
                headers["Authorization"] = f"Bearer {self.config['token']}"
            self._client = httpx.AsyncClient(
                base_url=self.config.get("base_url", ""),
                headers=headers,
                timeout=float(self.config.get("timeout", 30)),
            )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("VMSandboxProvider used before initialize()")
        return self._client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SandboxUnreachableError(f"{method} {url} failed: {exc}") from exc

    @staticmethod
    def _record(data: dict[str, Any]) -> SandboxRecord:
        return SandboxRecord(
            sandbox_id=data["id"],
            url=data.get("preview_url"),
            expires_at=parse_timestamp(data.get("expires_at")),
            state=data.get("state", "started"),
            metadata={
                "branch": data.get("branch"),
                "commit": data.get("commit"),
                "repository_url": data.get("repository_url"),
                "original_url": data.get("preview_url"),
            },
        )

    # ------------------------------------------------------------------
    # SandboxProvider interface
    # ------------------------------------------------------------------

    async def create(
        self,
        project_id: str,
        seed_files: dict[str, str] | None = None,
        template: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> SandboxRecord:
        payload = {
            "project_id": project_id,
            "template": template or self.default_template,
            "branch": f"{self._branch_prefix}{project_id}",
            **(options or {}),
        }
        resp = await self._request("POST", "/api/workspaces", json=payload)
        if resp.status_code >= 400:
            raise SandboxCommandError(
                f"Workspace creation failed ({resp.status_code}): {resp.text[:200]}"
            )
        record = self._record(resp.json())
        logger.info("Created VM sandbox %s on branch %s", record.sandbox_id,
                    record.metadata.get("branch"))
        if seed_files:
            await self.write_files(self.handle(record.sandbox_id), seed_files)
        return record

    async def get(self, sandbox_id: str) -> SandboxRecord | None:
        resp = await self._request("GET", f"/api/workspaces/{sandbox_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return self._record(resp.json())

    async def exec(
        self,
        handle: SandboxHandle,
        command: str,
        cwd: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        payload: dict[str, Any] = {"command": command, "cwd": cwd or self.workdir}
        if timeout:
            payload["timeout"] = timeout
        resp = await self._request(
            "POST", f"/api/toolbox/{handle.sandbox_id}/process/execute", json=payload
        )
        if resp.status_code >= 400:
            raise SandboxUnreachableError(
                f"exec on {handle.sandbox_id} failed ({resp.status_code})"
            )
        data = resp.json()
        # The toolbox merges stdout and stderr into a single "result" stream
        return CommandResult(
            stdout=data.get("result", ""),
            stderr="",
            exit_code=int(data.get("exit_code", 0)),
        )

    async def _list_dir(self, handle: SandboxHandle, path: str) -> list[dict[str, Any]]:
        resp = await self._request(
            "GET", f"/api/toolbox/{handle.sandbox_id}/files", params={"path": path}
        )
        if resp.status_code >= 400:
            raise SandboxUnreachableError(
                f"Listing {path} in {handle.sandbox_id} failed ({resp.status_code})"
            )
        return resp.json()

    async def list_files(self, handle: SandboxHandle) -> dict[str, FileMeta]:
        manifest: dict[str, FileMeta] = {}
        pending: list[tuple[str, int]] = [(self.workdir, 0)]
        while pending and len(manifest) < self._max_files:
            directory, depth = pending.pop(0)
            for entry in await self._list_dir(handle, directory):
                name = entry.get("name", "")
                full = posixpath.join(directory, name)
                if entry.get("is_dir"):
                    if name not in EXCLUDED_DIRS and depth < self._max_depth:
                        pending.append((full, depth + 1))
                    continue
                rel = self.relative_path(full)
                if is_manifest_path(rel):
                    manifest[rel] = FileMeta(
                        size=int(entry.get("size", 0)),
                        modified=entry.get("mod_time"),
                    )
        return manifest

    async def write_files(self, handle: SandboxHandle, files: dict[str, str]) -> None:
        base = self.workdir.rstrip("/")
        for path, content in files.items():
            target = f"{base}/{path.lstrip('/')}"
            resp = await self._request(
                "POST",
                f"/api/toolbox/{handle.sandbox_id}/files/upload",
                params={"path": target},
                files={"file": (posixpath.basename(target), content.encode("utf-8"))},
            )
            if resp.status_code >= 400:
                raise SandboxUnreachableError(
                    f"Uploading {path} to {handle.sandbox_id} failed ({resp.status_code})"
                )

    async def delete(self, handle: SandboxHandle) -> None:
        resp = await self._request("DELETE", f"/api/workspaces/{handle.sandbox_id}")
        if resp.status_code not in (200, 202, 204, 404):
            raise SandboxCommandError(
                f"Deleting {handle.sandbox_id} failed ({resp.status_code})"
            )

    async def create_git_commit(self, handle: SandboxHandle, message: str) -> str:
        """Commit all changes in the workdir and return the new commit hash."""
        command = (
            "git add -A && "
            f"git commit --allow-empty -m {shlex.quote(message)} && "
            "git rev-parse HEAD"
        )
        result = await self.exec(handle, command)
        if not result.ok:
            raise SandboxCommandError(f"git commit failed: {result.stdout[-500:]}")
        lines = [ln.strip() for ln in result.stdout.splitlines() if ln.strip()]
        return lines[-1] if lines else ""

    async def health_check(self) -> HealthStatus:
        try:
            resp = await self.client.get("/api/health")
        except httpx.HTTPError as exc:
            return HealthStatus(healthy=False, message=str(exc))
        if resp.status_code >= 400:
            return HealthStatus(healthy=False, message=f"HTTP {resp.status_code}")
        return HealthStatus(healthy=True, message="ok")
