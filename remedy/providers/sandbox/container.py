"""Ephemeral-container sandbox provider.

Each sandbox is a single short-lived container identified by its container
id.  The control plane answers 404 once a container has been reaped, but
it may also keep a record for a container that has silently died, which is
why callers probe liveness with :meth:`list_files`.
"""

from __future__ import annotations

import logging
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


class ContainerSandboxProvider(SandboxProvider):
    """Sandbox provider for an ephemeral container API.

    Config keys:

    - ``base_url`` -- control-plane URL.
    - ``token`` -- bearer token.
    - ``timeout`` -- HTTP timeout in seconds (default ``30``).
    - ``workdir`` -- project directory inside the container
      (default ``/workspace``).
    - ``default_template`` -- image template (default ``database``).
    """

    TAG = "container"
    FEATURES = frozenset({"templates", "auto_install"})
    WORKDIR = "/workspace"
    DEFAULT_TEMPLATE = "database"

    CONFIG_SCHEMA = [
        {"name": "base_url", "type": "string", "required": True},
        {"name": "token", "type": "secret", "required": True},
        {"name": "timeout", "type": "number", "default": 30},
    ]

    def __init__(
        self, config: dict[str, Any] | None = None, client: httpx.AsyncClient | None = None
    ) -> None:
        super().__init__(config)
        self._client = client

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
            raise RuntimeError("ContainerSandboxProvider used before initialize()")
        return self._client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SandboxUnreachableError(f"{method} {url} failed: {exc}") from exc
        return resp

    @staticmethod
    def _record(data: dict[str, Any]) -> SandboxRecord:
        return SandboxRecord(
            sandbox_id=data["sandbox_id"],
            url=data.get("url"),
            expires_at=parse_timestamp(data.get("expires_at")),
            state=data.get("status", "running"),
            metadata={"original_url": data.get("url")},
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
            **(options or {}),
        }
        resp = await self._request("POST", "/v1/sandboxes", json=payload)
        if resp.status_code >= 400:
            raise SandboxCommandError(
                f"Sandbox creation failed ({resp.status_code}): {resp.text[:200]}"
            )
        record = self._record(resp.json())
        logger.info("Created container sandbox %s for project %s", record.sandbox_id,
                    project_id)
        if seed_files:
            await self.write_files(self.handle(record.sandbox_id), seed_files)
        return record

    async def get(self, sandbox_id: str) -> SandboxRecord | None:
        resp = await self._request("GET", f"/v1/sandboxes/{sandbox_id}")
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
            "POST", f"/v1/sandboxes/{handle.sandbox_id}/exec", json=payload
        )
        if resp.status_code >= 400:
            raise SandboxUnreachableError(
                f"exec on {handle.sandbox_id} failed ({resp.status_code})"
            )
        data = resp.json()
        return CommandResult(
            stdout=data.get("stdout", ""),
            stderr=data.get("stderr", ""),
            exit_code=int(data.get("exit_code", 0)),
        )

    async def list_files(self, handle: SandboxHandle) -> dict[str, FileMeta]:
        prunes = " -o ".join(f"-name {shlex.quote(d)}" for d in EXCLUDED_DIRS)
        command = (
            f"find {shlex.quote(self.workdir)} \\( {prunes} \\) -prune "
            f"-o -type f -printf '%p\\t%s\\t%T@\\n'"
        )
        result = await self.exec(handle, command)
        if not result.ok:
            raise SandboxUnreachableError(
                f"Listing files in {handle.sandbox_id} failed: {result.stderr[:200]}"
            )

        manifest: dict[str, FileMeta] = {}
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) != 3:
                continue
            path, size, modified = parts
            rel = self.relative_path(path)
            if not is_manifest_path(rel):
                continue
            try:
                manifest[rel] = FileMeta(size=int(size), modified=modified)
            except ValueError:
                manifest[rel] = FileMeta(modified=modified)
        return manifest

    async def write_files(self, handle: SandboxHandle, files: dict[str, str]) -> None:
        base = self.workdir.rstrip("/")
        payload = {f"{base}/{path.lstrip('/')}": content for path, content in files.items()}
        resp = await self._request(
            "POST", f"/v1/sandboxes/{handle.sandbox_id}/files", json={"files": payload}
        )
        if resp.status_code >= 400:
            raise SandboxUnreachableError(
                f"Writing files to {handle.sandbox_id} failed ({resp.status_code})"
            )

    async def delete(self, handle: SandboxHandle) -> None:
        resp = await self._request("DELETE", f"/v1/sandboxes/{handle.sandbox_id}")
        if resp.status_code not in (200, 202, 204, 404):
            raise SandboxCommandError(
                f"Deleting {handle.sandbox_id} failed ({resp.status_code})"
            )

    async def health_check(self) -> HealthStatus:
        try:
            resp = await self.client.get("/v1/health")
        except httpx.HTTPError as exc:
            return HealthStatus(healthy=False, message=str(exc))
        if resp.status_code >= 400:
            return HealthStatus(healthy=False, message=f"HTTP {resp.status_code}")
        return HealthStatus(healthy=True, message="ok")
