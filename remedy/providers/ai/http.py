"""Fix provider that delegates to a remote fix service over HTTP."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from remedy.providers.ai.base import FixProposal, FixProvider
from remedy.providers.base import HealthStatus
from remedy.providers.sandbox.base import SandboxHandle

logger = logging.getLogger(__name__)


class HttpFixProvider(FixProvider):
    """POSTs each error to ``<base_url>/fix`` and reads a fix proposal back.

    Config keys:

    - ``base_url`` -- fix service URL.
    - ``token`` -- optional bearer token.
    - ``timeout`` -- request timeout in seconds (default ``120``).
    """

    CONFIG_SCHEMA = [
        {"name": "base_url", "type": "string", "required": True},
        {"name": "token", "type": "secret"},
        {"name": "timeout", "type": "number", "default": 120},
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
                timeout=float(self.config.get("timeout", 120)),
            )

    async def cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def propose_fix(
        self,
        error_context: dict[str, Any],
        current_files: dict[str, str],
        sandbox: SandboxHandle | None = None,
    ) -> FixProposal:
        payload: dict[str, Any] = {"error": error_context, "files": current_files}
        if sandbox is not None:
            payload["sandbox"] = {"provider": sandbox.provider, "sandbox_id": sandbox.sandbox_id}
        resp = await self._client.post("/fix", json=payload)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            return FixProposal(success=False, reason="fix service returned a non-object")
        return FixProposal.from_dict(data)

    async def health_check(self) -> HealthStatus:
        try:
            resp = await self._client.get("/health")
        except httpx.HTTPError as exc:
            return HealthStatus(healthy=False, message=str(exc))
        return HealthStatus(healthy=resp.status_code < 400, message=f"HTTP {resp.status_code}")
