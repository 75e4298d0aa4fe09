"""Common base for sandbox and fix providers."""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class HealthStatus:
    """Outcome of probing a provider's backend."""

    healthy: bool
    message: str = ""
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }


class Provider(ABC):
    """A configured client for one external backend.

    Providers are built by :class:`~remedy.providers.registry.ProviderRegistry`
    from the ``config`` mapping of their YAML section, then ``initialize``\\ d
    once. ``cleanup`` runs at application shutdown.
    """

    # Config keys the provider reads, e.g.
    # {"name": "base_url", "type": "string", "required": True}
    CONFIG_SCHEMA: list[dict[str, Any]] = []

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config = config or {}

    @classmethod
    def missing_config(cls, config: dict[str, Any]) -> list[str]:
        """Names of required keys that are absent or empty in *config*."""
        return [
            item["name"]
            for item in cls.CONFIG_SCHEMA
            if item.get("required") and config.get(item["name"]) in (None, "")
        ]

    async def initialize(self) -> None:
        """Open clients or validate credentials before first use."""

    async def cleanup(self) -> None:
        """Release clients opened by :meth:`initialize`."""

    async def health_check(self) -> HealthStatus:
        return HealthStatus(healthy=True, message="no health check implemented")
