"""Provider registry: maps config tags to provider classes.

Sandbox and fix providers are selected by ``(category, tag)`` pairs taken
from the YAML config, e.g. ``("sandbox", "vm")`` or ``("ai", "claude_code")``.
Built-in classes are referenced by dotted path so an optional SDK is only
imported when its provider is actually configured.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Type

from remedy.providers.base import Provider

logger = logging.getLogger(__name__)

_BUILTIN_PROVIDERS: dict[tuple[str, str], str] = {
    ("sandbox", "container"): "remedy.providers.sandbox.container.ContainerSandboxProvider",
    ("sandbox", "vm"): "remedy.providers.sandbox.vm.VMSandboxProvider",
    ("ai", "claude_code"): "remedy.providers.ai.claude_code.ClaudeCodeFixProvider",
    ("ai", "http"): "remedy.providers.ai.http.HttpFixProvider",
}


class ProviderConfigError(ValueError):
    """A provider's config section lacks required keys."""


class ProviderRegistry:
    """Resolves ``(category, tag)`` pairs to initialized provider instances.

    Entries are either classes or dotted paths; a dotted path is imported on
    first use and replaced by the class it names. :meth:`register` adds a
    third-party backend or replaces a built-in one::

        registry.register("sandbox", "firecracker", FirecrackerSandboxProvider)
        provider = await registry.create("sandbox", "firecracker", {"base_url": "..."})
    """

    def __init__(self) -> None:
        self._providers: dict[tuple[str, str], Type[Provider] | str] = dict(_BUILTIN_PROVIDERS)

    def register(self, category: str, tag: str, provider_class: Type[Provider]) -> None:
        key = (category, tag)
        if key in self._providers:
            logger.info("Replacing %s provider [%s] with %s", category, tag,
                        provider_class.__name__)
        self._providers[key] = provider_class

    def _resolve(self, category: str, tag: str) -> Type[Provider]:
        entry = self._providers.get((category, tag))
        if entry is None:
            available = [t for c, t in sorted(self._providers) if c == category]
            raise KeyError(
                f"No {category} provider registered as '{tag}'. "
                f"Available: {', '.join(available) or 'none'}"
            )
        if isinstance(entry, str):
            module_path, _, class_name = entry.rpartition(".")
            entry = getattr(importlib.import_module(module_path), class_name)
            self._providers[(category, tag)] = entry
        return entry

    async def create(
        self, category: str, tag: str, config: dict[str, Any] | None = None
    ) -> Provider:
        """Build and initialize the provider registered under *category* / *tag*.

        Raises ``KeyError`` for an unknown tag and :class:`ProviderConfigError`
        when the config misses a key the provider declares as required.
        """
        cls = self._resolve(category, tag)
        config = config or {}
        missing = cls.missing_config(config)
        if missing:
            raise ProviderConfigError(
                f"{category} provider '{tag}' is missing config: {', '.join(missing)}"
            )
        provider = cls(config)
        await provider.initialize()
        return provider

    def list_providers(self, category: str | None = None) -> list[tuple[str, str]]:
        return sorted(k for k in self._providers if category is None or k[0] == category)
