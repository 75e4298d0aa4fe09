"""Configuration loading from remedy.yaml.

String values may reference environment variables as ``${NAME}`` or
``${NAME:-fallback}``. An unset variable without a fallback is left as
written so the mistake shows up in the provider's error message.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _interpolate_env(value: str) -> str:
    def _sub(match: re.Match) -> str:
        name, fallback = match.group(1), match.group(2)
        if name in os.environ:
            return os.environ[name]
        return match.group(0) if fallback is None else fallback

    return _ENV_REF.sub(_sub, value)


def _resolve_env(node: Any) -> Any:
    if isinstance(node, str):
        return _interpolate_env(node)
    if isinstance(node, dict):
        return {key: _resolve_env(item) for key, item in node.items()}
    if isinstance(node, list):
        return [_resolve_env(item) for item in node]
    return node


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8765
    reload: bool = False


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///remedy.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    dir: str = "./logs"


class CapabilityConfig(BaseModel):
    """A provider tag plus the config mapping handed to its constructor."""

    provider: str
    config: dict[str, Any] = Field(default_factory=dict)


class SandboxConfig(BaseModel):
    default_provider: str = "container"
    # Upper bound in seconds for the file-listing liveness probe
    probe_timeout: float = 10.0
    providers: dict[str, CapabilityConfig] = Field(default_factory=dict)


class DetectorConfig(BaseModel):
    build_command: str = "npx tsc -b --noEmit"
    build_timeout: int = 60
    lint_command: str = ""
    lint_timeout: int = 60
    runtime_log_command: str = ""
    path_aliases: dict[str, str] = Field(default_factory=lambda: {"@/": "src/"})


class AutoFixConfig(BaseModel):
    fix_timeout: float = 120.0
    title_suffix: str = " (Auto-fixed)"
    refresh_sandbox: bool = True
    workspace_prefixes: list[str] = Field(
        default_factory=lambda: ["/workspace/", "/home/sandbox/workspace/"]
    )


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    autofix: AutoFixConfig = Field(default_factory=AutoFixConfig)
    ai: CapabilityConfig | None = None


def load_config(path: str | Path = "remedy.yaml") -> AppConfig:
    """Read *path* if it exists; a missing file yields the defaults."""
    path = Path(path)
    raw: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            raw = _resolve_env(yaml.safe_load(f) or {})
    return AppConfig(**raw)
