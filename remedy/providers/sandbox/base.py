"""Abstract base class for sandbox providers."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from remedy.providers.base import Provider


class SandboxError(Exception):
    """Base exception for sandbox failures."""


class SandboxUnreachableError(SandboxError):
    """The backend has (or had) the sandbox but it cannot be reached."""


class SandboxCommandError(SandboxError):
    pass


class UnsupportedOperationError(SandboxError):
    """The selected provider does not implement the requested operation."""


class ProviderNotConfiguredError(SandboxError):
    pass


# Directories never included in a sandbox file manifest
EXCLUDED_DIRS = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    ".turbo",
    "coverage",
    ".cache",
    "tmp",
)

# Control-plane states of a sandbox that exists but cannot serve requests
INACTIVE_STATES = frozenset({"stopped", "error", "archived"})


def is_manifest_path(relative_path: str) -> bool:
    """Return ``True`` if *relative_path* belongs in a file manifest.

    Excluded directories are dropped anywhere in the path; hidden files at
    the project root are dropped except ``.env*``.
    """
    parts = relative_path.split("/")
    if any(p in EXCLUDED_DIRS for p in parts[:-1]):
        return False
    name = parts[-1]
    if len(parts) == 1 and name.startswith(".") and not name.startswith(".env"):
        return False
    return bool(name)


@dataclass(frozen=True)
class SandboxHandle:
    """Identifies one sandbox on one provider."""

    provider: str
    sandbox_id: str


@dataclass(frozen=True)
class FileMeta:
    size: int = 0
    modified: str | None = None


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


@dataclass
class SandboxRecord:
    """What a provider's control plane knows about a sandbox."""

    sandbox_id: str
    url: str | None = None
    expires_at: datetime | None = None
    state: str = "running"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def inactive(self) -> bool:
        return self.state in INACTIVE_STATES


def parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class SandboxProvider(Provider):
    """Interface for remote execution backends.

    Subclasses set :attr:`TAG`, :attr:`FEATURES`, :attr:`WORKDIR` and
    :attr:`DEFAULT_TEMPLATE`.  Operations that only some backends support
    (e.g. version-control commits) raise :class:`UnsupportedOperationError`
    here and are overridden by the providers that have them.
    """

    TAG: str = ""
    FEATURES: frozenset[str] = frozenset()
    WORKDIR: str = "/workspace"
    DEFAULT_TEMPLATE: str = ""

    @property
    def workdir(self) -> str:
        return self.config.get("workdir", self.WORKDIR)

    @property
    def default_template(self) -> str:
        return self.config.get("default_template", self.DEFAULT_TEMPLATE)

    def supports(self, feature: str) -> bool:
        return feature in self.FEATURES

    def handle(self, sandbox_id: str) -> SandboxHandle:
        return SandboxHandle(provider=self.TAG, sandbox_id=sandbox_id)

    def relative_path(self, path: str) -> str:
        """Strip the workdir prefix and any leading slash from *path*."""
        prefix = self.workdir.rstrip("/") + "/"
        if path.startswith(prefix):
            path = path[len(prefix):]
        return path.lstrip("/")

    @abstractmethod
    async def create(
        self,
        project_id: str,
        seed_files: dict[str, str] | None = None,
        template: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> SandboxRecord:
        """Provision a sandbox, optionally seeded with *seed_files*."""

    @abstractmethod
    async def get(self, sandbox_id: str) -> SandboxRecord | None:
        """Return the control-plane record, or ``None`` if there is none."""

    @abstractmethod
    async def list_files(self, handle: SandboxHandle) -> dict[str, FileMeta]:
        """Return the workdir manifest keyed by relative path.

        Raises :class:`SandboxUnreachableError` when the sandbox cannot be
        listed.
        """

    @abstractmethod
    async def exec(
        self,
        handle: SandboxHandle,
        command: str,
        cwd: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...

    @abstractmethod
    async def write_files(self, handle: SandboxHandle, files: dict[str, str]) -> None:
        """Write *files* (relative paths) into the sandbox workdir."""

    @abstractmethod
    async def delete(self, handle: SandboxHandle) -> None:
        ...

    async def create_git_commit(self, handle: SandboxHandle, message: str) -> str:
        raise UnsupportedOperationError(
            f"Git commits are not supported by the '{self.TAG}' sandbox provider"
        )
