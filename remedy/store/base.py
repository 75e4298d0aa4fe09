"""Persistence contract for projects, fragments and error records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from remedy.db.models import ErrorStatus
from remedy.engine.types import DetectedError


class StoreError(Exception):
    """Base exception for persistence failures."""


class RecordNotFoundError(StoreError):
    pass


@dataclass(frozen=True)
class ProjectRecord:
    id: str
    name: str
    sandbox_provider: str | None = None
    active_fragment_id: str | None = None
    sandbox_id: str | None = None
    sandbox_url: str | None = None
    sandbox_expires_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class FragmentRecord:
    """A stored fragment. ``files`` is a private copy of the snapshot."""

    id: str
    project_id: str
    version: int
    title: str
    files: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class ErrorUpdate:
    """Status change for one error record, optionally counting a fix attempt."""

    error_id: str
    status: ErrorStatus
    count_attempt: bool = True


class FragmentStore(ABC):
    """Append-only fragment storage plus the project pointer and error records."""

    # --- Projects ---

    @abstractmethod
    async def create_project(
        self, name: str, sandbox_provider: str | None = None
    ) -> ProjectRecord:
        ...

    @abstractmethod
    async def get_project(self, project_id: str) -> ProjectRecord | None:
        ...

    @abstractmethod
    async def set_sandbox_record(
        self,
        project_id: str,
        sandbox_id: str,
        url: str | None,
        expires_at: datetime | None,
    ) -> None:
        ...

    @abstractmethod
    async def clear_sandbox_record(self, project_id: str) -> None:
        ...

    # --- Fragments ---

    @abstractmethod
    async def create_fragment(
        self,
        project_id: str,
        title: str,
        files: dict[str, str],
        activate: bool = False,
    ) -> FragmentRecord:
        ...

    @abstractmethod
    async def get_fragment(self, fragment_id: str) -> FragmentRecord | None:
        ...

    @abstractmethod
    async def latest_fragment(self, project_id: str) -> FragmentRecord | None:
        ...

    @abstractmethod
    async def list_fragments(self, project_id: str) -> list[FragmentRecord]:
        ...

    @abstractmethod
    async def set_active_fragment(self, project_id: str, fragment_id: str) -> None:
        ...

    @abstractmethod
    async def promote_fragment(
        self,
        project_id: str,
        title: str,
        files: dict[str, str],
        error_updates: list[ErrorUpdate],
    ) -> FragmentRecord:
        """Create a fragment, make it active and apply *error_updates* atomically.

        Either every write commits or none of them does.
        """

    # --- Errors ---

    @abstractmethod
    async def record_errors(
        self,
        project_id: str,
        fragment_id: str,
        errors: list[DetectedError],
    ) -> list[DetectedError]:
        """Persist *errors* and return copies carrying persisted ids and counters."""

    @abstractmethod
    async def list_errors(
        self, project_id: str, status: ErrorStatus | None = None
    ) -> list[DetectedError]:
        ...

    @abstractmethod
    async def apply_error_updates(self, updates: list[ErrorUpdate]) -> None:
        ...

    @abstractmethod
    async def set_error_status(
        self, project_id: str, error_id: str, status: ErrorStatus
    ) -> DetectedError:
        ...
