"""SQLAlchemy-backed fragment store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from remedy.db.models import ErrorStatus, Fragment, Project, ProjectError
from remedy.engine.state_machine import StateMachine
from remedy.engine.types import DetectedError
from remedy.store.base import (
    ErrorUpdate,
    FragmentRecord,
    FragmentStore,
    ProjectRecord,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)


def _project_record(row: Project) -> ProjectRecord:
    return ProjectRecord(
        id=row.id,
        name=row.name,
        sandbox_provider=row.sandbox_provider,
        active_fragment_id=row.active_fragment_id,
        sandbox_id=row.sandbox_id,
        sandbox_url=row.sandbox_url,
        sandbox_expires_at=row.sandbox_expires_at,
        created_at=row.created_at,
    )


def _fragment_record(row: Fragment) -> FragmentRecord:
    return FragmentRecord(
        id=row.id,
        project_id=row.project_id,
        version=row.version,
        title=row.title,
        files=dict(row.files or {}),
        created_at=row.created_at,
    )


def _detected_error(row: ProjectError) -> DetectedError:
    return DetectedError(
        id=row.id,
        type=row.error_type,
        severity=row.severity,
        message=row.message,
        file=row.file,
        line=row.line,
        column=row.column,
        auto_fixable=row.auto_fixable,
        details=dict(row.details or {}),
        status=row.status,
        fix_attempts=row.fix_attempts,
    )


def _row_fingerprint(row: ProjectError) -> tuple:
    return (row.error_type.value, row.file or "", row.line or 0, row.message)


class SqlFragmentStore(FragmentStore):
    """Fragment store over an async SQLAlchemy session factory.

    Every public method runs in its own transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state_machine: StateMachine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._sm = state_machine or StateMachine()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(
        self, name: str, sandbox_provider: str | None = None
    ) -> ProjectRecord:
        async with self._session_factory() as session, session.begin():
            project = Project(name=name, sandbox_provider=sandbox_provider)
            session.add(project)
            await session.flush()
            await session.refresh(project)
            return _project_record(project)

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        async with self._session_factory() as session:
            project = await session.get(Project, project_id)
            return _project_record(project) if project else None

    async def _load_project(self, session: AsyncSession, project_id: str) -> Project:
        project = await session.get(Project, project_id)
        if project is None:
            raise RecordNotFoundError(f"Project {project_id} not found")
        return project

    async def set_sandbox_record(
        self,
        project_id: str,
        sandbox_id: str,
        url: str | None,
        expires_at: datetime | None,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            project = await self._load_project(session, project_id)
            project.sandbox_id = sandbox_id
            project.sandbox_url = url
            project.sandbox_expires_at = expires_at

    async def clear_sandbox_record(self, project_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            project = await self._load_project(session, project_id)
            project.sandbox_id = None
            project.sandbox_url = None
            project.sandbox_expires_at = None

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    async def _insert_fragment(
        self, session: AsyncSession, project_id: str, title: str, files: dict[str, str]
    ) -> Fragment:
        current = await session.scalar(
            select(func.max(Fragment.version)).where(Fragment.project_id == project_id)
        )
        fragment = Fragment(
            project_id=project_id,
            version=(current or 0) + 1,
            title=title,
            files=dict(files),
        )
        session.add(fragment)
        await session.flush()
        await session.refresh(fragment)
        return fragment

    async def create_fragment(
        self,
        project_id: str,
        title: str,
        files: dict[str, str],
        activate: bool = False,
    ) -> FragmentRecord:
        async with self._session_factory() as session, session.begin():
            project = await self._load_project(session, project_id)
            fragment = await self._insert_fragment(session, project_id, title, files)
            if activate:
                project.active_fragment_id = fragment.id
            return _fragment_record(fragment)

    async def get_fragment(self, fragment_id: str) -> FragmentRecord | None:
        async with self._session_factory() as session:
            fragment = await session.get(Fragment, fragment_id)
            return _fragment_record(fragment) if fragment else None

    async def latest_fragment(self, project_id: str) -> FragmentRecord | None:
        async with self._session_factory() as session:
            fragment = await session.scalar(
                select(Fragment)
                .where(Fragment.project_id == project_id)
                .order_by(Fragment.version.desc())
                .limit(1)
            )
            return _fragment_record(fragment) if fragment else None

    async def list_fragments(self, project_id: str) -> list[FragmentRecord]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(Fragment)
                .where(Fragment.project_id == project_id)
                .order_by(Fragment.version)
            )
            return [_fragment_record(r) for r in rows]

    async def set_active_fragment(self, project_id: str, fragment_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            project = await self._load_project(session, project_id)
            fragment = await session.get(Fragment, fragment_id)
            if fragment is None or fragment.project_id != project_id:
                raise RecordNotFoundError(
                    f"Fragment {fragment_id} not found in project {project_id}"
                )
            project.active_fragment_id = fragment_id

    async def promote_fragment(
        self,
        project_id: str,
        title: str,
        files: dict[str, str],
        error_updates: list[ErrorUpdate],
    ) -> FragmentRecord:
        async with self._session_factory() as session, session.begin():
            project = await self._load_project(session, project_id)
            fragment = await self._insert_fragment(session, project_id, title, files)
            project.active_fragment_id = fragment.id
            await self._apply_updates(session, error_updates)
            logger.info(
                "Promoted fragment %s (v%d) for project %s",
                fragment.id, fragment.version, project_id,
            )
            return _fragment_record(fragment)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    async def record_errors(
        self,
        project_id: str,
        fragment_id: str,
        errors: list[DetectedError],
    ) -> list[DetectedError]:
        async with self._session_factory() as session, session.begin():
            await self._load_project(session, project_id)
            rows = await session.scalars(
                select(ProjectError).where(
                    ProjectError.project_id == project_id,
                    ProjectError.fragment_id == fragment_id,
                )
            )
            existing = {_row_fingerprint(r): r for r in rows}

            stored: list[DetectedError] = []
            for error in errors:
                row = existing.get(error.fingerprint)
                if row is None:
                    row = ProjectError(
                        project_id=project_id,
                        fragment_id=fragment_id,
                        error_type=error.type,
                        severity=error.severity,
                        message=error.message,
                        file=error.file,
                        line=error.line,
                        column=error.column,
                        details=dict(error.details),
                        auto_fixable=error.auto_fixable,
                        status=ErrorStatus.detected,
                        fix_attempts=0,
                        detected_at=datetime.now(timezone.utc),
                    )
                    session.add(row)
                    existing[error.fingerprint] = row
                else:
                    row.severity = error.severity
                    row.details = dict(error.details)
                    row.auto_fixable = error.auto_fixable
                    if self._sm.can_transition(row.status, ErrorStatus.detected):
                        row.status = ErrorStatus.detected
                        row.resolved_at = None
                await session.flush()
                stored.append(_detected_error(row))
            return stored

    async def list_errors(
        self, project_id: str, status: ErrorStatus | None = None
    ) -> list[DetectedError]:
        async with self._session_factory() as session:
            stmt = select(ProjectError).where(ProjectError.project_id == project_id)
            if status is not None:
                stmt = stmt.where(ProjectError.status == status)
            rows = await session.scalars(stmt.order_by(ProjectError.detected_at))
            return [_detected_error(r) for r in rows]

    async def _apply_updates(
        self, session: AsyncSession, updates: list[ErrorUpdate]
    ) -> None:
        for update in updates:
            row = await session.get(ProjectError, update.error_id)
            if row is None:
                raise RecordNotFoundError(f"Error record {update.error_id} not found")
            row.status = self._sm.transition(row.status, update.status)
            if update.count_attempt:
                row.fix_attempts = (row.fix_attempts or 0) + 1
            if update.status in (ErrorStatus.fixed, ErrorStatus.ignored):
                row.resolved_at = datetime.now(timezone.utc)
        await session.flush()

    async def apply_error_updates(self, updates: list[ErrorUpdate]) -> None:
        async with self._session_factory() as session, session.begin():
            await self._apply_updates(session, updates)

    async def set_error_status(
        self, project_id: str, error_id: str, status: ErrorStatus
    ) -> DetectedError:
        async with self._session_factory() as session, session.begin():
            row = await session.get(ProjectError, error_id)
            if row is None or row.project_id != project_id:
                raise RecordNotFoundError(
                    f"Error record {error_id} not found in project {project_id}"
                )
            await self._apply_updates(
                session, [ErrorUpdate(error_id, status, count_attempt=False)]
            )
            return _detected_error(row)
