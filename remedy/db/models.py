"""Database models for remedy."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


# --- Enums ---


class ErrorType(str, enum.Enum):
    build = "build"
    runtime = "runtime"
    import_ = "import"
    navigation = "navigation"


class ErrorSeverity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ErrorSeverity.low: 0,
    ErrorSeverity.medium: 1,
    ErrorSeverity.high: 2,
}


class ErrorStatus(str, enum.Enum):
    detected = "detected"
    fixed = "fixed"
    failed = "failed"
    ignored = "ignored"


# --- Models ---


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Sandbox provider tag, e.g. "container" or "vm"; empty means the configured default
    sandbox_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Not a foreign key: fragments reference projects, so this would be circular
    active_fragment_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sandbox_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    sandbox_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    sandbox_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    fragments: Mapped[list[Fragment]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )
    errors: Mapped[list[ProjectError]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )


class Fragment(Base):
    """Immutable snapshot of a project's files. Rows are only ever inserted."""

    __tablename__ = "fragments"
    __table_args__ = (UniqueConstraint("project_id", "version"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    files: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped[Project] = relationship(back_populates="fragments")


class ProjectError(Base):
    __tablename__ = "project_errors"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False)
    fragment_id: Mapped[str] = mapped_column(ForeignKey("fragments.id"), nullable=False)
    error_type: Mapped[ErrorType] = mapped_column(Enum(ErrorType), nullable=False)
    severity: Mapped[ErrorSeverity] = mapped_column(Enum(ErrorSeverity), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    file: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    line: Mapped[int | None] = mapped_column(Integer, nullable=True)
    column: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    auto_fixable: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[ErrorStatus] = mapped_column(
        Enum(ErrorStatus), default=ErrorStatus.detected
    )
    fix_attempts: Mapped[int] = mapped_column(Integer, default=0)
    detected_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    project: Mapped[Project] = relationship(back_populates="errors")
