"""Value types shared by the detector, classifier and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from remedy.db.models import ErrorSeverity, ErrorStatus, ErrorType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DetectedError:
    """A single problem found in a fragment.

    ``id`` is derived from the error's fingerprint during detection and is
    replaced by the persisted id once the error has been stored.
    """

    id: str
    type: ErrorType
    severity: ErrorSeverity
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    auto_fixable: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    status: ErrorStatus = ErrorStatus.detected
    fix_attempts: int = 0

    @property
    def fingerprint(self) -> tuple:
        return (self.type.value, self.file or "", self.line or 0, self.message)

    def context(self) -> dict[str, Any]:
        """Payload handed to the fix provider for this error."""
        return {
            "error_id": self.id,
            "type": self.type.value,
            "details": {
                "message": self.message,
                "file": self.file,
                "line": self.line,
                "column": self.column,
                **self.details,
            },
            "severity": self.severity.value,
            "auto_fixable": self.auto_fixable,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "auto_fixable": self.auto_fixable,
            "details": dict(self.details),
            "status": self.status.value,
            "fix_attempts": self.fix_attempts,
        }


@dataclass
class ErrorReport:
    build_errors: list[DetectedError] = field(default_factory=list)
    runtime_errors: list[DetectedError] = field(default_factory=list)
    import_errors: list[DetectedError] = field(default_factory=list)
    navigation_errors: list[DetectedError] = field(default_factory=list)
    detected_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def empty(cls) -> ErrorReport:
        return cls()

    def all_errors(self) -> list[DetectedError]:
        return [
            *self.build_errors,
            *self.runtime_errors,
            *self.import_errors,
            *self.navigation_errors,
        ]

    def fixable_candidates(self) -> list[DetectedError]:
        """Build, import and navigation errors in detection order."""
        return [*self.build_errors, *self.import_errors, *self.navigation_errors]

    @property
    def severity(self) -> ErrorSeverity:
        errors = self.all_errors()
        if not errors:
            return ErrorSeverity.low
        return max((e.severity for e in errors), key=lambda s: s.rank)

    @property
    def auto_fixable(self) -> bool:
        return any(e.auto_fixable for e in self.all_errors())

    @property
    def total_errors(self) -> int:
        return (
            len(self.build_errors)
            + len(self.runtime_errors)
            + len(self.import_errors)
            + len(self.navigation_errors)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "build_errors": [e.to_dict() for e in self.build_errors],
            "runtime_errors": [e.to_dict() for e in self.runtime_errors],
            "import_errors": [e.to_dict() for e in self.import_errors],
            "navigation_errors": [e.to_dict() for e in self.navigation_errors],
            "severity": self.severity.value,
            "auto_fixable": self.auto_fixable,
            "total_errors": self.total_errors,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass
class DetectionOutcome:
    """Result of running detection under the selection policy.

    ``degraded`` is set when detection could not run as selected. An empty
    report with ``degraded=False`` means the fragment is genuinely clean.
    """

    report: ErrorReport
    analysis_type: str
    degraded: bool = False
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return not self.degraded


@dataclass
class FixResult:
    error_id: str
    success: bool
    fixed_files: dict[str, str] = field(default_factory=dict)
    strategy: str | None = None
    changes: list[str] = field(default_factory=list)
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_id": self.error_id,
            "success": self.success,
            "fixed_files": dict(self.fixed_files),
            "strategy": self.strategy,
            "changes": list(self.changes),
            "reason": self.reason,
        }


@dataclass
class FixSummary:
    total_errors: int = 0
    successful_fixes: int = 0
    failed_fixes: int = 0
    attempted: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total_errors:
            return 0.0
        return round(self.successful_fixes / self.total_errors * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "successful_fixes": self.successful_fixes,
            "failed_fixes": self.failed_fixes,
            "success_rate": self.success_rate,
            "attempted": self.attempted,
        }


@dataclass
class AutoFixOutcome:
    fix_results: list[FixResult]
    summary: FixSummary
    original_fragment_id: str
    new_fragment_id: str | None = None
    analysis_type: str = "fragment-only"
    sandbox_refreshed: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "fix_results": [r.to_dict() for r in self.fix_results],
            "summary": self.summary.to_dict(),
            "new_fragment_id": self.new_fragment_id,
            "original_fragment_id": self.original_fragment_id,
            "analysis_type": self.analysis_type,
            "sandbox_refreshed": self.sandbox_refreshed,
            "message": self.message,
        }
