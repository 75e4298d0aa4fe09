"""Auto-fix orchestrator: detect, fix a bounded batch of errors, promote the result.

A pass never edits an existing fragment.  Successful patches are laid over
a copy of the target fragment's files and stored as a new fragment, and the
project's active pointer moves to it in the same transaction.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from dataclasses import dataclass
from typing import Any

from remedy.config import AutoFixConfig
from remedy.db.models import ErrorStatus
from remedy.engine.classifier import Classification, categorize
from remedy.engine.detector import ErrorDetector
from remedy.engine.events import EventBus
from remedy.engine.sandbox import SandboxManager
from remedy.engine.types import (
    AutoFixOutcome,
    DetectedError,
    DetectionOutcome,
    ErrorReport,
    FixResult,
    FixSummary,
)
from remedy.providers.ai.base import FixProposal, FixProvider
from remedy.providers.sandbox.base import SandboxHandle
from remedy.store.base import (
    ErrorUpdate,
    FragmentRecord,
    FragmentStore,
    ProjectRecord,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)

# Upper bound on fix attempts per pass; the rest stay detected for the next pass
MAX_FIXES_PER_PASS = 10


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""


class ProjectNotFoundError(OrchestratorError):
    pass


class FragmentNotFoundError(OrchestratorError):
    pass


class ErrorNotFoundError(OrchestratorError):
    pass


class PromotionError(OrchestratorError):
    """Storing the fixed fragment or moving the active pointer failed."""


@dataclass
class DetectionResult:
    fragment: FragmentRecord
    outcome: DetectionOutcome
    classification: Classification

    @property
    def report(self) -> ErrorReport:
        return self.outcome.report

    def to_dict(self) -> dict[str, Any]:
        return {
            "fragment_id": self.fragment.id,
            "fragment_title": self.fragment.title,
            "analysis_type": self.outcome.analysis_type,
            "degraded": self.outcome.degraded,
            "reason": self.outcome.reason,
            "errors": self.report.to_dict(),
            "classification": self.classification.to_dict(),
            "can_auto_fix": self.report.auto_fixable,
        }


class AutoFixOrchestrator:
    """Runs error detection and bounded auto-fix passes for projects."""

    def __init__(
        self,
        store: FragmentStore,
        detector: ErrorDetector,
        fix_provider: FixProvider,
        manager: SandboxManager | None = None,
        events: EventBus | None = None,
        config: AutoFixConfig | None = None,
    ) -> None:
        self.store = store
        self.detector = detector
        self.fix_provider = fix_provider
        self.manager = manager
        self.events = events
        self.config = config or AutoFixConfig()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _publish(self, project_id: str, event_type: str, **data: Any) -> None:
        if self.events is None:
            return
        try:
            await self.events.publish(project_id, event_type, **data)
        except Exception as exc:
            logger.warning("Publishing %s for project %s failed: %s",
                           event_type, project_id, exc)

    async def _get_project(self, project_id: str) -> ProjectRecord:
        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return project

    async def _resolve_target(
        self, project_id: str, fragment_id: str | None
    ) -> tuple[ProjectRecord, FragmentRecord]:
        project = await self._get_project(project_id)
        if fragment_id:
            fragment = await self.store.get_fragment(fragment_id)
            if fragment is None or fragment.project_id != project_id:
                raise FragmentNotFoundError(
                    f"Fragment {fragment_id} not found in project {project_id}"
                )
        else:
            fragment = await self.store.latest_fragment(project_id)
            if fragment is None:
                raise FragmentNotFoundError(f"No fragments found for project {project_id}")
        return project, fragment

    async def _persist(
        self, project_id: str, fragment_id: str, report: ErrorReport
    ) -> ErrorReport:
        """Store the report's errors and return the report with persisted ids."""
        stored = await self.store.record_errors(project_id, fragment_id, report.all_errors())
        it = iter(stored)
        return ErrorReport(
            build_errors=[next(it) for _ in report.build_errors],
            runtime_errors=[next(it) for _ in report.runtime_errors],
            import_errors=[next(it) for _ in report.import_errors],
            navigation_errors=[next(it) for _ in report.navigation_errors],
            detected_at=report.detected_at,
        )

    async def _live_handle(self, project_id: str) -> SandboxHandle | None:
        if self.manager is None:
            return None
        try:
            info = await self.manager.get_sandbox(project_id)
        except Exception as exc:
            logger.warning("Sandbox lookup for project %s failed: %s", project_id, exc)
            return None
        return info.handle if info else None

    def _normalize_path(self, path: str, known: dict[str, str]) -> str:
        """Map a patch path onto the fragment's project-relative keys."""
        if path in known:
            return path
        for prefix in self.config.workspace_prefixes:
            if path.startswith(prefix):
                path = path[len(prefix):]
                break
        return posixpath.normpath(path.lstrip("/"))

    async def _attempt_fix(
        self,
        error: DetectedError,
        original_files: dict[str, str],
        handle: SandboxHandle | None,
    ) -> FixResult:
        try:
            proposal = await asyncio.wait_for(
                self.fix_provider.propose_fix(error.context(), dict(original_files), handle),
                timeout=self.config.fix_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Fix for error %s timed out after %.0fs",
                           error.id, self.config.fix_timeout)
            return FixResult(error_id=error.id, success=False,
                             reason=f"fix timed out after {self.config.fix_timeout:.0f}s")
        except Exception as exc:
            logger.warning("Fix for error %s raised: %s", error.id, exc)
            return FixResult(error_id=error.id, success=False,
                             reason=str(exc) or exc.__class__.__name__)

        if isinstance(proposal, dict):
            proposal = FixProposal.from_dict(proposal)
        if not proposal.success:
            return FixResult(
                error_id=error.id, success=False, strategy=proposal.strategy,
                changes=list(proposal.changes), reason=proposal.reason or "fix declined",
            )
        if not proposal.fixed_files:
            return FixResult(
                error_id=error.id, success=False, strategy=proposal.strategy,
                reason="fix reported success but changed no files",
            )
        fixed = {
            self._normalize_path(path, original_files): content
            for path, content in proposal.fixed_files.items()
        }
        return FixResult(
            error_id=error.id,
            success=True,
            fixed_files=fixed,
            strategy=proposal.strategy,
            changes=list(proposal.changes),
        )

    @staticmethod
    def aggregate(original: dict[str, str], results: list[FixResult]) -> dict[str, str]:
        """Overlay successful patches on a copy of *original*, in order."""
        files = dict(original)
        for result in results:
            if result.success:
                files.update(result.fixed_files)
        return files

    async def _refresh_sandbox(self, project_id: str, files: dict[str, str]) -> bool:
        if self.manager is None or not self.config.refresh_sandbox:
            return False
        try:
            info = await self.manager.get_sandbox(project_id)
            if info is None:
                logger.info("No live sandbox to refresh for project %s", project_id)
                return False
            await self.manager.write_files(info.handle, files)
        except Exception as exc:
            logger.warning("Refreshing sandbox for project %s failed: %s", project_id, exc)
            await self._publish(project_id, "sandbox.refresh_failed", reason=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def detect_errors(
        self, project_id: str, fragment_id: str | None = None
    ) -> DetectionResult:
        _, fragment = await self._resolve_target(project_id, fragment_id)
        outcome = await self.detector.detect(project_id, fragment.files)
        report = await self._persist(project_id, fragment.id, outcome.report)
        outcome = DetectionOutcome(
            report=report,
            analysis_type=outcome.analysis_type,
            degraded=outcome.degraded,
            reason=outcome.reason,
        )
        classification = categorize(report)
        await self._publish(
            project_id, "errors.detected",
            fragment_id=fragment.id,
            total_errors=report.total_errors,
            analysis_type=outcome.analysis_type,
        )
        return DetectionResult(fragment=fragment, outcome=outcome,
                               classification=classification)

    async def auto_fix(
        self, project_id: str, fragment_id: str | None = None
    ) -> AutoFixOutcome:
        """Run one auto-fix pass over the target fragment.

        Parameters
        ----------
        project_id:
            Project to fix.
        fragment_id:
            Fragment to fix; defaults to the project's most recent fragment.

        Returns
        -------
        AutoFixOutcome
            Per-error results and the summary.  ``new_fragment_id`` is set
            only when at least one fix succeeded and was promoted.

        Raises
        ------
        ProjectNotFoundError, FragmentNotFoundError
            If the target cannot be resolved.
        PromotionError
            If the fixed fragment could not be stored and activated.  In
            that case nothing from the pass has been committed.
        """
        _, fragment = await self._resolve_target(project_id, fragment_id)
        await self._publish(project_id, "autofix.started", fragment_id=fragment.id)

        outcome = await self.detector.detect(project_id, fragment.files)
        if outcome.report.total_errors == 0:
            logger.info("No errors found in fragment %s (%s)", fragment.id,
                        outcome.analysis_type)
            result = AutoFixOutcome(
                fix_results=[],
                summary=FixSummary(),
                original_fragment_id=fragment.id,
                analysis_type=outcome.analysis_type,
                message="No errors found to fix",
            )
            await self._publish(project_id, "autofix.completed", **result.summary.to_dict())
            return result

        report = await self._persist(project_id, fragment.id, outcome.report)
        candidates = [
            e for e in report.fixable_candidates() if e.status is not ErrorStatus.ignored
        ]
        selected = candidates[:MAX_FIXES_PER_PASS]
        if len(candidates) > len(selected):
            logger.info("Fixing %d of %d errors in fragment %s; the rest wait for another pass",
                        len(selected), len(candidates), fragment.id)

        handle = await self._live_handle(project_id)
        results: list[FixResult] = []
        updates: list[ErrorUpdate] = []
        for error in selected:
            result = await self._attempt_fix(error, fragment.files, handle)
            results.append(result)
            updates.append(ErrorUpdate(
                error_id=error.id,
                status=ErrorStatus.fixed if result.success else ErrorStatus.failed,
            ))
            await self._publish(
                project_id, "autofix.fix_attempted",
                error_id=error.id, success=result.success, reason=result.reason,
            )

        successful = sum(1 for r in results if r.success)
        summary = FixSummary(
            total_errors=len(candidates),
            successful_fixes=successful,
            failed_fixes=len(results) - successful,
            attempted=len(results),
        )

        if successful == 0:
            await self.store.apply_error_updates(updates)
            logger.info("Auto-fix pass for fragment %s produced no successful fixes",
                        fragment.id)
            result = AutoFixOutcome(
                fix_results=results,
                summary=summary,
                original_fragment_id=fragment.id,
                analysis_type=outcome.analysis_type,
                message="No fixes could be applied",
            )
            await self._publish(project_id, "autofix.completed", **summary.to_dict())
            return result

        files = self.aggregate(fragment.files, results)
        title = f"{fragment.title}{self.config.title_suffix}"
        try:
            new_fragment = await self.store.promote_fragment(project_id, title, files, updates)
        except Exception as exc:
            logger.exception("Promoting fixed fragment for project %s failed", project_id)
            raise PromotionError(f"Could not promote fixed fragment: {exc}") from exc

        refreshed = await self._refresh_sandbox(project_id, files)
        result = AutoFixOutcome(
            fix_results=results,
            summary=summary,
            original_fragment_id=fragment.id,
            new_fragment_id=new_fragment.id,
            analysis_type=outcome.analysis_type,
            sandbox_refreshed=refreshed,
            message=f"Applied {successful} of {len(results)} fixes",
        )
        await self._publish(
            project_id, "autofix.completed",
            new_fragment_id=new_fragment.id, **summary.to_dict(),
        )
        return result

    async def list_errors(
        self, project_id: str, status: ErrorStatus | None = None
    ) -> list[DetectedError]:
        await self._get_project(project_id)
        return await self.store.list_errors(project_id, status)

    async def acknowledge_error(self, project_id: str, error_id: str) -> DetectedError:
        """Mark an error as ignored so later passes skip it."""
        await self._get_project(project_id)
        try:
            return await self.store.set_error_status(project_id, error_id, ErrorStatus.ignored)
        except RecordNotFoundError as exc:
            raise ErrorNotFoundError(str(exc)) from exc
