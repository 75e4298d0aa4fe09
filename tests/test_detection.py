"""Tests for the detector's analysis selection against a sandbox."""

from __future__ import annotations

from remedy.db.models import ErrorSeverity, ErrorType
from remedy.engine.detector import ErrorDetector
from remedy.providers.sandbox.base import CommandResult, SandboxUnreachableError

from conftest import seed_project

FILES = {
    "src/App.tsx": (
        'import { Header } from "./components/Header";\n'
        'import { add } from "@/utils";\n'
        'import { Missing } from "./Missing";\n'
        'import React from "react";\n'
        "export default function App() {\n"
        "  return null;\n"
        "}\n"
    ),
    "src/components/Header.tsx": "export const Header = () => null;\n",
    "src/utils.ts": "export const add = (a: number, b: number) => a + b;\n",
}

TSC_OUTPUT = "src/App.tsx(6,3): error TS2322: Type 'null' is not assignable to type 'Element'.\n"


async def _live_project(store, manager):
    project, fragment = await seed_project(store, FILES)
    info = await manager.create_sandbox(project.id, fragment.id)
    return project, info


class TestSelection:
    async def test_without_manager_is_fragment_only(self):
        outcome = await ErrorDetector().detect("p1", FILES)
        assert outcome.analysis_type == "fragment-only"
        assert outcome.ok
        assert outcome.report.import_errors == []

    async def test_without_sandbox_is_fragment_only(self, detector, store, container_provider):
        project, _ = await seed_project(store, FILES)
        outcome = await detector.detect(project.id, FILES)
        assert outcome.analysis_type == "fragment-only"
        assert not outcome.degraded
        assert container_provider.commands == []

    async def test_live_sandbox_is_hybrid(self, detector, store, manager, container_provider):
        project, _ = await _live_project(store, manager)
        container_provider.exec_results["npx tsc -b --noEmit"] = CommandResult(
            stdout=TSC_OUTPUT, exit_code=2
        )

        outcome = await detector.detect(project.id, FILES)

        assert outcome.analysis_type == "hybrid"
        assert outcome.ok
        [ts_error] = outcome.report.build_errors
        assert ts_error.details["code"] == "TS2322"
        assert ts_error.severity is ErrorSeverity.high
        [unresolved] = outcome.report.import_errors
        assert unresolved.details["import_path"] == "./Missing"
        assert unresolved.details["resolved_path"] == "src/Missing"
        assert unresolved.type is ErrorType.import_

    async def test_unresolved_import_suggestions(self, detector, store, manager):
        files = dict(FILES)
        files["src/App.tsx"] = 'import { Header } from "./components/Headr";\n' \
                               "export default function App() {}\n"
        project, _ = await _live_project(store, manager)

        outcome = await detector.detect(project.id, files)

        [unresolved] = outcome.report.import_errors
        assert "src/components/Header.tsx" in unresolved.details["suggestions"]

    async def test_build_command_failure_degrades(
        self, detector, store, manager, container_provider
    ):
        project, _ = await _live_project(store, manager)
        container_provider.exec_error = SandboxUnreachableError("exec endpoint down")

        outcome = await detector.detect(project.id, FILES)

        assert outcome.analysis_type == "fragment-only"
        assert outcome.degraded
        assert "exec endpoint down" in outcome.reason

    async def test_missing_build_tool_degrades(
        self, detector, store, manager, container_provider
    ):
        project, _ = await _live_project(store, manager)
        container_provider.exec_results["npx tsc -b --noEmit"] = CommandResult(
            stderr="sh: 1: npx: not found", exit_code=127
        )

        outcome = await detector.detect(project.id, FILES)

        assert outcome.analysis_type == "fragment-only"
        assert outcome.degraded
        assert "127" in outcome.reason
        assert "npx: not found" in outcome.reason

    async def test_failed_build_without_locations_degrades(
        self, detector, store, manager, container_provider
    ):
        project, _ = await _live_project(store, manager)
        container_provider.exec_results["npx tsc -b --noEmit"] = CommandResult(
            stdout="error TS5083: Cannot read file '/workspace/tsconfig.json'.", exit_code=1
        )

        outcome = await detector.detect(project.id, FILES)

        assert outcome.degraded
        assert "TS5083" in outcome.reason

    async def test_optional_checks_failure_keeps_hybrid(self, store, manager, container_provider):
        detector = ErrorDetector(manager)
        detector.config.lint_command = "npx eslint . -f json"
        project, _ = await _live_project(store, manager)

        async def exec_build_only(handle, command, cwd=None, timeout=None):
            if command == "npx eslint . -f json":
                raise SandboxUnreachableError("lint crashed")
            return CommandResult()

        container_provider.exec = exec_build_only
        outcome = await detector.detect(project.id, FILES)
        assert outcome.analysis_type == "hybrid"
        assert outcome.ok

    async def test_runtime_log_collected(self, store, manager, container_provider):
        detector = ErrorDetector(manager)
        detector.config.runtime_log_command = "tail -n 200 /tmp/dev.log"
        project, _ = await _live_project(store, manager)
        container_provider.exec_results["tail -n 200 /tmp/dev.log"] = CommandResult(
            stdout="Uncaught TypeError: x is not a function\n"
        )

        outcome = await detector.detect(project.id, FILES)

        [runtime] = outcome.report.runtime_errors
        assert runtime.severity is ErrorSeverity.high

    async def test_dead_sandbox_is_fragment_only(
        self, detector, store, manager, container_provider
    ):
        project, info = await _live_project(store, manager)
        container_provider.unreachable.add(info.sandbox_id)

        outcome = await detector.detect(project.id, FILES)

        assert outcome.analysis_type == "fragment-only"
        assert not outcome.degraded

    async def test_unexpected_failure_returns_empty_report(self, detector, monkeypatch):
        def explode(files):
            raise ValueError("bad fragment")

        monkeypatch.setattr(detector, "analyze_fragment_only", explode)

        outcome = await detector.detect("p1", FILES)

        assert outcome.degraded
        assert outcome.report.total_errors == 0
        assert outcome.report.severity is ErrorSeverity.low
        assert outcome.report.auto_fixable is False
        assert "bad fragment" in outcome.reason
