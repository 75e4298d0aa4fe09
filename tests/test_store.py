"""Tests for the SQL fragment store using in-memory SQLite."""

from __future__ import annotations

import pytest

from remedy.db.models import ErrorStatus
from remedy.engine.detector import ErrorDetector
from remedy.engine.state_machine import InvalidTransitionError
from remedy.store.base import ErrorUpdate, RecordNotFoundError

from conftest import seed_project

BROKEN_FILES = {
    "src/App.tsx": 'import { useStore } from "@/lib/store";\nfunction App() {}\n',
}


async def _record(store, project, fragment):
    report = ErrorDetector().analyze_fragment_only(fragment.files)
    return await store.record_errors(project.id, fragment.id, report.all_errors())


class TestProjects:
    async def test_create_and_get(self, store):
        project = await store.create_project("demo", "vm")
        loaded = await store.get_project(project.id)
        assert loaded.name == "demo"
        assert loaded.sandbox_provider == "vm"
        assert loaded.active_fragment_id is None

    async def test_get_missing(self, store):
        assert await store.get_project("nope") is None

    async def test_sandbox_record_roundtrip(self, store):
        project = await store.create_project("demo")
        await store.set_sandbox_record(project.id, "sbx-1", "https://sbx-1.test", None)
        assert (await store.get_project(project.id)).sandbox_id == "sbx-1"
        await store.clear_sandbox_record(project.id)
        cleared = await store.get_project(project.id)
        assert cleared.sandbox_id is None and cleared.sandbox_url is None

    async def test_sandbox_record_unknown_project(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.set_sandbox_record("nope", "sbx-1", None, None)


class TestFragments:
    async def test_versions_increase(self, store):
        project, first = await seed_project(store, {"a.ts": "1"})
        second = await store.create_fragment(project.id, "Second", {"a.ts": "2"})
        assert (first.version, second.version) == (1, 2)
        assert (await store.latest_fragment(project.id)).id == second.id
        assert [f.id for f in await store.list_fragments(project.id)] == [first.id, second.id]

    async def test_activate_flag(self, store):
        project, first = await seed_project(store, {"a.ts": "1"})
        await store.create_fragment(project.id, "Draft", {"a.ts": "2"})
        assert (await store.get_project(project.id)).active_fragment_id == first.id

    async def test_files_are_copied(self, store):
        files = {"a.ts": "1"}
        project, fragment = await seed_project(store, files)
        files["a.ts"] = "mutated"
        fragment.files["a.ts"] = "also mutated"
        assert (await store.get_fragment(fragment.id)).files == {"a.ts": "1"}

    async def test_set_active_rejects_foreign_fragment(self, store):
        project, _ = await seed_project(store, {"a.ts": "1"})
        _, other = await seed_project(store, {"b.ts": "1"})
        with pytest.raises(RecordNotFoundError):
            await store.set_active_fragment(project.id, other.id)


class TestPromote:
    async def test_promote_moves_pointer_and_updates_errors(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        errors = await _record(store, project, fragment)

        promoted = await store.promote_fragment(
            project.id, "Initial (Auto-fixed)", {"src/App.tsx": "fixed"},
            [ErrorUpdate(errors[0].id, ErrorStatus.fixed)],
        )

        assert promoted.version == 2
        assert (await store.get_project(project.id)).active_fragment_id == promoted.id
        fixed = await store.list_errors(project.id, ErrorStatus.fixed)
        assert [(e.id, e.fix_attempts) for e in fixed] == [(errors[0].id, 1)]

    async def test_promote_rolls_back_on_missing_error(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        errors = await _record(store, project, fragment)

        with pytest.raises(RecordNotFoundError):
            await store.promote_fragment(
                project.id, "Fixed", {"src/App.tsx": "fixed"},
                [ErrorUpdate(errors[0].id, ErrorStatus.fixed), ErrorUpdate("gone", ErrorStatus.failed)],
            )

        assert [f.id for f in await store.list_fragments(project.id)] == [fragment.id]
        assert (await store.get_project(project.id)).active_fragment_id == fragment.id
        assert all(e.status is ErrorStatus.detected for e in await store.list_errors(project.id))

    async def test_promote_rolls_back_on_invalid_transition(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        errors = await _record(store, project, fragment)
        await store.set_error_status(project.id, errors[0].id, ErrorStatus.ignored)

        with pytest.raises(InvalidTransitionError):
            await store.promote_fragment(
                project.id, "Fixed", {"src/App.tsx": "fixed"},
                [ErrorUpdate(errors[0].id, ErrorStatus.fixed)],
            )
        assert len(await store.list_fragments(project.id)) == 1


class TestErrorRecords:
    async def test_record_is_idempotent(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        first = await _record(store, project, fragment)
        second = await _record(store, project, fragment)
        assert [e.id for e in first] == [e.id for e in second]
        assert len(await store.list_errors(project.id)) == len(first) == 2

    async def test_failed_error_redetected_keeps_attempts(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        errors = await _record(store, project, fragment)
        await store.apply_error_updates([ErrorUpdate(errors[0].id, ErrorStatus.failed)])

        again = await _record(store, project, fragment)
        match = next(e for e in again if e.id == errors[0].id)
        assert match.status is ErrorStatus.detected
        assert match.fix_attempts == 1

    async def test_ignored_error_stays_ignored(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        errors = await _record(store, project, fragment)
        ignored = await store.set_error_status(project.id, errors[0].id, ErrorStatus.ignored)
        assert ignored.status is ErrorStatus.ignored
        assert ignored.fix_attempts == 0

        again = await _record(store, project, fragment)
        assert next(e for e in again if e.id == errors[0].id).status is ErrorStatus.ignored

    async def test_set_status_checks_project(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        other, _ = await seed_project(store, {"a.ts": "1"})
        errors = await _record(store, project, fragment)
        with pytest.raises(RecordNotFoundError):
            await store.set_error_status(other.id, errors[0].id, ErrorStatus.ignored)

    async def test_list_filters_by_status(self, store):
        project, fragment = await seed_project(store, BROKEN_FILES)
        errors = await _record(store, project, fragment)
        await store.apply_error_updates([ErrorUpdate(errors[1].id, ErrorStatus.failed)])
        assert [e.id for e in await store.list_errors(project.id, ErrorStatus.failed)] == \
            [errors[1].id]
        assert len(await store.list_errors(project.id, ErrorStatus.detected)) == 1
