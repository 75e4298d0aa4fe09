"""Unit tests for error report classification."""

from __future__ import annotations

import itertools

from remedy.db.models import ErrorSeverity, ErrorType
from remedy.engine.classifier import (
    COMPLEX,
    MEDIUM,
    QUICK,
    UNFIXABLE,
    _bucket,
    categorize,
    fix_priority,
)
from remedy.engine.types import DetectedError, ErrorReport

_ids = itertools.count(1)


def err(error_type=ErrorType.build, severity=ErrorSeverity.low, auto_fixable=True, **details):
    return DetectedError(
        id=f"e{next(_ids)}",
        type=error_type,
        severity=severity,
        message="problem",
        file="src/App.tsx",
        auto_fixable=auto_fixable,
        details=details,
    )


def quick_import():
    return err(ErrorType.import_, import_path="@/lib/store", kind="problematic_import")


def complex_build():
    return err(ErrorType.build, ErrorSeverity.high, auto_fixable=False, code="TS2345")


def unfixable_build():
    return err(ErrorType.build, ErrorSeverity.low, auto_fixable=False)


class TestBuckets:
    def test_quick(self):
        assert _bucket(quick_import()) == QUICK
        assert _bucket(err(rule="eqeqeq")) == QUICK
        assert _bucket(err(code="TS_CONTENT_ANALYSIS")) == QUICK
        assert _bucket(err(ErrorType.navigation)) == QUICK

    def test_medium(self):
        assert _bucket(err(ErrorType.import_, ErrorSeverity.high, kind="missing_export")) == MEDIUM
        assert _bucket(err(ErrorType.import_, import_path="@/components/Header")) == MEDIUM
        assert _bucket(err(code="TS2339", severity=ErrorSeverity.high)) == MEDIUM
        assert _bucket(err(ErrorType.navigation, ErrorSeverity.high)) == MEDIUM

    def test_complex_and_unfixable(self):
        assert _bucket(complex_build()) == COMPLEX
        assert _bucket(err(severity=ErrorSeverity.high, auto_fixable=False)) == COMPLEX
        assert _bucket(unfixable_build()) == UNFIXABLE
        assert _bucket(err()) == MEDIUM

    def test_priorities_are_ordered(self):
        assert fix_priority(QUICK) < fix_priority(MEDIUM) < fix_priority(COMPLEX) \
            < fix_priority(UNFIXABLE)


class TestCategorize:
    def test_empty_report(self):
        result = categorize(ErrorReport())
        assert result.total_errors == 0
        assert result.overall_complexity == "simple"
        assert result.success_confidence == 1.0
        assert result.recommended_approach == "hybrid"
        assert result.strategies == ()
        assert result.severity == "low"

    def test_all_quick_recommends_auto_fix(self):
        report = ErrorReport(import_errors=[quick_import(), quick_import()])
        result = categorize(report)
        assert result.overall_complexity == "simple"
        assert result.success_confidence == 0.95
        assert result.recommended_approach == "auto-fix"
        assert result.estimated_time == 10
        assert [s.category for s in result.strategies] == [QUICK]

    def test_mostly_unfixable_is_impossible(self):
        report = ErrorReport(build_errors=[unfixable_build(), unfixable_build(), quick_import()])
        result = categorize(report)
        assert result.overall_complexity == "impossible"
        assert result.recommended_approach == "manual-review"

    def test_complex_share_over_threshold(self):
        report = ErrorReport(
            build_errors=[complex_build(), complex_build()],
            import_errors=[quick_import()],
        )
        result = categorize(report)
        assert result.overall_complexity == "complex"
        assert result.success_confidence == 0.72
        assert result.recommended_approach == "hybrid"

    def test_quick_majority_with_one_complex(self):
        report = ErrorReport(
            build_errors=[complex_build()],
            import_errors=[quick_import(), quick_import(), quick_import()],
        )
        result = categorize(report)
        assert result.overall_complexity == "simple"
        assert result.success_confidence == 0.86
        assert result.recommended_approach == "hybrid"

    def test_medium_only_is_moderate(self):
        missing = [err(ErrorType.import_, ErrorSeverity.high, kind="missing_export")
                   for _ in range(2)]
        result = categorize(ErrorReport(import_errors=missing))
        assert result.overall_complexity == "moderate"
        assert result.success_confidence == 0.8
        assert result.severity == "high"

    def test_groups_and_labels(self):
        report = ErrorReport(
            build_errors=[complex_build(), complex_build()],
            import_errors=[quick_import()],
        )
        result = categorize(report)
        assert result.labels == (
            "2 high-severity build errors",
            "1 low-severity import error",
        )
        assert result.by_type == {"build": 2, "runtime": 0, "import": 1, "navigation": 0}
        assert result.by_severity == {"high": 2, "medium": 0, "low": 1}

    def test_runtime_errors_counted_but_not_bucketed(self):
        runtime = err(ErrorType.runtime, ErrorSeverity.high, kind="runtime_log")
        result = categorize(ErrorReport(runtime_errors=[runtime]))
        assert result.total_errors == 1
        assert result.by_type["runtime"] == 1
        assert all(not ids for ids in result.buckets.values())

    def test_to_dict_is_serializable(self):
        result = categorize(ErrorReport(import_errors=[quick_import()]))
        data = result.to_dict()
        assert data["strategies"][0]["error_count"] == 1
        assert data["buckets"][QUICK] == [result.strategies[0].error_ids[0]]
