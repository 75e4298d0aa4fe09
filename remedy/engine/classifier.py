"""Pure classification of error reports for display and fix routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from remedy.db.models import ErrorSeverity, ErrorType
from remedy.engine.types import DetectedError, ErrorReport

QUICK = "quick"
MEDIUM = "medium"
COMPLEX = "complex"
UNFIXABLE = "unfixable"

BUCKETS = (QUICK, MEDIUM, COMPLEX, UNFIXABLE)

# bucket -> (estimated seconds per error, confidence)
_BUCKET_COST: dict[str, tuple[int, float]] = {
    QUICK: (5, 0.95),
    MEDIUM: (15, 0.8),
    COMPLEX: (30, 0.6),
    UNFIXABLE: (0, 0.0),
}

_DESCRIPTIONS = {
    QUICK: "Simple fixes like import paths and code style",
    MEDIUM: "Type errors and missing exports that need small code changes",
    COMPLEX: "Type mismatches and missing modules that need restructuring",
    UNFIXABLE: "Errors that need manual review",
}

_PRIORITY = {QUICK: 1, MEDIUM: 2, COMPLEX: 3, UNFIXABLE: 4}

_TYPE_ORDER = (ErrorType.build, ErrorType.runtime, ErrorType.import_, ErrorType.navigation)
_SEVERITY_ORDER = (ErrorSeverity.high, ErrorSeverity.medium, ErrorSeverity.low)

_QUICK_IMPORTS = ("@/lib/store", "@/lib/types", "@/components/ui/")
_MEDIUM_IMPORTS = ("@/components/", "@/lib/")

_QUICK_RULES = {"prefer-const", "no-var", "no-unused-vars", "no-console",
                "prefer-template", "eqeqeq", "no-trailing-spaces"}
_MEDIUM_RULES = {"react-hooks/exhaustive-deps", "@typescript-eslint/no-explicit-any"}
_COMPLEX_RULES = {"no-undef", "react/jsx-key", "@typescript-eslint/no-unused-vars"}

_QUICK_CODES = {"TS2304", "TS_CONTENT_ANALYSIS"}
_MEDIUM_CODES = {"TS2339", "TS2322"}
_COMPLEX_CODES = {"TS2345", "TS2307"}


def _bucket(error: DetectedError) -> str:
    details = error.details
    import_path = details.get("import_path") or ""
    rule = details.get("rule")
    code = details.get("code")

    if error.type is ErrorType.import_ and any(p in import_path for p in _QUICK_IMPORTS):
        return QUICK
    if rule in _QUICK_RULES or code in _QUICK_CODES:
        return QUICK
    if error.type is ErrorType.navigation and error.severity is not ErrorSeverity.high:
        return QUICK

    if error.type is ErrorType.import_ and any(
        import_path.startswith(p) for p in _MEDIUM_IMPORTS
    ):
        return MEDIUM
    if details.get("kind") == "missing_export":
        return MEDIUM
    if rule in _MEDIUM_RULES or code in _MEDIUM_CODES:
        return MEDIUM
    if error.type is ErrorType.navigation:
        return MEDIUM

    if rule in _COMPLEX_RULES or code in _COMPLEX_CODES:
        return COMPLEX
    if error.severity is ErrorSeverity.high and not error.auto_fixable:
        return COMPLEX

    return MEDIUM if error.auto_fixable else UNFIXABLE


def category_description(bucket: str) -> str:
    return _DESCRIPTIONS.get(bucket, "Unknown category")


def fix_priority(bucket: str) -> int:
    """Lower numbers are fixed first."""
    return _PRIORITY.get(bucket, 5)


def _label(error_type: ErrorType, severity: ErrorSeverity, count: int) -> str:
    noun = "error" if count == 1 else "errors"
    return f"{count} {severity.value}-severity {error_type.value} {noun}"


@dataclass(frozen=True)
class FixStrategy:
    category: str
    description: str
    priority: int
    error_ids: tuple[str, ...]
    estimated_time: int
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "description": self.description,
            "priority": self.priority,
            "error_ids": list(self.error_ids),
            "error_count": len(self.error_ids),
            "estimated_time": self.estimated_time,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class Classification:
    total_errors: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    groups: tuple[dict[str, Any], ...]
    buckets: dict[str, tuple[str, ...]]
    strategies: tuple[FixStrategy, ...]
    overall_complexity: str
    estimated_time: int
    success_confidence: float
    recommended_approach: str
    severity: str = "low"
    auto_fixable: bool = False
    labels: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "severity": self.severity,
            "auto_fixable": self.auto_fixable,
            "by_type": dict(self.by_type),
            "by_severity": dict(self.by_severity),
            "groups": [dict(g) for g in self.groups],
            "labels": list(self.labels),
            "buckets": {k: list(v) for k, v in self.buckets.items()},
            "strategies": [s.to_dict() for s in self.strategies],
            "overall_complexity": self.overall_complexity,
            "estimated_time": self.estimated_time,
            "success_confidence": self.success_confidence,
            "recommended_approach": self.recommended_approach,
        }


def categorize(report: ErrorReport) -> Classification:
    """Group *report* by type, severity and fix complexity.

    Counts by type and severity cover every error.  Fix-complexity
    buckets cover build, import and navigation errors only, matching
    what the auto-fix pass can act on.
    """
    by_type = {t.value: 0 for t in _TYPE_ORDER}
    by_severity = {s.value: 0 for s in _SEVERITY_ORDER}
    pairs: dict[tuple[ErrorType, ErrorSeverity], int] = {}
    for error in report.all_errors():
        by_type[error.type.value] += 1
        by_severity[error.severity.value] += 1
        pairs[(error.type, error.severity)] = pairs.get((error.type, error.severity), 0) + 1

    groups = []
    for error_type in _TYPE_ORDER:
        for severity in _SEVERITY_ORDER:
            count = pairs.get((error_type, severity), 0)
            if count:
                groups.append({
                    "type": error_type.value,
                    "severity": severity.value,
                    "count": count,
                    "label": _label(error_type, severity, count),
                })

    buckets: dict[str, list[str]] = {b: [] for b in BUCKETS}
    for error in report.fixable_candidates():
        buckets[_bucket(error)].append(error.id)

    strategies = []
    for bucket in BUCKETS:
        ids = buckets[bucket]
        if not ids:
            continue
        seconds, confidence = _BUCKET_COST[bucket]
        strategies.append(FixStrategy(
            category=bucket,
            description=category_description(bucket),
            priority=fix_priority(bucket),
            error_ids=tuple(ids),
            estimated_time=seconds * len(ids),
            confidence=confidence,
        ))

    total = sum(len(ids) for ids in buckets.values())
    quick, complex_, unfixable = (
        len(buckets[QUICK]), len(buckets[COMPLEX]), len(buckets[UNFIXABLE])
    )

    if total == 0:
        overall = "simple"
        confidence = 1.0
    else:
        if unfixable / total > 0.5:
            overall = "impossible"
        elif complex_ / total > 0.3:
            overall = "complex"
        elif quick / total > 0.5:
            overall = "simple"
        else:
            overall = "moderate"
        weighted = sum(_BUCKET_COST[b][1] * len(buckets[b]) for b in BUCKETS)
        confidence = round(weighted / total, 2)

    if confidence >= 0.9 and quick > 0:
        approach = "auto-fix"
    elif confidence <= 0.3 or unfixable > quick:
        approach = "manual-review"
    else:
        approach = "hybrid"

    return Classification(
        total_errors=report.total_errors,
        by_type=by_type,
        by_severity=by_severity,
        groups=tuple(groups),
        buckets={b: tuple(ids) for b, ids in buckets.items()},
        strategies=tuple(strategies),
        overall_complexity=overall,
        estimated_time=sum(s.estimated_time for s in strategies),
        success_confidence=confidence,
        recommended_approach=approach,
        severity=report.severity.value,
        auto_fixable=report.auto_fixable,
        labels=tuple(g["label"] for g in groups),
    )
