"""Error detection for fragments, with optional live validation in a sandbox.

Two analysis paths exist:

- :meth:`ErrorDetector.analyze_fragment_only` inspects the file map alone.
  It performs no I/O and returns the same report for the same files.
- :meth:`ErrorDetector.analyze_with_sandbox` runs the same checks, then
  adds the compiler, linter and dev-server output of a reachable sandbox
  and resolves imports against the sandbox's file manifest.

:meth:`ErrorDetector.detect` picks the path for a project and never raises:
failures come back as a degraded :class:`DetectionOutcome`.
"""

from __future__ import annotations

import difflib
import hashlib
import json
import logging
import posixpath
import re
from typing import TYPE_CHECKING, Any, Iterable

from remedy.config import DetectorConfig
from remedy.db.models import ErrorSeverity, ErrorType
from remedy.engine.types import DetectedError, DetectionOutcome, ErrorReport
from remedy.providers.sandbox.base import CommandResult

if TYPE_CHECKING:
    from remedy.engine.sandbox import SandboxInfo, SandboxManager

logger = logging.getLogger(__name__)


class LiveValidationError(Exception):
    """The sandbox could not run the live build check."""


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

CODE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")
_RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".d.ts", ".json", ".mjs", ".cjs")
_ASSET_EXTENSIONS = (
    ".css", ".scss", ".sass", ".less", ".svg", ".png", ".jpg", ".jpeg", ".gif",
    ".webp", ".ico", ".json", ".woff", ".woff2", ".ttf", ".mp3", ".mp4",
)

_IMPORT_RE = re.compile(r"import\s+(?:[^'\";]*?\s+from\s+)?['\"]([^'\"]+)['\"]")
_NAV_RE = re.compile(r"\b(href|to)=['\"]([^'\"]+)['\"]")
_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_TSC_RE = re.compile(r"^(.+?)\((\d+),(\d+)\):\s+error\s+(TS\d+):\s+(.+)$")
_SOURCE_REF_RE = re.compile(r"([\w./@-]+\.(?:tsx?|jsx?))(?::(\d+)(?::(\d+))?)?")

_FAST_REFRESH_NOTICE = "Fast refresh only works when a file only exports components"

# (pattern, message, suggestion); @ts-ignore lives in comments so it is checked on every line
_TS_IGNORE = (
    re.compile(r"@ts-ignore"),
    "TypeScript ignore comment suppresses a type error",
    "Remove @ts-ignore and fix the underlying type error",
)
_TS_CONTENT_PATTERNS = [
    (
        re.compile(r"\bas\s+any\b"),
        "Unsafe 'as any' type assertion",
        "Replace 'as any' with a specific type",
    ),
]

# (pattern, rule, message)
_LINT_CONTENT_PATTERNS = [
    (re.compile(r"\bvar\s+\w+"), "no-var", "Unexpected var, use let or const instead"),
    (re.compile(r"(?<![=!<>])==(?!=)"), "eqeqeq", "Expected '===' and instead saw '=='"),
    (re.compile(r"!=(?!=)"), "eqeqeq", "Expected '!==' and instead saw '!='"),
    (re.compile(r"[ \t]+$"), "no-trailing-spaces", "Trailing spaces not allowed"),
]

PROBLEMATIC_IMPORTS: dict[str, str] = {
    "@/lib/store": "Keep state local to the component or add the store module",
    "@/lib/types": "Declare the types inline or add the types module",
    "framer-motion": "Use CSS transitions instead of framer-motion",
    "react-spring": "Use CSS transitions instead of react-spring",
}

KNOWN_UI_COMPONENTS = (
    "button", "dialog", "input", "card", "badge", "alert", "form", "table",
    "select", "textarea", "checkbox", "radio", "switch", "slider", "tabs",
    "accordion", "carousel", "calendar", "command", "popover", "tooltip",
    "dropdown", "navigation", "sidebar", "toggle", "separator", "scroll-area",
    "sheet", "skeleton", "avatar", "progress", "spinner", "toast", "sonner",
)

_ENTRY_COMPONENT_RE = re.compile(
    r"^\s*(export\s+)?(?:async\s+)?(?:function|const|let|var|class)\s+(App|Main|Home|Index)\b"
)
_APP_DECL_RE = re.compile(r"\b(?:function|const)\s+App\b")

# TypeScript diagnostics
_TS_HIGH = {"TS2307", "TS2339", "TS2345", "TS2304", "TS2322"}
_TS_AUTO_FIXABLE = {"TS2304", "TS2307", "TS2339"}

# Lint rules
_LINT_HIGH = {"no-undef"}
_LINT_MEDIUM = {"react-hooks/exhaustive-deps", "no-unused-vars",
                "@typescript-eslint/no-unused-vars"}
_LINT_AUTO_FIXABLE = {
    "prefer-const", "no-var", "no-unused-vars", "@typescript-eslint/no-unused-vars",
    "no-console", "prefer-template", "react-hooks/exhaustive-deps",
}

# Runtime log lines
_RUNTIME_LINE_RE = re.compile(r"\b(Error|Uncaught|Failed to|error TS|\[vite\] Internal)", re.I)
_RUNTIME_HIGH_RE = re.compile(
    r"ReferenceError|TypeError|SyntaxError|Cannot read propert|is not a function|"
    r"is not defined|Failed to resolve import"
)
_RUNTIME_MEDIUM_RE = re.compile(r"Failed to fetch|NetworkError|\b404\b|Failed to load")
_RUNTIME_AUTO_FIXABLE_RE = re.compile(
    r"is not defined|Failed to resolve import|Cannot find module|"
    r"does not provide an export named"
)


def _error_id(*parts: Any) -> str:
    digest = hashlib.sha1("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return f"err_{digest[:16]}"


def _make_error(
    error_type: ErrorType,
    severity: ErrorSeverity,
    message: str,
    file: str | None = None,
    line: int | None = None,
    column: int | None = None,
    auto_fixable: bool = False,
    **details: Any,
) -> DetectedError:
    return DetectedError(
        id=_error_id(error_type.value, file, line, column, message),
        type=error_type,
        severity=severity,
        message=message,
        file=file,
        line=line,
        column=column,
        auto_fixable=auto_fixable,
        details=details,
    )


def _is_comment(stripped: str) -> bool:
    return stripped.startswith(("//", "/*", "*"))


def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _dedupe(errors: Iterable[DetectedError]) -> list[DetectedError]:
    seen: set[tuple] = set()
    unique: list[DetectedError] = []
    for error in errors:
        key = (error.type, error.file, error.line, error.message)
        if key in seen:
            continue
        seen.add(key)
        unique.append(error)
    return unique


# Shell exit codes for "command not found" and "not executable"
_NOT_EXECUTABLE = (126, 127)


def _combined(result: CommandResult) -> str:
    return f"{result.stdout}\n{result.stderr}"


def _tail(result: CommandResult, limit: int = 300) -> str:
    text = (result.stderr or result.stdout).strip()
    return text[-limit:] or "no output"


def _strip_json_comments(text: str) -> str:
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.S)
    return re.sub(r"(?m)^\s*//.*$", "", text)


def read_path_aliases(files: dict[str, str], defaults: dict[str, str]) -> dict[str, str]:
    """Merge ``compilerOptions.paths`` from the fragment's tsconfig into *defaults*.

    ``{"@/*": ["./src/*"]}`` becomes ``{"@/": "src/"}``.
    """
    aliases = dict(defaults)
    for name in ("tsconfig.json", "tsconfig.app.json"):
        raw = files.get(name)
        if not raw:
            continue
        try:
            data = json.loads(_strip_json_comments(raw))
        except json.JSONDecodeError:
            logger.debug("Could not parse %s for path aliases", name)
            continue
        paths = (data.get("compilerOptions") or {}).get("paths") or {}
        for pattern, targets in paths.items():
            if not pattern.endswith("/*") or not targets:
                continue
            target = targets[0]
            if target.startswith("./"):
                target = target[2:]
            if target.endswith("/*"):
                aliases[pattern[:-1]] = target[:-1]
    return aliases


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------

def parse_tsc_output(output: str, workdir: str = "") -> list[DetectedError]:
    """Parse ``tsc`` diagnostics, folding indented continuation lines into the message."""
    prefix = workdir.rstrip("/") + "/" if workdir else ""
    errors: list[DetectedError] = []
    current: dict[str, Any] | None = None

    def _flush() -> None:
        if current is None:
            return
        code = current["code"]
        errors.append(_make_error(
            ErrorType.build,
            ErrorSeverity.high if code in _TS_HIGH else ErrorSeverity.medium,
            current["message"],
            file=current["file"],
            line=current["line"],
            column=current["column"],
            auto_fixable=code in _TS_AUTO_FIXABLE,
            kind="typescript",
            code=code,
        ))

    for raw_line in _ANSI_RE.sub("", output).splitlines():
        match = _TSC_RE.match(raw_line.strip())
        if match:
            _flush()
            path = match.group(1)
            if prefix and path.startswith(prefix):
                path = path[len(prefix):]
            current = {
                "file": path[2:] if path.startswith("./") else path,
                "line": int(match.group(2)),
                "column": int(match.group(3)),
                "code": match.group(4),
                "message": match.group(5).strip(),
            }
        elif current is not None and raw_line[:1].isspace() and raw_line.strip():
            current["message"] += " " + raw_line.strip()
        else:
            _flush()
            current = None
    _flush()
    return errors


def parse_lint_output(output: str, workdir: str = "") -> list[DetectedError]:
    """Parse ESLint ``--format=json`` output. Unparseable output yields no errors."""
    start = output.find("[")
    if start == -1:
        return []
    try:
        results = json.loads(output[start:])
    except json.JSONDecodeError:
        logger.warning("Lint output is not valid JSON, ignoring it")
        return []

    prefix = workdir.rstrip("/") + "/" if workdir else ""
    errors: list[DetectedError] = []
    for result in results if isinstance(results, list) else []:
        path = result.get("filePath", "")
        if prefix and path.startswith(prefix):
            path = path[len(prefix):]
        for msg in result.get("messages", []):
            rule = msg.get("ruleId") or "syntax"
            if rule in _LINT_HIGH:
                severity = ErrorSeverity.high
            elif rule in _LINT_MEDIUM or msg.get("severity") == 2:
                severity = ErrorSeverity.medium
            else:
                severity = ErrorSeverity.low
            errors.append(_make_error(
                ErrorType.build,
                severity,
                msg.get("message", ""),
                file=path,
                line=msg.get("line"),
                column=msg.get("column"),
                auto_fixable=rule in _LINT_AUTO_FIXABLE,
                kind="eslint",
                rule=rule,
            ))
    return errors


def parse_runtime_log(output: str) -> list[DetectedError]:
    errors: list[DetectedError] = []
    for raw_line in _ANSI_RE.sub("", output).splitlines():
        line = raw_line.strip()
        if not line or not _RUNTIME_LINE_RE.search(line):
            continue
        if _RUNTIME_HIGH_RE.search(line):
            severity = ErrorSeverity.high
        elif _RUNTIME_MEDIUM_RE.search(line):
            severity = ErrorSeverity.medium
        else:
            severity = ErrorSeverity.low
        ref = _SOURCE_REF_RE.search(line)
        errors.append(_make_error(
            ErrorType.runtime,
            severity,
            line[:500],
            file=ref.group(1) if ref else None,
            line=int(ref.group(2)) if ref and ref.group(2) else None,
            column=int(ref.group(3)) if ref and ref.group(3) else None,
            auto_fixable=bool(_RUNTIME_AUTO_FIXABLE_RE.search(line)),
            kind="runtime_log",
        ))
    return errors


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class ErrorDetector:
    """Finds build, import, navigation and runtime problems in a fragment."""

    def __init__(
        self,
        manager: SandboxManager | None = None,
        config: DetectorConfig | None = None,
    ) -> None:
        self.manager = manager
        self.config = config or DetectorConfig()

    # --- Static checks ---

    def _content_errors(self, path: str, content: str) -> list[DetectedError]:
        errors: list[DetectedError] = []
        for number, line in enumerate(content.split("\n"), start=1):
            stripped = line.strip()
            if _FAST_REFRESH_NOTICE in line:
                continue

            pattern, message, suggestion = _TS_IGNORE
            if pattern.search(line):
                errors.append(_make_error(
                    ErrorType.build, ErrorSeverity.low, message, file=path, line=number,
                    auto_fixable=True, kind="typescript", code="TS_CONTENT_ANALYSIS",
                    suggestion=suggestion,
                ))
            if _is_comment(stripped):
                continue
            for pattern, message, suggestion in _TS_CONTENT_PATTERNS:
                if pattern.search(line):
                    errors.append(_make_error(
                        ErrorType.build, ErrorSeverity.low, message, file=path,
                        line=number, auto_fixable=True, kind="typescript",
                        code="TS_CONTENT_ANALYSIS", suggestion=suggestion,
                    ))

            if "//" in line or "/*" in line or "console.log" in line:
                continue
            for pattern, rule, message in _LINT_CONTENT_PATTERNS:
                if pattern.search(line):
                    errors.append(_make_error(
                        ErrorType.build, ErrorSeverity.low, message, file=path,
                        line=number, auto_fixable=True, kind="eslint", rule=rule,
                    ))
        return errors

    def _problematic_import_errors(self, path: str, content: str) -> list[DetectedError]:
        errors: list[DetectedError] = []
        for match in _IMPORT_RE.finditer(content):
            specifier = match.group(1)
            suggestion = PROBLEMATIC_IMPORTS.get(specifier)
            if suggestion is None and specifier.startswith("@/components/ui/"):
                if not any(name in specifier for name in KNOWN_UI_COMPONENTS):
                    suggestion = "Use one of the bundled UI components or build it inline"
            if suggestion is None:
                continue
            errors.append(_make_error(
                ErrorType.import_, ErrorSeverity.low, f"Problematic import '{specifier}'",
                file=path, line=_line_of(content, match.start()), auto_fixable=True,
                kind="problematic_import", import_path=specifier, suggestion=suggestion,
            ))
        return errors

    def _missing_export_errors(self, path: str, content: str) -> list[DetectedError]:
        if "export default" in content:
            return []
        errors: list[DetectedError] = []
        flagged: set[str] = set()
        for number, line in enumerate(content.split("\n"), start=1):
            match = _ENTRY_COMPONENT_RE.match(line)
            if not match or match.group(1):
                continue
            name = match.group(2)
            if name in flagged:
                continue
            flagged.add(name)
            errors.append(_make_error(
                ErrorType.import_, ErrorSeverity.high,
                f"Missing export for {name} component", file=path, line=number,
                auto_fixable=True, kind="missing_export", component=name,
            ))

        basename = posixpath.basename(path)
        if (
            basename in ("App.tsx", "App.jsx")
            and "App" not in flagged
            and _APP_DECL_RE.search(content)
        ):
            errors.append(_make_error(
                ErrorType.import_, ErrorSeverity.high,
                "Missing export default for App component", file=path,
                auto_fixable=True, kind="missing_export", component="App",
            ))
        return errors

    def _navigation_errors(self, path: str, content: str) -> list[DetectedError]:
        errors: list[DetectedError] = []
        for match in _NAV_RE.finditer(content):
            attribute, route = match.group(1), match.group(2)
            if not route.startswith("/") or "#" in route or route == "/":
                continue
            number = _line_of(content, match.start())
            errors.append(_make_error(
                ErrorType.navigation, ErrorSeverity.low,
                f"Navigation link to '{route}' may not resolve in a single-page preview",
                file=path, line=number, auto_fixable=True, kind="navigation",
                route=route, link_attribute=attribute,
            ))
        return errors

    def analyze_fragment_only(self, files: dict[str, str]) -> ErrorReport:
        """Static analysis of *files*. Side-effect free and deterministic."""
        report = ErrorReport()
        for path, content in files.items():
            if not path.endswith(CODE_EXTENSIONS) or not isinstance(content, str):
                continue
            report.build_errors.extend(self._content_errors(path, content))
            report.import_errors.extend(self._problematic_import_errors(path, content))
            report.import_errors.extend(self._missing_export_errors(path, content))
            report.navigation_errors.extend(self._navigation_errors(path, content))
        report.build_errors = _dedupe(report.build_errors)
        report.import_errors = _dedupe(report.import_errors)
        report.navigation_errors = _dedupe(report.navigation_errors)
        return report

    # --- Live checks ---

    def _unresolved_import_errors(
        self, files: dict[str, str], known_paths: set[str]
    ) -> list[DetectedError]:
        aliases = read_path_aliases(files, self.config.path_aliases)
        errors: list[DetectedError] = []
        for path, content in files.items():
            if not path.endswith(CODE_EXTENSIONS) or not isinstance(content, str):
                continue
            for match in _IMPORT_RE.finditer(content):
                specifier = match.group(1)
                target = self._resolve_specifier(path, specifier, aliases)
                if target is None or self._exists(target, known_paths):
                    continue
                suggestions = difflib.get_close_matches(target, sorted(known_paths), n=3)
                errors.append(_make_error(
                    ErrorType.import_, ErrorSeverity.high,
                    f"Cannot find module '{specifier}'", file=path,
                    line=_line_of(content, match.start()), auto_fixable=True,
                    kind="unresolved_import", import_path=specifier, resolved_path=target,
                    suggestions=suggestions,
                ))
        return errors

    @staticmethod
    def _resolve_specifier(path: str, specifier: str, aliases: dict[str, str]) -> str | None:
        """Map an import specifier to a project-relative path, or ``None`` for packages."""
        if specifier.startswith(("./", "../")):
            return posixpath.normpath(posixpath.join(posixpath.dirname(path), specifier))
        for alias, target in aliases.items():
            if specifier.startswith(alias):
                return posixpath.normpath(target + specifier[len(alias):])
        return None

    @staticmethod
    def _exists(target: str, known_paths: set[str]) -> bool:
        if target in known_paths:
            return True
        if target.endswith(_ASSET_EXTENSIONS):
            return False
        for ext in _RESOLVE_EXTENSIONS:
            if f"{target}{ext}" in known_paths or f"{target}/index{ext}" in known_paths:
                return True
        return False

    async def _run(self, sandbox: SandboxInfo, command: str, timeout: int) -> CommandResult:
        return await self.manager.execute_command(sandbox.handle, command, timeout=timeout)

    async def analyze_with_sandbox(
        self, files: dict[str, str], sandbox: SandboxInfo
    ) -> ErrorReport:
        """Fragment checks plus live compiler, linter and dev-server output.

        Raises :class:`LiveValidationError` if the build command cannot be run.
        """
        if self.manager is None:
            raise LiveValidationError("No sandbox manager configured")
        report = self.analyze_fragment_only(files)
        workdir = self.manager.provider_config(sandbox.provider)["workdir"]

        try:
            result = await self._run(
                sandbox, self.config.build_command, self.config.build_timeout
            )
        except Exception as exc:
            raise LiveValidationError(f"Build check failed to run: {exc}") from exc
        build_errors = parse_tsc_output(_combined(result), workdir)
        # A failed build with nothing parseable means the compiler itself did not run
        if result.exit_code in _NOT_EXECUTABLE or (not result.ok and not build_errors):
            raise LiveValidationError(
                f"Build command exited with {result.exit_code}: {_tail(result)}"
            )

        if self.config.lint_command:
            try:
                result = await self._run(
                    sandbox, self.config.lint_command, self.config.lint_timeout
                )
                build_errors.extend(parse_lint_output(_combined(result), workdir))
            except Exception as exc:
                logger.warning("Lint check in sandbox %s failed: %s", sandbox.sandbox_id, exc)

        if self.config.runtime_log_command:
            try:
                result = await self._run(sandbox, self.config.runtime_log_command, 30)
                report.runtime_errors.extend(parse_runtime_log(_combined(result)))
            except Exception as exc:
                logger.warning("Runtime log check in sandbox %s failed: %s",
                               sandbox.sandbox_id, exc)

        known = set(sandbox.files) | set(files)
        report.build_errors = _dedupe([*report.build_errors, *build_errors])
        report.import_errors = _dedupe(
            [*report.import_errors, *self._unresolved_import_errors(files, known)]
        )
        report.runtime_errors = _dedupe(report.runtime_errors)
        return report

    # --- Selection ---

    async def detect(self, project_id: str, files: dict[str, str]) -> DetectionOutcome:
        """Run the best available analysis for *project_id*. Never raises."""
        analysis_type = "fragment-only"
        try:
            sandbox = None
            if self.manager is not None:
                try:
                    sandbox = await self.manager.get_sandbox(project_id)
                except Exception as exc:
                    logger.warning("Sandbox resolution for project %s failed: %s",
                                   project_id, exc)

            if sandbox is not None and sandbox.sandbox_id:
                analysis_type = "hybrid"
                try:
                    report = await self.analyze_with_sandbox(files, sandbox)
                    return DetectionOutcome(report=report, analysis_type="hybrid")
                except LiveValidationError as exc:
                    logger.warning("Live validation unavailable for project %s: %s",
                                   project_id, exc)
                    analysis_type = "fragment-only"
                    return DetectionOutcome(
                        report=self.analyze_fragment_only(files),
                        analysis_type=analysis_type,
                        degraded=True,
                        reason=str(exc),
                    )

            return DetectionOutcome(
                report=self.analyze_fragment_only(files), analysis_type=analysis_type
            )
        except Exception as exc:
            logger.exception("Error detection failed for project %s", project_id)
            return DetectionOutcome(
                report=ErrorReport.empty(),
                analysis_type=analysis_type,
                degraded=True,
                reason=f"detection failed: {exc}",
            )
