"""Claude Code fix provider using claude-code-sdk."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from remedy.providers.ai.base import FixProposal, FixProvider
from remedy.providers.base import HealthStatus
from remedy.providers.sandbox.base import SandboxHandle

logger = logging.getLogger(__name__)

try:
    from claude_code_sdk import (
        AssistantMessage,
        ClaudeCodeOptions,
        ResultMessage,
        TextBlock,
        query,
    )

    _HAS_SDK = True
except ImportError:  # pragma: no cover
    _HAS_SDK = False


def _require_sdk() -> None:
    if not _HAS_SDK:
        raise RuntimeError(
            "claude-code-sdk is required for ClaudeCodeFixProvider. "
            "Install it with: pip install claude-code-sdk"
        )


# ------------------------------------------------------------------
# Prompt template
# ------------------------------------------------------------------

_FIX_PROMPT = (
    "You are an expert TypeScript and React engineer. Fix the error below in "
    "the given project files with the smallest change that resolves it.\n"
    "\n"
    "Return ONLY a JSON object -- no commentary -- with the keys:\n"
    '- "success": true if you produced a fix, false otherwise\n'
    '- "fixed_files": object mapping each changed file path to its COMPLETE new content\n'
    '- "strategy": short label for the approach\n'
    '- "changes": array of one-line change descriptions\n'
    '- "reason": why no fix was possible (only when success is false)\n'
    "\n"
    "## Error\n"
    "{error}\n"
    "\n"
    "## Files\n"
    "{files}\n"
    "\n"
    "## Rules\n"
    "{rules}"
)


def _extract_json(text: str) -> str:
    """Strip markdown code fences and extract the JSON object from AI output."""
    fenced = re.findall(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced[0].strip()
    start = text.find("{")
    if start == -1:
        return text
    depth = 0
    for i in range(start, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text


def _relevant_files(
    error_context: dict[str, Any], files: dict[str, str], limit: int
) -> dict[str, str]:
    """The erroring file first, then the rest, capped at *limit* files."""
    target = (error_context.get("details") or {}).get("file")
    ordered: dict[str, str] = {}
    if target and target in files:
        ordered[target] = files[target]
    for path, content in files.items():
        if len(ordered) >= limit:
            break
        ordered.setdefault(path, content)
    return ordered


class ClaudeCodeFixProvider(FixProvider):
    """Fix provider backed by Claude Code via ``claude-code-sdk``.

    Config keys:

    - ``model`` -- model name to use (default ``sonnet``).
    - ``rules`` -- list of project-level rules injected into every prompt.
    - ``max_turns`` -- maximum conversation turns (default ``4``).
    - ``max_files`` -- files included in the prompt (default ``40``).
    - ``env`` -- extra environment variables to pass to Claude Code.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        self._model: str = config.get("model", "sonnet")
        self._rules: list[str] = config.get("rules", [])
        self._max_turns: int = int(config.get("max_turns", 4))
        self._max_files: int = int(config.get("max_files", 40))
        self._env: dict[str, str] = config.get("env", {})

    def _build_env(self) -> dict[str, str]:
        """Build env dict: inherit relevant vars from os.environ, overlay config."""
        env: dict[str, str] = {}
        for key in ("ANTHROPIC_BASE_URL", "ANTHROPIC_AUTH_TOKEN", "ANTHROPIC_API_KEY"):
            val = os.environ.get(key)
            if val:
                env[key] = val
        env.update(self._env)
        return env

    def _build_options(self) -> "ClaudeCodeOptions":
        _require_sdk()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_turns": self._max_turns,
        }
        env = self._build_env()
        if env:
            kwargs["env"] = env
        return ClaudeCodeOptions(**kwargs)

    def _rules_text(self) -> str:
        if not self._rules:
            return "(no project rules configured)"
        return "\n".join(f"- {r}" for r in self._rules)

    async def _invoke(self, prompt: str) -> str:
        """Invoke Claude Code and return the full text response."""
        options = self._build_options()
        texts: list[str] = []
        async for msg in query(prompt=prompt, options=options):
            if isinstance(msg, AssistantMessage):
                for block in msg.content:
                    if isinstance(block, TextBlock):
                        texts.append(block.text)
            elif isinstance(msg, ResultMessage) and msg.result:
                texts.append(msg.result)
        return "\n".join(texts)

    async def propose_fix(
        self,
        error_context: dict[str, Any],
        current_files: dict[str, str],
        sandbox: SandboxHandle | None = None,
    ) -> FixProposal:
        files = _relevant_files(error_context, current_files, self._max_files)
        prompt = _FIX_PROMPT.format(
            error=json.dumps(error_context, indent=2, default=str),
            files="\n\n".join(f"### {path}\n```\n{content}\n```"
                              for path, content in files.items()),
            rules=self._rules_text(),
        )
        raw = await self._invoke(prompt)
        try:
            data = json.loads(_extract_json(raw))
        except json.JSONDecodeError:
            logger.warning("Failed to parse fix response as JSON: %s", raw[:200])
            return FixProposal(success=False, reason="unparseable model response")
        if not isinstance(data, dict):
            return FixProposal(success=False, reason="model response is not an object")
        return FixProposal.from_dict(data)

    async def health_check(self) -> HealthStatus:
        if not _HAS_SDK:
            return HealthStatus(healthy=False, message="claude-code-sdk not installed")
        return HealthStatus(healthy=True, message=f"model {self._model}")
