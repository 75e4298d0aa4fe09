"""Abstract base class for AI fix providers."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any

from remedy.providers.base import Provider
from remedy.providers.sandbox.base import SandboxHandle


@dataclass
class FixProposal:
    """What a fix provider returns for one error.

    ``fixed_files`` maps paths to their complete new contents and only
    contains the files the fix touches.
    """

    success: bool
    fixed_files: dict[str, str] = field(default_factory=dict)
    strategy: str | None = None
    changes: list[str] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FixProposal:
        fixed = data.get("fixed_files") or data.get("fixedFiles") or {}
        return cls(
            success=bool(data.get("success")),
            fixed_files={str(k): str(v) for k, v in dict(fixed).items()},
            strategy=data.get("strategy"),
            changes=[str(c) for c in data.get("changes") or []],
            reason=data.get("reason"),
        )


class FixProvider(Provider):
    """Interface for anything that can propose a fix for a detected error.

    Implementations may call a model once, run a multi-step agent or apply
    rules; callers only rely on the :class:`FixProposal` shape and expect
    that the call may raise.
    """

    @abstractmethod
    async def propose_fix(
        self,
        error_context: dict[str, Any],
        current_files: dict[str, str],
        sandbox: SandboxHandle | None = None,
    ) -> FixProposal:
        """Propose a fix for the error described by *error_context*.

        *error_context* carries ``error_id``, ``type``, ``details``,
        ``severity`` and ``auto_fixable``.  *current_files* is a private
        copy of the fragment's file map.
        """
