"""Lifecycle of a detected error.

``detected`` errors are either fixed, failed or ignored by the auto-fix
pass. A failed error stays eligible for later passes, and a later detection
can reopen a fixed one. ``ignored`` never changes again.
"""

from __future__ import annotations

from remedy.db.models import ErrorStatus


class InvalidTransitionError(Exception):
    """An error record cannot move from its current status to the requested one."""

    def __init__(self, current: ErrorStatus, target: ErrorStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Error in status '{current.value}' cannot become '{target.value}'")


VALID_TRANSITIONS: dict[ErrorStatus, frozenset[ErrorStatus]] = {
    ErrorStatus.detected: frozenset({ErrorStatus.fixed, ErrorStatus.failed, ErrorStatus.ignored}),
    ErrorStatus.failed: frozenset({
        ErrorStatus.fixed,
        ErrorStatus.failed,         # another pass failed again
        ErrorStatus.ignored,
        ErrorStatus.detected,       # seen again by a later detection
    }),
    ErrorStatus.fixed: frozenset({ErrorStatus.detected}),  # regression
    ErrorStatus.ignored: frozenset(),
}


class StateMachine:
    """Guards every status write made by the store.

    ::

        sm = StateMachine()
        sm.transition(ErrorStatus.detected, ErrorStatus.fixed)   # ok
        sm.transition(ErrorStatus.ignored, ErrorStatus.fixed)    # raises
    """

    def can_transition(self, current: ErrorStatus, target: ErrorStatus) -> bool:
        return target in VALID_TRANSITIONS.get(current, frozenset())

    def transition(self, current: ErrorStatus, target: ErrorStatus) -> ErrorStatus:
        """Return *target*, or raise :class:`InvalidTransitionError` if it is not reachable."""
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current, target)
        return target

    def available_transitions(self, current: ErrorStatus) -> list[ErrorStatus]:
        """Statuses reachable from *current*, in declaration order of :class:`ErrorStatus`."""
        reachable = VALID_TRANSITIONS.get(current, frozenset())
        return [status for status in ErrorStatus if status in reachable]
