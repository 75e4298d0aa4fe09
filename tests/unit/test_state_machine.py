"""Tests for the error status state machine."""

import pytest

from remedy.db.models import ErrorStatus
from remedy.engine.state_machine import VALID_TRANSITIONS, InvalidTransitionError


class TestStateMachine:
    def test_valid_transitions_completeness(self):
        for status in ErrorStatus:
            assert status in VALID_TRANSITIONS

    def test_detected_to_fixed(self, state_machine):
        assert state_machine.transition(ErrorStatus.detected, ErrorStatus.fixed) == ErrorStatus.fixed

    def test_failed_can_be_retried(self, state_machine):
        assert state_machine.can_transition(ErrorStatus.failed, ErrorStatus.fixed)
        assert state_machine.can_transition(ErrorStatus.failed, ErrorStatus.failed)

    def test_fixed_regresses_to_detected(self, state_machine):
        assert state_machine.can_transition(ErrorStatus.fixed, ErrorStatus.detected)
        assert not state_machine.can_transition(ErrorStatus.fixed, ErrorStatus.failed)

    def test_ignored_is_terminal(self, state_machine):
        assert state_machine.available_transitions(ErrorStatus.ignored) == []
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(ErrorStatus.ignored, ErrorStatus.detected)

    def test_invalid_transition_message(self, state_machine):
        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.transition(ErrorStatus.detected, ErrorStatus.detected)
        assert exc_info.value.current is ErrorStatus.detected
        assert "detected" in str(exc_info.value)

    def test_available_transitions_ordered(self, state_machine):
        assert state_machine.available_transitions(ErrorStatus.detected) == [
            ErrorStatus.fixed, ErrorStatus.failed, ErrorStatus.ignored,
        ]
