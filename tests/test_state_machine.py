"""Tests for request and approval level state machines."""

import pytest

from approval_engine.services.state_machine import (
    InvalidTransitionError,
    LevelStateMachine,
    LevelStatus,
    RequestStateMachine,
    RequestStatus,
    level_name,
)


class TestRequestStateMachine:
    """Test overall request status transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # draft → submitted
        assert RequestStateMachine.can_transition("draft", "submitted") is True

        # submitted → in_progress | approved | rejected
        assert RequestStateMachine.can_transition("submitted", "in_progress") is True
        assert RequestStateMachine.can_transition("submitted", "approved") is True
        assert RequestStateMachine.can_transition("submitted", "rejected") is True

        # in_progress stays in_progress while levels are approved one by one
        assert RequestStateMachine.can_transition("in_progress", "in_progress") is True

        # approved → completed (payment) or rejected (at payroll)
        assert RequestStateMachine.can_transition("approved", "completed") is True
        assert RequestStateMachine.can_transition("approved", "rejected") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip submission
        assert RequestStateMachine.can_transition("draft", "approved") is False
        assert RequestStateMachine.can_transition("draft", "in_progress") is False

        # Completion requires approval first
        assert RequestStateMachine.can_transition("in_progress", "completed") is False

        # Rejected and completed are terminal
        for target in RequestStatus:
            assert RequestStateMachine.can_transition("rejected", target.value) is False
            assert RequestStateMachine.can_transition("completed", target.value) is False

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            RequestStateMachine.validate_transition("rejected", "approved")

        assert exc_info.value.from_status == "rejected"
        assert exc_info.value.to_status == "approved"
        assert exc_info.value.code == "invalid_transition"

    def test_terminal_and_in_flight(self):
        assert RequestStateMachine.is_terminal("rejected") is True
        assert RequestStateMachine.is_terminal("completed") is True
        assert RequestStateMachine.is_terminal("approved") is False

        assert RequestStateMachine.is_in_flight("draft") is False
        assert RequestStateMachine.is_in_flight("submitted") is True
        assert RequestStateMachine.is_in_flight("approved") is True
        assert RequestStateMachine.is_in_flight("completed") is False

    def test_line_items_mutable_only_early(self):
        assert RequestStateMachine.can_modify_line_items("draft") is True
        assert RequestStateMachine.can_modify_line_items("submitted") is True
        assert RequestStateMachine.can_modify_line_items("in_progress") is False
        assert RequestStateMachine.can_modify_line_items("rejected") is False

    def test_get_next_statuses(self):
        assert RequestStateMachine.get_next_statuses("draft") == [RequestStatus.SUBMITTED]
        assert RequestStateMachine.get_next_statuses("completed") == []


class TestLevelStateMachine:
    """Test approval level transitions."""

    def test_pending_can_be_decided(self):
        for level in (1, 2, 3, 4):
            assert LevelStateMachine.can_transition(level, "pending", "approved") is True
            assert LevelStateMachine.can_transition(level, "pending", "rejected") is True

    def test_decisions_are_final(self):
        assert LevelStateMachine.can_transition(2, "approved", "approved") is False
        assert LevelStateMachine.can_transition(2, "approved", "rejected") is False
        assert LevelStateMachine.can_transition(2, "rejected", "approved") is False

    def test_completed_only_for_payroll_level(self):
        assert LevelStateMachine.can_transition(4, "approved", "completed") is True
        assert LevelStateMachine.can_transition(3, "approved", "completed") is False
        assert LevelStateMachine.can_transition(4, "pending", "completed") is False
        assert LevelStateMachine.can_transition(4, "completed", "approved") is False

    def test_validate_transition_names_level(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            LevelStateMachine.validate_transition(4, LevelStatus.REJECTED.value, "completed")

        assert "Payroll" in str(exc_info.value)

    def test_level_names(self):
        assert level_name(1) == "L1"
        assert level_name(3) == "L3"
        assert level_name(4) == "Payroll"
