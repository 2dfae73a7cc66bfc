"""
Tests for the step state machine guard.

Covers:
- The full transition table (every legal edge, every illegal pair)
- Admin-only SKIPPED targets and the system override
- Terminal states and available transitions
- The skip gate (can_skip_step)
"""

from dataclasses import dataclass
from uuid import uuid4

import pytest

from workflow_kernel.domain.state_machine import (
    STEP_TRANSITIONS,
    TERMINAL_STATES,
    assert_transition,
    can_skip_step,
    can_transition,
    get_available_transitions,
    is_terminal,
)
from workflow_kernel.domain.types import ActionState, Actor, RoleScope
from workflow_kernel.exceptions import WorkflowTransitionError

ADMIN = Actor(id=uuid4(), role=RoleScope.ADMIN)
LAWYER = Actor(id=uuid4(), role=RoleScope.LAWYER)

LEGAL_EDGES = {
    (ActionState.PENDING, ActionState.READY),
    (ActionState.READY, ActionState.IN_PROGRESS),
    (ActionState.READY, ActionState.SKIPPED),
    (ActionState.IN_PROGRESS, ActionState.COMPLETED),
    (ActionState.IN_PROGRESS, ActionState.FAILED),
    (ActionState.IN_PROGRESS, ActionState.BLOCKED),
    (ActionState.IN_PROGRESS, ActionState.SKIPPED),
    (ActionState.BLOCKED, ActionState.READY),
    (ActionState.BLOCKED, ActionState.SKIPPED),
    (ActionState.FAILED, ActionState.READY),
}


@dataclass
class _Step:
    required: bool | None = True


class TestTransitionTable:
    def test_table_matches_documented_edges(self):
        declared = {
            (source, target)
            for source, targets in STEP_TRANSITIONS.items()
            for target in targets
        }
        assert declared == LEGAL_EDGES

    @pytest.mark.parametrize("source,target", sorted(LEGAL_EDGES))
    def test_legal_edges_allowed_for_admin(self, source, target):
        assert can_transition(source, target, actor=ADMIN)
        assert_transition(source, target, actor=ADMIN)

    def test_every_other_pair_is_rejected(self):
        for source in ActionState:
            for target in ActionState:
                if source == target or (source, target) in LEGAL_EDGES:
                    continue
                assert not can_transition(source, target, actor=ADMIN), (source, target)
                with pytest.raises(WorkflowTransitionError):
                    assert_transition(source, target, actor=ADMIN)

    @pytest.mark.parametrize("state", list(ActionState))
    def test_identity_is_a_no_op(self, state):
        assert can_transition(state, state)
        assert_transition(state, state)

    def test_accepts_string_states(self):
        assert can_transition("READY", "IN_PROGRESS")

    def test_error_carries_states(self):
        with pytest.raises(WorkflowTransitionError) as exc_info:
            assert_transition(ActionState.PENDING, ActionState.COMPLETED)
        assert exc_info.value.from_state == "PENDING"
        assert exc_info.value.to_state == "COMPLETED"
        assert exc_info.value.code == "INVALID_TRANSITION"


class TestSkippedIsAdminOnly:
    def test_non_admin_cannot_skip(self):
        assert not can_transition(ActionState.READY, ActionState.SKIPPED, actor=LAWYER)
        with pytest.raises(WorkflowTransitionError) as exc_info:
            assert_transition(ActionState.READY, ActionState.SKIPPED, actor=LAWYER)
        assert exc_info.value.reason == "administrator capability required"

    def test_no_actor_cannot_skip(self):
        assert not can_transition(ActionState.IN_PROGRESS, ActionState.SKIPPED)

    def test_admin_can_skip(self):
        assert can_transition(ActionState.BLOCKED, ActionState.SKIPPED, actor=ADMIN)

    def test_system_override_allows_skip(self):
        assert can_transition(ActionState.READY, ActionState.SKIPPED, allow_admin_override=True)

    def test_override_does_not_open_illegal_edges(self):
        assert not can_transition(
            ActionState.PENDING, ActionState.SKIPPED, allow_admin_override=True
        )


class TestTerminalStates:
    def test_terminal_set(self):
        assert TERMINAL_STATES == {ActionState.COMPLETED, ActionState.FAILED, ActionState.SKIPPED}

    @pytest.mark.parametrize("state", [ActionState.COMPLETED, ActionState.SKIPPED])
    def test_completed_and_skipped_have_no_exits(self, state):
        assert get_available_transitions(state) == []
        assert is_terminal(state)

    def test_failed_is_terminal_but_retryable(self):
        assert is_terminal(ActionState.FAILED)
        assert get_available_transitions(ActionState.FAILED) == [ActionState.READY]

    def test_available_transitions_in_declaration_order(self):
        assert get_available_transitions(ActionState.IN_PROGRESS) == [
            ActionState.BLOCKED,
            ActionState.COMPLETED,
            ActionState.FAILED,
            ActionState.SKIPPED,
        ]

    @pytest.mark.parametrize(
        "state", [ActionState.PENDING, ActionState.READY, ActionState.IN_PROGRESS, ActionState.BLOCKED]
    )
    def test_non_terminal(self, state):
        assert not is_terminal(state)


class TestSkipGate:
    def test_admin_can_skip_optional_step(self):
        check = can_skip_step(_Step(required=False), ADMIN)
        assert check.can_skip
        assert check.reason is None

    def test_required_step_cannot_be_skipped(self):
        check = can_skip_step(_Step(required=True), ADMIN)
        assert not check.can_skip
        assert "required" in check.reason

    def test_unset_required_defaults_to_required(self):
        assert not can_skip_step(_Step(required=None), ADMIN).can_skip

    def test_non_admin_rejected(self):
        check = can_skip_step(_Step(required=False), LAWYER)
        assert not check.can_skip
        assert check.reason == "Only administrators can skip workflow steps"

    def test_missing_actor_rejected(self):
        assert not can_skip_step(_Step(required=False), None).can_skip
