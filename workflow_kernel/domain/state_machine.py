"""
Step state machine guard.

Responsibility:
    The authoritative transition table for instance step action states,
    the admin-only policy for SKIPPED targets, and the skip eligibility
    gate.  Every action_state mutation in the engine passes through
    ``assert_transition``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Only edges in ``STEP_TRANSITIONS`` are legal; identity is a no-op.
    - SKIPPED as a target requires an admin actor or an explicit
      ``allow_admin_override`` (system-initiated skips).
    - COMPLETED and SKIPPED have no outgoing edges.

Failure modes:
    - WorkflowTransitionError from ``assert_transition``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from workflow_kernel.domain.types import ActionState, Actor
from workflow_kernel.exceptions import WorkflowTransitionError

STEP_TRANSITIONS: dict[ActionState, frozenset[ActionState]] = {
    ActionState.PENDING: frozenset({ActionState.READY}),
    ActionState.READY: frozenset({
        ActionState.IN_PROGRESS,
        ActionState.SKIPPED,
    }),
    ActionState.IN_PROGRESS: frozenset({
        ActionState.COMPLETED,
        ActionState.FAILED,
        ActionState.BLOCKED,
        ActionState.SKIPPED,
    }),
    ActionState.BLOCKED: frozenset({
        ActionState.READY,
        ActionState.SKIPPED,
    }),
    # Retry
    ActionState.FAILED: frozenset({ActionState.READY}),
    ActionState.COMPLETED: frozenset(),
    ActionState.SKIPPED: frozenset(),
}

TERMINAL_STATES: frozenset[ActionState] = frozenset({
    ActionState.COMPLETED,
    ActionState.FAILED,
    ActionState.SKIPPED,
})

ADMIN_ONLY_TARGETS: frozenset[ActionState] = frozenset({ActionState.SKIPPED})


class SkippableStep(Protocol):
    required: bool


@dataclass(frozen=True)
class SkipCheck:
    can_skip: bool
    reason: str | None = None


def can_transition(
    from_state: ActionState | str,
    to_state: ActionState | str,
    *,
    actor: Actor | None = None,
    allow_admin_override: bool = False,
) -> bool:
    """Return True when ``from_state -> to_state`` is permitted for the actor."""
    source = ActionState(from_state)
    target = ActionState(to_state)
    if source == target:
        return True
    if target not in STEP_TRANSITIONS[source]:
        return False
    if target in ADMIN_ONLY_TARGETS:
        return allow_admin_override or (actor is not None and actor.is_admin)
    return True


def assert_transition(
    from_state: ActionState | str,
    to_state: ActionState | str,
    *,
    actor: Actor | None = None,
    allow_admin_override: bool = False,
) -> None:
    """Raise WorkflowTransitionError unless the transition is permitted."""
    if can_transition(
        from_state,
        to_state,
        actor=actor,
        allow_admin_override=allow_admin_override,
    ):
        return
    source = ActionState(from_state)
    target = ActionState(to_state)
    if target in STEP_TRANSITIONS[source] and target in ADMIN_ONLY_TARGETS:
        reason = "administrator capability required"
    else:
        reason = "not permitted"
    raise WorkflowTransitionError(source.value, target.value, reason)


def is_terminal(state: ActionState | str) -> bool:
    """COMPLETED, FAILED and SKIPPED are terminal."""
    return ActionState(state) in TERMINAL_STATES


def get_available_transitions(state: ActionState | str) -> list[ActionState]:
    """Outgoing edges from ``state`` in declaration order of ActionState."""
    allowed = STEP_TRANSITIONS[ActionState(state)]
    return [s for s in ActionState if s in allowed]


def can_skip_step(step: SkippableStep, actor: Actor | None) -> SkipCheck:
    """
    Skip gate: the actor must be an administrator and the step must not
    be required.  Steps default to required.
    """
    if actor is None or not actor.is_admin:
        return SkipCheck(False, "Only administrators can skip workflow steps")
    required = getattr(step, "required", True)
    if required is None or required:
        return SkipCheck(False, "This step is marked as required and cannot be skipped")
    return SkipCheck(True)
