"""
Step history and engine-initiated skips.

Every persisted step operation appends one ``{at, by, event, payload}``
entry to ``action_data["history"]``.  The list is append-only; entries
are never edited or removed.  ``apply_system_skip`` is the one path the
engine itself (branch resolution, condition gates, cancellation) uses to
retire a step, so all of them record history the same way.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from workflow_kernel.domain.state_machine import assert_transition
from workflow_kernel.domain.types import ActionState, Actor
from workflow_kernel.models import WorkflowInstanceStepModel
from workflow_services.observability import WorkflowMetrics


def history_entry(
    at: datetime,
    actor: Actor | None,
    event: str,
    payload: Any = None,
) -> dict[str, Any]:
    return {
        "at": at.isoformat(),
        "by": str(actor.id) if actor is not None else None,
        "event": event,
        "payload": copy.deepcopy(payload),
    }


def with_history(data: dict[str, Any] | None, entry: dict[str, Any]) -> dict[str, Any]:
    """A new action_data mapping with ``entry`` appended to its history."""
    result = copy.deepcopy(data or {})
    result["history"] = list(result.get("history") or []) + [entry]
    return result


def apply_system_skip(
    step: WorkflowInstanceStepModel,
    *,
    now: datetime,
    reason: str,
    metrics: WorkflowMetrics,
    actor: Actor | None = None,
    notes: str | None = None,
) -> None:
    """Move a non-terminal step to SKIPPED through the guard.

    PENDING steps pass through READY first, since PENDING has no direct
    edge to SKIPPED.
    """
    current = ActionState(step.action_state)
    if current == ActionState.PENDING:
        assert_transition(current, ActionState.READY)
        metrics.record_transition(step.action_type, current.value, ActionState.READY.value)
        current = ActionState.READY
    assert_transition(current, ActionState.SKIPPED, actor=actor, allow_admin_override=True)

    step.action_data = with_history(
        step.action_data, history_entry(now, actor, ActionState.SKIPPED.value, {"reason": reason})
    )
    step.action_state = ActionState.SKIPPED.value
    if notes is not None:
        step.notes = notes
    metrics.record_transition(step.action_type, current.value, ActionState.SKIPPED.value)
