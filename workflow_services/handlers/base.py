"""
Action handler contract.

Responsibility:
    ``ActionHandler`` is the per-action-type plug-in the runtime calls
    for start / complete / fail / external events.  ``RuntimeContext`` is
    the view of one step the runtime hands to a handler: parsed config,
    a private working copy of the step data, the shared context and an
    ``update_context`` collector.

Architecture position:
    Services layer.  Handlers never touch the session, never change
    ``action_state`` and never write the instance context directly; they
    return the proposed next state and the runtime applies it through
    the state machine guard.

Invariants enforced:
    - ``ctx.data`` is a deep copy; the step row changes only if the
      runtime persists the operation.
    - Context updates are schema-checked as they are requested, so an
      invalid fact fails before anything is persisted.

Failure modes:
    - ActionHandlerError (with a per-rule ``code``) for payload rules.
    - ConfigValidationError from ``validate_config``.
    - ContextValidationError from ``update_context``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from workflow_kernel.domain.action_config import ActionConfig, parse_action_config
from workflow_kernel.domain.context import SharedContext
from workflow_kernel.domain.types import ActionEvent, ActionState, ActionType, Actor
from workflow_kernel.exceptions import ActionHandlerError
from workflow_kernel.models import WorkflowInstanceModel, WorkflowInstanceStepModel

INVALID_PAYLOAD = "INVALID_PAYLOAD"


@dataclass
class RuntimeContext:
    session: Session
    instance: WorkflowInstanceModel
    step: WorkflowInstanceStepModel
    actor: Actor | None
    raw_config: dict[str, Any]
    config: ActionConfig
    data: dict[str, Any]
    now: datetime
    context: SharedContext
    context_updates: dict[str, Any] = field(default_factory=dict)

    @property
    def step_id(self) -> str:
        return str(self.step.id)

    @property
    def actor_id(self) -> str | None:
        return str(self.actor.id) if self.actor is not None else None

    @property
    def timestamp(self) -> str:
        return self.now.isoformat()

    def update_context(self, updates: Mapping[str, Any]) -> None:
        """Request key-level updates to the instance's shared context."""
        self.context.merge(dict(updates))
        self.context_updates.update(updates)


def require_mapping(
    payload: Any,
    step_id: str,
    *,
    optional: bool = False,
) -> dict[str, Any]:
    """Payload as a dict; ``None`` is accepted (as ``{}``) only when ``optional``."""
    if payload is None and optional:
        return {}
    if not isinstance(payload, Mapping):
        raise ActionHandlerError("Payload must be an object", INVALID_PAYLOAD, step_id)
    return dict(payload)


class ActionHandler(ABC):
    """
    Base class for action handlers.

    Subclasses set ``action_type`` and implement ``complete``.  Every
    other hook has a default: ``start`` -> IN_PROGRESS, ``fail`` ->
    FAILED, events are ignored.  Returning ``None`` from a hook selects
    the default state for the operation.
    """

    action_type: ActionType
    # Automation steps are started by the system, not by a person.
    requires_actor: bool = True

    def validate_config(self, raw: Any) -> ActionConfig:
        return parse_action_config(self.action_type, raw)

    def can_start(self, ctx: RuntimeContext) -> bool:
        return ctx.actor is not None or not self.requires_actor

    def start(self, ctx: RuntimeContext) -> ActionState | None:
        return ActionState.IN_PROGRESS

    @abstractmethod
    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        ...

    def fail(self, ctx: RuntimeContext, reason: str) -> ActionState | None:
        return ActionState.FAILED

    def get_next_state_on_event(
        self,
        ctx: RuntimeContext,
        event: ActionEvent,
    ) -> ActionState | None:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.action_type.value}>"
