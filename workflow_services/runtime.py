"""
workflow_services.runtime -- Step runtime orchestrator.

Responsibility:
    The only component that changes a step's ``action_state``.  Every
    operation (start, complete, fail, skip, claim, external event) runs
    the same pipeline: load the step, look up its handler, build a
    ``RuntimeContext``, check preconditions and capability, invoke the
    handler, assert the proposed transition against the state machine
    guard, append a history entry and persist step data and shared
    context updates together.  Completions then resolve branches,
    advance readiness, fire notifications and refresh the instance
    status.

Architecture position:
    Services layer.  Thin coordinator: transition legality comes from
    ``workflow_kernel.domain.state_machine``, readiness from
    ``workflow_engines.dependencies``, gates from
    ``workflow_engines.conditions``, routing from
    ``workflow_engines.branching``, capability from
    ``workflow_services.authority``.  Handlers supply per-action rules.

Invariants enforced:
    - Every action_state write is preceded by ``assert_transition``.
    - A terminal step is never mutated (STEP_LOCKED); a PENDING step is
      never started, completed or failed (STEP_NOT_READY).
    - History is append-only: one ``{at, by, event, payload}`` entry per
      persisted operation.
    - Step data and shared context are flushed in the caller's
      transaction; an error anywhere leaves both for the caller to roll
      back.
    - Branch targets are activated only by branch resolution, never by
      readiness advancement, so an unresolved branching step does not
      release every route at once.
    - The instance becomes COMPLETED exactly when all its steps are
      terminal.
    - Starting or completing a step assigns it to the acting actor, so
      a step someone is working on is off limits to other non-admins.

Failure modes:
    - WorkflowNotFoundError: unknown step id.
    - PreconditionError (STEP_LOCKED, STEP_NOT_READY, INVALID_STATE,
      PRECONDITION_FAILED, SKIP_NOT_ALLOWED).
    - WorkflowPermissionError: capability denied, claim conflict,
      non-admin skip.
    - WorkflowTransitionError: guard rejected the handler's proposal.
    - ActionHandlerError / ConfigValidationError / ContextValidationError
      from handlers.
    Notification failures are never raised.

Audit relevance:
    Each operation emits a ``workflow_transition`` trace record (success
    or failure).  LogContext binds the instance, step, actor and action
    type for the operation, plus a correlation id shared by every record
    it writes.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from workflow_config import EngineSettings
from workflow_engines.branching import infer_branch_decision, select_branches
from workflow_engines.conditions import build_evaluation_context, evaluate_condition
from workflow_engines.dependencies import get_ready_steps
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.context import ContextSchema, SharedContext
from workflow_kernel.domain.state_machine import assert_transition, can_skip_step, is_terminal
from workflow_kernel.domain.types import (
    ActionEvent,
    ActionState,
    Actor,
    ActorSnapshot,
    BranchDefinition,
    ConditionType,
    InstanceStatus,
    NotificationTrigger,
)
from workflow_kernel.exceptions import (
    ActionHandlerError,
    PreconditionError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models import WorkflowInstanceModel, WorkflowInstanceStepModel
from workflow_services.authority import (
    ActorSnapshotProvider,
    check_capability,
    resolve_capability,
)
from workflow_services.handlers.base import ActionHandler, RuntimeContext
from workflow_services.history import apply_system_skip, history_entry, with_history
from workflow_services.notifications import NotificationDispatcher, NullNotificationDispatcher
from workflow_services.observability import (
    WorkflowMetrics,
    WorkflowSpan,
    log_branch_resolved,
    log_condition_failure,
    log_instance_completed,
    log_step_advanced,
)
from workflow_services.registry import ActionRegistry

logger = get_logger("services.runtime")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_NO_CHANGE = "no_change"

# Expected result state and history event name per operation.
_DEFAULT_RESULT: dict[str, tuple[ActionState, str]] = {
    "start": (ActionState.IN_PROGRESS, "STARTED"),
    "complete": (ActionState.COMPLETED, "COMPLETED"),
    "fail": (ActionState.FAILED, "FAILED"),
}


def _emit_workflow_trace(
    action: str,
    step: WorkflowInstanceStepModel,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
) -> None:
    """Emit a structured step transition record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "action": action,
        "entity_type": "workflow_instance_step",
        "entity_id": str(step.id),
        "action_type": step.action_type,
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    record.update(LogContext.get_all())
    logger.info("workflow_transition", extra=record)


def _event_name(operation: str, result: ActionState) -> str:
    expected, event = _DEFAULT_RESULT[operation]
    return event if result == expected else f"STATE_{result.value}"


def _branch_target_ids(steps: list[WorkflowInstanceStepModel]) -> set[str]:
    targets: set[str] = set()
    for step in steps:
        for raw in step.branches or []:
            targets.add(str(raw.get("targetStepId")))
    return targets


class WorkflowRuntime:
    """
    Runtime orchestrator for instance steps.

    One runtime per session; all writes are flushed, never committed.
    Use ``workflow_services.bootstrap.build_workflow_runtime`` to wire it.
    """

    def __init__(
        self,
        session: Session,
        registry: ActionRegistry,
        clock: Clock | None = None,
        metrics: WorkflowMetrics | None = None,
        notifier: NotificationDispatcher | None = None,
        settings: EngineSettings | None = None,
        snapshot_provider: ActorSnapshotProvider | None = None,
    ):
        self._session = session
        self._registry = registry
        self._clock = clock or SystemClock()
        self._metrics = metrics or WorkflowMetrics()
        self._notifier = notifier or NullNotificationDispatcher()
        self._settings = settings or EngineSettings()
        self._snapshots = snapshot_provider

    @property
    def metrics(self) -> WorkflowMetrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_step(self, step_id: UUID, *, actor: Actor | None = None) -> ActionState:
        step = self._load_step(step_id)
        instance = step.instance
        with self._operation("start", step, actor) as span:
            self._guard_mutable(step)
            if ActionState(step.action_state) != ActionState.READY:
                raise PreconditionError(
                    f"Step must be READY to start (current: {step.action_state})",
                    "INVALID_STATE",
                    step.id,
                )
            handler = self._registry.get(step.action_type)
            ctx = self._build_context(handler, step, instance, actor)
            if actor is not None:
                allowed, reason = check_capability(actor, step, self._snapshot(instance))
                if not allowed:
                    raise PreconditionError(f"Cannot start step: {reason}", "PRECONDITION_FAILED", step.id)
            if not handler.can_start(ctx):
                raise PreconditionError(
                    "Step start preconditions are not met", "PRECONDITION_FAILED", step.id
                )

            result = self._invoke(step, "start", lambda: handler.start(ctx))
            from_state = self._apply(step, instance, ctx, "start", result, actor, None)
            self._bind_actor(step, actor)
            self._metrics.record_step_start(step.action_type)
            _emit_workflow_trace(
                "start", step, from_state, OUTCOME_SUCCESS, "", span.duration_ms, result.value
            )
            self._session.flush()
            return result

    def complete_step(
        self,
        step_id: UUID,
        *,
        actor: Actor | None = None,
        payload: Any = None,
    ) -> ActionState:
        step = self._load_step(step_id)
        instance = step.instance
        with self._operation("complete", step, actor) as span:
            self._guard_mutable(step)
            handler = self._registry.get(step.action_type)
            ctx = self._build_context(handler, step, instance, actor)
            self._authorize(actor, step, instance)

            result = self._invoke(step, "complete", lambda: handler.complete(ctx, payload))
            if result == ActionState.COMPLETED:
                self._require_branch_decision(step, payload, ctx.data)
            from_state = self._apply(step, instance, ctx, "complete", result, actor, payload)
            self._bind_actor(step, actor)
            if result == ActionState.COMPLETED and step.started_at is not None:
                cycle_ms = (ctx.now - step.started_at).total_seconds() * 1000
                self._metrics.record_cycle_time(step.action_type, cycle_ms)
            _emit_workflow_trace(
                "complete", step, from_state, OUTCOME_SUCCESS, "", span.duration_ms, result.value
            )
            self._after_transition(instance, step, result, payload, ctx.data)
            return result

    def fail_step(
        self,
        step_id: UUID,
        *,
        reason: str,
        actor: Actor | None = None,
    ) -> ActionState:
        step = self._load_step(step_id)
        instance = step.instance
        with self._operation("fail", step, actor) as span:
            self._guard_mutable(step)
            handler = self._registry.get(step.action_type)
            ctx = self._build_context(handler, step, instance, actor)
            self._authorize(actor, step, instance)

            result = self._invoke(step, "fail", lambda: handler.fail(ctx, reason))
            from_state = self._apply(step, instance, ctx, "fail", result, actor, {"reason": reason})
            _emit_workflow_trace(
                "fail", step, from_state, OUTCOME_SUCCESS, reason, span.duration_ms, result.value
            )
            self._after_transition(instance, step, result, None, ctx.data)
            return result

    def skip_step(
        self,
        step_id: UUID,
        *,
        actor: Actor,
        reason: str | None = None,
    ) -> ActionState:
        """Administrative skip of a non-required step."""
        step = self._load_step(step_id)
        instance = step.instance
        with self._operation("skip", step, actor) as span:
            if is_terminal(step.action_state):
                raise PreconditionError(
                    f"Step is already {step.action_state}", "STEP_LOCKED", step.id
                )
            check = can_skip_step(step, actor)
            if not check.can_skip:
                if actor is None or not actor.is_admin:
                    raise WorkflowPermissionError(
                        check.reason, actor_id=getattr(actor, "id", None), step_id=step.id
                    )
                raise PreconditionError(check.reason, "SKIP_NOT_ALLOWED", step.id)

            from_state = step.action_state
            skip_reason = reason or self._settings.runtime.default_skip_reason
            apply_system_skip(
                step,
                now=self._clock.now(),
                reason=skip_reason,
                metrics=self._metrics,
                actor=actor,
            )
            _emit_workflow_trace(
                "skip", step, from_state, OUTCOME_SUCCESS, skip_reason,
                span.duration_ms, ActionState.SKIPPED.value,
            )
            self.advance_ready_steps(instance)
            self.refresh_instance_status(instance)
            self._session.flush()
            return ActionState.SKIPPED

    def claim_step(self, step_id: UUID, *, actor: Actor) -> WorkflowInstanceStepModel:
        """Assign the step to ``actor``.

        Re-claiming by the same actor is a no-op.  A step held by someone
        else cannot be claimed, by administrators either.
        """
        step = self._load_step(step_id)
        instance = step.instance
        with self._operation("claim", step, actor) as span:
            if step.assigned_to_id == actor.id:
                return step
            if step.assigned_to_id is not None:
                raise WorkflowPermissionError(
                    "Step is claimed by another user", actor_id=actor.id, step_id=step.id
                )
            resolve_capability(actor, step, self._snapshot(instance))
            step.assigned_to_id = actor.id
            self._metrics.record_step_claim(step.action_type)
            _emit_workflow_trace(
                "claim", step, step.action_state, OUTCOME_SUCCESS, "", span.duration_ms
            )
            self._session.flush()
            return step

    def apply_event(
        self,
        step_id: UUID,
        event: ActionEvent | str,
        payload: dict[str, Any] | None = None,
        *,
        actor: Actor | None = None,
    ) -> ActionState | None:
        """Deliver an external event to the step's handler.

        Returns the new state, or None when the event did not move the
        step.  Data the handler recorded (e.g. one upload of several) is
        persisted with an ``EVENT_<type>`` history entry either way.
        Events for terminal steps are ignored.
        """
        if not isinstance(event, ActionEvent):
            event = ActionEvent(type=str(event), payload=dict(payload or {}))
        step = self._load_step(step_id)
        instance = step.instance
        with self._operation("event", step, actor) as span:
            if is_terminal(step.action_state):
                logger.info(
                    "event_ignored_terminal_step",
                    extra={"event_type": event.type, "action_state": step.action_state},
                )
                return None
            handler = self._registry.get(step.action_type)
            ctx = self._build_context(handler, step, instance, actor)
            before = copy.deepcopy(ctx.data)

            proposed = handler.get_next_state_on_event(ctx, event)
            current = ActionState(step.action_state)
            moved = proposed is not None and ActionState(proposed) != current
            if not moved and ctx.data == before and not ctx.context_updates:
                _emit_workflow_trace(
                    "event", step, current.value, OUTCOME_NO_CHANGE, event.type, span.duration_ms
                )
                return None

            target = ActionState(proposed) if moved else current
            assert_transition(current, target, actor=actor)
            self._persist(step, instance, ctx, target, actor, f"EVENT_{event.type}", event.payload)
            if target == ActionState.COMPLETED and step.started_at is not None:
                cycle_ms = (ctx.now - step.started_at).total_seconds() * 1000
                self._metrics.record_cycle_time(step.action_type, cycle_ms)
            _emit_workflow_trace(
                "event", step, current.value, OUTCOME_SUCCESS, event.type,
                span.duration_ms, target.value,
            )
            if not moved:
                self._session.flush()
                return None
            self._after_transition(instance, step, target, event.payload, ctx.data)
            return target

    # ------------------------------------------------------------------
    # Readiness and instance status
    # ------------------------------------------------------------------

    def advance_ready_steps(self, instance: WorkflowInstanceModel) -> list[WorkflowInstanceStepModel]:
        """Move PENDING steps whose dependencies are met to READY (or SKIPPED).

        IF_TRUE / IF_FALSE steps are gated by the condition evaluator: a
        matching verdict activates the step, a non-matching one skips it
        with a note, and an evaluation error leaves it PENDING.  SWITCH
        steps are left PENDING.

        Returns:
            The steps that became READY.
        """
        steps = list(instance.steps)
        gated = _branch_target_ids(steps)
        activated: list[WorkflowInstanceStepModel] = []
        for step in get_ready_steps(steps):
            if ActionState(step.action_state) != ActionState.PENDING or str(step.id) in gated:
                continue
            condition_type = ConditionType(step.condition_type or ConditionType.ALWAYS.value)
            if condition_type == ConditionType.ALWAYS:
                self._activate(instance, step, "Dependencies satisfied")
                activated.append(step)
            elif condition_type in (ConditionType.IF_TRUE, ConditionType.IF_FALSE):
                if self._apply_condition_gate(instance, step, condition_type):
                    activated.append(step)
            else:
                logger.debug(
                    "switch_condition_not_evaluated",
                    extra={"step_id": str(step.id), "condition_type": condition_type.value},
                )
        self._session.flush()
        return activated

    def refresh_instance_status(self, instance: WorkflowInstanceModel) -> bool:
        """Mark the instance COMPLETED once every step is terminal.

        Returns:
            True when this call completed the instance.
        """
        if instance.status in (InstanceStatus.COMPLETED.value, InstanceStatus.CANCELED.value):
            return False
        steps = list(instance.steps)
        if not steps or not all(is_terminal(s.action_state) for s in steps):
            return False

        now = self._clock.now()
        instance.status = InstanceStatus.COMPLETED.value
        instance.completed_at = now
        duration_ms = None
        if instance.created_at is not None:
            duration_ms = (now - instance.created_at).total_seconds() * 1000
            self._metrics.record_instance_completed(instance.template_id, duration_ms)
        log_instance_completed(
            instance_id=str(instance.id),
            template_id=str(instance.template_id),
            duration_ms=duration_ms,
        )
        return True

    # ------------------------------------------------------------------
    # Pipeline helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(
        self,
        operation: str,
        step: WorkflowInstanceStepModel,
        actor: Actor | None,
    ) -> Iterator[WorkflowSpan]:
        span = WorkflowSpan(
            f"workflow.step.{operation}",
            step_id=str(step.id),
            instance_id=str(step.instance_id),
            action_type=step.action_type,
        )
        with LogContext.bind(
            correlation_id=LogContext.get_all().get("correlation_id") or uuid4().hex,
            instance_id=str(step.instance_id),
            step_id=str(step.id),
            actor_id=str(actor.id) if actor is not None else None,
            action_type=step.action_type,
        ):
            from_state = step.action_state
            try:
                yield span
            except Exception as exc:
                code = getattr(exc, "code", type(exc).__name__)
                self._metrics.record_handler_error(step.action_type, operation, code)
                span.end_with_error(exc)
                _emit_workflow_trace(operation, step, from_state, code, str(exc), span.duration_ms)
                raise
            span.end()

    def _load_step(self, step_id: UUID) -> WorkflowInstanceStepModel:
        step = self._session.get(WorkflowInstanceStepModel, step_id)
        if step is None:
            raise WorkflowNotFoundError("step", step_id)
        return step

    def _snapshot(self, instance: WorkflowInstanceModel) -> ActorSnapshot | None:
        if self._snapshots is None:
            return None
        return self._snapshots.snapshot_for(instance)

    def _guard_mutable(self, step: WorkflowInstanceStepModel) -> None:
        state = ActionState(step.action_state)
        if is_terminal(state):
            raise PreconditionError(
                f"Step is {state.value} and can no longer be changed", "STEP_LOCKED", step.id
            )
        if state == ActionState.PENDING:
            raise PreconditionError(
                "Step is waiting on its dependencies", "STEP_NOT_READY", step.id
            )

    def _authorize(
        self,
        actor: Actor | None,
        step: WorkflowInstanceStepModel,
        instance: WorkflowInstanceModel,
    ) -> None:
        # System callers (executors, webhooks) act without an actor.
        if actor is not None:
            resolve_capability(actor, step, self._snapshot(instance))

    def _bind_actor(self, step: WorkflowInstanceStepModel, actor: Actor | None) -> None:
        """Assign the step to the actor working on it.

        Runs after the capability check, so a step held by someone else
        only reaches here for an administrator, who takes it over.
        """
        if actor is None or step.assigned_to_id == actor.id:
            return
        if step.assigned_to_id is not None:
            logger.info(
                "step_assignment_overridden",
                extra={"previous_assignee": str(step.assigned_to_id), "actor_id": str(actor.id)},
            )
        step.assigned_to_id = actor.id
        self._metrics.record_step_claim(step.action_type)

    def _raw_config(self, step: WorkflowInstanceStepModel) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if step.template_step is not None:
            config.update(step.template_step.action_config or {})
        stored = (step.action_data or {}).get("config")
        if isinstance(stored, dict):
            config.update(stored)
        return config

    def _build_context(
        self,
        handler: ActionHandler,
        step: WorkflowInstanceStepModel,
        instance: WorkflowInstanceModel,
        actor: Actor | None,
    ) -> RuntimeContext:
        raw = self._raw_config(step)
        config = handler.validate_config(raw)
        data = copy.deepcopy(step.action_data or {})
        data.setdefault("history", [])
        data.setdefault("config", dict(raw))
        return RuntimeContext(
            session=self._session,
            instance=instance,
            step=step,
            actor=actor,
            raw_config=raw,
            config=config,
            data=data,
            now=self._clock.now(),
            context=SharedContext(
                instance.context, ContextSchema.from_dict(instance.context_schema)
            ),
        )

    def _invoke(
        self,
        step: WorkflowInstanceStepModel,
        operation: str,
        call: Callable[[], ActionState | None],
    ) -> ActionState:
        t0 = time.monotonic()
        try:
            result = call()
        finally:
            self._metrics.record_handler_duration(
                step.action_type, operation, (time.monotonic() - t0) * 1000
            )
        if result is None:
            return _DEFAULT_RESULT[operation][0]
        return ActionState(result)

    def _apply(
        self,
        step: WorkflowInstanceStepModel,
        instance: WorkflowInstanceModel,
        ctx: RuntimeContext,
        operation: str,
        result: ActionState,
        actor: Actor | None,
        payload: Any,
    ) -> str:
        from_state = step.action_state
        assert_transition(from_state, result, actor=actor)
        self._persist(step, instance, ctx, result, actor, _event_name(operation, result), payload)
        return from_state

    def _persist(
        self,
        step: WorkflowInstanceStepModel,
        instance: WorkflowInstanceModel,
        ctx: RuntimeContext,
        target: ActionState,
        actor: Actor | None,
        event: str,
        payload: Any,
    ) -> None:
        from_state = ActionState(step.action_state)
        step.action_data = with_history(ctx.data, history_entry(ctx.now, actor, event, payload))
        step.action_state = target.value
        if step.started_at is None and target in (
            ActionState.IN_PROGRESS,
            ActionState.COMPLETED,
            ActionState.FAILED,
        ):
            step.started_at = ctx.now
        if target == ActionState.COMPLETED:
            step.completed_at = ctx.now

        if ctx.context_updates:
            shared = SharedContext(instance.context, ContextSchema.from_dict(instance.context_schema))
            shared.merge(ctx.context_updates)
            instance.context = shared.to_dict()

        if from_state != target:
            self._metrics.record_transition(step.action_type, from_state.value, target.value)
        self._session.flush()

    def _after_transition(
        self,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
        result: ActionState,
        payload: Any,
        data: dict[str, Any],
    ) -> None:
        if result == ActionState.COMPLETED:
            self._resolve_branches(instance, step, payload, data)
            self.advance_ready_steps(instance)
            self._notify(NotificationTrigger.ON_COMPLETED, instance, step)
        elif result == ActionState.FAILED:
            self._notify(NotificationTrigger.ON_FAILED, instance, step)
        self.refresh_instance_status(instance)
        self._session.flush()

    # ------------------------------------------------------------------
    # Branches and gates
    # ------------------------------------------------------------------

    def _require_branch_decision(
        self,
        step: WorkflowInstanceStepModel,
        payload: Any,
        data: dict[str, Any],
    ) -> None:
        if not self._settings.runtime.branch_decision_required:
            return
        if len(step.branches or []) > 1 and infer_branch_decision(payload, data) is None:
            raise ActionHandlerError(
                "Completing a branching step requires an explicit decision",
                "BRANCH_DECISION_REQUIRED",
                step.id,
            )

    def _resolve_branches(
        self,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
        payload: Any,
        data: dict[str, Any],
    ) -> None:
        branches = [BranchDefinition.from_dict(raw) for raw in step.branches or []]
        if not branches:
            return
        selection = select_branches(branches, infer_branch_decision(payload, data))
        siblings = {str(s.id): s for s in instance.steps}
        activated: list[str] = []
        skipped: list[str] = []

        chosen_ids = {b.target_step_id for b in selection.activate}
        for branch in selection.activate:
            target = siblings.get(branch.target_step_id)
            if target is None:
                logger.warning("branch_target_missing", extra={"target_step_id": branch.target_step_id})
                continue
            state = ActionState(target.action_state)
            condition_type = ConditionType(target.condition_type or ConditionType.ALWAYS.value)
            if state in (ActionState.PENDING, ActionState.BLOCKED) and condition_type in (
                ConditionType.IF_TRUE,
                ConditionType.IF_FALSE,
            ):
                # A taken branch still has to pass the target's own gate.
                if self._apply_condition_gate(instance, target, condition_type):
                    activated.append(str(target.id))
                elif target.action_state == ActionState.SKIPPED.value:
                    skipped.append(str(target.id))
            elif state in (ActionState.PENDING, ActionState.BLOCKED):
                self._activate(instance, target, f"Branch taken: {branch.label or branch.condition}")
                activated.append(str(target.id))
            elif state == ActionState.SKIPPED:
                logger.info(
                    "branch_target_already_skipped",
                    extra={"target_step_id": str(target.id)},
                )

        now = self._clock.now()
        for branch in selection.skip:
            target = siblings.get(branch.target_step_id)
            if target is None or branch.target_step_id in chosen_ids or is_terminal(target.action_state):
                continue
            reason = f"Branch not taken: {branch.label or branch.condition}"
            apply_system_skip(target, now=now, reason=reason, metrics=self._metrics, notes=reason)
            skipped.append(str(target.id))

        if not selection.is_resolved and len(branches) > 1:
            logger.info(
                "branch_decision_missing",
                extra={"branch_count": len(branches)},
            )
        log_branch_resolved(
            step_id=str(step.id),
            decision=selection.decision,
            activated=activated,
            skipped=skipped,
        )

    def _apply_condition_gate(
        self,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
        condition_type: ConditionType,
    ) -> bool:
        """Evaluate the step's gate; returns True when the step was activated."""
        if not step.condition_config:
            log_condition_failure(
                step_id=str(step.id),
                condition_type=condition_type.value,
                error="Conditional step has no condition configured",
            )
            return False
        context = build_evaluation_context(
            workflow_context=instance.context,
            instance_id=instance.id,
            instance_status=instance.status,
            instance_created_at=instance.created_at,
            step_data=step.action_data,
            step_order=step.order,
            step_action_type=step.action_type,
            matter_id=instance.matter_id,
            contact_id=instance.contact_id,
        )
        result = evaluate_condition(step.condition_config, context)
        if not result.success:
            log_condition_failure(
                step_id=str(step.id),
                condition_type=condition_type.value,
                error=result.error or "unknown error",
            )
            return False

        should_run = result.value if condition_type == ConditionType.IF_TRUE else not result.value
        if should_run:
            self._activate(instance, step, f"Condition met ({condition_type.value})")
            return True
        note = (
            f"Skipped: Condition not met ({condition_type.value}, "
            f"evaluated to {str(bool(result.value)).lower()})"
        )
        apply_system_skip(step, now=self._clock.now(), reason=note, metrics=self._metrics, notes=note)
        log_step_advanced(
            step_id=str(step.id),
            action_type=step.action_type,
            to_state=ActionState.SKIPPED.value,
            reason=note,
        )
        return False

    def _activate(
        self,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
        reason: str,
    ) -> None:
        current = ActionState(step.action_state)
        assert_transition(current, ActionState.READY)
        step.action_state = ActionState.READY.value
        self._metrics.record_transition(step.action_type, current.value, ActionState.READY.value)
        self._metrics.record_step_advanced(step.action_type)
        log_step_advanced(
            step_id=str(step.id),
            action_type=step.action_type,
            to_state=ActionState.READY.value,
            reason=reason,
        )
        self._notify(NotificationTrigger.ON_READY, instance, step)

    def _notify(
        self,
        trigger: NotificationTrigger,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> None:
        try:
            self._notifier.notify(trigger, instance, step)
        except Exception:
            # Notifications never fail a step operation.
            self._metrics.record_notification(step.action_type, False)
            logger.exception(
                "notification_dispatch_failed",
                extra={"trigger": trigger.value, "step_id": str(step.id)},
            )
