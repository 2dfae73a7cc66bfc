"""
workflow_services.instance_service -- Instance lifecycle.

Responsibility:
    Materializes a template into a running instance bound to one matter
    or contact, cancels instances and loads instances and steps for
    callers.

Architecture position:
    Services layer.  Uses the dependency resolver to validate and order
    the template graph and delegates initial readiness (including
    condition gates and ON_READY notifications) to
    ``WorkflowRuntime.advance_ready_steps``.

Invariants enforced:
    - Exactly one of matter_id / contact_id.
    - Only active templates with at least one step are instantiated.
    - The dependency graph is validated before any row is inserted.
    - Template version and step snapshots are pinned at creation; the
      template is locked against edits from then on.
    - Shared context starts from the template schema defaults.
    - Cancellation is idempotent and retires every non-terminal step as
      SKIPPED with a uniform reason and a history entry.

Failure modes:
    - WorkflowNotFoundError: unknown template, instance or step.
    - PreconditionError: INVALID_SUBJECT, TEMPLATE_INACTIVE,
      TEMPLATE_EMPTY, INSTANCE_COMPLETED.
    - DependencyIntegrityError: cyclic or dangling template dependencies.
    - WorkflowPermissionError: cancellation by a non-admin, non-lawyer.
"""

from __future__ import annotations

import copy
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from workflow_config import EngineSettings
from workflow_engines.dependencies import DependencyNode, topological_order
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.context import ContextSchema, apply_schema_defaults
from workflow_kernel.domain.state_machine import is_terminal
from workflow_kernel.domain.types import (
    ActionState,
    Actor,
    InstanceStatus,
    RoleScope,
    StepPriority,
)
from workflow_kernel.exceptions import (
    PreconditionError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models import (
    WorkflowInstanceModel,
    WorkflowInstanceStepModel,
    WorkflowTemplateModel,
    WorkflowTemplateStepModel,
)
from workflow_services.history import apply_system_skip
from workflow_services.observability import WorkflowMetrics
from workflow_services.runtime import WorkflowRuntime

logger = get_logger("services.instances")

_CANCEL_ROLES = (RoleScope.ADMIN, RoleScope.LAWYER)


def template_dependency_nodes(steps: list[WorkflowTemplateStepModel]) -> list[DependencyNode]:
    """Template steps as resolver nodes keyed by order."""
    return [
        DependencyNode(
            id=str(step.order),
            title=step.title,
            depends_on=[str(o) for o in step.depends_on or []],
            dependency_logic=step.dependency_logic,
            order=step.order,
        )
        for step in steps
    ]


class WorkflowInstanceService:
    """Creates, cancels and loads workflow instances."""

    def __init__(
        self,
        session: Session,
        runtime: WorkflowRuntime,
        clock: Clock | None = None,
        metrics: WorkflowMetrics | None = None,
        settings: EngineSettings | None = None,
    ):
        self._session = session
        self._runtime = runtime
        self._clock = clock or SystemClock()
        self._metrics = metrics or runtime.metrics
        self._settings = settings or EngineSettings()

    def instantiate_template(
        self,
        template_id: UUID,
        *,
        actor: Actor,
        matter_id: UUID | None = None,
        contact_id: UUID | None = None,
    ) -> WorkflowInstanceModel:
        if (matter_id is None) == (contact_id is None):
            raise PreconditionError(
                "Exactly one of matter_id or contact_id must be provided", "INVALID_SUBJECT"
            )
        template = self._session.get(WorkflowTemplateModel, template_id)
        if template is None:
            raise WorkflowNotFoundError("template", template_id)
        if not template.is_active:
            raise PreconditionError(f"Template {template.name!r} is not active", "TEMPLATE_INACTIVE")
        template_steps = list(template.steps)
        if not template_steps:
            raise PreconditionError(f"Template {template.name!r} has no steps", "TEMPLATE_EMPTY")

        ordered = topological_order(template_dependency_nodes(template_steps))
        by_order = {step.order: step for step in template_steps}
        step_ids = {step.order: uuid4() for step in template_steps}

        now = self._clock.now()
        schema = ContextSchema.from_dict(template.context_schema)
        instance = WorkflowInstanceModel(
            id=uuid4(),
            template_id=template.id,
            template_version=template.version,
            template_name=template.name,
            matter_id=matter_id,
            contact_id=contact_id,
            created_by_id=actor.id,
            status=InstanceStatus.ACTIVE.value,
            context=apply_schema_defaults({}, schema),
            context_schema=copy.deepcopy(template.context_schema),
            created_at=now,
            updated_at=now,
        )
        self._session.add(instance)

        for node in ordered:
            source = by_order[int(node.id)]
            self._session.add(WorkflowInstanceStepModel(
                id=step_ids[source.order],
                instance=instance,
                template_step_id=source.id,
                order=source.order,
                title=source.title,
                action_type=source.action_type,
                role_scope=source.role_scope,
                required=source.required,
                action_state=ActionState.PENDING.value,
                action_data={"config": copy.deepcopy(source.action_config or {}), "history": []},
                priority=StepPriority.MEDIUM.value,
                depends_on=[str(step_ids[o]) for o in source.depends_on or []],
                dependency_logic=source.dependency_logic,
                branches=[
                    {
                        "targetStepId": str(step_ids[b["targetOrder"]]),
                        "condition": b.get("condition", ""),
                        "label": b.get("label"),
                    }
                    for b in source.branches or []
                ],
                condition_type=source.condition_type,
                condition_config=copy.deepcopy(source.condition_config),
                notification_policies=copy.deepcopy(source.notification_policies or []),
                created_at=now,
                updated_at=now,
            ))

        template.is_locked = True
        self._session.flush()
        self._metrics.record_instance_created(template.id)

        with LogContext.bind(instance_id=str(instance.id), actor_id=str(actor.id)):
            ready = self._runtime.advance_ready_steps(instance)
            logger.info(
                "workflow_instance_created",
                extra={
                    "template_id": str(template.id),
                    "template_version": template.version,
                    "step_count": len(template_steps),
                    "ready_count": len(ready),
                },
            )
        return instance

    def cancel_instance(
        self,
        instance_id: UUID,
        *,
        actor: Actor,
        reason: str | None = None,
    ) -> WorkflowInstanceModel:
        instance = self.get_instance(instance_id)
        if actor.role not in _CANCEL_ROLES:
            raise WorkflowPermissionError(
                "Only administrators and lawyers can cancel workflows", actor_id=actor.id
            )
        if instance.status == InstanceStatus.CANCELED.value:
            return instance
        if instance.status == InstanceStatus.COMPLETED.value:
            raise PreconditionError("Completed workflows cannot be canceled", "INSTANCE_COMPLETED")

        reason_text = reason or self._settings.runtime.default_cancellation_reason
        now = self._clock.now()
        skipped = 0
        with LogContext.bind(instance_id=str(instance.id), actor_id=str(actor.id)):
            for step in instance.steps:
                if is_terminal(step.action_state):
                    continue
                apply_system_skip(
                    step, now=now, reason=reason_text, metrics=self._metrics, actor=actor
                )
                data = dict(step.action_data)
                data["cancellationReason"] = reason_text
                step.action_data = data
                skipped += 1
            instance.status = InstanceStatus.CANCELED.value
            instance.canceled_at = now
            instance.cancellation_reason = reason_text
            self._session.flush()
            logger.info(
                "workflow_instance_canceled",
                extra={"reason": reason_text, "skipped_steps": skipped},
            )
        return instance

    def get_instance(self, instance_id: UUID) -> WorkflowInstanceModel:
        instance = self._session.get(WorkflowInstanceModel, instance_id)
        if instance is None:
            raise WorkflowNotFoundError("instance", instance_id)
        return instance

    def get_step(self, step_id: UUID) -> WorkflowInstanceStepModel:
        step = self._session.get(WorkflowInstanceStepModel, step_id)
        if step is None:
            raise WorkflowNotFoundError("step", step_id)
        return step
