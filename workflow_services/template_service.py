"""
workflow_services.template_service -- Template authoring.

Responsibility:
    Persists validated ``TemplateDraft`` objects, publishes templates and
    cuts new versions.  Validation happens here, once, so instances never
    meet a template whose configs, gates, branches or dependencies are
    malformed.

Architecture position:
    Services layer.  Action configs are validated by the registered
    handlers, gates by ``workflow_engines.conditions`` and the dependency
    graph by ``workflow_engines.dependencies``.

Invariants enforced:
    - Step orders are unique; dependencies and branch targets reference
      existing orders; no step depends on or branches to itself.
    - The dependency graph is acyclic.
    - A (name, version) pair is never reused; new versions start
      inactive and copy every step.

Failure modes:
    - ConfigValidationError: invalid config, gate, branch or schema
      (all problems of one draft reported together).
    - DependencyIntegrityError: invalid dependency graph.
    - WorkflowNotFoundError: unknown template id.
"""

from __future__ import annotations

import copy
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workflow_engines.conditions import validate_condition
from workflow_engines.dependencies import DependencyNode, assert_valid_dependencies
from workflow_kernel.domain.context import ContextSchema
from workflow_kernel.domain.template import TemplateDraft
from workflow_kernel.domain.types import Actor, ConditionType
from workflow_kernel.exceptions import ConfigValidationError, WorkflowNotFoundError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models import WorkflowTemplateModel, WorkflowTemplateStepModel
from workflow_services.registry import ActionRegistry

logger = get_logger("services.templates")


class WorkflowTemplateService:
    def __init__(self, session: Session, registry: ActionRegistry):
        self._session = session
        self._registry = registry

    def validate_draft(self, draft: TemplateDraft) -> None:
        """Raise on the first category of problems found in ``draft``."""
        errors: list[str] = []
        orders = [s.order for s in draft.steps]
        duplicates = sorted({o for o in orders if orders.count(o) > 1})
        if duplicates:
            errors.append(f"Duplicate step orders: {', '.join(map(str, duplicates))}")
        known = set(orders)

        for step in draft.steps:
            prefix = f"Step {step.order} ({step.title})"
            handler = self._registry.get(step.action_type)
            try:
                handler.validate_config(step.action_config)
            except ConfigValidationError as exc:
                errors.append(f"{prefix}: {exc}")

            if step.condition_type in (ConditionType.IF_TRUE, ConditionType.IF_FALSE):
                if not step.condition_config:
                    errors.append(f"{prefix}: {step.condition_type.value} requires a condition")
                else:
                    errors.extend(f"{prefix}: {e}" for e in validate_condition(step.condition_config))

            for branch in step.branches:
                if branch.target_order == step.order:
                    errors.append(f"{prefix}: cannot branch to itself")
                elif branch.target_order not in known:
                    errors.append(f"{prefix}: branch target {branch.target_order} does not exist")

        if draft.context_schema:
            try:
                ContextSchema.from_dict(draft.context_schema)
            except ConfigValidationError as exc:
                errors.append(f"Context schema: {exc}")

        if errors:
            raise ConfigValidationError(
                f"Invalid template {draft.name!r}: {'; '.join(errors)}",
                field_errors=errors,
            )

        assert_valid_dependencies([
            DependencyNode(
                id=str(step.order),
                title=step.title,
                depends_on=[str(o) for o in step.depends_on],
                dependency_logic=step.dependency_logic,
                order=step.order,
            )
            for step in draft.steps
        ])

    def create_template(self, draft: TemplateDraft, *, actor: Actor) -> WorkflowTemplateModel:
        self.validate_draft(draft)
        template = WorkflowTemplateModel(
            name=draft.name,
            description=draft.description,
            version=self._next_version(draft.name),
            is_active=draft.is_active,
            context_schema=copy.deepcopy(draft.context_schema),
            created_by_id=actor.id,
        )
        for step in sorted(draft.steps, key=lambda s: s.order):
            template.steps.append(WorkflowTemplateStepModel(
                order=step.order,
                title=step.title,
                action_type=step.action_type.value,
                role_scope=step.role_scope.value,
                required=step.required,
                action_config=copy.deepcopy(step.action_config),
                notification_policies=[p.to_dict() for p in step.notification_policies],
                depends_on=list(step.depends_on),
                dependency_logic=step.dependency_logic.value,
                condition_type=step.condition_type.value,
                condition_config=copy.deepcopy(step.condition_config),
                branches=[
                    {"targetOrder": b.target_order, "condition": b.condition, "label": b.label}
                    for b in step.branches
                ],
                position_x=step.position_x,
                position_y=step.position_y,
            ))
        self._session.add(template)
        self._session.flush()
        logger.info(
            "workflow_template_created",
            extra={
                "template_id": str(template.id),
                "template_name": template.name,
                "version": template.version,
                "step_count": len(template.steps),
            },
        )
        return template

    def publish_template(self, template_id: UUID) -> WorkflowTemplateModel:
        template = self.get_template(template_id)
        template.is_active = True
        self._session.flush()
        logger.info(
            "workflow_template_published",
            extra={"template_id": str(template.id), "version": template.version},
        )
        return template

    def create_new_version(self, template_id: UUID, *, actor: Actor) -> WorkflowTemplateModel:
        """Copy a template (typically a locked one) into an inactive next version."""
        source = self.get_template(template_id)
        template = WorkflowTemplateModel(
            name=source.name,
            description=source.description,
            version=self._next_version(source.name),
            is_active=False,
            context_schema=copy.deepcopy(source.context_schema),
            created_by_id=actor.id,
        )
        for step in source.steps:
            template.steps.append(WorkflowTemplateStepModel(
                order=step.order,
                title=step.title,
                action_type=step.action_type,
                role_scope=step.role_scope,
                required=step.required,
                action_config=copy.deepcopy(step.action_config),
                notification_policies=copy.deepcopy(step.notification_policies),
                depends_on=list(step.depends_on or []),
                dependency_logic=step.dependency_logic,
                condition_type=step.condition_type,
                condition_config=copy.deepcopy(step.condition_config),
                branches=copy.deepcopy(step.branches),
                position_x=step.position_x,
                position_y=step.position_y,
            ))
        self._session.add(template)
        self._session.flush()
        logger.info(
            "workflow_template_versioned",
            extra={
                "template_id": str(template.id),
                "source_template_id": str(source.id),
                "version": template.version,
            },
        )
        return template

    def get_template(self, template_id: UUID) -> WorkflowTemplateModel:
        template = self._session.get(WorkflowTemplateModel, template_id)
        if template is None:
            raise WorkflowNotFoundError("template", template_id)
        return template

    def _next_version(self, name: str) -> int:
        current = self._session.scalar(
            select(func.max(WorkflowTemplateModel.version)).where(WorkflowTemplateModel.name == name)
        )
        return (current or 0) + 1
