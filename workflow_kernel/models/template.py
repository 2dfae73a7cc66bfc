"""
Module: workflow_kernel.models.template
Responsibility: ORM persistence for workflow templates and their steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Step orders are unique within a template.
    - A template is locked the first time it is instantiated; from then on
      its steps cannot be updated or deleted (new behaviour requires a new
      template version).

Failure modes:
    - IntegrityError on duplicate (template_id, order).
    - ImmutabilityViolationError on UPDATE/DELETE of a locked template's step.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import TimestampedBase, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError


class WorkflowTemplateModel(TimestampedBase):
    """A named, versioned workflow blueprint."""

    __tablename__ = "workflow_templates"

    __table_args__ = (
        Index("ix_workflow_templates_name_version", "name", "version", unique=True),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_locked: Mapped[bool] = mapped_column(nullable=False, default=False)
    context_schema: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    steps: Mapped[list["WorkflowTemplateStepModel"]] = relationship(
        "WorkflowTemplateStepModel",
        back_populates="template",
        order_by="WorkflowTemplateStepModel.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.name} v{self.version}>"


class WorkflowTemplateStepModel(TimestampedBase):
    """Read-only input to instance creation."""

    __tablename__ = "workflow_template_steps"

    __table_args__ = (
        UniqueConstraint("template_id", "step_order", name="uq_template_step_order"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    order: Mapped[int] = mapped_column("step_order", nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    role_scope: Mapped[str] = mapped_column(String(20), nullable=False)
    required: Mapped[bool] = mapped_column(nullable=False, default=True)
    action_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    notification_policies: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    # Orders of the steps this one depends on.
    depends_on: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    dependency_logic: Mapped[str] = mapped_column(String(10), nullable=False, default="ALL")
    condition_type: Mapped[str] = mapped_column(String(20), nullable=False, default="ALWAYS")
    condition_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # [{targetOrder, condition, label}]
    branches: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    position_x: Mapped[float | None] = mapped_column(nullable=True)
    position_y: Mapped[float | None] = mapped_column(nullable=True)

    template: Mapped[WorkflowTemplateModel] = relationship(
        WorkflowTemplateModel, back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplateStep {self.order}: {self.title} ({self.action_type})>"


@event.listens_for(WorkflowTemplateStepModel, "before_update")
def prevent_locked_step_update(mapper, connection, target):
    """Steps of an instantiated template are immutable."""
    if target.template is not None and target.template.is_locked:
        raise ImmutabilityViolationError(
            entity_type="WorkflowTemplateStep",
            entity_id=str(target.id),
            reason="Template has been instantiated -- create a new version instead",
        )


@event.listens_for(WorkflowTemplateStepModel, "before_delete")
def prevent_locked_step_delete(mapper, connection, target):
    """Steps of an instantiated template cannot be deleted."""
    if target.template is not None and target.template.is_locked:
        raise ImmutabilityViolationError(
            entity_type="WorkflowTemplateStep",
            entity_id=str(target.id),
            reason="Template has been instantiated -- cannot delete steps",
        )
