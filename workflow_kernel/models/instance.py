"""
Module: workflow_kernel.models.instance
Responsibility: ORM persistence for running workflow instances and their
    materialized steps.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one of matter_id / contact_id is set (check constraint).
    - Instance and step status columns only hold known values.
    - action_state is mutated exclusively by the runtime orchestrator via
      the state machine guard; the model itself carries no transition logic.

Failure modes:
    - IntegrityError on a subject-less or doubly-bound instance.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import TimestampedBase, UTCDateTime, UUIDString


class WorkflowInstanceModel(TimestampedBase):
    """One running execution of a template against a matter or a contact."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "(matter_id IS NULL) <> (contact_id IS NULL)",
            name="ck_workflow_instances_single_subject",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'ACTIVE', 'PAUSED', 'COMPLETED', 'CANCELED')",
            name="ck_workflow_instances_valid_status",
        ),
        Index("ix_workflow_instances_matter", "matter_id"),
        Index("ix_workflow_instances_contact", "contact_id"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    template_version: Mapped[int] = mapped_column(nullable=False)
    template_name: Mapped[str] = mapped_column(String(200), nullable=False)
    matter_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    contact_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    # Shared context: facts published by handlers, merge-only.
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    context_schema: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    steps: Mapped[list["WorkflowInstanceStepModel"]] = relationship(
        "WorkflowInstanceStepModel",
        back_populates="instance",
        order_by="WorkflowInstanceStepModel.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def subject_id(self) -> UUID | None:
        return self.matter_id or self.contact_id

    def __repr__(self) -> str:
        return f"<WorkflowInstance {self.id} {self.template_name} [{self.status}]>"


class WorkflowInstanceStepModel(TimestampedBase):
    """Materialized execution unit of an instance."""

    __tablename__ = "workflow_instance_steps"

    __table_args__ = (
        CheckConstraint(
            "action_state IN ('PENDING', 'READY', 'IN_PROGRESS', 'BLOCKED', "
            "'COMPLETED', 'FAILED', 'SKIPPED')",
            name="ck_workflow_instance_steps_valid_state",
        ),
        Index("ix_workflow_instance_steps_instance_order", "instance_id", "step_order"),
        Index("ix_workflow_instance_steps_assignee_state", "assigned_to_id", "action_state"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    template_step_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("workflow_template_steps.id"), nullable=True,
    )
    order: Mapped[int] = mapped_column("step_order", nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    role_scope: Mapped[str] = mapped_column(String(20), nullable=False)
    required: Mapped[bool] = mapped_column(nullable=False, default=True)
    action_state: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    # {config, history: [{at, by, event, payload}], ...handler data}
    action_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    assigned_to_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Ids of the instance steps this one depends on.
    depends_on: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    dependency_logic: Mapped[str] = mapped_column(String(10), nullable=False, default="ALL")
    # [{targetStepId, condition, label}]
    branches: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    condition_type: Mapped[str] = mapped_column(String(20), nullable=False, default="ALWAYS")
    condition_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    notification_policies: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    instance: Mapped[WorkflowInstanceModel] = relationship(
        WorkflowInstanceModel, back_populates="steps",
    )
    template_step: Mapped["WorkflowTemplateStepModel | None"] = relationship(
        "WorkflowTemplateStepModel", lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<WorkflowInstanceStep {self.order}: {self.title} [{self.action_state}]>"
