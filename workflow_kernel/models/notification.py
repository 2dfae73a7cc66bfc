"""
Module: workflow_kernel.models.notification
Responsibility: Append-only log of notification attempts made on behalf of
    workflow steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Log rows are immutable once written.

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UTCDateTime, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError


class WorkflowNotificationLogModel(Base):
    """One delivery attempt (or deliberate deferral) for one policy."""

    __tablename__ = "workflow_notification_logs"

    __table_args__ = (
        CheckConstraint(
            "status IN ('SENT', 'FAILED', 'SKIPPED')",
            name="ck_workflow_notification_logs_valid_status",
        ),
        Index("ix_workflow_notification_logs_step", "step_id", "created_at"),
    )

    instance_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    step_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    policy_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    recipients: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowNotificationLog {self.trigger} {self.status} step={self.step_id}>"


@event.listens_for(WorkflowNotificationLogModel, "before_update")
def prevent_notification_log_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowNotificationLog",
        entity_id=str(target.id),
        reason="Notification log entries are immutable -- cannot modify",
    )


@event.listens_for(WorkflowNotificationLogModel, "before_delete")
def prevent_notification_log_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowNotificationLog",
        entity_id=str(target.id),
        reason="Notification log entries are immutable -- cannot delete",
    )
