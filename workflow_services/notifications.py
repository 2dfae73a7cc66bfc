"""
workflow_services.notifications -- Best-effort step notifications.

Responsibility:
    Turns a step lifecycle trigger (ON_READY, ON_COMPLETED, ON_FAILED)
    into messages for the step's notification policies: selects the
    policies listening for the trigger, resolves role recipients through
    the authorization snapshot, renders subject and body with Jinja2,
    hands each message to a ``NotificationSink`` and writes one
    ``WorkflowNotificationLogModel`` row per policy.

Architecture position:
    Services layer.  Injected into WorkflowRuntime and
    WorkflowInstanceService as a ``NotificationDispatcher``.  Transport
    (SMTP, SMS gateways, push) lives behind the sink and is out of scope.

Invariants enforced:
    - Delivery is a side channel: a sink or rendering failure is logged,
      counted and recorded as a FAILED row, never raised to the caller.
    - Nothing is sent while notifications are disabled in settings.
    - Log rows are inserted under a savepoint; a database error there
      drops the rows, not the step operation sharing the session.
    - DELAYED policies are recorded as SKIPPED with their scheduled time;
      there is no scheduler in the engine.

Failure modes:
    - None propagated from ``notify``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol
from uuid import UUID

from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workflow_config import EngineSettings
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.template import NotificationPolicy
from workflow_kernel.domain.types import (
    ActorSnapshot,
    NotificationChannel,
    NotificationTrigger,
    RoleScope,
    SendStrategy,
)
from workflow_kernel.exceptions import NotificationError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models import (
    WorkflowInstanceModel,
    WorkflowInstanceStepModel,
    WorkflowNotificationLogModel,
)
from workflow_services.authority import ActorSnapshotProvider, resolve_eligible_actor_ids
from workflow_services.observability import WorkflowMetrics, log_notification

logger = get_logger("services.notifications")

ASSIGNEE = "ASSIGNEE"
STATUS_SENT = "SENT"
STATUS_FAILED = "FAILED"
STATUS_SKIPPED = "SKIPPED"

_TRIGGER_LABELS = {
    NotificationTrigger.ON_READY: "ready",
    NotificationTrigger.ON_COMPLETED: "completed",
    NotificationTrigger.ON_FAILED: "failed",
}

_SUBJECT_LIMIT = 500


@dataclass(frozen=True)
class NotificationMessage:
    instance_id: UUID
    step_id: UUID
    trigger: NotificationTrigger
    channel: NotificationChannel
    sender: str
    recipients: tuple[str, ...]
    subject: str
    body: str
    cc: tuple[str, ...] = ()


class NotificationSink(Protocol):
    """Transport boundary.  Raise to report a failed delivery."""

    def send(self, message: NotificationMessage) -> None:
        ...


class NotificationDispatcher(Protocol):
    def notify(
        self,
        trigger: NotificationTrigger,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> None:
        ...


@dataclass
class RecordingNotificationSink:
    """In-memory sink; set ``fail_with`` to simulate a transport outage."""

    messages: list[NotificationMessage] = field(default_factory=list)
    fail_with: Exception | None = None

    def send(self, message: NotificationMessage) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.messages.append(message)


class LoggingNotificationSink:
    """Writes each message to the structured log instead of delivering it."""

    def send(self, message: NotificationMessage) -> None:
        logger.info(
            "notification_message",
            extra={
                "channel": message.channel.value,
                "trigger": message.trigger.value,
                "recipients": list(message.recipients),
                "subject": message.subject,
                "step_id": str(message.step_id),
            },
        )


class NullNotificationDispatcher:
    def notify(
        self,
        trigger: NotificationTrigger,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> None:
        return None


class PolicyNotificationDispatcher:
    """Dispatches a step's notification policies through a sink."""

    def __init__(
        self,
        session: Session,
        sink: NotificationSink,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        metrics: WorkflowMetrics | None = None,
        snapshot_provider: ActorSnapshotProvider | None = None,
    ):
        self._session = session
        self._sink = sink
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._metrics = metrics or WorkflowMetrics()
        self._snapshots = snapshot_provider
        self._jinja = SandboxedEnvironment(autoescape=False)

    def notify(
        self,
        trigger: NotificationTrigger,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> list[WorkflowNotificationLogModel]:
        trigger = NotificationTrigger(trigger)
        if not self._settings.notifications_enabled:
            logger.debug(
                "notifications_disabled",
                extra={"trigger": trigger.value, "step_id": str(step.id)},
            )
            return []

        rows = [self._dispatch(policy, trigger, instance, step) for policy in self.policies_for(step, trigger)]
        if rows and not self._write_log(rows, trigger, step):
            return []
        return rows

    def _write_log(
        self,
        rows: list[WorkflowNotificationLogModel],
        trigger: NotificationTrigger,
        step: WorkflowInstanceStepModel,
    ) -> bool:
        """Insert the log rows under a savepoint; False when the insert failed.

        A failed insert rolls back only the savepoint, leaving the step
        operation's pending writes in a usable session.
        """
        savepoint = self._session.begin_nested()
        try:
            self._session.add_all(rows)
            self._session.flush()
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            logger.exception(
                "notification_log_write_failed",
                extra={"step_id": str(step.id), "trigger": trigger.value, "row_count": len(rows)},
            )
            return False
        return True

    def policies_for(
        self,
        step: WorkflowInstanceStepModel,
        trigger: NotificationTrigger,
    ) -> list[NotificationPolicy]:
        """Policies listening for ``trigger``; unconfigured steps get a default ON_READY one."""
        raw_policies = step.notification_policies or []
        if not raw_policies:
            if trigger != NotificationTrigger.ON_READY:
                return []
            return [self._default_policy(step)]
        policies = [NotificationPolicy.from_dict(raw) for raw in raw_policies]
        return [p for p in policies if trigger in p.triggers]

    def _default_policy(self, step: WorkflowInstanceStepModel) -> NotificationPolicy:
        settings = self._settings.notifications
        return NotificationPolicy(
            channel=NotificationChannel(settings.default_channel),
            recipients=(step.role_scope,),
            triggers=(NotificationTrigger.ON_READY,),
            subject_template=settings.default_subject_template,
            body_template=settings.default_body_template,
            id="default",
        )

    def resolve_recipients(
        self,
        recipients: tuple[str, ...],
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> tuple[str, ...]:
        """Role tokens become eligible actor ids; other entries pass through unchanged."""
        snapshot: ActorSnapshot | None = None
        if self._snapshots is not None:
            snapshot = self._snapshots.snapshot_for(instance)
        resolved: list[str] = []
        for token in recipients:
            if token == ASSIGNEE:
                candidates = [str(step.assigned_to_id)] if step.assigned_to_id else []
            elif token in RoleScope.__members__:
                candidates = [str(i) for i in resolve_eligible_actor_ids(token, snapshot)]
            else:
                candidates = [token]
            for candidate in candidates:
                if candidate not in resolved:
                    resolved.append(candidate)
        return tuple(resolved)

    def _render_context(
        self,
        trigger: NotificationTrigger,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> dict[str, Any]:
        return {
            "trigger": trigger.value,
            "trigger_label": _TRIGGER_LABELS[trigger],
            "step": {
                "id": str(step.id),
                "title": step.title,
                "order": step.order,
                "action_type": step.action_type,
                "role_scope": step.role_scope,
                "state": step.action_state,
                "due_date": step.due_date.isoformat() if step.due_date else None,
            },
            "instance": {
                "id": str(instance.id),
                "template_name": instance.template_name,
                "status": instance.status,
                "matter_id": str(instance.matter_id) if instance.matter_id else None,
                "contact_id": str(instance.contact_id) if instance.contact_id else None,
            },
            "context": dict(instance.context or {}),
        }

    def render(self, template: str, context: dict[str, Any]) -> str:
        return self._jinja.from_string(template).render(**context)

    def _dispatch(
        self,
        policy: NotificationPolicy,
        trigger: NotificationTrigger,
        instance: WorkflowInstanceModel,
        step: WorkflowInstanceStepModel,
    ) -> WorkflowNotificationLogModel:
        settings = self._settings.notifications
        now = self._clock.now()
        status = STATUS_SENT
        error: str | None = None
        scheduled_for = None
        subject = ""
        recipients: tuple[str, ...] = ()

        try:
            recipients = self.resolve_recipients(policy.recipients, instance, step)
            context = self._render_context(trigger, instance, step)
            subject = self.render(policy.subject_template or settings.default_subject_template, context)
            body = self.render(policy.body_template or settings.default_body_template, context)
            if not recipients:
                raise NotificationError(f"No recipients resolved for policy {policy.id or '-'}")
            if policy.send_strategy == SendStrategy.DELAYED:
                status = STATUS_SKIPPED
                scheduled_for = now + timedelta(minutes=policy.delay_minutes or 0)
            else:
                self._sink.send(NotificationMessage(
                    instance_id=instance.id,
                    step_id=step.id,
                    trigger=trigger,
                    channel=policy.channel,
                    sender=settings.mail_from,
                    recipients=recipients,
                    cc=policy.cc,
                    subject=subject,
                    body=body,
                ))
        except Exception as exc:
            # Delivery is best-effort; the step operation has already succeeded.
            status = STATUS_FAILED
            error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "notification_delivery_failed",
                extra={"step_id": str(step.id), "trigger": trigger.value, "error": error},
                exc_info=True,
            )

        if status != STATUS_SKIPPED:
            self._metrics.record_notification(step.action_type, status == STATUS_SENT)
        log_notification(
            step_id=str(step.id),
            trigger=trigger.value,
            status=status,
            recipient_count=len(recipients),
            error=error,
            channel=policy.channel.value,
        )

        row = WorkflowNotificationLogModel(
            instance_id=instance.id,
            step_id=step.id,
            trigger=trigger.value,
            channel=policy.channel.value,
            policy_id=policy.id,
            recipients=list(recipients),
            subject=subject[:_SUBJECT_LIMIT],
            status=status,
            error=error,
            scheduled_for=scheduled_for,
            created_at=now,
        )
        return row
