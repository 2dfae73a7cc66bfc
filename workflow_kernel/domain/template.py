"""
Template drafts and notification policies.

Responsibility:
    Immutable descriptions of a workflow template as authored out-of-band
    (template editor, YAML file): its steps, the order-based dependency
    edges between them, branch routes and per-step notification policies.
    ``WorkflowTemplateService`` persists a draft; instances are created
    from the persisted template.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - ConfigValidationError from ``from_dict`` parsers on malformed input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from workflow_kernel.domain.action_config import MAX_DELAY_MINUTES
from workflow_kernel.domain.types import (
    ActionType,
    ConditionType,
    DependencyLogic,
    NotificationChannel,
    NotificationTrigger,
    RoleScope,
    SendStrategy,
)
from workflow_kernel.exceptions import ConfigValidationError


def _enum(enum_cls, value: Any, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ConfigValidationError(f"Invalid {name}: {value!r}") from None


@dataclass(frozen=True)
class NotificationPolicy:
    """
    Who to notify, on which triggers, with which message.

    ``recipients`` holds role tokens (ADMIN, LAWYER, PARALEGAL, CLIENT,
    ASSIGNEE) resolved through the authorization snapshot, or literal
    addresses passed to the sink unchanged.
    """

    channel: NotificationChannel
    recipients: tuple[str, ...]
    triggers: tuple[NotificationTrigger, ...] = (NotificationTrigger.ON_READY,)
    cc: tuple[str, ...] = ()
    subject_template: str | None = None
    body_template: str | None = None
    template_id: str | None = None
    send_strategy: SendStrategy = SendStrategy.IMMEDIATE
    delay_minutes: int | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NotificationPolicy:
        recipients = tuple(raw.get("recipients") or ())
        if not recipients or not all(isinstance(r, str) and r for r in recipients):
            raise ConfigValidationError("Notification policy requires at least one recipient")
        triggers = tuple(
            _enum(NotificationTrigger, t, "notification trigger")
            for t in (raw.get("triggers") or [NotificationTrigger.ON_READY.value])
        )
        delay = raw.get("delayMinutes")
        if delay is not None and (
            isinstance(delay, bool) or not isinstance(delay, int) or not 0 < delay <= MAX_DELAY_MINUTES
        ):
            raise ConfigValidationError(
                f"delayMinutes must be an integer between 1 and {MAX_DELAY_MINUTES}"
            )
        return cls(
            id=raw.get("id"),
            channel=_enum(NotificationChannel, raw.get("channel", "EMAIL"), "notification channel"),
            recipients=recipients,
            triggers=triggers,
            cc=tuple(raw.get("cc") or ()),
            subject_template=raw.get("subjectTemplate"),
            body_template=raw.get("bodyTemplate"),
            template_id=raw.get("templateId"),
            send_strategy=_enum(
                SendStrategy, raw.get("sendStrategy", SendStrategy.IMMEDIATE.value), "send strategy"
            ),
            delay_minutes=delay,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel": self.channel.value,
            "recipients": list(self.recipients),
            "triggers": [t.value for t in self.triggers],
            "cc": list(self.cc),
            "subjectTemplate": self.subject_template,
            "bodyTemplate": self.body_template,
            "templateId": self.template_id,
            "sendStrategy": self.send_strategy.value,
            "delayMinutes": self.delay_minutes,
        }


@dataclass(frozen=True)
class BranchDraft:
    """A branch route between template steps, addressed by step order."""

    target_order: int
    condition: str
    label: str | None = None


@dataclass(frozen=True)
class TemplateStepDraft:
    order: int
    title: str
    action_type: ActionType
    role_scope: RoleScope
    required: bool = True
    action_config: dict[str, Any] = field(default_factory=dict)
    notification_policies: tuple[NotificationPolicy, ...] = ()
    depends_on: tuple[int, ...] = ()
    dependency_logic: DependencyLogic = DependencyLogic.ALL
    condition_type: ConditionType = ConditionType.ALWAYS
    condition_config: dict[str, Any] | None = None
    branches: tuple[BranchDraft, ...] = ()
    position_x: float | None = None
    position_y: float | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TemplateStepDraft:
        order = raw.get("order")
        if isinstance(order, bool) or not isinstance(order, int) or order < 0:
            raise ConfigValidationError(f"Step order must be a non-negative integer: {order!r}")
        title = raw.get("title")
        if not isinstance(title, str) or not title:
            raise ConfigValidationError(f"Step {order} requires a title")
        return cls(
            order=order,
            title=title,
            action_type=_enum(ActionType, raw.get("actionType"), "action type"),
            role_scope=_enum(RoleScope, raw.get("roleScope"), "role scope"),
            required=bool(raw.get("required", True)),
            action_config=dict(raw.get("actionConfig") or {}),
            notification_policies=tuple(
                NotificationPolicy.from_dict(p) for p in raw.get("notificationPolicies") or ()
            ),
            depends_on=tuple(int(o) for o in raw.get("dependsOn") or ()),
            dependency_logic=_enum(
                DependencyLogic, raw.get("dependencyLogic", "ALL"), "dependency logic"
            ),
            condition_type=_enum(
                ConditionType, raw.get("conditionType", "ALWAYS"), "condition type"
            ),
            condition_config=raw.get("conditionConfig"),
            branches=tuple(
                BranchDraft(
                    target_order=int(b["targetOrder"]),
                    condition=str(b.get("condition", "")),
                    label=b.get("label"),
                )
                for b in raw.get("branches") or ()
            ),
            position_x=raw.get("positionX"),
            position_y=raw.get("positionY"),
        )


@dataclass(frozen=True)
class TemplateDraft:
    name: str
    steps: tuple[TemplateStepDraft, ...]
    description: str | None = None
    is_active: bool = False
    context_schema: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TemplateDraft:
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigValidationError("Template requires a name")
        steps = tuple(TemplateStepDraft.from_dict(s) for s in raw.get("steps") or ())
        if not steps:
            raise ConfigValidationError(f"Template {name!r} requires at least one step")
        return cls(
            name=name,
            description=raw.get("description"),
            is_active=bool(raw.get("isActive", False)),
            steps=steps,
            context_schema=raw.get("contextSchema"),
        )
