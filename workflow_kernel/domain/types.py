"""
Workflow domain types.

Responsibility:
    Enumerations and immutable value objects shared by every layer: step
    action states, role scopes, instance statuses, dependency and
    condition kinds, actors, authorization snapshots, branch definitions
    and external events.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  MUST NOT import ORM models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID


class ActionState(str, Enum):
    """Position of an instance step in its lifecycle."""

    PENDING = "PENDING"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ActionType(str, Enum):
    APPROVAL = "APPROVAL"
    SIGNATURE = "SIGNATURE"
    REQUEST_DOC = "REQUEST_DOC"
    PAYMENT = "PAYMENT"
    TASK = "TASK"
    CHECKLIST = "CHECKLIST"
    WRITE_TEXT = "WRITE_TEXT"
    POPULATE_QUESTIONNAIRE = "POPULATE_QUESTIONNAIRE"
    AUTOMATION_EMAIL = "AUTOMATION_EMAIL"
    AUTOMATION_WEBHOOK = "AUTOMATION_WEBHOOK"


class RoleScope(str, Enum):
    """Capability tier authorized to act on a step (also an actor's role)."""

    ADMIN = "ADMIN"
    LAWYER = "LAWYER"
    PARALEGAL = "PARALEGAL"
    CLIENT = "CLIENT"


class InstanceStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class DependencyLogic(str, Enum):
    ALL = "ALL"
    ANY = "ANY"
    # Reserved; evaluated as ALL.
    CUSTOM = "CUSTOM"


class ConditionType(str, Enum):
    ALWAYS = "ALWAYS"
    IF_TRUE = "IF_TRUE"
    IF_FALSE = "IF_FALSE"
    # Reserved; steps with SWITCH are left PENDING by readiness advancement.
    SWITCH = "SWITCH"


class StepPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationTrigger(str, Enum):
    ON_READY = "ON_READY"
    ON_COMPLETED = "ON_COMPLETED"
    ON_FAILED = "ON_FAILED"


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


class SendStrategy(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    DELAYED = "DELAYED"


@dataclass(frozen=True)
class Actor:
    """The user (or system principal) performing an operation."""

    id: UUID
    role: RoleScope

    @property
    def is_admin(self) -> bool:
        return self.role == RoleScope.ADMIN


@dataclass(frozen=True)
class ActorSnapshot:
    """
    Actor ids eligible for each role scope on one matter or contact.

    Supplied by the authorization snapshot provider; the engine never
    queries identity storage itself.
    """

    admins: tuple[UUID, ...] = ()
    lawyers: tuple[UUID, ...] = ()
    paralegals: tuple[UUID, ...] = ()
    clients: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class BranchDefinition:
    """A conditional route from a completed step to a downstream step."""

    target_step_id: str
    condition: str
    label: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> BranchDefinition:
        return cls(
            target_step_id=str(raw["targetStepId"]),
            condition=str(raw.get("condition", "")),
            label=raw.get("label"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetStepId": self.target_step_id,
            "condition": self.condition,
            "label": self.label,
        }


@dataclass(frozen=True)
class ActionEvent:
    """An externally-triggered event delivered to a step's handler."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
