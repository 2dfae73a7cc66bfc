"""
Pure domain layer.

Enumerations, value objects, typed action configurations, the shared
context schema and the step state machine guard.  No ORM, no database,
no wall-clock access (Clock is injected).
"""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.state_machine import (
    STEP_TRANSITIONS,
    TERMINAL_STATES,
    SkipCheck,
    assert_transition,
    can_skip_step,
    can_transition,
    get_available_transitions,
    is_terminal,
)
from workflow_kernel.domain.types import (
    ActionEvent,
    ActionState,
    ActionType,
    Actor,
    ActorSnapshot,
    BranchDefinition,
    ConditionType,
    DependencyLogic,
    InstanceStatus,
    NotificationChannel,
    NotificationTrigger,
    RoleScope,
    SendStrategy,
    StepPriority,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "STEP_TRANSITIONS",
    "TERMINAL_STATES",
    "SkipCheck",
    "assert_transition",
    "can_skip_step",
    "can_transition",
    "get_available_transitions",
    "is_terminal",
    "ActionEvent",
    "ActionState",
    "ActionType",
    "Actor",
    "ActorSnapshot",
    "BranchDefinition",
    "ConditionType",
    "DependencyLogic",
    "InstanceStatus",
    "NotificationChannel",
    "NotificationTrigger",
    "RoleScope",
    "SendStrategy",
    "StepPriority",
]
