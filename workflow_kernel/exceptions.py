"""
Typed Exception Hierarchy for the Workflow Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (API handlers, queue workers, webhook listeners)
must map engine failures to responses without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (step_id, from_state, ...)

Example:
    try:
        runtime.complete_step(step_id, actor=actor, payload=payload)
    except WorkflowTransitionError as e:
        return {"error": e.code, "from": e.from_state, "to": e.to_state}
    except PreconditionError as e:
        return {"error": e.code, "step_id": e.step_id}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowEngineError:

    WorkflowEngineError (base)
    |
    +-- ConfigValidationError
    |   +-- ContextValidationError
    |
    +-- WorkflowPermissionError
    |
    +-- WorkflowTransitionError
    |
    +-- ActionHandlerError
    |   +-- PreconditionError
    |
    +-- WorkflowNotFoundError
    |
    +-- DependencyIntegrityError
    |
    +-- ActionRegistryError
    |
    +-- NotificationError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                     | When Raised
-------------------------|---------------------------------------------------
CONFIG_INVALID           | Action/condition configuration fails validation
CONTEXT_INVALID          | Shared context value violates the template schema
PERMISSION_DENIED        | Actor lacks capability for the step or mutation
INVALID_TRANSITION       | State machine guard rejects the proposed move
ACTION_HANDLER_ERROR     | Handler rejected a payload (code set per instance)
PRECONDITION_FAILED      | Step ineligible for the requested operation
NOT_FOUND                | Step, instance or template does not exist
DEPENDENCY_INTEGRITY     | Cycle, self-dependency or dangling reference
REGISTRY_ERROR           | Duplicate or missing action handler
NOTIFICATION_FAILED      | Delivery failure (logged, never propagated)
IMMUTABILITY_VIOLATION   | Template step modified after instantiation

===============================================================================
RECOVERY
===============================================================================

The engine never partially applies a transition.  Every error raised
from a runtime operation leaves the caller's transaction to roll back;
persisted state is unchanged.  NotificationError is the only error the
engine catches itself: delivery is best-effort.
"""

from __future__ import annotations

from typing import Any


class WorkflowEngineError(Exception):
    """
    Base exception for all workflow engine errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_ENGINE_ERROR"


class ConfigValidationError(WorkflowEngineError):
    """Action or condition configuration is malformed."""

    code: str = "CONFIG_INVALID"

    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        field_errors: list[str] | None = None,
    ):
        self.action_type = action_type
        self.field_errors = list(field_errors or [])
        super().__init__(message)


class ContextValidationError(ConfigValidationError):
    """A shared context value does not match its declared schema field."""

    code: str = "CONTEXT_INVALID"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Context field '{key}': {message}", field_errors=[message])


class WorkflowPermissionError(WorkflowEngineError):
    """Actor is not authorized for the role scope or the mutation."""

    code: str = "PERMISSION_DENIED"

    def __init__(
        self,
        message: str,
        actor_id: Any = None,
        step_id: Any = None,
    ):
        self.actor_id = actor_id
        self.step_id = step_id
        super().__init__(message)


class WorkflowTransitionError(WorkflowEngineError):
    """State machine guard rejected a transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str, reason: str | None = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f"Invalid workflow transition: {from_state} -> {to_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ActionHandlerError(WorkflowEngineError):
    """
    A handler or runtime guard refused the operation.

    Unlike other categories the code is set per instance, so callers can
    distinguish MISSING_DOCUMENT from EVIDENCE_REQUIRED without a
    dedicated class for every handler rule.
    """

    code: str = "ACTION_HANDLER_ERROR"

    def __init__(self, message: str, code: str | None = None, step_id: Any = None):
        if code is not None:
            self.code = code
        self.step_id = step_id
        super().__init__(message)


class PreconditionError(ActionHandlerError):
    """Step is in a state ineligible for the requested operation."""

    code: str = "PRECONDITION_FAILED"


class WorkflowNotFoundError(WorkflowEngineError):
    """Referenced step, instance or template does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Workflow {entity} not found: {entity_id}")


class DependencyIntegrityError(WorkflowEngineError):
    """Dependency graph is invalid; persistence must not happen."""

    code: str = "DEPENDENCY_INTEGRITY"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid workflow dependencies: {', '.join(self.errors)}")


class ActionRegistryError(WorkflowEngineError):
    """Duplicate registration or missing handler for an action type."""

    code: str = "REGISTRY_ERROR"

    def __init__(self, message: str, action_type: str | None = None):
        self.action_type = action_type
        super().__init__(message)


class NotificationError(WorkflowEngineError):
    """Notification delivery failed."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, message: str, recipient: str | None = None):
        self.recipient = recipient
        super().__init__(message)


class ImmutabilityViolationError(WorkflowEngineError):
    """Attempt to modify a record that is immutable once referenced."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id}: {reason}")
