"""
workflow_services.registry -- Action type to handler map.

Responsibility:
    Holds exactly one ``ActionHandler`` per action type.  The runtime and
    the template service look handlers up here; tests substitute doubles
    with ``override``.

Architecture position:
    Services layer.  No module-level registry: the composition root
    builds one (``build_default_registry``) and injects it.

Invariants enforced:
    - ``register`` never silently replaces an existing handler.
    - A lookup for an unregistered type fails immediately.

Failure modes:
    - ActionRegistryError on duplicate registration or missing handler.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from workflow_kernel.domain.types import ActionType
from workflow_kernel.exceptions import ActionRegistryError
from workflow_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from workflow_services.handlers.base import ActionHandler

logger = get_logger("services.registry")


class ActionRegistry:
    """Pure type -> handler map."""

    def __init__(self) -> None:
        self._handlers: dict[ActionType, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        action_type = ActionType(handler.action_type)
        if action_type in self._handlers:
            raise ActionRegistryError(
                f"Action handler already registered for type: {action_type.value}",
                action_type=action_type.value,
            )
        self._handlers[action_type] = handler
        logger.debug(
            "action_handler_registered",
            extra={"action_type": action_type.value, "handler": type(handler).__name__},
        )

    def override(self, handler: ActionHandler) -> None:
        """Replace (or add) the handler for its type unconditionally."""
        action_type = ActionType(handler.action_type)
        self._handlers[action_type] = handler
        logger.info(
            "action_handler_overridden",
            extra={"action_type": action_type.value, "handler": type(handler).__name__},
        )

    def get(self, action_type: ActionType | str) -> ActionHandler:
        try:
            return self._handlers[ActionType(action_type)]
        except (KeyError, ValueError):
            raise ActionRegistryError(
                f"No action handler registered for type: {action_type}",
                action_type=str(action_type),
            ) from None

    def list(self) -> list[ActionHandler]:
        return list(self._handlers.values())

    def __contains__(self, action_type: object) -> bool:
        try:
            return ActionType(action_type) in self._handlers
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._handlers)
