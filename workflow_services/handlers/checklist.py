"""Checklist steps: record which configured items were ticked off."""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.action_config import ChecklistConfig
from workflow_kernel.domain.types import ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)


class ChecklistHandler(ActionHandler):
    action_type = ActionType.CHECKLIST

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        config: ChecklistConfig = ctx.config
        body = require_mapping(payload, ctx.step_id, optional=True)
        items = body.get("completedItems")
        if items is None:
            items = list(config.items)
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise ActionHandlerError(
                "completedItems must be a list of item identifiers", INVALID_PAYLOAD, ctx.step_id
            )
        unknown = [i for i in items if i not in config.items]
        if unknown:
            raise ActionHandlerError(
                f"Unknown checklist items: {', '.join(unknown)}", INVALID_PAYLOAD, ctx.step_id
            )
        ctx.data["completedItems"] = items
        return ActionState.COMPLETED
