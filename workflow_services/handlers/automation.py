"""
Automation steps (email and webhook).

These steps are started by the system: ``start`` only queues a run and
records it in the step's run log.  An external executor performs the
send and reports the outcome through ``complete`` with
``{status: SUCCEEDED | FAILED | MANUAL_OVERRIDE, result?, error?,
message?}``.
"""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.types import ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)

AUTOMATION_STATUSES = ("SUCCEEDED", "FAILED", "MANUAL_OVERRIDE")
DEFAULT_LOG_LIMIT = 20


class AutomationHandler(ActionHandler):
    """Shared queue/complete bookkeeping for automation action types."""

    requires_actor = False

    def __init__(self, log_limit: int = DEFAULT_LOG_LIMIT):
        self._log_limit = log_limit

    def _log(self, ctx: RuntimeContext, level: str, message: str, **details: Any) -> None:
        entry: dict[str, Any] = {"at": ctx.timestamp, "level": level, "message": message}
        if details:
            entry["details"] = details
        logs = list(ctx.data.get("logs") or [])
        logs.append(entry)
        ctx.data["logs"] = logs[-self._log_limit:]

    def start(self, ctx: RuntimeContext) -> ActionState | None:
        ctx.data["status"] = "QUEUED"
        ctx.data["runs"] = int(ctx.data.get("runs") or 0) + 1
        ctx.data["lastQueuedAt"] = ctx.timestamp
        self._log(ctx, "info", "Automation job queued", actionType=self.action_type.value)
        return ActionState.IN_PROGRESS

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        body = require_mapping(payload, ctx.step_id, optional=True)
        status = body.get("status", "SUCCEEDED")
        if status not in AUTOMATION_STATUSES:
            raise ActionHandlerError(
                f"status must be one of {', '.join(AUTOMATION_STATUSES)}",
                INVALID_PAYLOAD,
                ctx.step_id,
            )
        error = body.get("error")
        ctx.data["status"] = status
        ctx.data["lastCompletedAt"] = ctx.timestamp
        ctx.data["lastError"] = error if status == "FAILED" else None
        ctx.data["lastResult"] = body.get("result")
        message = body.get("message") or f"Automation finished with status {status}"
        self._log(ctx, "error" if status == "FAILED" else "info", message)
        if status == "FAILED":
            return ActionState.FAILED
        return ActionState.COMPLETED

    def fail(self, ctx: RuntimeContext, reason: str) -> ActionState | None:
        ctx.data["status"] = "FAILED"
        ctx.data["lastError"] = reason
        self._log(ctx, "error", reason)
        return ActionState.FAILED


class AutomationEmailHandler(AutomationHandler):
    action_type = ActionType.AUTOMATION_EMAIL


class AutomationWebhookHandler(AutomationHandler):
    action_type = ActionType.AUTOMATION_WEBHOOK
