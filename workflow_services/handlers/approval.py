"""Approval steps: a lawyer (or an administrator) approves or rejects."""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.action_config import MAX_APPROVAL_TEXT, ApprovalConfig
from workflow_kernel.domain.types import ActionState, ActionType, RoleScope
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)


class ApprovalHandler(ActionHandler):
    action_type = ActionType.APPROVAL

    def can_start(self, ctx: RuntimeContext) -> bool:
        if ctx.actor is None:
            return False
        config: ApprovalConfig = ctx.config
        if config.approver_role == RoleScope.ADMIN.value:
            return ctx.actor.is_admin
        return True

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        body = require_mapping(payload, ctx.step_id)
        approved = body.get("approved")
        if not isinstance(approved, bool):
            raise ActionHandlerError(
                "Approval payload requires a boolean 'approved'", INVALID_PAYLOAD, ctx.step_id
            )
        comment = body.get("comment")
        if comment is not None and (
            not isinstance(comment, str) or len(comment) > MAX_APPROVAL_TEXT
        ):
            raise ActionHandlerError(
                f"Approval comment must be a string of at most {MAX_APPROVAL_TEXT} characters",
                INVALID_PAYLOAD,
                ctx.step_id,
            )

        ctx.data["decision"] = {
            "approved": approved,
            "comment": comment,
            "decidedAt": ctx.timestamp,
            "decidedBy": ctx.actor_id,
        }
        ctx.update_context({
            "lastApproval": {
                "approved": approved,
                "approvedBy": ctx.actor_id,
                "approvedAt": ctx.timestamp,
                "comment": comment,
            },
            "approvalCount": (ctx.context.get_number("approvalCount") or 0) + 1,
            "clientApproved": approved,
        })
        return ActionState.COMPLETED
