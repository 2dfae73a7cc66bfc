"""Generic manual tasks, optionally requiring evidence documents."""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.action_config import TaskConfig
from workflow_kernel.domain.types import ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)


class TaskHandler(ActionHandler):
    action_type = ActionType.TASK

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        config: TaskConfig = ctx.config
        body = require_mapping(payload, ctx.step_id, optional=True)
        notes = body.get("notes")
        evidence = body.get("evidence") or []
        if notes is not None and not isinstance(notes, str):
            raise ActionHandlerError("notes must be a string", INVALID_PAYLOAD, ctx.step_id)
        if not isinstance(evidence, list) or not all(isinstance(e, str) for e in evidence):
            raise ActionHandlerError(
                "evidence must be a list of document ids", INVALID_PAYLOAD, ctx.step_id
            )
        if config.requires_evidence and not evidence:
            raise ActionHandlerError(
                "This task requires evidence documents", "EVIDENCE_REQUIRED", ctx.step_id
            )

        ctx.data.update({
            "completedAt": ctx.timestamp,
            "completedBy": ctx.actor_id,
            "notes": notes,
            "evidence": evidence,
        })
        updates: dict[str, Any] = {
            "taskCompleted": True,
            "completedBy": ctx.actor_id,
            "completedAt": ctx.timestamp,
        }
        if notes:
            updates["completionNotes"] = notes
        if evidence:
            updates["evidenceDocuments"] = evidence
        ctx.update_context(updates)
        return ActionState.COMPLETED

    def fail(self, ctx: RuntimeContext, reason: str) -> ActionState | None:
        ctx.data["failureReason"] = reason
        ctx.update_context({
            "taskFailed": True,
            "failureReason": reason,
            "failedAt": ctx.timestamp,
        })
        return ActionState.FAILED
