"""Free-text steps (memos, summaries) published into the shared context."""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.action_config import WriteTextConfig
from workflow_kernel.domain.types import ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)

TEXT_FORMATS = ("plain", "html")


class WriteTextHandler(ActionHandler):
    action_type = ActionType.WRITE_TEXT

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        config: WriteTextConfig = ctx.config
        body = require_mapping(payload, ctx.step_id)
        content = body.get("content")
        text_format = body.get("format", "plain")
        if not isinstance(content, str) or not content:
            raise ActionHandlerError("content must be a non-empty string", INVALID_PAYLOAD, ctx.step_id)
        if text_format not in TEXT_FORMATS:
            raise ActionHandlerError(
                f"format must be one of {', '.join(TEXT_FORMATS)}", INVALID_PAYLOAD, ctx.step_id
            )
        if config.min_length and len(content) < config.min_length:
            raise ActionHandlerError(
                f"Text must be at least {config.min_length} characters (current: {len(content)})",
                "VALIDATION_ERROR",
                ctx.step_id,
            )
        if config.max_length and len(content) > config.max_length:
            raise ActionHandlerError(
                f"Text must be at most {config.max_length} characters (current: {len(content)})",
                "VALIDATION_ERROR",
                ctx.step_id,
            )

        ctx.data.update({
            "content": content,
            "format": text_format,
            "submittedAt": ctx.timestamp,
            "submittedBy": ctx.actor_id,
        })
        key = f"text_{ctx.step_id}"
        ctx.update_context({
            key: {
                "title": config.title,
                "content": content,
                "format": text_format,
                "length": len(content),
                "submittedAt": ctx.timestamp,
                "submittedBy": ctx.actor_id,
            },
            f"{key}_content": content,
        })
        return ActionState.COMPLETED

    def fail(self, ctx: RuntimeContext, reason: str) -> ActionState | None:
        ctx.data["content"] = f"[Failed: {reason}]"
        ctx.data["format"] = "plain"
        return ActionState.FAILED
