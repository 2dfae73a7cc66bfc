"""
Questionnaire steps.

Responsibility:
    Links a step to a questionnaire and, on completion, to the submitted
    response.  Questionnaires and responses live outside the engine and
    are read through a ``QuestionnaireGateway``; without one the handler
    records the ids it is given without verifying them.

Failure modes:
    - QUESTIONNAIRE_NOT_FOUND on start (missing or inactive).
    - RESPONSE_NOT_FOUND, QUESTIONNAIRE_MISMATCH, RESPONSE_NOT_COMPLETED,
      UNAUTHORIZED on complete, checked in that order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from workflow_kernel.domain.action_config import QuestionnaireConfig
from workflow_kernel.domain.types import ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)

RESPONSE_COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class QuestionnaireRecord:
    id: str
    title: str
    is_active: bool = True


@dataclass(frozen=True)
class QuestionnaireResponseRecord:
    id: str
    questionnaire_id: str
    status: str
    respondent_id: UUID | None = None
    questionnaire_title: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    answers: tuple[dict[str, Any], ...] = field(default_factory=tuple)


class QuestionnaireGateway(Protocol):
    def get_questionnaire(self, questionnaire_id: str) -> QuestionnaireRecord | None:
        ...

    def get_response(self, response_id: str) -> QuestionnaireResponseRecord | None:
        ...


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class QuestionnaireHandler(ActionHandler):
    action_type = ActionType.POPULATE_QUESTIONNAIRE

    def __init__(self, gateway: QuestionnaireGateway | None = None):
        self._gateway = gateway

    def start(self, ctx: RuntimeContext) -> ActionState | None:
        config: QuestionnaireConfig = ctx.config
        title = config.title
        if self._gateway is not None:
            questionnaire = self._gateway.get_questionnaire(config.questionnaire_id)
            if questionnaire is None or not questionnaire.is_active:
                raise ActionHandlerError(
                    f"Questionnaire not found or inactive: {config.questionnaire_id}",
                    "QUESTIONNAIRE_NOT_FOUND",
                    ctx.step_id,
                )
            title = questionnaire.title
        ctx.data["questionnaireId"] = config.questionnaire_id
        ctx.data["questionnaireTitle"] = title
        ctx.data["startedAt"] = ctx.timestamp
        return ActionState.IN_PROGRESS

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        config: QuestionnaireConfig = ctx.config
        body = require_mapping(payload, ctx.step_id)
        response_id = body.get("responseId")
        if not isinstance(response_id, str) or not response_id:
            raise ActionHandlerError("responseId is required", INVALID_PAYLOAD, ctx.step_id)

        key = f"questionnaire_{ctx.step_id}"
        summary: dict[str, Any] = {
            "questionnaireId": config.questionnaire_id,
            "title": ctx.data.get("questionnaireTitle") or config.title,
            "responseId": response_id,
            "completedAt": ctx.timestamp,
        }
        answers: list[dict[str, Any]] = []

        if self._gateway is not None:
            response = self._gateway.get_response(response_id)
            if response is None:
                raise ActionHandlerError(
                    f"Questionnaire response not found: {response_id}",
                    "RESPONSE_NOT_FOUND",
                    ctx.step_id,
                )
            if response.questionnaire_id != config.questionnaire_id:
                raise ActionHandlerError(
                    "Response does not belong to the configured questionnaire",
                    "QUESTIONNAIRE_MISMATCH",
                    ctx.step_id,
                )
            if response.status != RESPONSE_COMPLETED:
                raise ActionHandlerError(
                    "Questionnaire response is not completed",
                    "RESPONSE_NOT_COMPLETED",
                    ctx.step_id,
                )
            actor = ctx.actor
            if actor is not None and not actor.is_admin and response.respondent_id != actor.id:
                raise ActionHandlerError(
                    "Only the respondent can submit this response", "UNAUTHORIZED", ctx.step_id
                )
            answers = [dict(a) for a in response.answers]
            summary.update({
                "title": response.questionnaire_title or summary["title"],
                "startedAt": _iso(response.started_at),
                "completedAt": _iso(response.completed_at) or ctx.timestamp,
                "answerCount": len(answers),
            })

        ctx.data["responseId"] = response_id
        ctx.data["completedAt"] = summary["completedAt"]
        ctx.update_context({
            key: summary,
            f"{key}_responseId": response_id,
            f"{key}_answers": answers,
        })
        return ActionState.COMPLETED
