"""
Document request steps.

The step keeps an upload ledger, one entry per requested document name.
DOCUMENT_UPLOADED events fill the ledger; the step stays IN_PROGRESS
until every name has an upload, then completes on its own.  An explicit
``complete`` is accepted only once the ledger is full.
"""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.action_config import RequestDocConfig
from workflow_kernel.domain.types import ActionEvent, ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)

DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"


def _ledger(ctx: RuntimeContext) -> list[dict[str, Any]]:
    config: RequestDocConfig = ctx.config
    existing = {
        entry.get("documentName"): entry
        for entry in ctx.data.get("documentsStatus") or []
        if isinstance(entry, dict)
    }
    return [
        dict(existing.get(name) or {"documentName": name, "uploaded": False})
        for name in config.document_names
    ]


def _all_uploaded(ledger: list[dict[str, Any]]) -> bool:
    return bool(ledger) and all(entry.get("uploaded") for entry in ledger)


class RequestDocHandler(ActionHandler):
    action_type = ActionType.REQUEST_DOC

    def start(self, ctx: RuntimeContext) -> ActionState | None:
        ctx.data["status"] = "IN_PROGRESS"
        ctx.data["documentsStatus"] = _ledger(ctx)
        ctx.data["allDocumentsUploaded"] = False
        return ActionState.IN_PROGRESS

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        require_mapping(payload, ctx.step_id, optional=True)
        config: RequestDocConfig = ctx.config
        ledger = _ledger(ctx)
        if not _all_uploaded(ledger):
            missing = [e["documentName"] for e in ledger if not e.get("uploaded")]
            raise ActionHandlerError(
                f"Documents not yet uploaded: {', '.join(missing)}",
                "DOCUMENTS_INCOMPLETE",
                ctx.step_id,
            )
        ctx.data["documentsStatus"] = ledger
        ctx.data["allDocumentsUploaded"] = True
        ctx.data["status"] = "COMPLETED"
        ctx.data["completedAt"] = ctx.timestamp
        ctx.update_context({
            "documentsRequested": True,
            "requestedDocumentNames": list(config.document_names),
            "allDocumentsUploaded": True,
        })
        return ActionState.COMPLETED

    def fail(self, ctx: RuntimeContext, reason: str) -> ActionState | None:
        ctx.data["status"] = "FAILED"
        ctx.update_context({"documentRequestFailed": True, "failureReason": reason})
        return ActionState.FAILED

    def get_next_state_on_event(
        self,
        ctx: RuntimeContext,
        event: ActionEvent,
    ) -> ActionState | None:
        if event.type != DOCUMENT_UPLOADED:
            return None
        name = event.payload.get("documentName")
        document_id = event.payload.get("documentId")
        if not isinstance(name, str) or not isinstance(document_id, str):
            raise ActionHandlerError(
                "DOCUMENT_UPLOADED requires documentName and documentId",
                INVALID_PAYLOAD,
                ctx.step_id,
            )
        ledger = _ledger(ctx)
        entry = next((e for e in ledger if e["documentName"] == name), None)
        if entry is None:
            raise ActionHandlerError(
                f"Document was not requested: {name}", INVALID_PAYLOAD, ctx.step_id
            )
        entry.update({"uploaded": True, "documentId": document_id, "uploadedAt": ctx.timestamp})
        ctx.data["documentsStatus"] = ledger

        if not _all_uploaded(ledger):
            return None
        ctx.data["allDocumentsUploaded"] = True
        ctx.data["status"] = "COMPLETED"
        ctx.update_context({
            "allDocumentsUploaded": True,
            "autoCompletedAt": ctx.timestamp,
        })
        return ActionState.COMPLETED
