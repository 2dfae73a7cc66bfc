"""
E-signature steps.

``start`` provisions a signing session and binds the document to sign:
the configured ``documentId``, one already in the step data, or the
subject's latest document from an injected ``DocumentLocator``.  The
provider reports back through SIGNATURE_COMPLETED / SIGNATURE_FAILED
events, or a caller completes the step explicitly.
"""

from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID, uuid4

from workflow_kernel.domain.action_config import SignatureConfig
from workflow_kernel.domain.types import ActionEvent, ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import ActionHandler, RuntimeContext, require_mapping

SIGNATURE_COMPLETED = "SIGNATURE_COMPLETED"
SIGNATURE_FAILED = "SIGNATURE_FAILED"


class DocumentLocator(Protocol):
    """Looks up documents held outside the engine."""

    def latest_document_id(
        self,
        *,
        matter_id: UUID | None,
        contact_id: UUID | None,
    ) -> str | None:
        ...


class SignatureHandler(ActionHandler):
    action_type = ActionType.SIGNATURE

    def __init__(self, document_locator: DocumentLocator | None = None):
        self._documents = document_locator

    def _document_id(self, ctx: RuntimeContext, payload: dict[str, Any] | None = None) -> str | None:
        config: SignatureConfig = ctx.config
        for candidate in (
            config.document_id,
            ctx.data.get("documentId"),
            (payload or {}).get("documentId"),
        ):
            if isinstance(candidate, str) and candidate:
                return candidate
        return None

    def start(self, ctx: RuntimeContext) -> ActionState | None:
        config: SignatureConfig = ctx.config
        document_id = self._document_id(ctx)
        if document_id is None and self._documents is not None:
            document_id = self._documents.latest_document_id(
                matter_id=ctx.instance.matter_id,
                contact_id=ctx.instance.contact_id,
            )
        if document_id is not None:
            ctx.data["documentId"] = document_id
        ctx.data["sessionId"] = f"sig_{uuid4()}"
        ctx.data["provider"] = config.provider
        return ActionState.IN_PROGRESS

    def _record_signed(self, ctx: RuntimeContext, document_id: str) -> None:
        ctx.data["documentId"] = document_id
        ctx.data["completedAt"] = ctx.timestamp
        ctx.update_context({
            "signatureCompleted": True,
            "signedBy": ctx.actor_id,
            "signedAt": ctx.timestamp,
            "documentId": document_id,
        })

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        body = require_mapping(payload, ctx.step_id, optional=True)
        document_id = self._document_id(ctx, body)
        if document_id is None:
            raise ActionHandlerError(
                "No document bound to signature step", "MISSING_DOCUMENT", ctx.step_id
            )
        if not ctx.data.get("sessionId"):
            raise ActionHandlerError(
                "Signature session has not been started", "MISSING_SESSION", ctx.step_id
            )
        self._record_signed(ctx, document_id)
        return ActionState.COMPLETED

    def get_next_state_on_event(
        self,
        ctx: RuntimeContext,
        event: ActionEvent,
    ) -> ActionState | None:
        if event.type == SIGNATURE_COMPLETED:
            document_id = self._document_id(ctx, event.payload)
            if document_id is None:
                raise ActionHandlerError(
                    "No document bound to signature step", "MISSING_DOCUMENT", ctx.step_id
                )
            self._record_signed(ctx, document_id)
            return ActionState.COMPLETED
        if event.type == SIGNATURE_FAILED:
            ctx.data["error"] = event.payload.get("error")
            return ActionState.FAILED
        return None
