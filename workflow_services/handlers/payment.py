"""Payment steps: a provider intent is created on start and settled on completion."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from workflow_kernel.domain.action_config import PaymentConfig
from workflow_kernel.domain.types import ActionEvent, ActionState, ActionType
from workflow_kernel.exceptions import ActionHandlerError
from workflow_services.handlers.base import (
    INVALID_PAYLOAD,
    ActionHandler,
    RuntimeContext,
    require_mapping,
)

PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
PAYMENT_FAILED = "PAYMENT_FAILED"


class PaymentHandler(ActionHandler):
    action_type = ActionType.PAYMENT

    def start(self, ctx: RuntimeContext) -> ActionState | None:
        config: PaymentConfig = ctx.config
        ctx.data["intentId"] = f"pay_{uuid4()}"
        ctx.data["provider"] = config.provider
        ctx.data["amount"] = config.amount
        ctx.data["currency"] = config.currency
        return ActionState.IN_PROGRESS

    def _settle(self, ctx: RuntimeContext, body: dict[str, Any]) -> ActionState:
        config: PaymentConfig = ctx.config
        if not ctx.data.get("intentId"):
            raise ActionHandlerError(
                "Payment intent has not been created", "MISSING_INTENT", ctx.step_id
            )
        amount = body.get("amount", config.amount)
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ActionHandlerError("Payment amount must be a number", INVALID_PAYLOAD, ctx.step_id)
        if amount != config.amount:
            raise ActionHandlerError(
                f"Paid amount {amount} does not match requested amount {config.amount}",
                "AMOUNT_MISMATCH",
                ctx.step_id,
            )
        if amount <= 0:
            raise ActionHandlerError(
                "Payment step has no positive amount to collect", "INVALID_AMOUNT", ctx.step_id
            )
        paid_at = body.get("paidAt")
        ctx.data["paidAt"] = paid_at if isinstance(paid_at, str) and paid_at else ctx.timestamp
        ctx.update_context({
            "paymentReceived": True,
            "paymentAmount": amount,
            "paymentCurrency": config.currency,
        })
        return ActionState.COMPLETED

    def complete(self, ctx: RuntimeContext, payload: Any) -> ActionState | None:
        return self._settle(ctx, require_mapping(payload, ctx.step_id, optional=True))

    def get_next_state_on_event(
        self,
        ctx: RuntimeContext,
        event: ActionEvent,
    ) -> ActionState | None:
        if event.type == PAYMENT_SUCCEEDED:
            return self._settle(ctx, event.payload)
        if event.type == PAYMENT_FAILED:
            ctx.data["error"] = event.payload.get("error")
            return ActionState.FAILED
        return None
