"""
Action handlers, one per action type, and the default registry factory.

Usage:
    registry = build_default_registry(settings)
    handler = registry.get(ActionType.APPROVAL)
"""

from __future__ import annotations

from workflow_config import EngineSettings
from workflow_services.handlers.approval import ApprovalHandler
from workflow_services.handlers.automation import (
    AutomationEmailHandler,
    AutomationHandler,
    AutomationWebhookHandler,
)
from workflow_services.handlers.base import ActionHandler, RuntimeContext, require_mapping
from workflow_services.handlers.checklist import ChecklistHandler
from workflow_services.handlers.payment import PaymentHandler
from workflow_services.handlers.questionnaire import (
    QuestionnaireGateway,
    QuestionnaireHandler,
    QuestionnaireRecord,
    QuestionnaireResponseRecord,
)
from workflow_services.handlers.request_doc import RequestDocHandler
from workflow_services.handlers.signature import DocumentLocator, SignatureHandler
from workflow_services.handlers.task import TaskHandler
from workflow_services.handlers.write_text import WriteTextHandler
from workflow_services.registry import ActionRegistry


def build_default_registry(
    settings: EngineSettings | None = None,
    *,
    document_locator: DocumentLocator | None = None,
    questionnaire_gateway: QuestionnaireGateway | None = None,
) -> ActionRegistry:
    """A registry holding a handler for every action type."""
    log_limit = settings.runtime.automation_log_limit if settings is not None else 20
    registry = ActionRegistry()
    for handler in (
        ApprovalHandler(),
        SignatureHandler(document_locator),
        PaymentHandler(),
        ChecklistHandler(),
        RequestDocHandler(),
        WriteTextHandler(),
        QuestionnaireHandler(questionnaire_gateway),
        TaskHandler(),
        AutomationEmailHandler(log_limit),
        AutomationWebhookHandler(log_limit),
    ):
        registry.register(handler)
    return registry


__all__ = [
    "ActionHandler",
    "ApprovalHandler",
    "AutomationEmailHandler",
    "AutomationHandler",
    "AutomationWebhookHandler",
    "ChecklistHandler",
    "DocumentLocator",
    "PaymentHandler",
    "QuestionnaireGateway",
    "QuestionnaireHandler",
    "QuestionnaireRecord",
    "QuestionnaireResponseRecord",
    "RequestDocHandler",
    "RuntimeContext",
    "SignatureHandler",
    "TaskHandler",
    "WriteTextHandler",
    "build_default_registry",
    "require_mapping",
]
