"""
Typed action configurations.

Responsibility:
    One frozen dataclass per action type describing the configuration a
    template step carries for that action, and ``parse_action_config``,
    the tagged-union entry point that turns a stored JSON mapping into
    the matching dataclass.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Parsing is fail-fast: every violation is collected and raised as a
      single ConfigValidationError.  The only defaults applied are the
      documented ones below.
    - Parsed configs are immutable; handlers record runtime facts in step
      data, never in config.

Failure modes:
    - ConfigValidationError for malformed configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

from workflow_kernel.domain.types import ActionType, SendStrategy
from workflow_kernel.exceptions import ConfigValidationError

MAX_DELAY_MINUTES = 10080
MAX_APPROVAL_TEXT = 2000

SIGNATURE_PROVIDERS = ("mock", "stripe", "docusign")
PAYMENT_PROVIDERS = ("mock", "stripe")
WEBHOOK_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


class _Fields:
    """Collects field errors while reading a raw config mapping."""

    def __init__(self, action_type: ActionType, raw: Any):
        self.action_type = action_type
        self.errors: list[str] = []
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            self.errors.append("config must be an object")
            raw = {}
        self.raw: dict[str, Any] = raw

    def string(
        self,
        key: str,
        *,
        required: bool = False,
        default: str | None = None,
        max_length: int | None = None,
        choices: tuple[str, ...] | None = None,
    ) -> str | None:
        value = self.raw.get(key)
        if value is None:
            if required:
                self.errors.append(f"{key} is required")
            return default
        if not isinstance(value, str) or (required and not value):
            self.errors.append(f"{key} must be a non-empty string")
            return default
        if max_length is not None and len(value) > max_length:
            self.errors.append(f"{key} must be at most {max_length} characters")
        if choices is not None and value not in choices:
            self.errors.append(f"{key} must be one of {', '.join(choices)}")
        return value

    def integer(
        self,
        key: str,
        *,
        required: bool = False,
        default: int | None = None,
        minimum: int | None = None,
        maximum: int | None = None,
    ) -> int | None:
        value = self.raw.get(key)
        if value is None:
            if required:
                self.errors.append(f"{key} is required")
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            self.errors.append(f"{key} must be an integer")
            return default
        if minimum is not None and value < minimum:
            self.errors.append(f"{key} must be >= {minimum}")
        if maximum is not None and value > maximum:
            self.errors.append(f"{key} must be <= {maximum}")
        return value

    def number(self, key: str, *, required: bool = False, minimum: float | None = None) -> float | None:
        value = self.raw.get(key)
        if value is None:
            if required:
                self.errors.append(f"{key} is required")
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.errors.append(f"{key} must be a number")
            return None
        if minimum is not None and value < minimum:
            self.errors.append(f"{key} must be >= {minimum}")
        return value

    def boolean(self, key: str, *, default: bool) -> bool:
        value = self.raw.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.errors.append(f"{key} must be a boolean")
            return default
        return value

    def string_list(self, key: str, *, min_items: int = 0) -> tuple[str, ...]:
        value = self.raw.get(key)
        if value is None:
            value = []
        if not isinstance(value, list) or not all(
            isinstance(item, str) and item for item in value
        ):
            self.errors.append(f"{key} must be a list of non-empty strings")
            return ()
        if len(value) < min_items:
            self.errors.append(f"{key} requires at least {min_items} item(s)")
        return tuple(value)

    def check(self) -> None:
        if self.errors:
            raise ConfigValidationError(
                f"Invalid {self.action_type.value} config: {'; '.join(self.errors)}",
                action_type=self.action_type.value,
                field_errors=self.errors,
            )


@dataclass(frozen=True)
class ApprovalConfig:
    approver_role: str | None = None
    message: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> ApprovalConfig:
        f = _Fields(ActionType.APPROVAL, raw)
        config = cls(
            approver_role=f.string("approverRole", choices=("LAWYER", "ADMIN")),
            message=f.string("message", max_length=MAX_APPROVAL_TEXT),
        )
        f.check()
        return config


@dataclass(frozen=True)
class SignatureConfig:
    document_id: str | None = None
    provider: str = "mock"

    @classmethod
    def from_dict(cls, raw: Any) -> SignatureConfig:
        f = _Fields(ActionType.SIGNATURE, raw)
        config = cls(
            document_id=f.string("documentId"),
            provider=f.string("provider", default="mock", choices=SIGNATURE_PROVIDERS),
        )
        f.check()
        return config


@dataclass(frozen=True)
class PaymentConfig:
    amount: float
    currency: str
    provider: str = "mock"

    @classmethod
    def from_dict(cls, raw: Any) -> PaymentConfig:
        f = _Fields(ActionType.PAYMENT, raw)
        amount = f.number("amount", required=True, minimum=0)
        currency = f.string("currency", required=True)
        if currency is not None and not 3 <= len(currency) <= 10:
            f.errors.append("currency must be 3-10 characters")
        provider = f.string("provider", default="mock", choices=PAYMENT_PROVIDERS)
        f.check()
        return cls(amount=amount, currency=currency, provider=provider)


@dataclass(frozen=True)
class ChecklistConfig:
    items: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> ChecklistConfig:
        f = _Fields(ActionType.CHECKLIST, raw)
        config = cls(items=f.string_list("items"))
        f.check()
        return config


@dataclass(frozen=True)
class RequestDocConfig:
    request_text: str
    document_names: tuple[str, ...]
    accepted_file_types: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> RequestDocConfig:
        f = _Fields(ActionType.REQUEST_DOC, raw)
        request_text = f.string("requestText", required=True)
        names = f.string_list("documentNames", min_items=1)
        if len(set(names)) != len(names):
            f.errors.append("documentNames must be unique")
        accepted = f.string_list("acceptedFileTypes")
        f.check()
        return cls(
            request_text=request_text,
            document_names=names,
            accepted_file_types=accepted,
        )


@dataclass(frozen=True)
class WriteTextConfig:
    title: str
    description: str = ""
    placeholder: str = "Enter your text here..."
    min_length: int = 0
    max_length: int | None = None
    required: bool = True

    @classmethod
    def from_dict(cls, raw: Any) -> WriteTextConfig:
        f = _Fields(ActionType.WRITE_TEXT, raw)
        title = f.string("title", required=True)
        description = f.string("description", default="")
        placeholder = f.string("placeholder", default="Enter your text here...")
        min_length = f.integer("minLength", default=0, minimum=0)
        max_length = f.integer("maxLength", minimum=1)
        if max_length is not None and min_length and max_length < min_length:
            f.errors.append("maxLength must be greater than or equal to minLength")
        required = f.boolean("required", default=True)
        f.check()
        return cls(
            title=title,
            description=description,
            placeholder=placeholder,
            min_length=min_length,
            max_length=max_length,
            required=required,
        )


@dataclass(frozen=True)
class QuestionnaireConfig:
    questionnaire_id: str
    title: str
    description: str = ""
    due_in_days: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> QuestionnaireConfig:
        f = _Fields(ActionType.POPULATE_QUESTIONNAIRE, raw)
        config = cls(
            questionnaire_id=f.string("questionnaireId", required=True),
            title=f.string("title", required=True),
            description=f.string("description", default=""),
            due_in_days=f.integer("dueInDays", minimum=0),
        )
        f.check()
        return config


@dataclass(frozen=True)
class TaskConfig:
    description: str | None = None
    requires_evidence: bool = False
    estimated_minutes: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> TaskConfig:
        f = _Fields(ActionType.TASK, raw)
        config = cls(
            description=f.string("description"),
            requires_evidence=f.boolean("requiresEvidence", default=False),
            estimated_minutes=f.integer("estimatedMinutes", minimum=1),
        )
        f.check()
        return config


def _send_strategy(f: _Fields) -> tuple[str, int | None]:
    strategy = f.string(
        "sendStrategy",
        default=SendStrategy.IMMEDIATE.value,
        choices=tuple(s.value for s in SendStrategy),
    )
    delay = f.integer("delayMinutes", minimum=1, maximum=MAX_DELAY_MINUTES)
    return strategy, delay


@dataclass(frozen=True)
class AutomationEmailConfig:
    recipients: tuple[str, ...]
    subject_template: str
    body_template: str
    cc: tuple[str, ...] = ()
    send_strategy: str = SendStrategy.IMMEDIATE.value
    delay_minutes: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> AutomationEmailConfig:
        f = _Fields(ActionType.AUTOMATION_EMAIL, raw)
        recipients = f.string_list("recipients", min_items=1)
        cc = f.string_list("cc")
        subject = f.string("subjectTemplate", required=True)
        body = f.string("bodyTemplate", required=True)
        strategy, delay = _send_strategy(f)
        f.check()
        return cls(
            recipients=recipients,
            subject_template=subject,
            body_template=body,
            cc=cc,
            send_strategy=strategy,
            delay_minutes=delay,
        )


@dataclass(frozen=True)
class WebhookHeader:
    key: str
    value: str = ""


@dataclass(frozen=True)
class AutomationWebhookConfig:
    url: str
    method: str = "POST"
    headers: tuple[WebhookHeader, ...] = ()
    payload_template: str | None = None
    send_strategy: str = SendStrategy.IMMEDIATE.value
    delay_minutes: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> AutomationWebhookConfig:
        f = _Fields(ActionType.AUTOMATION_WEBHOOK, raw)
        url = f.string("url", required=True)
        if url is not None:
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                f.errors.append("Webhook URL must be valid")
        method = f.string("method", default="POST", choices=WEBHOOK_METHODS)
        headers: list[WebhookHeader] = []
        raw_headers = f.raw.get("headers") or []
        if not isinstance(raw_headers, list):
            f.errors.append("headers must be a list")
            raw_headers = []
        for item in raw_headers:
            if not isinstance(item, dict) or not isinstance(item.get("key"), str) or not item["key"]:
                f.errors.append("headers entries require a non-empty key")
                continue
            headers.append(WebhookHeader(key=item["key"], value=str(item.get("value") or "")))
        payload_template = f.string("payloadTemplate")
        strategy, delay = _send_strategy(f)
        f.check()
        return cls(
            url=url,
            method=method,
            headers=tuple(headers),
            payload_template=payload_template,
            send_strategy=strategy,
            delay_minutes=delay,
        )


ActionConfig = (
    ApprovalConfig
    | SignatureConfig
    | PaymentConfig
    | ChecklistConfig
    | RequestDocConfig
    | WriteTextConfig
    | QuestionnaireConfig
    | TaskConfig
    | AutomationEmailConfig
    | AutomationWebhookConfig
)

CONFIG_PARSERS: dict[ActionType, Callable[[Any], ActionConfig]] = {
    ActionType.APPROVAL: ApprovalConfig.from_dict,
    ActionType.SIGNATURE: SignatureConfig.from_dict,
    ActionType.PAYMENT: PaymentConfig.from_dict,
    ActionType.CHECKLIST: ChecklistConfig.from_dict,
    ActionType.REQUEST_DOC: RequestDocConfig.from_dict,
    ActionType.WRITE_TEXT: WriteTextConfig.from_dict,
    ActionType.POPULATE_QUESTIONNAIRE: QuestionnaireConfig.from_dict,
    ActionType.TASK: TaskConfig.from_dict,
    ActionType.AUTOMATION_EMAIL: AutomationEmailConfig.from_dict,
    ActionType.AUTOMATION_WEBHOOK: AutomationWebhookConfig.from_dict,
}


def parse_action_config(action_type: ActionType | str, raw: Any) -> ActionConfig:
    """Parse a stored config mapping into the dataclass for ``action_type``."""
    try:
        kind = ActionType(action_type)
    except ValueError:
        raise ConfigValidationError(
            f"Unknown action type: {action_type}", action_type=str(action_type)
        ) from None
    return CONFIG_PARSERS[kind](raw)
