"""
Engine settings schema (``workflow_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the runtime knobs of the workflow engine.
Instances are produced only by ``workflow_config.loader`` and handed to
services through the composition root.

Architecture position
---------------------
**Config layer** -- pure data definitions.  No I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class NotificationSettings:
    enabled: bool = False
    default_channel: str = "EMAIL"
    mail_from: str = "workflows@localhost"
    default_subject_template: str = "Workflow step ready: {{ step.title }}"
    default_body_template: str = (
        "The step \"{{ step.title }}\" of workflow \"{{ instance.template_name }}\" "
        "is {{ trigger_label }}."
    )


@dataclass(frozen=True)
class RuntimeSettings:
    default_skip_reason: str = "Skipped by administrator"
    default_cancellation_reason: str = "Workflow canceled"
    automation_log_limit: int = 20
    # When True, completing a step with several branches and no explicit
    # decision is rejected instead of leaving every branch pending.
    branch_decision_required: bool = False


@dataclass(frozen=True)
class EngineSettings:
    """The complete, immutable engine configuration."""

    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    source: str = "<defaults>"
    checksum: str = ""

    @property
    def notifications_enabled(self) -> bool:
        return self.notifications.enabled
