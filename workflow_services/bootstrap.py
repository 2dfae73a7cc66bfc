"""
workflow_services.bootstrap -- Composition root.

Responsibility:
    Builds the runtime, instance and template services for one session
    with a shared registry, clock, metrics store, notification
    dispatcher, settings and authorization snapshot provider.  Services
    never construct their own collaborators beyond these defaults.

Usage:
    with session_scope() as session:
        services = build_workflow_services(session, sink=RecordingNotificationSink())
        instance = services.instances.instantiate_template(template_id, actor=actor, matter_id=m)
        services.runtime.start_step(instance.steps[0].id, actor=actor)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from workflow_config import EngineSettings, get_engine_settings
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_services.authority import ActorSnapshotProvider
from workflow_services.handlers import (
    DocumentLocator,
    QuestionnaireGateway,
    build_default_registry,
)
from workflow_services.instance_service import WorkflowInstanceService
from workflow_services.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    PolicyNotificationDispatcher,
)
from workflow_services.observability import WorkflowMetrics
from workflow_services.registry import ActionRegistry
from workflow_services.runtime import WorkflowRuntime
from workflow_services.template_service import WorkflowTemplateService


@dataclass(frozen=True)
class WorkflowServices:
    runtime: WorkflowRuntime
    instances: WorkflowInstanceService
    templates: WorkflowTemplateService
    registry: ActionRegistry
    metrics: WorkflowMetrics
    notifier: PolicyNotificationDispatcher
    settings: EngineSettings


def build_workflow_services(
    session: Session,
    *,
    settings: EngineSettings | None = None,
    clock: Clock | None = None,
    metrics: WorkflowMetrics | None = None,
    registry: ActionRegistry | None = None,
    sink: NotificationSink | None = None,
    snapshot_provider: ActorSnapshotProvider | None = None,
    document_locator: DocumentLocator | None = None,
    questionnaire_gateway: QuestionnaireGateway | None = None,
) -> WorkflowServices:
    settings = settings or get_engine_settings()
    clock = clock or SystemClock()
    metrics = metrics or WorkflowMetrics()
    registry = registry or build_default_registry(
        settings,
        document_locator=document_locator,
        questionnaire_gateway=questionnaire_gateway,
    )
    notifier = PolicyNotificationDispatcher(
        session,
        sink or LoggingNotificationSink(),
        settings=settings,
        clock=clock,
        metrics=metrics,
        snapshot_provider=snapshot_provider,
    )
    runtime = WorkflowRuntime(
        session,
        registry,
        clock=clock,
        metrics=metrics,
        notifier=notifier,
        settings=settings,
        snapshot_provider=snapshot_provider,
    )
    return WorkflowServices(
        runtime=runtime,
        instances=WorkflowInstanceService(
            session, runtime, clock=clock, metrics=metrics, settings=settings
        ),
        templates=WorkflowTemplateService(session, registry),
        registry=registry,
        metrics=metrics,
        notifier=notifier,
        settings=settings,
    )


def build_workflow_runtime(session: Session, **kwargs) -> WorkflowRuntime:
    """Just the runtime, wired as in ``build_workflow_services``."""
    return build_workflow_services(session, **kwargs).runtime
