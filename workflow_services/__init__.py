"""
workflow_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines and the kernel: the
    action registry and handlers, capability resolution, the runtime
    orchestrator, instance and template services, notifications and
    observability.  This is the only layer that holds database sessions.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        workflow_services/ -> workflow_engines/  (allowed)
        workflow_services/ -> workflow_kernel/   (allowed)
        workflow_services/ -> workflow_config/   (allowed)
        workflow_engines/  -> workflow_services/ (FORBIDDEN)
        workflow_kernel/   -> workflow_services/ (FORBIDDEN)

Invariants enforced:
    - All wiring is centralised in ``bootstrap``; no service builds its
      own registry, clock or dispatcher beyond documented defaults.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from workflow_services.authority import (
    ActorSnapshotProvider,
    StaticSnapshotProvider,
    check_capability,
    resolve_capability,
    resolve_eligible_actor_ids,
)
from workflow_services.bootstrap import (
    WorkflowServices,
    build_workflow_runtime,
    build_workflow_services,
)
from workflow_services.handlers import ActionHandler, RuntimeContext, build_default_registry
from workflow_services.instance_service import WorkflowInstanceService
from workflow_services.notifications import (
    LoggingNotificationSink,
    NotificationMessage,
    PolicyNotificationDispatcher,
    RecordingNotificationSink,
)
from workflow_services.observability import WorkflowMetrics, WorkflowSpan
from workflow_services.registry import ActionRegistry
from workflow_services.runtime import WorkflowRuntime
from workflow_services.template_service import WorkflowTemplateService

__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "ActorSnapshotProvider",
    "LoggingNotificationSink",
    "NotificationMessage",
    "PolicyNotificationDispatcher",
    "RecordingNotificationSink",
    "RuntimeContext",
    "StaticSnapshotProvider",
    "WorkflowInstanceService",
    "WorkflowMetrics",
    "WorkflowRuntime",
    "WorkflowServices",
    "WorkflowSpan",
    "WorkflowTemplateService",
    "build_default_registry",
    "build_workflow_runtime",
    "build_workflow_services",
    "check_capability",
    "resolve_capability",
    "resolve_eligible_actor_ids",
]
