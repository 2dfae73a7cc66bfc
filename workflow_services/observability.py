"""
Observability hooks for the workflow runtime.

Emits structured log events for metrics and dashboards and keeps an
in-process counter store:

- ``WorkflowMetrics``: counters keyed by (metric, action_type, event),
  e.g. ("transition", "APPROVAL", "READY_to_IN_PROGRESS").
- ``WorkflowSpan``: start/end timing around one orchestrator operation.
- ``log_*`` helpers: keyword-only, one ``observability_event`` per call.

All events use a consistent ``observability_event`` field and stable extra
fields so log aggregators can build metrics from the log stream alone.
Nothing here is load-bearing: a metrics failure must never change the
outcome of a workflow operation.

Usage:
    from workflow_services.observability import WorkflowMetrics, WorkflowSpan

    metrics = WorkflowMetrics()
    span = WorkflowSpan("workflow.step.start", step_id=str(step.id))
    metrics.record_step_start("APPROVAL")
    span.end()
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Any

from workflow_kernel.logging_config import get_logger

logger = get_logger("services.observability")

EVENT_SPAN_START = "span_start"
EVENT_SPAN_END = "span_end"
EVENT_STEP_TRANSITION = "step_transition"
EVENT_STEP_ADVANCED = "step_advanced"
EVENT_CONDITION_FAILED = "condition_evaluation_failed"
EVENT_BRANCH_RESOLVED = "branch_resolved"
EVENT_NOTIFICATION = "notification"
EVENT_INSTANCE_COMPLETED = "instance_completed"

TOTAL = "total"

_CYCLE_TIME_BUCKETS: tuple[tuple[float, str], ...] = (
    (1_000, "lt_1s"),
    (5_000, "lt_5s"),
    (10_000, "lt_10s"),
    (30_000, "lt_30s"),
    (60_000, "lt_1m"),
    (300_000, "lt_5m"),
    (600_000, "lt_10m"),
    (1_800_000, "lt_30m"),
    (3_600_000, "lt_1h"),
)


def cycle_time_bucket(duration_ms: float) -> str:
    for limit, label in _CYCLE_TIME_BUCKETS:
        if duration_ms < limit:
            return label
    return "gte_1h"


class WorkflowMetrics:
    """
    In-process counter store.

    Each ``record_*`` call increments both the per-action-type counter and
    the matching ``total`` counter.  One instance is created by the
    composition root and shared by the runtime, the instance service and
    the notification dispatcher.
    """

    def __init__(self) -> None:
        self._counters: dict[tuple[str, str, str], float] = defaultdict(float)
        self._lock = threading.Lock()

    def increment(self, metric: str, action_type: str, event: str, amount: float = 1) -> None:
        with self._lock:
            self._counters[(metric, str(action_type), event)] += amount

    def _both(self, metric: str, action_type: str, event: str, amount: float = 1) -> None:
        self.increment(metric, action_type, event, amount)
        self.increment(metric, TOTAL, event, amount)

    def get(self, metric: str, action_type: str = TOTAL, event: str = "count") -> float:
        with self._lock:
            return self._counters.get((metric, str(action_type), event), 0)

    def snapshot(self) -> dict[tuple[str, str, str], float]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    # -- step lifecycle --------------------------------------------------

    def record_transition(self, action_type: str, from_state: str, to_state: str) -> None:
        source, target = str(from_state), str(to_state)
        self.increment("transition", action_type, "count")
        self.increment("transition", action_type, f"{source}_to_{target}")
        if target in ("COMPLETED", "FAILED", "SKIPPED"):
            self._both(f"step.{target.lower()}", action_type, "count")
        logger.debug(
            "workflow_step_transition",
            extra={
                "observability_event": EVENT_STEP_TRANSITION,
                "action_type": str(action_type),
                "from_state": source,
                "to_state": target,
            },
        )

    def record_step_start(self, action_type: str) -> None:
        self._both("step.started", action_type, "count")

    def record_step_claim(self, action_type: str) -> None:
        self._both("step.claimed", action_type, "count")

    def record_step_advanced(self, action_type: str) -> None:
        self._both("step.advanced", action_type, "count")

    def record_cycle_time(self, action_type: str, duration_ms: float) -> None:
        self.increment("cycle_time", action_type, cycle_time_bucket(duration_ms))
        self.increment("cycle_time", action_type, "count")
        self.increment("cycle_time", action_type, "sum", duration_ms)

    def record_handler_duration(self, action_type: str, operation: str, duration_ms: float) -> None:
        self.increment(f"handler.{operation}", action_type, "count")
        self.increment(f"handler.{operation}", action_type, "duration_sum", duration_ms)

    def record_handler_error(self, action_type: str, operation: str, error_code: str) -> None:
        self.increment("handler.error", action_type, operation)
        self.increment("handler.error", TOTAL, error_code)
        self.increment("handler.error", TOTAL, "count")

    # -- instances -------------------------------------------------------

    def record_instance_created(self, template_id: Any) -> None:
        self._both("instance.created", f"template_{template_id}", "count")

    def record_instance_completed(self, template_id: Any, duration_ms: float) -> None:
        self._both("instance.completed", f"template_{template_id}", "count")
        self.increment("instance.duration", f"template_{template_id}", "sum", duration_ms)

    # -- notifications ---------------------------------------------------

    def record_notification(self, action_type: str, success: bool) -> None:
        self._both("notification.sent" if success else "notification.failed", action_type, "count")


class WorkflowSpan:
    """
    Timing span around one orchestrator operation.

    Logs ``span_start`` on creation and ``span_end`` exactly once, from
    ``end`` or ``end_with_error``.  Later calls return the recorded
    duration without logging again.
    """

    def __init__(self, name: str, **attributes: Any) -> None:
        self.name = name
        self.attributes: dict[str, Any] = dict(attributes)
        self._t0 = time.monotonic()
        self._duration_ms: float | None = None
        logger.debug(
            "workflow_span_start",
            extra={"observability_event": EVENT_SPAN_START, "span": name, **self.attributes},
        )

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    @property
    def duration_ms(self) -> float:
        if self._duration_ms is not None:
            return self._duration_ms
        return round((time.monotonic() - self._t0) * 1000, 3)

    def end(self, success: bool = True) -> float:
        if self._duration_ms is not None:
            return self._duration_ms
        self._duration_ms = round((time.monotonic() - self._t0) * 1000, 3)
        payload = {
            "observability_event": EVENT_SPAN_END,
            "span": self.name,
            "success": success,
            "duration_ms": self._duration_ms,
            **self.attributes,
        }
        if success:
            logger.info("workflow_span_end", extra=payload)
        else:
            logger.warning("workflow_span_end", extra=payload)
        return self._duration_ms

    def end_with_error(self, error: BaseException) -> float:
        self.set_attribute("error", str(error))
        self.set_attribute("error_type", type(error).__name__)
        code = getattr(error, "code", None)
        if code is not None:
            self.set_attribute("error_code", code)
        return self.end(success=False)


def log_step_advanced(
    *,
    step_id: str,
    action_type: str,
    to_state: str,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """Log a readiness or branch-driven state change made by the engine itself."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_STEP_ADVANCED,
        "step_id": step_id,
        "action_type": action_type,
        "to_state": to_state,
        **extra,
    }
    if reason is not None:
        payload["reason"] = reason
    logger.info("workflow_step_advanced", extra=payload)


def log_condition_failure(
    *,
    step_id: str,
    condition_type: str,
    error: str,
    **extra: Any,
) -> None:
    """Log a condition that could not be evaluated; the step stays PENDING."""
    logger.warning(
        "workflow_condition_evaluation_failed",
        extra={
            "observability_event": EVENT_CONDITION_FAILED,
            "step_id": step_id,
            "condition_type": condition_type,
            "error": error,
            **extra,
        },
    )


def log_branch_resolved(
    *,
    step_id: str,
    decision: bool | None,
    activated: list[str],
    skipped: list[str],
    **extra: Any,
) -> None:
    logger.info(
        "workflow_branch_resolved",
        extra={
            "observability_event": EVENT_BRANCH_RESOLVED,
            "step_id": step_id,
            "decision": decision,
            "activated": activated,
            "skipped": skipped,
            **extra,
        },
    )


def log_notification(
    *,
    step_id: str,
    trigger: str,
    status: str,
    recipient_count: int,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one notification outcome (SENT, FAILED or SKIPPED)."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_NOTIFICATION,
        "step_id": step_id,
        "trigger": trigger,
        "status": status,
        "recipient_count": recipient_count,
        **extra,
    }
    if error is not None:
        payload["error"] = error
        logger.warning("workflow_notification", extra=payload)
    else:
        logger.info("workflow_notification", extra=payload)


def log_instance_completed(
    *,
    instance_id: str,
    template_id: str,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    payload: dict[str, Any] = {
        "observability_event": EVENT_INSTANCE_COMPLETED,
        "instance_id": instance_id,
        "template_id": template_id,
        **extra,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    logger.info("workflow_instance_completed", extra=payload)
