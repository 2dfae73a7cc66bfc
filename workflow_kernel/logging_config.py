"""
workflow_kernel.logging_config -- JSON log lines for step operations.

Responsibility:
    Every record under the ``workflow_kernel`` logger becomes one JSON
    object: timestamp, level, logger, message, then the workflow fields
    bound by the operation in progress (correlation, instance, step,
    actor, action type), then the record's ``extra`` fields.

Architecture position:
    Kernel.  Imported by every layer; imports nothing from the engine.
    WorkflowRuntime and WorkflowInstanceService bind ``LogContext``
    around each operation so engine and handler logs need no ids.

Invariants enforced:
    - Only the fields in ``CONTEXT_FIELDS`` can be bound.
    - ``configure_logging`` installs its handler once per process.
    - Exceptions attached to a record are flattened into ``exc_*`` keys,
      including the ``code`` and structured attributes of engine errors.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "instance_id",
    "step_id",
    "actor_id",
    "action_type",
)

_bound: ContextVar[dict[str, str]] = ContextVar("workflow_log_context", default={})


class LogContext:
    """Workflow fields copied into every record while an operation runs."""

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[dict[str, str]]:
        """Bind fields for the ``with`` block; None values are ignored.

        Nested binds layer over the outer ones and restore them on exit.
        """
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise ValueError(f"Unknown log context fields: {', '.join(unknown)}")
        merged = dict(_bound.get())
        merged.update({name: str(value) for name, value in fields.items() if value is not None})
        token = _bound.set(merged)
        try:
            yield merged
        finally:
            _bound.reset(token)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set({})


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return repr(value)


class StructuredFormatter(logging.Formatter):
    """Formats a record as one line of JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                # Explicit extras describe the record itself; they win over bound fields.
                entry[key] = value

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            entry["exc_type"] = type(exc).__name__
            entry["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                entry["exc_code"] = code
            for name, value in vars(exc).items():
                if not name.startswith("_") and name != "code":
                    entry.setdefault(f"exc_{name}", value)
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT_LOGGER = "workflow_kernel"
_handler: logging.Handler | None = None
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``workflow_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the workflow_kernel logger.

    Later calls are no-ops until ``reset_logging``.
    """
    global _handler
    with _lock:
        if _handler is not None:
            return
        _handler = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        root = logging.getLogger(_ROOT_LOGGER)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach all handlers so the next configure_logging takes effect. Tests only."""
    global _handler
    with _lock:
        root = logging.getLogger(_ROOT_LOGGER)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _handler = None
