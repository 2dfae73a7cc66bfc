"""
workflow_engines.tracer -- Invocation tracer emitting WORKFLOW_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps a pure engine function and emits one
    structured log record per call with engine_name, engine_version,
    input_fingerprint and duration_ms.

Architecture position:
    Engines -- support code for the pure layer.  Emits a log record only;
    uses its own logger namespace (``workflow_kernel.engines.tracer``) so
    engines do not depend on the kernel logging setup.

Invariants enforced:
    - The fingerprint is deterministic: mappings are canonicalized with
      sorted keys, enums by value, and the digest is SHA-256 truncated
      to 16 hex characters.
    - The wrapped function's arguments are read, never mutated.

Failure modes:
    - Exceptions raised by the wrapped function propagate unchanged; no
      trace record is emitted for a failed call.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

_logger = logging.getLogger("workflow_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """Deterministic 16-char SHA-256 prefix over the selected arguments.

    Missing fields are recorded as "null".
    """
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits WORKFLOW_ENGINE_TRACE for pure engine calls.

    Args:
        engine_name: Engine identifier (e.g. "conditions").
        engine_version: Engine version (e.g. "1.0").
        fingerprint_fields: Parameter names (positional or keyword) whose
            values feed the input fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "WORKFLOW_ENGINE_TRACE",
                extra={
                    "trace_type": "WORKFLOW_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
