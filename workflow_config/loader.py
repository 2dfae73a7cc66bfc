"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen dataclasses of
``workflow_config.schema``.  Services never call this directly; runtime
configuration flows through ``workflow_config.get_engine_settings()``.

Invariants enforced
-------------------
* Unknown keys are rejected so a misspelt setting never silently falls
  back to its default.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types or unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import EngineSettings, NotificationSettings, RuntimeSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def _parse_section(cls, data: Any, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section '{section}' must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    defaults = cls()
    for key, value in data.items():
        expected = type(getattr(defaults, key))
        if expected is int and isinstance(value, bool):
            raise ValueError(f"{section}.{key} must be an integer")
        if not isinstance(value, expected):
            raise ValueError(f"{section}.{key} must be {expected.__name__}, got {value!r}")
    return cls(**data)


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Section-wise merge; keys in ``override`` win."""
    merged = {key: dict(value or {}) for key, value in base.items()}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def parse_engine_settings(data: dict[str, Any], *, source: str = "<dict>") -> EngineSettings:
    """Parse an ``EngineSettings`` from a ``{notifications, runtime}`` mapping."""
    unknown = sorted(set(data) - {"notifications", "runtime"})
    if unknown:
        raise ValueError(f"Unknown settings sections: {', '.join(unknown)}")
    runtime = _parse_section(RuntimeSettings, data.get("runtime"), "runtime")
    if runtime.automation_log_limit < 1:
        raise ValueError("runtime.automation_log_limit must be >= 1")
    return EngineSettings(
        notifications=_parse_section(
            NotificationSettings, data.get("notifications"), "notifications"
        ),
        runtime=runtime,
        source=source,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
