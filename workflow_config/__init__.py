"""
workflow_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_engine_settings()`` is the only way services obtain settings.
    No other component reads configuration files or environment
    variables.  YAML template definitions are loaded through
    ``workflow_config.templates``.

Architecture position:
    Configuration -- sits above ``workflow_kernel`` and below
    ``workflow_services``.  The kernel MUST NEVER import from here.

Invariants enforced:
    - Settings are frozen dataclasses; the same YAML always produces the
      same checksum.
    - Environment overrides are limited to the documented variables.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ValueError`` -- unknown keys or wrongly typed values, or an
      unparseable boolean in ``WORKFLOW_NOTIFICATIONS_ENABLED``.

Audit relevance:
    Every call emits a ``WORKFLOW_CONFIG_TRACE`` log entry with the
    source and checksum of the settings in force.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from workflow_config.loader import load_yaml_file, merge_settings, parse_engine_settings
from workflow_config.schema import EngineSettings, NotificationSettings, RuntimeSettings

_logger = logging.getLogger("workflow_kernel.config")

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

SETTINGS_FILE_ENV = "WORKFLOW_SETTINGS_FILE"
NOTIFICATIONS_ENABLED_ENV = "WORKFLOW_NOTIFICATIONS_ENABLED"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_flag(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def get_engine_settings(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """The ONLY public settings entrypoint.

    Resolution order (later wins):
        1. ``workflow_config/defaults.yaml``
        2. ``config_path``, or the file named by WORKFLOW_SETTINGS_FILE
        3. WORKFLOW_NOTIFICATIONS_ENABLED

    Args:
        config_path: Optional YAML override file.
        environ: Environment mapping; defaults to ``os.environ``.
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_FILE)
    sources = [DEFAULTS_FILE.name]

    override_path = config_path
    if override_path is None and env.get(SETTINGS_FILE_ENV):
        override_path = Path(env[SETTINGS_FILE_ENV])
    if override_path is not None:
        data = merge_settings(data, load_yaml_file(Path(override_path)))
        sources.append(str(override_path))

    if NOTIFICATIONS_ENABLED_ENV in env:
        enabled = _parse_flag(NOTIFICATIONS_ENABLED_ENV, env[NOTIFICATIONS_ENABLED_ENV])
        data = merge_settings(data, {"notifications": {"enabled": enabled}})
        sources.append(NOTIFICATIONS_ENABLED_ENV)

    settings = parse_engine_settings(data, source=" + ".join(sources))

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_source": settings.source,
            "checksum": settings.checksum,
            "notifications_enabled": settings.notifications_enabled,
            "branch_decision_required": settings.runtime.branch_decision_required,
        },
    )
    return settings


__all__ = [
    "EngineSettings",
    "NotificationSettings",
    "RuntimeSettings",
    "get_engine_settings",
]
