"""
YAML template definitions (``workflow_config.templates``).

Responsibility
--------------
Reads workflow template definitions authored as YAML (camelCase keys,
the same shape the template editor produces) into ``TemplateDraft``
objects for ``WorkflowTemplateService.create_template``.  The bundled
``library/`` directory ships reference templates.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError``.
* Invalid template shape  -> ``ConfigValidationError`` from the draft
  parsers.
"""

from __future__ import annotations

from pathlib import Path

from workflow_config.loader import load_yaml_file
from workflow_kernel.domain.template import TemplateDraft

LIBRARY_DIR = Path(__file__).parent / "library"


def load_template_draft(path: Path | str) -> TemplateDraft:
    """Parse one YAML template file."""
    return TemplateDraft.from_dict(load_yaml_file(Path(path)))


def load_template_library(directory: Path | None = None) -> list[TemplateDraft]:
    """Every ``*.yaml`` template in ``directory`` (default: bundled library), by filename."""
    root = directory or LIBRARY_DIR
    return [load_template_draft(p) for p in sorted(root.glob("*.yaml"))]
