"""
Shared workflow context: schema and typed accessors.

Responsibility:
    A template may declare a context schema listing the facts its steps
    publish (``clientApproved``, ``documentCount``, ...), their types,
    bounds and defaults.  This module validates values against such a
    schema and wraps an instance's context map in ``SharedContext``,
    a merge-only store with type-checked accessors.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Merge-only: ``SharedContext.merge`` adds or replaces individual keys;
      there is no wholesale replacement and no deletion.
    - Keys declared in the schema must hold values of the declared type.
      Undeclared keys are accepted by ``merge`` (handlers publish
      step-scoped keys such as ``text_<stepId>``) and reported by
      ``validate_context``.

Failure modes:
    - ContextValidationError from typed accessors and ``merge``.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Iterator

from workflow_kernel.exceptions import ContextValidationError

FIELD_TYPES = ("string", "number", "boolean", "array", "object")


@dataclass(frozen=True)
class ContextFieldDefinition:
    type: str
    label: str
    description: str | None = None
    required: bool = False
    default: Any = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    min_items: int | None = None
    max_items: int | None = None
    item_type: str | None = None
    properties: dict[str, ContextFieldDefinition] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ContextFieldDefinition:
        field_type = raw.get("type")
        if field_type not in FIELD_TYPES:
            raise ContextValidationError(
                str(raw.get("label", "?")), f"unsupported field type {field_type!r}"
            )
        return cls(
            type=field_type,
            label=raw.get("label") or "",
            description=raw.get("description"),
            required=bool(raw.get("required", False)),
            default=raw.get("default"),
            min_length=raw.get("minLength"),
            max_length=raw.get("maxLength"),
            pattern=raw.get("pattern"),
            min=raw.get("min"),
            max=raw.get("max"),
            min_items=raw.get("minItems"),
            max_items=raw.get("maxItems"),
            item_type=raw.get("itemType"),
            properties={
                key: cls.from_dict(value)
                for key, value in (raw.get("properties") or {}).items()
            },
        )


@dataclass(frozen=True)
class ContextSchema:
    fields: dict[str, ContextFieldDefinition]
    version: int | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> ContextSchema | None:
        if not raw:
            return None
        return cls(
            fields={
                key: ContextFieldDefinition.from_dict(value)
                for key, value in (raw.get("fields") or {}).items()
            },
            version=raw.get("version"),
        )


@dataclass(frozen=True)
class ContextFieldError:
    field: str
    message: str
    code: str


@dataclass(frozen=True)
class ContextValidationResult:
    valid: bool
    errors: list[ContextFieldError]


def _type_of(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def validate_context_field(
    key: str,
    value: Any,
    definition: ContextFieldDefinition,
) -> list[ContextFieldError]:
    """Validate one value against its field definition."""
    label = definition.label or key
    if _is_empty(value):
        if definition.required:
            return [ContextFieldError(key, f"{label} is required", "REQUIRED")]
        return []

    if _type_of(value) != definition.type:
        return [
            ContextFieldError(key, f"{label} must be a {definition.type}", "INVALID_TYPE")
        ]

    errors: list[ContextFieldError] = []
    if definition.type == "string":
        if definition.min_length and len(value) < definition.min_length:
            errors.append(ContextFieldError(
                key, f"{label} must be at least {definition.min_length} characters", "MIN_LENGTH",
            ))
        if definition.max_length and len(value) > definition.max_length:
            errors.append(ContextFieldError(
                key, f"{label} must be at most {definition.max_length} characters", "MAX_LENGTH",
            ))
        if definition.pattern and not re.search(definition.pattern, value):
            errors.append(ContextFieldError(key, f"{label} format is invalid", "INVALID_PATTERN"))
    elif definition.type == "number":
        if definition.min is not None and value < definition.min:
            errors.append(ContextFieldError(
                key, f"{label} must be at least {definition.min}", "MIN_VALUE",
            ))
        if definition.max is not None and value > definition.max:
            errors.append(ContextFieldError(
                key, f"{label} must be at most {definition.max}", "MAX_VALUE",
            ))
    elif definition.type == "array":
        if definition.min_items and len(value) < definition.min_items:
            errors.append(ContextFieldError(
                key, f"{label} must have at least {definition.min_items} items", "MIN_ITEMS",
            ))
        if definition.max_items and len(value) > definition.max_items:
            errors.append(ContextFieldError(
                key, f"{label} must have at most {definition.max_items} items", "MAX_ITEMS",
            ))
        if definition.item_type:
            for item in value:
                if _type_of(item) != definition.item_type:
                    errors.append(ContextFieldError(
                        key, f"{label} items must be {definition.item_type}", "INVALID_ITEM_TYPE",
                    ))
                    break
    elif definition.type == "object":
        for sub_key, sub_def in definition.properties.items():
            errors.extend(
                validate_context_field(f"{key}.{sub_key}", value.get(sub_key), sub_def)
            )
    return errors


def validate_context(
    context: dict[str, Any],
    schema: ContextSchema,
) -> ContextValidationResult:
    """Validate a whole context map, including keys the schema does not declare."""
    errors: list[ContextFieldError] = []
    for key, definition in schema.fields.items():
        errors.extend(validate_context_field(key, context.get(key), definition))
    for key in context:
        if key not in schema.fields:
            errors.append(ContextFieldError(
                key, f'Field "{key}" is not defined in schema', "UNDEFINED_FIELD",
            ))
    return ContextValidationResult(valid=not errors, errors=errors)


def apply_schema_defaults(
    context: dict[str, Any],
    schema: ContextSchema | None,
) -> dict[str, Any]:
    """Return a copy of ``context`` with schema defaults filled in for missing keys."""
    result = dict(context)
    if schema is None:
        return result
    for key, definition in schema.fields.items():
        if key not in result and definition.default is not None:
            result[key] = copy.deepcopy(definition.default)
    return result


def get_required_fields(schema: ContextSchema) -> list[str]:
    return [key for key, definition in schema.fields.items() if definition.required]


class SharedContext:
    """
    Merge-only view over an instance's shared context map.

    Typed getters raise ContextValidationError when a present value has
    the wrong type, so callers never branch on ad hoc casts.
    """

    def __init__(self, values: dict[str, Any] | None = None, schema: ContextSchema | None = None):
        self._values: dict[str, Any] = copy.deepcopy(values or {})
        self._schema = schema

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def _typed(self, key: str, expected: str, default: Any) -> Any:
        if key not in self._values or self._values[key] is None:
            return default
        value = self._values[key]
        if _type_of(value) != expected:
            raise ContextValidationError(key, f"expected {expected}, found {_type_of(value)}")
        return value

    def get_str(self, key: str, default: str | None = None) -> str | None:
        return self._typed(key, "string", default)

    def get_bool(self, key: str, default: bool | None = None) -> bool | None:
        return self._typed(key, "boolean", default)

    def get_number(self, key: str, default: float | None = None) -> float | None:
        return self._typed(key, "number", default)

    def get_list(self, key: str, default: list | None = None) -> list | None:
        return self._typed(key, "array", default)

    def get_object(self, key: str, default: dict | None = None) -> dict | None:
        return self._typed(key, "object", default)

    def merge(self, updates: dict[str, Any]) -> None:
        """Apply key-level updates, checking declared keys against the schema."""
        if self._schema is not None:
            for key, value in updates.items():
                definition = self._schema.fields.get(key)
                if definition is None:
                    continue
                errors = validate_context_field(key, value, definition)
                if errors:
                    raise ContextValidationError(key, errors[0].message)
        for key, value in updates.items():
            self._values[key] = copy.deepcopy(value)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._values)
