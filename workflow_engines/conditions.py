"""
workflow_engines.conditions -- Pure condition evaluator.

Responsibility:
    Parse, validate and evaluate step gating conditions against a
    read-only evaluation context.  A condition is either

        simple    {"type": "simple", "field": "workflow.context.x",
                   "operator": "==", "value": true}
        compound  {"type": "compound", "logic": "AND" | "OR",
                   "conditions": [...]}

    nested to any depth.  Field paths are dot-notation resolved against
    the context built by ``build_evaluation_context``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain types and exceptions.

Invariants enforced:
    - Validation is a separate pass: a malformed shape is rejected before
      any field is resolved.
    - ``evaluate_condition`` never raises.  Validation and evaluation
      failures come back as ``EvaluationResult(success=False, error=...)``
      and the caller decides what to do with the step.
    - Numeric comparisons are type-checked: a non-number (or a boolean)
      operand under >, <, >=, <= is an evaluation error, not a falsy result.
    - Equality is strict: True does not equal 1.

Failure modes:
    - ``parse_condition`` raises ConfigValidationError for malformed input.
    - ``ConditionEvaluationError`` is raised internally by operators and
      folded into the result by ``evaluate_condition``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from workflow_engines.tracer import traced_engine
from workflow_kernel.exceptions import ConfigValidationError

OPERATORS: tuple[str, ...] = (
    "==",
    "!=",
    ">",
    "<",
    ">=",
    "<=",
    "contains",
    "startsWith",
    "endsWith",
    "in",
    "notIn",
    "exists",
    "notExists",
    "isEmpty",
    "isNotEmpty",
)

NO_VALUE_OPERATORS: frozenset[str] = frozenset({"exists", "notExists", "isEmpty", "isNotEmpty"})
NUMERIC_OPERATORS: frozenset[str] = frozenset({">", "<", ">=", "<="})


class ConditionEvaluationError(Exception):
    """An operator could not be applied to the resolved operands."""


@dataclass(frozen=True)
class SimpleCondition:
    field: str
    operator: str
    value: Any = None


@dataclass(frozen=True)
class CompoundCondition:
    logic: str
    conditions: tuple[Condition, ...]


Condition = Union[SimpleCondition, CompoundCondition]


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one evaluation.  ``value`` is False whenever ``success`` is."""

    success: bool
    value: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Validation and parsing
# ---------------------------------------------------------------------------


def _collect_errors(raw: Any, path: str, errors: list[str]) -> None:
    if not isinstance(raw, dict):
        errors.append(f"{path}: condition must be an object")
        return

    kind = raw.get("type")
    if kind == "simple":
        field = raw.get("field")
        if not isinstance(field, str) or not field:
            errors.append(f"{path}: simple condition must have a 'field' string")
        operator = raw.get("operator")
        if not operator:
            errors.append(f"{path}: simple condition must have an 'operator'")
        elif operator not in OPERATORS:
            errors.append(f"{path}: unknown operator '{operator}'")
        elif operator not in NO_VALUE_OPERATORS and "value" not in raw:
            errors.append(f"{path}: operator '{operator}' requires a 'value' to be specified")
    elif kind == "compound":
        if raw.get("logic") not in ("AND", "OR"):
            errors.append(f"{path}: compound condition must have logic 'AND' or 'OR'")
        nested = raw.get("conditions")
        if not isinstance(nested, list) or not nested:
            errors.append(f"{path}: compound condition must have a non-empty 'conditions' array")
            return
        for index, child in enumerate(nested):
            _collect_errors(child, f"{path}.conditions[{index}]", errors)
    else:
        errors.append(f"{path}: unknown condition type: {kind!r}")


def validate_condition(raw: Any) -> list[str]:
    """Return every shape error in ``raw``; an empty list means valid."""
    errors: list[str] = []
    _collect_errors(raw, "condition", errors)
    return errors


def _build(raw: dict[str, Any]) -> Condition:
    if raw["type"] == "simple":
        return SimpleCondition(
            field=raw["field"],
            operator=raw["operator"],
            value=raw.get("value"),
        )
    return CompoundCondition(
        logic=raw["logic"],
        conditions=tuple(_build(child) for child in raw["conditions"]),
    )


def parse_condition(raw: Any) -> Condition:
    """Validate and convert a stored condition mapping into typed nodes."""
    errors = validate_condition(raw)
    if errors:
        raise ConfigValidationError(
            f"Invalid condition: {'; '.join(errors)}",
            field_errors=errors,
        )
    return _build(raw)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


def build_evaluation_context(
    *,
    workflow_context: dict[str, Any] | None,
    instance_id: Any,
    instance_status: str,
    instance_created_at: datetime | None,
    step_data: dict[str, Any] | None,
    step_order: int,
    step_action_type: str,
    matter_id: Any = None,
    contact_id: Any = None,
) -> dict[str, Any]:
    """Assemble the object field paths are resolved against.

    ``matter`` and ``contact`` are present only for the bound subject and
    carry its id; their other attributes are supplied by the caller when
    known.
    """
    context: dict[str, Any] = {
        "workflow": {
            "context": dict(workflow_context or {}),
            "instance": {
                "id": str(instance_id) if instance_id is not None else None,
                "status": instance_status,
                "createdAt": instance_created_at.isoformat() if instance_created_at else None,
            },
        },
        "step": {
            "data": dict(step_data or {}),
            "order": step_order,
            "actionType": step_action_type,
        },
    }
    if matter_id is not None:
        context["matter"] = {"id": str(matter_id)}
    if contact_id is not None:
        context["contact"] = {"id": str(contact_id)}
    return context


def resolve_field(path: str, context: dict[str, Any]) -> Any:
    """Walk a dot-notation path; any missing segment resolves to None."""
    value: Any = context
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit():
            index = int(part)
            value = value[index] if index < len(value) else None
        else:
            return None
    return value


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def apply_operator(operator: str, field_value: Any, compare_value: Any) -> bool:
    """Apply one operator.  Raises ConditionEvaluationError on bad operands."""
    if operator == "==":
        return _strict_equal(field_value, compare_value)
    if operator == "!=":
        return not _strict_equal(field_value, compare_value)

    if operator in NUMERIC_OPERATORS:
        if not _is_number(field_value) or not _is_number(compare_value):
            raise ConditionEvaluationError(f"Operator '{operator}' requires numeric values")
        if operator == ">":
            return field_value > compare_value
        if operator == "<":
            return field_value < compare_value
        if operator == ">=":
            return field_value >= compare_value
        return field_value <= compare_value

    if operator in ("contains", "startsWith", "endsWith"):
        if field_value is None:
            return False
        haystack, needle = _text(field_value), _text(compare_value)
        if operator == "contains":
            return needle in haystack
        if operator == "startsWith":
            return haystack.startswith(needle)
        return haystack.endswith(needle)

    if operator in ("in", "notIn"):
        if not isinstance(compare_value, (list, tuple)):
            raise ConditionEvaluationError(
                f"Operator '{operator}' requires an array as comparison value"
            )
        found = any(_strict_equal(field_value, item) for item in compare_value)
        return found if operator == "in" else not found

    if operator == "exists":
        return field_value is not None
    if operator == "notExists":
        return field_value is None
    if operator == "isEmpty":
        return _is_empty(field_value)
    if operator == "isNotEmpty":
        return not _is_empty(field_value)

    raise ConditionEvaluationError(f"Unknown operator: {operator}")


def _evaluate(condition: Condition, context: dict[str, Any]) -> bool:
    if isinstance(condition, SimpleCondition):
        field_value = resolve_field(condition.field, context)
        try:
            return apply_operator(condition.operator, field_value, condition.value)
        except ConditionEvaluationError as exc:
            raise ConditionEvaluationError(
                f"Error evaluating operator '{condition.operator}' on '{condition.field}': {exc}"
            ) from exc

    results = [_evaluate(child, context) for child in condition.conditions]
    if condition.logic == "AND":
        return all(results)
    return any(results)


@traced_engine("conditions", "1.0", fingerprint_fields=("condition",))
def evaluate_condition(condition: Any, context: dict[str, Any]) -> EvaluationResult:
    """Evaluate a raw or parsed condition against ``context``.

    Returns:
        EvaluationResult(success=True, value=<verdict>) on success, or
        EvaluationResult(success=False, value=False, error=<message>) when
        the condition is malformed or an operator rejects its operands.
    """
    if isinstance(condition, (SimpleCondition, CompoundCondition)):
        parsed = condition
    else:
        errors = validate_condition(condition)
        if errors:
            return EvaluationResult(success=False, value=False, error="; ".join(errors))
        parsed = _build(condition)

    try:
        return EvaluationResult(success=True, value=_evaluate(parsed, context))
    except ConditionEvaluationError as exc:
        return EvaluationResult(success=False, value=False, error=str(exc))
