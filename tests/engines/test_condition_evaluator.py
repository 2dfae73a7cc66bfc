"""
Tests for the pure condition evaluator.

Covers:
- validate_condition / parse_condition shape checks
- Field resolution (dot paths, list indices, missing segments)
- Every operator, including type errors that become evaluation failures
- Compound AND / OR nesting
- build_evaluation_context layout
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from workflow_engines.conditions import (
    OPERATORS,
    CompoundCondition,
    SimpleCondition,
    apply_operator,
    build_evaluation_context,
    evaluate_condition,
    parse_condition,
    resolve_field,
    validate_condition,
)
from workflow_kernel.exceptions import ConfigValidationError


def simple(field, operator, value=None, with_value=True):
    raw = {"type": "simple", "field": field, "operator": operator}
    if with_value:
        raw["value"] = value
    return raw


CONTEXT = {
    "workflow": {
        "context": {
            "clientApproved": True,
            "retainer": 1500,
            "clientName": "Acme Holdings",
            "documents": ["ID", "Proof of address"],
            "notes": "",
            "count": 0,
        },
        "instance": {"status": "ACTIVE"},
    },
    "step": {"order": 2, "actionType": "TASK", "data": {}},
}


class TestValidation:
    def test_valid_simple(self):
        assert validate_condition(simple("workflow.context.retainer", ">", 0)) == []

    def test_value_optional_for_presence_operators(self):
        assert validate_condition(simple("x", "exists", with_value=False)) == []

    def test_value_required_for_comparisons(self):
        errors = validate_condition(simple("x", "==", with_value=False))
        assert errors == ["condition: operator '==' requires a 'value' to be specified"]

    def test_unknown_operator(self):
        assert "unknown operator" in validate_condition(simple("x", "~=", 1))[0]

    def test_missing_field(self):
        errors = validate_condition({"type": "simple", "operator": "exists"})
        assert "field" in errors[0]

    def test_unknown_type(self):
        assert validate_condition({"type": "fuzzy"}) == ["condition: unknown condition type: 'fuzzy'"]

    def test_not_an_object(self):
        assert validate_condition("x == 1") == ["condition: condition must be an object"]

    def test_compound_requires_logic_and_children(self):
        errors = validate_condition({"type": "compound", "logic": "XOR", "conditions": []})
        assert len(errors) == 2

    def test_nested_errors_carry_path(self):
        errors = validate_condition({
            "type": "compound",
            "logic": "AND",
            "conditions": [simple("a", "exists", with_value=False), {"type": "simple"}],
        })
        assert all(e.startswith("condition.conditions[1]") for e in errors)

    def test_parse_builds_typed_nodes(self):
        parsed = parse_condition({
            "type": "compound",
            "logic": "OR",
            "conditions": [simple("a", "==", 1), simple("b", "exists", with_value=False)],
        })
        assert isinstance(parsed, CompoundCondition)
        assert parsed.conditions[0] == SimpleCondition(field="a", operator="==", value=1)

    def test_parse_raises_on_invalid(self):
        with pytest.raises(ConfigValidationError):
            parse_condition({"type": "simple"})


class TestResolveField:
    def test_nested_path(self):
        assert resolve_field("workflow.context.retainer", CONTEXT) == 1500

    def test_list_index(self):
        assert resolve_field("workflow.context.documents.1", CONTEXT) == "Proof of address"

    def test_list_index_out_of_range(self):
        assert resolve_field("workflow.context.documents.9", CONTEXT) is None

    def test_missing_segment(self):
        assert resolve_field("workflow.context.missing.deeper", CONTEXT) is None

    def test_path_through_scalar(self):
        assert resolve_field("workflow.context.retainer.amount", CONTEXT) is None


class TestOperators:
    def test_operator_catalogue(self):
        assert len(OPERATORS) == 15

    @pytest.mark.parametrize(
        "operator,field_value,compare,expected",
        [
            ("==", 1, 1, True),
            ("==", True, 1, False),
            ("==", 1, True, False),
            ("!=", True, 1, True),
            ("!=", "a", "a", False),
            (">", 5, 3, True),
            ("<", 5, 3, False),
            (">=", 3, 3, True),
            ("<=", 2.5, 3, True),
            ("contains", "Acme Holdings", "Hold", True),
            ("contains", None, "x", False),
            ("startsWith", "Acme", "Ac", True),
            ("endsWith", "Acme", "me", True),
            ("endsWith", None, "me", False),
            ("in", "b", ["a", "b"], True),
            ("in", True, [1], False),
            ("notIn", "c", ["a", "b"], True),
            ("exists", 0, None, True),
            ("exists", None, None, False),
            ("notExists", None, None, True),
            ("isEmpty", "", None, True),
            ("isEmpty", [], None, True),
            ("isEmpty", 0, None, False),
            ("isNotEmpty", {"a": 1}, None, True),
        ],
    )
    def test_operator(self, operator, field_value, compare, expected):
        assert apply_operator(operator, field_value, compare) is expected

    def test_contains_on_bool_uses_lowercase_text(self):
        assert apply_operator("contains", True, "tru")


class TestEvaluateCondition:
    def test_true_verdict(self):
        result = evaluate_condition(simple("workflow.context.clientApproved", "==", True), CONTEXT)
        assert result.success
        assert result.value is True
        assert result.error is None

    def test_false_verdict(self):
        result = evaluate_condition(simple("workflow.context.retainer", "<", 100), CONTEXT)
        assert result.success
        assert result.value is False

    def test_numeric_operator_on_string_is_an_error(self):
        result = evaluate_condition(simple("workflow.context.clientName", ">", 3), CONTEXT)
        assert not result.success
        assert result.value is False
        assert "requires numeric values" in result.error

    def test_numeric_operator_on_missing_field_is_an_error(self):
        result = evaluate_condition(simple("workflow.context.nothing", ">=", 1), CONTEXT)
        assert not result.success

    def test_bool_is_not_numeric(self):
        result = evaluate_condition(simple("workflow.context.clientApproved", ">", 0), CONTEXT)
        assert not result.success

    def test_in_requires_array(self):
        result = evaluate_condition(simple("workflow.context.clientName", "in", "Acme"), CONTEXT)
        assert not result.success
        assert "array" in result.error

    def test_malformed_condition_never_raises(self):
        result = evaluate_condition({"type": "simple", "field": "x"}, CONTEXT)
        assert not result.success
        assert result.value is False

    def test_compound_and_or(self):
        condition = {
            "type": "compound",
            "logic": "AND",
            "conditions": [
                simple("workflow.context.clientApproved", "==", True),
                {
                    "type": "compound",
                    "logic": "OR",
                    "conditions": [
                        simple("workflow.context.retainer", ">", 5000),
                        simple("workflow.context.documents", "isNotEmpty", with_value=False),
                    ],
                },
            ],
        }
        assert evaluate_condition(condition, CONTEXT).value is True

        condition["logic"] = "AND"
        condition["conditions"][0] = simple("workflow.context.notes", "isNotEmpty", with_value=False)
        assert evaluate_condition(condition, CONTEXT).value is False

    def test_accepts_parsed_condition(self):
        parsed = parse_condition(simple("step.order", "==", 2))
        assert evaluate_condition(parsed, CONTEXT).value is True


class TestBuildEvaluationContext:
    def test_layout(self):
        instance_id = uuid4()
        matter_id = uuid4()
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        context = build_evaluation_context(
            workflow_context={"paid": True},
            instance_id=instance_id,
            instance_status="ACTIVE",
            instance_created_at=created,
            step_data={"notes": "x"},
            step_order=4,
            step_action_type="TASK",
            matter_id=matter_id,
        )
        assert resolve_field("workflow.context.paid", context) is True
        assert resolve_field("workflow.instance.id", context) == str(instance_id)
        assert resolve_field("workflow.instance.createdAt", context) == created.isoformat()
        assert resolve_field("step.data.notes", context) == "x"
        assert resolve_field("step.order", context) == 4
        assert resolve_field("matter.id", context) == str(matter_id)
        assert "contact" not in context

    def test_context_is_copied(self):
        source = {"paid": False}
        context = build_evaluation_context(
            workflow_context=source,
            instance_id=None,
            instance_status="ACTIVE",
            instance_created_at=None,
            step_data=None,
            step_order=0,
            step_action_type="TASK",
        )
        context["workflow"]["context"]["paid"] = True
        assert source == {"paid": False}
