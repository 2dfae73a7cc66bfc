"""
Tests for the shared context schema and SharedContext accessors.

Covers:
- Schema parsing (field types, nested properties)
- Field validation: required, type, length, pattern, bounds, items
- validate_context reporting of undeclared keys
- apply_schema_defaults
- SharedContext: typed getters, merge-only semantics, schema checks
"""

import pytest

from workflow_kernel.domain.context import (
    ContextFieldDefinition,
    ContextSchema,
    SharedContext,
    apply_schema_defaults,
    get_required_fields,
    validate_context,
    validate_context_field,
)
from workflow_kernel.exceptions import ContextValidationError

SCHEMA = ContextSchema.from_dict({
    "version": 2,
    "fields": {
        "clientApproved": {"type": "boolean", "label": "Client approved", "required": True},
        "clientName": {"type": "string", "label": "Client name", "minLength": 2, "maxLength": 10},
        "caseNumber": {"type": "string", "label": "Case number", "pattern": r"^\d{4}-\d+$"},
        "retainer": {"type": "number", "label": "Retainer", "min": 0, "max": 10000, "default": 0},
        "tags": {"type": "array", "label": "Tags", "maxItems": 2, "itemType": "string"},
        "address": {
            "type": "object",
            "label": "Address",
            "properties": {"city": {"type": "string", "label": "City", "required": True}},
        },
    },
})


def codes(key, value):
    return [e.code for e in validate_context_field(key, value, SCHEMA.fields[key])]


class TestSchemaParsing:
    def test_empty_schema_is_none(self):
        assert ContextSchema.from_dict(None) is None
        assert ContextSchema.from_dict({}) is None

    def test_fields_parsed(self):
        assert SCHEMA.version == 2
        assert SCHEMA.fields["clientName"].min_length == 2
        assert SCHEMA.fields["address"].properties["city"].required

    def test_unsupported_type_rejected(self):
        with pytest.raises(ContextValidationError):
            ContextFieldDefinition.from_dict({"type": "date", "label": "When"})

    def test_required_fields(self):
        assert get_required_fields(SCHEMA) == ["clientApproved"]


class TestFieldValidation:
    def test_required_missing(self):
        assert codes("clientApproved", None) == ["REQUIRED"]

    def test_optional_missing_is_valid(self):
        assert codes("clientName", None) == []
        assert codes("clientName", "") == []

    def test_type_mismatch(self):
        assert codes("clientApproved", "yes") == ["INVALID_TYPE"]

    def test_bool_is_not_a_number(self):
        assert codes("retainer", True) == ["INVALID_TYPE"]

    def test_string_length(self):
        assert codes("clientName", "A") == ["MIN_LENGTH"]
        assert codes("clientName", "A" * 11) == ["MAX_LENGTH"]

    def test_pattern(self):
        assert codes("caseNumber", "2024-17") == []
        assert codes("caseNumber", "case 17") == ["INVALID_PATTERN"]

    def test_number_bounds(self):
        assert codes("retainer", -1) == ["MIN_VALUE"]
        assert codes("retainer", 10001) == ["MAX_VALUE"]
        assert codes("retainer", 2500.5) == []

    def test_array_items(self):
        assert codes("tags", ["a", "b", "c"]) == ["MAX_ITEMS"]
        assert codes("tags", ["a", 1]) == ["INVALID_ITEM_TYPE"]

    def test_nested_object(self):
        errors = validate_context_field("address", {}, SCHEMA.fields["address"])
        assert [(e.field, e.code) for e in errors] == [("address.city", "REQUIRED")]


class TestValidateContext:
    def test_valid_context(self):
        result = validate_context({"clientApproved": True, "retainer": 100}, SCHEMA)
        assert result.valid
        assert result.errors == []

    def test_undeclared_key_reported(self):
        result = validate_context({"clientApproved": True, "surprise": 1}, SCHEMA)
        assert not result.valid
        assert [e.code for e in result.errors] == ["UNDEFINED_FIELD"]


class TestDefaults:
    def test_defaults_fill_missing_keys(self):
        assert apply_schema_defaults({}, SCHEMA) == {"retainer": 0}

    def test_existing_values_kept(self):
        assert apply_schema_defaults({"retainer": 50}, SCHEMA) == {"retainer": 50}

    def test_no_schema(self):
        original = {"a": 1}
        result = apply_schema_defaults(original, None)
        assert result == original
        assert result is not original


class TestSharedContext:
    def test_typed_getters(self):
        ctx = SharedContext({"name": "Acme", "paid": True, "amount": 12.5, "docs": [], "meta": {}})
        assert ctx.get_str("name") == "Acme"
        assert ctx.get_bool("paid") is True
        assert ctx.get_number("amount") == 12.5
        assert ctx.get_list("docs") == []
        assert ctx.get_object("meta") == {}

    def test_missing_key_returns_default(self):
        ctx = SharedContext()
        assert ctx.get_bool("paid", False) is False
        assert ctx.get_number("count") is None

    def test_wrong_type_raises(self):
        ctx = SharedContext({"paid": "yes"})
        with pytest.raises(ContextValidationError) as exc_info:
            ctx.get_bool("paid")
        assert exc_info.value.key == "paid"
        assert exc_info.value.code == "CONTEXT_INVALID"

    def test_merge_adds_and_replaces_keys(self):
        ctx = SharedContext({"a": 1, "b": 2})
        ctx.merge({"b": 3, "c": 4})
        assert ctx.to_dict() == {"a": 1, "b": 3, "c": 4}

    def test_merge_checks_declared_keys(self):
        ctx = SharedContext({}, SCHEMA)
        with pytest.raises(ContextValidationError):
            ctx.merge({"retainer": "a lot"})
        assert "retainer" not in ctx

    def test_merge_accepts_undeclared_keys(self):
        ctx = SharedContext({}, SCHEMA)
        ctx.merge({"text_step-1": {"content": "memo"}})
        assert "text_step-1" in ctx

    def test_values_are_copied(self):
        source = {"docs": ["a"]}
        ctx = SharedContext(source)
        source["docs"].append("b")
        exported = ctx.to_dict()
        exported["docs"].append("c")
        assert ctx.get_list("docs") == ["a"]
