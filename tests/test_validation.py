"""Tests for validation schema compilation and execution."""

import pytest
from conftest import make_form, text_field

from forms_mcp.engine import SchemaCompileError, SubFormRegistry, compile_schema, resolve_references
from forms_mcp.engine.submission import get_error_by_path, issues_to_errors
from forms_mcp.engine.validation import compile_block_schema, parse_date


def number_field(field_id: str, *rules: dict) -> dict:
    return text_field(field_id, type="number", validation=list(rules))


def single_field_schema(field: dict, **kwargs):
    return compile_schema(make_form({"id": "b", "fields": [field]}), **kwargs)


def codes(issues) -> list[tuple[str, str]]:
    return [(issue.path, issue.code) for issue in issues]


@pytest.fixture
def addresses_form():
    """Repeatable addresses group limited to 1..2 instances."""
    return resolve_references(
        make_form(
            {
                "id": "addresses",
                "repeatable": True,
                "repeatableBlockRef": "address-tpl",
                "minInstances": 1,
                "maxInstances": 2,
            },
            {
                "id": "address-tpl",
                "fields": [
                    text_field("street", validation=[{"type": "required", "message": "Street?"}]),
                    text_field("zip", validation=[{"type": "pattern", "value": "^\\d{5}$"}]),
                ],
            },
        ),
        SubFormRegistry(),
    )


class TestRepeatableGroups:
    def test_instance_bounds(self, addresses_form) -> None:
        """Group arrays outside min/max fail at the group path."""
        schema = compile_schema(addresses_form)
        valid = {"street": "Main St", "zip": "75001"}

        assert schema.validate({"addresses": [valid]}) == []
        assert schema.validate({"addresses": [valid, valid]}) == []
        assert codes(schema.validate({"addresses": []})) == [("addresses", "too_short")]
        assert codes(schema.validate({"addresses": [valid] * 3})) == [("addresses", "too_long")]

    def test_missing_group_validates_as_empty(self, addresses_form) -> None:
        schema = compile_schema(addresses_form)
        assert codes(schema.validate({})) == [("addresses", "too_short")]

    def test_instance_field_errors_carry_index(self, addresses_form) -> None:
        schema = compile_schema(addresses_form)
        issues = schema.validate({"addresses": [{"street": "a", "zip": "1"}, {"zip": "75001"}]})

        assert codes(issues) == [("addresses.0.zip", "pattern"), ("addresses.1.street", "required")]
        assert issues[1].message == "Street?"

    def test_missing_member_is_reported_by_field_id(self, addresses_form) -> None:
        """A member key absent from an instance fails under its own id."""
        schema = compile_schema(addresses_form)
        issues = schema.validate({"addresses": [{"zip": "75001"}]})

        assert codes(issues) == [("addresses.0.street", "required")]
        errors = issues_to_errors(issues)
        assert get_error_by_path(errors, "addresses.0.street") == {
            "message": "Street?",
            "type": "required",
        }

    def test_group_schema_shape(self, addresses_form) -> None:
        schema = compile_schema(addresses_form)

        assert list(schema.fields) == []
        group = schema.group_schema("addresses")
        assert list(group.fields) == ["street", "zip"]
        assert group.describe()["minItems"] == 1
        assert group.describe()["maxItems"] == 2
        with pytest.raises(KeyError):
            schema.group_schema("phones")

    def test_zero_min_instances_is_unbounded_below(self) -> None:
        resolved = resolve_references(
            make_form(
                {"id": "rows", "repeatable": True, "repeatableBlockRef": "row", "minInstances": 0},
                {"id": "row", "fields": [text_field("sku")]},
            ),
            SubFormRegistry(),
        )
        assert compile_schema(resolved).validate({"rows": []}) == []


class TestScalarRules:
    def test_pattern(self) -> None:
        """Pattern failures report the rule's message."""
        schema = single_field_schema(
            text_field("zip", validation=[{"type": "pattern", "value": "^\\d{5}$", "message": "5"}])
        )
        assert schema.validate({"zip": "12345"}) == []
        issues = schema.validate({"zip": "1234"})
        assert codes(issues) == [("zip", "pattern")]
        assert issues[0].message == "5"

    def test_empty_value_only_fails_required(self) -> None:
        schema = single_field_schema(
            text_field(
                "code",
                validation=[
                    {"type": "minLength", "value": 3},
                    {"type": "pattern", "value": "^[A-Z]+$"},
                ],
            )
        )
        assert schema.validate({"code": ""}) == []
        assert schema.validate({}) == []
        assert codes(schema.validate({"code": "ab"})) == [("code", "minLength")]

    def test_rules_run_in_declaration_order(self) -> None:
        schema = single_field_schema(
            text_field(
                "name",
                validation=[
                    {"type": "required", "message": "first"},
                    {"type": "minLength", "value": 2},
                ],
            )
        )
        issues = schema.validate({"name": ""})
        assert [issue.message for issue in issues] == ["first"]

    def test_max_length(self) -> None:
        schema = single_field_schema(
            text_field("n", validation=[{"type": "maxLength", "value": 3}])
        )
        assert schema.validate({"n": "abc"}) == []
        assert schema.validate({"n": "abcd"})[0].message == "Must be at most 3 characters"

    def test_required_text_and_lists(self) -> None:
        schema = single_field_schema(text_field("tags", validation=[{"type": "required"}]))
        assert codes(schema.validate({"tags": []})) == [("tags", "required")]
        assert codes(schema.validate({"tags": "   "})) == []
        assert schema.validate({"tags": ["a"]}) == []


class TestNumberFields:
    def test_numeric_strings_are_coerced(self) -> None:
        schema = single_field_schema(number_field("ratio"))
        field_schema = schema.field_schema("ratio")

        assert field_schema.validate("21") == 21
        assert field_schema.validate(" 2.5 ") == 2.5
        assert field_schema.validate("") is None

    def test_coerced_value_is_checked_against_bounds(self) -> None:
        schema = single_field_schema(number_field("age", {"type": "min", "value": 18}))
        assert schema.validate({"age": "21"}) == []
        assert codes(schema.validate({"age": " 2.5 "})) == [("age", "min")]

    def test_bounds(self) -> None:
        schema = single_field_schema(
            number_field("age", {"type": "min", "value": 18}, {"type": "max", "value": 99.5})
        )
        low = schema.validate({"age": 17})
        assert codes(low) == [("age", "min")]
        assert low[0].message == "Must be greater than or equal to 18"
        assert schema.validate({"age": 100})[0].message == "Must be less than or equal to 99.5"

    def test_non_numeric_value_fails_type_check(self) -> None:
        schema = single_field_schema(number_field("age"))
        assert codes(schema.validate({"age": "abc"})) == [("age", "number_type")]
        assert codes(schema.validate({"age": True})) == [("age", "number_type")]

    def test_required_number(self) -> None:
        schema = single_field_schema(number_field("n", {"type": "required"}))
        assert codes(schema.validate({})) == [("n", "required")]
        assert codes(schema.validate({"n": ""})) == [("n", "required")]
        assert schema.validate({"n": 0}) == []


class TestOtherKinds:
    def test_checkbox_required_means_checked(self) -> None:
        schema = single_field_schema(
            text_field("terms", type="checkbox", validation=[{"type": "required"}])
        )
        assert codes(schema.validate({"terms": False})) == [("terms", "required")]
        assert schema.validate({"terms": "true"}) == []
        assert codes(schema.validate({"terms": "yes"})) == [("terms", "bool_type")]

    def test_file_required(self) -> None:
        schema = single_field_schema(
            text_field("upload", type="file", validation=[{"type": "required"}])
        )
        assert codes(schema.validate({"upload": []})) == [("upload", "required")]
        assert schema.validate({"upload": {"name": "id.pdf"}}) == []

    def test_date_bounds(self) -> None:
        schema = single_field_schema(
            text_field(
                "start",
                type="date",
                validation=[
                    {"type": "minDate", "value": "2024-01-01"},
                    {"type": "maxDate", "value": "2024-12-31"},
                ],
            )
        )
        assert schema.validate({"start": "2024-01-01"}) == []
        assert schema.validate({"start": "2024-06-30T10:00:00"}) == []
        assert codes(schema.validate({"start": "2023-12-31"})) == [("start", "minDate")]
        assert codes(schema.validate({"start": "2025-01-01"})) == [("start", "maxDate")]
        assert codes(schema.validate({"start": "soon"})) == [("start", "minDate")]

    def test_parse_date(self) -> None:
        assert parse_date("2024-02-29").isoformat() == "2024-02-29"
        assert parse_date("2024-02-30") is None
        assert parse_date(20240101) is None

    def test_custom_validator(self) -> None:
        field = number_field("n", {"type": "custom", "value": "even", "message": "Must be even"})
        schema = single_field_schema(field, custom_validators={"even": lambda v: v % 2 == 0})

        assert schema.validate({"n": 4}) == []
        issues = schema.validate({"n": 3})
        assert codes(issues) == [("n", "custom")]
        assert issues[0].message == "Must be even"

    def test_action_popin_and_template_fields_are_excluded(self) -> None:
        resolved = resolve_references(
            make_form(
                {
                    "id": "main",
                    "fields": [
                        text_field("name"),
                        {
                            "id": "open",
                            "type": "button",
                            "button": {"variant": "single", "popinBlockId": "dialog"},
                        },
                    ],
                },
                {"id": "dialog", "popin": True, "fields": [text_field("note")]},
            ),
            SubFormRegistry(),
        )
        schema = compile_schema(resolved)
        assert list(schema.fields) == ["name"]

        popin_schema = compile_block_schema(resolved.get_block("dialog"))
        assert list(popin_schema.fields) == ["note"]

    def test_describe(self) -> None:
        schema = single_field_schema(number_field("age", {"type": "min", "value": 1}))
        assert schema.describe() == {
            "fields": {"age": {"type": "number", "fieldType": "number", "rules": ["min"]}},
            "groups": {},
        }


class TestCompileErrors:
    @pytest.mark.parametrize(
        ("rule", "reason"),
        [
            ({"type": "bogus"}, "unknown rule kind"),
            ({"type": "pattern", "value": "("}, "invalid regular expression"),
            ({"type": "minLength", "value": "abc"}, "must be an integer"),
            ({"type": "minLength", "value": -1}, "must not be negative"),
            ({"type": "min"}, "missing required parameter"),
            ({"type": "minDate", "value": "yesterday"}, "ISO-8601"),
            ({"type": "custom", "value": "nope"}, "unknown custom validator"),
        ],
    )
    def test_malformed_rules_abort_compilation(self, rule, reason) -> None:
        with pytest.raises(SchemaCompileError, match=reason) as exc_info:
            single_field_schema(text_field("x", validation=[rule]))
        assert exc_info.value.field_id == "x"
        assert exc_info.value.kind == rule["type"]
