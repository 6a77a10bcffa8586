"""Tests for case context tracking, form contexts and default values."""

import pytest
from conftest import make_form, text_field

from forms_mcp.engine import (
    FieldDescriptor,
    FieldType,
    SubFormRegistry,
    build_form_context,
    build_instance_context,
    evaluate_default_value,
    extract_block_defaults,
    extract_default_values,
    get_discriminant_fields,
    has_context_changed,
    initialize_case_context,
    resolve_references,
    update_case_context,
)


@pytest.fixture
def discriminant_form():
    return make_form(
        {
            "id": "case",
            "fields": [
                text_field("country", type="dropdown", isDiscriminant=True),
                text_field("customerType", type="radio", isDiscriminant=True),
                text_field("comment"),
            ],
        }
    )


class TestContextChange:
    def test_same_context_is_unchanged(self) -> None:
        context = {"country": "FR", "tags": ["a"], "flag": None}
        assert has_context_changed(context, dict(context)) is False

    def test_discriminant_change_is_detected(self, discriminant_form) -> None:
        """Only discriminant fields feed the case context."""
        discriminants = get_discriminant_fields(discriminant_form)
        previous = update_case_context({}, {"country": "FR", "comment": "x"}, discriminants)

        same = update_case_context(previous, {"country": "FR", "comment": "y"}, discriminants)
        assert has_context_changed(previous, same) is False

        moved = update_case_context(previous, {"country": "US", "comment": "y"}, discriminants)
        assert has_context_changed(previous, moved) is True
        assert moved == {"country": "US"}

    def test_missing_key_differs_from_none(self) -> None:
        assert has_context_changed({}, {"a": None}) is True
        assert has_context_changed({"a": None}, {}) is True

    def test_bool_is_not_int(self) -> None:
        assert has_context_changed({"a": True}, {"a": 1}) is True
        assert has_context_changed({"a": 1}, {"a": 1.0}) is False

    def test_lists_compare_element_wise(self) -> None:
        assert has_context_changed({"t": ["a", "b"]}, {"t": ["a", "b"]}) is False
        assert has_context_changed({"t": ["a", "b"]}, {"t": ["a", "c"]}) is True
        assert has_context_changed({"t": ["a"]}, {"t": ["a", "b"]}) is True


class TestCaseContextUpdates:
    def test_missing_discriminant_keeps_previous_value(self, discriminant_form) -> None:
        discriminants = get_discriminant_fields(discriminant_form)
        previous = {"country": "FR", "customerType": "company", "caseId": 7}
        updated = update_case_context(previous, {"customerType": "individual"}, discriminants)

        assert updated == {"country": "FR", "customerType": "individual", "caseId": 7}
        assert previous["customerType"] == "company"

    def test_object_values_are_ignored(self, discriminant_form) -> None:
        discriminants = get_discriminant_fields(discriminant_form)
        updated = update_case_context({"country": "FR"}, {"country": {"code": "US"}}, discriminants)
        assert updated == {"country": "FR"}

    def test_nested_value_lookup(self) -> None:
        field = FieldDescriptor(id="customer.type", type=FieldType.RADIO, is_discriminant=True)
        updated = update_case_context({}, {"customer": {"type": "company"}}, [field])
        assert updated == {"customer.type": "company"}

    def test_discriminants_in_document_order(self, discriminant_form) -> None:
        ids = [field.id for field in get_discriminant_fields(discriminant_form)]
        assert ids == ["country", "customerType"]

    def test_initialize_keeps_scalars_and_arrays(self) -> None:
        prefill = {"country": "FR", "age": 30, "tags": ["x"], "address": {"city": "Lyon"}}
        assert initialize_case_context(prefill) == {"country": "FR", "age": 30, "tags": ["x"]}
        assert initialize_case_context(None) == {}


class TestFormContext:
    def test_values_win_over_case_attributes(self) -> None:
        context = build_form_context({"country": "US", "name": "Ada"}, {"country": "FR", "id": 1})

        assert context["country"] == "US"
        assert context["id"] == 1
        assert context["formData"] == {"country": "US", "name": "Ada"}
        assert context["caseContext"] == {"country": "FR", "id": 1}

    def test_instance_context(self) -> None:
        base = build_form_context({"email": "a@b.c"})
        rows = [{"rows.sku": "A"}, {"rows.sku": "B"}]
        context = build_instance_context(base, "rows", 1, rows)

        assert context["sku"] == "B"
        assert context["rows"] == rows
        assert context["email"] == "a@b.c"
        assert (context["@index"], context["@first"], context["@last"]) == (1, False, True)


class TestDefaultValues:
    def test_template_defaults_are_coerced_by_kind(self) -> None:
        context = {
            "count": 42,
            "ratio": "3.5",
            "email": "",
            "choice": "2",
            "caseContext": {"c": "FR"},
        }
        assert evaluate_default_value("{{caseContext.c}}", FieldType.TEXT, context) == "FR"
        assert evaluate_default_value("{{count}}", FieldType.NUMBER, context) == 42
        assert evaluate_default_value("{{ratio}}", FieldType.NUMBER, context) == 3.5
        assert evaluate_default_value("{{nothing}}", FieldType.NUMBER, context) == 0
        assert evaluate_default_value("{{isEmpty email}}", FieldType.CHECKBOX, context) is True
        assert evaluate_default_value("{{choice}}", FieldType.RADIO, context) == 2
        assert evaluate_default_value("x{{choice}}", FieldType.RADIO, context) == "x2"
        assert evaluate_default_value("{{nothing}}", FieldType.FILE, context) is None

    def test_literal_defaults_pass_through(self) -> None:
        assert evaluate_default_value(5, FieldType.NUMBER) == 5
        assert evaluate_default_value("plain", FieldType.TEXT) == "plain"
        assert evaluate_default_value(False, FieldType.CHECKBOX) is False

    def test_kind_empty_values(self) -> None:
        descriptor = make_form(
            {
                "id": "b",
                "fields": [
                    text_field("name"),
                    text_field("agree", type="checkbox"),
                    text_field("qty", type="number"),
                    text_field("doc", type="file"),
                    text_field("nickname", defaultValue=None),
                    {
                        "id": "open",
                        "type": "button",
                        "button": {"variant": "single", "popinBlockId": "p"},
                    },
                ],
            },
            {"id": "p", "popin": True, "fields": [text_field("note", defaultValue="n")]},
        )
        assert extract_default_values(descriptor) == {
            "name": "",
            "agree": False,
            "qty": 0,
            "doc": None,
            "nickname": None,
        }

    def test_defaults_use_the_form_context(self) -> None:
        descriptor = make_form(
            {"id": "b", "fields": [text_field("country", defaultValue="{{caseContext.country}}")]}
        )
        context = build_form_context({}, {"country": "DE"})
        assert extract_default_values(descriptor, context) == {"country": "DE"}

    def test_repeatable_groups(self) -> None:
        """Groups seed one instance when a member has a default, else []."""
        resolved = resolve_references(
            make_form(
                {"id": "rows", "repeatable": True, "repeatableBlockRef": "row"},
                {"id": "row", "fields": [text_field("label", defaultValue="Row {{@index}}")]},
                {"id": "tags", "repeatable": True, "repeatableBlockRef": "tag"},
                {"id": "tag", "fields": [text_field("value")]},
            ),
            SubFormRegistry(),
        )
        assert extract_default_values(resolved) == {"rows": [{"label": "Row 0"}], "tags": []}

    def test_popin_block_defaults(self) -> None:
        """A popin is seeded on its own, from the context it opens with."""
        descriptor = make_form(
            {"id": "main", "fields": [text_field("name")]},
            {
                "id": "contact-popin",
                "popin": True,
                "fields": [
                    text_field("contactName", defaultValue="{{name}}"),
                    text_field("urgent", type="checkbox"),
                    text_field("phone"),
                ],
            },
        )
        popin = descriptor.get_block("contact-popin")

        assert extract_block_defaults(popin, {"name": "Ada"}) == {
            "contactName": "Ada",
            "urgent": False,
            "phone": "",
        }
        assert extract_block_defaults(popin) == {"contactName": "", "urgent": False, "phone": ""}
