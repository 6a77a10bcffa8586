"""MCP server and tool tests.

Two layers:

1. **Protocol**: the server is started as a subprocess and driven over stdio
   by an MCP ClientSession, exactly as an MCP client would use it.
2. **Tools**: tool functions are called directly with a mock context whose
   lifespan context is an AppContext loaded from the built-in templates.
"""

import json
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pytest
from conftest import ScriptedRuleProvider
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from forms_mcp.engine import RuleDelta, RuleProviderError
from forms_mcp.tools import (
    compile_schema_tool,
    evaluate_form_status,
    evaluate_template,
    extract_defaults,
    fetch_rules,
    get_form_info,
    list_forms,
    merge_rules_tool,
    rehydrate_form,
    render_submission_payload,
    resolve_form,
    update_case_context_tool,
    validate_form_values,
)

EXPECTED_TOOLS = {
    "list_forms",
    "get_form_info",
    "resolve_form",
    "merge_rules",
    "compile_schema",
    "validate_form_values",
    "extract_defaults",
    "update_case_context",
    "evaluate_template",
    "evaluate_form_status",
    "render_submission_payload",
    "fetch_rules",
    "rehydrate_form",
}

VALID_ONBOARDING = {
    "customerType": "individual",
    "fullName": "Ada Lovelace",
    "country": "FR",
    "email": "ada@example.com",
    "addressLine": "1 rue de Rivoli",
    "addresses": [{"street": "Main St"}],
}


@asynccontextmanager
async def get_mcp_client() -> AsyncIterator[ClientSession]:
    """MCP client connected to `python -m forms_mcp` over stdio."""
    server_params = StdioServerParameters(
        command=sys.executable,
        args=["-m", "forms_mcp"],
        env={**os.environ, "FORMS_LOG_LEVEL": "WARNING"},
    )

    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()
            yield session


def email_rules(context):
    """Rule provider answer: US cases cap the email length."""
    if context.get("country") != "US":
        return RuleDelta()
    return RuleDelta.model_validate(
        {"fields": [{"id": "email", "validation": [{"type": "maxLength", "value": 5}]}]}
    )


# =============================================================================
# Protocol
# =============================================================================


class TestMCPServerHealth:
    """Smoke tests over the MCP protocol."""

    async def test_server_exposes_all_tools(self) -> None:
        async with get_mcp_client() as client:
            tools = await client.list_tools()
            assert {tool.name for tool in tools.tools} == EXPECTED_TOOLS

    async def test_resolve_over_protocol(self) -> None:
        async with get_mcp_client() as client:
            result = await client.call_tool("resolve_form", {"form": "loan-application"})
            payload = json.loads(result.content[0].text)

            assert payload["status"] == "success"
            block_ids = [block["id"] for block in payload["descriptor"]["blocks"]]
            assert "person-identity_coapplicant" in block_ids


# =============================================================================
# Discovery
# =============================================================================


class TestDiscovery:
    async def test_list_forms_json(self, mock_context) -> None:
        forms = json.loads(await list_forms(ctx=mock_context))
        assert [form["id"] for form in forms] == ["customer-onboarding", "loan-application"]
        assert forms[1]["blocks"] == 3

    async def test_list_forms_markdown(self, mock_context) -> None:
        result = await list_forms(format="markdown", ctx=mock_context)
        assert result.startswith("## Available Forms (2)")
        assert "**loan-application**" in result

    async def test_get_form_info(self, mock_context) -> None:
        info = await get_form_info(form="customer-onboarding", ctx=mock_context)
        assert info["discriminantFields"] == ["customerType", "country"]

        markdown = await get_form_info(
            form="customer-onboarding", format="markdown", ctx=mock_context
        )
        assert markdown.startswith("# Form: customer-onboarding")
        assert "- **billing-address** (Billing address) - sub-form: address" in markdown

    async def test_get_form_info_not_found(self, mock_context) -> None:
        result = await get_form_info(form="nope", ctx=mock_context)
        assert result["status"] == "failure"
        assert result["error"] == "Form not found: nope"
        assert result["available_forms"] == ["customer-onboarding", "loan-application"]


# =============================================================================
# Engine tools
# =============================================================================


class TestResolveAndMerge:
    async def test_resolve_registered_form(self, mock_context) -> None:
        result = await resolve_form(form="loan-application", ctx=mock_context)

        assert result["status"] == "success"
        assert [block["id"] for block in result["descriptor"]["blocks"]] == [
            "loan",
            "person-identity_applicant",
            "address-fields_applicant",
            "person-identity_coapplicant",
            "address-fields_coapplicant",
        ]

    async def test_resolve_inline_descriptor(self, mock_context) -> None:
        descriptor = {"blocks": [{"id": "home", "subFormRef": "address"}]}
        result = await resolve_form(descriptor=descriptor, ctx=mock_context)
        fields = result["descriptor"]["blocks"][0]["fields"]
        assert [field["id"] for field in fields] == ["addressLine", "postalCode", "city"]

    @pytest.mark.parametrize(
        ("kwargs", "message", "error_type"),
        [
            ({}, "Provide either 'form'", None),
            ({"form": "nope"}, "Form 'nope' not found", None),
            ({"descriptor": {"blocks": [{"id": "a"}, {"id": "a"}]}}, "Duplicate block IDs", None),
            (
                {"descriptor": {"blocks": [{"id": "a", "subFormRef": "ghost"}]}},
                "Sub-form 'ghost' not found",
                "MissingSubFormError",
            ),
        ],
    )
    async def test_resolve_failures(self, mock_context, kwargs, message, error_type) -> None:
        result = await resolve_form(**kwargs, ctx=mock_context)
        assert result["status"] == "failure"
        assert message in result["error"]
        assert result.get("error_type") == error_type

    async def test_merge_rules(self, mock_context) -> None:
        delta = {"fields": [{"id": "postalCode_applicant", "validation": [{"type": "required"}]}]}
        result = await merge_rules_tool(delta=delta, form="loan-application", ctx=mock_context)

        block = result["descriptor"]["blocks"][2]
        assert block["fields"][1]["validation"] == [{"type": "required", "message": ""}]
        untouched = result["descriptor"]["blocks"][4]["fields"][1]["validation"]
        assert untouched[0]["type"] == "pattern"

    async def test_merge_rules_invalid_delta(self, mock_context) -> None:
        result = await merge_rules_tool(
            delta={"fields": 3}, form="loan-application", ctx=mock_context
        )
        assert result["error"].startswith("Invalid rule delta")


class TestSchemaAndValues:
    async def test_compile_schema(self, mock_context) -> None:
        result = await compile_schema_tool(form="customer-onboarding", ctx=mock_context)
        schema = result["schema"]

        assert schema["fields"]["email"]["rules"] == ["required", "pattern"]
        assert "addContact" not in schema["fields"]
        assert "contactName" not in schema["fields"]
        assert schema["groups"]["addresses"]["maxItems"] == 5
        assert list(schema["groups"]["addresses"]["fields"]) == ["street", "city", "zip"]

    async def test_compile_schema_reports_malformed_rules(self, mock_context) -> None:
        descriptor = {"blocks": [{"id": "b", "fields": [{"id": "x", "type": "text"}]}]}
        delta = {"fields": [{"id": "x", "validation": [{"type": "pattern", "value": "("}]}]}
        result = await compile_schema_tool(descriptor=descriptor, delta=delta, ctx=mock_context)
        assert result["error_type"] == "SchemaCompileError"

    async def test_validate_form_values(self, mock_context) -> None:
        result = await validate_form_values(
            values=VALID_ONBOARDING, form="customer-onboarding", ctx=mock_context
        )
        assert result["valid"] is True
        assert result["issues"] == []

        empty = await validate_form_values(values={}, form="customer-onboarding", ctx=mock_context)
        assert empty["valid"] is False
        assert set(empty["errors"]) == {"fullName", "country", "email", "addressLine"}
        assert empty["errors"]["email"]["message"] == "Email is required"

    async def test_validate_with_delta_and_markdown(self, mock_context) -> None:
        delta = {"fields": [{"id": "email", "validation": [{"type": "maxLength", "value": 5}]}]}
        result = await validate_form_values(
            values=VALID_ONBOARDING,
            form="customer-onboarding",
            delta=delta,
            format="markdown",
            ctx=mock_context,
        )
        assert result.startswith("## Validation Issues (1)")
        assert "`email` (maxLength)" in result

    async def test_extract_defaults(self, mock_context) -> None:
        result = await extract_defaults(
            form="customer-onboarding", case_context={"country": "FR"}, ctx=mock_context
        )
        values = result["values"]

        assert values["customerType"] == "individual"
        assert values["country"] == "FR"
        assert values["newsletter"] is True
        assert values["employees"] == 1
        assert values["addresses"] == []
        assert "addContact" not in values
        assert result["caseContext"] == {"country": "FR"}

    async def test_update_case_context(self, mock_context) -> None:
        result = await update_case_context_tool(
            form_values={"country": "US", "fullName": "Ada"},
            form="customer-onboarding",
            previous_context={"country": "FR"},
            ctx=mock_context,
        )
        assert result["caseContext"] == {"country": "US"}
        assert result["changed"] is True
        assert result["discriminantFields"] == ["customerType", "country"]


class TestTemplatesAndStatus:
    async def test_evaluate_template_modes(self) -> None:
        template = '{{not (or (eq country "US") (eq country "CA"))}}'
        result = await evaluate_template(
            template=template, context={"country": "UK"}, mode="boolean"
        )
        assert result["result"] is True

        value = await evaluate_template(template="{{a}}-{{b}}", context={"a": 1, "b": "x"})
        assert value["result"] == "1-x"

        native = await evaluate_template(
            template="{{items}}", context={"items": [1]}, mode="native"
        )
        assert native["result"] == [1]

    async def test_evaluate_form_status(self, mock_context) -> None:
        company = await evaluate_form_status(
            form="customer-onboarding",
            form_values={"customerType": "company", "addresses": [{}] * 5},
            ctx=mock_context,
        )
        assert company["fields"]["companyName"]["hidden"] is False
        assert company["blocks"]["addresses"]["hidden"] is True

        individual = await evaluate_form_status(
            form="customer-onboarding",
            form_values={"customerType": "individual"},
            ctx=mock_context,
        )
        assert individual["fields"]["companyName"]["hidden"] is True
        assert individual["fields"]["employees"]["hidden"] is True
        assert individual["blocks"]["addresses"]["hidden"] is False

    async def test_render_submission_payload(self, mock_context) -> None:
        values = {"fullName": "Ada", "country": "FR", "customerType": "company"}
        result = await render_submission_payload(
            form="customer-onboarding", values=values, ctx=mock_context
        )
        assert result["url"] == "https://api.example.com/customers"
        assert result["payload"] == {"name": "Ada", "country": "FR", "type": "company"}

        raw = await render_submission_payload(
            form="loan-application", values={"amount": 5000}, ctx=mock_context
        )
        assert raw["payload"] == {"amount": 5000}

        missing = await render_submission_payload(form="nope", values={}, ctx=mock_context)
        assert missing["status"] == "failure"


class TestRehydrationTools:
    async def test_fetch_rules_requires_provider(self, mock_context) -> None:
        result = await fetch_rules(case_context={"country": "US"}, ctx=mock_context)
        assert result["status"] == "failure"
        assert "FORMS_RULES_URL" in result["error"]

    async def test_fetch_rules(self, mock_context) -> None:
        mock_context.request_context.lifespan_context.rule_provider = ScriptedRuleProvider(
            email_rules
        )
        result = await fetch_rules(case_context={"country": "US"}, ctx=mock_context)
        assert result["delta"]["fields"][0]["id"] == "email"

    async def test_rehydrate_form(self, mock_context) -> None:
        provider = ScriptedRuleProvider(email_rules)
        mock_context.request_context.lifespan_context.rule_provider = provider

        result = await rehydrate_form(
            form_values={"country": "US", "email": "ada@example.com"},
            form="customer-onboarding",
            case_context={"country": "FR"},
            ctx=mock_context,
        )
        assert result["status"] == "success"
        assert result["changed"] is True
        assert result["caseContext"] == {"country": "US"}
        assert result["schema"]["fields"]["email"]["rules"] == ["maxLength"]
        assert provider.calls == [{"country": "US"}]

    async def test_rehydrate_without_change_uses_current_context(self, mock_context) -> None:
        provider = ScriptedRuleProvider(email_rules)
        mock_context.request_context.lifespan_context.rule_provider = provider

        result = await rehydrate_form(
            form_values={"country": "US"},
            form="customer-onboarding",
            case_context={"country": "US"},
            ctx=mock_context,
        )
        assert result["changed"] is False
        assert result["schema"]["fields"]["email"]["rules"] == ["maxLength"]

    async def test_rehydrate_reports_provider_errors(self, mock_context) -> None:
        def fail(context):
            raise RuleProviderError("Rule provider answered HTTP 502", status_code=502)

        mock_context.request_context.lifespan_context.rule_provider = ScriptedRuleProvider(fail)
        result = await rehydrate_form(
            form_values={"country": "US"}, form="customer-onboarding", ctx=mock_context
        )
        assert result["status"] == "failure"
        assert result["error_type"] == "RuleProviderError"

    async def test_rehydrate_requires_provider(self, mock_context) -> None:
        result = await rehydrate_form(
            form_values={"country": "US"}, form="customer-onboarding", ctx=mock_context
        )
        assert "No rule provider configured" in result["error"]
