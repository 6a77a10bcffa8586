"""Shared test configuration for forms-mcp tests.

Provides:
- Descriptor builders for compact test documents
- A sub-form registry pre-loaded with an "address" sub-form
- A scripted async rule provider for re-hydration tests
- A mock MCP context wired to the built-in templates
- A local HTTP server serving sub-forms and rule deltas
"""

import asyncio
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from pytest_httpserver import HTTPServer
from werkzeug.wrappers import Request, Response

from forms_mcp.context import AppContext
from forms_mcp.engine import (
    FormDescriptor,
    FormRegistry,
    RuleDelta,
    SubFormDescriptor,
    SubFormRegistry,
)

TEMPLATES_DIR = Path(__file__).parent.parent / "src" / "forms_mcp" / "templates"


def make_form(*blocks: dict[str, Any], **extra: Any) -> FormDescriptor:
    """Build a FormDescriptor from camelCase block dictionaries."""
    return FormDescriptor.model_validate({"version": "1.0", "blocks": list(blocks), **extra})


def make_sub_form(sub_form_id: str, *blocks: dict[str, Any]) -> SubFormDescriptor:
    return SubFormDescriptor.model_validate(
        {"id": sub_form_id, "title": sub_form_id.title(), "version": "1.0", "blocks": list(blocks)}
    )


def text_field(field_id: str, **extra: Any) -> dict[str, Any]:
    return {"id": field_id, "type": "text", "label": field_id, **extra}


class ScriptedRuleProvider:
    """Async rule provider answering from a function of the context.

    Each call can be held back with a per-call delay so tests can make an
    older request finish after a newer one.
    """

    def __init__(self, respond, delays: list[float] | None = None):
        self.respond = respond
        self.delays = list(delays or [])
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, context: Mapping[str, Any]) -> RuleDelta:
        index = len(self.calls)
        self.calls.append(dict(context))
        if index < len(self.delays):
            await asyncio.sleep(self.delays[index])
        return self.respond(dict(context))


@pytest.fixture
def address_sub_form() -> SubFormDescriptor:
    return make_sub_form(
        "address",
        {
            "id": "address-block",
            "title": "Address",
            "fields": [text_field("street"), text_field("city"), text_field("zip")],
        },
    )


@pytest.fixture
def sub_forms(address_sub_form: SubFormDescriptor) -> SubFormRegistry:
    """Registry holding the address sub-form (one per test)."""
    registry = SubFormRegistry()
    registry.register(address_sub_form)
    return registry


@pytest.fixture
def country_delta() -> RuleDelta:
    """Rules returned for US cases: zip becomes required, state visible."""
    return RuleDelta.model_validate(
        {
            "fields": [
                {
                    "id": "zip",
                    "validation": [
                        {"type": "required", "message": "ZIP is required"},
                        {"type": "pattern", "value": "^\\d{5}$", "message": "5 digits"},
                    ],
                }
            ],
            "blocks": [{"id": "address-block", "status": {"hidden": "{{isEmpty country}}"}}],
        }
    )


@pytest.fixture
def mock_context() -> MagicMock:
    """Mock MCP context with an AppContext loaded from the built-in templates.

    Returns:
        Mock context object with request_context.lifespan_context structure
    """
    forms = FormRegistry()
    result = forms.load_from_directories([TEMPLATES_DIR / "forms"])
    assert result.is_success

    sub_form_registry = SubFormRegistry()
    assert sub_form_registry.load_from_directory(TEMPLATES_DIR / "sub_forms").is_success

    app_context = AppContext(forms=forms, sub_forms=sub_form_registry, debounce_ms=0)

    mock_ctx = MagicMock()
    mock_ctx.request_context.lifespan_context = app_context
    return mock_ctx


@pytest.fixture
def forms_backend(httpserver: HTTPServer) -> HTTPServer:
    """
    Local HTTP server standing in for the sub-form store and the rule service.

    - GET /sub-forms/address: the address sub-form document
    - GET /sub-forms/<other>: 404
    - POST /rules: echoes a RuleDelta derived from the posted case context
      (US cases get ZIP rules, others an empty delta)
    """
    address = {
        "id": "address",
        "title": "Remote address",
        "version": "1.0",
        "blocks": [{"id": "remote-address", "fields": [text_field("line1")]}],
    }
    httpserver.expect_request("/sub-forms/address").respond_with_json(address)
    httpserver.expect_request("/sub-forms/broken").respond_with_data("not json", status=200)
    httpserver.expect_request("/sub-forms/failing").respond_with_data("boom", status=500)
    httpserver.expect_request("/sub-forms/missing").respond_with_data("", status=404)

    def rules_handler(request: Request) -> Response:
        context = request.get_json(silent=True) or {}
        delta: dict[str, Any] = {"blocks": [], "fields": []}
        if context.get("country") == "US":
            delta["fields"].append(
                {"id": "zip", "validation": [{"type": "pattern", "value": "^\\d{5}$"}]}
            )
        return Response(json.dumps(delta), content_type="application/json")

    httpserver.expect_request("/rules", method="POST").respond_with_handler(rules_handler)
    httpserver.expect_request("/rules-down", method="POST").respond_with_data("", status=503)
    httpserver.expect_request("/rules-garbage", method="POST").respond_with_data("{oops")
    httpserver.expect_request("/rules-invalid", method="POST").respond_with_json({"fields": 3})
    return httpserver
