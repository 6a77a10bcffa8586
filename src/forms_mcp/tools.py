"""MCP tool implementations for form descriptor resolution and re-hydration.

This module exposes the engine entry points (resolve, merge, compile,
defaults/context extraction, template evaluation, rule fetch) via the MCP
protocol.

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Type hints for automatic schema generation
- Async functions for all tools
- Clear docstrings (become tool descriptions)

Tools never raise to the client: engine failures are returned as
{"status": "failure", "error": ...} dictionaries.
"""

import asyncio
import json
from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field, ValidationError

from .context import AppContext, AppContextType
from .engine import (
    FormDescriptor,
    FormEngineError,
    LoadResult,
    RuleDelta,
    build_form_context,
    compile_schema,
    evaluate_payload_template,
    extract_default_values,
    get_discriminant_fields,
    has_context_changed,
    initialize_case_context,
    load_descriptor_from_dict,
    merge_rules,
    resolve_block_by_id,
    resolve_references,
    update_case_context,
)
from .engine.status import evaluate_field_states
from .engine.submission import issues_to_errors
from .engine.template import get_evaluator
from .formatting import (
    format_form_info_markdown,
    format_form_list_markdown,
    format_form_not_found_error,
    format_issues_markdown,
)
from .server import mcp

FormIdParam = Annotated[
    str | None,
    Field(description="Registered form id (use list_forms() to discover)", max_length=200),
]
DescriptorParam = Annotated[
    dict[str, Any] | None,
    Field(description="Inline descriptor document (used when form is not given)"),
]
DeltaParam = Annotated[
    dict[str, Any] | None,
    Field(description="RuleDelta overlay: {blocks?: [...], fields?: [...]}"),
]

# =============================================================================
# Shared helpers
# =============================================================================


def _failure(error: str, **extra: Any) -> dict[str, Any]:
    return {"status": "failure", "error": error, **extra}


def _load_target(
    app_ctx: AppContext, form: str | None, descriptor: dict[str, Any] | None
) -> LoadResult[FormDescriptor]:
    """Registered form by id, or an inline descriptor document."""
    if form:
        if form not in app_ctx.forms:
            available = app_ctx.forms.list_ids()
            return LoadResult.failure(
                f"Form '{form}' not found. Available forms: {', '.join(available[:5])}"
                f"{' (and more)' if len(available) > 5 else ''}. "
                "Use list_forms() to see all forms."
            )
        return LoadResult.success(app_ctx.forms.get(form))
    if descriptor is not None:
        return load_descriptor_from_dict(descriptor, source="<inline-descriptor>")
    return LoadResult.failure("Provide either 'form' (registered id) or 'descriptor' (inline)")


async def _resolve(app_ctx: AppContext, descriptor: FormDescriptor) -> FormDescriptor:
    """Resolve references off the event loop (sub-form providers may block on HTTP)."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        resolve_references,
        descriptor,
        app_ctx.sub_form_provider,
        app_ctx.max_reference_depth,
    )


async def _prepare(
    ctx: AppContextType,
    form: str | None,
    descriptor: dict[str, Any] | None,
    delta: dict[str, Any] | None = None,
) -> FormDescriptor | dict[str, Any]:
    """Load, resolve and optionally merge; returns a failure dict on error."""
    if ctx is None:
        return _failure(
            "Server context not available. Tool requires context to access resources."
        )
    app_ctx = ctx.request_context.lifespan_context

    load_result = _load_target(app_ctx, form, descriptor)
    if not load_result.is_success or load_result.value is None:
        return _failure(load_result.error or "Failed to load descriptor")

    try:
        resolved = await _resolve(app_ctx, load_result.value)
    except FormEngineError as e:
        return _failure(str(e), error_type=type(e).__name__)

    if delta is None:
        return resolved
    try:
        return merge_rules(resolved, RuleDelta.model_validate(delta))
    except ValidationError as e:
        return _failure(f"Invalid rule delta: {e}")


# =============================================================================
# Discovery Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Forms",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_forms(
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> str:
    """List registered form descriptors. Optional: format (json|markdown)."""
    app_ctx = ctx.request_context.lifespan_context
    forms = app_ctx.forms.list_all_metadata()

    if format == "markdown":
        return format_form_list_markdown(forms)
    return json.dumps(forms)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Form Info",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def get_form_info(
    form: Annotated[
        str,
        Field(description="Form id to inspect", min_length=1, max_length=200),
    ],
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Get form details (blocks, references, discriminants). Required: form."""
    app_ctx = ctx.request_context.lifespan_context
    registry = app_ctx.forms

    if form not in registry:
        return format_form_not_found_error(form, registry.list_ids(), format)

    info = registry.get_form_metadata(form, detailed=True)
    if format == "markdown":
        return format_form_info_markdown(info)
    return info


# =============================================================================
# Engine Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Resolve Form",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,  # Sub-forms may be fetched over HTTP
    )
)
async def resolve_form(
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Expand sub-form and repeatable references. Required: form or descriptor."""
    resolved = await _prepare(ctx, form, descriptor)
    if isinstance(resolved, dict):
        return resolved
    return {"status": "success", "descriptor": resolved.to_dict()}


@mcp.tool(
    name="merge_rules",
    annotations=ToolAnnotations(
        title="Merge Rules",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def merge_rules_tool(
    delta: Annotated[
        dict[str, Any],
        Field(description="RuleDelta: {blocks?: [...], fields?: [...]}"),
    ],
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Resolve a form and overlay a rule delta. Required: delta, form or descriptor."""
    merged = await _prepare(ctx, form, descriptor, delta)
    if isinstance(merged, dict):
        return merged
    return {"status": "success", "descriptor": merged.to_dict()}


@mcp.tool(
    name="compile_schema",
    annotations=ToolAnnotations(
        title="Compile Schema",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def compile_schema_tool(
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    delta: DeltaParam = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Describe the compiled validation schema. Required: form or descriptor. Optional: delta."""
    target = await _prepare(ctx, form, descriptor, delta)
    if isinstance(target, dict):
        return target
    try:
        schema = compile_schema(target)
    except FormEngineError as e:
        return _failure(str(e), error_type=type(e).__name__)
    return {"status": "success", "schema": schema.describe()}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Validate Form Values",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def validate_form_values(
    values: Annotated[
        dict[str, Any],
        Field(description="Form values keyed by field id (repeatable groups as arrays)"),
    ],
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    delta: DeltaParam = None,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """Validate values against the compiled schema. Required: values, form or descriptor."""
    target = await _prepare(ctx, form, descriptor, delta)
    if isinstance(target, dict):
        return target
    try:
        schema = compile_schema(target)
    except FormEngineError as e:
        return _failure(str(e), error_type=type(e).__name__)

    issues = schema.validate(values)
    if format == "markdown":
        return format_issues_markdown([issue.to_dict() for issue in issues])
    return {
        "status": "success",
        "valid": not issues,
        "issues": [issue.to_dict() for issue in issues],
        "errors": issues_to_errors(issues),
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Extract Defaults",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def extract_defaults(
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    case_context: Annotated[
        dict[str, Any] | None,
        Field(description="Case attributes template defaults are evaluated against"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Compute initial form values. Required: form or descriptor. Optional: case_context."""
    target = await _prepare(ctx, form, descriptor)
    if isinstance(target, dict):
        return target

    case = initialize_case_context(case_context)
    values = extract_default_values(target, build_form_context({}, case))
    return {"status": "success", "values": values, "caseContext": case}


@mcp.tool(
    name="update_case_context",
    annotations=ToolAnnotations(
        title="Update Case Context",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def update_case_context_tool(
    form_values: Annotated[
        dict[str, Any],
        Field(description="Current form values"),
    ],
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    previous_context: Annotated[
        dict[str, Any] | None,
        Field(description="Previous CaseContext"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Derive the next CaseContext. Required: form_values, form or descriptor."""
    target = await _prepare(ctx, form, descriptor)
    if isinstance(target, dict):
        return target

    previous = initialize_case_context(previous_context)
    discriminants = get_discriminant_fields(target)
    updated = update_case_context(previous, form_values, discriminants)
    return {
        "status": "success",
        "caseContext": updated,
        "changed": has_context_changed(previous, updated),
        "discriminantFields": [field.id for field in discriminants],
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Evaluate Template",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evaluate_template(
    template: Annotated[
        str,
        Field(description="Template such as {{not (eq country \"US\")}}", max_length=10000),
    ],
    context: Annotated[
        dict[str, Any] | None,
        Field(description="FormContext the template is evaluated against"),
    ] = None,
    mode: Annotated[
        Literal["value", "boolean", "native"],
        Field(description="value=string, boolean=status flag, native=typed result"),
    ] = "value",
) -> dict[str, Any]:
    """Evaluate a template expression. Required: template. Optional: context, mode."""
    evaluator = get_evaluator()
    if mode == "boolean":
        result: Any = evaluator.evaluate_boolean(template, context or {})
    elif mode == "native":
        result = evaluator.evaluate_native(template, context or {})
    else:
        result = evaluator.evaluate_value(template, context or {})
    return {"status": "success", "result": result}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Evaluate Form Status",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def evaluate_form_status(
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    form_values: Annotated[
        dict[str, Any] | None,
        Field(description="Current form values"),
    ] = None,
    case_context: Annotated[
        dict[str, Any] | None,
        Field(description="Current CaseContext"),
    ] = None,
    delta: DeltaParam = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Evaluate hidden/disabled/readonly of every block and field. Required: form or descriptor."""
    target = await _prepare(ctx, form, descriptor, delta)
    if isinstance(target, dict):
        return target

    context = build_form_context(form_values, case_context)
    blocks = {}
    for block in target.blocks:
        resolved = resolve_block_by_id(block.id, target, context)
        if resolved is not None:
            blocks[block.id] = {"hidden": resolved.is_hidden, "disabled": resolved.is_disabled}
    return {
        "status": "success",
        "blocks": blocks,
        "fields": evaluate_field_states(target, context),
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Render Submission Payload",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def render_submission_payload(
    form: Annotated[
        str,
        Field(description="Registered form id", min_length=1, max_length=200),
    ],
    values: Annotated[
        dict[str, Any],
        Field(description="Form values to submit"),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Render the form's submission payload template. Required: form, values."""
    app_ctx = ctx.request_context.lifespan_context
    if form not in app_ctx.forms:
        return _failure(f"Form not found: {form}", available_forms=app_ctx.forms.list_ids())

    submission = app_ctx.forms.get(form).submission
    if submission is None:
        return _failure(f"Form '{form}' has no submission configuration")

    return {
        "status": "success",
        "url": submission.url,
        "method": submission.method,
        "payload": evaluate_payload_template(submission.payload_template, values),
    }


# =============================================================================
# Re-hydration Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Fetch Rules",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def fetch_rules(
    case_context: Annotated[
        dict[str, Any],
        Field(description="CaseContext sent to the rule provider"),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Fetch the RuleDelta for a CaseContext from FORMS_RULES_URL. Required: case_context."""
    app_ctx = ctx.request_context.lifespan_context
    if app_ctx.rule_provider is None:
        return _failure("No rule provider configured. Set FORMS_RULES_URL.")

    try:
        delta = await app_ctx.rule_provider(initialize_case_context(case_context))
    except FormEngineError as e:
        return _failure(str(e), error_type=type(e).__name__)
    return {"status": "success", "delta": delta.to_dict()}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Rehydrate Form",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def rehydrate_form(
    form_values: Annotated[
        dict[str, Any],
        Field(description="Current form values"),
    ],
    form: FormIdParam = None,
    descriptor: DescriptorParam = None,
    case_context: Annotated[
        dict[str, Any] | None,
        Field(description="Previous CaseContext"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Fetch rules for current values, merge and recompile. Required: form_values, form."""
    resolved = await _prepare(ctx, form, descriptor)
    if isinstance(resolved, dict):
        return resolved
    app_ctx = ctx.request_context.lifespan_context

    try:
        coordinator = app_ctx.create_coordinator(resolved, initialize_case_context(case_context))
    except (RuntimeError, FormEngineError) as e:
        return _failure(str(e))

    try:
        sequence = coordinator.on_values_changed(form_values)
        if sequence is None:
            # Unchanged discriminants still need the rules of the current context
            coordinator.submit(coordinator.case_context)
        await coordinator.wait_idle()
    finally:
        await coordinator.close()

    if coordinator.last_error is not None:
        error = coordinator.last_error
        return _failure(str(error), error_type=type(error).__name__)

    snapshot = coordinator.snapshot
    return {
        "status": "success",
        "changed": sequence is not None,
        "caseContext": snapshot.case_context,
        "descriptor": snapshot.descriptor.to_dict(),
        "schema": snapshot.schema.describe(),
    }
