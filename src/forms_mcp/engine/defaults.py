"""
Initial form values.

Literal defaults pass through unchanged. Template defaults are rendered
against the supplied context and converted to the field's native type.
Fields without a declared default receive their kind's empty value.

Repeatable groups are seeded as arrays: one instance built from the member
defaults when any member declares a default, otherwise an empty array.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from .case_context import build_instance_context
from .field_kinds import traits_for
from .reference_resolver import iter_render_blocks
from .schema import BlockDescriptor, FieldDescriptor, FieldType, FormDescriptor
from .template import evaluate_template, is_template

logger = logging.getLogger(__name__)


def evaluate_default_value(
    default: Any, field_type: FieldType, context: Mapping[str, Any] | None = None
) -> Any:
    """
    Evaluate a declared default.

    Non-string and non-template values are returned unchanged; templates are
    rendered and coerced by field kind (e.g. "TRUE" → True for checkboxes,
    "42" → 42 for numbers).
    """
    if not is_template(default):
        return default
    rendered = evaluate_template(default, context or {})
    return traits_for(field_type).coerce_default(rendered)


def _field_default(field: FieldDescriptor, context: Mapping[str, Any]) -> Any:
    if field.has_default:
        return evaluate_default_value(field.default_value, field.type, context)
    return traits_for(field.type).empty_value()


def _extract(blocks: Iterable[BlockDescriptor], context: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    groups: dict[str, list[FieldDescriptor]] = {}

    for block in blocks:
        for field in block.fields:
            if field.type.is_action:
                continue
            if field.repeatable_group_id:
                groups.setdefault(field.repeatable_group_id, []).append(field)
                continue
            values[field.id] = _field_default(field, context)

    for group_id, members in groups.items():
        if not any(member.has_default for member in members):
            values[group_id] = []
            continue

        instance_context = build_instance_context(context, group_id, 0, [])
        prefix = f"{group_id}."
        instance = {
            (member.id[len(prefix) :] if member.id.startswith(prefix) else member.id): (
                _field_default(member, instance_context)
            )
            for member in members
        }
        values[group_id] = [instance]
        logger.debug(f"Seeded repeatable group '{group_id}' with one default instance")

    return values


def extract_default_values(
    descriptor: FormDescriptor, context: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    """
    Initial values of a resolved descriptor's primary render.

    Popin blocks, template-only blocks and action fields are skipped.

    Args:
        descriptor: Resolved descriptor
        context: FormContext template defaults are evaluated against

    Returns:
        Mapping of field id (or repeatable group id) to initial value
    """
    return _extract(iter_render_blocks(descriptor), context or {})


def extract_block_defaults(
    block: BlockDescriptor, context: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    """Initial values of a single block (used when a popin opens)."""
    return _extract([block], context or {})
