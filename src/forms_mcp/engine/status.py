"""
Status template evaluation for blocks and fields.

A missing template means the default state: visible, enabled, editable.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .schema import BlockDescriptor, FieldDescriptor, FormDescriptor
from .template import evaluate_condition

logger = logging.getLogger(__name__)


def _evaluate_status(
    descriptor: BlockDescriptor | FieldDescriptor, key: str, context: Mapping[str, Any]
) -> bool:
    template = getattr(descriptor.status, key, None) if descriptor.status else None
    if not template:
        return False
    return evaluate_condition(template, context)


def evaluate_hidden_status(
    descriptor: BlockDescriptor | FieldDescriptor, context: Mapping[str, Any]
) -> bool:
    return _evaluate_status(descriptor, "hidden", context)


def evaluate_disabled_status(
    descriptor: BlockDescriptor | FieldDescriptor, context: Mapping[str, Any]
) -> bool:
    return _evaluate_status(descriptor, "disabled", context)


def evaluate_readonly_status(
    descriptor: BlockDescriptor | FieldDescriptor, context: Mapping[str, Any]
) -> bool:
    return _evaluate_status(descriptor, "readonly", context)


@dataclass(frozen=True)
class ResolvedBlock:
    """A block with its status evaluated against a context."""

    block: BlockDescriptor
    is_hidden: bool
    is_disabled: bool


def resolve_block_by_id(
    block_id: str, descriptor: FormDescriptor, context: Mapping[str, Any]
) -> ResolvedBlock | None:
    """
    Look up a block (typically a popin target) and evaluate its status.

    Returns None and logs an error when the block does not exist.
    """
    block = descriptor.get_block(block_id)
    if block is None:
        available = ", ".join(b.id for b in descriptor.blocks) or "none"
        logger.error(f"Block '{block_id}' not found. Available blocks: {available}")
        return None
    return ResolvedBlock(
        block=block,
        is_hidden=evaluate_hidden_status(block, context),
        is_disabled=evaluate_disabled_status(block, context),
    )


def evaluate_field_states(
    descriptor: FormDescriptor, context: Mapping[str, Any]
) -> dict[str, dict[str, bool]]:
    """hidden/disabled/readonly of every field, keyed by field id."""
    return {
        field.id: {
            "hidden": evaluate_hidden_status(field, context),
            "disabled": evaluate_disabled_status(field, context),
            "readonly": evaluate_readonly_status(field, context),
        }
        for field in descriptor.iter_fields()
    }
