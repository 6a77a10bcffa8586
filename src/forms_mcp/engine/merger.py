"""
Rule merge: overlay a RuleDelta onto a resolved descriptor.

merge_rules is a pure function. The base descriptor is deep-copied, never
mutated, and identical inputs always produce equal outputs.

Overlay semantics per delta entry:
- validation, when present, replaces the field's whole rule list
- status keys (hidden, disabled, readonly) are replaced independently; a key
  absent from the delta keeps the base template, an explicit null clears it
- ids absent from the delta are copied through unchanged
- delta ids matching nothing are ignored (logged at DEBUG)
"""

import logging

from .schema import (
    BlockDescriptor,
    FieldDescriptor,
    FieldRule,
    FormDescriptor,
    RuleDelta,
    StatusTemplates,
)

logger = logging.getLogger(__name__)

STATUS_KEYS = ("hidden", "disabled", "readonly")


def merge_status(
    base: StatusTemplates | None, overlay: StatusTemplates | None
) -> StatusTemplates | None:
    """Key-wise status overlay; only keys explicitly set on the overlay apply."""
    if overlay is None:
        return base.model_copy() if base is not None else None

    merged = {key: getattr(base, key) for key in STATUS_KEYS} if base else {}
    for key in STATUS_KEYS:
        if key in overlay.model_fields_set:
            merged[key] = getattr(overlay, key)

    if all(value is None for value in merged.values()):
        return None
    return StatusTemplates(**{key: value for key, value in merged.items() if value is not None})


def _merge_field(field: FieldDescriptor, rule: FieldRule) -> FieldDescriptor:
    update: dict[str, object] = {}
    if rule.validation is not None:
        update["validation"] = [item.model_copy() for item in rule.validation]
    if rule.status is not None:
        update["status"] = merge_status(field.status, rule.status)
    return field.model_copy(update=update)


def _merge_block(
    block: BlockDescriptor,
    block_status: dict[str, StatusTemplates | None],
    field_rules: dict[str, FieldRule],
    applied: set[str],
) -> BlockDescriptor:
    fields = []
    for field in block.fields:
        rule = field_rules.get(field.id)
        if rule is None:
            fields.append(field)
            continue
        fields.append(_merge_field(field, rule))
        applied.add(f"field:{field.id}")

    update: dict[str, object] = {"fields": fields}
    if block.id in block_status:
        update["status"] = merge_status(block.status, block_status[block.id])
        applied.add(f"block:{block.id}")
    return block.model_copy(update=update)


def merge_rules(resolved: FormDescriptor, delta: RuleDelta) -> FormDescriptor:
    """
    Overlay a rule delta onto a resolved descriptor.

    Args:
        resolved: Resolved descriptor (left untouched)
        delta: Validation/status overlay keyed by block and field id

    Returns:
        A new descriptor with the delta applied
    """
    base = resolved.model_copy(deep=True)
    if not delta.blocks and not delta.fields:
        return base

    # Later entries for the same id win
    block_status = {rule.id: rule.status for rule in delta.blocks}
    field_rules = {rule.id: rule for rule in delta.fields}
    applied: set[str] = set()

    blocks = [_merge_block(block, block_status, field_rules, applied) for block in base.blocks]

    unmatched = [f"block:{bid}" for bid in block_status if f"block:{bid}" not in applied] + [
        f"field:{fid}" for fid in field_rules if f"field:{fid}" not in applied
    ]
    if unmatched:
        logger.debug(f"Rule delta entries without a target: {unmatched}")

    logger.debug(
        f"Merged rule delta: {len(delta.blocks)} block rule(s), {len(delta.fields)} field rule(s)"
    )
    return base.model_copy(update={"blocks": blocks})
