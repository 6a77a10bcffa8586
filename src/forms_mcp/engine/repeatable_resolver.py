"""
Repeatable-block template resolution.

A repeatable block names a template block through repeatableBlockRef. The
template's fields are copied into the repeatable block and namespaced by
their array group:

    {"id": "addresses", "repeatable": true, "repeatableBlockRef": "address-block"}
    + template fields [street, city]
    → fields [addresses.street, addresses.city], repeatableGroupId "addresses"

The group id of each copied field is its own pre-declared repeatableGroupId,
or the referencing block's id. One block may therefore host several groups.

A non-repeatable block with a repeatableBlockRef includes the target's fields
unprefixed, which lets templates be composed from other templates. Template
chains are followed iteratively with an explicit chain list for cycle
detection.

Every block used as a template is flagged template_only; it stays in the
descriptor as a reference target but is skipped by render enumeration.
"""

import logging

from .exceptions import (
    CyclicReferenceError,
    MissingTemplateBlockError,
    ReferenceDepthExceededError,
)
from .schema import BlockDescriptor, FieldDescriptor

logger = logging.getLogger(__name__)


def _template_target(
    ref: str, referencing_block_id: str, blocks_by_id: dict[str, BlockDescriptor]
) -> BlockDescriptor:
    target = blocks_by_id.get(ref)
    if target is None:
        raise MissingTemplateBlockError(ref, referencing_block_id)
    if target.repeatable:
        raise MissingTemplateBlockError(
            ref, referencing_block_id, reason="template block is itself repeatable"
        )
    return target


def template_fields(
    block: BlockDescriptor,
    blocks_by_id: dict[str, BlockDescriptor],
    max_depth: int = 50,
) -> tuple[list[FieldDescriptor], list[str]]:
    """
    Fields contributed by the template chain starting at `block`'s ref.

    Returns:
        (fields in chain order, ids of every template block visited)

    Raises:
        MissingTemplateBlockError: A ref names an unknown or repeatable block
        CyclicReferenceError: The chain comes back to a block already on it
        ReferenceDepthExceededError: The chain is longer than max_depth
    """
    fields: list[FieldDescriptor] = []
    chain = [block.id]
    current = block

    while current.repeatable_block_ref:
        ref = current.repeatable_block_ref
        if ref in chain:
            raise CyclicReferenceError(ref, chain + [ref])
        if len(chain) > max_depth:
            raise ReferenceDepthExceededError(ref, len(chain), max_depth)

        target = _template_target(ref, current.id, blocks_by_id)
        chain.append(target.id)
        fields.extend(target.fields)
        current = target

    return fields, chain[1:]


def _namespace_field(field: FieldDescriptor, default_group_id: str) -> FieldDescriptor:
    group_id = field.repeatable_group_id or default_group_id
    return field.model_copy(
        update={"id": f"{group_id}.{field.id}", "repeatable_group_id": group_id},
        deep=True,
    )


def resolve_repeatable_blocks(
    blocks: list[BlockDescriptor], max_depth: int = 50
) -> list[BlockDescriptor]:
    """
    Expand every repeatableBlockRef of a block list.

    Popin blocks are passed through unexpanded. Blocks without a ref are
    copied unchanged (apart from the template_only flag), so already resolved
    input resolves to itself.
    """
    blocks_by_id = {block.id: block for block in blocks}
    expanded: dict[str, list[FieldDescriptor]] = {}
    template_ids: set[str] = set()

    for block in blocks:
        if block.popin or not block.repeatable_block_ref:
            continue

        fields, visited = template_fields(block, blocks_by_id, max_depth)
        template_ids.update(visited)

        if block.repeatable:
            copied = [_namespace_field(field, block.id) for field in fields]
        else:
            copied = [field.model_copy(deep=True) for field in fields]
        expanded[block.id] = [field.model_copy(deep=True) for field in block.fields] + copied

        logger.debug(
            f"Block '{block.id}' expanded template chain {visited} "
            f"({len(copied)} field(s){', repeatable' if block.repeatable else ''})"
        )

    if not expanded:
        return [block.model_copy(deep=True) for block in blocks]

    resolved: list[BlockDescriptor] = []
    for block in blocks:
        update: dict[str, object] = {}
        if block.id in expanded:
            update["fields"] = expanded[block.id]
            update["repeatable_block_ref"] = None
        if block.id in template_ids:
            update["template_only"] = True
        resolved.append(block.model_copy(update=update, deep=True))

    logger.info(
        f"Resolved {len(expanded)} repeatable reference(s) using "
        f"{len(template_ids)} template block(s)"
    )
    return resolved
