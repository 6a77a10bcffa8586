"""
Reference resolution entry point.

    raw descriptor
          ↓
    Sub-form splicing (fetch-by-id through a provider)
          ↓
    Repeatable template expansion
          ↓
    resolved descriptor (no subFormRef / repeatableBlockRef left outside popins)

Resolution either returns a complete descriptor or raises a
ReferenceResolutionError; no partial result is ever produced. The input
descriptor is never mutated.
"""

import logging
from collections.abc import Iterator

from .registry import SubFormProvider
from .repeatable_resolver import resolve_repeatable_blocks
from .schema import BlockDescriptor, FormDescriptor
from .sub_form_resolver import check_reference_conflicts, resolve_sub_forms

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 50


def resolve_references(
    descriptor: FormDescriptor,
    provider: SubFormProvider,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> FormDescriptor:
    """
    Expand sub-form and repeatable-template references.

    Args:
        descriptor: Raw form descriptor
        provider: Sub-form source (SubFormRegistry, HttpSubFormProvider, ...)
        max_depth: Maximum sub-form nesting / template chain length

    Returns:
        A new, self-contained descriptor

    Raises:
        MissingSubFormError: A referenced sub-form is unknown to the provider
        MissingTemplateBlockError: A template block is missing or repeatable
        CyclicReferenceError: Sub-forms or templates reference themselves
        ConflictingReferenceError: A block declares both kinds of reference
        DuplicateBlockIdError: Splicing produced colliding block ids
        ReferenceDepthExceededError: Nesting deeper than max_depth
    """
    check_reference_conflicts(descriptor.blocks)

    blocks = resolve_sub_forms(descriptor.blocks, provider, max_depth)
    blocks = resolve_repeatable_blocks(blocks, max_depth)

    resolved = descriptor.model_copy(update={"blocks": blocks}, deep=True)
    logger.debug(
        f"Resolved descriptor '{descriptor.id or descriptor.title or '<anonymous>'}': "
        f"{len(resolved.blocks)} blocks, {len(resolved.iter_fields())} fields"
    )
    return resolved


def has_unresolved_references(descriptor: FormDescriptor) -> bool:
    """True when a non-popin block still carries a subFormRef or repeatableBlockRef."""
    return any(
        (block.sub_form_ref or block.repeatable_block_ref) and not block.popin
        for block in descriptor.blocks
    )


def iter_render_blocks(descriptor: FormDescriptor) -> Iterator[BlockDescriptor]:
    """Blocks of the primary render, in order: popins and templates excluded."""
    for block in descriptor.blocks:
        if block.popin or block.template_only:
            continue
        yield block


def get_popin_blocks(descriptor: FormDescriptor) -> list[BlockDescriptor]:
    """Popin blocks, opened only through button fields."""
    return [block for block in descriptor.blocks if block.popin]
