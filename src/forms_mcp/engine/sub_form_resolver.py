"""
Sub-form resolution: splice referenced sub-form documents into a descriptor.

Resolution is atomic. Every sub-form id reachable from the descriptor (through
sub-forms of sub-forms as well) is fetched before anything is spliced; the
first id the provider does not know aborts the call with MissingSubFormError.

Splicing walks an explicit work stack instead of recursing. The stack carries
enter/exit markers so the chain of sub-forms currently being expanded is
always known; re-entering an id on that chain is a CyclicReferenceError.

Instance ids disambiguate repeated uses of the same sub-form: with
subFormInstanceId "home", block "addr" becomes "addr_home" and field "street"
becomes "street_home". Nested instances compose innermost first
("street_inner_outer").
"""

import logging
from collections import deque
from dataclasses import dataclass

from .exceptions import (
    ConflictingReferenceError,
    CyclicReferenceError,
    DuplicateBlockIdError,
    MissingSubFormError,
    ReferenceDepthExceededError,
)
from .registry import SubFormProvider
from .schema import BlockDescriptor, ButtonConfig, FieldDescriptor, SubFormDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Enter:
    block: BlockDescriptor
    suffix: str


@dataclass(frozen=True)
class _Exit:
    sub_form_id: str


def check_reference_conflicts(blocks: list[BlockDescriptor]) -> None:
    """A block may reference a sub-form or a template block, never both."""
    for block in blocks:
        if block.sub_form_ref and block.repeatable_block_ref:
            raise ConflictingReferenceError(block.id)


def _is_expandable(block: BlockDescriptor) -> bool:
    return bool(block.sub_form_ref) and not block.popin


def collect_sub_forms(
    blocks: list[BlockDescriptor], provider: SubFormProvider
) -> dict[str, SubFormDescriptor]:
    """
    Fetch every sub-form reachable from `blocks`.

    Ids are visited breadth-first in document order; each distinct id is
    fetched exactly once regardless of how many instances reference it.

    Raises:
        MissingSubFormError: For the first id the provider does not know
        ConflictingReferenceError: If a fetched sub-form block carries both refs
    """
    fetched: dict[str, SubFormDescriptor] = {}
    queue = deque(block.sub_form_ref for block in blocks if _is_expandable(block))

    while queue:
        sub_form_id = queue.popleft()
        if sub_form_id is None or sub_form_id in fetched:
            continue

        sub_form = provider.lookup(sub_form_id)
        if sub_form is None:
            list_ids = getattr(provider, "list_ids", None)
            available = list_ids() if callable(list_ids) else None
            raise MissingSubFormError(sub_form_id, available)

        logger.debug(f"Fetched sub-form '{sub_form_id}' ({len(sub_form.blocks)} blocks)")
        check_reference_conflicts(sub_form.blocks)
        fetched[sub_form_id] = sub_form
        queue.extend(block.sub_form_ref for block in sub_form.blocks if _is_expandable(block))

    return fetched


def _suffix_button(button: ButtonConfig | None, suffix: str) -> ButtonConfig | None:
    if button is None:
        return None
    update: dict[str, object] = {}
    if button.popin_block_id:
        update["popin_block_id"] = button.popin_block_id + suffix
    if button.items:
        update["items"] = [
            item.model_copy(update={"popin_block_id": item.popin_block_id + suffix})
            for item in button.items
        ]
    return button.model_copy(update=update)


def _suffix_field(field: FieldDescriptor, suffix: str) -> FieldDescriptor:
    update: dict[str, object] = {"id": field.id + suffix}
    if field.repeatable_group_id:
        update["repeatable_group_id"] = field.repeatable_group_id + suffix
    if field.button is not None:
        update["button"] = _suffix_button(field.button, suffix)
    return field.model_copy(update=update, deep=True)


def suffix_block(block: BlockDescriptor, suffix: str) -> BlockDescriptor:
    """Copy of `block` with its own, field and template ids suffixed."""
    if not suffix:
        return block.model_copy(deep=True)

    update: dict[str, object] = {
        "id": block.id + suffix,
        "fields": [_suffix_field(field, suffix) for field in block.fields],
    }
    if block.repeatable_block_ref:
        update["repeatable_block_ref"] = block.repeatable_block_ref + suffix
    return block.model_copy(update=update, deep=True)


def splice_sub_forms(
    blocks: list[BlockDescriptor],
    sub_forms: dict[str, SubFormDescriptor],
    max_depth: int,
) -> list[BlockDescriptor]:
    """
    Replace every sub-form referencing block by the referenced blocks.

    Popin blocks are passed through unexpanded.

    Raises:
        CyclicReferenceError: A sub-form (transitively) references itself
        ReferenceDepthExceededError: Nesting exceeds max_depth
        DuplicateBlockIdError: Spliced block ids collide
    """
    result: list[BlockDescriptor] = []
    in_progress: list[str] = []
    work: list[_Enter | _Exit] = [_Enter(block, "") for block in reversed(blocks)]

    while work:
        item = work.pop()
        if isinstance(item, _Exit):
            in_progress.pop()
            continue

        block, suffix = item.block, item.suffix
        if not _is_expandable(block):
            result.append(suffix_block(block, suffix))
            continue

        sub_form_id = block.sub_form_ref
        assert sub_form_id is not None
        if sub_form_id in in_progress:
            raise CyclicReferenceError(sub_form_id, in_progress + [sub_form_id])
        if len(in_progress) >= max_depth:
            raise ReferenceDepthExceededError(sub_form_id, len(in_progress) + 1, max_depth)

        instance_id = block.sub_form_instance_id
        child_suffix = (f"_{instance_id}" if instance_id else "") + suffix
        logger.debug(
            f"Splicing sub-form '{sub_form_id}' into block '{block.id}'"
            + (f" (instance '{instance_id}')" if instance_id else "")
        )

        in_progress.append(sub_form_id)
        work.append(_Exit(sub_form_id))
        for child in reversed(sub_forms[sub_form_id].blocks):
            work.append(_Enter(child, child_suffix))

    seen: set[str] = set()
    for block in result:
        if block.id in seen:
            raise DuplicateBlockIdError(block.id)
        seen.add(block.id)

    return result


def resolve_sub_forms(
    blocks: list[BlockDescriptor], provider: SubFormProvider, max_depth: int = 50
) -> list[BlockDescriptor]:
    """Fetch then splice all sub-form references of a block list."""
    sub_forms = collect_sub_forms(blocks, provider)
    if not sub_forms:
        return [block.model_copy(deep=True) for block in blocks]

    resolved = splice_sub_forms(blocks, sub_forms, max_depth)
    logger.info(
        f"Resolved {len(sub_forms)} sub-form(s): {len(blocks)} blocks → {len(resolved)} blocks"
    )
    return resolved
