"""Structural error taxonomy for the form engine.

Reference resolution and schema compilation are fatal to the call that
raised them: no partial descriptor or schema is ever returned. Template
expression faults are NOT part of this taxonomy; the evaluator absorbs them
(see template/evaluator.py).
"""

from __future__ import annotations


class FormEngineError(Exception):
    """Base class for all caller-visible engine failures."""


class ReferenceResolutionError(FormEngineError):
    """A structural reference in a descriptor could not be resolved."""


class MissingSubFormError(ReferenceResolutionError):
    """
    A block references a sub-form id the provider does not know.

    Attributes:
        sub_form_id: The unresolved sub-form id
        available: Ids the provider reported as available (may be empty)
    """

    def __init__(self, sub_form_id: str, available: list[str] | None = None):
        self.sub_form_id = sub_form_id
        self.available = sorted(available or [])

        available_msg = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"Sub-form '{sub_form_id}' not found. Available sub-forms: {available_msg}"
        )

    def __repr__(self) -> str:
        return f"MissingSubFormError(sub_form_id={self.sub_form_id!r})"


class MissingTemplateBlockError(ReferenceResolutionError):
    """
    A repeatable block references a template block that cannot be used.

    Raised when the referenced block does not exist or is itself repeatable.

    Attributes:
        block_id: Id of the referenced (template) block
        referencing_block_id: Id of the block carrying repeatableBlockRef
        reason: Short explanation
    """

    def __init__(self, block_id: str, referencing_block_id: str, reason: str = "not found"):
        self.block_id = block_id
        self.referencing_block_id = referencing_block_id
        self.reason = reason
        super().__init__(
            f"Template block '{block_id}' referenced by block "
            f"'{referencing_block_id}' cannot be used: {reason}"
        )

    def __repr__(self) -> str:
        return (
            f"MissingTemplateBlockError(block_id={self.block_id!r}, "
            f"referencing_block_id={self.referencing_block_id!r})"
        )


class CyclicReferenceError(ReferenceResolutionError):
    """
    A reference was re-encountered while it was still being resolved.

    Attributes:
        reference_id: The id that closed the cycle
        chain: Ids in progress when the cycle was detected, outermost first
    """

    def __init__(self, reference_id: str, chain: list[str]):
        self.reference_id = reference_id
        self.chain = list(chain)

        cycle = " -> ".join(self.chain + [reference_id])
        super().__init__(f"Circular reference detected for '{reference_id}': {cycle}")

    def __repr__(self) -> str:
        return f"CyclicReferenceError(reference_id={self.reference_id!r}, chain={self.chain!r})"


class DuplicateBlockIdError(ReferenceResolutionError):
    """Splicing sub-forms produced two blocks with the same id."""

    def __init__(self, block_id: str):
        self.block_id = block_id
        super().__init__(
            f"Block id '{block_id}' appears more than once after sub-form resolution. "
            f"Use subFormInstanceId to distinguish repeated uses of the same sub-form."
        )

    def __repr__(self) -> str:
        return f"DuplicateBlockIdError(block_id={self.block_id!r})"


class ConflictingReferenceError(ReferenceResolutionError):
    """A block declares both subFormRef and repeatableBlockRef."""

    def __init__(self, block_id: str):
        self.block_id = block_id
        super().__init__(
            f"Block '{block_id}' declares both subFormRef and repeatableBlockRef; "
            f"combining the two references is not supported"
        )

    def __repr__(self) -> str:
        return f"ConflictingReferenceError(block_id={self.block_id!r})"


class ReferenceDepthExceededError(ReferenceResolutionError):
    """Nested references went deeper than the configured limit."""

    def __init__(self, reference_id: str, depth: int, max_depth: int):
        self.reference_id = reference_id
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Reference depth limit exceeded at '{reference_id}' "
            f"(depth: {depth}, limit: {max_depth}). To increase the limit, set the "
            f"FORMS_MAX_REFERENCE_DEPTH environment variable to a higher value."
        )

    def __repr__(self) -> str:
        return (
            f"ReferenceDepthExceededError(reference_id={self.reference_id!r}, "
            f"depth={self.depth}, limit={self.max_depth})"
        )


class SchemaCompileError(FormEngineError):
    """
    A validation rule descriptor is malformed.

    Attributes:
        field_id: Field carrying the rule
        kind: Rule kind as written in the descriptor
        reason: What is wrong with it
    """

    def __init__(self, field_id: str, kind: str, reason: str):
        self.field_id = field_id
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid '{kind}' rule on field '{field_id}': {reason}")

    def __repr__(self) -> str:
        return f"SchemaCompileError(field_id={self.field_id!r}, kind={self.kind!r})"


class RuleProviderError(FormEngineError):
    """The rule provider failed to return a usable RuleDelta."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"RuleProviderError(status_code={self.status_code!r})"
