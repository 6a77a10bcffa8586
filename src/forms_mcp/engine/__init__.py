"""Form descriptor resolution and re-hydration engine.

Key Components:

- FormDescriptor / SubFormDescriptor / RuleDelta: Pydantic v2 document models
- TemplateEvaluator: Handlebars-flavoured expressions on a sandboxed Jinja2 backend
- resolve_references: Sub-form splicing and repeatable template expansion
- merge_rules: Pure overlay of rule deltas onto a resolved descriptor
- compile_schema: Executable validation schema (Pydantic TypeAdapters)
- extract_default_values / update_case_context: Initial values and contexts
- RehydrationCoordinator: Debounced, last-request-wins rule re-hydration
- SubFormRegistry / FormRegistry: Caller-owned document repositories
- LoadResult: Error monad for loader/registry safe file operations

Pipeline:
    raw descriptor → resolve_references → resolved descriptor
    (on discriminant change) merge_rules(resolved, delta) → merged descriptor
    merged descriptor → compile_schema → validation schema
"""

from .case_context import (
    build_form_context,
    build_instance_context,
    get_discriminant_fields,
    has_context_changed,
    identify_discriminant_fields,
    initialize_case_context,
    update_case_context,
)
from .defaults import evaluate_default_value, extract_block_defaults, extract_default_values
from .exceptions import (
    ConflictingReferenceError,
    CyclicReferenceError,
    DuplicateBlockIdError,
    FormEngineError,
    MissingSubFormError,
    MissingTemplateBlockError,
    ReferenceDepthExceededError,
    ReferenceResolutionError,
    RuleProviderError,
    SchemaCompileError,
)
from .load_result import LoadResult
from .loader import (
    load_descriptor_from_dict,
    load_descriptor_from_file,
    load_descriptor_from_yaml,
    load_sub_form_from_file,
    load_sub_form_from_yaml,
)
from .merger import merge_rules
from .providers import ChainedSubFormProvider, HttpRuleProvider, HttpSubFormProvider
from .reference_resolver import iter_render_blocks, resolve_references
from .registry import FormRegistry, SubFormProvider, SubFormRegistry
from .rehydration import RehydrationCoordinator, RehydrationSnapshot, RehydrationState
from .schema import (
    BlockDescriptor,
    CaseContext,
    FieldDescriptor,
    FieldType,
    FormContext,
    FormDescriptor,
    RuleDelta,
    SubFormDescriptor,
    ValidationRule,
)
from .status import (
    evaluate_disabled_status,
    evaluate_hidden_status,
    evaluate_readonly_status,
    resolve_block_by_id,
)
from .submission import evaluate_payload_template, get_error_by_path
from .template import TemplateEvaluator, evaluate_condition, evaluate_template
from .validation import ValidationIssue, ValidationSchema, compile_block_schema, compile_schema

__all__ = [
    # Documents
    "BlockDescriptor",
    "CaseContext",
    "FieldDescriptor",
    "FieldType",
    "FormContext",
    "FormDescriptor",
    "RuleDelta",
    "SubFormDescriptor",
    "ValidationRule",
    "LoadResult",
    "load_descriptor_from_dict",
    "load_descriptor_from_file",
    "load_descriptor_from_yaml",
    "load_sub_form_from_file",
    "load_sub_form_from_yaml",
    # Providers
    "ChainedSubFormProvider",
    "FormRegistry",
    "HttpRuleProvider",
    "HttpSubFormProvider",
    "SubFormProvider",
    "SubFormRegistry",
    # Templates
    "TemplateEvaluator",
    "evaluate_condition",
    "evaluate_template",
    "evaluate_disabled_status",
    "evaluate_hidden_status",
    "evaluate_readonly_status",
    "resolve_block_by_id",
    # Pipeline
    "iter_render_blocks",
    "resolve_references",
    "merge_rules",
    "ValidationIssue",
    "ValidationSchema",
    "compile_block_schema",
    "compile_schema",
    "evaluate_default_value",
    "extract_block_defaults",
    "extract_default_values",
    "build_form_context",
    "build_instance_context",
    "get_discriminant_fields",
    "has_context_changed",
    "identify_discriminant_fields",
    "initialize_case_context",
    "update_case_context",
    "evaluate_payload_template",
    "get_error_by_path",
    # Re-hydration
    "RehydrationCoordinator",
    "RehydrationSnapshot",
    "RehydrationState",
    # Errors
    "ConflictingReferenceError",
    "CyclicReferenceError",
    "DuplicateBlockIdError",
    "FormEngineError",
    "MissingSubFormError",
    "MissingTemplateBlockError",
    "ReferenceDepthExceededError",
    "ReferenceResolutionError",
    "RuleProviderError",
    "SchemaCompileError",
]
