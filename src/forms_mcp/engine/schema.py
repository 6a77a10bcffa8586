"""
Form descriptor schema with Pydantic v2 models.

This module defines the complete data model for declarative form documents:
- FormDescriptor → BlockDescriptor → FieldDescriptor hierarchy
- SubFormDescriptor for reusable block fragments referenced by subFormRef
- Static items and remote data source configuration
- Validation rules and status templates
- RuleDelta overlays returned by the rule provider during re-hydration

Wire format is the JSON camelCase form (subFormRef, repeatableGroupId, ...).
Models accept both the camelCase aliases and the snake_case attribute names,
and serialize back to camelCase via to_dict().

The schema validates:
- Block ids unique within a document
- items and dataSource mutually exclusive on a field
- minInstances <= maxInstances on repeatable blocks
"""

from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .load_result import LoadResult

# Flat evaluation contexts. CaseContext values are scalars or string arrays;
# FormContext may hold arbitrary nested structures (formData, caseContext, ...).
CaseContextValue = str | int | float | bool | None | list[str]
CaseContext = dict[str, CaseContextValue]
FormContext = dict[str, Any]


class DescriptorModel(BaseModel):
    """Base model for all descriptor documents (camelCase wire format)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON wire format (camelCase, None values omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FieldType(str, Enum):
    """
    Closed set of field kinds.

    Value-bearing kinds hold a form value; action kinds (button) only trigger
    behaviour such as opening a popin and never carry a value.
    """

    TEXT = "text"
    DROPDOWN = "dropdown"
    AUTOCOMPLETE = "autocomplete"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    DATE = "date"
    FILE = "file"
    NUMBER = "number"
    BUTTON = "button"

    @property
    def is_action(self) -> bool:
        """True for kinds that trigger behaviour instead of holding a value."""
        return self is FieldType.BUTTON

    @property
    def is_text_like(self) -> bool:
        """True for kinds whose value is a plain string."""
        return self in (
            FieldType.TEXT,
            FieldType.DROPDOWN,
            FieldType.AUTOCOMPLETE,
            FieldType.DATE,
        )


class ValidationRuleKind(str, Enum):
    """Rule kinds understood by the schema compiler."""

    REQUIRED = "required"
    MIN_LENGTH = "minLength"
    MAX_LENGTH = "maxLength"
    PATTERN = "pattern"
    MIN = "min"
    MAX = "max"
    MIN_DATE = "minDate"
    MAX_DATE = "maxDate"
    CUSTOM = "custom"


class ValidationRule(DescriptorModel):
    """
    A single validation rule.

    Accepted on the wire as {kind, parameter, message} or as the
    {type, value, message} shape used by rule providers; serialized as the
    latter. The kind is kept as free text so that unknown kinds are reported
    by the schema compiler rather than rejected at load time.
    """

    kind: str = Field(
        validation_alias=AliasChoices("kind", "type"),
        serialization_alias="type",
        min_length=1,
    )
    parameter: int | float | str | None = Field(
        default=None,
        validation_alias=AliasChoices("parameter", "value"),
        serialization_alias="value",
    )
    message: str = Field(default="", description="Error message shown when the rule fails")


class FieldItem(DescriptorModel):
    """Static option for dropdown, radio or autocomplete fields."""

    label: str
    value: str | int | float | bool


class AuthConfig(DescriptorModel):
    """Authentication for remote calls (resolved server-side by the UI layer)."""

    type: Literal["bearer", "apikey", "basic"]
    token: str | None = None
    header_name: str | None = None
    username: str | None = None
    password: str | None = None


class DataSourceConfig(DescriptorModel):
    """
    Remote option source for a field.

    Attributes:
        url: Template-expressed URL for fetching options
        items_template: Template transforming each response item into {label, value}
        iterator_template: Optional template for iterating array responses
        data_source_id: Identifier used to look up credentials server-side
        auth: Inline authentication (deprecated in favour of data_source_id)
    """

    url: str = Field(min_length=1)
    items_template: str
    iterator_template: str | None = None
    data_source_id: str | None = None
    auth: AuthConfig | None = None


class StatusTemplates(DescriptorModel):
    """Template expressions evaluating to a boolean string."""

    hidden: str | None = None
    disabled: str | None = None
    readonly: str | None = None


class ButtonMenuItem(DescriptorModel):
    """Entry of a menu-variant button."""

    label: str
    popin_block_id: str
    status: StatusTemplates | None = None


class ButtonConfig(DescriptorModel):
    """Configuration of an action (button) field."""

    variant: Literal["single", "menu", "link"] = "single"
    popin_block_id: str | None = None
    items: list[ButtonMenuItem] | None = None

    @model_validator(mode="after")
    def validate_variant_target(self) -> "ButtonConfig":
        """Single/link buttons need a popin target, menus need items."""
        if self.variant == "menu" and not self.items:
            raise ValueError("Menu buttons require at least one item")
        if self.variant in ("single", "link") and not self.popin_block_id:
            raise ValueError(f"'{self.variant}' buttons require popinBlockId")
        return self


class FieldDescriptor(DescriptorModel):
    """
    A single input or action definition.

    Attributes:
        id: Identifier, unique within its declaring block before namespacing
        type: Field kind (tagged variant)
        default_value: Literal default or template string evaluated against a context
        items: Static options (mutually exclusive with data_source)
        data_source: Remote option source (mutually exclusive with items)
        validation: Ordered validation rules
        is_discriminant: Changing this field's value changes the applicable rules
        status: hidden/disabled/readonly templates
        repeatable_group_id: Array group the field belongs to once resolved
    """

    id: str = Field(min_length=1)
    type: FieldType
    label: str = ""
    description: str | None = None
    default_value: str | int | float | bool | None = None
    items: list[FieldItem] | None = None
    data_source: DataSourceConfig | None = None
    validation: list[ValidationRule] = Field(default_factory=list)
    is_discriminant: bool = False
    status: StatusTemplates | None = None
    button: ButtonConfig | None = None
    repeatable_group_id: str | None = None

    @model_validator(mode="after")
    def validate_option_source(self) -> "FieldDescriptor":
        """items and dataSource are mutually exclusive."""
        if self.items is not None and self.data_source is not None:
            raise ValueError(f"Field '{self.id}' declares both items and dataSource")
        return self

    @property
    def has_default(self) -> bool:
        """True when the descriptor declares a defaultValue (even null)."""
        return "default_value" in self.model_fields_set


class PopinLoadConfig(DescriptorModel):
    """Object data loaded into the form context when a popin opens."""

    url: str = Field(min_length=1)
    data_source_id: str | None = None
    auth: AuthConfig | None = None


class PopinSubmitConfig(DescriptorModel):
    """Endpoint called when a popin's validate button is clicked."""

    url: str = Field(min_length=1)
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    payload_template: str | None = None
    auth: AuthConfig | None = None


class BlockDescriptor(DescriptorModel):
    """
    A titled group of fields.

    Attributes:
        sub_form_ref: Id of a SubFormDescriptor spliced in place of this block
        sub_form_instance_id: Disambiguates repeated uses of the same sub-form
        popin: Standalone block only opened through button triggers
        repeatable: Block hosts array-modeled field groups
        repeatable_block_ref: Id of the template block whose fields are repeated
        min_instances / max_instances: Array length bounds for the group
        template_only: Set by the resolver on blocks used as repeatable templates
    """

    id: str = Field(min_length=1)
    title: str = ""
    description: str | None = None
    fields: list[FieldDescriptor] = Field(default_factory=list)
    status: StatusTemplates | None = None
    sub_form_ref: str | None = None
    sub_form_instance_id: str | None = None
    popin: bool = False
    popin_load: PopinLoadConfig | None = None
    popin_submit: PopinSubmitConfig | None = None
    repeatable: bool = False
    min_instances: int | None = Field(default=None, ge=0)
    max_instances: int | None = Field(default=None, ge=0)
    repeatable_block_ref: str | None = None
    template_only: bool = False

    @model_validator(mode="after")
    def validate_instance_bounds(self) -> "BlockDescriptor":
        """minInstances cannot exceed maxInstances."""
        if (
            self.min_instances is not None
            and self.max_instances is not None
            and self.min_instances > self.max_instances
        ):
            raise ValueError(
                f"Block '{self.id}': minInstances ({self.min_instances}) "
                f"exceeds maxInstances ({self.max_instances})"
            )
        return self


class SubmissionConfig(DescriptorModel):
    """Form submission endpoint."""

    url: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH"] = "POST"
    payload_template: str | None = None
    headers: dict[str, str] | None = None
    auth: AuthConfig | None = None


def _check_unique_block_ids(blocks: list[BlockDescriptor]) -> list[BlockDescriptor]:
    block_ids = [block.id for block in blocks]
    if len(block_ids) != len(set(block_ids)):
        duplicates = sorted({bid for bid in block_ids if block_ids.count(bid) > 1})
        raise ValueError(f"Duplicate block IDs found: {duplicates}")
    return blocks


class FormDescriptor(DescriptorModel):
    """
    Root form document.

    The base structure that gets resolved (sub-forms, repeatable templates)
    and then merged with RuleDelta overlays during re-hydration.
    """

    id: str | None = None
    title: str | None = None
    version: str = "1.0"
    blocks: list[BlockDescriptor] = Field(default_factory=list)
    submission: SubmissionConfig | None = None

    @field_validator("blocks")
    @classmethod
    def validate_unique_block_ids(cls, v: list[BlockDescriptor]) -> list[BlockDescriptor]:
        """Ensure all block IDs are unique."""
        return _check_unique_block_ids(v)

    def iter_fields(self) -> list[FieldDescriptor]:
        """All fields of all blocks, in document order."""
        return [field for block in self.blocks for field in block.fields]

    def get_block(self, block_id: str) -> BlockDescriptor | None:
        """Find a block by id."""
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    @staticmethod
    def validate_dict(data: dict[str, Any]) -> LoadResult["FormDescriptor"]:
        """
        Validate a loaded dictionary against the schema.

        Returns:
            LoadResult.success(FormDescriptor) if valid
            LoadResult.failure(error_message) with validation errors
        """
        try:
            return LoadResult.success(FormDescriptor.model_validate(data))
        except Exception as e:
            return LoadResult.failure(f"Form descriptor validation failed:\n{e}")


class SubFormDescriptor(DescriptorModel):
    """
    Reusable block fragment composed into a FormDescriptor via subFormRef.

    Submission is optional: sub-forms are usually purely structural.
    """

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    version: str
    blocks: list[BlockDescriptor] = Field(default_factory=list)
    submission: SubmissionConfig | None = None

    @field_validator("blocks")
    @classmethod
    def validate_unique_block_ids(cls, v: list[BlockDescriptor]) -> list[BlockDescriptor]:
        """Ensure all block IDs are unique."""
        return _check_unique_block_ids(v)

    @staticmethod
    def validate_dict(data: dict[str, Any]) -> LoadResult["SubFormDescriptor"]:
        """Validate a loaded dictionary as a sub-form document."""
        try:
            return LoadResult.success(SubFormDescriptor.model_validate(data))
        except Exception as e:
            return LoadResult.failure(f"Sub-form validation failed:\n{e}")


class BlockRule(DescriptorModel):
    """Block-level entry of a RuleDelta."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    status: StatusTemplates | None = None


class FieldRule(DescriptorModel):
    """Field-level entry of a RuleDelta."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    validation: list[ValidationRule] | None = None
    status: StatusTemplates | None = None


class RuleDelta(DescriptorModel):
    """
    Incremental overlay of validation/status changes keyed by block and field id.

    Ids not present in the delta are left untouched by the merge.
    """

    model_config = ConfigDict(extra="ignore")

    blocks: list[BlockRule] = Field(default_factory=list)
    fields: list[FieldRule] = Field(default_factory=list)

    @field_validator("blocks", "fields", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        """Providers may send null for an absent section."""
        return [] if v is None else v


__all__ = [
    "CaseContext",
    "CaseContextValue",
    "FormContext",
    "DescriptorModel",
    "FieldType",
    "ValidationRuleKind",
    "ValidationRule",
    "FieldItem",
    "AuthConfig",
    "DataSourceConfig",
    "StatusTemplates",
    "ButtonMenuItem",
    "ButtonConfig",
    "FieldDescriptor",
    "PopinLoadConfig",
    "PopinSubmitConfig",
    "BlockDescriptor",
    "SubmissionConfig",
    "FormDescriptor",
    "SubFormDescriptor",
    "BlockRule",
    "FieldRule",
    "RuleDelta",
]
