"""
Validation schema compiler.

Turns a resolved descriptor into an executable ValidationSchema built from
Pydantic TypeAdapters:

- scalar fields: Annotated[Any, BeforeValidator(coerce), AfterValidator(type check),
  AfterValidator(rule) ...] with the rules in declaration order
- repeatable groups: list[<group element model>] where the element model is
  created with create_model from the group's de-prefixed field schemas, with
  min/max length constraints taken from the owning block

Rules raise PydanticCustomError with the rule kind as error type and the rule
message as error message, so issues carry both.

Malformed rule descriptors (unknown kind, missing or unusable parameter)
abort compilation with SchemaCompileError.
"""

import logging
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic_core import PydanticCustomError

from .exceptions import SchemaCompileError
from .field_kinds import traits_for
from .reference_resolver import iter_render_blocks
from .schema import (
    BlockDescriptor,
    FieldDescriptor,
    FieldType,
    FormDescriptor,
    ValidationRule,
    ValidationRuleKind,
)

logger = logging.getLogger(__name__)

# Caller-supplied validators for "custom" rules: True passes, anything else fails
CustomValidator = Callable[[Any], bool | str]

Validator = Callable[[Any], Any]


@dataclass(frozen=True)
class ValidationIssue:
    """A single failed rule."""

    path: str
    message: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message, "code": self.code}


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _fail(kind: str, message: str) -> PydanticCustomError:
    return PydanticCustomError(kind, message)


# Rule builders ---------------------------------------------------------------


def _require_parameter(field_id: str, rule: ValidationRule) -> Any:
    if rule.parameter is None or rule.parameter == "":
        raise SchemaCompileError(field_id, rule.kind, "missing required parameter")
    return rule.parameter


def _int_parameter(field_id: str, rule: ValidationRule) -> int:
    parameter = _require_parameter(field_id, rule)
    try:
        value = int(parameter)
    except (TypeError, ValueError):
        raise SchemaCompileError(
            field_id, rule.kind, f"parameter must be an integer, got {parameter!r}"
        ) from None
    if value < 0:
        raise SchemaCompileError(field_id, rule.kind, "parameter must not be negative")
    return value


def _number_parameter(field_id: str, rule: ValidationRule) -> float:
    parameter = _require_parameter(field_id, rule)
    try:
        value = float(parameter)
    except (TypeError, ValueError):
        raise SchemaCompileError(
            field_id, rule.kind, f"parameter must be a number, got {parameter!r}"
        ) from None
    if math.isnan(value):
        raise SchemaCompileError(field_id, rule.kind, "parameter must be a number")
    return value


def parse_date(value: Any) -> date | None:
    """Parse an ISO-8601 date or datetime string; None when unparsable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        return None


def _date_parameter(field_id: str, rule: ValidationRule) -> date:
    parameter = _require_parameter(field_id, rule)
    bound = parse_date(parameter)
    if bound is None:
        raise SchemaCompileError(
            field_id, rule.kind, f"parameter must be an ISO-8601 date, got {parameter!r}"
        )
    return bound


def _build_required(field: FieldDescriptor, rule: ValidationRule) -> Validator:
    message = rule.message or "This field is required"

    def check(value: Any) -> Any:
        if field.type is FieldType.CHECKBOX:
            ok = value is True
        elif field.type is FieldType.FILE:
            ok = value is not None and not (isinstance(value, (list, str)) and len(value) == 0)
        elif field.type is FieldType.NUMBER:
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
            ok = ok and not math.isnan(value)
        elif isinstance(value, (list, tuple)):
            ok = len(value) > 0
        else:
            ok = not _is_blank(value)
        if not ok:
            raise _fail(rule.kind, message)
        return value

    return check


def _build_length(field: FieldDescriptor, rule: ValidationRule) -> Validator:
    limit = _int_parameter(field.id, rule)
    is_min = rule.kind == ValidationRuleKind.MIN_LENGTH.value
    message = rule.message or (
        f"Must be at least {limit} characters" if is_min else f"Must be at most {limit} characters"
    )

    def check(value: Any) -> Any:
        if _is_blank(value):
            return value
        size = len(value) if isinstance(value, (str, list, tuple)) else len(str(value))
        if (is_min and size < limit) or (not is_min and size > limit):
            raise _fail(rule.kind, message)
        return value

    return check


def _build_pattern(field: FieldDescriptor, rule: ValidationRule) -> Validator:
    parameter = _require_parameter(field.id, rule)
    try:
        regex = re.compile(str(parameter))
    except re.error as e:
        raise SchemaCompileError(field.id, rule.kind, f"invalid regular expression: {e}") from e
    message = rule.message or "Invalid format"

    def check(value: Any) -> Any:
        if _is_blank(value):
            return value
        text = value if isinstance(value, str) else str(value)
        if regex.search(text) is None:
            raise _fail(rule.kind, message)
        return value

    return check


def _build_bound(field: FieldDescriptor, rule: ValidationRule) -> Validator:
    bound = _number_parameter(field.id, rule)
    is_min = rule.kind == ValidationRuleKind.MIN.value
    shown = int(bound) if bound.is_integer() else bound
    message = rule.message or (
        f"Must be greater than or equal to {shown}"
        if is_min
        else f"Must be less than or equal to {shown}"
    )

    def check(value: Any) -> Any:
        if _is_blank(value):
            return value
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise _fail(rule.kind, message) from None
        if math.isnan(number) or (is_min and number < bound) or (not is_min and number > bound):
            raise _fail(rule.kind, message)
        return value

    return check


def _build_date_bound(field: FieldDescriptor, rule: ValidationRule) -> Validator:
    bound = _date_parameter(field.id, rule)
    is_min = rule.kind == ValidationRuleKind.MIN_DATE.value
    message = rule.message or (
        f"Date must be on or after {bound.isoformat()}"
        if is_min
        else f"Date must be on or before {bound.isoformat()}"
    )

    def check(value: Any) -> Any:
        if _is_blank(value):
            return value
        parsed = parse_date(value)
        if parsed is None or (is_min and parsed < bound) or (not is_min and parsed > bound):
            raise _fail(rule.kind, message)
        return value

    return check


def _custom_builder(
    custom_validators: Mapping[str, CustomValidator],
) -> Callable[[FieldDescriptor, ValidationRule], Validator]:
    def build(field: FieldDescriptor, rule: ValidationRule) -> Validator:
        name = str(_require_parameter(field.id, rule))
        validator = custom_validators.get(name)
        if validator is None:
            raise SchemaCompileError(field.id, rule.kind, f"unknown custom validator '{name}'")
        message = rule.message or "Invalid value"

        def check(value: Any) -> Any:
            if validator(value) is not True:
                raise _fail(rule.kind, message)
            return value

        return check

    return build


_RULE_BUILDERS: dict[str, Callable[[FieldDescriptor, ValidationRule], Validator]] = {
    ValidationRuleKind.REQUIRED.value: _build_required,
    ValidationRuleKind.MIN_LENGTH.value: _build_length,
    ValidationRuleKind.MAX_LENGTH.value: _build_length,
    ValidationRuleKind.PATTERN.value: _build_pattern,
    ValidationRuleKind.MIN.value: _build_bound,
    ValidationRuleKind.MAX.value: _build_bound,
    ValidationRuleKind.MIN_DATE.value: _build_date_bound,
    ValidationRuleKind.MAX_DATE.value: _build_date_bound,
}


def _type_check(field_type: FieldType) -> Validator:
    """Permissive base-type check: None always passes."""

    def check(value: Any) -> Any:
        if value is None:
            return value
        if field_type is FieldType.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise _fail("number_type", "Must be a number")
        elif field_type is FieldType.CHECKBOX:
            if not isinstance(value, bool):
                raise _fail("bool_type", "Must be true or false")
        elif field_type.is_text_like:
            if not isinstance(value, (str, list)):
                raise _fail("string_type", "Must be text")
        return value

    return check


# Compiled schema -------------------------------------------------------------


@dataclass
class FieldSchema:
    """Compiled validation chain of one field."""

    field_id: str
    field_type: FieldType
    rules: list[str]
    annotation: Any
    adapter: TypeAdapter[Any]

    def validate(self, value: Any) -> Any:
        """Validate one value; returns the coerced value or raises ValidationError."""
        return self.adapter.validate_python(value)

    def describe(self) -> dict[str, Any]:
        return {
            "type": traits_for(self.field_type).base_type,
            "fieldType": self.field_type.value,
            "rules": list(self.rules),
        }


@dataclass
class GroupSchema:
    """Array schema of one repeatable group."""

    group_id: str
    block_id: str
    min_items: int | None
    max_items: int | None
    fields: dict[str, FieldSchema]
    element_model: type[BaseModel]
    adapter: TypeAdapter[Any]
    # Model attribute name -> de-prefixed field id
    member_keys: dict[str, str] = field(default_factory=dict)

    def validate(self, value: Any) -> Any:
        return self.adapter.validate_python(value)

    def describe(self) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "type": "array",
            "block": self.block_id,
            "fields": {key: schema.describe() for key, schema in self.fields.items()},
        }
        if self.min_items is not None:
            summary["minItems"] = self.min_items
        if self.max_items is not None:
            summary["maxItems"] = self.max_items
        return summary


@dataclass
class ValidationSchema:
    """
    Executable validation schema of a descriptor.

    Maps top-level field paths to scalar schemas and repeatable group ids to
    array schemas.
    """

    fields: dict[str, FieldSchema] = field(default_factory=dict)
    groups: dict[str, GroupSchema] = field(default_factory=dict)

    def validate(self, values: Mapping[str, Any]) -> list[ValidationIssue]:
        """
        Validate form values.

        Missing scalar values validate as None; a missing group validates as
        an empty array.
        """
        issues: list[ValidationIssue] = []
        for path, schema in self.fields.items():
            try:
                schema.validate(values.get(path))
            except ValidationError as e:
                issues.extend(_issues_from(e, path))

        for group_id, group in self.groups.items():
            value = values.get(group_id)
            try:
                group.validate([] if value is None else value)
            except ValidationError as e:
                issues.extend(_issues_from(e, group_id, group.member_keys))
        return issues

    def is_valid(self, values: Mapping[str, Any]) -> bool:
        return not self.validate(values)

    def field_schema(self, path: str) -> FieldSchema:
        """
        Schema of a top-level field.

        Raises:
            KeyError: If no field with that path is part of the schema
        """
        if path not in self.fields:
            raise KeyError(f"No field '{path}' in schema. Available: {sorted(self.fields)}")
        return self.fields[path]

    def group_schema(self, group_id: str) -> GroupSchema:
        """
        Schema of a repeatable group.

        Raises:
            KeyError: If the group is not part of the schema
        """
        if group_id not in self.groups:
            raise KeyError(f"No group '{group_id}' in schema. Available: {sorted(self.groups)}")
        return self.groups[group_id]

    def describe(self) -> dict[str, Any]:
        """JSON-serialisable summary of the schema."""
        return {
            "fields": {path: schema.describe() for path, schema in self.fields.items()},
            "groups": {gid: group.describe() for gid, group in self.groups.items()},
        }


def _issues_from(
    error: ValidationError, root: str, member_keys: Mapping[str, str] | None = None
) -> list[ValidationIssue]:
    """Issues keyed by dotted path; group member locations use the field id."""
    issues = []
    for detail in error.errors():
        loc = [str(part) for part in detail["loc"]]
        if member_keys and len(loc) > 1 and loc[1] not in member_keys.values():
            # Errors on defaulted (missing) members report the attribute name
            loc[1] = member_keys.get(loc[1], loc[1])
        path = ".".join([root, *loc])
        issues.append(ValidationIssue(path=path, message=detail["msg"], code=detail["type"]))
    return issues


# Compilation -----------------------------------------------------------------


def _field_annotation(
    field: FieldDescriptor, custom_validators: Mapping[str, CustomValidator]
) -> tuple[Any, list[str]]:
    builders = dict(_RULE_BUILDERS)
    builders[ValidationRuleKind.CUSTOM.value] = _custom_builder(custom_validators)

    validators: list[Any] = [
        BeforeValidator(traits_for(field.type).coerce_input),
        AfterValidator(_type_check(field.type)),
    ]
    kinds: list[str] = []
    for rule in field.validation:
        builder = builders.get(rule.kind)
        if builder is None:
            raise SchemaCompileError(field.id, rule.kind, "unknown rule kind")
        validators.append(AfterValidator(builder(field, rule)))
        kinds.append(rule.kind)

    return Annotated[Any, *validators], kinds


def compile_field_schema(
    field: FieldDescriptor, custom_validators: Mapping[str, CustomValidator] | None = None
) -> FieldSchema:
    """Compile the validation chain of a single field."""
    annotation, kinds = _field_annotation(field, custom_validators or {})
    return FieldSchema(
        field_id=field.id,
        field_type=field.type,
        rules=kinds,
        annotation=annotation,
        adapter=TypeAdapter(annotation),
    )


def _model_name(group_id: str) -> str:
    cleaned = re.sub(r"\W", "_", group_id).strip("_") or "Group"
    return f"{cleaned[0].upper()}{cleaned[1:]}Instance"


def _compile_group(
    group_id: str,
    owner: BlockDescriptor,
    members: list[FieldDescriptor],
    custom_validators: Mapping[str, CustomValidator],
) -> GroupSchema:
    prefix = f"{group_id}."
    element_fields: dict[str, FieldSchema] = {}
    model_fields: dict[str, Any] = {}
    member_keys: dict[str, str] = {}

    for index, member in enumerate(members):
        key = member.id[len(prefix) :] if member.id.startswith(prefix) else member.id
        schema = compile_field_schema(member, custom_validators)
        schema.field_id = key
        element_fields[key] = schema
        name = f"field_{index}"
        member_keys[name] = key
        model_fields[name] = (
            schema.annotation,
            Field(default=None, alias=key, validate_default=True),
        )

    element_model = create_model(
        _model_name(group_id),
        __config__=ConfigDict(populate_by_name=True, extra="allow"),
        **model_fields,
    )

    min_items = owner.min_instances if owner.min_instances else None
    max_items = owner.max_instances
    constraints: dict[str, int] = {}
    if min_items is not None:
        constraints["min_length"] = min_items
    if max_items is not None:
        constraints["max_length"] = max_items

    list_type: Any = list[element_model]  # type: ignore[valid-type]
    if constraints:
        list_type = Annotated[list_type, Field(**constraints)]

    return GroupSchema(
        group_id=group_id,
        block_id=owner.id,
        min_items=min_items,
        max_items=max_items,
        fields=element_fields,
        element_model=element_model,
        adapter=TypeAdapter(list_type),
        member_keys=member_keys,
    )


def _compile_blocks(
    blocks: list[BlockDescriptor], custom_validators: Mapping[str, CustomValidator]
) -> ValidationSchema:
    schema = ValidationSchema()
    group_members: dict[str, list[FieldDescriptor]] = {}
    group_owner: dict[str, BlockDescriptor] = {}

    for block in blocks:
        for item in block.fields:
            if item.type.is_action:
                continue
            if item.repeatable_group_id:
                group_members.setdefault(item.repeatable_group_id, []).append(item)
                group_owner.setdefault(item.repeatable_group_id, block)
                continue
            schema.fields[item.id] = compile_field_schema(item, custom_validators)

    for group_id, members in group_members.items():
        schema.groups[group_id] = _compile_group(
            group_id, group_owner[group_id], members, custom_validators
        )
    return schema


def compile_schema(
    descriptor: FormDescriptor,
    custom_validators: Mapping[str, CustomValidator] | None = None,
) -> ValidationSchema:
    """
    Compile the primary validation schema of a resolved descriptor.

    Popin blocks, template-only blocks and action fields are not part of the
    primary schema.

    Raises:
        SchemaCompileError: A validation rule is malformed
    """
    schema = _compile_blocks(list(iter_render_blocks(descriptor)), custom_validators or {})
    logger.debug(
        f"Compiled schema: {len(schema.fields)} field(s), {len(schema.groups)} group(s)"
    )
    return schema


def compile_block_schema(
    block: BlockDescriptor,
    custom_validators: Mapping[str, CustomValidator] | None = None,
) -> ValidationSchema:
    """Compile the standalone schema of one block (used for popins)."""
    return _compile_blocks([block], custom_validators or {})
