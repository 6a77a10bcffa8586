"""
Per-kind behaviour of form fields, looked up by FieldType tag.

Each kind maps to:
- empty_value: value seeded when no default is declared
- coerce_input: normalisation applied before validation rules run
- coerce_default: conversion of a rendered template default to the native type
- base_type: Python type of the validated value (for schema descriptions)
"""

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .schema import FieldType

_NUMERIC = re.compile(r"^\s*-?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?\s*$")
_INTEGER = re.compile(r"^\s*-?\d+\s*$")
_PLAIN_DECIMAL = re.compile(r"^-?\d+(\.\d+)?$")


def is_numeric_string(value: Any) -> bool:
    return isinstance(value, str) and bool(_NUMERIC.match(value))


def parse_number(value: str) -> int | float:
    """Parse a numeric string, preferring int when it has no fractional part."""
    if _INTEGER.match(value):
        return int(value)
    return float(value)


def _identity(value: Any) -> Any:
    return value


def _coerce_number_input(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return None
        if is_numeric_string(value):
            return parse_number(value)
    return value


def _coerce_checkbox_input(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return value


def _coerce_text_default(rendered: str) -> Any:
    return rendered


def _coerce_checkbox_default(rendered: str) -> bool:
    return rendered.strip().lower() in ("true", "1")


def _coerce_number_default(rendered: str) -> int | float:
    text = rendered.strip()
    try:
        return int(text, 10)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return 0
    return number if math.isfinite(number) else 0


def _coerce_radio_default(rendered: str) -> Any:
    if _PLAIN_DECIMAL.match(rendered.strip()):
        return parse_number(rendered.strip())
    return rendered


def _coerce_file_default(rendered: str) -> Any:
    if rendered.strip().lower() in ("", "null"):
        return None
    return rendered


@dataclass(frozen=True)
class FieldKindTraits:
    empty_value: Callable[[], Any]
    coerce_input: Callable[[Any], Any]
    coerce_default: Callable[[str], Any]
    base_type: str


_TEXT_TRAITS = FieldKindTraits(
    empty_value=lambda: "",
    coerce_input=_identity,
    coerce_default=_coerce_text_default,
    base_type="string",
)

FIELD_KIND_TRAITS: dict[FieldType, FieldKindTraits] = {
    FieldType.TEXT: _TEXT_TRAITS,
    FieldType.DROPDOWN: _TEXT_TRAITS,
    FieldType.AUTOCOMPLETE: _TEXT_TRAITS,
    FieldType.DATE: _TEXT_TRAITS,
    FieldType.RADIO: FieldKindTraits(
        empty_value=lambda: "",
        coerce_input=_identity,
        coerce_default=_coerce_radio_default,
        base_type="string|number",
    ),
    FieldType.CHECKBOX: FieldKindTraits(
        empty_value=lambda: False,
        coerce_input=_coerce_checkbox_input,
        coerce_default=_coerce_checkbox_default,
        base_type="boolean",
    ),
    FieldType.NUMBER: FieldKindTraits(
        empty_value=lambda: 0,
        coerce_input=_coerce_number_input,
        coerce_default=_coerce_number_default,
        base_type="number",
    ),
    FieldType.FILE: FieldKindTraits(
        empty_value=lambda: None,
        coerce_input=_identity,
        coerce_default=_coerce_file_default,
        base_type="file",
    ),
    FieldType.BUTTON: FieldKindTraits(
        empty_value=lambda: None,
        coerce_input=_identity,
        coerce_default=lambda rendered: None,
        base_type="action",
    ),
}


def traits_for(field_type: FieldType) -> FieldKindTraits:
    return FIELD_KIND_TRAITS[field_type]
