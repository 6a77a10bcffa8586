"""
CaseContext and FormContext construction.

CaseContext is the flat map of discriminant values (plus externally supplied
case attributes) sent to the rule provider. FormContext is the scope template
expressions are evaluated against:

    {
        **case_context,          # case attributes, flat
        **form_values,           # live field values, flat (win over case keys)
        "formData": {...},       # live field values again, nested
        "caseContext": {...},    # the case context, nested
    }

Inside a repeatable instance the scope additionally holds the group array,
the instance's own unprefixed values and the @index/@first/@last bindings.

All functions return new dictionaries; inputs are never mutated.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from .schema import CaseContext, FieldDescriptor, FormContext, FormDescriptor

_MISSING = object()


def _is_case_value(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, list))


def initialize_case_context(prefill: Mapping[str, Any] | None) -> CaseContext:
    """
    CaseContext from prefill data supplied at case creation.

    Scalars and arrays are kept; nested objects are not case attributes and
    are dropped.
    """
    if not prefill:
        return {}
    return {key: value for key, value in prefill.items() if _is_case_value(value)}


def identify_discriminant_fields(fields: Iterable[FieldDescriptor]) -> list[FieldDescriptor]:
    """Fields flagged isDiscriminant."""
    return [field for field in fields if field.is_discriminant]


def get_discriminant_fields(descriptor: FormDescriptor) -> list[FieldDescriptor]:
    """Discriminant fields of every block of a descriptor, in document order."""
    return identify_discriminant_fields(descriptor.iter_fields())


def extract_field_value(form_values: Mapping[str, Any], path: str) -> Any:
    """
    Value at `path`: a direct key first, then a dotted walk through nested
    mappings and lists. Returns the module sentinel when absent.
    """
    if path in form_values:
        return form_values[path]

    current: Any = form_values
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def update_case_context(
    previous: Mapping[str, Any],
    form_values: Mapping[str, Any],
    discriminant_fields: Iterable[FieldDescriptor],
) -> CaseContext:
    """
    New CaseContext with the current discriminant values merged over `previous`.

    A discriminant missing from the form values keeps its previous value;
    values that are not valid case values (objects) are ignored.
    """
    updated: CaseContext = dict(previous)
    for field in discriminant_fields:
        value = extract_field_value(form_values, field.id)
        if value is _MISSING or not _is_case_value(value):
            continue
        updated[field.id] = value
    return updated


def has_context_changed(old: Mapping[str, Any], new: Mapping[str, Any]) -> bool:
    """
    Shallow key-wise inequality over the keys of either context.

    Lists compare element-wise (shallow); a key missing on one side differs
    from any value on the other, None included.
    """
    for key in set(old) | set(new):
        old_value = old.get(key, _MISSING)
        new_value = new.get(key, _MISSING)
        if isinstance(old_value, list) and isinstance(new_value, list):
            if len(old_value) != len(new_value):
                return True
            if any(_differs(a, b) for a, b in zip(old_value, new_value, strict=True)):
                return True
        elif _differs(old_value, new_value):
            return True
    return False


def _differs(a: Any, b: Any) -> bool:
    # Strict comparison: True is not 1
    if type(a) is bool or type(b) is bool:
        return type(a) is not type(b) or a != b
    return a is not b and a != b


def build_form_context(
    form_values: Mapping[str, Any] | None = None,
    case_context: Mapping[str, Any] | None = None,
) -> FormContext:
    """Evaluation scope for templates outside repeatable instances."""
    values = dict(form_values or {})
    case = dict(case_context or {})
    return {**case, **values, "formData": values, "caseContext": case}


def instance_values(group_id: str, instance: Mapping[str, Any] | None) -> dict[str, Any]:
    """An instance's values keyed by unprefixed field id."""
    prefix = f"{group_id}."
    return {
        (key[len(prefix) :] if key.startswith(prefix) else key): value
        for key, value in (instance or {}).items()
    }


def build_instance_context(
    form_context: Mapping[str, Any],
    group_id: str,
    index: int,
    instances: list[Mapping[str, Any]] | None = None,
) -> FormContext:
    """Evaluation scope for the `index`-th instance of a repeatable group."""
    instances = list(instances or [])
    current = instances[index] if 0 <= index < len(instances) else None
    return {
        **form_context,
        group_id: instances,
        **instance_values(group_id, current),
        "@index": index,
        "@first": index == 0,
        "@last": index == len(instances) - 1,
    }
