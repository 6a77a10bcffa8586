"""
Submission helpers: payload templates and error lookup.
"""

import json
from collections.abc import Mapping
from typing import Any

from .template import get_evaluator


def evaluate_payload_template(template: str | None, form_values: Mapping[str, Any]) -> Any:
    """
    Render a submission payload template against the form values.

    An empty template (or an empty rendering) yields the raw values. Output
    that parses as JSON is returned parsed, anything else as the string.
    """
    if not template or not template.strip():
        return dict(form_values)

    context = {"formData": dict(form_values), **form_values}
    rendered = get_evaluator().evaluate_value(template, context)
    if not rendered.strip():
        return dict(form_values)

    try:
        return json.loads(rendered)
    except json.JSONDecodeError:
        return rendered


def get_error_by_path(errors: Mapping[str, Any] | None, path: str) -> dict[str, Any] | None:
    """
    Error entry at a dotted path such as "addresses.0.street".

    Works on flat ({"email": {...}}) and nested
    ({"addresses": [{"street": {...}}]}) error structures; only entries
    carrying a "message" count as errors.
    """
    if not errors or not path:
        return None

    if path in errors and isinstance(errors[path], Mapping) and "message" in errors[path]:
        return dict(errors[path])

    current: Any = errors
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None

    if isinstance(current, Mapping) and "message" in current:
        return dict(current)
    return None


def map_backend_errors(errors: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """
    Normalise backend validation errors ({field, message, code?}) into
    {"field": ..., "error": {"type": "server", "message": ...}} entries.
    """
    return [
        {
            "field": error.get("field", ""),
            "error": {"type": "server", "message": error.get("message", "")},
        }
        for error in errors
    ]


def issues_to_errors(issues: list[Any]) -> dict[str, Any]:
    """
    Nest ValidationIssue paths into an error tree readable by get_error_by_path.

    The first issue for a path wins.
    """
    tree: dict[str, Any] = {}
    for issue in issues:
        node = tree
        parts = issue.path.split(".")
        for part in parts[:-1]:
            node = node.setdefault(part, {})
            if "message" in node:
                break
        else:
            node.setdefault(parts[-1], {"message": issue.message, "type": issue.code})
    return tree
