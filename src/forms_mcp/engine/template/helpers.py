"""
Built-in helpers available inside template expressions.

Helpers receive already-evaluated arguments (there is no short-circuiting:
`and`/`or` see every operand). Missing values arrive as jinja2 Undefined and
are treated like None.

Comparison helpers (gt, lt, gte, lte) compare numerically. Operands that are
not numbers or numeric strings coerce to NaN, which makes the comparison
false.
"""

import json
import math
from collections.abc import Callable
from typing import Any

from jinja2 import Undefined


def unwrap(value: Any) -> Any:
    """Map jinja2 Undefined to None; pass everything else through."""
    if isinstance(value, Undefined):
        return None
    return value


def is_truthy(value: Any) -> bool:
    """
    Truthiness used by and/or/not.

    False, None, undefined, 0, NaN and "" are falsy. Every list and mapping is
    truthy, including empty ones.
    """
    value = unwrap(value)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def is_block_truthy(value: Any) -> bool:
    """Truthiness used by {{#if}} / {{#unless}}: empty lists are falsy too."""
    if isinstance(unwrap(value), (list, tuple)):
        return len(value) > 0
    return is_truthy(value)


def to_number(value: Any) -> float:
    """Coerce a value to float, NaN when it is not numeric."""
    value = unwrap(value)
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def helper_eq(a: Any, b: Any) -> bool:
    a, b = unwrap(a), unwrap(b)
    # bool is an int subclass; True must not equal 1
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def helper_ne(a: Any, b: Any) -> bool:
    return not helper_eq(a, b)


def helper_gt(a: Any, b: Any) -> bool:
    return to_number(a) > to_number(b)


def helper_lt(a: Any, b: Any) -> bool:
    return to_number(a) < to_number(b)


def helper_gte(a: Any, b: Any) -> bool:
    return to_number(a) >= to_number(b)


def helper_lte(a: Any, b: Any) -> bool:
    return to_number(a) <= to_number(b)


def helper_and(*values: Any) -> bool:
    results = [is_truthy(v) for v in values]
    return all(results)


def helper_or(*values: Any) -> bool:
    results = [is_truthy(v) for v in values]
    return any(results)


def helper_not(value: Any = None) -> bool:
    return not is_truthy(value)


def helper_contains(collection: Any, value: Any) -> bool:
    collection, value = unwrap(collection), unwrap(value)
    if isinstance(collection, (list, tuple)):
        return any(helper_eq(item, value) for item in collection)
    if isinstance(collection, str):
        return render_value(value) in collection
    return False


def helper_is_empty(value: Any = None) -> bool:
    """True for null/undefined, "" and empty collections; numbers are never empty."""
    value = unwrap(value)
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def helper_json(value: Any = None, fallback: Any = None) -> str:
    """Serialize a value as JSON, with an optional fallback literal for null."""
    value, fallback = unwrap(value), unwrap(fallback)
    if value is None:
        return fallback if isinstance(fallback, str) else "null"
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        if isinstance(fallback, str):
            return fallback
        return "[]" if isinstance(value, (list, tuple)) else "{}"


def iterate(value: Any) -> list[Any]:
    """Items iterated by {{#each}}: list items, mapping values, nothing otherwise."""
    value = unwrap(value)
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, dict):
        return list(value.values())
    return []


def render_value(value: Any) -> str:
    """
    Render an evaluated value as template output.

    None and undefined render empty, booleans lower-case, integral floats
    without a fractional part, lists comma-joined and mappings as JSON.
    """
    value = unwrap(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(render_value(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


# Helper name (as written in templates) → implementation
HELPERS: dict[str, Callable[..., Any]] = {
    "eq": helper_eq,
    "ne": helper_ne,
    "gt": helper_gt,
    "lt": helper_lt,
    "gte": helper_gte,
    "lte": helper_lte,
    "and": helper_and,
    "or": helper_or,
    "not": helper_not,
    "contains": helper_contains,
    "isEmpty": helper_is_empty,
    "json": helper_json,
}

# Prefix used for helper globals in the Jinja2 environment
HELPER_PREFIX = "hb_"


def helper_globals() -> dict[str, Callable[..., Any]]:
    """Jinja2 globals exposing every helper plus the block-helper support functions."""
    exposed = {f"{HELPER_PREFIX}{name}": fn for name, fn in HELPERS.items()}
    exposed[f"{HELPER_PREFIX}truthy"] = is_block_truthy
    exposed[f"{HELPER_PREFIX}iter"] = iterate
    return exposed
