"""
Template evaluator with rule-based normalisation and a sandboxed Jinja2 backend.

Pipeline:
    Template source
          ↓
    Transform Pipeline (Rules)
          ↓
    Translator (Handlebars → Jinja2)
          ↓
    Sandboxed Jinja2 Engine
          ↓
    Post-Processing (boolean / value / native)

Evaluation never raises. A malformed template or a runtime fault is logged at
WARNING and degrades to "" (value usage) or False (boolean usage), so one bad
condition cannot break a whole form.

Example:
    evaluator = TemplateEvaluator()
    evaluator.evaluate_boolean('{{eq country "US"}}', {"country": "US"})  # True
    evaluator.evaluate_value("{{city}}, {{zip}}", {"city": "Lyon"})      # "Lyon, "
"""

import logging
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from jinja2 import ChainableUndefined, Template, Undefined
from jinja2.sandbox import SandboxedEnvironment

from .helpers import helper_globals, render_value, unwrap
from .rules import RuleContext, TransformRule
from .syntax_rules import CommentStripRule, TripleStashRule, WhitespaceControlRule
from .translator import CONTEXT_VAR, MUSTACHE_PATTERN, translate, translate_expression

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"true", "1"})


class FormTemplateEnvironment(SandboxedEnvironment):
    """
    Sandboxed environment with JavaScript-like item lookup.

    Subscripts only ever read mapping keys and sequence indexes; a miss yields
    undefined instead of falling back to Python attributes. `length` on a list
    or string is its size.
    """

    def getitem(self, obj: Any, argument: Any) -> Any:
        if isinstance(obj, Undefined):
            return obj
        if isinstance(obj, Mapping):
            if argument in obj:
                return obj[argument]
            return self.undefined(obj=obj, name=argument)
        if isinstance(obj, (list, tuple, str)):
            if argument == "length":
                return len(obj)
            index = argument
            if isinstance(index, str) and index.isdigit():
                index = int(index)
            if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(obj):
                return obj[index]
        return self.undefined(obj=obj, name=argument)


class TemplateEvaluator:
    """
    Evaluate form template expressions against a form context.

    Compiled templates are cached per evaluator; the evaluator itself holds no
    per-evaluation state and can be shared.
    """

    def __init__(self, rules: list[TransformRule] | None = None, cache_size: int = 512):
        """
        Initialize template evaluator.

        Args:
            rules: Optional custom transformation rules, applied with the defaults
            cache_size: Number of compiled templates kept in the LRU cache
        """
        self.rules = self._initialize_rules(rules)
        self.env = FormTemplateEnvironment(
            undefined=ChainableUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            finalize=render_value,
        )
        self.env.globals.update(helper_globals())

        self._compile = lru_cache(maxsize=cache_size)(self._compile_template)
        self._compile_native = lru_cache(maxsize=cache_size)(self._compile_expression)

    def _initialize_rules(self, custom_rules: list[TransformRule] | None) -> list[TransformRule]:
        default_rules: list[TransformRule] = [
            CommentStripRule(),
            TripleStashRule(),
            WhitespaceControlRule(),
        ]
        all_rules = default_rules + (custom_rules or [])
        return sorted(all_rules, key=lambda r: r.priority)

    def _apply_rules(self, source: str) -> tuple[str, dict[str, Any]]:
        context = RuleContext(source=source)
        for rule in self.rules:
            if rule.applies_to(context):
                context = rule.transform(context)
        return context.source, context.metadata

    def translate(self, source: str) -> str:
        """
        Normalise and translate a template to Jinja2 source.

        Raises:
            TemplateTranslationError: If the template is malformed
        """
        normalised, _ = self._apply_rules(source)
        return translate(normalised)

    def _compile_template(self, source: str) -> Template:
        return self.env.from_string(self.translate(source))

    def _compile_expression(self, expression: str) -> Any:
        return self.env.compile_expression(translate_expression(expression), undefined_to_none=True)

    @staticmethod
    def _variables(context: Mapping[str, Any] | None) -> dict[str, Any]:
        context = dict(context or {})
        return {CONTEXT_VAR: context}

    def render(self, template: str, context: Mapping[str, Any] | None = None) -> str:
        """
        Render a template to a string.

        Raises:
            TemplateTranslationError: If the template is malformed
            jinja2.TemplateError: On rendering faults (including sandbox violations)
        """
        return self._compile(template).render(self._variables(context))

    def evaluate_value(self, template: Any, context: Mapping[str, Any] | None = None) -> str:
        """Render a value template; failures are logged and yield ""."""
        if not isinstance(template, str):
            return render_value(template)
        if "{{" not in template:
            return template
        try:
            return self.render(template, context)
        except Exception as e:
            logger.warning(f"Template evaluation failed for {template!r}: {e}")
            return ""

    def evaluate_boolean(self, template: Any, context: Mapping[str, Any] | None = None) -> bool:
        """
        Evaluate a condition template.

        The rendered output is trimmed and lower-cased; "true" and "1" are True,
        anything else (including failures) is False.
        """
        if template is None:
            return False
        if isinstance(template, bool):
            return template
        if not isinstance(template, str):
            return render_value(template).strip().lower() in _TRUE_STRINGS
        try:
            rendered = self.render(template, context)
        except Exception as e:
            logger.warning(f"Condition evaluation failed for {template!r}: {e}")
            return False
        return rendered.strip().lower() in _TRUE_STRINGS

    def evaluate_native(self, template: Any, context: Mapping[str, Any] | None = None) -> Any:
        """
        Evaluate a template preserving the native value type.

        A template consisting of exactly one expression mustache returns the
        expression's value (list, number, bool, None for undefined); any other
        template renders to a string. Failures are logged and yield None.
        """
        if not isinstance(template, str) or "{{" not in template:
            return template

        normalised, _ = self._apply_rules(template)
        inner = _single_expression(normalised)
        try:
            if inner is None:
                return self.render(template, context)
            return unwrap(self._compile_native(inner)(**self._variables(context)))
        except Exception as e:
            logger.warning(f"Template evaluation failed for {template!r}: {e}")
            return None


def _single_expression(source: str) -> str | None:
    """Body of the only mustache in `source` when it is a plain expression."""
    stripped = source.strip()
    match = MUSTACHE_PATTERN.fullmatch(stripped)
    if match is None:
        return None
    inner = match.group(1).strip()
    if "{{" in inner or "}}" in inner:
        return None
    if not inner or inner[0] in "#/!" or inner == "else":
        return None
    return inner


def is_template(value: Any) -> bool:
    """True when the value is a string containing a template expression."""
    return isinstance(value, str) and "{{" in value and "}}" in value


_default_evaluator: TemplateEvaluator | None = None


def get_evaluator() -> TemplateEvaluator:
    """Shared process-wide evaluator (stateless apart from its compile cache)."""
    global _default_evaluator
    if _default_evaluator is None:
        _default_evaluator = TemplateEvaluator()
    return _default_evaluator


def evaluate_template(template: Any, context: Mapping[str, Any] | None = None) -> str:
    """Evaluate a value template with the shared evaluator."""
    return get_evaluator().evaluate_value(template, context)


def evaluate_condition(template: Any, context: Mapping[str, Any] | None = None) -> bool:
    """Evaluate a condition template with the shared evaluator."""
    return get_evaluator().evaluate_boolean(template, context)
