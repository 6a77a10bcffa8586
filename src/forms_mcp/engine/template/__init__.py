"""
Template expression evaluation for form descriptors.

Components:
    - TemplateEvaluator: Normalise, translate and render templates
    - TransformRule: Base class for custom normalisation rules
    - translate: Handlebars-flavoured source → Jinja2 source
"""

from .evaluator import (
    FormTemplateEnvironment,
    TemplateEvaluator,
    evaluate_condition,
    evaluate_template,
    get_evaluator,
    is_template,
)
from .helpers import HELPERS, is_truthy, render_value
from .rules import RuleContext, RuleType, TransformRule
from .translator import TemplateTranslationError, translate

__all__ = [
    "FormTemplateEnvironment",
    "HELPERS",
    "RuleContext",
    "RuleType",
    "TemplateEvaluator",
    "TemplateTranslationError",
    "TransformRule",
    "evaluate_condition",
    "evaluate_template",
    "get_evaluator",
    "is_template",
    "is_truthy",
    "render_value",
    "translate",
]
