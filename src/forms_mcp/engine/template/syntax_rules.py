"""
Lexical normalisation rules applied before translation.

Rules:
    - CommentStripRule: Remove {{! ...}} and {{!-- ... --}} comments
    - TripleStashRule: {{{expr}}} → {{expr}} (output is never HTML-escaped)
    - WhitespaceControlRule: {{~expr~}} trims adjacent whitespace
"""

import re

from .rules import RuleContext, RuleType, TransformRule

_LONG_COMMENT = re.compile(r"\{\{!--.*?--\}\}", re.DOTALL)
_SHORT_COMMENT = re.compile(r"\{\{![^}]*\}\}")
_TRIPLE_STASH = re.compile(r"\{\{\{(.*?)\}\}\}", re.DOTALL)
_OPEN_TILDE = re.compile(r"\s*\{\{~")
_CLOSE_TILDE = re.compile(r"~\}\}\s*")


class CommentStripRule(TransformRule):
    """Remove template comments entirely."""

    rule_type = RuleType.LEXICAL
    priority = 10

    def applies_to(self, context: RuleContext) -> bool:
        return "{{!" in context.source

    def transform(self, context: RuleContext) -> RuleContext:
        source = _LONG_COMMENT.sub("", context.source)
        context.source = _SHORT_COMMENT.sub("", source)
        return context

    @property
    def description(self) -> str:
        return "Strip {{! }} and {{!-- --}} comments"


class TripleStashRule(TransformRule):
    """
    Collapse triple-stash mustaches to double ones.

    Output is rendered without HTML escaping either way, so both spellings
    mean the same thing here.
    """

    rule_type = RuleType.LEXICAL
    priority = 20

    def applies_to(self, context: RuleContext) -> bool:
        return "{{{" in context.source

    def transform(self, context: RuleContext) -> RuleContext:
        context.source = _TRIPLE_STASH.sub(r"{{\1}}", context.source)
        context.metadata["triple_stash"] = True
        return context

    @property
    def description(self) -> str:
        return "Convert {{{expr}}} to {{expr}}"


class WhitespaceControlRule(TransformRule):
    """Apply ~ whitespace control by trimming the surrounding source."""

    rule_type = RuleType.LEXICAL
    priority = 30

    def applies_to(self, context: RuleContext) -> bool:
        return "{{~" in context.source or "~}}" in context.source

    def transform(self, context: RuleContext) -> RuleContext:
        source = _OPEN_TILDE.sub("{{", context.source)
        context.source = _CLOSE_TILDE.sub("}}", source)
        return context

    @property
    def description(self) -> str:
        return "Trim whitespace next to {{~ and ~}}"
