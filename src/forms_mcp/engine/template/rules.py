"""
Rule system foundation for template source transformations.

Rules normalise Handlebars-flavoured template source before it is translated
into Jinja2. They are applied in priority order (lower = earlier).

Rule Types:
    - LEXICAL: Source-level rewrites that do not need to understand expressions
      (comments, triple-stash, whitespace control, custom spellings)

Example:
    class UpperCaseHelperRule(TransformRule):
        rule_type = RuleType.LEXICAL
        priority = 40

        def applies_to(self, context: RuleContext) -> bool:
            return "{{UPPER " in context.source

        def transform(self, context: RuleContext) -> RuleContext:
            context.source = context.source.replace("{{UPPER ", "{{upper ")
            return context

        @property
        def description(self) -> str:
            return "Accept legacy UPPER helper spelling"
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RuleType(Enum):
    """Types of transformation rules."""

    LEXICAL = "lexical"  # Source-level rewrites


@dataclass
class RuleContext:
    """
    Context passed to rules for processing.

    Attributes:
        source: Template source being transformed
        metadata: Rule-specific metadata for downstream processing
    """

    source: str
    metadata: dict[str, Any] = field(default_factory=dict)


class TransformRule(ABC):
    """
    Base class for template transformation rules.

    Each rule can:
    1. Check if it applies to the current source
    2. Transform the source
    3. Record metadata for downstream processing
    """

    rule_type: RuleType
    priority: int = 0  # Lower = higher priority

    @abstractmethod
    def applies_to(self, context: RuleContext) -> bool:
        """Check if rule applies to this context."""

    @abstractmethod
    def transform(self, context: RuleContext) -> RuleContext:
        """Apply transformation to context and return it."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what this rule does."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(priority={self.priority})"
