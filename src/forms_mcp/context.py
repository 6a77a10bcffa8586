"""Shared context types for MCP server.

This module contains context types used across server and tools modules,
separated to avoid circular imports.
"""

from dataclasses import dataclass

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import (
    CaseContext,
    ChainedSubFormProvider,
    FormDescriptor,
    FormRegistry,
    HttpSubFormProvider,
    RehydrationCoordinator,
    SubFormProvider,
    SubFormRegistry,
)
from .engine.reference_resolver import DEFAULT_MAX_DEPTH
from .engine.rehydration import DEFAULT_DEBOUNCE_MS, RuleProvider


@dataclass
class AppContext:
    """Application context containing shared resources for MCP tools.

    This context is created during server startup and made available to all tools
    via dependency injection through the Context parameter.
    """

    forms: FormRegistry
    sub_forms: SubFormRegistry
    remote_sub_forms: HttpSubFormProvider | None = None  # Optional fetch-by-id fallback
    rule_provider: RuleProvider | None = None  # HttpRuleProvider when FORMS_RULES_URL is set
    max_reference_depth: int = DEFAULT_MAX_DEPTH
    debounce_ms: int = DEFAULT_DEBOUNCE_MS

    @property
    def sub_form_provider(self) -> SubFormProvider:
        """Registry first, then the remote provider when configured."""
        if self.remote_sub_forms is None:
            return self.sub_forms
        return ChainedSubFormProvider(self.sub_forms, self.remote_sub_forms)

    def create_coordinator(
        self, resolved: FormDescriptor, case_context: CaseContext | None = None
    ) -> RehydrationCoordinator:
        """Create a RehydrationCoordinator for a resolved descriptor.

        Raises:
            RuntimeError: If no rule provider is configured
        """
        if self.rule_provider is None:
            raise RuntimeError("No rule provider configured. Set FORMS_RULES_URL.")
        return RehydrationCoordinator(
            resolved,
            self.rule_provider,
            case_context=case_context,
            debounce_ms=self.debounce_ms,
        )


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
