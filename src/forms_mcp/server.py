"""FastMCP server initialization for forms-mcp.

This module initializes the MCP server and manages shared resources via lifespan context.
All tool implementations are in the tools module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization and cleanup
- Context injection for tool access to shared resources
- FastMCP server with stdio transport
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import FormRegistry, HttpRuleProvider, HttpSubFormProvider, SubFormRegistry
from .engine.reference_resolver import DEFAULT_MAX_DEPTH
from .engine.rehydration import DEFAULT_DEBOUNCE_MS

logger = logging.getLogger(__name__)

BUILT_IN_TEMPLATES = Path(__file__).parent / "templates"

# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


def get_max_reference_depth() -> int:
    """Get maximum reference nesting depth from environment.

    Reads FORMS_MAX_REFERENCE_DEPTH environment variable.
    Default: 50, Valid range: 1-1000 (clamped automatically)

    Returns:
        Maximum reference depth (1-1000)
    """
    try:
        depth = int(os.getenv("FORMS_MAX_REFERENCE_DEPTH", str(DEFAULT_MAX_DEPTH)))
        return max(1, min(1000, depth))
    except ValueError:
        return DEFAULT_MAX_DEPTH


def get_debounce_ms() -> int:
    """Get re-hydration debounce window from FORMS_REHYDRATION_DEBOUNCE_MS (default 500)."""
    try:
        return max(0, int(os.getenv("FORMS_REHYDRATION_DEBOUNCE_MS", str(DEFAULT_DEBOUNCE_MS))))
    except ValueError:
        return DEFAULT_DEBOUNCE_MS


def parse_path_list(env_var: str) -> list[Path]:
    """Parse a comma-separated list of directories from an environment variable.

    Paths can use ~ for home directory. Entries that do not exist or are not
    directories are logged and skipped.
    """
    env_paths_str = os.getenv(env_var, "")
    paths: list[Path] = []

    if not env_paths_str.strip():
        return paths

    for path_str in env_paths_str.split(","):
        path_str = path_str.strip()
        if not path_str:
            continue
        expanded_path = Path(path_str).expanduser()
        if not expanded_path.exists():
            logger.warning(f"{env_var} path does not exist, skipping: {expanded_path}")
            continue
        if not expanded_path.is_dir():
            logger.warning(f"{env_var} path is not a directory, skipping: {expanded_path}")
            continue
        paths.append(expanded_path)

    if paths:
        logger.info(f"User paths from {env_var}: {paths}")
    else:
        logger.warning(f"{env_var} provided but no valid directories found")
    return paths


def load_forms(registry: FormRegistry) -> None:
    """Load form descriptors from built-in templates and FORMS_DESCRIPTOR_PATHS.

    Priority: user descriptors OVERRIDE built-in descriptors by id.

    Example:
        FORMS_DESCRIPTOR_PATHS="~/my-forms,/opt/company-forms"
        # Load order:
        # 1. Built-in: src/forms_mcp/templates/forms/
        # 2. User: ~/my-forms (overrides built-in by id)
        # 3. User: /opt/company-forms (overrides both by id)

    Raises:
        RuntimeError: If the built-in directory is missing or loading fails
    """
    built_in = BUILT_IN_TEMPLATES / "forms"
    if not built_in.is_dir():
        raise RuntimeError(
            f"Built-in forms directory not found: {built_in}\n"
            "This indicates a broken installation. Please reinstall forms-mcp."
        )

    user_paths = parse_path_list("FORMS_DESCRIPTOR_PATHS")
    directories_to_load: list[Path | str] = [built_in]
    directories_to_load.extend(user_paths)

    logger.info(f"Loading forms from {len(directories_to_load)} directories")
    result = registry.load_from_directories(directories_to_load, on_duplicate="overwrite")

    if not result.is_success:
        error_msg = f"Failed to load forms: {result.error}"
        logger.error(error_msg)
        raise RuntimeError(
            f"{error_msg}\n"
            "Server cannot start without forms. Please check:\n"
            "1. Built-in templates directory is intact\n"
            "2. FORMS_DESCRIPTOR_PATHS (if set) contains valid descriptor documents"
        )

    assert result.value is not None
    logger.info(f"Successfully loaded {sum(result.value.values())} total forms into registry")


def load_sub_forms(registry: SubFormRegistry) -> None:
    """Load sub-form documents from built-in templates and FORMS_SUBFORM_PATHS.

    Priority: user sub-forms OVERRIDE built-in sub-forms by id.
    """
    directories = [BUILT_IN_TEMPLATES / "sub_forms", *parse_path_list("FORMS_SUBFORM_PATHS")]

    total = 0
    for directory in directories:
        result = registry.load_from_directory(directory, on_duplicate="overwrite")
        if not result.is_success:
            logger.warning(f"Skipping sub-form directory {directory}: {result.error}")
            continue
        total += result.value or 0

    logger.info(f"Successfully loaded {total} total sub-forms into registry")


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with resource initialization and cleanup.

    This lifespan context manager:
    1. Loads form descriptors and sub-forms from built-in and user directories
    2. Configures the optional HTTP sub-form and rule providers
    3. Yields context to make resources available to tools

    Environment Variables:
        FORMS_MAX_REFERENCE_DEPTH: Maximum reference nesting depth
            (default: 50, range: 1-1000)
        FORMS_SUBFORM_URL: Sub-form URL template with an {id} placeholder
        FORMS_RULES_URL: Rule provider endpoint
        FORMS_REHYDRATION_DEBOUNCE_MS: Re-hydration debounce window

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with initialized resources
    """
    logger.info("Initializing MCP server resources...")

    max_reference_depth = get_max_reference_depth()
    if max_reference_depth != DEFAULT_MAX_DEPTH:
        logger.info(f"Using max reference depth: {max_reference_depth}")

    forms = FormRegistry()
    sub_forms = SubFormRegistry()
    load_forms(forms)
    load_sub_forms(sub_forms)

    remote_sub_forms = None
    sub_form_url = os.getenv("FORMS_SUBFORM_URL", "").strip()
    if sub_form_url:
        try:
            remote_sub_forms = HttpSubFormProvider(sub_form_url)
            logger.info(f"Remote sub-form provider: {sub_form_url}")
        except ValueError as e:
            logger.warning(f"Ignoring FORMS_SUBFORM_URL: {e}")

    rule_provider = None
    rules_url = os.getenv("FORMS_RULES_URL", "").strip()
    if rules_url:
        rule_provider = HttpRuleProvider(rules_url)
        logger.info(f"Rule provider: {rules_url}")
    else:
        logger.info("No rule provider configured (FORMS_RULES_URL unset)")

    app_context = AppContext(
        forms=forms,
        sub_forms=sub_forms,
        remote_sub_forms=remote_sub_forms,
        rule_provider=rule_provider,
        max_reference_depth=max_reference_depth,
        debounce_ms=get_debounce_ms(),
    )

    try:
        yield app_context
    finally:
        # Registries are in-memory only; HTTP clients are opened per request
        logger.info("Shutting down MCP server...")


# Initialize MCP server with lifespan management
# Following Python MCP naming convention: {service}_mcp
mcp = FastMCP("forms_mcp", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def main() -> None:
    """Entry point for running the MCP server.

    This function is called when the server is run directly via:
    - python -m forms_mcp
    - forms-mcp (entry point configured in pyproject.toml)

    Defaults to stdio transport for MCP protocol communication.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("FORMS_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid FORMS_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    # Configure logging to stderr (MCP requirement)
    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Server infrastructure
    "mcp",
    "main",
    "AppContext",
    "AppContextType",
    # Document loading (exposed for testing)
    "load_forms",
    "load_sub_forms",
]
