"""Shared formatting utilities for MCP tool responses.

Following MCP best practices:
- Markdown format: Human-readable with headers, lists, and formatting
- JSON format: Machine-readable structured data for programmatic access
"""

from typing import Any

# =============================================================================
# Markdown Formatting Utilities
# =============================================================================


def format_form_list_markdown(forms: list[dict[str, Any]]) -> str:
    """Format form metadata list as markdown.

    Args:
        forms: Form metadata dictionaries (id, title, version, blocks)

    Returns:
        Markdown-formatted form list with headers
    """
    if not forms:
        return "No forms found"

    header = f"## Available Forms ({len(forms)})"
    lines = []
    for form in forms:
        title = f" - {form['title']}" if form.get("title") else ""
        lines.append(f"- **{form['id']}** (v{form['version']}, {form['blocks']} blocks){title}")
    return f"{header}\n\n" + "\n".join(lines)


def format_form_info_markdown(info: dict[str, Any]) -> str:
    """Format detailed form metadata as markdown."""
    lines = [
        f"# Form: {info['id']}",
        "",
    ]
    if info.get("title"):
        lines.extend([info["title"], ""])

    lines.append("## Configuration")
    lines.append(f"- **Version**: {info['version']}")
    lines.append(f"- **Total Blocks**: {len(info['blocks'])}")
    if info.get("source"):
        lines.append(f"- **Source**: {info['source']}")
    if info.get("discriminantFields"):
        lines.append(f"- **Discriminant Fields**: {', '.join(info['discriminantFields'])}")

    lines.append("")
    lines.append("## Blocks")
    for block in info["blocks"]:
        block_line = f"- **{block['id']}**"
        if block.get("title"):
            block_line += f" ({block['title']})"
        if block.get("subFormRef"):
            block_line += f" - sub-form: {block['subFormRef']}"
        if block.get("repeatableBlockRef"):
            block_line += f" - repeats: {block['repeatableBlockRef']}"
        if block.get("popin"):
            block_line += " - popin"
        lines.append(block_line)
        if block.get("fields"):
            lines.append(f"  - fields: {', '.join(block['fields'])}")

    if info.get("submission"):
        submission = info["submission"]
        lines.append("")
        lines.append("## Submission")
        lines.append(f"- **{submission.get('method', 'POST')}** `{submission['url']}`")

    return "\n".join(lines)


def format_issues_markdown(issues: list[dict[str, str]]) -> str:
    """Format validation issues as markdown."""
    if not issues:
        return "**Valid**: no validation issues"

    lines = [f"## Validation Issues ({len(issues)})", ""]
    for issue in issues:
        lines.append(f"- `{issue['path']}` ({issue['code']}): {issue['message']}")
    return "\n".join(lines)


# =============================================================================
# Error Formatting Utilities
# =============================================================================


def format_form_not_found_error(
    form_id: str, available: list[str], format_type: str = "json"
) -> dict[str, Any] | str:
    """Format form not found error with helpful guidance.

    Args:
        form_id: The form id that was not found
        available: List of available form ids
        format_type: Response format ("json" or "markdown")

    Returns:
        Error message in requested format with available forms
    """
    if format_type == "markdown":
        form_list = "\n".join(f"- {name}" for name in available)
        return f"**Error**: Form not found: `{form_id}`\n\n**Available forms:**\n{form_list}"
    return {
        "status": "failure",
        "error": f"Form not found: {form_id}",
        "available_forms": available,
    }


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Markdown formatters
    "format_form_list_markdown",
    "format_form_info_markdown",
    "format_issues_markdown",
    # Error formatters
    "format_form_not_found_error",
]
