"""
Descriptor loader for form and sub-form documents.

Documents are authored as JSON or YAML. Both are read through the YAML loader
(JSON is a YAML subset) and validated against the Pydantic models.

Features:
- Load form descriptors and sub-forms from files or strings
- Comprehensive validation with clear error messages
- Errors reported through LoadResult, never raised
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from .load_result import LoadResult
from .schema import FormDescriptor, SubFormDescriptor

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = (".json", ".yaml", ".yml")


def _read_document(file_path: str | Path, kind: str) -> LoadResult[str]:
    path = Path(file_path)
    source = str(file_path)

    if not path.exists():
        return LoadResult.failure(f"{kind} file not found: {file_path}", source=source)

    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}", source=source)

    try:
        with open(path, encoding="utf-8") as f:
            return LoadResult.success(f.read(), source=source)
    except OSError as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}", source=source)


def _parse_document(content: str, source: str, kind: str) -> LoadResult[dict[str, Any]]:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML/JSON syntax in {source}: {e}", source=source)

    if not isinstance(data, dict):
        return LoadResult.failure(
            f"{kind} {source} must be a mapping, got {type(data).__name__}", source=source
        )
    return LoadResult.success(data, source=source)


def load_descriptor_from_file(file_path: str | Path) -> LoadResult[FormDescriptor]:
    """
    Load and validate a form descriptor from a JSON or YAML file.

    Args:
        file_path: Path to descriptor file

    Returns:
        LoadResult.success(FormDescriptor) if valid
        LoadResult.failure(error_message) with validation errors

    Example:
        result = load_descriptor_from_file("forms/claim.json")
        if result.is_success:
            resolved = resolve_references(result.value, registry)
    """
    return _read_document(file_path, "Descriptor").then(
        lambda content: load_descriptor_from_yaml(content, source=str(file_path))
    )


def load_descriptor_from_yaml(
    content: str, source: str = "<string>"
) -> LoadResult[FormDescriptor]:
    """
    Load and validate a form descriptor from a JSON or YAML string.

    Args:
        content: Document content
        source: Source identifier for error messages (default: "<string>")
    """
    return _parse_document(content, source, "Descriptor").then(
        lambda data: load_descriptor_from_dict(data, source=source)
    )


def load_descriptor_from_dict(
    data: dict[str, Any], source: str = "<dict>"
) -> LoadResult[FormDescriptor]:
    """Validate an already-parsed descriptor document."""
    result = FormDescriptor.validate_dict(data)
    if not result.is_success:
        return LoadResult.failure(
            f"Descriptor validation failed in {source}:\n{result.error}", source=source
        )
    return LoadResult.success(result.unwrap(), source=source)


def load_sub_form_from_file(file_path: str | Path) -> LoadResult[SubFormDescriptor]:
    """
    Load and validate a sub-form document from a JSON or YAML file.

    Returns:
        LoadResult.success(SubFormDescriptor) if valid
        LoadResult.failure(error_message) with validation errors
    """
    return _read_document(file_path, "Sub-form").then(
        lambda content: load_sub_form_from_yaml(content, source=str(file_path))
    )


def load_sub_form_from_yaml(
    content: str, source: str = "<string>"
) -> LoadResult[SubFormDescriptor]:
    """Load and validate a sub-form document from a JSON or YAML string."""

    def validate(data: dict[str, Any]) -> LoadResult[SubFormDescriptor]:
        result = SubFormDescriptor.validate_dict(data)
        if not result.is_success:
            return LoadResult.failure(
                f"Sub-form validation failed in {source}:\n{result.error}", source=source
            )
        return LoadResult.success(result.unwrap(), source=source)

    return _parse_document(content, source, "Sub-form").then(validate)


def find_documents(directory: str | Path) -> list[Path]:
    """All descriptor documents below a directory, sorted for deterministic loading."""
    dir_path = Path(directory)
    files = [p for suffix in DOCUMENT_SUFFIXES for p in dir_path.glob(f"**/*{suffix}")]
    return sorted(files)
