"""
Registries for form descriptors and sub-form documents.

Both registries are plain values owned by the caller (one per server process,
one per test); nothing here is a process-wide singleton.

Features:
- Register documents with duplicate detection
- Retrieve by id, list ids and metadata for MCP tools
- Load documents from directories (recursive) in priority order
- Track the source directory of each document
- SubFormRegistry doubles as a sub-form provider (lookup by id)
"""

import logging
from pathlib import Path
from typing import Any, Literal, Protocol

from .load_result import LoadResult
from .loader import find_documents, load_descriptor_from_file, load_sub_form_from_file
from .schema import FormDescriptor, SubFormDescriptor

logger = logging.getLogger(__name__)

DuplicatePolicy = Literal["skip", "overwrite", "error"]


class SubFormProvider(Protocol):
    """Fetch-by-id source of sub-form documents; None signals "not found"."""

    def lookup(self, sub_form_id: str) -> SubFormDescriptor | None: ...


class SubFormRegistry:
    """
    Explicit repository of sub-form documents.

    Example:
        registry = SubFormRegistry()
        registry.register(address_sub_form)
        resolved = resolve_references(descriptor, registry)
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._sub_forms: dict[str, SubFormDescriptor] = {}
        self._sources: dict[str, Path] = {}

    def register(self, sub_form: SubFormDescriptor, source_dir: Path | None = None) -> None:
        """
        Register a sub-form document.

        Raises:
            ValueError: If a sub-form with the same id already exists
        """
        if sub_form.id in self._sub_forms:
            raise ValueError(
                f"Sub-form '{sub_form.id}' already registered. Use clear() or unregister() first."
            )

        self._sub_forms[sub_form.id] = sub_form
        if source_dir is not None:
            self._sources[sub_form.id] = source_dir

        logger.info(f"Registered sub-form: {sub_form.id}")

    def unregister(self, sub_form_id: str) -> None:
        """
        Unregister a sub-form by id.

        Raises:
            KeyError: If sub-form not found
        """
        if sub_form_id not in self._sub_forms:
            raise KeyError(f"Sub-form '{sub_form_id}' not found in registry")

        del self._sub_forms[sub_form_id]
        self._sources.pop(sub_form_id, None)
        logger.info(f"Unregistered sub-form: {sub_form_id}")

    def get(self, sub_form_id: str) -> SubFormDescriptor:
        """
        Get sub-form by id.

        Raises:
            KeyError: If sub-form not found
        """
        if sub_form_id not in self._sub_forms:
            raise KeyError(
                f"Sub-form '{sub_form_id}' not found. Available sub-forms: {self.list_ids()}"
            )
        return self._sub_forms[sub_form_id]

    def lookup(self, sub_form_id: str) -> SubFormDescriptor | None:
        """Provider interface: the sub-form, or None when unknown."""
        return self._sub_forms.get(sub_form_id)

    def exists(self, sub_form_id: str) -> bool:
        return sub_form_id in self._sub_forms

    def list_ids(self) -> list[str]:
        """Sorted ids of all registered sub-forms."""
        return sorted(self._sub_forms)

    def get_source(self, sub_form_id: str) -> Path | None:
        return self._sources.get(sub_form_id)

    def load_from_directory(
        self, directory: str | Path, on_duplicate: DuplicatePolicy = "skip"
    ) -> LoadResult[int]:
        """
        Load all sub-form documents from a directory (recursive).

        Invalid documents are logged and skipped; they do not fail the load.

        Returns:
            LoadResult.success(count) with number of sub-forms loaded
            LoadResult.failure(error_message) if the directory is unusable or
            a duplicate is found with on_duplicate="error"
        """
        dir_path = Path(directory)
        logger.info(f"Loading sub-forms from directory: {dir_path}")

        if not dir_path.is_dir():
            error_msg = f"Not a directory: {dir_path}"
            logger.warning(error_msg)
            return LoadResult.failure(error_msg)

        files = find_documents(dir_path)
        loaded_count = 0
        for file_path in files:
            result = load_sub_form_from_file(file_path)
            if not result.is_success or result.value is None:
                logger.warning(f"Failed to load sub-form from {file_path.name}: {result.error}")
                continue

            sub_form = result.value
            if sub_form.id in self._sub_forms:
                if on_duplicate == "skip":
                    logger.info(
                        f"Skipping duplicate sub-form '{sub_form.id}' from {dir_path} "
                        f"(keeping existing from {self._sources.get(sub_form.id, 'unknown')})"
                    )
                    continue
                if on_duplicate == "error":
                    error_msg = f"Duplicate sub-form '{sub_form.id}' found in {dir_path}"
                    logger.error(error_msg)
                    return LoadResult.failure(error_msg)
                logger.info(f"Overwriting sub-form '{sub_form.id}' with version from {dir_path}")
                self.unregister(sub_form.id)

            self.register(sub_form, source_dir=dir_path)
            loaded_count += 1

        logger.info(
            f"Loaded {loaded_count} sub-forms from {dir_path} ({len(files)} documents found)"
        )
        return LoadResult.success(loaded_count)

    def clear(self) -> None:
        """Clear all registered sub-forms."""
        count = len(self._sub_forms)
        self._sub_forms.clear()
        self._sources.clear()
        logger.info(f"Cleared {count} sub-forms from registry")

    def __len__(self) -> int:
        return len(self._sub_forms)

    def __contains__(self, sub_form_id: str) -> bool:
        return sub_form_id in self._sub_forms

    def __repr__(self) -> str:
        return f"<SubFormRegistry: {len(self._sub_forms)} sub-forms>"


class FormRegistry:
    """
    Central registry of form descriptors served by the MCP tools.

    Descriptors are keyed by their `id`, falling back to the file stem when a
    document has none.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._forms: dict[str, FormDescriptor] = {}
        self._sources: dict[str, Path] = {}

    def register(
        self, form_id: str, descriptor: FormDescriptor, source_dir: Path | None = None
    ) -> None:
        """
        Register a form descriptor under an id.

        Raises:
            ValueError: If a form with the same id already exists
        """
        if form_id in self._forms:
            raise ValueError(
                f"Form '{form_id}' already registered. Use clear() or unregister() first."
            )
        self._forms[form_id] = descriptor
        if source_dir is not None:
            self._sources[form_id] = source_dir
        logger.info(f"Registered form: {form_id}")

    def unregister(self, form_id: str) -> None:
        """
        Unregister a form by id.

        Raises:
            KeyError: If form not found
        """
        if form_id not in self._forms:
            raise KeyError(f"Form '{form_id}' not found in registry")
        del self._forms[form_id]
        self._sources.pop(form_id, None)
        logger.info(f"Unregistered form: {form_id}")

    def get(self, form_id: str) -> FormDescriptor:
        """
        Get form descriptor by id.

        Raises:
            KeyError: If form not found
        """
        if form_id not in self._forms:
            raise KeyError(f"Form '{form_id}' not found. Available forms: {self.list_ids()}")
        return self._forms[form_id]

    def exists(self, form_id: str) -> bool:
        return form_id in self._forms

    def list_ids(self) -> list[str]:
        return sorted(self._forms)

    def get_form_metadata(self, form_id: str, detailed: bool = False) -> dict[str, Any]:
        """
        Get form metadata as dictionary (for MCP tools).

        Default mode lists id, title, version and block count. Detailed mode
        adds per-block summaries and the discriminant field ids.

        Raises:
            KeyError: If form not found
        """
        descriptor = self.get(form_id)
        metadata: dict[str, Any] = {
            "id": form_id,
            "title": descriptor.title or "",
            "version": descriptor.version,
            "blocks": len(descriptor.blocks),
        }

        if detailed:
            metadata["blocks"] = [
                {
                    "id": block.id,
                    "title": block.title,
                    "fields": [field.id for field in block.fields],
                    **({"subFormRef": block.sub_form_ref} if block.sub_form_ref else {}),
                    **(
                        {"repeatableBlockRef": block.repeatable_block_ref}
                        if block.repeatable_block_ref
                        else {}
                    ),
                    **({"popin": True} if block.popin else {}),
                }
                for block in descriptor.blocks
            ]
            metadata["discriminantFields"] = [
                field.id for field in descriptor.iter_fields() if field.is_discriminant
            ]
            if descriptor.submission is not None:
                metadata["submission"] = descriptor.submission.to_dict()
            if form_id in self._sources:
                metadata["source"] = str(self._sources[form_id])

        return metadata

    def list_all_metadata(self, detailed: bool = False) -> list[dict[str, Any]]:
        return [self.get_form_metadata(form_id, detailed=detailed) for form_id in self.list_ids()]

    def load_from_directories(
        self,
        directories: list[str | Path],
        on_duplicate: DuplicatePolicy = "skip",
    ) -> LoadResult[dict[str, int]]:
        """
        Load form descriptors from multiple directories in priority order.

        Directories are processed in order. on_duplicate controls how ids seen
        in an earlier directory are handled:
        - "skip": Keep first loaded descriptor (default)
        - "overwrite": Replace with later version
        - "error": Fail the load

        Returns:
            LoadResult.success(dict) with descriptors loaded per directory
            LoadResult.failure(error_message) on error
        """
        if not directories:
            return LoadResult.failure("No directories provided")

        results: dict[str, int] = {}
        for directory in directories:
            dir_path = Path(directory).resolve()
            if not dir_path.is_dir():
                logger.warning(f"Not a directory: {dir_path}")
                results[str(dir_path)] = 0
                continue

            loaded_count = 0
            for file_path in find_documents(dir_path):
                result = load_descriptor_from_file(file_path)
                if not result.is_success or result.value is None:
                    logger.warning(f"Failed to load form from {file_path.name}: {result.error}")
                    continue

                descriptor = result.value
                form_id = descriptor.id or file_path.stem
                if form_id in self._forms:
                    if on_duplicate == "skip":
                        logger.info(f"Skipping duplicate form '{form_id}' from {dir_path}")
                        continue
                    if on_duplicate == "error":
                        error_msg = f"Duplicate form '{form_id}' found in {dir_path}"
                        logger.error(error_msg)
                        return LoadResult.failure(error_msg)
                    logger.info(f"Overwriting form '{form_id}' with version from {dir_path}")
                    self.unregister(form_id)

                self.register(form_id, descriptor, source_dir=dir_path)
                loaded_count += 1

            results[str(dir_path)] = loaded_count
            logger.info(f"Loaded {loaded_count} forms from {dir_path}")

        logger.info(
            f"Successfully loaded {sum(results.values())} total forms "
            f"from {len(directories)} directories"
        )
        return LoadResult.success(results)

    def clear(self) -> None:
        """Clear all registered forms."""
        count = len(self._forms)
        self._forms.clear()
        self._sources.clear()
        logger.info(f"Cleared {count} forms from registry")

    def __len__(self) -> int:
        return len(self._forms)

    def __contains__(self, form_id: str) -> bool:
        return form_id in self._forms

    def __repr__(self) -> str:
        return f"<FormRegistry: {len(self._forms)} forms>"
