"""LoadResult for descriptor and sub-form document loading.

Loading is a chain of steps (read file, parse YAML/JSON, validate the model)
where any step may fail with a message meant for the document author. The
loader and registries report those failures through LoadResult instead of
raising; reference resolution and schema compilation raise FormEngineError
subclasses (see exceptions.py).
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class LoadStatus(str, Enum):
    """Outcome of a load step."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class LoadResult(Generic[T]):  # noqa: UP046
    """
    Outcome of loading a document, with the document it came from.

    Usage:
        load_result = load_descriptor_from_file(path)
        if load_result.is_success:
            descriptor = load_result.value
        else:
            logger.warning(f"Skipping {load_result.source}: {load_result.error}")
    """

    status: LoadStatus
    value: T | None = None
    error: str | None = None
    source: str | None = None

    def __post_init__(self) -> None:
        if self.status == LoadStatus.SUCCESS and self.value is None:
            raise ValueError("Success result must have a value")
        if self.status == LoadStatus.FAILED and not self.error:
            raise ValueError("Failed result must have an error message")

    @property
    def is_success(self) -> bool:
        return self.status == LoadStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status == LoadStatus.FAILED

    @classmethod
    def success(cls, value: T, source: str | None = None) -> "LoadResult[T]":
        return cls(status=LoadStatus.SUCCESS, value=value, source=source)

    @classmethod
    def failure(cls, error: str, source: str | None = None) -> "LoadResult[T]":
        """Create a failed result.

        Args:
            error: Message for the document author (file not found, parse error, ...)
            source: File path or label of the document, when known
        """
        return cls(status=LoadStatus.FAILED, error=error, source=source)

    def then(self, step: Callable[[T], "LoadResult[U]"]) -> "LoadResult[U]":
        """Run the next load step on the value; failures pass through unchanged.

        The source is carried forward when the next step does not set one.
        """
        if self.is_failure or self.value is None:
            return LoadResult.failure(self.error or "Empty document", source=self.source)
        result = step(self.value)
        if result.source is None and self.source is not None:
            return LoadResult(result.status, result.value, result.error, self.source)
        return result

    def __bool__(self) -> bool:
        return self.is_success

    def unwrap(self) -> T:
        """Get value or raise ValueError if the load failed."""
        if not self.is_success or self.value is None:
            raise ValueError(f"Cannot unwrap failed result: {self.error}")
        return self.value
