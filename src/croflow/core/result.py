"""
Result envelope for module execution.

Module execution in croflow never raises: every outcome is an ``Ok`` or an
``Err`` carrying ``ExecutionMetadata`` (duration, cache flag, retry count).
Callers branch on the variant instead of wrapping calls in try/except.

Manifesto:
    - **Explicit over implicit:** Failure is a value, not a hidden exception
    - **Uniform metadata:** Every result says how long it took and whether
      it came from the cache
    - **Batch-friendly:** ``collect_results`` / ``partition_results`` for
      sequence and parallel runs

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────┐
        │                  ExecutionResult[T]                       │
        ├──────────────────────┬──────────────────────┬─────────────┤
        │       Ok[T]          │       Err[T]         │  Utilities  │
        ├──────────────────────┼──────────────────────┼─────────────┤
        │ • value: T           │ • error: Exception   │ mark_cached │
        │ • metadata           │ • metadata           │ collect_*   │
        │ • map() / unwrap()   │ • map_err()          │ partition_* │
        └──────────────────────┴──────────────────────┴─────────────┘

        ExecutionMetadata(duration_ms, cached, retries, extra)

Examples:
    >>> from croflow.core.result import Ok, Err
    >>> result = Ok([1, 2, 3])
    >>> match result:
    ...     case Ok(value):
    ...         print(len(value))
    ...     case Err(error):
    ...         print(error)
    3

Tags:
    result, ok, err, execution-result, croflow-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, TypeVar

from croflow.core.errors import CroflowError


T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class ExecutionMetadata:
    """Timing and provenance attached to every execution result.

    Attributes:
        duration_ms: Wall-clock duration of the execution.
        cached: True when served from the cache.
        retries: Number of re-attempts made after the first try.
        extra: Free-form details (module name, token usage, ...).
    """

    duration_ms: float = 0.0
    cached: bool = False
    retries: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"duration_ms": round(self.duration_ms, 3)}
        if self.cached:
            result["cached"] = True
        if self.retries:
            result["retries"] = self.retries
        if self.extra:
            result.update(self.extra)
        return result


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T
    metadata: ExecutionMetadata = field(default_factory=ExecutionMetadata)

    @property
    def success(self) -> bool:
        return True

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Ok[U]:
        """Transform the value, keeping metadata."""
        return Ok(f(self.value), self.metadata)

    def map_err(self, f: Callable[[Exception], Exception]) -> Ok[T]:
        return self

    def with_metadata(self, **changes: Any) -> Ok[T]:
        return Ok(self.value, replace(self.metadata, **changes))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value, "metadata": self.metadata.to_dict()}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error."""

    error: Exception
    metadata: ExecutionMetadata = field(default_factory=ExecutionMetadata)

    @property
    def success(self) -> bool:
        return False

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Err[U]:
        return Err(self.error, self.metadata)

    def map_err(self, f: Callable[[Exception], Exception]) -> Err[T]:
        """Transform the error, keeping metadata."""
        return Err(f(self.error), self.metadata)

    def with_metadata(self, **changes: Any) -> Err[T]:
        return Err(self.error, replace(self.metadata, **changes))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, CroflowError):
            error: dict[str, Any] = self.error.to_dict()
        else:
            error = {"error_type": type(self.error).__name__, "message": str(self.error)}
        return {"ok": False, "error": error, "metadata": self.metadata.to_dict()}

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Type alias for module execution results
ExecutionResult = Ok[T] | Err[T]


# =============================================================================
# UTILITIES
# =============================================================================


def mark_cached(result: ExecutionResult[T]) -> ExecutionResult[T]:
    """Copy of ``result`` tagged as served from the cache."""
    return result.with_metadata(cached=True)


def collect_results(results: list[ExecutionResult[T]]) -> ExecutionResult[list[T]]:
    """Ok with all values, or the first Err encountered."""
    values: list[T] = []
    total = 0.0
    for result in results:
        total += result.metadata.duration_ms
        if isinstance(result, Err):
            return result
        values.append(result.value)
    return Ok(values, ExecutionMetadata(duration_ms=total))


def partition_results(
    results: list[ExecutionResult[T]],
) -> tuple[list[T], list[Exception]]:
    """Split results into successful values and errors."""
    values: list[T] = []
    errors: list[Exception] = []
    for result in results:
        if isinstance(result, Ok):
            values.append(result.value)
        else:
            errors.append(result.error)
    return values, errors


__all__ = [
    "ExecutionMetadata",
    "Ok",
    "Err",
    "ExecutionResult",
    "mark_cached",
    "collect_results",
    "partition_results",
]
