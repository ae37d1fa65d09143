"""
Structured error types for croflow.

Every failure the orchestration core can report is a typed error carrying
its kind, the module that produced it, a human message and the original
cause. Module execution never lets these escape as exceptions to callers;
they travel inside an ``Err`` result instead (see ``croflow.core.result``).

Manifesto:
    - **Typed error kinds:** Validation, Execution, Timeout, Dependency,
      Configuration. Callers branch on ``kind``, never on message text.
    - **Cause chaining:** Wrapped exceptions keep ``__cause__`` so tracebacks
      point at the real failure.
    - **Rich context:** analysis/user identifiers travel with the error for
      structured logging.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │                       CroflowError                         │
        │           (message, retryable, context, cause)             │
        ├────────────────────────────────────────────────────────────┤
        │                                                            │
        │  ModuleError (kind, module_name)     LLMError              │
        │    ├── ModuleValidationError           ├── LLMProviderError│
        │    ├── ModuleExecutionError            └── LLMConfigError  │
        │    ├── ModuleTimeoutError (retryable)                      │
        │    ├── ModuleDependencyError                               │
        │    └── ModuleConfigurationError                            │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> err = ModuleValidationError("insight-extractor", "markdown is empty")
    >>> err.kind
    <ErrorKind.VALIDATION: 'VALIDATION'>
    >>> wrapped = wrap_exception(KeyError("x"), "theme-clusterer")
    >>> wrapped.kind, type(wrapped.cause).__name__
    (<ErrorKind.EXECUTION: 'EXECUTION'>, 'KeyError')

Guardrails:
    ❌ DON'T: Raise bare ``Exception`` from a module's ``run``
    ✅ DO: Raise a ``ModuleError`` subclass when the kind matters

    ❌ DON'T: Match on message strings to decide control flow
    ✅ DO: Use ``error.kind`` or ``is_retryable(error)``

Tags:
    errors, exceptions, error-kind, module-error, croflow-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification of a module failure."""

    VALIDATION = "VALIDATION"
    EXECUTION = "EXECUTION"
    TIMEOUT = "TIMEOUT"
    DEPENDENCY = "DEPENDENCY"
    CONFIGURATION = "CONFIGURATION"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        module: Module name the error originated from.
        analysis_id: Analysis run identifier.
        user_id: Owner of the analysis.
        operation: Registry or service operation in progress.
        metadata: Anything else worth logging.
    """

    module: str | None = None
    analysis_id: str | None = None
    user_id: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty fields only."""
        result: dict[str, Any] = {}
        for key in ("module", "analysis_id", "user_id", "operation"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CroflowError(Exception):
    """
    Base exception for all croflow errors.

    Subclasses set ``default_retryable`` to describe whether repeating the
    same call has a reasonable chance of succeeding.
    """

    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CroflowError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# =============================================================================
# MODULE ERRORS
# =============================================================================


class ModuleError(CroflowError):
    """
    A failure attributed to a named module.

    ``kind`` is fixed per subclass; constructing the base class directly
    requires an explicit kind.
    """

    default_kind: ErrorKind = ErrorKind.EXECUTION

    def __init__(
        self,
        module_name: str,
        message: str,
        *,
        kind: ErrorKind | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, retryable=retryable, context=context, cause=cause)
        self.kind = kind or self.default_kind
        self.module_name = module_name
        if self.context.module is None:
            self.context.module = module_name

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        result["module"] = self.module_name
        return result

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.module_name!r}, {self.message!r}, "
            f"kind={self.kind.value})"
        )


class ModuleValidationError(ModuleError):
    """Input rejected by ``validate()``. Never retryable."""

    default_kind = ErrorKind.VALIDATION


class ModuleExecutionError(ModuleError):
    """Business logic raised while running."""

    default_kind = ErrorKind.EXECUTION


class ModuleTimeoutError(ModuleError):
    """Module exceeded its wall-clock budget."""

    default_kind = ErrorKind.TIMEOUT
    default_retryable = True

    def __init__(
        self,
        module_name: str,
        timeout_seconds: float,
        *,
        message: str | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            module_name,
            message or f"Module {module_name} timed out after {timeout_seconds:g}s",
            context=context,
        )
        self.timeout_seconds = timeout_seconds


class ModuleDependencyError(ModuleError):
    """A declared dependency is not registered."""

    default_kind = ErrorKind.DEPENDENCY

    def __init__(
        self,
        module_name: str,
        dependency: str,
        *,
        message: str | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            module_name,
            message or f"Dependency {dependency} not found for module {module_name}",
            context=context,
        )
        self.dependency = dependency


class ModuleConfigurationError(ModuleError):
    """Module disabled, or the registry could not resolve it."""

    default_kind = ErrorKind.CONFIGURATION


# =============================================================================
# LLM ERRORS
# =============================================================================


class LLMError(CroflowError):
    """Base for language-model service errors."""


class LLMProviderError(LLMError):
    """The backend SDK failed or returned an unusable completion."""

    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        model: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause=cause)
        self.provider = provider
        self.model = model


class LLMConfigurationError(LLMError):
    """Unknown provider or missing credentials."""


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """True when repeating the call may succeed."""
    if isinstance(error, CroflowError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def error_kind_of(error: BaseException) -> ErrorKind:
    """Kind of a module error; anything untyped counts as an execution failure."""
    if isinstance(error, ModuleError):
        return error.kind
    return ErrorKind.EXECUTION


def wrap_exception(error: BaseException, module_name: str) -> ModuleError:
    """Reclassify an arbitrary exception as a ``ModuleError``.

    Typed module errors pass through untouched. Everything else becomes an
    execution error that keeps the original as its cause.
    """
    if isinstance(error, ModuleError):
        return error
    message = str(error) or type(error).__name__
    return ModuleExecutionError(module_name, message, cause=error)


__all__ = [
    "ErrorKind",
    "ErrorContext",
    "CroflowError",
    "ModuleError",
    "ModuleValidationError",
    "ModuleExecutionError",
    "ModuleTimeoutError",
    "ModuleDependencyError",
    "ModuleConfigurationError",
    "LLMError",
    "LLMProviderError",
    "LLMConfigurationError",
    "is_retryable",
    "error_kind_of",
    "wrap_exception",
]
