"""
Module contract and execution wrapper.

A *module* is any object with a ``descriptor`` plus ``validate(input)`` and
``async run(input)``. Modules hold only business logic. ``ModuleExecutor``
composes a module with the uniform guarantees every caller relies on:
validation, timing, optional caching, lifecycle hooks and a result that
never raises.

Manifesto:
    Pipeline stages are heterogeneous: some are pure functions over a list,
    some wait on a language model for tens of seconds. The registry can only
    treat them identically if every one of them honours the same contract.

    - **Small interface:** validate + run, nothing else to implement
    - **Composition over inheritance:** the executor wraps, the module computes
    - **Never raises:** every failure becomes an ``Err`` with a typed ``ModuleError``
    - **Cancellable:** ``asyncio.CancelledError`` is never swallowed, so a
      timeout can stop the underlying work

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────────┐
        │ ModuleExecutor.execute(input)                                 │
        │                                                               │
        │   disabled? ──yes──▶ Err(CONFIGURATION)                       │
        │      │ no                                                     │
        │   on_init() ─▶ validate(input) ──false──▶ Err(VALIDATION)     │
        │      │                                                        │
        │   module.run(input) ──raises──▶ wrap_exception ─▶ on_error()  │
        │      │                                   └──▶ Err(kind)       │
        │   Ok(data, ExecutionMetadata(duration_ms))                    │
        └───────────────────────────────────────────────────────────────┘

        execute_with_cache(input, key, ttl):
            hit  → cached Ok tagged cached=True
            miss → execute(); store only Ok results

Examples:
    >>> executor = create_module(
    ...     ModuleDescriptor(name="word-count"),
    ...     validate=lambda text: bool(text),
    ...     run=lambda text: len(text.split()),
    ... )
    >>> result = await executor.execute("a b c")
    >>> result.value
    3

Guardrails:
    ❌ DON'T: Catch exceptions inside ``run`` just to return ``None``
    ✅ DO: Raise; the executor classifies and logs the failure

    ❌ DON'T: Swallow ``asyncio.CancelledError`` in module code
    ✅ DO: Let it propagate so registry timeouts cancel real work

Tags:
    module, executor, lifecycle, validation, caching, croflow-framework

Doc-Types:
    - API Reference
    - Module Author Guide
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Generic, Mapping, Protocol, TypeVar, runtime_checkable

from croflow.core.cache import CacheBackend
from croflow.core.errors import (
    ModuleConfigurationError,
    ModuleError,
    ModuleValidationError,
    wrap_exception,
)
from croflow.core.logging import get_logger
from croflow.core.result import Err, ExecutionMetadata, ExecutionResult, Ok, mark_cached
from croflow.core.timing import TimingResult

logger = get_logger(__name__)

In = TypeVar("In")
Out = TypeVar("Out")

DEFAULT_PRIORITY = 100
DEFAULT_CACHE_TTL_SECONDS = 300.0

_MISSING = object()


@dataclass(frozen=True)
class ModuleDescriptor:
    """Identity and scheduling metadata of a module.

    Attributes:
        name: Unique name within a registry.
        version: Semantic version string.
        enabled: Disabled modules fail every execution with a configuration error.
        priority: Lower runs earlier in ``execute_by_priority``. ``None`` defers
            to the executor's ``default_priority`` (the registry sets it from
            ``CroflowSettings.default_module_priority``).
        dependencies: Names of modules that must be registered before this one runs.
        options: Free-form module options.
    """

    name: str
    version: str = "1.0.0"
    enabled: bool = True
    priority: int | None = None
    dependencies: tuple[str, ...] = ()
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Module name must not be empty")
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "options", dict(self.options))

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def with_options(self, **options: Any) -> ModuleDescriptor:
        """Copy with ``options`` merged over the current ones."""
        return replace(self, options={**self.options, **options})

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "enabled": self.enabled,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
        }


@dataclass
class ModuleHooks:
    """Optional lifecycle callbacks; each may be sync or async."""

    on_init: Callable[[], Any] | None = None
    on_destroy: Callable[[], Any] | None = None
    on_error: Callable[[ModuleError], Any] | None = None


@dataclass(frozen=True)
class ModuleExecutionOptions:
    """Per-call options understood by the registry.

    Attributes:
        timeout_seconds: Cancel the module after this long.
        retries: Re-run execution/timeout failures up to this many times.
        cache: Serve from / store into the module cache.
        cache_ttl_seconds: TTL override for cached results.
        parallel: In ``execute_sequence``, keep going after a failure.
            The work still runs strictly in order.
    """

    timeout_seconds: float | None = None
    retries: int = 0
    cache: bool = False
    cache_ttl_seconds: float | None = None
    parallel: bool = False

    @property
    def tolerate_failures(self) -> bool:
        return self.parallel


@runtime_checkable
class Module(Protocol[In, Out]):
    """What every pluggable unit implements."""

    descriptor: ModuleDescriptor

    def validate(self, input: In) -> bool:
        ...

    async def run(self, input: In) -> Out:
        ...


async def _call(fn: Callable[..., Any] | None, *args: Any) -> Any:
    if fn is None:
        return None
    value = fn(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


class ModuleExecutor(Generic[In, Out]):
    """
    Uniform execution wrapper around a ``Module``.

    ``execute`` never raises an ``Exception``. ``asyncio.CancelledError`` is
    the one deliberate exception: it propagates so callers can cancel.
    """

    def __init__(
        self,
        module: Module[In, Out],
        *,
        hooks: ModuleHooks | None = None,
        cache: CacheBackend | None = None,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        default_priority: int = DEFAULT_PRIORITY,
    ):
        self.module = module
        self.hooks = hooks or getattr(module, "hooks", None) or ModuleHooks()
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.default_priority = default_priority

    # ── Descriptor shortcuts ─────────────────────────────────────

    @property
    def descriptor(self) -> ModuleDescriptor:
        return self.module.descriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def enabled(self) -> bool:
        return self.descriptor.enabled

    @property
    def priority(self) -> int:
        priority = self.descriptor.priority
        return self.default_priority if priority is None else priority

    @property
    def dependencies(self) -> tuple[str, ...]:
        return self.descriptor.dependencies

    # ── Contract ─────────────────────────────────────────────────

    def validate(self, input: In) -> bool:
        """Delegate to the module; a raising validator counts as invalid."""
        try:
            return bool(self.module.validate(input))
        except Exception:
            logger.warning("module.validate_raised", module=self.name, exc_info=True)
            return False

    async def execute(self, input: In) -> ExecutionResult[Out]:
        """Validate, run and time the module. Never raises."""
        timer = TimingResult(step=self.name)

        if not self.enabled:
            error = ModuleConfigurationError(self.name, f"Module {self.name} is disabled")
            logger.info("module.disabled", module=self.name)
            return Err(error, ExecutionMetadata(duration_ms=timer.stop().duration_ms))

        try:
            await _call(self.hooks.on_init)
            if not self.validate(input):
                raise ModuleValidationError(
                    self.name, f"Input validation failed for module {self.name}"
                )
            data = await self.module.run(input)
        except Exception as exc:
            error = wrap_exception(exc, self.name)
            timer.stop().set_error(error)
            logger.warning(
                "module.execution_failed",
                module=self.name,
                kind=error.kind.value,
                error=error.message,
                duration_ms=round(timer.duration_ms, 2),
            )
            await self._notify_error(error)
            return Err(error, ExecutionMetadata(duration_ms=timer.duration_ms))

        timer.stop()
        logger.debug("module.execution_completed", **timer.to_log_dict())
        return Ok(data, ExecutionMetadata(duration_ms=timer.duration_ms))

    async def execute_with_cache(
        self,
        input: In,
        key: str,
        ttl_seconds: float | None = None,
    ) -> ExecutionResult[Out]:
        """``execute`` memoized under ``key``; only successes are stored."""
        if self.cache is None:
            return await self.execute(input)

        cached = self.cache.get(key, _MISSING)
        if isinstance(cached, Ok):
            logger.debug("module.cache_hit", module=self.name, key=key)
            return mark_cached(cached)

        result = await self.execute(input)
        if isinstance(result, Ok):
            self.cache.set(
                key,
                result,
                ttl_seconds if ttl_seconds is not None else self.cache_ttl_seconds,
            )
        return result

    async def destroy(self) -> None:
        """Run the ``on_destroy`` hook; failures are logged, not raised."""
        try:
            await _call(self.hooks.on_destroy)
        except Exception:
            logger.warning("module.destroy_failed", module=self.name, exc_info=True)

    def get_metadata(self) -> dict[str, Any]:
        return {**self.descriptor.to_dict(), "priority": self.priority}

    async def _notify_error(self, error: ModuleError) -> None:
        try:
            await _call(self.hooks.on_error, error)
        except Exception:
            logger.warning("module.on_error_failed", module=self.name, exc_info=True)

    def __repr__(self) -> str:
        return f"ModuleExecutor({self.name!r}, version={self.descriptor.version!r})"


# =============================================================================
# FUNCTION MODULES
# =============================================================================


@dataclass
class FunctionModule(Generic[In, Out]):
    """A ``Module`` assembled from plain callables.

    ``run`` may be a regular function or a coroutine function.
    """

    descriptor: ModuleDescriptor
    validate_fn: Callable[[In], bool]
    run_fn: Callable[[In], Out] | Callable[[In], Awaitable[Out]]
    hooks: ModuleHooks | None = None

    def validate(self, input: In) -> bool:
        return self.validate_fn(input)

    async def run(self, input: In) -> Out:
        return await _call(self.run_fn, input)


def create_module(
    descriptor: ModuleDescriptor | str,
    validate: Callable[[In], bool],
    run: Callable[[In], Out] | Callable[[In], Awaitable[Out]],
    hooks: ModuleHooks | None = None,
    *,
    cache: CacheBackend | None = None,
) -> ModuleExecutor[In, Out]:
    """Build an executor around ``validate`` / ``run`` functions."""
    if isinstance(descriptor, str):
        descriptor = ModuleDescriptor(name=descriptor)
    module = FunctionModule(descriptor=descriptor, validate_fn=validate, run_fn=run, hooks=hooks)
    return ModuleExecutor(module, hooks=hooks, cache=cache)


__all__ = [
    "DEFAULT_PRIORITY",
    "DEFAULT_CACHE_TTL_SECONDS",
    "FunctionModule",
    "Module",
    "ModuleDescriptor",
    "ModuleExecutionOptions",
    "ModuleExecutor",
    "ModuleHooks",
    "create_module",
]
