"""
Module registry: holds named modules and runs them by name, sequence,
fan-out or priority.

Manifesto:
    Callers ask for work by module name; the registry owns everything
    around the call. It checks declared dependencies, applies per-call
    timeout, retry and caching, and keeps per-module statistics.

    - **Always returns:** unknown names and missing dependencies come back as
      ``Err`` results, exactly like module failures
    - **Real cancellation:** timeouts cancel the module task instead of
      abandoning it in the background
    - **Explicit instance:** no process-wide singleton; build one per
      ``ModuleContext``
    - **Thread-safe bookkeeping:** one lock around the entry map and stats

Architecture:
    ::

        ModuleRegistry
        ├── register(module) / unregister(name) / get / has / list
        ├── execute(name, input, options)
        │     lookup ─▶ dependency check ─▶ stats(count, last_at)
        │        ─▶ [cache] ─▶ [retry ⟲ [timeout ⟶ executor.execute]]
        │        ─▶ stats(avg duration, success rate)
        ├── execute_sequence(names, ...)   ordered, stop on first failure
        ├── execute_parallel(names, ...)   asyncio.gather, all results
        ├── execute_by_priority(...)       enabled, stable sort by priority
        └── get_stats() → RegistryStats

Note:
    The dependency check verifies that each dependency is *registered*,
    not that it has run successfully for the current analysis. Sequencing
    stages correctly is the caller's job (see ``croflow.pipeline``).

Tags:
    registry, orchestration, timeout, retry, statistics, croflow-framework

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterable, Literal

from croflow.core.cache import CacheBackend
from croflow.core.errors import (
    ErrorKind,
    ModuleConfigurationError,
    ModuleDependencyError,
    ModuleTimeoutError,
    error_kind_of,
)
from croflow.core.hashing import fingerprint
from croflow.core.logging import get_logger
from croflow.core.result import Err, ExecutionMetadata, ExecutionResult, Ok, mark_cached
from croflow.core.settings import CroflowSettings
from croflow.core.timing import TimingResult
from croflow.execution.retry import ExponentialBackoff, RetryStrategy
from croflow.framework.module import (
    Module,
    ModuleExecutionOptions,
    ModuleExecutor,
)

logger = get_logger(__name__)

DurationAverage = Literal["two_point", "mean"]

_RETRYABLE_KINDS = frozenset({ErrorKind.EXECUTION, ErrorKind.TIMEOUT})


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class RegistryEntry:
    """A registered module plus its execution statistics."""

    executor: ModuleExecutor[Any, Any]
    registered_at: datetime = field(default_factory=_utcnow)
    execution_count: int = 0
    completed_count: int = 0
    success_count: int = 0
    last_executed_at: datetime | None = None
    average_duration_ms: float = 0.0
    success_rate: float = 0.0

    @property
    def name(self) -> str:
        return self.executor.name

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.executor.get_metadata(),
            "registered_at": self.registered_at.isoformat(),
            "execution_count": self.execution_count,
            "last_executed_at": (
                self.last_executed_at.isoformat() if self.last_executed_at else None
            ),
            "average_duration_ms": round(self.average_duration_ms, 3),
            "success_rate": self.success_rate,
        }


@dataclass(frozen=True)
class RegistryStats:
    """Aggregate view over every registered module."""

    total_modules: int
    enabled_modules: int
    total_executions: int
    average_success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_modules": self.total_modules,
            "enabled_modules": self.enabled_modules,
            "total_executions": self.total_executions,
            "average_success_rate": self.average_success_rate,
        }


class ModuleRegistry:
    """
    Holds named modules and executes them with uniform guarantees.

    Every ``execute*`` method returns results and never raises.
    """

    def __init__(
        self,
        *,
        cache: CacheBackend | None = None,
        settings: CroflowSettings | None = None,
        retry_strategy: RetryStrategy | None = None,
    ):
        self.settings = settings or CroflowSettings()
        self.cache = cache
        self._retry_strategy = retry_strategy
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register(self, module: ModuleExecutor[Any, Any] | Module[Any, Any]) -> ModuleExecutor[Any, Any]:
        """Register a module, replacing any module with the same name."""
        executor = module if isinstance(module, ModuleExecutor) else ModuleExecutor(
            module, cache_ttl_seconds=self.settings.module_cache_ttl_seconds
        )
        if executor.cache is None:
            executor.cache = self.cache
        executor.default_priority = self.settings.default_module_priority

        with self._lock:
            if executor.name in self._entries:
                logger.warning("registry.module_replaced", name=executor.name)
            self._entries[executor.name] = RegistryEntry(executor=executor)

        logger.info(
            "registry.module_registered",
            name=executor.name,
            version=executor.descriptor.version,
            priority=executor.priority,
            dependencies=list(executor.dependencies),
        )
        return executor

    def unregister(self, name: str) -> bool:
        """Remove a module. Returns False if it was not registered."""
        with self._lock:
            removed = self._entries.pop(name, None) is not None
        if removed:
            logger.info("registry.module_unregistered", name=name)
        return removed

    def get(self, name: str) -> ModuleExecutor[Any, Any] | None:
        with self._lock:
            entry = self._entries.get(name)
        return entry.executor if entry else None

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    def list(self) -> list[ModuleExecutor[Any, Any]]:
        """Registered modules in registration order."""
        with self._lock:
            return [entry.executor for entry in self._entries.values()]

    def names(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def get_metadata(self, name: str) -> RegistryEntry | None:
        with self._lock:
            return self._entries.get(name)

    def clear(self) -> None:
        """Drop every module without running destroy hooks."""
        with self._lock:
            self._entries.clear()
        logger.info("registry.cleared")

    async def shutdown(self) -> None:
        """Run every module's destroy hook, then clear the registry."""
        for executor in self.list():
            await executor.destroy()
        self.clear()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute(
        self,
        name: str,
        input: Any,
        options: ModuleExecutionOptions | None = None,
    ) -> ExecutionResult[Any]:
        """Run a module by name. Never raises."""
        options = options or ModuleExecutionOptions()
        timer = TimingResult(step=name)

        with self._lock:
            entry = self._entries.get(name)
            missing: str | None = None
            if entry is not None:
                missing = next(
                    (dep for dep in entry.executor.dependencies if dep not in self._entries),
                    None,
                )
                if missing is None:
                    entry.execution_count += 1
                    entry.last_executed_at = _utcnow()

        if entry is None:
            logger.warning("registry.module_not_found", name=name)
            return Err(
                ModuleConfigurationError(name, f"Module {name} not found"),
                ExecutionMetadata(duration_ms=timer.stop().duration_ms),
            )
        if missing is not None:
            logger.warning("registry.dependency_missing", name=name, dependency=missing)
            return Err(
                ModuleDependencyError(name, missing),
                ExecutionMetadata(duration_ms=timer.stop().duration_ms),
            )

        executor = entry.executor
        cache = executor.cache if options.cache else None
        key = f"{name}:{fingerprint(input)}"
        if cache is not None:
            cached = cache.get(key)
            if isinstance(cached, Ok):
                logger.debug("registry.cache_hit", name=name, key=key)
                result = mark_cached(cached)
                self._record(entry, result)
                return result

        result = await self._execute_with_retry(executor, input, options)
        if cache is not None and isinstance(result, Ok):
            ttl = options.cache_ttl_seconds
            cache.set(key, result, ttl if ttl is not None else executor.cache_ttl_seconds)

        self._record(entry, result)
        return result

    async def execute_sequence(
        self,
        names: Iterable[str],
        input: Any,
        options: ModuleExecutionOptions | None = None,
    ) -> list[ExecutionResult[Any]]:
        """Run modules in order; stop after the first failure unless
        ``options.parallel`` asks to tolerate failures."""
        options = options or ModuleExecutionOptions()
        results: list[ExecutionResult[Any]] = []
        for name in names:
            result = await self.execute(name, input, options)
            results.append(result)
            if isinstance(result, Err) and not options.tolerate_failures:
                logger.warning("registry.sequence_stopped", failed_at=name)
                break
        return results

    async def execute_parallel(
        self,
        names: Iterable[str],
        input: Any,
        options: ModuleExecutionOptions | None = None,
    ) -> list[ExecutionResult[Any]]:
        """Run modules concurrently; one result per name, in input order."""
        return list(
            await asyncio.gather(*(self.execute(name, input, options) for name in names))
        )

    async def execute_by_priority(
        self,
        input: Any,
        options: ModuleExecutionOptions | None = None,
    ) -> list[ExecutionResult[Any]]:
        """Run enabled modules in ascending priority (ties keep registration order)."""
        with self._lock:
            ordered = sorted(
                (e.executor for e in self._entries.values() if e.executor.enabled),
                key=lambda executor: executor.priority,
            )
        return await self.execute_sequence([e.name for e in ordered], input, options)

    def get_stats(self) -> RegistryStats:
        with self._lock:
            entries = list(self._entries.values())
        total = len(entries)
        return RegistryStats(
            total_modules=total,
            enabled_modules=sum(1 for e in entries if e.executor.enabled),
            total_executions=sum(e.execution_count for e in entries),
            average_success_rate=(
                sum(e.success_rate for e in entries) / total if total else 0.0
            ),
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _strategy(self, retries: int) -> RetryStrategy:
        if self._retry_strategy is not None:
            return self._retry_strategy
        strategy = ExponentialBackoff.from_settings(self.settings)
        strategy.max_retries = retries
        return strategy

    async def _execute_once(
        self,
        executor: ModuleExecutor[Any, Any],
        input: Any,
        timeout_seconds: float | None,
    ) -> ExecutionResult[Any]:
        if timeout_seconds is None:
            return await executor.execute(input)

        timer = TimingResult(step=executor.name)
        try:
            return await asyncio.wait_for(executor.execute(input), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            timer.stop()
            logger.warning(
                "registry.module_timeout",
                name=executor.name,
                timeout_seconds=timeout_seconds,
            )
            return Err(
                ModuleTimeoutError(executor.name, timeout_seconds),
                ExecutionMetadata(duration_ms=timer.duration_ms),
            )

    async def _execute_with_retry(
        self,
        executor: ModuleExecutor[Any, Any],
        input: Any,
        options: ModuleExecutionOptions,
    ) -> ExecutionResult[Any]:
        attempt = 0
        result = await self._execute_once(executor, input, options.timeout_seconds)
        if options.retries <= 0:
            return result

        strategy = self._strategy(options.retries)
        total_ms = result.metadata.duration_ms
        while isinstance(result, Err):
            error = result.error
            kind = error_kind_of(error)
            if kind not in _RETRYABLE_KINDS or not strategy.should_retry(attempt, error):
                break
            delay = strategy.next_delay(attempt)
            attempt += 1
            logger.info(
                "registry.module_retry",
                name=executor.name,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                kind=kind.value,
            )
            await asyncio.sleep(delay)
            result = await self._execute_once(executor, input, options.timeout_seconds)
            total_ms += result.metadata.duration_ms

        return result.with_metadata(retries=attempt, duration_ms=total_ms)

    def _record(self, entry: RegistryEntry, result: ExecutionResult[Any]) -> None:
        duration = result.metadata.duration_ms
        mode: DurationAverage = self.settings.registry_duration_average
        with self._lock:
            entry.completed_count += 1
            if result.success:
                entry.success_count += 1
            if mode == "mean":
                entry.average_duration_ms += (
                    duration - entry.average_duration_ms
                ) / entry.completed_count
            elif entry.completed_count == 1:
                entry.average_duration_ms = duration
            else:
                entry.average_duration_ms = (entry.average_duration_ms + duration) / 2
            entry.success_rate = entry.success_count / max(entry.execution_count, 1)
        logger.debug(
            "registry.module_executed",
            name=entry.name,
            success=result.success,
            duration_ms=round(duration, 2),
            cached=result.metadata.cached,
        )


__all__ = ["ModuleRegistry", "RegistryEntry", "RegistryStats", "DurationAverage"]
