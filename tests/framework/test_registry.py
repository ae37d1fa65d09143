"""
Tests for croflow.framework.registry.

Covers:
- Registration, replacement and lookup
- Dependency checks (registration, not prior success)
- Sequence / parallel / priority execution
- Timeout with real cancellation, retries, caching
- Statistics: two-point and mean duration averages, success rate
"""

import asyncio

import pytest

from croflow.core.cache import TTLCache
from croflow.core.errors import ErrorKind, ModuleValidationError
from croflow.core.result import Err, ExecutionMetadata, Ok
from croflow.core.settings import CroflowSettings
from croflow.execution.retry import ExponentialBackoff
from croflow.framework.module import (
    ModuleDescriptor,
    ModuleExecutionOptions,
    ModuleExecutor,
    create_module,
)
from croflow.framework.registry import ModuleRegistry


class CountingModule:
    """Module that counts runs and can fail a set number of times."""

    def __init__(self, name, *, priority=100, dependencies=(), enabled=True, failures=0, error=None, delay=0.0):
        self.descriptor = ModuleDescriptor(
            name=name, priority=priority, dependencies=dependencies, enabled=enabled
        )
        self.failures = failures
        self.error = error
        self.delay = delay
        self.runs = 0

    def validate(self, input):
        return True

    async def run(self, input):
        self.runs += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.runs <= self.failures:
            raise self.error or RuntimeError(f"{self.descriptor.name} failed")
        return f"{self.descriptor.name}:{input}"


class TestRegistration:
    def test_register_and_lookup(self, registry):
        executor = registry.register(CountingModule("a"))

        assert isinstance(executor, ModuleExecutor)
        assert registry.has("a")
        assert "a" in registry
        assert registry.get("a") is executor
        assert registry.names() == ["a"]
        assert len(registry) == 1

    def test_register_replaces_existing(self, registry):
        registry.register(CountingModule("a"))
        replacement = CountingModule("a", priority=1)
        registry.register(replacement)

        assert len(registry) == 1
        assert registry.get("a").module is replacement

    def test_register_accepts_executor(self, registry):
        executor = create_module("f", validate=lambda x: True, run=lambda x: x)
        assert registry.register(executor) is executor

    def test_unregister(self, registry):
        registry.register(CountingModule("a"))
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        assert registry.get("a") is None

    def test_list_in_registration_order(self, registry):
        for name in ("c", "a", "b"):
            registry.register(CountingModule(name))
        assert [e.name for e in registry.list()] == ["c", "a", "b"]

    def test_registry_cache_shared_with_modules(self, settings):
        cache = TTLCache()
        registry = ModuleRegistry(cache=cache, settings=settings)
        executor = registry.register(CountingModule("a"))
        assert executor.cache is cache

    @pytest.mark.asyncio
    async def test_shutdown_destroys_and_clears(self, registry):
        from croflow.framework.module import ModuleHooks

        destroyed = []
        registry.register(
            create_module(
                "a",
                validate=lambda x: True,
                run=lambda x: x,
                hooks=ModuleHooks(on_destroy=lambda: destroyed.append("a")),
            )
        )
        await registry.shutdown()
        assert destroyed == ["a"]
        assert len(registry) == 0


class TestExecute:
    @pytest.mark.asyncio
    async def test_execute_success(self, registry):
        registry.register(CountingModule("a"))
        result = await registry.execute("a", 1)
        assert isinstance(result, Ok)
        assert result.value == "a:1"

    @pytest.mark.asyncio
    async def test_unknown_module_returns_configuration_err(self, registry):
        result = await registry.execute("ghost", 1)
        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.CONFIGURATION
        assert result.error.message == "Module ghost not found"

    @pytest.mark.asyncio
    async def test_missing_dependency_never_runs_module(self, registry):
        module = CountingModule("child", dependencies=("parent",))
        registry.register(module)

        result = await registry.execute("child", 1)

        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.DEPENDENCY
        assert result.error.message == "Dependency parent not found for module child"
        assert module.runs == 0
        assert registry.get_metadata("child").execution_count == 0

    @pytest.mark.asyncio
    async def test_dependency_only_needs_registration(self, registry):
        """A registered dependency that never ran still satisfies the check."""
        registry.register(CountingModule("parent"))
        registry.register(CountingModule("child", dependencies=("parent",)))

        result = await registry.execute("child", 1)
        assert result.success

    @pytest.mark.asyncio
    async def test_disabled_module(self, registry):
        registry.register(CountingModule("off", enabled=False))
        result = await registry.execute("off", 1)
        assert result.error.kind is ErrorKind.CONFIGURATION


class TestTimeout:
    @pytest.mark.asyncio
    async def test_timeout_returns_err_and_cancels_work(self, registry):
        finished = []

        async def slow(input):
            await asyncio.sleep(0.5)
            finished.append(input)
            return input

        registry.register(create_module("slow", validate=lambda x: True, run=slow))
        result = await registry.execute("slow", 1, ModuleExecutionOptions(timeout_seconds=0.01))

        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.TIMEOUT
        assert result.error.message == "Module slow timed out after 0.01s"

        await asyncio.sleep(0.6)
        assert finished == []

    @pytest.mark.asyncio
    async def test_fast_module_within_timeout(self, registry):
        registry.register(CountingModule("fast"))
        result = await registry.execute("fast", 1, ModuleExecutionOptions(timeout_seconds=1))
        assert result.success


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_execution_failures(self, registry):
        module = CountingModule("flaky", failures=2)
        registry.register(module)

        result = await registry.execute("flaky", 1, ModuleExecutionOptions(retries=3))

        assert result.success
        assert result.metadata.retries == 2
        assert module.runs == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, registry):
        module = CountingModule("broken", failures=10)
        registry.register(module)

        result = await registry.execute("broken", 1, ModuleExecutionOptions(retries=2))

        assert isinstance(result, Err)
        assert result.metadata.retries == 2
        assert module.runs == 3

    @pytest.mark.asyncio
    async def test_validation_failures_not_retried(self, registry):
        module = CountingModule("strict", failures=10, error=ModuleValidationError("strict", "bad"))
        registry.register(module)

        result = await registry.execute("strict", 1, ModuleExecutionOptions(retries=3))

        assert result.error.kind is ErrorKind.VALIDATION
        assert module.runs == 1

    @pytest.mark.asyncio
    async def test_unauthorized_not_retried(self, registry):
        module = CountingModule("auth", failures=10, error=RuntimeError("401 Unauthorized"))
        registry.register(module)

        await registry.execute("auth", 1, ModuleExecutionOptions(retries=3))
        assert module.runs == 1

    @pytest.mark.asyncio
    async def test_custom_strategy(self, settings):
        registry = ModuleRegistry(
            settings=settings,
            retry_strategy=ExponentialBackoff(max_retries=1, base_delay=0, jitter=False),
        )
        module = CountingModule("flaky", failures=5)
        registry.register(module)

        await registry.execute("flaky", 1, ModuleExecutionOptions(retries=10))
        assert module.runs == 2

    @pytest.mark.asyncio
    async def test_untyped_error_retried_as_execution_failure(self, registry):
        class RawErrorExecutor(ModuleExecutor):
            calls = 0

            async def execute(self, input):
                self.calls += 1
                if self.calls == 1:
                    return Err(ConnectionError("socket closed"), ExecutionMetadata(duration_ms=1.0))
                return Ok(input, ExecutionMetadata(duration_ms=1.0))

        executor = RawErrorExecutor(CountingModule("raw"))
        registry.register(executor)

        result = await registry.execute("raw", 7, ModuleExecutionOptions(retries=1))

        assert result.value == 7
        assert executor.calls == 2


class TestCaching:
    @pytest.mark.asyncio
    async def test_cache_option_serves_second_call(self, settings):
        registry = ModuleRegistry(cache=TTLCache(), settings=settings)
        module = CountingModule("a")
        registry.register(module)
        options = ModuleExecutionOptions(cache=True)

        first = await registry.execute("a", {"x": 1}, options)
        second = await registry.execute("a", {"x": 1}, options)
        other = await registry.execute("a", {"x": 2}, options)

        assert first.metadata.cached is False
        assert second.metadata.cached is True
        assert other.metadata.cached is False
        assert module.runs == 2

    @pytest.mark.asyncio
    async def test_failed_then_retried_result_is_cached(self, settings):
        registry = ModuleRegistry(cache=TTLCache(), settings=settings)
        module = CountingModule("flaky", failures=1)
        registry.register(module)
        options = ModuleExecutionOptions(cache=True, retries=2)

        await registry.execute("flaky", 1, options)
        cached = await registry.execute("flaky", 1, options)

        assert cached.metadata.cached is True
        assert module.runs == 2

    @pytest.mark.asyncio
    async def test_cache_miss_still_honours_timeout(self, settings):
        registry = ModuleRegistry(cache=TTLCache(), settings=settings)
        registry.register(CountingModule("slow", delay=0.5))

        result = await registry.execute(
            "slow", 1, ModuleExecutionOptions(cache=True, timeout_seconds=0.01)
        )
        assert result.error.kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_cache_disabled_by_default(self, settings):
        registry = ModuleRegistry(cache=TTLCache(), settings=settings)
        module = CountingModule("a")
        registry.register(module)

        await registry.execute("a", 1)
        await registry.execute("a", 1)
        assert module.runs == 2


class TestSequenceAndParallel:
    @pytest.mark.asyncio
    async def test_sequence_stops_on_first_failure(self, registry):
        m1 = CountingModule("m1", failures=1)
        m2 = CountingModule("m2")
        registry.register(m1)
        registry.register(m2)

        results = await registry.execute_sequence(["m1", "m2"], "x")

        assert len(results) == 1
        assert isinstance(results[0], Err)
        assert m2.runs == 0

    @pytest.mark.asyncio
    async def test_sequence_tolerates_failures_with_parallel_flag(self, registry):
        registry.register(CountingModule("m1", failures=1))
        m2 = CountingModule("m2")
        registry.register(m2)

        results = await registry.execute_sequence(
            ["m1", "m2"], "x", ModuleExecutionOptions(parallel=True)
        )

        assert [r.success for r in results] == [False, True]
        assert m2.runs == 1

    @pytest.mark.asyncio
    async def test_parallel_returns_every_result(self, registry):
        registry.register(CountingModule("m1"))
        registry.register(CountingModule("m2", failures=1))

        results = await registry.execute_parallel(["m1", "m2", "m3"], "x")

        assert len(results) == 3
        assert [r.success for r in results] == [True, False, False]
        assert results[2].error.kind is ErrorKind.CONFIGURATION

    @pytest.mark.asyncio
    async def test_parallel_runs_concurrently(self, registry):
        for name in ("a", "b", "c"):
            registry.register(CountingModule(name, delay=0.1))

        loop = asyncio.get_running_loop()
        started = loop.time()
        await registry.execute_parallel(["a", "b", "c"], "x")
        assert loop.time() - started < 0.25

    @pytest.mark.asyncio
    async def test_by_priority_orders_and_skips_disabled(self, registry):
        order = []

        def make(name, priority, enabled=True):
            return create_module(
                ModuleDescriptor(name=name, priority=priority, enabled=enabled),
                validate=lambda x: True,
                run=lambda x, n=name: order.append(n),
            )

        registry.register(make("late", 50))
        registry.register(make("tie-first", 10))
        registry.register(make("off", 1, enabled=False))
        registry.register(make("tie-second", 10))
        registry.register(make("default", 100))

        results = await registry.execute_by_priority("x")

        assert order == ["tie-first", "tie-second", "late", "default"]
        assert len(results) == 4

    @pytest.mark.asyncio
    async def test_unset_priority_comes_from_settings(self, settings):
        registry = ModuleRegistry(settings=settings.model_copy(update={"default_module_priority": 20}))
        order = []

        def make(name, priority=None):
            return create_module(
                ModuleDescriptor(name=name, priority=priority),
                validate=lambda x: True,
                run=lambda x, n=name: order.append(n),
            )

        registry.register(make("unset"))
        registry.register(make("late", 30))
        registry.register(make("early", 10))

        await registry.execute_by_priority("x")

        assert order == ["early", "unset", "late"]
        assert registry.get("unset").priority == 20
        assert registry.get("late").priority == 30


class TestStatistics:
    @pytest.mark.asyncio
    async def test_counts_and_success_rate(self, registry):
        registry.register(CountingModule("m", failures=1))

        await registry.execute("m", 1)
        await registry.execute("m", 1)

        entry = registry.get_metadata("m")
        assert entry.execution_count == 2
        assert entry.success_rate == 0.5
        assert entry.last_executed_at is not None
        assert entry.to_dict()["execution_count"] == 2

    def test_two_point_average(self, registry):
        registry.register(create_module("m", validate=lambda x: True, run=lambda x: x))
        entry = registry.get_metadata("m")
        for duration in (10.0, 20.0, 40.0):
            entry.execution_count += 1
            registry._record(entry, Ok(None, ExecutionMetadata(duration_ms=duration)))

        # ((10 + 20) / 2 + 40) / 2
        assert entry.average_duration_ms == 27.5

    def test_mean_average(self):
        registry = ModuleRegistry(
            settings=CroflowSettings(_env_file=None, registry_duration_average="mean")
        )
        executor = registry.register(create_module("m", validate=lambda x: True, run=lambda x: x))
        entry = registry.get_metadata(executor.name)
        for duration in (10.0, 20.0, 40.0):
            entry.execution_count += 1
            registry._record(entry, Ok(None, ExecutionMetadata(duration_ms=duration)))

        assert entry.average_duration_ms == pytest.approx(70.0 / 3)

    @pytest.mark.asyncio
    async def test_get_stats(self, registry):
        registry.register(CountingModule("ok"))
        registry.register(CountingModule("bad", failures=5))
        registry.register(CountingModule("off", enabled=False))

        await registry.execute("ok", 1)
        await registry.execute("bad", 1)

        stats = registry.get_stats()
        assert stats.total_modules == 3
        assert stats.enabled_modules == 2
        assert stats.total_executions == 2
        assert stats.average_success_rate == pytest.approx(1 / 3)
