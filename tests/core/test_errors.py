"""Tests for the croflow error hierarchy."""

import pytest

from croflow.core.errors import (
    CroflowError,
    ErrorKind,
    LLMConfigurationError,
    LLMProviderError,
    ModuleConfigurationError,
    ModuleDependencyError,
    ModuleExecutionError,
    ModuleTimeoutError,
    ModuleValidationError,
    error_kind_of,
    is_retryable,
    wrap_exception,
)


class TestErrorKinds:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (ModuleValidationError("m", "bad"), ErrorKind.VALIDATION),
            (ModuleExecutionError("m", "boom"), ErrorKind.EXECUTION),
            (ModuleTimeoutError("m", 2), ErrorKind.TIMEOUT),
            (ModuleDependencyError("m", "dep"), ErrorKind.DEPENDENCY),
            (ModuleConfigurationError("m", "off"), ErrorKind.CONFIGURATION),
        ],
    )
    def test_kind_fixed_per_subclass(self, error, kind):
        assert error.kind is kind
        assert error.module_name == "m"
        assert error.context.module == "m"

    def test_timeout_message(self):
        error = ModuleTimeoutError("slow-module", 1.5)
        assert error.message == "Module slow-module timed out after 1.5s"
        assert error.timeout_seconds == 1.5
        assert error.retryable is True

    def test_dependency_message(self):
        error = ModuleDependencyError("theme-clusterer", "insight-extractor")
        assert error.message == "Dependency insight-extractor not found for module theme-clusterer"
        assert error.dependency == "insight-extractor"

    def test_validation_not_retryable(self):
        assert ModuleValidationError("m", "bad").retryable is False


class TestCroflowError:
    def test_with_context_sets_known_fields_and_metadata(self):
        error = ModuleExecutionError("m", "boom").with_context(
            analysis_id="a-1", user_id="u-1", attempt=2
        )
        assert error.context.analysis_id == "a-1"
        assert error.context.user_id == "u-1"
        assert error.context.metadata == {"attempt": 2}

    def test_to_dict(self):
        cause = ValueError("root cause")
        error = ModuleExecutionError("m", "boom", cause=cause)
        data = error.to_dict()

        assert data["error_type"] == "ModuleExecutionError"
        assert data["message"] == "boom"
        assert data["kind"] == "EXECUTION"
        assert data["module"] == "m"
        assert data["cause"] == "ValueError: root cause"
        assert data["context"] == {"module": "m"}

    def test_cause_chained(self):
        cause = KeyError("x")
        error = CroflowError("wrapped", cause=cause)
        assert error.__cause__ is cause

    def test_llm_errors(self):
        provider_error = LLMProviderError("rate limited", provider="gpt", model="gpt-4")
        assert provider_error.retryable is True
        assert provider_error.provider == "gpt"
        assert LLMConfigurationError("no key").retryable is False


class TestHelpers:
    def test_wrap_exception_passes_typed_errors_through(self):
        original = ModuleValidationError("m", "bad")
        assert wrap_exception(original, "other") is original

    def test_wrap_exception_wraps_plain_exceptions(self):
        original = RuntimeError("kaboom")
        wrapped = wrap_exception(original, "m")

        assert isinstance(wrapped, ModuleExecutionError)
        assert wrapped.kind is ErrorKind.EXECUTION
        assert wrapped.message == "kaboom"
        assert wrapped.cause is original

    def test_wrap_exception_uses_type_name_for_empty_message(self):
        assert wrap_exception(RuntimeError(), "m").message == "RuntimeError"

    def test_error_kind_of(self):
        assert error_kind_of(ModuleTimeoutError("m", 1)) is ErrorKind.TIMEOUT
        assert error_kind_of(ValueError()) is ErrorKind.EXECUTION

    def test_is_retryable(self):
        assert is_retryable(ModuleTimeoutError("m", 1))
        assert not is_retryable(ModuleConfigurationError("m", "off"))
        assert is_retryable(ConnectionError())
        assert not is_retryable(ValueError())
