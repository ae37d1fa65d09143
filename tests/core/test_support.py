"""Tests for hashing, settings, timing and logging helpers."""

import pytest
import structlog
from pydantic import ValidationError

from croflow.core.hashing import compute_hash, fingerprint
from croflow.core.logging import (
    LogContext,
    configure_logging,
    configure_logging_from_settings,
    get_logger,
)
from croflow.core.settings import CroflowSettings, get_settings, reset_settings
from croflow.core.timing import TimingResult, timed_block


class TestHashing:
    def test_compute_hash_deterministic(self):
        assert compute_hash("a", 1) == compute_hash("a", 1)
        assert compute_hash("a", 1) != compute_hash("a", 2)

    def test_compute_hash_length(self):
        assert len(compute_hash("x")) == 32
        assert len(compute_hash("x", length=12)) == 12

    def test_fingerprint_ignores_dict_order(self):
        assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})

    def test_fingerprint_dataclasses(self):
        from croflow.analyzers.models import PageContent

        assert fingerprint(PageContent(markdown="x")) == fingerprint(PageContent(markdown="x"))
        assert fingerprint(PageContent(markdown="x")) != fingerprint(PageContent(markdown="y"))


class TestSettings:
    def test_defaults(self):
        settings = CroflowSettings(_env_file=None)
        assert settings.cache_eviction == "fifo"
        assert settings.registry_duration_average == "two_point"
        assert settings.llm_default_provider == "gpt"
        assert settings.retry_skip_substrings == ["Invalid", "Unauthorized"]

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CROFLOW_CACHE_MAX_SIZE", "25")
        monkeypatch.setenv("CROFLOW_CACHE_EVICTION", "lru")
        monkeypatch.setenv("CROFLOW_LOG_LEVEL", "debug")
        settings = CroflowSettings(_env_file=None)
        assert settings.cache_max_size == 25
        assert settings.cache_eviction == "lru"
        assert settings.log_level == "DEBUG"

    def test_rejects_unknown_eviction(self):
        with pytest.raises(ValidationError):
            CroflowSettings(_env_file=None, cache_eviction="random")

    def test_get_settings_cached(self):
        reset_settings()
        try:
            assert get_settings() is get_settings()
        finally:
            reset_settings()


class TestTiming:
    def test_stop_is_idempotent(self):
        timer = TimingResult(step="s")
        timer.stop()
        first = timer.duration_ms
        timer.stop()
        assert timer.duration_ms == first

    def test_timed_block_stops_on_error(self):
        with pytest.raises(ValueError):
            with timed_block("failing") as timer:
                raise ValueError("x")
        assert timer.ended_at is not None

    def test_log_dict_includes_metrics(self):
        timer = TimingResult(step="s").add_metric("themes", 3).stop()
        data = timer.to_log_dict()
        assert data["step"] == "s"
        assert data["themes"] == 3

    def test_set_error(self):
        timer = TimingResult(step="s").set_error(RuntimeError("bad"))
        assert timer.status == "error"
        assert timer.error_info["error_type"] == "RuntimeError"


class TestLogging:
    def test_configure_and_log(self, capsys):
        configure_logging(level="INFO", json_format=True, service="croflow-test")
        try:
            get_logger("test").info("something_happened", answer=42)
            out = capsys.readouterr().out
            assert "something_happened" in out
            assert '"answer": 42' in out
            assert "croflow-test" in out
        finally:
            structlog.reset_defaults()

    def test_configure_from_settings(self, capsys):
        settings = CroflowSettings(
            _env_file=None, log_level="WARNING", log_json=True, service_name="croflow-settings"
        )
        configure_logging_from_settings(settings)
        try:
            logger = get_logger("test")
            logger.info("below_threshold")
            logger.warning("cache_pressure", size=10)
            out = capsys.readouterr().out
            assert "below_threshold" not in out
            assert "cache_pressure" in out
            assert "croflow-settings" in out
        finally:
            structlog.reset_defaults()

    def test_log_context_binds_and_unbinds(self):
        with LogContext(analysis_id="a-1"):
            assert structlog.contextvars.get_contextvars()["analysis_id"] == "a-1"
        assert "analysis_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_log_context(self):
        async with LogContext(user_id="u-1"):
            assert structlog.contextvars.get_contextvars()["user_id"] == "u-1"
        assert "user_id" not in structlog.contextvars.get_contextvars()
