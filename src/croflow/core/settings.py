"""Runtime settings for croflow.

All tunables of the orchestration core live in one pydantic-settings model
read from ``CROFLOW_*`` environment variables and an optional ``.env`` file.
Components take a ``CroflowSettings`` instance explicitly (usually through
``ModuleContext``); ``get_settings()`` is only a convenience for hosts.

Examples:
    >>> from croflow.core.settings import CroflowSettings
    >>> settings = CroflowSettings(cache_max_size=50, llm_default_provider="claude")
    >>> settings.cache_eviction
    'fifo'

Tags:
    settings, configuration, pydantic, environment, croflow-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CroflowSettings(BaseSettings):
    """Settings shared by the cache, registry, LLM service and pipeline.

    Fields
    ──────
    log_level / log_json      : structlog configuration
    cache_*                   : TTL cache sizing, expiry and eviction policy
    registry_duration_average : "two_point" running average or true "mean"
    llm_* / openai_* / anthropic_* : provider selection, models and credentials
    retry_*                   : exponential backoff for LLM and module retries
    """

    model_config = SettingsConfigDict(
        env_prefix="CROFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None
    service_name: str = "croflow"

    # ── Cache ────────────────────────────────────────────────────
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_size: int = Field(default=1000, ge=1)
    cache_cleanup_interval_seconds: float = Field(default=60.0, gt=0)
    cache_eviction: Literal["fifo", "lru"] = "fifo"

    # ── Registry ─────────────────────────────────────────────────
    registry_duration_average: Literal["two_point", "mean"] = "two_point"
    default_module_priority: int = 100
    module_cache_ttl_seconds: float = Field(default=300.0, gt=0)

    # ── LLM ──────────────────────────────────────────────────────
    llm_default_provider: Literal["gpt", "claude"] = "gpt"
    openai_model: str = "gpt-5-mini"
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=4096, ge=1)
    llm_max_tokens_with_images: int = Field(default=20000, ge=1)
    llm_system_prompt: str = (
        "You are an expert CRO analyst. Extract atomic, actionable insights."
    )

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=0)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    retry_skip_substrings: list[str] = Field(
        default_factory=lambda: ["Invalid", "Unauthorized"]
    )

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


@lru_cache(maxsize=1)
def get_settings() -> CroflowSettings:
    """Process-wide settings, read once from the environment."""
    return CroflowSettings()


def reset_settings() -> None:
    """Forget cached settings (tests)."""
    get_settings.cache_clear()


__all__ = ["CroflowSettings", "get_settings", "reset_settings"]
