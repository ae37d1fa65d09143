"""Execution policies (retry/backoff) shared by the registry and the LLM service."""

from croflow.execution.retry import (
    DEFAULT_NON_RETRYABLE,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    is_message_retryable,
    with_retry,
)

__all__ = [
    "DEFAULT_NON_RETRYABLE",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "is_message_retryable",
    "with_retry",
]
