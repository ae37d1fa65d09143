"""
Retry strategies for flaky, network-bound work.

Language-model calls fail transiently (rate limits, dropped connections).
``ExponentialBackoff`` spaces retries out with a cap on both attempts and
delay, and refuses to retry errors whose message marks them as permanent
(``"Invalid"`` / ``"Unauthorized"`` by default).

Note:
    The message-substring check is a heuristic. Prefer typed errors with a
    ``retryable`` flag (``croflow.core.errors.is_retryable``) where the
    caller controls the exception type; the substring list is the fallback
    for SDK errors whose types we do not own.

Example:
    >>> ctx = RetryContext(ExponentialBackoff(max_retries=3, jitter=False))
    >>> result = await ctx.run_async(call_model, request)
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, TypeVar

from croflow.core.errors import CroflowError

T = TypeVar("T")

DEFAULT_NON_RETRYABLE = ("Invalid", "Unauthorized")


def is_message_retryable(
    message: str, substrings: Sequence[str] = DEFAULT_NON_RETRYABLE
) -> bool:
    """False when ``message`` contains any of the permanent-failure markers."""
    return not any(marker in message for marker in substrings)


class RetryStrategy(ABC):
    """Base class for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` failures."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        non_retryable_substrings: Error-message markers that stop retrying
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    non_retryable_substrings: tuple[str, ...] = DEFAULT_NON_RETRYABLE

    @classmethod
    def from_settings(cls, settings: Any) -> ExponentialBackoff:
        """Build from a ``CroflowSettings`` instance."""
        return cls(
            max_retries=settings.retry_max_attempts,
            base_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            multiplier=settings.retry_multiplier,
            non_retryable_substrings=tuple(settings.retry_skip_substrings),
        )

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)
        return delay

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is None:
            return True
        message = error.message if isinstance(error, CroflowError) else str(error)
        return is_message_retryable(message, self.non_retryable_substrings)


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Tracks retry state while running a callable.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_retries=2))
        >>> value = await ctx.run_async(fetch)
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    sleep: Callable[[float], Any] = asyncio.sleep
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    errors: list[tuple[int, BaseException]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def retries(self) -> int:
        """Number of re-attempts after the first."""
        return max(0, self.attempt - 1)

    async def run_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Await ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once retries are exhausted.
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e))
                if not self.strategy.should_retry(self.attempt - 1, e):
                    raise
                delay = self.strategy.next_delay(self.attempt - 1)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                await self.sleep(delay)


def with_retry(
    strategy: RetryStrategy | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator factory adding retry logic to a coroutine function.

    Example:
        >>> @with_retry(ExponentialBackoff(max_retries=3))
        ... async def flaky_operation():
        ...     return await call_api()
    """
    if strategy is None:
        strategy = ExponentialBackoff()

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError("with_retry only decorates coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            ctx = RetryContext(strategy=strategy, on_retry=on_retry)
            return await ctx.run_async(func, *args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "DEFAULT_NON_RETRYABLE",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "is_message_retryable",
    "with_retry",
]
