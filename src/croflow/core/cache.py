"""
Bounded TTL cache shared by modules, the registry and the LLM service.

Manifesto:
    Module results and model completions are expensive to recompute. The
    cache keeps them for a bounded time in a bounded amount of memory, and
    reports how useful it has been (hits, misses, hit rate).

    - **Protocol-based:** ``CacheBackend`` defines the contract
    - **TTL support:** Per-key or default time-to-live, lazily enforced on read
      and swept periodically in the background
    - **Bounded:** ``max_size`` with FIFO (insertion order) eviction by default,
      true LRU on request
    - **Thread-safe:** one re-entrant lock around the entry map

Architecture:
    ::

        CacheBackend (Protocol)
        └── TTLCache - single-process, bounded, FIFO or LRU eviction

        API: get(key) → value | default
             set(key, value, ttl_seconds=None)
             has(key) / delete(key) / clear()
             get_or_set(key, factory, ttl_seconds=None)   (async)
             wrap(fn, key_fn, ttl_seconds=None)           (memoizer)
             get_stats() → CacheStats(hits, misses, size, hit_rate)
             cleanup() → removed count
             start_cleanup(interval) / stop_cleanup()

Examples:
    >>> from croflow.core.cache import TTLCache
    >>> cache = TTLCache(max_size=2, default_ttl_seconds=300)
    >>> cache.set("a", 1); cache.set("b", 2); cache.set("c", 3)
    >>> cache.get("a") is None, cache.get("c")
    (True, 3)

Guardrails:
    ❌ DON'T: Store ``None`` and rely on ``get`` to tell it apart from a miss
    ✅ DO: Use ``has(key)`` or pass an explicit ``default`` sentinel

    ❌ DON'T: Share one cache across processes
    ✅ DO: Build one per process and pass it through ``ModuleContext``

Tags:
    cache, ttl, fifo, lru, croflow-core

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Protocol, TypeVar

from croflow.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

EvictionPolicy = Literal["fifo", "lru"]

_MISSING = object()


class CacheBackend(Protocol):
    """Protocol for cache implementations used by croflow components."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ...

    def has(self, key: str) -> bool:
        ...

    def delete(self, key: str) -> bool:
        ...

    def clear(self) -> None:
        ...


@dataclass
class CacheEntry:
    """A stored value with its creation and expiry times (clock seconds)."""

    value: Any
    created_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache effectiveness.

    ``size`` counts stored entries, including expired ones not yet swept.
    """

    hits: int
    misses: int
    size: int
    hit_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "hit_rate": self.hit_rate,
        }


class TTLCache:
    """Bounded in-memory cache with TTL expiry and hit/miss statistics.

    Eviction happens only when a *new* key would push the cache past
    ``max_size``; overwriting an existing key never evicts. With the
    default ``"fifo"`` policy the oldest inserted key is dropped; with
    ``"lru"`` reads and writes refresh a key's position.

    Attributes:
        max_size: Maximum number of entries.
        default_ttl_seconds: TTL used when ``set`` gets none (``None`` → no expiry).
        eviction: ``"fifo"`` or ``"lru"``.
    """

    def __init__(
        self,
        *,
        max_size: int = 1000,
        default_ttl_seconds: float | None = 300,
        eviction: EvictionPolicy = "fifo",
        on_evict: Callable[[str, Any], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if eviction not in ("fifo", "lru"):
            raise ValueError(f"Unknown eviction policy: {eviction}")
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self.eviction = eviction
        self._on_evict = on_evict
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._cleanup_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------ #
    # Core operations
    # ------------------------------------------------------------------ #

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for ``key``, or ``default`` on miss or expiry."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return default
            if entry.is_expired(self._clock()):
                self._remove(key)
                self._misses += 1
                return default
            if self.eviction == "lru":
                self._store.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key`` with an optional TTL override."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        with self._lock:
            now = self._clock()
            if key not in self._store and len(self._store) >= self.max_size:
                oldest = next(iter(self._store))
                self._remove(oldest)
                logger.debug("cache.evicted", key=oldest, policy=self.eviction)
            self._store[key] = CacheEntry(
                value=value,
                created_at=now,
                expires_at=(now + ttl) if ttl is not None else None,
            )
            if self.eviction == "lru":
                self._store.move_to_end(key)

    def has(self, key: str) -> bool:
        """True when ``key`` is present and unexpired. Does not touch stats."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                self._remove(key)
                return False
            return True

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it was present."""
        with self._lock:
            if key not in self._store:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    def keys(self) -> list[str]:
        """Unexpired keys in eviction order."""
        now = self._clock()
        with self._lock:
            return [k for k, e in self._store.items() if not e.is_expired(now)]

    def entries(self) -> list[tuple[str, Any]]:
        """Unexpired ``(key, value)`` pairs in eviction order."""
        now = self._clock()
        with self._lock:
            return [(k, e.value) for k, e in self._store.items() if not e.is_expired(now)]

    def __len__(self) -> int:
        """Number of unexpired entries."""
        now = self._clock()
        with self._lock:
            return sum(1 for e in self._store.values() if not e.is_expired(now))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    # ------------------------------------------------------------------ #
    # Memoization helpers
    # ------------------------------------------------------------------ #

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any] | Callable[[], Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss.

        ``factory`` may be a plain callable or a coroutine function.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = factory()
        if inspect.isawaitable(value):
            value = await value
        self.set(key, value, ttl_seconds)
        return value

    def wrap(
        self,
        fn: Callable[..., Any],
        key_fn: Callable[..., str],
        ttl_seconds: float | None = None,
    ) -> Callable[..., Any]:
        """Memoize ``fn`` keyed by ``key_fn(*args, **kwargs)``."""
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                key = key_fn(*args, **kwargs)
                return await self.get_or_set(
                    key, lambda: fn(*args, **kwargs), ttl_seconds
                )

            return async_wrapper

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_fn(*args, **kwargs)
            value = self.get(key, _MISSING)
            if value is _MISSING:
                value = fn(*args, **kwargs)
                self.set(key, value, ttl_seconds)
            return value

        return sync_wrapper

    # ------------------------------------------------------------------ #
    # Stats and maintenance
    # ------------------------------------------------------------------ #

    def get_stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._store),
                hit_rate=(self._hits / total) if total else 0.0,
            )

    def cleanup(self) -> int:
        """Sweep expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._store.items() if e.is_expired(now)]
            for key in expired:
                self._remove(key)
        if expired:
            logger.debug("cache.cleanup", removed=len(expired))
        return len(expired)

    def start_cleanup(self, interval_seconds: float = 60.0) -> asyncio.Task[None]:
        """Start the periodic sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                self.cleanup()

        self._cleanup_task = asyncio.get_running_loop().create_task(_loop())
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        """Cancel the periodic sweep if running."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _remove(self, key: str) -> None:
        entry = self._store.pop(key)
        if self._on_evict is not None:
            try:
                self._on_evict(key, entry.value)
            except Exception:
                logger.warning("cache.on_evict_failed", key=key, exc_info=True)


__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "TTLCache",
    "EvictionPolicy",
]
