"""croflow core -- primitives shared by every other layer.

Architecture::

    errors.py      Typed error hierarchy (ErrorKind, ModuleError, LLMError)
    result.py      ExecutionResult envelope (Ok / Err + ExecutionMetadata)
    cache.py       Bounded TTL cache with FIFO/LRU eviction and stats
    hashing.py     Deterministic ids and input fingerprints
    logging.py     structlog configuration and context binding
    settings.py    pydantic-settings model (CROFLOW_* env vars)
    timing.py      perf_counter timing helpers
"""

from croflow.core.cache import CacheBackend, CacheEntry, CacheStats, TTLCache
from croflow.core.errors import (
    CroflowError,
    ErrorContext,
    ErrorKind,
    LLMConfigurationError,
    LLMError,
    LLMProviderError,
    ModuleConfigurationError,
    ModuleDependencyError,
    ModuleError,
    ModuleExecutionError,
    ModuleTimeoutError,
    ModuleValidationError,
    error_kind_of,
    is_retryable,
    wrap_exception,
)
from croflow.core.hashing import compute_hash, fingerprint
from croflow.core.logging import (
    LogContext,
    configure_logging,
    configure_logging_from_settings,
    get_logger,
)
from croflow.core.result import (
    Err,
    ExecutionMetadata,
    ExecutionResult,
    Ok,
    collect_results,
    mark_cached,
    partition_results,
)
from croflow.core.settings import CroflowSettings, get_settings, reset_settings
from croflow.core.timing import TimingResult, timed_block

__all__ = [
    # Cache
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "TTLCache",
    # Errors
    "CroflowError",
    "ErrorContext",
    "ErrorKind",
    "LLMConfigurationError",
    "LLMError",
    "LLMProviderError",
    "ModuleConfigurationError",
    "ModuleDependencyError",
    "ModuleError",
    "ModuleExecutionError",
    "ModuleTimeoutError",
    "ModuleValidationError",
    "error_kind_of",
    "is_retryable",
    "wrap_exception",
    # Hashing
    "compute_hash",
    "fingerprint",
    # Logging
    "LogContext",
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    # Result
    "Err",
    "ExecutionMetadata",
    "ExecutionResult",
    "Ok",
    "collect_results",
    "mark_cached",
    "partition_results",
    # Settings
    "CroflowSettings",
    "get_settings",
    "reset_settings",
    # Timing
    "TimingResult",
    "timed_block",
]
