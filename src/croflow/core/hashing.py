"""
Deterministic hashing for record identifiers and cache keys.

Pipeline records get ids derived from their content, so re-running the same
stage over the same input yields the same identifiers. Module cache keys are
derived from a fingerprint of the module input.

Examples:
    >>> compute_hash("analysis-1", "insight", 0) == compute_hash("analysis-1", "insight", 0)
    True
    >>> len(compute_hash("x", length=12))
    12

Tags:
    hashing, idempotency, cache-key, croflow-core
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from enum import Enum
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """SHA-256 of ``"|".join(str(v) for v in values)``, truncated to ``length``."""
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def _normalize(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _normalize(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize(v) for v in value]
        return sorted(items, key=repr) if isinstance(value, (set, frozenset)) else items
    return value


def fingerprint(value: Any, length: int = 16) -> str:
    """Stable digest of an arbitrary module input.

    Dataclasses, enums and containers are normalized first so that two
    equal inputs always produce the same key regardless of dict ordering.
    """
    payload = json.dumps(_normalize(value), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()[:length]


__all__ = ["compute_hash", "fingerprint"]
