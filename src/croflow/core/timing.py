"""
Timing helpers for module and service executions.

Usage:
    with timed_block("theme-clusterer") as timer:
        themes = cluster(insights)
        timer.add_metric("themes", len(themes))
    logger.info("stage_completed", **timer.to_log_dict())

Uses ``time.perf_counter``; overhead is around a microsecond.
"""

from __future__ import annotations

import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class TimingResult:
    """Result of a timed operation."""

    step: str
    started_at: float = field(default_factory=time.perf_counter)
    ended_at: float | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    status: str = "ok"  # ok, error
    error_info: dict[str, Any] | None = None

    def stop(self) -> "TimingResult":
        """Record end time. Idempotent."""
        if self.ended_at is None:
            self.ended_at = time.perf_counter()
        return self

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return time.perf_counter() - self.started_at
        return self.ended_at - self.started_at

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000

    def add_metric(self, key: str, value: Any) -> "TimingResult":
        self.metrics[key] = value
        return self

    def set_error(self, e: BaseException) -> "TimingResult":
        self.status = "error"
        self.error_info = {
            "error_type": type(e).__name__,
            "error_message": str(e),
            "error_stack": "".join(traceback.format_exception(e)),
        }
        return self

    def to_log_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"step": self.step, "duration_ms": round(self.duration_ms, 2)}
        result.update(self.metrics)
        return result


@contextmanager
def timed_block(step: str = "unnamed") -> Iterator[TimingResult]:
    """Time a block; the timer is stopped even if the block raises."""
    timer = TimingResult(step=step)
    try:
        yield timer
    finally:
        timer.stop()


__all__ = ["TimingResult", "timed_block"]
