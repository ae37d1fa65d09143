"""Token pricing and usage accounting.

``PricingTable`` maps model names to per-1K-token prices. Lookup picks the
longest table key contained in the model name, so ``gpt-4-turbo-2024-04-09``
prices as ``gpt-4-turbo`` and ``claude-opus-4`` as ``opus``. Models matching
no key use the default tier.

``UsageLedger`` accumulates tokens and cost across calls, per model, for a
pipeline run or a whole process.

Example::

    cost = DEFAULT_PRICING.estimate_cost("gpt-4", TokenUsage(1000, 500))
    # 0.03 + 0.03 = 0.06
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Mapping

from croflow.core.logging import get_logger
from croflow.llm.protocol import TokenUsage

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """USD per 1,000 tokens."""

    input_per_1k: float
    output_per_1k: float

    def cost(self, usage: TokenUsage) -> float:
        return (usage.input_tokens / 1000) * self.input_per_1k + (
            usage.output_tokens / 1000
        ) * self.output_per_1k


CLAUDE_SONNET = ModelPricing(input_per_1k=0.003, output_per_1k=0.015)
CLAUDE_OPUS = ModelPricing(input_per_1k=0.015, output_per_1k=0.075)

DEFAULT_PRICES: dict[str, ModelPricing] = {
    "gpt-4": ModelPricing(input_per_1k=0.03, output_per_1k=0.06),
    "gpt-4-turbo": ModelPricing(input_per_1k=0.01, output_per_1k=0.03),
    "claude-3-opus": CLAUDE_OPUS,
    "claude-3-sonnet": CLAUDE_SONNET,
    "opus": CLAUDE_OPUS,
    "sonnet": CLAUDE_SONNET,
}


class PricingTable:
    """Per-model prices with a fallback tier for unknown models."""

    def __init__(
        self,
        prices: Mapping[str, ModelPricing] | None = None,
        default: ModelPricing = CLAUDE_SONNET,
    ):
        self._prices = dict(DEFAULT_PRICES if prices is None else prices)
        self.default = default

    def register(self, model: str, pricing: ModelPricing) -> None:
        self._prices[model] = pricing

    def lookup(self, model: str) -> ModelPricing:
        if model in self._prices:
            return self._prices[model]
        candidates = [key for key in self._prices if key in model]
        if not candidates:
            return self.default
        return self._prices[max(candidates, key=len)]

    def estimate_cost(self, model: str, usage: TokenUsage) -> float:
        return round(self.lookup(model).cost(usage), 6)


DEFAULT_PRICING = PricingTable()


def estimate_cost(model: str, usage: TokenUsage) -> float:
    """Cost of ``usage`` on ``model`` using the default table."""
    return DEFAULT_PRICING.estimate_cost(model, usage)


@dataclass
class UsageLedger:
    """Accumulates token usage and estimated cost across calls.

    Attributes:
        budget_usd: Optional spend at which a warning is logged.
    """

    budget_usd: float | None = None

    _by_model: dict[str, dict[str, float]] = field(default_factory=dict, repr=False)
    _history: list[dict[str, Any]] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, model: str, usage: TokenUsage, cost_usd: float, label: str = "") -> None:
        with self._lock:
            bucket = self._by_model.setdefault(
                model, {"calls": 0, "input_tokens": 0, "output_tokens": 0, "cost_usd": 0.0}
            )
            bucket["calls"] += 1
            bucket["input_tokens"] += usage.input_tokens
            bucket["output_tokens"] += usage.output_tokens
            bucket["cost_usd"] += cost_usd
            self._history.append(
                {"label": label, "model": model, "tokens": usage.total_tokens, "cost_usd": cost_usd}
            )
            total = self.total_cost_usd

        if self.budget_usd is not None and total >= self.budget_usd:
            logger.warning(
                "llm.budget_exceeded",
                spent_usd=round(total, 6),
                budget_usd=self.budget_usd,
            )

    @property
    def call_count(self) -> int:
        return int(sum(b["calls"] for b in self._by_model.values()))

    @property
    def total_tokens(self) -> int:
        return int(
            sum(b["input_tokens"] + b["output_tokens"] for b in self._by_model.values())
        )

    @property
    def total_cost_usd(self) -> float:
        return sum(b["cost_usd"] for b in self._by_model.values())

    def summary(self) -> str:
        """Human-readable usage summary."""
        lines = [
            f"LLM usage: {self.call_count} calls, {self.total_tokens:,} tokens, "
            f"${self.total_cost_usd:.4f}"
        ]
        for model, bucket in sorted(self._by_model.items()):
            lines.append(
                f"  {model}: {int(bucket['calls'])} calls, "
                f"{int(bucket['input_tokens']):,} in / {int(bucket['output_tokens']):,} out, "
                f"${bucket['cost_usd']:.4f}"
            )
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._by_model.clear()
            self._history.clear()

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.call_count,
            "total_tokens": self.total_tokens,
            "total_cost_usd": round(self.total_cost_usd, 6),
            "by_model": {model: dict(bucket) for model, bucket in self._by_model.items()},
        }


__all__ = [
    "DEFAULT_PRICING",
    "ModelPricing",
    "PricingTable",
    "UsageLedger",
    "estimate_cost",
]
