"""
Hypothesis generator: third pipeline stage.

Template-fills one testable statement per *problem* insight of a theme:

    If we {change}, then {metric} will {improvement} because {reason}

The change phrase is picked from keywords in the insight title. No model
call is involved, so the stage is fast and deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from croflow.core.hashing import compute_hash
from croflow.core.logging import get_logger
from croflow.framework.module import ModuleDescriptor
from croflow.analyzers.models import (
    Hypothesis,
    HypothesisStatus,
    Insight,
    InsightType,
    SuccessMetric,
    Theme,
)
from croflow.analyzers.theme_clusterer import NAME as THEME_CLUSTERER

logger = get_logger(__name__)

NAME = "hypothesis-generator"
DEFAULT_MAX_HYPOTHESES = 3

# Keyword → change phrase; first match wins.
CHANGE_TEMPLATES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("form",), "simplify the form"),
    (("button", "cta"), "improve the CTA button"),
    (("trust",), "add trust signals"),
    (("value",), "clarify the value proposition"),
)
DEFAULT_CHANGE = "address this issue"
DEFAULT_METRIC = "conversion rate"
DEFAULT_IMPROVEMENT = "increase by 15-20%"
DEFAULT_REASON = "this reduces friction and builds trust"
EXPECTED_OUTCOME = (
    "Improved user experience leading to higher conversion rates and lower abandonment"
)

DEFAULT_SUCCESS_METRICS = (
    SuccessMetric(name="Conversion Rate", baseline=2.5, target=3.0, unit="%", primary=True),
    SuccessMetric(name="Bounce Rate", baseline=45, target=35, unit="%", primary=False),
)


@dataclass(frozen=True)
class HypothesisGenerationInput:
    analysis_id: str
    user_id: str
    theme: Theme
    insights: tuple[Insight, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "insights", tuple(self.insights))


@dataclass(frozen=True)
class HypothesisGenerationOutput:
    hypotheses: tuple[Hypothesis, ...]


def change_for(title: str) -> str:
    lowered = title.lower()
    for keywords, change in CHANGE_TEMPLATES:
        if any(keyword in lowered for keyword in keywords):
            return change
    return DEFAULT_CHANGE


def statement_for(insight: Insight) -> str:
    return (
        f"If we {change_for(insight.title)}, then {DEFAULT_METRIC} will "
        f"{DEFAULT_IMPROVEMENT} because {DEFAULT_REASON}"
    )


def theme_problems(theme: Theme, insights: Sequence[Insight]) -> list[Insight]:
    """Problem insights belonging to ``theme``, in theme order."""
    by_id = {i.id: i for i in insights}
    members = [by_id[i] for i in theme.insight_ids if i in by_id]
    return [i for i in members if i.type is InsightType.PROBLEM]


def generate_hypotheses(
    analysis_id: str,
    user_id: str,
    theme: Theme,
    insights: Sequence[Insight],
    *,
    max_hypotheses: int = DEFAULT_MAX_HYPOTHESES,
) -> list[Hypothesis]:
    hypotheses: list[Hypothesis] = []
    for insight in theme_problems(theme, insights)[:max_hypotheses]:
        hypotheses.append(
            Hypothesis(
                id=compute_hash(analysis_id, "hypothesis", theme.id, insight.id, length=24),
                analysis_id=analysis_id,
                user_id=user_id,
                theme_id=theme.id,
                insight_id=insight.id,
                statement=statement_for(insight),
                rationale=insight.description,
                expected_outcome=EXPECTED_OUTCOME,
                success_metrics=DEFAULT_SUCCESS_METRICS,
                status=HypothesisStatus.DRAFT,
                confidence_level=70,
                metadata={"framework": "LIFT", "reach": 1000, "estimated_lift": 20},
            )
        )
    return hypotheses


class HypothesisGenerator:
    """Module generating templated hypotheses for one theme."""

    def __init__(self, *, max_hypotheses: int = DEFAULT_MAX_HYPOTHESES, enabled: bool = True):
        self.descriptor = ModuleDescriptor(
            name=NAME,
            version="1.0.0",
            enabled=enabled,
            priority=30,
            dependencies=(THEME_CLUSTERER,),
            options={"max_hypotheses": max_hypotheses},
        )

    def validate(self, input: HypothesisGenerationInput) -> bool:
        return bool(input.analysis_id and input.user_id and input.theme is not None)

    async def run(self, input: HypothesisGenerationInput) -> HypothesisGenerationOutput:
        hypotheses = generate_hypotheses(
            input.analysis_id,
            input.user_id,
            input.theme,
            input.insights,
            max_hypotheses=self.descriptor.option("max_hypotheses", DEFAULT_MAX_HYPOTHESES),
        )
        logger.info(
            "hypothesis.generation_completed",
            theme=input.theme.name,
            count=len(hypotheses),
        )
        return HypothesisGenerationOutput(hypotheses=tuple(hypotheses))


__all__ = [
    "CHANGE_TEMPLATES",
    "DEFAULT_SUCCESS_METRICS",
    "HypothesisGenerationInput",
    "HypothesisGenerationOutput",
    "HypothesisGenerator",
    "change_for",
    "generate_hypotheses",
    "statement_for",
]
