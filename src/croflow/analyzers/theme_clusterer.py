"""
Theme clusterer: second pipeline stage.

Groups insights into themes. The default strategy groups by insight
category in first-appearance order; a different grouping can be plugged
in through ``ClusteringStrategy`` without touching scoring.

Scoring per group of ``n`` insights:

- priority = round(avg_impact × avg_confidence × min(n, 10) / 10000)
- pattern: 1 distinct page section → recurring, more than 3 → systemic,
  otherwise behavioral

Themes are returned sorted by priority, highest first. Ties keep grouping
order, so clustering the same ordered input twice gives identical output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from croflow.core.hashing import compute_hash
from croflow.core.logging import get_logger
from croflow.framework.module import ModuleDescriptor
from croflow.analyzers.insight_extractor import NAME as INSIGHT_EXTRACTOR
from croflow.analyzers.models import (
    Insight,
    InsightCategory,
    InsightType,
    PatternType,
    Theme,
)

logger = get_logger(__name__)

NAME = "theme-clusterer"
DEFAULT_MIN_CLUSTER_SIZE = 2


@dataclass(frozen=True)
class ThemeClusteringInput:
    analysis_id: str
    user_id: str
    insights: tuple[Insight, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "insights", tuple(self.insights))


@dataclass(frozen=True)
class ThemeClusteringOutput:
    themes: tuple[Theme, ...]

    def insights_for(self, theme: Theme, insights: Iterable[Insight]) -> list[Insight]:
        wanted = set(theme.insight_ids)
        return [i for i in insights if i.id in wanted]


@dataclass(frozen=True)
class InsightGroup:
    """A candidate theme: a label and its member insights."""

    label: str
    insights: tuple[Insight, ...]
    category: InsightCategory | None = None


class ClusteringStrategy(Protocol):
    def group(self, insights: Sequence[Insight]) -> list[InsightGroup]:
        ...


class CategoryClustering:
    """Group by ``Insight.category``, ordered by first appearance."""

    def group(self, insights: Sequence[Insight]) -> list[InsightGroup]:
        groups: dict[InsightCategory, list[Insight]] = {}
        for insight in insights:
            groups.setdefault(insight.category, []).append(insight)
        return [
            InsightGroup(label=category.display_name, insights=tuple(members), category=category)
            for category, members in groups.items()
        ]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def theme_priority(insights: Sequence[Insight]) -> int:
    avg_impact = _mean([i.impact_score for i in insights])
    avg_confidence = _mean([i.confidence for i in insights])
    return _round_half_up(avg_impact * avg_confidence * min(len(insights), 10) / 10000)


def pattern_for(insights: Sequence[Insight]) -> PatternType:
    sections = {i.location.section for i in insights}
    if len(sections) == 1:
        return PatternType.RECURRING
    if len(sections) > 3:
        return PatternType.SYSTEMIC
    return PatternType.BEHAVIORAL


def business_impact(insights: Sequence[Insight]) -> str:
    high = sum(1 for i in insights if i.is_high_priority)
    if high > 0:
        return f"High priority area with {high} critical issues affecting conversion"
    return f"Moderate impact area with {len(insights)} improvement opportunities"


def describe(group: InsightGroup) -> str:
    problems = sum(1 for i in group.insights if i.type is InsightType.PROBLEM)
    opportunities = sum(1 for i in group.insights if i.type is InsightType.OPPORTUNITY)
    return (
        f"{len(group.insights)} {group.label.lower()} insights identified "
        f"({problems} problems, {opportunities} opportunities)"
    )


def cluster_insights(
    analysis_id: str,
    user_id: str,
    insights: Sequence[Insight],
    *,
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
    max_themes: int | None = None,
    strategy: ClusteringStrategy | None = None,
) -> list[Theme]:
    """Build themes from ``insights``; pure and deterministic."""
    strategy = strategy or CategoryClustering()
    themes: list[Theme] = []
    index = 1
    for group in strategy.group(insights):
        members = group.insights
        if len(members) < min_cluster_size:
            continue
        insight_ids = tuple(i.id for i in members)
        themes.append(
            Theme(
                id=compute_hash(analysis_id, "theme", *insight_ids, length=24),
                analysis_id=analysis_id,
                user_id=user_id,
                name=f"{group.label} Theme {index}",
                description=describe(group),
                insight_ids=insight_ids,
                priority=theme_priority(members),
                pattern=pattern_for(members),
                business_impact=business_impact(members),
                metadata={
                    "category": group.category.value if group.category else None,
                    "insight_count": len(members),
                    "avg_confidence": _mean([i.confidence for i in members]),
                    "avg_impact": _mean([i.impact_score for i in members]),
                },
            )
        )
        index += 1

    themes.sort(key=lambda theme: theme.priority, reverse=True)
    if max_themes is not None:
        themes = themes[:max_themes]
    return themes


class ThemeClusterer:
    """Module grouping insights into prioritized themes."""

    def __init__(
        self,
        *,
        min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
        max_themes: int | None = None,
        strategy: ClusteringStrategy | None = None,
        enabled: bool = True,
    ):
        self.strategy = strategy or CategoryClustering()
        self.descriptor = ModuleDescriptor(
            name=NAME,
            version="1.0.0",
            enabled=enabled,
            priority=20,
            dependencies=(INSIGHT_EXTRACTOR,),
            options={"min_cluster_size": min_cluster_size, "max_themes": max_themes},
        )

    def validate(self, input: ThemeClusteringInput) -> bool:
        return bool(input.analysis_id and input.user_id and input.insights)

    async def run(self, input: ThemeClusteringInput) -> ThemeClusteringOutput:
        themes = cluster_insights(
            input.analysis_id,
            input.user_id,
            input.insights,
            min_cluster_size=self.descriptor.option("min_cluster_size", DEFAULT_MIN_CLUSTER_SIZE),
            max_themes=self.descriptor.option("max_themes"),
            strategy=self.strategy,
        )
        logger.info(
            "theme.clustering_completed",
            analysis_id=input.analysis_id,
            insights=len(input.insights),
            themes=len(themes),
        )
        return ThemeClusteringOutput(themes=tuple(themes))


__all__ = [
    "CategoryClustering",
    "ClusteringStrategy",
    "InsightGroup",
    "ThemeClusterer",
    "ThemeClusteringInput",
    "ThemeClusteringOutput",
    "business_impact",
    "cluster_insights",
    "pattern_for",
    "theme_priority",
]
