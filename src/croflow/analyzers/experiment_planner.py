"""
Experiment planner: fourth pipeline stage.

Turns one hypothesis into a two-variant experiment: an unchanged control
and a treatment carrying the hypothesis' change, plus an implementation
plan and the hypothesis' success metrics as success criteria. Like the
hypothesis generator it is templated, not model-generated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from croflow.core.hashing import compute_hash
from croflow.core.logging import get_logger
from croflow.framework.module import ModuleDescriptor
from croflow.analyzers.hypothesis_generator import NAME as HYPOTHESIS_GENERATOR
from croflow.analyzers.hypothesis_generator import change_for
from croflow.analyzers.models import (
    ChangeType,
    Experiment,
    ExperimentStatus,
    ExperimentVariant,
    Hypothesis,
    ImplementationStep,
    Insight,
    Theme,
    VariantChange,
)

logger = get_logger(__name__)

NAME = "experiment-planner"

TargetPlatform = Literal["optimizely", "google-optimize", "vwo", "custom"]

_STATEMENT_CHANGE = re.compile(r"^If we (?P<change>.+?), then ", re.IGNORECASE)

# Keyword in the change phrase → (element, change type); first match wins.
_ELEMENTS: tuple[tuple[tuple[str, ...], str, ChangeType], ...] = (
    (("cta", "button"), "Primary CTA button", ChangeType.CTA),
    (("form",), "Form", ChangeType.LAYOUT),
    (("trust",), "Trust signals", ChangeType.IMAGE),
    (("value",), "Value proposition headline", ChangeType.TEXT),
)


@dataclass(frozen=True)
class ExperimentPlanningInput:
    analysis_id: str
    user_id: str
    hypothesis: Hypothesis
    theme: Theme | None = None
    insights: tuple[Insight, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "insights", tuple(self.insights))


@dataclass(frozen=True)
class ExperimentPlanningOutput:
    experiment: Experiment


def change_phrase(hypothesis: Hypothesis, insight: Insight | None = None) -> str:
    match = _STATEMENT_CHANGE.match(hypothesis.statement)
    if match:
        return match.group("change").strip()
    return change_for(insight.title) if insight else "address this issue"


def element_for(change: str) -> tuple[str, ChangeType]:
    lowered = change.lower()
    for keywords, element, change_type in _ELEMENTS:
        if any(keyword in lowered for keyword in keywords):
            return element, change_type
    return "Page element", ChangeType.OTHER


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def implementation_plan(
    after: str,
    *,
    platform: str,
    primary_metric: str,
    minimum_sample_size: int,
    duration_days: int,
) -> tuple[ImplementationStep, ...]:
    return (
        ImplementationStep(
            order=1,
            description="Design the treatment variant",
            technical=f"Mock up the change: {after}",
            estimated_time="1-2 days",
        ),
        ImplementationStep(
            order=2,
            description=f"Build the variant in {platform}",
            technical="Configure a 50/50 traffic split between control and treatment",
            estimated_time="1-3 days",
        ),
        ImplementationStep(
            order=3,
            description="QA both variants across devices and browsers",
            technical="Verify tracking fires for every success metric",
            estimated_time="1 day",
        ),
        ImplementationStep(
            order=4,
            description=f"Launch and monitor {primary_metric}",
            technical=f"Run until each variant has at least {minimum_sample_size} visitors",
            estimated_time=f"{duration_days} days",
        ),
    )


def plan_experiment(
    input: ExperimentPlanningInput,
    *,
    include_implementation: bool = True,
    target_platform: TargetPlatform = "custom",
    minimum_sample_size: int | None = None,
    duration_days: int = 14,
) -> Experiment:
    hypothesis = input.hypothesis
    insight = next((i for i in input.insights if i.id == hypothesis.insight_id), None)
    change = change_phrase(hypothesis, insight)
    element, change_type = element_for(change)
    before = insight.title if insight else "Current experience"
    after = _capitalize(change)

    primary = hypothesis.primary_metric
    primary_name = primary.name if primary else "conversion rate"
    sample_size = minimum_sample_size or int(hypothesis.metadata.get("reach", 1000))

    name = f"{input.theme.name}: {after}" if input.theme else f"Experiment: {after}"
    plan = (
        implementation_plan(
            after,
            platform=target_platform,
            primary_metric=primary_name,
            minimum_sample_size=sample_size,
            duration_days=duration_days,
        )
        if include_implementation
        else ()
    )

    return Experiment(
        id=compute_hash(input.analysis_id, "experiment", hypothesis.id, length=24),
        analysis_id=input.analysis_id,
        user_id=input.user_id,
        hypothesis_id=hypothesis.id,
        name=name,
        description=hypothesis.statement,
        control=ExperimentVariant(
            name="Control",
            description="Current experience without changes",
        ),
        treatment=ExperimentVariant(
            name="Treatment",
            description=f"Variant that will {change}",
            changes=(VariantChange(element=element, type=change_type, before=before, after=after),),
        ),
        implementation_plan=plan,
        success_criteria=hypothesis.success_metrics,
        status=ExperimentStatus.PLANNED,
        metadata={
            "traffic_split": {"control": 50, "treatment": 50},
            "minimum_sample_size": sample_size,
            "estimated_duration_days": duration_days,
            "target_platform": target_platform,
        },
    )


class ExperimentPlanner:
    """Module planning a control/treatment experiment for one hypothesis."""

    def __init__(
        self,
        *,
        include_implementation: bool = True,
        target_platform: TargetPlatform = "custom",
        minimum_sample_size: int | None = None,
        duration_days: int = 14,
        enabled: bool = True,
    ):
        self.descriptor = ModuleDescriptor(
            name=NAME,
            version="1.0.0",
            enabled=enabled,
            priority=40,
            dependencies=(HYPOTHESIS_GENERATOR,),
            options={
                "include_implementation": include_implementation,
                "target_platform": target_platform,
                "minimum_sample_size": minimum_sample_size,
                "duration_days": duration_days,
            },
        )

    def validate(self, input: ExperimentPlanningInput) -> bool:
        return bool(input.analysis_id and input.user_id and input.hypothesis is not None)

    async def run(self, input: ExperimentPlanningInput) -> ExperimentPlanningOutput:
        options = self.descriptor.options
        experiment = plan_experiment(
            input,
            include_implementation=options.get("include_implementation", True),
            target_platform=options.get("target_platform", "custom"),
            minimum_sample_size=options.get("minimum_sample_size"),
            duration_days=options.get("duration_days", 14),
        )
        logger.info(
            "experiment.planned",
            hypothesis_id=input.hypothesis.id,
            experiment=experiment.name,
        )
        return ExperimentPlanningOutput(experiment=experiment)


__all__ = [
    "ExperimentPlanner",
    "ExperimentPlanningInput",
    "ExperimentPlanningOutput",
    "change_phrase",
    "element_for",
    "plan_experiment",
]
