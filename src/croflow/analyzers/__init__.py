"""croflow analyzers -- the four pipeline stages and the records they produce.

Architecture::

    models.py               Insight / Theme / Hypothesis / Experiment records
    insight_extractor.py    page content → insights (LLM-backed)
    theme_clusterer.py      insights → prioritized themes
    hypothesis_generator.py theme → templated hypotheses
    experiment_planner.py   hypothesis → control/treatment experiment
"""

from croflow.analyzers.experiment_planner import (
    ExperimentPlanner,
    ExperimentPlanningInput,
    ExperimentPlanningOutput,
    plan_experiment,
)
from croflow.analyzers.hypothesis_generator import (
    HypothesisGenerationInput,
    HypothesisGenerationOutput,
    HypothesisGenerator,
    generate_hypotheses,
)
from croflow.analyzers.insight_extractor import (
    InsightExtractionInput,
    InsightExtractionOutput,
    InsightExtractor,
    map_insights,
)
from croflow.analyzers.models import (
    NOT_APPLICABLE,
    Experiment,
    Hypothesis,
    Insight,
    InsightCategory,
    InsightType,
    PageContent,
    Theme,
)
from croflow.analyzers.theme_clusterer import (
    ThemeClusterer,
    ThemeClusteringInput,
    ThemeClusteringOutput,
    cluster_insights,
)

__all__ = [
    # Records
    "NOT_APPLICABLE",
    "Experiment",
    "Hypothesis",
    "Insight",
    "InsightCategory",
    "InsightType",
    "PageContent",
    "Theme",
    # Stages
    "ExperimentPlanner",
    "ExperimentPlanningInput",
    "ExperimentPlanningOutput",
    "HypothesisGenerationInput",
    "HypothesisGenerationOutput",
    "HypothesisGenerator",
    "InsightExtractionInput",
    "InsightExtractionOutput",
    "InsightExtractor",
    "ThemeClusterer",
    "ThemeClusteringInput",
    "ThemeClusteringOutput",
    # Pure functions
    "cluster_insights",
    "generate_hypotheses",
    "map_insights",
    "plan_experiment",
]
