"""
Pipeline artifact records: insights, themes, hypotheses and experiments.

Records are frozen dataclasses produced once per pipeline run and handed
to the artifact store. Identifiers are content-derived (``compute_hash``)
so re-running a stage over the same input yields the same ids. The only
permitted change after creation is enriching ``metadata`` through
``with_metadata``, which returns a new record.

Architecture:
    ::

        Insight ──┐  (many)
                  ▼
               Theme  ── insight_ids, priority, pattern
                  │ (one)
                  ▼
             Hypothesis ── theme_id, insight_id, statement, success_metrics
                  │ (one)
                  ▼
             Experiment ── control / treatment variants, plan, criteria

Categorical fields the model cannot be sure about (customer segment,
journey stage, friction type, psychology principle) hold the explicit
``NOT_APPLICABLE`` sentinel rather than a guess.

Tags:
    models, insight, theme, hypothesis, experiment, croflow-analyzers

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, is_dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

NOT_APPLICABLE = "N/A"


class InsightType(str, Enum):
    OBSERVATION = "observation"
    PROBLEM = "problem"
    OPPORTUNITY = "opportunity"
    RISK = "risk"


class InsightCategory(str, Enum):
    UX = "ux"
    MESSAGING = "messaging"
    TRUST = "trust"
    URGENCY = "urgency"
    VALUE_PROP = "value_prop"
    FRICTION = "friction"
    CONVERSION = "conversion"
    ENGAGEMENT = "engagement"

    @property
    def display_name(self) -> str:
        return CATEGORY_DISPLAY_NAMES[self]


CATEGORY_DISPLAY_NAMES: dict[InsightCategory, str] = {
    InsightCategory.UX: "User Experience",
    InsightCategory.MESSAGING: "Messaging",
    InsightCategory.TRUST: "Trust & Credibility",
    InsightCategory.URGENCY: "Urgency & Scarcity",
    InsightCategory.VALUE_PROP: "Value Proposition",
    InsightCategory.FRICTION: "Friction Points",
    InsightCategory.CONVERSION: "Conversion",
    InsightCategory.ENGAGEMENT: "Engagement",
}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EffortEstimate(str, Enum):
    TRIVIAL = "trivial"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class JourneyStage(str, Enum):
    AWARENESS = "awareness"
    CONSIDERATION = "consideration"
    DECISION = "decision"
    POST_PURCHASE = "post_purchase"
    NOT_APPLICABLE = NOT_APPLICABLE


class FrictionType(str, Enum):
    USABILITY = "usability"
    TRUST = "trust"
    VALUE_PERCEPTION = "value_perception"
    INFORMATION_GAP = "information_gap"
    COGNITIVE_LOAD = "cognitive_load"
    NOT_APPLICABLE = NOT_APPLICABLE


class PsychologyPrinciple(str, Enum):
    LOSS_AVERSION = "loss_aversion"
    SOCIAL_PROOF = "social_proof"
    SCARCITY = "scarcity"
    AUTHORITY = "authority"
    ANCHORING = "anchoring"
    NOT_APPLICABLE = NOT_APPLICABLE


class EvidenceType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    METRIC = "metric"
    BEHAVIOR = "behavior"


class PatternType(str, Enum):
    RECURRING = "recurring"
    SYSTEMIC = "systemic"
    BEHAVIORAL = "behavioral"
    TECHNICAL = "technical"


class HypothesisStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    TESTING = "testing"
    VALIDATED = "validated"
    INVALIDATED = "invalidated"


class ExperimentStatus(str, Enum):
    PLANNED = "planned"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ChangeType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    LAYOUT = "layout"
    COLOR = "color"
    CTA = "cta"
    OTHER = "other"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _serialize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


class _Record:
    """Serialization and metadata enrichment shared by every record."""

    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _serialize(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]

    def with_metadata(self, **metadata: Any):
        """Copy with ``metadata`` merged in; the original is untouched."""
        return replace(self, metadata={**self.metadata, **metadata})  # type: ignore[type-var]


# =============================================================================
# PAGE CONTENT
# =============================================================================


@dataclass(frozen=True)
class PageContent:
    """Rendered page handed over by the content-acquisition collaborator.

    ``screenshot`` is a URL or a ``data:image/...;base64,`` URL.
    """

    markdown: str
    html: str | None = None
    screenshot: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


# =============================================================================
# INSIGHTS
# =============================================================================


@dataclass(frozen=True)
class Evidence:
    type: EvidenceType
    content: str
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class InsightLocation:
    section: str = "unknown"
    selector: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Insight(_Record):
    """One atomic, actionable observation about a page.

    ``confidence`` and ``impact_score`` are percentages (0-100).
    """

    id: str
    analysis_id: str
    user_id: str
    type: InsightType
    category: InsightCategory
    title: str
    description: str
    severity: Severity = Severity.MEDIUM
    confidence: int = 50
    impact_score: int = 50
    effort: EffortEstimate = EffortEstimate.MEDIUM
    evidence: tuple[Evidence, ...] = ()
    location: InsightLocation = field(default_factory=InsightLocation)
    recommendation: str | None = None
    customer_segment: str = NOT_APPLICABLE
    journey_stage: JourneyStage = JourneyStage.NOT_APPLICABLE
    friction_type: FrictionType = FrictionType.NOT_APPLICABLE
    psychology_principle: PsychologyPrinciple = PsychologyPrinciple.NOT_APPLICABLE
    tags: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=_utcnow, compare=False)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", max(0, min(100, int(self.confidence))))
        object.__setattr__(self, "impact_score", max(0, min(100, int(self.impact_score))))
        object.__setattr__(self, "evidence", tuple(self.evidence))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def is_high_priority(self) -> bool:
        return self.severity in (Severity.HIGH, Severity.CRITICAL)


# =============================================================================
# THEMES
# =============================================================================


@dataclass(frozen=True)
class Theme(_Record):
    """A group of related insights with a derived priority and pattern."""

    id: str
    analysis_id: str
    user_id: str
    name: str
    description: str
    insight_ids: tuple[str, ...]
    priority: int
    pattern: PatternType
    business_impact: str
    created_at: datetime = field(default_factory=_utcnow, compare=False)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "insight_ids", tuple(self.insight_ids))


# =============================================================================
# HYPOTHESES
# =============================================================================


@dataclass(frozen=True)
class SuccessMetric:
    name: str
    baseline: float
    target: float
    unit: str = "%"
    primary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Hypothesis(_Record):
    """A testable "If we ..., then ... because ..." statement for one theme."""

    id: str
    analysis_id: str
    user_id: str
    theme_id: str
    insight_id: str | None
    statement: str
    rationale: str
    expected_outcome: str
    success_metrics: tuple[SuccessMetric, ...] = ()
    status: HypothesisStatus = HypothesisStatus.DRAFT
    confidence_level: int = 70
    created_at: datetime = field(default_factory=_utcnow, compare=False)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "success_metrics", tuple(self.success_metrics))

    @property
    def primary_metric(self) -> SuccessMetric | None:
        return next((m for m in self.success_metrics if m.primary), None)


# =============================================================================
# EXPERIMENTS
# =============================================================================


@dataclass(frozen=True)
class VariantChange:
    element: str
    type: ChangeType
    before: str
    after: str

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class ExperimentVariant:
    name: str
    description: str
    changes: tuple[VariantChange, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class ImplementationStep:
    order: int
    description: str
    technical: str | None = None
    estimated_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Experiment(_Record):
    """A two-variant (control/treatment) test plan for one hypothesis."""

    id: str
    analysis_id: str
    user_id: str
    hypothesis_id: str
    name: str
    description: str
    control: ExperimentVariant
    treatment: ExperimentVariant
    implementation_plan: tuple[ImplementationStep, ...] = ()
    success_criteria: tuple[SuccessMetric, ...] = ()
    status: ExperimentStatus = ExperimentStatus.PLANNED
    created_at: datetime = field(default_factory=_utcnow, compare=False)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "implementation_plan", tuple(self.implementation_plan))
        object.__setattr__(self, "success_criteria", tuple(self.success_criteria))


__all__ = [
    "NOT_APPLICABLE",
    "CATEGORY_DISPLAY_NAMES",
    "ChangeType",
    "EffortEstimate",
    "Evidence",
    "EvidenceType",
    "Experiment",
    "ExperimentStatus",
    "ExperimentVariant",
    "FrictionType",
    "Hypothesis",
    "HypothesisStatus",
    "ImplementationStep",
    "Insight",
    "InsightCategory",
    "InsightLocation",
    "InsightType",
    "JourneyStage",
    "PageContent",
    "PatternType",
    "PsychologyPrinciple",
    "Severity",
    "SuccessMetric",
    "Theme",
    "VariantChange",
]
