"""
Insight extractor: first pipeline stage.

Turns rendered page content into canonical ``Insight`` records by asking a
language model for a JSON list of findings and mapping each entry through
a strict normalization layer.

Manifesto:
    Models are confident guessers. For the four audience fields (customer
    segment, journey stage, friction type, psychology principle) a wrong
    guess is worse than no answer, so the mapping layer, not the prompt,
    enforces the rule: anything missing, unknown, or outside the vocabulary
    becomes ``"N/A"``.

Architecture:
    ::

        InsightExtractionInput(analysis_id, user_id, content, context, options)
              │
              ▼  validate: ids present, markdown non-empty
        build_extraction_prompt()  ─▶  LLMExecutionService.execute()
              │                           (screenshot → image part)
              ▼
        map_insights(raw)  ─▶  defaults, enum coercion, "N/A" enforcement,
              │                min_confidence filter, max_insights cap
              ▼
        InsightExtractionOutput(insights, summary, llm metadata)

Tags:
    insight-extractor, llm, mapping, pipeline-stage, croflow-analyzers

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, TypeVar

from croflow.core.errors import ModuleExecutionError
from croflow.core.hashing import compute_hash
from croflow.core.logging import get_logger
from croflow.framework.module import ModuleDescriptor
from croflow.llm.prompt import PromptBuilder, truncate_chars
from croflow.llm.protocol import LLMRequest, LLMResponseMetadata, Provider
from croflow.llm.service import LLMExecutionService
from croflow.analyzers.models import (
    NOT_APPLICABLE,
    EffortEstimate,
    Evidence,
    EvidenceType,
    FrictionType,
    Insight,
    InsightCategory,
    InsightLocation,
    InsightType,
    JourneyStage,
    PageContent,
    PsychologyPrinciple,
    Severity,
)

logger = get_logger(__name__)

NAME = "insight-extractor"
MAX_MARKDOWN_CHARS = 15_000
DEFAULT_SCORE = 50

E = TypeVar("E", bound=Enum)

_NA_TOKENS = frozenset({"", "n/a", "na", "none", "null", "unknown", "not_applicable", "not applicable"})

# Friction implies where the problem lives when the model omits a category.
_FRICTION_CATEGORY: dict[FrictionType, InsightCategory] = {
    FrictionType.TRUST: InsightCategory.TRUST,
    FrictionType.USABILITY: InsightCategory.UX,
    FrictionType.VALUE_PERCEPTION: InsightCategory.VALUE_PROP,
    FrictionType.INFORMATION_GAP: InsightCategory.MESSAGING,
    FrictionType.COGNITIVE_LOAD: InsightCategory.UX,
}

_FRICTION_BEARING_TYPES = frozenset({InsightType.PROBLEM, InsightType.RISK})


@dataclass(frozen=True)
class InsightExtractionInput:
    """``options`` overrides the extractor's ``max_insights`` / ``min_confidence`` for one call."""

    analysis_id: str
    user_id: str
    content: PageContent
    context: dict[str, Any] | None = None
    options: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class InsightSummary:
    total_insights: int
    high_priority: int
    categories: dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_insights": self.total_insights,
            "high_priority": self.high_priority,
            "categories": dict(self.categories),
            "average_confidence": self.average_confidence,
        }


@dataclass(frozen=True)
class InsightExtractionOutput:
    insights: tuple[Insight, ...]
    summary: InsightSummary
    llm: LLMResponseMetadata | None = None
    malformed_response: bool = False


# =============================================================================
# MAPPING LAYER
# =============================================================================


def _token(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def _enum(value: Any, enum_cls: type[E], default: E) -> E:
    token = _token(value)
    if token is None:
        return default
    try:
        return enum_cls(token)
    except ValueError:
        return default


def categorical(value: Any, enum_cls: type[E]) -> E:
    """Coerce ``value`` into ``enum_cls`` or its ``NOT_APPLICABLE`` member."""
    not_applicable = enum_cls(NOT_APPLICABLE)
    if not isinstance(value, str) or value.strip().lower() in _NA_TOKENS:
        return not_applicable
    token = _token(value)
    if token in _NA_TOKENS:
        return not_applicable
    try:
        return enum_cls(token)
    except ValueError:
        return not_applicable


def free_text_or_na(value: Any) -> str:
    if not isinstance(value, str) or value.strip().lower() in _NA_TOKENS:
        return NOT_APPLICABLE
    return value.strip()


def score(value: Any, default: int = DEFAULT_SCORE) -> int:
    """0-100 score; zero, missing and non-numeric values fall back to ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number == 0:  # NaN or zero
        return default
    return max(0, min(100, round(number)))


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _evidence(raw: Any) -> tuple[Evidence, ...]:
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, list):
        return ()
    items: list[Evidence] = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            items.append(Evidence(type=EvidenceType.TEXT, content=entry.strip()))
        elif isinstance(entry, dict) and entry.get("content"):
            items.append(
                Evidence(
                    type=_enum(entry.get("type"), EvidenceType, EvidenceType.TEXT),
                    content=str(entry["content"]),
                    source=entry.get("source"),
                )
            )
    return tuple(items)


def _location(raw: Any) -> InsightLocation:
    if isinstance(raw, dict):
        section = raw.get("section")
        return InsightLocation(
            section=str(section) if section else "unknown",
            selector=raw.get("selector"),
        )
    if isinstance(raw, list) and raw:
        return InsightLocation(section=str(raw[0]))
    if isinstance(raw, str) and raw.strip():
        return InsightLocation(section=raw.strip())
    return InsightLocation()


def raw_insight_list(payload: Any) -> list[dict[str, Any]]:
    """Find the list of insight objects in a decoded model response."""
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = next(
            (payload[k] for k in ("insights", "findings", "recommendations") if isinstance(payload.get(k), list)),
            [],
        )
    else:
        items = []
    return [item for item in items if isinstance(item, dict)]


def map_insight(
    raw: dict[str, Any],
    *,
    analysis_id: str,
    user_id: str,
    index: int,
    model: str | None = None,
) -> Insight | None:
    """Map one raw model object to an ``Insight``; ``None`` if it has no title."""
    title = _first(raw, "title", "headline", "name")
    if not isinstance(title, str) or not title.strip():
        return None
    title = title.strip()

    friction = categorical(_first(raw, "friction_type", "frictionType"), FrictionType)
    principle = categorical(
        _first(raw, "psychology_principle", "psychologyPrinciple"), PsychologyPrinciple
    )

    if friction is not FrictionType.NOT_APPLICABLE:
        inferred_type = InsightType.PROBLEM
    elif principle is not PsychologyPrinciple.NOT_APPLICABLE:
        inferred_type = InsightType.OPPORTUNITY
    else:
        inferred_type = InsightType.OBSERVATION
    insight_type = _enum(raw.get("type"), InsightType, inferred_type)

    category = _enum(
        raw.get("category"),
        InsightCategory,
        _FRICTION_CATEGORY.get(friction, InsightCategory.UX),
    )
    if insight_type not in _FRICTION_BEARING_TYPES:
        friction = FrictionType.NOT_APPLICABLE

    description = _first(raw, "description", "details", "diagnosis")
    recommendation = _first(raw, "recommendation", "suggested_action")
    tags = raw.get("tags") if isinstance(raw.get("tags"), list) else []

    return Insight(
        id=compute_hash(analysis_id, "insight", index, title, length=24),
        analysis_id=analysis_id,
        user_id=user_id,
        type=insight_type,
        category=category,
        title=title,
        description=str(description).strip() if description else title,
        severity=_enum(raw.get("severity"), Severity, Severity.MEDIUM),
        confidence=score(raw.get("confidence")),
        impact_score=score(_first(raw, "impact_score", "impactScore")),
        effort=_enum(_first(raw, "effort", "effort_estimate", "effortEstimate"), EffortEstimate, EffortEstimate.MEDIUM),
        evidence=_evidence(raw.get("evidence")),
        location=_location(_first(raw, "location", "page_location")),
        recommendation=str(recommendation) if recommendation else None,
        customer_segment=free_text_or_na(_first(raw, "customer_segment", "customerSegment")),
        journey_stage=categorical(_first(raw, "journey_stage", "journeyStage"), JourneyStage),
        friction_type=friction,
        psychology_principle=principle,
        tags=tuple(str(t) for t in tags),
        metadata={"source": "ai", "llm_model": model} if model else {"source": "ai"},
    )


def map_insights(
    payload: Any,
    *,
    analysis_id: str,
    user_id: str,
    max_insights: int | None = None,
    min_confidence: int = 0,
    model: str | None = None,
) -> list[Insight]:
    """Map a decoded model response to canonical insights.

    Entries without a title are dropped; the rest are filtered by
    ``min_confidence`` and capped at ``max_insights`` in model order.
    """
    insights: list[Insight] = []
    for index, raw in enumerate(raw_insight_list(payload)):
        insight = map_insight(raw, analysis_id=analysis_id, user_id=user_id, index=index, model=model)
        if insight is None:
            logger.debug("insight.skipped_untitled", index=index)
            continue
        if insight.confidence < min_confidence:
            continue
        insights.append(insight)
        if max_insights is not None and len(insights) >= max_insights:
            break
    return insights


def summarize(insights: Iterable[Insight]) -> InsightSummary:
    insights = list(insights)
    return InsightSummary(
        total_insights=len(insights),
        high_priority=sum(1 for i in insights if i.is_high_priority),
        categories=dict(Counter(i.category.value for i in insights)),
        average_confidence=(
            round(sum(i.confidence for i in insights) / len(insights), 2) if insights else 0.0
        ),
    )


# =============================================================================
# PROMPT
# =============================================================================


def build_extraction_prompt(input: InsightExtractionInput, max_insights: int) -> str:
    content = input.content
    builder = PromptBuilder().section(
        "Task",
        "Analyze this web page and extract atomic insights for conversion rate optimization.",
    )
    if content.url:
        builder.section("Page URL", content.url)
    builder.section("Page Content", truncate_chars(content.markdown, MAX_MARKDOWN_CHARS))
    if input.context:
        builder.section("Context", json.dumps(input.context, indent=2, default=str))

    builder.section(
        "Instructions",
        "Extract individual, actionable insights. Each insight must be atomic, "
        "actionable, evidence-based and meaningful for conversion. "
        f"Return at most {max_insights} insights.",
    ).bullet_list(
        [
            f"type: {', '.join(t.value for t in InsightType)}",
            f"category: {', '.join(c.value for c in InsightCategory)}",
            "title: 5-10 words; description: 2-3 sentences",
            f"severity: {', '.join(s.value for s in Severity)}",
            "confidence and impact_score: 0-100",
            f"effort: {', '.join(e.value for e in EffortEstimate)}",
            "evidence: list of {type, content}; location: {section, selector}",
            "customer_segment: who is affected, or N/A",
            f"journey_stage: {', '.join(j.value for j in JourneyStage)}",
            f"friction_type (problems only): {', '.join(f.value for f in FrictionType)}",
            f"psychology_principle: {', '.join(p.value for p in PsychologyPrinciple)}",
            "Use N/A for any of the last four fields unless the page clearly supports a value.",
        ]
    ).raw('Return a JSON object of the form {"insights": [ ... ]}.')
    return builder.build()


# =============================================================================
# MODULE
# =============================================================================


class InsightExtractor:
    """Module extracting insights from page content via the LLM service."""

    def __init__(
        self,
        llm: LLMExecutionService,
        *,
        provider: Provider | str = Provider.GPT,
        model: str | None = None,
        max_insights: int = 20,
        min_confidence: int = 0,
        enabled: bool = True,
    ):
        self.llm = llm
        self.provider = provider
        self.model = model
        self.descriptor = ModuleDescriptor(
            name=NAME,
            version="2.0.0",
            enabled=enabled,
            priority=10,
            options={"max_insights": max_insights, "min_confidence": min_confidence},
        )

    def validate(self, input: InsightExtractionInput) -> bool:
        return bool(
            input.analysis_id
            and input.user_id
            and input.content is not None
            and input.content.markdown
            and input.content.markdown.strip()
        )

    async def run(self, input: InsightExtractionInput) -> InsightExtractionOutput:
        options = {**self.descriptor.options, **(input.options or {})}
        max_insights = options.get("max_insights", 20)
        min_confidence = options.get("min_confidence", 0)
        screenshot = input.content.screenshot

        logger.info(
            "insight.extraction_started",
            analysis_id=input.analysis_id,
            url=input.content.url,
            provider=str(getattr(self.provider, "value", self.provider)),
            screenshot=bool(screenshot),
        )
        response = await self.llm.execute(
            LLMRequest(
                prompt=build_extraction_prompt(input, max_insights),
                provider=self.provider,
                model=self.model,
                images=(screenshot,) if screenshot else (),
            )
        )
        if not response.success:
            raise ModuleExecutionError(
                NAME, response.error or "Insight extraction failed"
            ).with_context(analysis_id=input.analysis_id, user_id=input.user_id)

        insights = map_insights(
            response.data,
            analysis_id=input.analysis_id,
            user_id=input.user_id,
            max_insights=max_insights,
            min_confidence=min_confidence,
            model=response.metadata.model,
        )
        summary = summarize(insights)
        logger.info(
            "insight.extraction_completed",
            analysis_id=input.analysis_id,
            count=len(insights),
            high_priority=summary.high_priority,
            malformed=response.malformed,
        )
        return InsightExtractionOutput(
            insights=tuple(insights),
            summary=summary,
            llm=response.metadata,
            malformed_response=response.malformed,
        )


__all__ = [
    "InsightExtractionInput",
    "InsightExtractionOutput",
    "InsightExtractor",
    "InsightSummary",
    "build_extraction_prompt",
    "categorical",
    "map_insight",
    "map_insights",
    "summarize",
]
