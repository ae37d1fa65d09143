"""
Analysis pipeline: page content → insights → themes → hypotheses → experiments.

Manifesto:
    The stages know nothing about each other; the pipeline is the only
    place that knows their order. It runs every stage through the module
    registry, so each one gets the same validation, timing, timeout and
    retry treatment, and it hands each stage's batch to an artifact store
    before moving on.

    - **Explicit context:** settings, cache, LLM service and registry
      travel in one ``ModuleContext`` instead of module-level singletons
    - **Fail fast:** the first failed stage ends the run; earlier batches
      stay persisted
    - **Correlated logs:** ``analysis_id`` and ``user_id`` are bound for
      the whole run

Architecture:
    ::

        AnalysisPipeline.run(analysis_id, user_id, content | url)
          │
          ├── ContentSource.fetch(url)              (only when no content given)
          ├── insight-extractor      ─▶ store.save_insights
          ├── theme-clusterer        ─▶ store.save_themes
          ├── hypothesis-generator   ─▶ store.save_hypotheses
          │     (one call per theme, concurrently)
          ├── experiment-planner     ─▶ store.save_experiments
          │     (one call per hypothesis, concurrently)
          └── PipelineReport(status, artifacts, errors, duration_ms)

Guardrails:
    ❌ DON'T: Call stage modules directly from a request handler
    ✅ DO: Go through ``AnalysisPipeline`` (or the registry) so failures
       come back as values

Tags:
    pipeline, orchestration, context, artifact-store, croflow

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence

from croflow.analyzers.experiment_planner import NAME as EXPERIMENT_PLANNER
from croflow.analyzers.experiment_planner import ExperimentPlanner, ExperimentPlanningInput
from croflow.analyzers.hypothesis_generator import NAME as HYPOTHESIS_GENERATOR
from croflow.analyzers.hypothesis_generator import HypothesisGenerationInput, HypothesisGenerator
from croflow.analyzers.insight_extractor import NAME as INSIGHT_EXTRACTOR
from croflow.analyzers.insight_extractor import InsightExtractionInput, InsightExtractor
from croflow.analyzers.models import Experiment, Hypothesis, Insight, PageContent, Theme
from croflow.analyzers.theme_clusterer import NAME as THEME_CLUSTERER
from croflow.analyzers.theme_clusterer import ThemeClusterer, ThemeClusteringInput
from croflow.core.cache import TTLCache
from croflow.core.errors import ModuleConfigurationError, ModuleExecutionError
from croflow.core.logging import LogContext, configure_logging_from_settings, get_logger
from croflow.core.result import Err, ExecutionMetadata, ExecutionResult, Ok, partition_results
from croflow.core.settings import CroflowSettings
from croflow.core.timing import TimingResult
from croflow.framework.module import ModuleExecutionOptions
from croflow.framework.registry import ModuleRegistry
from croflow.llm.service import LLMExecutionService

logger = get_logger(__name__)

CONTENT_SOURCE = "content-source"


# =============================================================================
# CONTEXT
# =============================================================================


@dataclass(frozen=True)
class ModuleContext:
    """Everything a stage needs, passed explicitly.

    ``analysis_id`` / ``user_id`` are empty on a shared context and set on
    the per-run copy returned by ``for_run``.
    """

    settings: CroflowSettings
    cache: TTLCache
    llm: LLMExecutionService
    registry: ModuleRegistry
    logger: Any
    analysis_id: str | None = None
    user_id: str | None = None

    @classmethod
    def create(
        cls,
        settings: CroflowSettings | None = None,
        llm: LLMExecutionService | None = None,
        *,
        configure_logs: bool = True,
    ) -> ModuleContext:
        """Build a context with a fresh cache, registry and (default) LLM service.

        Logging is configured from ``settings`` unless ``configure_logs`` is
        false. When called inside a running event loop the cache sweep starts
        immediately; otherwise ``start()`` starts it later.
        """
        settings = settings or CroflowSettings()
        if configure_logs:
            configure_logging_from_settings(settings)
        cache = TTLCache(
            max_size=settings.cache_max_size,
            default_ttl_seconds=settings.cache_ttl_seconds,
            eviction=settings.cache_eviction,
        )
        context = cls(
            settings=settings,
            cache=cache,
            llm=llm or LLMExecutionService(settings=settings),
            registry=ModuleRegistry(cache=cache, settings=settings),
            logger=get_logger("croflow"),
        )
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            context.start()
        return context

    def start(self) -> None:
        """Start the periodic cache sweep on the running loop (idempotent)."""
        self.cache.start_cleanup(self.settings.cache_cleanup_interval_seconds)

    async def close(self) -> None:
        """Stop the cache sweep and destroy every registered module."""
        await self.cache.stop_cleanup()
        await self.registry.shutdown()

    def for_run(self, analysis_id: str, user_id: str) -> ModuleContext:
        return replace(
            self,
            analysis_id=analysis_id,
            user_id=user_id,
            logger=self.logger.bind(analysis_id=analysis_id, user_id=user_id),
        )


def build_registry(context: ModuleContext) -> ModuleRegistry:
    """Register the four analysis stages on ``context.registry``."""
    registry = context.registry
    registry.register(
        InsightExtractor(context.llm, provider=context.settings.llm_default_provider)
    )
    registry.register(ThemeClusterer())
    registry.register(HypothesisGenerator())
    registry.register(ExperimentPlanner())
    return registry


# =============================================================================
# COLLABORATORS
# =============================================================================


class ContentSource(Protocol):
    """Turns a URL into rendered page content."""

    async def fetch(self, url: str) -> ExecutionResult[PageContent]:
        ...


class ArtifactStore(Protocol):
    """Persists each stage's output batch."""

    async def save_insights(self, analysis_id: str, user_id: str, records: Sequence[Insight]) -> None:
        ...

    async def save_themes(self, analysis_id: str, user_id: str, records: Sequence[Theme]) -> None:
        ...

    async def save_hypotheses(
        self, analysis_id: str, user_id: str, records: Sequence[Hypothesis]
    ) -> None:
        ...

    async def save_experiments(
        self, analysis_id: str, user_id: str, records: Sequence[Experiment]
    ) -> None:
        ...


class StaticContentSource:
    """Serves pre-rendered pages from a mapping of URL → content."""

    def __init__(self, pages: Mapping[str, PageContent] | None = None):
        self.pages = dict(pages or {})

    async def fetch(self, url: str) -> ExecutionResult[PageContent]:
        page = self.pages.get(url)
        if page is None:
            return Err(ModuleExecutionError(CONTENT_SOURCE, f"No content available for {url}"))
        return Ok(page)


class InMemoryArtifactStore:
    """Artifact store keeping every batch in process memory."""

    def __init__(self) -> None:
        self.insights: dict[str, list[Insight]] = defaultdict(list)
        self.themes: dict[str, list[Theme]] = defaultdict(list)
        self.hypotheses: dict[str, list[Hypothesis]] = defaultdict(list)
        self.experiments: dict[str, list[Experiment]] = defaultdict(list)
        self.owners: dict[str, str] = {}

    async def save_insights(self, analysis_id: str, user_id: str, records: Sequence[Insight]) -> None:
        self.owners[analysis_id] = user_id
        self.insights[analysis_id].extend(records)

    async def save_themes(self, analysis_id: str, user_id: str, records: Sequence[Theme]) -> None:
        self.owners[analysis_id] = user_id
        self.themes[analysis_id].extend(records)

    async def save_hypotheses(
        self, analysis_id: str, user_id: str, records: Sequence[Hypothesis]
    ) -> None:
        self.owners[analysis_id] = user_id
        self.hypotheses[analysis_id].extend(records)

    async def save_experiments(
        self, analysis_id: str, user_id: str, records: Sequence[Experiment]
    ) -> None:
        self.owners[analysis_id] = user_id
        self.experiments[analysis_id].extend(records)

    def counts(self, analysis_id: str) -> dict[str, int]:
        return {
            "insights": len(self.insights.get(analysis_id, [])),
            "themes": len(self.themes.get(analysis_id, [])),
            "hypotheses": len(self.hypotheses.get(analysis_id, [])),
            "experiments": len(self.experiments.get(analysis_id, [])),
        }


# =============================================================================
# REPORT
# =============================================================================


class PipelineStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineReport:
    """Outcome of one pipeline run."""

    analysis_id: str
    user_id: str
    status: PipelineStatus = PipelineStatus.COMPLETED
    insights: list[Insight] = field(default_factory=list)
    themes: list[Theme] = field(default_factory=list)
    hypotheses: list[Hypothesis] = field(default_factory=list)
    experiments: list[Experiment] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    failed_stage: str | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is PipelineStatus.COMPLETED

    def fail(self, stage: str, errors: Sequence[Exception]) -> PipelineReport:
        self.status = PipelineStatus.FAILED
        self.failed_stage = stage
        self.errors.extend(errors)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "failed_stage": self.failed_stage,
            "insights": [i.to_dict() for i in self.insights],
            "themes": [t.to_dict() for t in self.themes],
            "hypotheses": [h.to_dict() for h in self.hypotheses],
            "experiments": [e.to_dict() for e in self.experiments],
            "errors": [
                e.to_dict() if hasattr(e, "to_dict") else {"message": str(e)} for e in self.errors
            ],
            "duration_ms": round(self.duration_ms, 3),
        }


# =============================================================================
# PIPELINE
# =============================================================================


class AnalysisPipeline:
    """Runs the four analysis stages for one page.

    Args:
        context: Shared context; the four stages are registered on its
            registry unless already present.
        store: Receives each stage's batch.
        content_source: Used when ``run`` gets a URL instead of content.
        options: Execution options for the model-backed extraction stage.
    """

    def __init__(
        self,
        context: ModuleContext,
        store: ArtifactStore,
        content_source: ContentSource | None = None,
        *,
        options: ModuleExecutionOptions | None = None,
    ):
        self.context = context
        self.store = store
        self.content_source = content_source
        self.options = options or ModuleExecutionOptions()
        if not all(
            name in context.registry
            for name in (INSIGHT_EXTRACTOR, THEME_CLUSTERER, HYPOTHESIS_GENERATOR, EXPERIMENT_PLANNER)
        ):
            build_registry(context)

    async def run(
        self,
        analysis_id: str,
        user_id: str,
        content: PageContent | None = None,
        url: str | None = None,
    ) -> PipelineReport:
        """Run every stage; never raises for stage failures."""
        timer = TimingResult(step="pipeline")
        report = PipelineReport(analysis_id=analysis_id, user_id=user_id)
        self.context.start()
        ctx = self.context.for_run(analysis_id, user_id)

        async with LogContext(analysis_id=analysis_id, user_id=user_id):
            ctx.logger.info("pipeline.started", url=url or (content.url if content else None))
            await self._run_stages(ctx, report, content, url)
            report.duration_ms = timer.stop().duration_ms
            ctx.logger.info(
                "pipeline.finished",
                status=report.status.value,
                failed_stage=report.failed_stage,
                insights=len(report.insights),
                themes=len(report.themes),
                hypotheses=len(report.hypotheses),
                experiments=len(report.experiments),
                duration_ms=round(report.duration_ms, 2),
            )
        return report

    async def _run_stages(
        self,
        ctx: ModuleContext,
        report: PipelineReport,
        content: PageContent | None,
        url: str | None,
    ) -> None:
        analysis_id, user_id = report.analysis_id, report.user_id
        registry = ctx.registry

        if content is None:
            fetched = await self._acquire(url)
            if isinstance(fetched, Err):
                report.fail(CONTENT_SOURCE, [fetched.error])
                return
            content = fetched.value

        # ── 1. Insights ──────────────────────────────────────────
        extracted = await registry.execute(
            INSIGHT_EXTRACTOR,
            InsightExtractionInput(analysis_id=analysis_id, user_id=user_id, content=content),
            self.options,
        )
        if isinstance(extracted, Err):
            report.fail(INSIGHT_EXTRACTOR, [extracted.error])
            return
        report.insights = list(extracted.value.insights)
        await self.store.save_insights(analysis_id, user_id, report.insights)
        if not report.insights:
            ctx.logger.info("pipeline.no_insights")
            return

        # ── 2. Themes ────────────────────────────────────────────
        clustered = await registry.execute(
            THEME_CLUSTERER,
            ThemeClusteringInput(analysis_id=analysis_id, user_id=user_id, insights=tuple(report.insights)),
        )
        if isinstance(clustered, Err):
            report.fail(THEME_CLUSTERER, [clustered.error])
            return
        report.themes = list(clustered.value.themes)
        await self.store.save_themes(analysis_id, user_id, report.themes)

        # ── 3. Hypotheses (one call per theme) ───────────────────
        results = await asyncio.gather(
            *(
                registry.execute(
                    HYPOTHESIS_GENERATOR,
                    HypothesisGenerationInput(
                        analysis_id=analysis_id,
                        user_id=user_id,
                        theme=theme,
                        insights=tuple(report.insights),
                    ),
                )
                for theme in report.themes
            )
        )
        outputs, errors = partition_results(list(results))
        if errors:
            report.fail(HYPOTHESIS_GENERATOR, errors)
            return
        report.hypotheses = [h for output in outputs for h in output.hypotheses]
        await self.store.save_hypotheses(analysis_id, user_id, report.hypotheses)

        # ── 4. Experiments (one call per hypothesis) ─────────────
        themes_by_id = {theme.id: theme for theme in report.themes}
        results = await asyncio.gather(
            *(
                registry.execute(
                    EXPERIMENT_PLANNER,
                    ExperimentPlanningInput(
                        analysis_id=analysis_id,
                        user_id=user_id,
                        hypothesis=hypothesis,
                        theme=themes_by_id.get(hypothesis.theme_id),
                        insights=tuple(report.insights),
                    ),
                )
                for hypothesis in report.hypotheses
            )
        )
        outputs, errors = partition_results(list(results))
        if errors:
            report.fail(EXPERIMENT_PLANNER, errors)
            return
        report.experiments = [output.experiment for output in outputs]
        await self.store.save_experiments(analysis_id, user_id, report.experiments)

    async def _acquire(self, url: str | None) -> ExecutionResult[PageContent]:
        if not url:
            return Err(ModuleConfigurationError(CONTENT_SOURCE, "Either content or url is required"))
        if self.content_source is None:
            return Err(
                ModuleConfigurationError(CONTENT_SOURCE, f"No content source configured to fetch {url}")
            )
        timer = TimingResult(step=CONTENT_SOURCE)
        try:
            result = await self.content_source.fetch(url)
        except Exception as exc:
            logger.warning("pipeline.content_fetch_failed", url=url, error=str(exc))
            return Err(
                ModuleExecutionError(CONTENT_SOURCE, str(exc) or type(exc).__name__, cause=exc),
                ExecutionMetadata(duration_ms=timer.stop().duration_ms),
            )
        if isinstance(result, Err):
            logger.warning("pipeline.content_fetch_failed", url=url, error=str(result.error))
        return result


__all__ = [
    "AnalysisPipeline",
    "ArtifactStore",
    "ContentSource",
    "InMemoryArtifactStore",
    "ModuleContext",
    "PipelineReport",
    "PipelineStatus",
    "StaticContentSource",
    "build_registry",
]
