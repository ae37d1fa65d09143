"""
End-to-end tests for the analysis pipeline.

The only fake is the LLM backend; every stage runs for real through the
module registry and writes to an in-memory artifact store.
"""

import asyncio

import pytest

from croflow.analyzers.models import PageContent
from croflow.core.errors import ErrorKind
from croflow.core.result import Err, Ok
from croflow.framework.module import ModuleExecutionOptions, ModuleHooks, create_module
from croflow.llm.mock import MockLLMBackend
from croflow.llm.service import LLMExecutionService
from croflow.pipeline import (
    AnalysisPipeline,
    InMemoryArtifactStore,
    ModuleContext,
    PipelineStatus,
    StaticContentSource,
    build_registry,
)


@pytest.fixture
def context(settings, llm_service):
    return ModuleContext.create(settings, llm=llm_service)


@pytest.fixture
def store():
    return InMemoryArtifactStore()


class TestModuleContext:
    def test_create_wires_shared_cache(self, settings, llm_service):
        context = ModuleContext.create(settings, llm=llm_service)
        assert context.registry.cache is context.cache
        assert context.llm is llm_service
        assert context.analysis_id is None

    def test_for_run_binds_ids(self, context):
        run = context.for_run("a-1", "u-1")
        assert (run.analysis_id, run.user_id) == ("a-1", "u-1")
        assert run.registry is context.registry
        assert context.analysis_id is None

    def test_build_registry(self, context):
        registry = build_registry(context)
        assert registry.names() == [
            "insight-extractor",
            "theme-clusterer",
            "hypothesis-generator",
            "experiment-planner",
        ]

    def test_create_outside_loop_defers_sweep(self, context):
        assert context.cache._cleanup_task is None

    @pytest.mark.asyncio
    async def test_create_in_loop_starts_sweep(self, settings, llm_service):
        settings = settings.model_copy(update={"cache_cleanup_interval_seconds": 0.01})
        context = ModuleContext.create(settings, llm=llm_service)
        try:
            assert context.cache._cleanup_task is not None
            context.cache.set("stale", 1, ttl_seconds=0.01)
            await asyncio.sleep(0.1)
            assert "stale" not in context.cache._store
        finally:
            await context.close()
        assert context.cache._cleanup_task is None

    @pytest.mark.asyncio
    async def test_close_destroys_modules(self, context):
        destroyed = []
        context.registry.register(
            create_module(
                "m",
                validate=lambda input: True,
                run=lambda input: input,
                hooks=ModuleHooks(on_destroy=lambda: destroyed.append("m")),
            )
        )
        await context.close()
        assert destroyed == ["m"]
        assert len(context.registry) == 0

    @pytest.mark.asyncio
    async def test_pipeline_run_starts_sweep(self, context, store, page):
        await AnalysisPipeline(context, store).run("a-1", "u-1", content=page)
        try:
            assert context.cache._cleanup_task is not None
        finally:
            await context.close()


class TestStaticContentSource:
    @pytest.mark.asyncio
    async def test_known_and_unknown_urls(self, page):
        source = StaticContentSource({page.url: page})
        assert isinstance(await source.fetch(page.url), Ok)
        missing = await source.fetch("https://example.com/missing")
        assert isinstance(missing, Err)
        assert "No content available" in missing.error.message


class TestAnalysisPipeline:
    @pytest.mark.asyncio
    async def test_full_run(self, context, store, page):
        pipeline = AnalysisPipeline(context, store)

        report = await pipeline.run("a-1", "u-1", content=page)

        assert report.success
        assert report.status is PipelineStatus.COMPLETED
        # two friction problems cluster together; the lone trust opportunity does not
        assert len(report.insights) == 3
        assert len(report.themes) == 1
        assert len(report.hypotheses) == 2
        assert len(report.experiments) == 2
        assert store.counts("a-1") == {"insights": 3, "themes": 1, "hypotheses": 2, "experiments": 2}
        assert store.owners["a-1"] == "u-1"
        assert report.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_artifacts_link_up(self, context, store, page):
        report = await AnalysisPipeline(context, store).run("a-1", "u-1", content=page)

        theme = report.themes[0]
        insight_ids = {i.id for i in report.insights}
        assert set(theme.insight_ids) <= insight_ids
        assert {h.theme_id for h in report.hypotheses} == {theme.id}
        assert {e.hypothesis_id for e in report.experiments} == {h.id for h in report.hypotheses}
        assert [e.treatment.changes[0].element for e in report.experiments] == [
            "Form",
            "Primary CTA button",
        ]

    @pytest.mark.asyncio
    async def test_same_input_same_ids(self, context, page):
        first = await AnalysisPipeline(context, InMemoryArtifactStore()).run("a-1", "u-1", content=page)
        second = await AnalysisPipeline(context, InMemoryArtifactStore()).run("a-1", "u-1", content=page)

        assert [t.id for t in first.themes] == [t.id for t in second.themes]
        assert [e.id for e in first.experiments] == [e.id for e in second.experiments]

    @pytest.mark.asyncio
    async def test_fetches_url_through_content_source(self, context, store, page):
        pipeline = AnalysisPipeline(context, store, StaticContentSource({page.url: page}))
        report = await pipeline.run("a-1", "u-1", url=page.url)
        assert report.success
        assert len(report.experiments) == 2

    @pytest.mark.asyncio
    async def test_unknown_url_fails_before_extraction(self, context, store, mock_backend):
        pipeline = AnalysisPipeline(context, store, StaticContentSource())
        report = await pipeline.run("a-1", "u-1", url="https://example.com/nowhere")

        assert report.status is PipelineStatus.FAILED
        assert report.failed_stage == "content-source"
        assert mock_backend.call_count == 0

    @pytest.mark.asyncio
    async def test_neither_content_nor_url(self, context, store):
        report = await AnalysisPipeline(context, store).run("a-1", "u-1")

        assert not report.success
        assert report.errors[0].kind is ErrorKind.CONFIGURATION
        assert report.errors[0].message == "Either content or url is required"

    @pytest.mark.asyncio
    async def test_url_without_source(self, context, store):
        report = await AnalysisPipeline(context, store).run("a-1", "u-1", url="https://example.com")
        assert report.errors[0].message == "No content source configured to fetch https://example.com"

    @pytest.mark.asyncio
    async def test_raising_content_source_is_contained(self, context, store):
        class BrokenSource:
            async def fetch(self, url):
                raise ConnectionError("renderer offline")

        report = await AnalysisPipeline(context, store, BrokenSource()).run("a-1", "u-1", url="https://x")

        assert report.failed_stage == "content-source"
        assert report.errors[0].kind is ErrorKind.EXECUTION
        assert report.errors[0].message == "renderer offline"

    @pytest.mark.asyncio
    async def test_extraction_failure_stops_run(self, settings, store, page):
        backend = MockLLMBackend(errors=[ConnectionError("network down")])
        llm = LLMExecutionService(backends={"gpt": backend}, settings=settings)
        pipeline = AnalysisPipeline(ModuleContext.create(settings, llm=llm), store)

        report = await pipeline.run("a-1", "u-1", content=page)

        assert report.status is PipelineStatus.FAILED
        assert report.failed_stage == "insight-extractor"
        assert report.errors[0].message == "network down"
        assert store.counts("a-1") == {"insights": 0, "themes": 0, "hypotheses": 0, "experiments": 0}

    @pytest.mark.asyncio
    async def test_extraction_retries_from_options(self, settings, store, page):
        backend = MockLLMBackend(
            errors=[ConnectionError("reset")],
            default_response='{"insights": [{"title": "Form too long", "type": "problem"}]}',
        )
        llm = LLMExecutionService(backends={"gpt": backend}, settings=settings)
        pipeline = AnalysisPipeline(
            ModuleContext.create(settings, llm=llm),
            store,
            options=ModuleExecutionOptions(retries=1),
        )

        report = await pipeline.run("a-1", "u-1", content=page)

        assert report.success
        assert backend.call_count == 2
        assert len(report.insights) == 1

    @pytest.mark.asyncio
    async def test_no_insights_completes_early(self, settings, store, page):
        backend = MockLLMBackend(default_response='{"insights": []}')
        llm = LLMExecutionService(backends={"gpt": backend}, settings=settings)

        report = await AnalysisPipeline(ModuleContext.create(settings, llm=llm), store).run(
            "a-1", "u-1", content=page
        )

        assert report.success
        assert report.insights == []
        assert report.themes == []

    @pytest.mark.asyncio
    async def test_failed_stage_keeps_earlier_batches(self, context, store, page):
        pipeline = AnalysisPipeline(context, store)

        def boom(input):
            raise RuntimeError("template store unavailable")

        context.registry.register(
            create_module("hypothesis-generator", validate=lambda input: True, run=boom)
        )

        report = await pipeline.run("a-1", "u-1", content=page)

        assert report.failed_stage == "hypothesis-generator"
        assert store.counts("a-1") == {"insights": 3, "themes": 1, "hypotheses": 0, "experiments": 0}
        assert report.to_dict()["errors"][0]["message"] == "template store unavailable"

    @pytest.mark.asyncio
    async def test_missing_stage_reported(self, context, store, page):
        pipeline = AnalysisPipeline(context, store)
        context.registry.unregister("theme-clusterer")

        report = await pipeline.run("a-1", "u-1", content=page)

        assert report.failed_stage == "theme-clusterer"
        assert report.errors[0].kind is ErrorKind.CONFIGURATION
        assert len(store.insights["a-1"]) == 3

    @pytest.mark.asyncio
    async def test_report_to_dict(self, context, store):
        report = await AnalysisPipeline(context, store).run(
            "a-1", "u-1", content=PageContent(markdown="# Pricing", url="https://example.com/pricing")
        )
        data = report.to_dict()
        assert data["status"] == "completed"
        assert data["failed_stage"] is None
        assert len(data["experiments"]) == 2
