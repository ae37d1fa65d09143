"""
Tests for theme clustering: grouping, scoring, ordering and determinism.
"""

import pytest

from croflow.analyzers.models import InsightCategory, InsightType, PatternType, Severity
from croflow.analyzers.theme_clusterer import (
    InsightGroup,
    ThemeClusterer,
    ThemeClusteringInput,
    business_impact,
    cluster_insights,
    pattern_for,
    theme_priority,
)
from croflow.core.errors import ErrorKind
from croflow.core.result import Err, Ok
from croflow.framework.module import ModuleExecutor


class TestThemePriority:
    def test_formula(self, make_insight):
        insights = [make_insight(impact_score=100, confidence=100) for _ in range(3)]
        assert theme_priority(insights) == 3

    def test_size_factor_capped_at_ten(self, make_insight):
        ten = [make_insight(impact_score=100, confidence=100) for _ in range(10)]
        twelve = [make_insight(impact_score=100, confidence=100) for _ in range(12)]
        assert theme_priority(ten) == theme_priority(twelve) == 10

    def test_rounds_half_up(self, make_insight):
        # 50 * 50 * 2 / 10000 = 0.5
        insights = [make_insight(impact_score=50, confidence=50) for _ in range(2)]
        assert theme_priority(insights) == 1

    def test_uses_averages(self, make_insight):
        # avg impact 70, avg confidence 77.5, n=2 -> 1.085
        insights = [
            make_insight(impact_score=80, confidence=85),
            make_insight(impact_score=60, confidence=70),
        ]
        assert theme_priority(insights) == 1


class TestPattern:
    @pytest.mark.parametrize(
        ("sections", "expected"),
        [
            (["hero", "hero"], PatternType.RECURRING),
            (["hero", "footer"], PatternType.BEHAVIORAL),
            (["hero", "footer", "pricing"], PatternType.BEHAVIORAL),
            (["hero", "footer", "pricing", "checkout"], PatternType.SYSTEMIC),
        ],
    )
    def test_by_distinct_sections(self, make_insight, sections, expected):
        insights = [make_insight(section=s) for s in sections]
        assert pattern_for(insights) is expected


class TestBusinessImpact:
    def test_high_priority_members(self, make_insight):
        insights = [make_insight(severity=Severity.CRITICAL), make_insight(severity=Severity.LOW)]
        assert business_impact(insights) == (
            "High priority area with 1 critical issues affecting conversion"
        )

    def test_moderate(self, make_insight):
        insights = [make_insight(severity=Severity.LOW), make_insight(severity=Severity.MEDIUM)]
        assert business_impact(insights) == "Moderate impact area with 2 improvement opportunities"


class TestClusterInsights:
    def test_groups_by_category_and_drops_small_groups(self, make_insight):
        insights = [
            make_insight(category=InsightCategory.UX),
            make_insight(category=InsightCategory.TRUST),
            make_insight(category=InsightCategory.UX, type=InsightType.OPPORTUNITY),
        ]

        themes = cluster_insights("a-1", "u-1", insights)

        assert len(themes) == 1
        theme = themes[0]
        assert theme.name == "User Experience Theme 1"
        assert theme.insight_ids == (insights[0].id, insights[2].id)
        assert theme.description == (
            "2 user experience insights identified (1 problems, 1 opportunities)"
        )
        assert theme.metadata["category"] == "ux"
        assert theme.metadata["insight_count"] == 2

    def test_min_cluster_size_one_keeps_singletons(self, make_insight):
        insights = [make_insight(category=InsightCategory.UX), make_insight(category=InsightCategory.TRUST)]
        themes = cluster_insights("a-1", "u-1", insights, min_cluster_size=1)
        assert len(themes) == 2

    def test_sorted_by_priority_descending(self, make_insight):
        insights = [
            make_insight(category=InsightCategory.UX, impact_score=20, confidence=20),
            make_insight(category=InsightCategory.UX, impact_score=20, confidence=20),
            make_insight(category=InsightCategory.TRUST, impact_score=100, confidence=100),
            make_insight(category=InsightCategory.TRUST, impact_score=100, confidence=100),
        ]

        themes = cluster_insights("a-1", "u-1", insights)

        assert [t.priority for t in themes] == [2, 0]
        # names keep their grouping index
        assert themes[0].name == "Trust & Credibility Theme 2"
        assert themes[1].name == "User Experience Theme 1"

    def test_max_themes(self, make_insight):
        insights = [
            make_insight(category=category)
            for category in (InsightCategory.UX, InsightCategory.UX, InsightCategory.TRUST, InsightCategory.TRUST)
        ]
        assert len(cluster_insights("a-1", "u-1", insights, max_themes=1)) == 1

    def test_idempotent(self, make_insight):
        insights = [
            make_insight(category=InsightCategory.UX, section="hero"),
            make_insight(category=InsightCategory.UX, section="footer"),
            make_insight(category=InsightCategory.MESSAGING),
            make_insight(category=InsightCategory.MESSAGING),
        ]

        first = cluster_insights("a-1", "u-1", insights)
        second = cluster_insights("a-1", "u-1", insights)

        assert first == second
        assert [t.id for t in first] == [t.id for t in second]

    def test_ties_keep_grouping_order(self, make_insight):
        insights = [
            make_insight(category=InsightCategory.MESSAGING),
            make_insight(category=InsightCategory.UX),
            make_insight(category=InsightCategory.MESSAGING),
            make_insight(category=InsightCategory.UX),
        ]
        themes = cluster_insights("a-1", "u-1", insights)
        assert [t.metadata["category"] for t in themes] == ["messaging", "ux"]

    def test_custom_strategy(self, make_insight):
        class SingleGroup:
            def group(self, insights):
                return [InsightGroup(label="Everything", insights=tuple(insights))]

        insights = [make_insight(category=InsightCategory.UX), make_insight(category=InsightCategory.TRUST)]
        themes = cluster_insights("a-1", "u-1", insights, strategy=SingleGroup())

        assert len(themes) == 1
        assert themes[0].name == "Everything Theme 1"
        assert themes[0].metadata["category"] is None


class TestThemeClustererModule:
    @pytest.mark.asyncio
    async def test_run(self, make_insight):
        insights = (make_insight(), make_insight())
        result = await ModuleExecutor(ThemeClusterer()).execute(
            ThemeClusteringInput("a-1", "u-1", insights)
        )

        assert isinstance(result, Ok)
        (theme,) = result.value.themes
        assert result.value.insights_for(theme, insights) == list(insights)

    @pytest.mark.asyncio
    async def test_empty_insights_fail_validation(self):
        result = await ModuleExecutor(ThemeClusterer()).execute(ThemeClusteringInput("a-1", "u-1", ()))
        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_options_forwarded(self, make_insight):
        clusterer = ThemeClusterer(min_cluster_size=3)
        result = await ModuleExecutor(clusterer).execute(
            ThemeClusteringInput("a-1", "u-1", (make_insight(), make_insight()))
        )
        assert result.value.themes == ()

    def test_descriptor(self):
        descriptor = ThemeClusterer().descriptor
        assert descriptor.name == "theme-clusterer"
        assert descriptor.dependencies == ("insight-extractor",)
