"""
Shared pytest fixtures for croflow tests.

This module provides:
- A controllable clock for TTL tests
- Settings with zero retry delays
- A scripted LLM backend and a service wired to it
- Insight factories for the analysis stages

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    async def test_something(llm_service, mock_backend):
        ...
"""

import json
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure croflow package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from croflow.analyzers.models import (
    Insight,
    InsightCategory,
    InsightLocation,
    InsightType,
    PageContent,
    Severity,
)
from croflow.core.hashing import compute_hash
from croflow.core.settings import CroflowSettings
from croflow.framework.registry import ModuleRegistry
from croflow.llm.mock import MockLLMBackend
from croflow.llm.service import LLMExecutionService


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.name == "test_pipeline.py":
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Clock and settings
# =============================================================================


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> CroflowSettings:
    """Settings isolated from the environment, with instant retries."""
    return CroflowSettings(
        _env_file=None,
        retry_initial_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        openai_api_key=None,
        anthropic_api_key=None,
    )


@pytest.fixture
def registry(settings: CroflowSettings) -> ModuleRegistry:
    return ModuleRegistry(settings=settings)


# =============================================================================
# LLM fixtures
# =============================================================================


SAMPLE_LLM_PAYLOAD: dict[str, Any] = {
    "insights": [
        {
            "type": "problem",
            "category": "friction",
            "title": "Checkout form asks for too many fields",
            "description": "The checkout form has 14 required fields.",
            "severity": "high",
            "confidence": 85,
            "impact_score": 80,
            "location": {"section": "checkout"},
            "friction_type": "usability",
            "journey_stage": "decision",
        },
        {
            "type": "problem",
            "category": "friction",
            "title": "Primary CTA button blends into background",
            "description": "The buy button has low contrast.",
            "severity": "medium",
            "confidence": 70,
            "impact_score": 60,
            "location": {"section": "hero"},
        },
        {
            "type": "opportunity",
            "category": "trust",
            "title": "Add customer reviews near price",
            "description": "Reviews exist but are hidden on a separate tab.",
            "severity": "medium",
            "confidence": 60,
            "impact_score": 50,
            "location": {"section": "pricing"},
            "psychology_principle": "social_proof",
        },
    ]
}


@pytest.fixture
def mock_backend() -> MockLLMBackend:
    return MockLLMBackend(name="gpt", default_response=json.dumps(SAMPLE_LLM_PAYLOAD))


@pytest.fixture
def llm_service(mock_backend: MockLLMBackend, settings: CroflowSettings) -> LLMExecutionService:
    return LLMExecutionService(
        backends={"gpt": mock_backend, "claude": mock_backend},
        settings=settings,
        backend_factories={},
    )


@pytest.fixture
def page() -> PageContent:
    return PageContent(
        markdown="# Acme Widgets\n\nBuy the best widgets. Checkout below.",
        url="https://example.com/widgets",
    )


# =============================================================================
# Insight factories
# =============================================================================


@pytest.fixture
def make_insight() -> Callable[..., Insight]:
    """Build an insight with sensible defaults; override any field by keyword."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> Insight:
        counter["n"] += 1
        title = overrides.pop("title", f"Insight {counter['n']}")
        section = overrides.pop("section", "hero")
        fields: dict[str, Any] = {
            "id": compute_hash("a-1", "insight", counter["n"], title, length=24),
            "analysis_id": "a-1",
            "user_id": "u-1",
            "type": InsightType.PROBLEM,
            "category": InsightCategory.UX,
            "title": title,
            "description": f"{title} described.",
            "severity": Severity.MEDIUM,
            "confidence": 80,
            "impact_score": 70,
            "location": InsightLocation(section=section),
        }
        fields.update(overrides)
        return Insight(**fields)

    return _make
