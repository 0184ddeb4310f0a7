"""Shared fixtures for the nexus test suite."""

import asyncio

import pytest
from unittest.mock import patch

from nexus.catalog import Step, StepCatalog, StepWeight, Tier
from nexus.state import WorkflowState


BASIC = Tier(id="basic", rank=0, scoring_multiplier=1.0)
PROFESSIONAL = Tier(id="professional", rank=1, scoring_multiplier=1.2)
ENTERPRISE = Tier(id="enterprise", rank=2, scoring_multiplier=1.5)


@pytest.fixture
def tiers():
    return {"basic": BASIC, "professional": PROFESSIONAL, "enterprise": ENTERPRISE}


@pytest.fixture
def small_catalog():
    """Three-step catalog: 1 -> 2 -> 3, step 3 gated to professional."""
    steps = [
        Step(id=1, title="Context", required_tier=BASIC, prerequisites=frozenset(),
             weight=StepWeight(opportunity=10, module=3, complexity=2)),
        Step(id=2, title="Analysis", required_tier=BASIC, prerequisites=frozenset({1}),
             weight=StepWeight(opportunity=20, module=5, complexity=4)),
        Step(id=3, title="Simulation", required_tier=PROFESSIONAL, prerequisites=frozenset({1, 2}),
             weight=StepWeight(opportunity=30, module=7, complexity=6)),
    ]
    return StepCatalog(steps, [BASIC, PROFESSIONAL, ENTERPRISE])


@pytest.fixture
def basic_state(small_catalog):
    return WorkflowState(small_catalog, BASIC)


@pytest.fixture
def profile():
    """Minimal complete profile record."""
    return {
        "name": "Ada Osei",
        "organization": "Coastal Development Agency",
        "country": "Ghana",
        "region": "Greater Accra",
        "goals": ["Attract manufacturing investment"],
    }


@pytest.fixture
def mock_config():
    """Patch the config singleton with test-friendly values."""
    test_config = {
        "logging": {"level": "DEBUG"},
        "persistence": {"path": "./output/progress.json", "key_prefix": "testProgress"},
        "generation": {
            "provider": "anthropic",
            "model": "test-model",
            "temperature": 0.7,
            "max_attempts": 3,
            "backoff_seconds": 0,
            "max_tokens": {"concise": 1500, "standard": 3000, "comprehensive": 4000},
        },
        "letter": {"enabled": True, "max_tokens": 800},
        "llm_max_retries": 2,
        "llm_retry_wait_min": 0,
        "llm_retry_wait_max": 0,
        "feeds": {"model": "test-model", "categories": ["Trade", "Energy", "Finance"]},
    }
    with patch("nexus.config._config", test_config):
        yield test_config


class ScriptedTransport:
    """Fake transport: each stream() call plays the next script.

    A script is a list of text chunks; an Exception instance in the list is
    raised when reached.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = 0
        self.closed = 0

    async def stream(self, request):
        script = self.scripts[self.calls]
        self.calls += 1
        try:
            for item in script:
                await asyncio.sleep(0)
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed += 1


class BlockingTransport:
    """Yields the given chunks, then blocks until released."""

    def __init__(self, *chunks):
        self.chunks = chunks
        self.calls = 0
        self.release = None

    async def stream(self, request):
        self.calls += 1
        self.release = asyncio.Event()
        for chunk in self.chunks:
            yield chunk
        await self.release.wait()
        yield "late chunk"


@pytest.fixture
def scripted_transport():
    return ScriptedTransport


@pytest.fixture
def blocking_transport():
    return BlockingTransport
