"""
Shared pytest fixtures and configuration for sopcoach tests.

This file is automatically discovered by pytest and provides
fixtures available to all tests.
"""

import asyncio

import pytest

from sopcoach.agents.generation_client import GenerationClient, Provider
from sopcoach.config import config
from sopcoach.models.domain import Chunk
from sopcoach.utils.persistence import InMemoryStore
from sopcoach.utils.vector_store import FallbackVectorStore, InMemoryVectorIndex


class FakeProvider(Provider):
    """Scripted provider: returns ``responses`` in order, raising any that are exceptions."""

    def __init__(self, name="fake", responses=None, configured=True, delay=0.0):
        self.name = name
        self.responses = list(responses or [])
        self._configured = configured
        self.delay = delay
        self.calls = []

    @property
    def configured(self):
        return self._configured

    async def generate(self, system_prompt, prompt):
        self.calls.append((system_prompt, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, BaseException):
            raise response
        return response


class FailingIndex(InMemoryVectorIndex):
    """Remote index stand-in that is always unreachable."""

    def __init__(self, error=None):
        super().__init__()
        self.error = error or ConnectionError("connection refused")
        self.upsert_calls = 0
        self.query_calls = 0

    async def upsert(self, chunks):
        self.upsert_calls += 1
        raise self.error

    async def query(self, text, top_k, module=None):
        self.query_calls += 1
        raise self.error


@pytest.fixture
def sop_chunks():
    """
    Fixture providing a small SOP corpus across two modules.

    Returns:
        list[Chunk]: Lockout/tagout, PPE and quality chunks
    """
    return [
        Chunk(
            id="loto-1",
            text="Lockout tagout procedure: isolate energy sources, apply your lock and tag, verify zero energy.",
            module="Machine Safety",
            source="sops/machine-safety/loto.md",
        ),
        Chunk(
            id="ppe-1",
            text="Wear safety glasses, gloves and hearing protection before entering the press area.",
            module="Machine Safety",
            source="sops/machine-safety/ppe.md",
        ),
        Chunk(
            id="qc-1",
            text="When a caliper reading is out of tolerance, stop the line and report to the quality lead.",
            module="Quality Control",
            source="sops/quality/inspection.md",
        ),
    ]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def vector_store(sop_chunks):
    """In-process vector store pre-loaded with ``sop_chunks``."""
    vs = FallbackVectorStore(fallback=InMemoryVectorIndex())
    asyncio.run(vs.upsert(sop_chunks))
    return vs


@pytest.fixture
def fake_provider():
    """Factory for scripted providers."""
    return FakeProvider


@pytest.fixture
def failing_index():
    """Factory for an always-failing remote index."""
    return FailingIndex


@pytest.fixture
def offline_client():
    """GenerationClient with no providers (deterministic output only)."""
    return GenerationClient(providers=[])


@pytest.fixture(autouse=True)
def reset_token_tracker():
    """
    Auto-fixture to reset token tracker before each test.

    This ensures tests don't interfere with each other.
    """
    from sopcoach.config import token_tracker

    token_tracker.reset()
    yield
    token_tracker.reset()


@pytest.fixture(autouse=True)
def no_token_delay(monkeypatch):
    """Stream tokens without pacing so streaming tests run instantly."""
    monkeypatch.setattr(config.streaming, "token_delay_seconds", 0.0)


# Pytest hooks for better test output


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
