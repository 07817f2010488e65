"""Shared pytest fixtures for rag_rerank unit tests."""
from __future__ import annotations

import pytest

from rag_rerank.analytics import InMemoryAnalyticsSink
from rag_rerank.cache import ResultCache
from rag_rerank.circuit_breaker import CircuitBreaker
from rag_rerank.schema import Chunk, Document


class FakeClock:
    """Manually advanced clock for breaker and cache tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sample_documents() -> list[Document]:
    return [
        Document(
            id="doc-1",
            content="Artificial intelligence is the simulation of human intelligence by machines.",
            metadata={"source": "encyclopedia"},
            initial_score=0.8,
            initial_rank=1,
        ),
        Document(
            id="doc-2",
            content="Machine learning is a subset of AI focused on learning from data.",
            metadata={"source": "textbook"},
            initial_score=0.7,
            initial_rank=2,
        ),
    ]


@pytest.fixture()
def sample_chunks() -> list[Chunk]:
    return [
        Chunk(
            chunk_id="DOC-001-00",
            document_id="DOC-001",
            content="Employees may work remotely from home. VPN is required for remote work.",
        ),
        Chunk(
            chunk_id="DOC-002-00",
            document_id="DOC-002",
            content="Working from another country is capped at 14 days per year.",
        ),
        Chunk(
            chunk_id="DOC-003-00",
            document_id="DOC-003",
            content="Lost devices must be reported within one hour to the security team.",
        ),
    ]


@pytest.fixture()
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(clock=clock)


@pytest.fixture()
def cache(clock) -> ResultCache:
    return ResultCache(clock=clock)


@pytest.fixture()
def analytics() -> InMemoryAnalyticsSink:
    return InMemoryAnalyticsSink()
