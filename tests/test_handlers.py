"""Tests for handlers.py: status codes and response bodies at the request boundary."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import no_sleep
from rag_rerank.analytics import MONITORING_LOGS, InMemoryAnalyticsSink
from rag_rerank.errors import ProviderError
from rag_rerank.handlers import build_service, handle_health, handle_rerank, handle_two_stage
from rag_rerank.schema import HybridCandidate
from rag_rerank.settings import ProviderSettings, ResilienceSettings, Settings
from rag_rerank.strategies import RerankStrategy

DOCUMENTS = [
    {"id": "doc-1", "content": "AI is the simulation of human intelligence.", "initial_score": 0.8, "initial_rank": 1},
    {"id": "doc-2", "content": "Machine learning learns from data.", "initial_score": 0.7, "initial_rank": 2},
]


def _cohere(pairs=None, side_effect=None, configured=True):
    client = MagicMock()
    client.configured = configured
    client.rerank = AsyncMock(return_value=pairs or [], side_effect=side_effect)
    return client


def _service(cohere=None, retriever=None, analytics=None, settings=None):
    service = build_service(
        settings=settings or Settings(providers=ProviderSettings(cohere_api_key="test-key")),
        retriever=retriever,
        analytics=analytics if analytics is not None else InMemoryAnalyticsSink(),
        cohere_client=cohere or _cohere(),
    )
    service.engine._sleep = no_sleep
    return service


# ---------------------------------------------------------------------------
# build_service
# ---------------------------------------------------------------------------

class TestBuildService:
    def test_resilience_settings_applied(self):
        settings = Settings(
            providers=ProviderSettings(cohere_api_key="k"),
            resilience=ResilienceSettings(breaker_failure_threshold=2, cache_max_size=10, retry_max_retries=1),
        )
        service = _service(settings=settings)
        assert service.breaker.failure_threshold == 2
        assert service.cache.max_size == 10
        assert service.engine.retry_policy.max_retries == 1
        assert service.engine.cache is service.cache
        assert service.orchestrator.engine is service.engine

    def test_no_cross_encoder_without_model(self):
        service = _service()
        strategy = service.engine.strategies[RerankStrategy.CROSS_ENCODER]
        assert strategy.scorer is None


# ---------------------------------------------------------------------------
# handle_rerank
# ---------------------------------------------------------------------------

class TestHandleRerank:
    def test_success(self):
        service = _service(cohere=_cohere([(0, 0.95), (1, 0.72)]))
        payload = {"query": "What is AI?", "documents": DOCUMENTS, "userId": "u1", "topK": 2}
        status, body = asyncio.run(handle_rerank(service, payload))
        assert status == 200
        assert body["totalResults"] == 2
        assert body["results"][0]["reranking_rank"] == 1
        assert body["results"][0]["quality_indicators"]["score_improvement"] == pytest.approx(0.15)
        assert body["rerankingProvider"] == "cohere"
        assert body["modelUsed"] == "rerank-english-v3.0"
        assert body["initialDocuments"] == 2
        assert set(body["cache"]) == {"hit", "key", "ttl"}

    def test_missing_fields_is_400_with_error_rate(self):
        status, body = asyncio.run(handle_rerank(_service(), {"query": "q", "documents": []}))
        assert status == 400
        assert "Missing required parameters" in body["error"]
        assert body["metrics"]["error_rate"] == 1.0

    def test_zero_top_k_is_400(self):
        payload = {"query": "q", "documents": DOCUMENTS, "userId": "u", "topK": 0}
        status, body = asyncio.run(handle_rerank(_service(), payload))
        assert status == 400
        assert "topK" in body["error"]

    def test_empty_documents_is_200(self):
        service = _service()
        status, body = asyncio.run(handle_rerank(service, {"query": "q", "documents": [], "userId": "u"}))
        assert status == 200
        assert body["results"] == []
        assert body["totalResults"] == 0

    def test_provider_outage_degrades(self):
        service = _service(cohere=_cohere(side_effect=ProviderError("Cohere API error: 503 down")))
        payload = {"query": "q", "documents": DOCUMENTS, "userId": "u"}
        status, body = asyncio.run(handle_rerank(service, payload))
        assert status == 200
        assert body["fallbackUsed"] is True
        assert body["message"]
        assert body["metrics"]["retry_count"] == 3

    def test_unexpected_failure_is_500_and_logged(self):
        analytics = InMemoryAnalyticsSink()
        service = _service(analytics=analytics)
        service.engine.rerank = AsyncMock(side_effect=KeyError("boom"))
        payload = {"query": "q", "documents": DOCUMENTS, "userId": "u"}
        status, body = asyncio.run(handle_rerank(service, payload))
        assert status == 500
        assert body["results"] == []
        assert body["metrics"]["error_rate"] == 1.0
        assert analytics.rows_for(MONITORING_LOGS)[0]["log_type"] == "error"


# ---------------------------------------------------------------------------
# handle_two_stage
# ---------------------------------------------------------------------------

class TestHandleTwoStage:
    def _retriever(self, count=5):
        retriever = MagicMock()
        retriever.embedder.model = "text-embedding-3-small"
        retriever.retrieve = AsyncMock(
            return_value=[
                HybridCandidate(id=f"c{i}", content=f"chunk {i}", metadata={}, hybrid_score=0.9 - i * 0.1)
                for i in range(count)
            ]
        )
        return retriever

    def test_missing_fields_is_400(self):
        status, body = asyncio.run(handle_two_stage(_service(), {"query": "q", "userId": "u"}))
        assert status == 400
        assert "documentIds" in body["error"]

    def test_string_flag_is_400(self):
        retriever = self._retriever()
        payload = {"query": "q", "documentIds": ["D"], "userId": "u", "enableStage2": "false"}
        status, body = asyncio.run(handle_two_stage(_service(retriever=retriever), payload))
        assert status == 400
        assert "enableStage2" in body["error"]
        retriever.retrieve.assert_not_awaited()

    def test_bad_weights_is_400_without_execution(self):
        retriever = self._retriever()
        payload = {"query": "q", "documentIds": ["D"], "userId": "u", "semanticWeight": 0.5, "lexicalWeight": 0.4}
        status, body = asyncio.run(handle_two_stage(_service(retriever=retriever), payload))
        assert status == 400
        assert body["error"] == "Semantic and lexical weights must sum to 1.0"
        retriever.retrieve.assert_not_awaited()

    def test_stage2_failure_still_200(self):
        service = _service(retriever=self._retriever())
        service.engine.rerank = AsyncMock(side_effect=RuntimeError("reranker crashed"))
        payload = {"query": "q", "documentIds": ["D"], "userId": "u"}
        status, body = asyncio.run(handle_two_stage(service, payload))
        assert status == 200
        assert len(body["results"]) == 5
        assert all(r["confidence_score"] == 0.5 for r in body["results"])
        assert all(r["reranking_score"] == r["hybrid_score"] for r in body["results"])

    def test_success_uses_reranker(self):
        service = _service(cohere=_cohere([(2, 0.99), (0, 0.4)]), retriever=self._retriever(3))
        payload = {"query": "q", "documentIds": ["D"], "userId": "u", "finalLimit": 2}
        status, body = asyncio.run(handle_two_stage(service, payload))
        assert status == 200
        assert [r["id"] for r in body["results"]] == ["c2", "c0"]
        assert body["pipeline"] == {"stage1_enabled": True, "stage2_enabled": True, "parallel_processing": False}


# ---------------------------------------------------------------------------
# handle_health
# ---------------------------------------------------------------------------

class TestHandleHealth:
    def test_healthy(self):
        status, body = asyncio.run(handle_health(_service()))
        assert status == 200
        assert body["status"] == "healthy"
        assert body["cache"] == {"size": 0, "maxSize": 1000, "utilizationPercent": 0.0}

    def test_degraded_reports_breaker_state(self):
        service = _service()
        for _ in range(5):
            service.breaker.record_failure("cohere")
        status, body = asyncio.run(handle_health(service))
        assert status == 200
        assert body["status"] == "degraded"
        assert body["circuitBreakers"]["cohere"]["state"] == "OPEN"
        assert body["circuitBreakers"]["cohere"]["failures"] == 5

    def test_unreachable_store_is_503(self):
        status, body = asyncio.run(handle_health(_service(analytics=InMemoryAnalyticsSink(reachable=False))))
        assert status == 503
        assert body["status"] == "unhealthy"
