"""Second-stage re-ranking engine.

The engine owns the request-level control flow around the scoring strategies:
cache lookup, circuit-breaker gating, cost optimization, retries, the
fallback decision, metrics, and analytics.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .analytics import MONITORING_LOGS, SESSION_QUERIES, AnalyticsSink, safe_record
from .cache import ResultCache, make_cache_key
from .circuit_breaker import CircuitBreaker, CircuitState
from .cost import CostOptimization, apply_cost_optimization, check_cost_threshold
from .errors import RequestValidationError, parse_flag
from .retry import RetryPolicy, Sleep, run_with_retry
from .schema import CacheEntry, Document, PerformanceMetrics, RerankResult
from .strategies import (
    RerankStrategy,
    Scorer,
    basic_text_similarity_rerank,
    heuristic_rerank,
)
from .tracing import (
    ATTR_CACHE_HIT,
    ATTR_FALLBACK_USED,
    ATTR_RERANKER_INPUT_DOCUMENTS,
    ATTR_RERANKER_MODEL_NAME,
    ATTR_RERANKER_OUTPUT_DOCUMENTS,
    ATTR_RERANKER_PROVIDER,
    ATTR_RERANKER_TOP_K,
    get_tracer,
    traced_stage,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 20
DEFAULT_MODEL = "rerank-english-v3.0"
CACHE_NEAR_FULL_RATIO = 0.9
BREAKER_OPEN_MESSAGE = "Reranking service unavailable, using basic text similarity ranking"
PROVIDER_FAILED_MESSAGE = "Reranking provider failed ({error_type}), using heuristic fallback ranking"


@dataclass(slots=True)
class RerankRequest:
    query: str
    documents: list[Document]
    user_id: str
    provider: RerankStrategy = RerankStrategy.COHERE
    top_k: int = DEFAULT_TOP_K
    model: str = DEFAULT_MODEL
    enable_caching: bool = True
    cache_key: str | None = None
    cost_optimization: CostOptimization = field(default_factory=CostOptimization)
    performance_monitoring: bool = True

    @classmethod
    def from_payload(cls, payload: dict[str, Any], default_model: str = DEFAULT_MODEL) -> RerankRequest:
        """Validate and parse a JSON request body.

        Raises:
            RequestValidationError: when ``query``, ``documents`` or ``userId``
                is missing, or a field has an unsupported value.
        """
        query = payload.get("query")
        documents = payload.get("documents")
        user_id = payload.get("userId")
        if not query or documents is None or not user_id:
            raise RequestValidationError("Missing required parameters: query, documents, userId")
        if not isinstance(documents, list):
            raise RequestValidationError("Invalid documents: expected a list")

        provider_name = payload.get("rerankingProvider") or RerankStrategy.COHERE.value
        try:
            provider = RerankStrategy(provider_name)
        except ValueError as exc:
            raise RequestValidationError(f"Invalid rerankingProvider: {provider_name}") from exc

        try:
            top_k = int(payload.get("topK", DEFAULT_TOP_K))
        except (TypeError, ValueError) as exc:
            raise RequestValidationError("Invalid topK: must be a positive integer") from exc
        if top_k < 1:
            raise RequestValidationError("Invalid topK: must be a positive integer")

        try:
            parsed_documents = [Document.from_dict(record) for record in documents]
        except (KeyError, TypeError, ValueError) as exc:
            raise RequestValidationError(f"Invalid document: {exc}") from exc

        monitoring = payload.get("performanceMonitoring") or {}
        if not isinstance(monitoring, dict):
            raise RequestValidationError("Invalid performanceMonitoring: expected an object")
        return cls(
            query=query,
            documents=parsed_documents,
            user_id=user_id,
            provider=provider,
            top_k=top_k,
            model=payload.get("model") or default_model,
            enable_caching=parse_flag(payload.get("enableCaching", True), "enableCaching"),
            cache_key=payload.get("cacheKey"),
            cost_optimization=CostOptimization.from_dict(payload.get("costOptimization")),
            performance_monitoring=parse_flag(monitoring.get("enabled", True), "performanceMonitoring.enabled"),
        )


@dataclass(slots=True)
class CacheInfo:
    hit: bool
    key: str
    ttl: float


@dataclass(slots=True)
class RerankOutcome:
    request: RerankRequest
    results: list[RerankResult]
    metrics: PerformanceMetrics
    cache: CacheInfo | None = None
    fallback_used: bool = False
    message: str | None = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "results": [result.to_dict() for result in self.results],
            "query": self.request.query,
            "rerankingProvider": self.request.provider.value,
            "modelUsed": self.request.model,
            "totalResults": len(self.results),
            "initialDocuments": len(self.request.documents),
            "executionTime": self.metrics.execution_time_ms,
            "metrics": self.metrics.to_dict(),
        }
        if self.cache is not None:
            body["cache"] = {"hit": self.cache.hit, "key": self.cache.key, "ttl": self.cache.ttl}
        if self.fallback_used:
            body["fallbackUsed"] = True
            body["message"] = self.message
        return body


@dataclass(slots=True)
class HealthStatus:
    status: str
    last_check: datetime
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class RerankEngine:
    """Re-rank candidate documents with resilience around external providers.

    The circuit breaker and result cache are injected so that a single pair
    can be shared by every request the process serves.
    """

    def __init__(
        self,
        strategies: dict[RerankStrategy, Scorer],
        breaker: CircuitBreaker,
        cache: ResultCache,
        retry_policy: RetryPolicy | None = None,
        analytics: AnalyticsSink | None = None,
        sleep: Sleep = asyncio.sleep,
        cohere_configured: bool = True,
    ):
        self.strategies = strategies
        self.breaker = breaker
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.analytics = analytics
        self.cohere_configured = cohere_configured
        self._sleep = sleep
        self._tracer = get_tracer("rag_rerank.reranking")

    async def rerank(self, request: RerankRequest) -> RerankOutcome:
        started = time.perf_counter()
        metrics = PerformanceMetrics()

        if not request.documents:
            metrics.execution_time_ms = (time.perf_counter() - started) * 1000
            return RerankOutcome(request=request, results=[], metrics=metrics)

        key = request.cache_key or make_cache_key(
            request.query, [doc.id for doc in request.documents], request.model, request.top_k
        )
        provider = request.provider.value
        fallback_message: str | None = None
        cache_hit = False
        results: list[RerankResult] = []

        with traced_stage(
            self._tracer,
            "rerank",
            request.query,
            **{
                ATTR_RERANKER_PROVIDER: provider,
                ATTR_RERANKER_MODEL_NAME: request.model,
                ATTR_RERANKER_TOP_K: request.top_k,
                ATTR_RERANKER_INPUT_DOCUMENTS: len(request.documents),
            },
        ) as span:
            if request.enable_caching:
                entry = self.cache.get(key)
                if entry is not None:
                    results = [replace(result, cache_hit=True) for result in entry.results]
                    cache_hit = True
                    metrics.cache_hit_rate = 1.0
                    logger.info("Cache hit for key: %s", key)

            if not cache_hit:
                if self.breaker.is_open(provider):
                    logger.warning(
                        "Reranking provider %s circuit breaker is OPEN, using fallback ranking", provider
                    )
                    results = basic_text_similarity_rerank(request.query, request.documents, request.top_k)
                    fallback_message = BREAKER_OPEN_MESSAGE
                else:
                    results, fallback_message = await self._score_with_provider(request, metrics)
                    if request.enable_caching and results and fallback_message is None:
                        self.cache.put(
                            key,
                            CacheEntry(
                                query_hash=key,
                                results=results,
                                timestamp=self.cache.now(),
                                ttl=self.cache.ttl_seconds,
                                metadata={
                                    "model_used": request.model,
                                    "provider": provider,
                                    "document_count": len(request.documents),
                                },
                            ),
                        )

            if fallback_message is not None:
                metrics.fallback_used = True
            span.set_attribute(ATTR_CACHE_HIT, cache_hit)
            span.set_attribute(ATTR_FALLBACK_USED, fallback_message is not None)
            span.set_attribute(ATTR_RERANKER_OUTPUT_DOCUMENTS, len(results))

        metrics.execution_time_ms = (time.perf_counter() - started) * 1000
        if metrics.execution_time_ms > 0:
            metrics.throughput_docs_per_sec = len(request.documents) / (metrics.execution_time_ms / 1000)

        await self._record_analytics(request, metrics, results, cache_hit)
        return RerankOutcome(
            request=request,
            results=results,
            metrics=metrics,
            cache=CacheInfo(hit=cache_hit, key=key, ttl=self.cache.ttl_seconds),
            fallback_used=fallback_message is not None,
            message=fallback_message,
        )

    async def _score_with_provider(
        self, request: RerankRequest, metrics: PerformanceMetrics
    ) -> tuple[list[RerankResult], str | None]:
        provider = request.provider.value
        documents = apply_cost_optimization(request.documents, request.cost_optimization)
        check_cost_threshold(len(documents), request.model, request.cost_optimization)
        strategy = self.strategies[request.provider]

        outcome = await run_with_retry(
            lambda: strategy.score(request.query, documents, request.top_k, request.model, metrics),
            self.retry_policy,
            self._sleep,
        )
        metrics.retry_count += max(outcome.attempts - 1, 0)

        if outcome.ok:
            self.breaker.record_success(provider)
            return outcome.value or [], None

        self.breaker.record_failure(provider)
        classification = outcome.classification
        logger.error("Re-ranking failed with %s: %s", classification.type.value, outcome.error)
        if not classification.fallback_required:
            raise outcome.error

        logger.warning("Using fallback ranking due to reranking failure")
        results = heuristic_rerank(documents, request.top_k)
        return results, PROVIDER_FAILED_MESSAGE.format(error_type=classification.type.value)

    async def _record_analytics(
        self,
        request: RerankRequest,
        metrics: PerformanceMetrics,
        results: list[RerankResult],
        cache_hit: bool,
    ) -> None:
        provider = request.provider.value
        if request.performance_monitoring:
            await safe_record(
                self.analytics,
                MONITORING_LOGS,
                {
                    "service_name": "reranking",
                    "log_type": "performance",
                    "user_id": request.user_id,
                    "metrics": {
                        **metrics.to_dict(),
                        "provider": provider,
                        "model": request.model,
                        "query": request.query[:100],
                    },
                },
            )
        await safe_record(
            self.analytics,
            SESSION_QUERIES,
            {
                "session_id": request.user_id,
                "query_text": request.query,
                "retrieval_technique": "reranking",
                "results_count": len(results),
                "execution_time_ms": metrics.execution_time_ms,
                "cost_usd": metrics.cost_usd,
                "cache_hit": cache_hit,
                "model_used": request.model,
                "provider": provider,
            },
        )

    async def record_error(self, error: BaseException, metrics: PerformanceMetrics) -> None:
        await safe_record(
            self.analytics,
            MONITORING_LOGS,
            {
                "service_name": "reranking",
                "log_type": "error",
                "error_message": str(error),
                "error_type": type(error).__name__,
                "metrics": metrics.to_dict(),
            },
        )

    async def health(self) -> HealthStatus:
        """Check the analytics store, provider configuration, breakers, and cache."""
        errors: list[str] = []
        warnings: list[str] = []

        if self.analytics is not None:
            try:
                await self.analytics.ping()
            except Exception as exc:
                errors.append(f"Persistence connection failed: {exc}")

        if not self.cohere_configured:
            warnings.append("COHERE_API_KEY not configured")

        for provider, state in self.breaker.snapshot().items():
            if state.state is CircuitState.OPEN:
                warnings.append(f"Circuit breaker for {provider} is OPEN")

        if self.cache.size >= self.cache.max_size * CACHE_NEAR_FULL_RATIO:
            warnings.append("Cache is nearly full")

        status = "healthy"
        if errors:
            status = "unhealthy"
        elif warnings:
            status = "degraded"
        return HealthStatus(
            status=status,
            last_check=datetime.now(timezone.utc),
            errors=errors,
            warnings=warnings,
        )
