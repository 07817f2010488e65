"""Framework-neutral request handlers and the process composition root.

Each handler takes a parsed JSON body and returns ``(status_code, body)``,
so any HTTP framework can mount them with a thin adapter.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .analytics import AnalyticsSink, LoggingAnalyticsSink
from .cache import ResultCache
from .circuit_breaker import CircuitBreaker
from .errors import ErrorType, RerankError
from .orchestrator import TwoStageConfig, TwoStageOrchestrator
from .providers import CohereReranker, CrossEncoderScorer
from .reranking import RerankEngine, RerankRequest
from .retrieval import HybridRetriever
from .retry import RetryPolicy
from .schema import PerformanceMetrics
from .settings import Settings, load_settings
from .strategies import build_strategy_table

logger = logging.getLogger(__name__)

Response = tuple[int, dict[str, Any]]


def _is_validation_error(error: BaseException) -> bool:
    return (
        isinstance(error, RerankError)
        and error.classification is not None
        and error.classification.type is ErrorType.VALIDATION_ERROR
    )


@dataclass(slots=True)
class RerankService:
    """Process-wide services shared by every request."""

    settings: Settings
    breaker: CircuitBreaker
    cache: ResultCache
    engine: RerankEngine
    orchestrator: TwoStageOrchestrator
    analytics: AnalyticsSink | None = None


def build_service(
    settings: Settings | None = None,
    retriever: HybridRetriever | None = None,
    analytics: AnalyticsSink | None = None,
    cohere_client: CohereReranker | None = None,
    cross_encoder: CrossEncoderScorer | None = None,
) -> RerankService:
    """Construct one breaker, cache, engine, and orchestrator for the process.

    Args:
        settings: Loaded settings; read from the environment when omitted.
        retriever: Stage-1 retriever over an indexed corpus. Without one,
            two-stage requests return no candidates.
        analytics: Sink for monitoring and session rows; defaults to logging.
        cohere_client: Pre-built Cohere client, mainly for tests.
        cross_encoder: Pre-built cross-encoder scorer. When omitted, one is
            created only if a cross-encoder model is configured.

    Returns:
        The assembled :class:`RerankService`.
    """
    settings = settings or load_settings()
    providers = settings.providers
    resilience = settings.resilience
    analytics = analytics if analytics is not None else LoggingAnalyticsSink()

    cohere_client = cohere_client or CohereReranker(providers.cohere_api_key)
    if cross_encoder is None and providers.cross_encoder_model:
        cross_encoder = CrossEncoderScorer(providers.cross_encoder_model)

    breaker = CircuitBreaker(
        failure_threshold=resilience.breaker_failure_threshold,
        cooldown_seconds=resilience.breaker_cooldown_seconds,
        success_threshold=resilience.breaker_success_threshold,
    )
    cache = ResultCache(max_size=resilience.cache_max_size, ttl_seconds=resilience.cache_ttl_seconds)
    engine = RerankEngine(
        strategies=build_strategy_table(cohere_client, cross_encoder),
        breaker=breaker,
        cache=cache,
        retry_policy=RetryPolicy(
            max_retries=resilience.retry_max_retries,
            base_delay_ms=resilience.retry_base_delay_ms,
            max_delay_ms=resilience.retry_max_delay_ms,
            jitter=resilience.retry_jitter,
        ),
        analytics=analytics,
        cohere_configured=cohere_client.configured,
    )
    orchestrator = TwoStageOrchestrator(retriever=retriever, engine=engine, analytics=analytics)
    return RerankService(
        settings=settings,
        breaker=breaker,
        cache=cache,
        engine=engine,
        orchestrator=orchestrator,
        analytics=analytics,
    )


async def handle_rerank(service: RerankService, payload: dict[str, Any]) -> Response:
    started = time.perf_counter()
    metrics = PerformanceMetrics()
    try:
        request = RerankRequest.from_payload(payload, service.settings.providers.default_rerank_model)
        outcome = await service.engine.rerank(request)
    except Exception as exc:
        metrics.error_rate = 1.0
        metrics.execution_time_ms = (time.perf_counter() - started) * 1000
        if _is_validation_error(exc):
            return 400, {"error": str(exc), "metrics": metrics.to_dict()}
        logger.exception("Re-ranking request failed")
        await service.engine.record_error(exc, metrics)
        return 500, {"error": str(exc), "results": [], "totalResults": 0, "metrics": metrics.to_dict()}
    return 200, outcome.to_response()


async def handle_two_stage(service: RerankService, payload: dict[str, Any]) -> Response:
    query = payload.get("query")
    document_ids = payload.get("documentIds")
    user_id = payload.get("userId")
    if not query or document_ids is None or not user_id:
        return 400, {"error": "Missing required parameters: query, documentIds, userId"}
    try:
        config = TwoStageConfig.from_payload(payload, service.settings.providers.default_rerank_model)
        response = await service.orchestrator.execute(query, list(document_ids), user_id, config)
    except Exception as exc:
        if _is_validation_error(exc):
            return 400, {"error": str(exc)}
        logger.exception("Two-stage retrieval request failed")
        return 500, {"error": str(exc), "results": [], "totalResults": 0}
    return 200, response.to_response()


async def handle_health(service: RerankService) -> Response:
    health = await service.engine.health()
    body = {
        "status": health.status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "lastCheck": health.last_check.isoformat(),
        "errors": health.errors,
        "warnings": health.warnings,
        "circuitBreakers": {
            provider: {
                "failures": state.failures,
                "lastFailureTime": state.last_failure_time,
                "state": state.state.value,
                "successCount": state.success_count,
            }
            for provider, state in service.breaker.snapshot().items()
        },
        "cache": {
            "size": service.cache.size,
            "maxSize": service.cache.max_size,
            "utilizationPercent": service.cache.utilization_percent,
        },
    }
    return (503 if health.status == "unhealthy" else 200), body
