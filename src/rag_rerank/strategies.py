"""Scoring strategies for the second (re-ranking) stage.

Every strategy takes the same inputs and returns :class:`RerankResult` rows
sorted by ``reranking_score`` descending, truncated to ``top_k`` and ranked
from 1. Provider-backed strategies raise :class:`ProviderError` on failure and
leave retry and fallback decisions to the engine.
"""
from __future__ import annotations

import asyncio
import math
import re
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from .cost import cohere_rerank_cost, cross_encoder_cost
from .providers import CohereReranker, CrossEncoderScorer
from .schema import Document, PerformanceMetrics, QualityIndicators, RerankResult

SECONDS_PER_DAY = 86400.0


class RerankStrategy(str, Enum):
    COHERE = "cohere"
    CROSS_ENCODER = "cross_encoder"
    HYBRID = "hybrid"
    HEURISTIC = "heuristic"
    BASIC = "basic"


class Scorer(Protocol):
    async def score(
        self,
        query: str,
        documents: list[Document],
        top_k: int,
        model: str,
        metrics: PerformanceMetrics,
    ) -> list[RerankResult]:
        ...


def rank_stability(initial_rank: int, final_rank: int) -> float:
    """Return 1.0 for an unchanged rank, falling towards 0 as the rank moves further."""
    change = abs(initial_rank - final_rank)
    return max(0.0, 1 - change / max(initial_rank, final_rank, 1))


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def recency_bonus(timestamp: Any, now: datetime | None = None) -> float:
    """Exponentially decaying bonus (0.1 at age zero, 7-day decay) for recent documents."""
    parsed = _parse_timestamp(timestamp)
    if parsed is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    age_in_days = (now - parsed).total_seconds() / SECONDS_PER_DAY
    return max(0.0, 0.1 * math.exp(-age_in_days / 7))


def _unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def _band(score: float, width: float, clamp: bool) -> tuple[float, float]:
    if clamp:
        return (max(0.0, score - width), min(1.0, score + width))
    return (score - width, score + width)


def build_result(
    document: Document,
    score: float,
    rank: int,
    *,
    confidence: float,
    model: str,
    provider: str,
    processing_time_ms: float,
    cost_usd: float,
    interval: tuple[float, float],
) -> RerankResult:
    return RerankResult(
        id=document.id,
        content=document.content,
        metadata=document.metadata,
        initial_score=document.initial_score,
        initial_rank=document.initial_rank,
        reranking_score=score,
        reranking_rank=rank,
        confidence_score=confidence,
        model_used=model,
        provider=provider,
        processing_time_ms=processing_time_ms,
        cost_usd=cost_usd,
        cache_hit=False,
        quality_indicators=QualityIndicators(
            score_improvement=score - document.initial_score,
            rank_stability=rank_stability(document.initial_rank, rank),
            confidence_interval=interval,
        ),
    )


def heuristic_rerank(
    documents: list[Document],
    top_k: int,
    provider: str = "fallback",
    model: str = "basic_fallback",
    now: datetime | None = None,
) -> list[RerankResult]:
    """Score documents without any external call.

    ``score = 0.7 * initial_score + 0.1 * min(1, len/1000) + 0.1 * recency
    + 0.1 * metadata relevance_bonus``, capped at 1.0. Confidence is fixed at 0.7.
    """
    scored: list[tuple[float, Document]] = []
    for document in documents:
        metadata = document.metadata or {}
        score = (
            document.initial_score * 0.7
            + min(1.0, len(document.content) / 1000) * 0.1
            + recency_bonus(metadata.get("timestamp"), now) * 0.1
            + float(metadata.get("relevance_bonus") or 0) * 0.1
        )
        scored.append((min(1.0, score), document))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [
        build_result(
            document,
            score,
            rank,
            confidence=0.7,
            model=model,
            provider=provider,
            processing_time_ms=1.0,
            cost_usd=0.0,
            interval=_band(score, 0.05, clamp=False),
        )
        for rank, (score, document) in enumerate(scored[:top_k], start=1)
    ]


def basic_text_similarity_rerank(query: str, documents: list[Document], top_k: int) -> list[RerankResult]:
    """Cheapest scorer: count query-term matches in each document's content."""
    query_lower = query.lower()
    terms = [re.escape(term) for term in query_lower.split(" ") if term]
    pattern = re.compile("|".join(terms)) if terms else None
    word_count = max(len(query.split(" ")), 1)

    scored: list[tuple[float, Document]] = []
    for document in documents:
        matches = len(pattern.findall(document.content.lower())) if pattern else 0
        scored.append((matches / word_count, document))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [
        build_result(
            document,
            score,
            rank,
            confidence=min(score, 1.0),
            model="fallback",
            provider="fallback",
            processing_time_ms=0.0,
            cost_usd=0.0,
            interval=_band(score, 0.1, clamp=True),
        )
        for rank, (score, document) in enumerate(scored[:top_k], start=1)
    ]


class CohereStrategy:
    def __init__(self, client: CohereReranker):
        self.client = client

    async def score(self, query, documents, top_k, model, metrics):
        metrics.api_calls_count += 1
        started = time.perf_counter()
        pairs = await self.client.rerank(query, [doc.content for doc in documents], model, top_k)
        api_ms = (time.perf_counter() - started) * 1000
        metrics.cost_usd += cohere_rerank_cost(len(documents), model)

        pairs = sorted(pairs, key=lambda pair: pair[1], reverse=True)[:top_k]
        per_result_ms = api_ms / max(len(pairs), 1)
        return [
            build_result(
                documents[index],
                score,
                rank,
                confidence=score,
                model=model,
                provider="cohere",
                processing_time_ms=per_result_ms,
                cost_usd=cohere_rerank_cost(1, model),
                interval=_band(score, 0.1, clamp=True),
            )
            for rank, (index, score) in enumerate(pairs, start=1)
        ]


class CrossEncoderStrategy:
    """Cross-encoder scoring; falls back to the heuristic when no model is configured."""

    def __init__(self, scorer: CrossEncoderScorer | None):
        self.scorer = scorer

    async def score(self, query, documents, top_k, model, metrics):
        if self.scorer is None:
            return heuristic_rerank(documents, top_k, provider="cross_encoder_fallback", model=model)

        metrics.api_calls_count += 1
        started = time.perf_counter()
        scores = await self.scorer.score(query, [doc.content for doc in documents])
        api_ms = (time.perf_counter() - started) * 1000
        metrics.cost_usd += cross_encoder_cost(len(documents))

        ranked = sorted(zip(scores, documents), key=lambda item: item[0], reverse=True)[:top_k]
        per_result_ms = api_ms / max(len(documents), 1)
        return [
            build_result(
                document,
                score,
                rank,
                confidence=_unit(score),
                model=self.scorer.model_name,
                provider="cross_encoder",
                processing_time_ms=per_result_ms,
                cost_usd=cross_encoder_cost(1),
                interval=_band(_unit(score), 0.1, clamp=True),
            )
            for rank, (score, document) in enumerate(ranked, start=1)
        ]


class HeuristicStrategy:
    def __init__(self, provider: str = "fallback", model: str | None = "basic_fallback"):
        self.provider = provider
        self.model = model

    async def score(self, query, documents, top_k, model, metrics):
        return heuristic_rerank(documents, top_k, provider=self.provider, model=self.model or model)


class BasicStrategy:
    async def score(self, query, documents, top_k, model, metrics):
        return basic_text_similarity_rerank(query, documents, top_k)


class HybridStrategy:
    """Union of provider and heuristic rankings, averaging scores on overlap."""

    def __init__(self, provider: CohereStrategy):
        self.provider = provider
        self.heuristic = HeuristicStrategy(provider="hybrid", model=None)

    async def score(self, query, documents, top_k, model, metrics):
        provider_results, heuristic_results = await asyncio.gather(
            self.provider.score(query, documents, top_k * 2, model, metrics),
            self.heuristic.score(query, documents, top_k * 2, model, metrics),
        )

        merged: dict[str, list[Any]] = {}
        for result in [*provider_results, *heuristic_results]:
            existing = merged.get(result.id)
            if existing is None:
                merged[result.id] = [result.reranking_score, result.confidence_score, result]
            else:
                existing[0] = (existing[0] + result.reranking_score) / 2
                existing[1] = max(existing[1], result.confidence_score)

        ordered = sorted(merged.values(), key=lambda item: item[0], reverse=True)[:top_k]
        by_id = {doc.id: doc for doc in documents}
        return [
            build_result(
                by_id[base.id],
                score,
                rank,
                confidence=confidence,
                model=f"hybrid_{model}",
                provider="hybrid",
                processing_time_ms=base.processing_time_ms,
                cost_usd=base.cost_usd,
                interval=base.quality_indicators.confidence_interval,
            )
            for rank, (score, confidence, base) in enumerate(ordered, start=1)
        ]


def build_strategy_table(
    cohere_client: CohereReranker, cross_encoder: CrossEncoderScorer | None
) -> dict[RerankStrategy, Scorer]:
    cohere_strategy = CohereStrategy(cohere_client)
    return {
        RerankStrategy.COHERE: cohere_strategy,
        RerankStrategy.CROSS_ENCODER: CrossEncoderStrategy(cross_encoder),
        RerankStrategy.HYBRID: HybridStrategy(cohere_strategy),
        RerankStrategy.HEURISTIC: HeuristicStrategy(),
        RerankStrategy.BASIC: BasicStrategy(),
    }
