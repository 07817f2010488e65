"""Two-stage pipeline: hybrid retrieval followed by re-ranking.

Stage 1 produces a fused candidate list from semantic and lexical search.
Stage 2 re-scores the head of that list through :class:`RerankEngine`.
Either stage may fail without failing the request: a stage-1 failure yields
no candidates, and a stage-2 failure falls back to the stage-1 ranking.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from .analytics import SESSION_QUERIES, AnalyticsSink, safe_record
from .errors import RequestValidationError, parse_flag
from .lexical import LexicalSearchType
from .reranking import DEFAULT_MODEL, RerankEngine, RerankRequest
from .retrieval import (
    HybridRetriever,
    HybridSearchConfig,
    NormalizationMethod,
    ScoringMethod,
    validate_weights,
)
from .schema import Document, HybridCandidate, RerankResult, TwoStageResult
from .strategies import RerankStrategy
from .tracing import (
    ATTR_EMBEDDING_MODEL_NAME,
    ATTR_RERANKER_INPUT_DOCUMENTS,
    ATTR_RERANKER_MODEL_NAME,
    ATTR_RERANKER_OUTPUT_DOCUMENTS,
    ATTR_RERANKER_PROVIDER,
    ATTR_RETRIEVAL_DOCUMENTS,
    get_tracer,
    traced_stage,
)

logger = logging.getLogger(__name__)

STAGE1_FALLBACK_CONFIDENCE = 0.5
STAGE1_PROVIDERS = ("openai", "chroma", "bm25")


def _parse_enum(enum_cls, value: Any, default, field_name: str):
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise RequestValidationError(f"Invalid {field_name}: {value}") from exc


@dataclass(slots=True)
class TwoStageConfig:
    initial_limit: int = 100
    final_limit: int = 20
    search: HybridSearchConfig = field(default_factory=HybridSearchConfig)
    reranking_provider: RerankStrategy = RerankStrategy.COHERE
    reranking_model: str = DEFAULT_MODEL
    enable_stage1: bool = True
    enable_stage2: bool = True
    enable_parallel_processing: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any], default_model: str = DEFAULT_MODEL) -> TwoStageConfig:
        """Build a config from two-stage request fields, applying defaults.

        Raises:
            RequestValidationError: for unknown enum values, non-positive
                limits, non-numeric fields, non-boolean flags, or weights
                that do not sum to 1.0.
        """
        try:
            return cls._build(payload, default_model)
        except (TypeError, ValueError) as exc:
            raise RequestValidationError(f"Invalid two-stage parameters: {exc}") from exc

    @classmethod
    def _build(cls, payload: dict[str, Any], default_model: str) -> TwoStageConfig:
        defaults = HybridSearchConfig()
        search = HybridSearchConfig(
            semantic_limit=int(payload.get("semanticLimit", defaults.semantic_limit)),
            lexical_limit=int(payload.get("lexicalLimit", defaults.lexical_limit)),
            semantic_weight=float(payload.get("semanticWeight", defaults.semantic_weight)),
            lexical_weight=float(payload.get("lexicalWeight", defaults.lexical_weight)),
            semantic_threshold=float(payload.get("semanticThreshold", defaults.semantic_threshold)),
            lexical_threshold=float(payload.get("lexicalThreshold", defaults.lexical_threshold)),
            lexical_search_type=_parse_enum(
                LexicalSearchType, payload.get("lexicalSearchType"), defaults.lexical_search_type,
                "lexicalSearchType",
            ),
            enable_query_expansion=parse_flag(
                payload.get("enableQueryExpansion", defaults.enable_query_expansion), "enableQueryExpansion"
            ),
            proximity_distance=int(payload.get("proximityDistance", defaults.proximity_distance)),
            scoring_method=_parse_enum(
                ScoringMethod, payload.get("scoringMethod"), defaults.scoring_method, "scoringMethod"
            ),
            normalize_scores=parse_flag(
                payload.get("normalizeScores", defaults.normalize_scores), "normalizeScores"
            ),
            normalization_method=_parse_enum(
                NormalizationMethod,
                payload.get("scoreNormalizationMethod"),
                defaults.normalization_method,
                "scoreNormalizationMethod",
            ),
        )
        validate_weights(search.semantic_weight, search.lexical_weight)

        config = cls(
            initial_limit=int(payload.get("initialLimit", 100)),
            final_limit=int(payload.get("finalLimit", 20)),
            search=search,
            reranking_provider=_parse_enum(
                RerankStrategy, payload.get("rerankingProvider"), RerankStrategy.COHERE, "rerankingProvider"
            ),
            reranking_model=payload.get("rerankingModel") or default_model,
            enable_stage1=parse_flag(payload.get("enableStage1", True), "enableStage1"),
            enable_stage2=parse_flag(payload.get("enableStage2", True), "enableStage2"),
            enable_parallel_processing=parse_flag(
                payload.get("enableParallelProcessing", False), "enableParallelProcessing"
            ),
        )
        if config.initial_limit < 1 or config.final_limit < 1:
            raise RequestValidationError("Invalid limits: initialLimit and finalLimit must be positive")
        return config


@dataclass(slots=True)
class TwoStageResponse:
    query: str
    results: list[TwoStageResult]
    config: TwoStageConfig
    stage1_latency_ms: float
    stage2_latency_ms: float
    total_latency_ms: float
    initial_documents: int
    reranked_documents: int
    models_used: list[str]
    providers_used: list[str]

    def to_response(self) -> dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "query": self.query,
            "pipeline": {
                "stage1_enabled": self.config.enable_stage1,
                "stage2_enabled": self.config.enable_stage2,
                "parallel_processing": self.config.enable_parallel_processing,
            },
            "performance": {
                "stage1_latency_ms": self.stage1_latency_ms,
                "stage2_latency_ms": self.stage2_latency_ms,
                "total_latency_ms": self.total_latency_ms,
                "initial_documents": self.initial_documents,
                "reranked_documents": self.reranked_documents,
                "final_results": len(self.results),
            },
            "metadata": {
                "models_used": self.models_used,
                "providers_used": self.providers_used,
                "stage1_method": self.config.search.scoring_method.value,
                "stage2_method": self.config.reranking_provider.value,
            },
            "executionTime": self.total_latency_ms,
        }


def candidates_to_documents(candidates: list[HybridCandidate], limit: int) -> list[Document]:
    """Turn the head of the stage-1 ranking into re-ranking input."""
    return [
        Document(
            id=candidate.id,
            content=candidate.content,
            metadata=dict(candidate.metadata),
            initial_score=candidate.hybrid_score,
            initial_rank=rank,
        )
        for rank, candidate in enumerate(candidates[:limit], start=1)
    ]


def _seed(candidate: HybridCandidate, rank: int, stage1_latency_ms: float) -> TwoStageResult:
    return TwoStageResult(
        id=candidate.id,
        content=candidate.content,
        metadata=dict(candidate.metadata),
        semantic_score=candidate.semantic_score,
        lexical_score=candidate.lexical_score,
        hybrid_score=candidate.hybrid_score,
        initial_rank=rank,
        stage1_latency_ms=stage1_latency_ms,
        total_latency_ms=stage1_latency_ms,
    )


def stage1_only_results(candidates: list[HybridCandidate], stage1_latency_ms: float) -> list[TwoStageResult]:
    """Present the stage-1 ranking as final results, with fixed medium confidence."""
    results = []
    for rank, candidate in enumerate(candidates, start=1):
        result = _seed(candidate, rank, stage1_latency_ms)
        result.reranking_score = candidate.hybrid_score
        result.reranking_rank = rank
        result.confidence_score = STAGE1_FALLBACK_CONFIDENCE
        results.append(result)
    return results


def merge_stage_results(
    candidates: list[HybridCandidate],
    reranked: list[RerankResult],
    stage1_latency_ms: float,
    stage2_latency_ms: float,
) -> list[TwoStageResult]:
    """Overlay re-ranking output onto the stage-1 candidates, keyed by id.

    Re-ranked records sort first by ``reranking_score``; candidates the
    re-ranker did not return follow in ``hybrid_score`` order. Re-ranked ids
    unknown to stage 1 are ignored.
    """
    merged = {
        candidate.id: _seed(candidate, rank, stage1_latency_ms)
        for rank, candidate in enumerate(candidates, start=1)
    }
    for result in reranked:
        existing = merged.get(result.id)
        if existing is None:
            continue
        existing.reranking_score = result.reranking_score
        existing.reranking_rank = result.reranking_rank
        existing.confidence_score = result.confidence_score
        existing.model_used = result.model_used
        existing.provider = result.provider
        existing.stage2_latency_ms = stage2_latency_ms
        existing.total_latency_ms = stage1_latency_ms + stage2_latency_ms

    reranked_rows = sorted(
        (row for row in merged.values() if row.reranking_score is not None),
        key=lambda row: row.reranking_score,
        reverse=True,
    )
    remaining = sorted(
        (row for row in merged.values() if row.reranking_score is None),
        key=lambda row: row.hybrid_score,
        reverse=True,
    )
    return reranked_rows + remaining


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class TwoStageOrchestrator:
    """Sequence stage 1 and stage 2 and degrade gracefully when either fails."""

    def __init__(
        self,
        retriever: HybridRetriever | None,
        engine: RerankEngine,
        analytics: AnalyticsSink | None = None,
    ):
        self.retriever = retriever
        self.engine = engine
        self.analytics = analytics
        self._tracer = get_tracer("rag_rerank.orchestrator")

    async def execute(
        self,
        query: str,
        document_ids: list[str],
        user_id: str,
        config: TwoStageConfig | None = None,
    ) -> TwoStageResponse:
        config = config or TwoStageConfig()
        validate_weights(config.search.semantic_weight, config.search.lexical_weight)
        started = time.perf_counter()
        models_used: list[str] = []
        providers_used: list[str] = []
        candidates: list[HybridCandidate] = []
        stage1_latency_ms = 0.0
        stage2_latency_ms = 0.0

        with traced_stage(self._tracer, "two_stage", query):
            if config.enable_stage1:
                stage1_started = time.perf_counter()
                candidates = await self._run_stage1(query, document_ids, config)
                if self.retriever is not None:
                    models_used.append(self.retriever.embedder.model)
                    providers_used.extend(STAGE1_PROVIDERS)
                stage1_latency_ms = (time.perf_counter() - stage1_started) * 1000

            results: list[TwoStageResult] | None = None
            if config.enable_stage2 and candidates:
                stage2_started = time.perf_counter()
                reranked = await self._run_stage2(query, user_id, candidates, config)
                stage2_latency_ms = (time.perf_counter() - stage2_started) * 1000
                if reranked is not None:
                    results = merge_stage_results(candidates, reranked, stage1_latency_ms, stage2_latency_ms)
                    models_used.append(config.reranking_model)
                    providers_used.append(config.reranking_provider.value)

            if results is None:
                results = stage1_only_results(candidates, stage1_latency_ms)
            results = results[: config.final_limit]

        total_latency_ms = (time.perf_counter() - started) * 1000
        await safe_record(
            self.analytics,
            SESSION_QUERIES,
            {
                "session_id": user_id,
                "query_text": query,
                "retrieval_technique": "two_stage",
                "results_count": len(results),
                "execution_time_ms": total_latency_ms,
            },
        )
        return TwoStageResponse(
            query=query,
            results=results,
            config=config,
            stage1_latency_ms=stage1_latency_ms,
            stage2_latency_ms=stage2_latency_ms,
            total_latency_ms=total_latency_ms,
            initial_documents=len(candidates),
            reranked_documents=min(config.initial_limit, len(candidates)) if config.enable_stage2 else 0,
            models_used=_unique(models_used),
            providers_used=_unique(providers_used),
        )

    async def _run_stage1(
        self, query: str, document_ids: list[str], config: TwoStageConfig
    ) -> list[HybridCandidate]:
        if self.retriever is None:
            logger.warning("Stage 1 retrieval skipped: no retriever configured")
            return []
        try:
            with traced_stage(
                self._tracer,
                "stage1",
                query,
                **{ATTR_EMBEDDING_MODEL_NAME: self.retriever.embedder.model},
            ) as span:
                candidates = await self.retriever.retrieve(query, document_ids, config.search)
                span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(candidates))
                return candidates
        except RequestValidationError:
            raise
        except Exception as exc:
            logger.warning("Stage 1 retrieval failed: %s", exc)
            return []

    async def _run_stage2(
        self,
        query: str,
        user_id: str,
        candidates: list[HybridCandidate],
        config: TwoStageConfig,
    ) -> list[RerankResult] | None:
        documents = candidates_to_documents(candidates, config.initial_limit)
        request = RerankRequest(
            query=query,
            documents=documents,
            user_id=user_id,
            provider=config.reranking_provider,
            top_k=config.final_limit,
            model=config.reranking_model,
        )
        try:
            with traced_stage(
                self._tracer,
                "stage2",
                query,
                **{
                    ATTR_RERANKER_PROVIDER: config.reranking_provider.value,
                    ATTR_RERANKER_MODEL_NAME: config.reranking_model,
                    ATTR_RERANKER_INPUT_DOCUMENTS: len(documents),
                },
            ) as span:
                outcome = await self.engine.rerank(request)
                span.set_attribute(ATTR_RERANKER_OUTPUT_DOCUMENTS, len(outcome.results))
                return outcome.results
        except Exception as exc:
            logger.warning("Stage 2 re-ranking failed, using stage 1 results: %s", exc)
            return None
