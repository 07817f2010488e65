from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True)
class Chunk:
    """Indexable text unit belonging to an uploaded source document."""

    chunk_id: str
    document_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Document:
    """Candidate passed into the re-ranking stage."""

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    initial_score: float = 0.0
    initial_rank: int = 1

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> Document:
        return cls(
            id=str(record["id"]),
            content=record.get("content") or "",
            metadata=dict(record.get("metadata") or {}),
            initial_score=float(record.get("initial_score") or 0.0),
            initial_rank=int(record.get("initial_rank") or 1),
        )


@dataclass(slots=True)
class QualityIndicators:
    score_improvement: float
    rank_stability: float
    confidence_interval: tuple[float, float]


@dataclass(slots=True)
class RerankResult:
    """Re-scored document produced by any scoring strategy."""

    id: str
    content: str
    metadata: dict[str, Any]
    initial_score: float
    initial_rank: int
    reranking_score: float
    reranking_rank: int
    confidence_score: float
    model_used: str
    provider: str
    processing_time_ms: float
    cost_usd: float
    cache_hit: bool
    quality_indicators: QualityIndicators

    def to_dict(self) -> dict[str, Any]:
        record = asdict(self)
        record["quality_indicators"]["confidence_interval"] = list(
            self.quality_indicators.confidence_interval
        )
        return record


@dataclass(slots=True)
class CacheEntry:
    query_hash: str
    results: list[RerankResult]
    timestamp: float
    ttl: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PerformanceMetrics:
    """Per-request accumulator returned alongside re-ranking results."""

    execution_time_ms: float = 0.0
    api_calls_count: int = 0
    cache_hit_rate: float = 0.0
    cost_usd: float = 0.0
    throughput_docs_per_sec: float = 0.0
    error_rate: float = 0.0
    retry_count: int = 0
    fallback_used: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        record = asdict(self)
        if self.fallback_used is None:
            record.pop("fallback_used")
        return record


@dataclass(slots=True)
class SearchMatch:
    """Raw hit returned by a semantic or lexical search backend."""

    id: str
    content: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HybridCandidate:
    """Stage-1 candidate merged from the semantic and lexical result sets."""

    id: str
    content: str
    metadata: dict[str, Any]
    semantic_score: float = 0.0
    lexical_score: float = 0.0
    hybrid_score: float = 0.0
    semantic_rank: int = 0
    lexical_rank: int = 0


@dataclass(slots=True)
class TwoStageResult:
    """Final record of the two-stage pipeline, merged across both stages."""

    id: str
    content: str
    metadata: dict[str, Any]
    semantic_score: float
    lexical_score: float
    hybrid_score: float
    initial_rank: int
    reranking_score: float | None = None
    reranking_rank: int | None = None
    confidence_score: float | None = None
    model_used: str = "hybrid"
    provider: str = "stage1"
    search_type: str = "two_stage"
    stage1_latency_ms: float = 0.0
    stage2_latency_ms: float = 0.0
    total_latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
