"""Stage-1 hybrid retrieval: semantic and lexical search fused into one ranking."""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .embeddings import OpenAIEmbedder
from .errors import RequestValidationError
from .lexical import LexicalIndex, LexicalSearchType, expand_query
from .schema import HybridCandidate, SearchMatch
from .vector_store import ChromaSemanticSearch

logger = logging.getLogger(__name__)

RRF_K = 60
WEIGHT_SUM_TOLERANCE = 1e-9


class ScoringMethod(str, Enum):
    WEIGHTED_SUM = "weighted_sum"
    RECIPROCAL_RANK_FUSION = "reciprocal_rank_fusion"
    COMB_SUM = "comb_sum"
    ADAPTIVE = "adaptive"


class NormalizationMethod(str, Enum):
    MIN_MAX = "min_max"
    Z_SCORE = "z_score"
    RANK_BASED = "rank_based"


@dataclass(slots=True)
class HybridSearchConfig:
    semantic_limit: int = 60
    lexical_limit: int = 60
    semantic_weight: float = 0.6
    lexical_weight: float = 0.4
    semantic_threshold: float = 0.7
    lexical_threshold: float = 0.1
    lexical_search_type: LexicalSearchType = LexicalSearchType.BM25
    enable_query_expansion: bool = True
    proximity_distance: int = 5
    scoring_method: ScoringMethod = ScoringMethod.WEIGHTED_SUM
    normalize_scores: bool = False
    normalization_method: NormalizationMethod = NormalizationMethod.MIN_MAX


def validate_weights(semantic_weight: float, lexical_weight: float) -> None:
    if not math.isclose(semantic_weight + lexical_weight, 1.0, rel_tol=0.0, abs_tol=WEIGHT_SUM_TOLERANCE):
        raise RequestValidationError("Semantic and lexical weights must sum to 1.0")


def merge_candidates(semantic: list[SearchMatch], lexical: list[SearchMatch]) -> list[HybridCandidate]:
    """Merge both ranked match lists by id; ranks are 1-based and 0 when absent."""
    merged: dict[str, HybridCandidate] = {}
    for rank, match in enumerate(semantic, start=1):
        merged[match.id] = HybridCandidate(
            id=match.id,
            content=match.content,
            metadata=dict(match.metadata),
            semantic_score=match.score,
            semantic_rank=rank,
        )
    for rank, match in enumerate(lexical, start=1):
        existing = merged.get(match.id)
        if existing is None:
            merged[match.id] = HybridCandidate(
                id=match.id,
                content=match.content,
                metadata=dict(match.metadata),
                lexical_score=match.score,
                lexical_rank=rank,
            )
        else:
            existing.lexical_score = match.score
            existing.lexical_rank = rank
    return list(merged.values())


def _normalize_column(values: np.ndarray, method: NormalizationMethod) -> np.ndarray:
    present = values > 0
    if not present.any():
        return values
    observed = values[present]
    result = values.copy()
    if method is NormalizationMethod.Z_SCORE:
        std = observed.std()
        if std > 0:
            result[present] = (observed - observed.mean()) / std
    elif method is NormalizationMethod.RANK_BASED:
        order = np.argsort(-observed, kind="stable")
        ranks = np.empty(len(observed))
        ranks[order] = np.arange(1, len(observed) + 1)
        result[present] = 1.0 / ranks
    else:
        spread = observed.max() - observed.min()
        if spread > 0:
            result[present] = (observed - observed.min()) / spread
    return result


def normalize_scores(candidates: list[HybridCandidate], method: NormalizationMethod) -> None:
    """Rescale semantic and lexical scores in place; zero scores are left at zero."""
    if not candidates:
        return
    semantic = _normalize_column(np.array([c.semantic_score for c in candidates], dtype=float), method)
    lexical = _normalize_column(np.array([c.lexical_score for c in candidates], dtype=float), method)
    for candidate, sem, lex in zip(candidates, semantic, lexical, strict=True):
        candidate.semantic_score = float(sem)
        candidate.lexical_score = float(lex)


def apply_fusion(
    candidates: list[HybridCandidate],
    method: ScoringMethod,
    semantic_weight: float,
    lexical_weight: float,
) -> None:
    """Set ``hybrid_score`` on every candidate according to ``method``."""
    if method is ScoringMethod.RECIPROCAL_RANK_FUSION:
        for candidate in candidates:
            score = 0.0
            if candidate.semantic_rank > 0:
                score += semantic_weight / (RRF_K + candidate.semantic_rank)
            if candidate.lexical_rank > 0:
                score += lexical_weight / (RRF_K + candidate.lexical_rank)
            candidate.hybrid_score = score
        return

    if method is ScoringMethod.ADAPTIVE:
        semantic_present = [c.semantic_score for c in candidates if c.semantic_score > 0]
        lexical_present = [c.lexical_score for c in candidates if c.lexical_score > 0]
        avg_semantic = sum(semantic_present) / len(semantic_present) if semantic_present else 0.0
        avg_lexical = sum(lexical_present) / len(lexical_present) if lexical_present else 0.0
        total = avg_semantic + avg_lexical
        if total > 0:
            weight_sum = semantic_weight + lexical_weight
            semantic_weight = avg_semantic / total * weight_sum
            lexical_weight = avg_lexical / total * weight_sum

    # weighted_sum and comb_sum share the same linear combination
    for candidate in candidates:
        candidate.hybrid_score = (
            candidate.semantic_score * semantic_weight + candidate.lexical_score * lexical_weight
        )


class HybridRetriever:
    """Run semantic and lexical search independently and fuse them.

    A failing sub-search is logged and contributes no matches, so stage 1
    still returns whatever the other search found.
    """

    def __init__(
        self,
        embedder: OpenAIEmbedder,
        semantic_search: ChromaSemanticSearch,
        lexical_index: LexicalIndex,
        synonyms: dict[str, list[str]] | None = None,
    ):
        self.embedder = embedder
        self.semantic_search = semantic_search
        self.lexical_index = lexical_index
        self.synonyms = synonyms or {}

    async def retrieve(
        self, query: str, document_ids: list[str], config: HybridSearchConfig | None = None
    ) -> list[HybridCandidate]:
        config = config or HybridSearchConfig()
        validate_weights(config.semantic_weight, config.lexical_weight)

        semantic, lexical = await asyncio.gather(
            self._semantic(query, document_ids, config),
            self._lexical(query, document_ids, config),
        )
        lexical = [match for match in lexical if match.score >= config.lexical_threshold]

        candidates = merge_candidates(semantic, lexical)
        if config.normalize_scores:
            normalize_scores(candidates, config.normalization_method)
        apply_fusion(candidates, config.scoring_method, config.semantic_weight, config.lexical_weight)
        candidates.sort(key=lambda candidate: candidate.hybrid_score, reverse=True)
        logger.debug(
            "Stage 1 merged %d semantic and %d lexical matches into %d candidates",
            len(semantic),
            len(lexical),
            len(candidates),
        )
        return candidates

    async def _semantic(
        self, query: str, document_ids: list[str], config: HybridSearchConfig
    ) -> list[SearchMatch]:
        try:
            embedding = await self.embedder.embed_query(query)
            return await self.semantic_search.search(
                embedding, document_ids, config.semantic_threshold, config.semantic_limit
            )
        except Exception as exc:
            logger.warning("Semantic search error: %s", exc)
            return []

    async def _lexical(
        self, query: str, document_ids: list[str], config: HybridSearchConfig
    ) -> list[SearchMatch]:
        processed = " ".join(query.split())
        if config.enable_query_expansion and self.synonyms:
            processed = expand_query(processed, self.synonyms)
        try:
            return await self.lexical_index.search(
                processed,
                document_ids,
                limit=config.lexical_limit,
                search_type=config.lexical_search_type,
                proximity_distance=config.proximity_distance,
            )
        except Exception as exc:
            logger.warning("Lexical search error: %s", exc)
            return []
