from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .errors import RequestValidationError, parse_flag
from .schema import Document

logger = logging.getLogger(__name__)

# USD per 1000 documents scored.
COHERE_PRICING = {
    "rerank-english-v3.0": 0.001,
    "rerank-multilingual-v3.0": 0.001,
}
DEFAULT_COHERE_PRICE = 0.001
CROSS_ENCODER_PRICE_PER_THOUSAND = 0.005


@dataclass(slots=True)
class CostOptimization:
    enabled: bool = True
    max_candidates: int = 100
    cost_threshold: float = 0.01
    priority_scoring: bool = True

    @classmethod
    def from_dict(cls, record: dict[str, Any] | None) -> CostOptimization:
        if not record:
            return cls()
        defaults = cls()
        try:
            max_candidates = int(record.get("maxCandidates", defaults.max_candidates))
            cost_threshold = float(record.get("costThreshold", defaults.cost_threshold))
        except (TypeError, ValueError) as exc:
            raise RequestValidationError(f"Invalid costOptimization: {exc}") from exc
        return cls(
            enabled=parse_flag(record.get("enabled", defaults.enabled), "costOptimization.enabled"),
            max_candidates=max_candidates,
            cost_threshold=cost_threshold,
            priority_scoring=parse_flag(
                record.get("priorityScoring", defaults.priority_scoring), "costOptimization.priorityScoring"
            ),
        )


def cohere_rerank_cost(document_count: int, model: str) -> float:
    return document_count * COHERE_PRICING.get(model, DEFAULT_COHERE_PRICE) / 1000


def cross_encoder_cost(document_count: int) -> float:
    return document_count / 1000 * CROSS_ENCODER_PRICE_PER_THOUSAND


def apply_cost_optimization(documents: list[Document], options: CostOptimization) -> list[Document]:
    """Bound the candidate set sent to a paid re-ranking provider.

    Truncation to ``max_candidates`` keeps the first documents in input order
    and happens before the optional priority sort, so a high-scoring document
    late in the input can be dropped.
    """
    if not options.enabled:
        return documents

    optimized = documents
    if len(documents) > options.max_candidates:
        optimized = documents[: options.max_candidates]
        logger.info(
            "Cost optimization: limited documents from %d to %d", len(documents), len(optimized)
        )

    if options.priority_scoring:
        optimized = sorted(optimized, key=lambda doc: doc.initial_score, reverse=True)

    return optimized


def check_cost_threshold(document_count: int, model: str, options: CostOptimization) -> float:
    """Estimate provider spend for a request and warn when it exceeds the threshold."""
    estimate = cohere_rerank_cost(document_count, model)
    if options.enabled and estimate > options.cost_threshold:
        logger.warning(
            "Estimated re-ranking cost $%.6f exceeds threshold $%.6f", estimate, options.cost_threshold
        )
    return estimate
