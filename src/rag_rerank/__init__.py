"""Two-stage hybrid retrieval and resilient re-ranking."""

from .handlers import RerankService, build_service, handle_health, handle_rerank, handle_two_stage
from .orchestrator import TwoStageConfig, TwoStageOrchestrator
from .reranking import RerankEngine, RerankRequest
from .schema import Chunk, Document, RerankResult, TwoStageResult

__all__ = [
    "Chunk",
    "Document",
    "RerankEngine",
    "RerankRequest",
    "RerankResult",
    "RerankService",
    "TwoStageConfig",
    "TwoStageOrchestrator",
    "TwoStageResult",
    "build_service",
    "handle_health",
    "handle_rerank",
    "handle_two_stage",
]
