from __future__ import annotations

import asyncio
import logging

import cohere
from cohere.core.api_error import ApiError
from sentence_transformers import CrossEncoder

from .errors import ProviderError

logger = logging.getLogger(__name__)

COHERE_MAX_CHARS = 1000
CROSS_ENCODER_MAX_CHARS = 512
DEFAULT_CROSS_ENCODER_MODEL = "cross-encoder/ms-marco-MiniLM-L-6-v2"


class CohereReranker:
    """Client for the Cohere rerank endpoint returning ``(index, relevance_score)`` pairs."""

    name = "cohere"

    def __init__(self, api_key: str | None, client: cohere.AsyncClient | None = None):
        self.api_key = api_key
        self._client = client
        if self._client is None and api_key:
            self._client = cohere.AsyncClient(api_key=api_key)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def rerank(
        self, query: str, texts: list[str], model: str, top_k: int
    ) -> list[tuple[int, float]]:
        """Score ``texts`` against ``query``.

        Args:
            query: User query string.
            texts: Candidate texts, truncated to 1000 characters before sending.
            model: Cohere rerank model name.
            top_k: Maximum number of scored results to return.

        Returns:
            Pairs of input index and relevance score, best first.
        """
        if self._client is None:
            raise ProviderError("COHERE_API_KEY not configured")

        documents = [text[:COHERE_MAX_CHARS] for text in texts]
        try:
            response = await self._client.rerank(
                model=model,
                query=query,
                documents=documents,
                top_n=min(top_k, len(documents)),
                return_documents=False,
            )
        except ApiError as exc:
            raise ProviderError(f"Cohere API error: {exc.status_code} {exc.body}") from exc

        return [(row.index, float(row.relevance_score)) for row in response.results]


class CrossEncoderScorer:
    """Pairwise query-document scorer backed by a sentence-transformers cross-encoder."""

    name = "cross_encoder"

    def __init__(self, model_name: str = DEFAULT_CROSS_ENCODER_MODEL):
        self.model_name = model_name
        self.model = CrossEncoder(model_name)

    async def score(self, query: str, texts: list[str]) -> list[float]:
        if not texts:
            return []
        pairs = [[query, text[:CROSS_ENCODER_MAX_CHARS]] for text in texts]
        try:
            scores = await asyncio.to_thread(self.model.predict, pairs)
        except (RuntimeError, ValueError) as exc:
            raise ProviderError(f"Cross-encoder API error: {exc}", provider_names=(self.name,)) from exc
        return [float(score) for score in scores]
