from __future__ import annotations

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .errors import ProviderError


class OpenAIEmbedder:
    """Query embedding client for the semantic half of stage 1."""

    def __init__(self, model: str = "text-embedding-3-small", client: AsyncOpenAI | None = None):
        self.model = model
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def embed(self, texts: list[str]) -> np.ndarray:
        """Generate embedding vectors for input texts.

        Args:
            texts: Input strings to embed.

        Returns:
            A `float32` NumPy matrix shaped `(len(texts), embedding_dim)`.
        """
        try:
            response = await self._get_client().embeddings.create(model=self.model, input=texts)
        except OpenAIError as exc:
            raise ProviderError(f"OpenAI embeddings API error: {exc}", provider_names=("openai",)) from exc
        vectors = [row.embedding for row in response.data]
        return np.array(vectors, dtype=np.float32)

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed([text]))[0].tolist()
