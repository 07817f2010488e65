from __future__ import annotations

from .embeddings import OpenAIEmbedder
from .lexical import LexicalIndex
from .retrieval import HybridRetriever
from .schema import Chunk
from .vector_store import ChromaSemanticSearch, build_chroma_collection


async def build_retriever(
    chunks: list[Chunk],
    embedder: OpenAIEmbedder,
    collection_name: str = "rag_rerank_chunks",
    persist_dir: str = "artifacts/chroma",
    synonyms: dict[str, list[str]] | None = None,
) -> HybridRetriever:
    """Index chunks for both halves of stage 1 and return the retriever.

    Args:
        chunks: Chunk records to index.
        embedder: Embedding client used for chunk and query vectors.
        collection_name: Name for the persisted Chroma collection.
        persist_dir: Local path for Chroma persistence.
        synonyms: Optional term-to-synonyms map for lexical query expansion.

    Returns:
        A :class:`HybridRetriever` over a Chroma collection and a BM25 index.
    """
    vectors = await embedder.embed([chunk.content for chunk in chunks]) if chunks else None
    collection = build_chroma_collection(
        chunks=chunks,
        embeddings=vectors.tolist() if vectors is not None else [],
        collection_name=collection_name,
        persist_dir=persist_dir,
    )
    return HybridRetriever(
        embedder=embedder,
        semantic_search=ChromaSemanticSearch(collection),
        lexical_index=LexicalIndex(chunks),
        synonyms=synonyms,
    )
