from __future__ import annotations

import asyncio
from pathlib import Path

import chromadb

from .schema import Chunk, SearchMatch


def build_chroma_collection(
    chunks: list[Chunk],
    embeddings: list[list[float]],
    collection_name: str,
    persist_dir: str = "artifacts/chroma",
):
    """Create (or replace) a persistent cosine-space Chroma collection from chunk embeddings.

    Args:
        chunks: Chunk records to index.
        embeddings: Embedding vectors aligned to chunks.
        collection_name: Chroma collection name.
        persist_dir: Local path for Chroma persistence.

    Returns:
        The created Chroma collection instance.
    """
    Path(persist_dir).mkdir(parents=True, exist_ok=True)
    client = chromadb.PersistentClient(path=persist_dir)
    existing = {getattr(collection, "name", collection) for collection in client.list_collections()}
    if collection_name in existing:
        client.delete_collection(collection_name)

    collection = client.create_collection(name=collection_name, metadata={"hnsw:space": "cosine"})
    if chunks:
        collection.add(
            ids=[chunk.chunk_id for chunk in chunks],
            embeddings=embeddings,
            documents=[chunk.content for chunk in chunks],
            metadatas=[{**chunk.metadata, "document_id": chunk.document_id} for chunk in chunks],
        )
    return collection


class ChromaSemanticSearch:
    """Similarity search over a Chroma collection, restricted to a document-id set."""

    def __init__(self, collection):
        self.collection = collection

    async def search(
        self,
        query_embedding: list[float],
        document_ids: list[str] | None,
        threshold: float = 0.0,
        limit: int = 20,
    ) -> list[SearchMatch]:
        return await asyncio.to_thread(self._search, query_embedding, document_ids, threshold, limit)

    def _search(
        self,
        query_embedding: list[float],
        document_ids: list[str] | None,
        threshold: float,
        limit: int,
    ) -> list[SearchMatch]:
        available = self.collection.count()
        if available == 0:
            return []
        where = {"document_id": {"$in": list(document_ids)}} if document_ids else None
        response = self.collection.query(
            query_embeddings=[query_embedding],
            n_results=min(limit, available),
            where=where,
        )

        ids = response["ids"][0]
        docs = response["documents"][0]
        distances = response["distances"][0]
        metadatas = response["metadatas"][0]

        matches = [
            SearchMatch(id=chunk_id, content=text, score=float(1.0 - distance), metadata=dict(metadata or {}))
            for chunk_id, text, distance, metadata in zip(ids, docs, distances, metadatas, strict=True)
        ]
        return [match for match in matches if match.score >= threshold]
