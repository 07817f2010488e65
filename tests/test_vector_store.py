"""Tests for vector_store.py: build_chroma_collection and ChromaSemanticSearch.

Uses real Chroma PersistentClient via pytest's tmp_path fixture so no mocking
of Chroma internals is needed.  Embeddings are tiny synthetic vectors (3-dim)
to keep tests fast and deterministic.
"""
from __future__ import annotations

import asyncio

import pytest

from rag_rerank.schema import Chunk, SearchMatch
from rag_rerank.vector_store import ChromaSemanticSearch, build_chroma_collection


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_chunk(chunk_id: str, content: str, document_id: str = "D-1") -> Chunk:
    return Chunk(chunk_id=chunk_id, document_id=document_id, content=content, metadata={"section": "S"})


# Three-dimensional test embeddings; avoids the OpenAI dependency entirely.
EMBS = {
    "C-remote":        [1.0, 0.0, 0.0],
    "C-international": [0.8, 0.6, 0.0],
    "C-security":      [0.0, 0.0, 1.0],
}


@pytest.fixture()
def collection(tmp_path):
    chunks = [
        _make_chunk("C-remote",        "remote work policy", "D-remote"),
        _make_chunk("C-international", "international work policy", "D-travel"),
        _make_chunk("C-security",      "security policy lost devices", "D-security"),
    ]
    embeddings = [EMBS[c.chunk_id] for c in chunks]
    return build_chroma_collection(
        chunks=chunks,
        embeddings=embeddings,
        collection_name="test_collection",
        persist_dir=str(tmp_path),
    )


def _search(collection, embedding, document_ids=None, threshold=0.0, limit=20) -> list[SearchMatch]:
    return asyncio.run(ChromaSemanticSearch(collection).search(embedding, document_ids, threshold, limit))


# ---------------------------------------------------------------------------
# build_chroma_collection
# ---------------------------------------------------------------------------

class TestBuildChromaCollection:
    def test_collection_has_correct_count(self, collection):
        assert collection.count() == 3

    def test_document_id_stored_in_metadata(self, collection):
        record = collection.get(ids=["C-remote"], include=["metadatas"])
        assert record["metadatas"][0] == {"section": "S", "document_id": "D-remote"}

    def test_rebuilds_when_collection_already_exists(self, tmp_path):
        build_chroma_collection(
            chunks=[_make_chunk("C-1", "first")],
            embeddings=[[1.0, 0.0]],
            collection_name="dup_test",
            persist_dir=str(tmp_path),
        )
        col2 = build_chroma_collection(
            chunks=[_make_chunk("C-2", "second"), _make_chunk("C-3", "third")],
            embeddings=[[1.0, 0.0], [0.0, 1.0]],
            collection_name="dup_test",
            persist_dir=str(tmp_path),
        )
        assert col2.count() == 2

    def test_empty_chunk_list(self, tmp_path):
        col = build_chroma_collection(
            chunks=[], embeddings=[], collection_name="empty", persist_dir=str(tmp_path)
        )
        assert col.count() == 0


# ---------------------------------------------------------------------------
# ChromaSemanticSearch
# ---------------------------------------------------------------------------

class TestChromaSemanticSearch:
    def test_nearest_first_with_similarity_score(self, collection):
        matches = _search(collection, [1.0, 0.0, 0.0])
        assert matches[0].id == "C-remote"
        assert matches[0].score == pytest.approx(1.0, abs=1e-4)
        assert matches[1].id == "C-international"
        assert matches[1].score == pytest.approx(0.8, abs=1e-4)
        assert matches[0].content == "remote work policy"

    def test_threshold_drops_dissimilar_chunks(self, collection):
        matches = _search(collection, [1.0, 0.0, 0.0], threshold=0.7)
        assert [m.id for m in matches] == ["C-remote", "C-international"]

    def test_restricted_to_document_ids(self, collection):
        matches = _search(collection, [1.0, 0.0, 0.0], document_ids=["D-security", "D-travel"])
        assert {m.metadata["document_id"] for m in matches} <= {"D-security", "D-travel"}
        assert matches[0].id == "C-international"

    def test_limit(self, collection):
        assert len(_search(collection, [1.0, 0.0, 0.0], limit=1)) == 1

    def test_empty_collection_returns_nothing(self, tmp_path):
        col = build_chroma_collection(
            chunks=[], embeddings=[], collection_name="empty_search", persist_dir=str(tmp_path)
        )
        assert _search(col, [1.0, 0.0, 0.0]) == []
