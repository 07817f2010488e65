from __future__ import annotations

import asyncio
import re
from enum import Enum

from rank_bm25 import BM25Okapi

from .schema import Chunk, SearchMatch

_TOKEN_PATTERN = re.compile(r"\w+")


class LexicalSearchType(str, Enum):
    BASIC = "basic"
    BM25 = "bm25"
    PHRASE = "phrase"
    PROXIMITY = "proximity"


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text.lower())


def expand_query(query: str, synonyms: dict[str, list[str]], max_synonyms: int = 3) -> str:
    """Append up to ``max_synonyms`` known synonyms for each query term.

    Args:
        query: Whitespace-normalized query string.
        synonyms: Lower-cased term to synonym list mapping.
        max_synonyms: Cap on synonyms added per term.

    Returns:
        The original query followed by any added synonyms.
    """
    extra: list[str] = []
    for term in query.split(" "):
        for synonym in synonyms.get(term.lower(), [])[:max_synonyms]:
            if synonym not in extra:
                extra.append(synonym)
    return " ".join([query, *extra]) if extra else query


def _phrase_occurrences(query_tokens: list[str], tokens: list[str]) -> int:
    width = len(query_tokens)
    if width == 0 or width > len(tokens):
        return 0
    return sum(1 for start in range(len(tokens) - width + 1) if tokens[start : start + width] == query_tokens)


def _proximity_chains(query_tokens: list[str], tokens: list[str], distance: int) -> int:
    """Count start positions from which every query term follows the previous within ``distance``."""
    if not query_tokens:
        return 0
    positions: dict[str, list[int]] = {}
    for index, token in enumerate(tokens):
        positions.setdefault(token, []).append(index)

    chains = 0
    for start in positions.get(query_tokens[0], []):
        current = start
        for term in query_tokens[1:]:
            following = [pos for pos in positions.get(term, []) if current < pos <= current + distance]
            if not following:
                break
            current = following[0]
        else:
            chains += 1
    return chains


class LexicalIndex:
    """Keyword index over chunks supporting basic, BM25, phrase, and proximity scoring."""

    def __init__(self, chunks: list[Chunk]):
        self.chunks = chunks
        self._tokens = [tokenize(chunk.content) for chunk in chunks]
        self._bm25 = BM25Okapi(self._tokens) if chunks else None

    async def search(
        self,
        query: str,
        document_ids: list[str] | None,
        limit: int = 20,
        search_type: LexicalSearchType = LexicalSearchType.BM25,
        proximity_distance: int = 5,
    ) -> list[SearchMatch]:
        return await asyncio.to_thread(
            self._search, query, document_ids, limit, search_type, proximity_distance
        )

    def _search(
        self,
        query: str,
        document_ids: list[str] | None,
        limit: int,
        search_type: LexicalSearchType,
        proximity_distance: int,
    ) -> list[SearchMatch]:
        query_tokens = tokenize(query)
        if not query_tokens or not self.chunks:
            return []

        if search_type is LexicalSearchType.BM25:
            scores = [float(score) for score in self._bm25.get_scores(query_tokens)]
        elif search_type is LexicalSearchType.PHRASE:
            counts = [_phrase_occurrences(query_tokens, tokens) for tokens in self._tokens]
            scores = [count / (count + 1) for count in counts]
        elif search_type is LexicalSearchType.PROXIMITY:
            counts = [_proximity_chains(query_tokens, tokens, proximity_distance) for tokens in self._tokens]
            scores = [count / (count + 1) for count in counts]
        else:
            unique_terms = set(query_tokens)
            scores = [len(unique_terms & set(tokens)) / len(unique_terms) for tokens in self._tokens]

        allowed = set(document_ids) if document_ids else None
        ranked = sorted(range(len(scores)), key=lambda idx: scores[idx], reverse=True)

        matches: list[SearchMatch] = []
        for idx in ranked:
            chunk = self.chunks[idx]
            if scores[idx] <= 0 or (allowed is not None and chunk.document_id not in allowed):
                continue
            matches.append(
                SearchMatch(
                    id=chunk.chunk_id,
                    content=chunk.content,
                    score=scores[idx],
                    metadata={**chunk.metadata, "document_id": chunk.document_id},
                )
            )
            if len(matches) >= limit:
                break
        return matches
