import argparse
import asyncio
import json

from rag_rerank.embeddings import OpenAIEmbedder
from rag_rerank.handlers import build_service, handle_two_stage
from rag_rerank.io_utils import load_chunks, load_synonyms
from rag_rerank.pipeline import build_retriever
from rag_rerank.settings import load_settings


async def main() -> None:
    """Index a JSONL chunk file and run one two-stage query against it.

    Requires OPENAI_API_KEY for embeddings; COHERE_API_KEY is optional (the
    re-ranker falls back to heuristic ranking without it).
    """
    parser = argparse.ArgumentParser()
    parser.add_argument("query")
    parser.add_argument("--chunks", default="data/chunks.jsonl")
    parser.add_argument("--synonyms", default=None)
    parser.add_argument("--final-limit", type=int, default=5)
    args = parser.parse_args()

    settings = load_settings()
    chunks = load_chunks(args.chunks)
    synonyms = load_synonyms(args.synonyms) if args.synonyms else None
    retriever = await build_retriever(
        chunks, OpenAIEmbedder(settings.providers.embedding_model), synonyms=synonyms
    )
    service = build_service(settings, retriever=retriever)
    payload = {
        "query": args.query,
        "documentIds": sorted({chunk.document_id for chunk in chunks}),
        "userId": "demo",
        "finalLimit": args.final_limit,
    }
    status, body = await handle_two_stage(service, payload)
    print(status, json.dumps(body, indent=2, default=str))


if __name__ == "__main__":
    asyncio.run(main())
