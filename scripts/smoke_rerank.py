import asyncio
import json

from rag_rerank.handlers import build_service, handle_health, handle_rerank
from rag_rerank.settings import Settings

DOCUMENTS = [
    {"id": "doc-1", "content": "Employees may work remotely. VPN is required for remote work.", "initial_score": 0.62},
    {"id": "doc-2", "content": "Lost devices must be reported within one hour.", "initial_score": 0.71},
    {"id": "doc-3", "content": "Remote work from another country is capped at 14 days.", "initial_score": 0.55},
]


async def main() -> None:
    """Re-rank a tiny corpus with the offline heuristic provider and print the responses."""
    service = build_service(Settings())
    payload = {
        "query": "remote work VPN",
        "documents": DOCUMENTS,
        "userId": "smoke-test",
        "rerankingProvider": "heuristic",
        "topK": 3,
    }
    status, body = await handle_rerank(service, payload)
    print(status, json.dumps([(r["id"], round(r["reranking_score"], 3)) for r in body["results"]]))
    status, body = await handle_health(service)
    print(status, body["status"], body["warnings"])


if __name__ == "__main__":
    asyncio.run(main())
