from __future__ import annotations

from dataclasses import asdict
import json
from pathlib import Path

from .schema import Chunk


def _load_jsonl(path: str | Path) -> list[dict]:
    records: list[dict] = []
    with Path(path).open("r", encoding="utf-8") as file_handle:
        for line in file_handle:
            if line.strip():
                records.append(json.loads(line))
    return records


def save_chunks(chunks: list[Chunk], path: str | Path) -> None:
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)

    with destination.open("w", encoding="utf-8") as file_handle:
        for chunk in chunks:
            file_handle.write(json.dumps(asdict(chunk)) + "\n")


def load_chunks(path: str | Path) -> list[Chunk]:
    return [Chunk(**record) for record in _load_jsonl(path)]


def load_synonyms(path: str | Path) -> dict[str, list[str]]:
    """Read a JSON object mapping a term to its synonyms; keys are lower-cased."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return {str(term).lower(): [str(synonym) for synonym in synonyms] for term, synonyms in raw.items()}
