"""Fire-and-forget analytics sinks for request and performance logging."""
from __future__ import annotations

import json
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MONITORING_LOGS = "monitoring_logs"
SESSION_QUERIES = "session_queries"


class AnalyticsSink(Protocol):
    async def record(self, table: str, row: dict[str, Any]) -> None:
        ...

    async def ping(self) -> None:
        """Raise if the underlying store is unreachable."""
        ...


class LoggingAnalyticsSink:
    """Writes analytics rows to the module logger as JSON."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def record(self, table: str, row: dict[str, Any]) -> None:
        logger.log(self.level, "%s %s", table, json.dumps(row, default=str))

    async def ping(self) -> None:
        return None


class InMemoryAnalyticsSink:
    """Keeps rows in memory; ``reachable=False`` simulates an unavailable store."""

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.rows: list[tuple[str, dict[str, Any]]] = []

    async def record(self, table: str, row: dict[str, Any]) -> None:
        if not self.reachable:
            raise ConnectionError("analytics store unreachable")
        self.rows.append((table, row))

    async def ping(self) -> None:
        if not self.reachable:
            raise ConnectionError("analytics store unreachable")

    def rows_for(self, table: str) -> list[dict[str, Any]]:
        return [row for name, row in self.rows if name == table]


async def safe_record(sink: AnalyticsSink | None, table: str, row: dict[str, Any]) -> None:
    """Record a row, logging and discarding any failure."""
    if sink is None:
        return
    try:
        await sink.record(table, row)
    except Exception as exc:
        logger.warning("Failed to write %s analytics row: %s", table, exc)
