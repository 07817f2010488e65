"""Tests for analytics.py: sinks and the fire-and-forget safe_record helper."""
from __future__ import annotations

import asyncio
import logging

import pytest

from rag_rerank.analytics import (
    MONITORING_LOGS,
    SESSION_QUERIES,
    InMemoryAnalyticsSink,
    LoggingAnalyticsSink,
    safe_record,
)


class TestInMemoryAnalyticsSink:
    def test_rows_grouped_by_table(self):
        sink = InMemoryAnalyticsSink()
        asyncio.run(sink.record(MONITORING_LOGS, {"log_type": "performance"}))
        asyncio.run(sink.record(SESSION_QUERIES, {"session_id": "u1"}))
        assert sink.rows_for(MONITORING_LOGS) == [{"log_type": "performance"}]
        assert sink.rows_for(SESSION_QUERIES) == [{"session_id": "u1"}]

    def test_unreachable_store_raises(self):
        sink = InMemoryAnalyticsSink(reachable=False)
        with pytest.raises(ConnectionError):
            asyncio.run(sink.ping())


class TestLoggingAnalyticsSink:
    def test_row_logged_as_json(self, caplog):
        with caplog.at_level(logging.INFO, logger="rag_rerank.analytics"):
            asyncio.run(LoggingAnalyticsSink().record(SESSION_QUERIES, {"results_count": 3}))
        assert 'session_queries {"results_count": 3}' in caplog.text


class TestSafeRecord:
    def test_no_sink_is_noop(self):
        asyncio.run(safe_record(None, MONITORING_LOGS, {"x": 1}))

    def test_failure_logged_not_raised(self, caplog):
        sink = InMemoryAnalyticsSink(reachable=False)
        with caplog.at_level(logging.WARNING, logger="rag_rerank.analytics"):
            asyncio.run(safe_record(sink, MONITORING_LOGS, {"x": 1}))
        assert "Failed to write monitoring_logs analytics row" in caplog.text
