"""Tests for tracing.py: configure_tracing, get_tracer, traced_stage, and the
span tree produced by the two-stage orchestrator.

OTel spans are collected with InMemorySpanExporter so tests run fully offline.
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from rag_rerank.orchestrator import TwoStageOrchestrator
from rag_rerank.schema import HybridCandidate
from rag_rerank.tracing import (
    ATTR_INPUT_VALUE,
    ATTR_RERANKER_TOP_K,
    ATTR_RETRIEVAL_DOCUMENTS,
    configure_tracing,
    get_tracer,
    traced_stage,
)


# ---------------------------------------------------------------------------
# Shared in-memory exporter fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def mem_exporter() -> InMemorySpanExporter:
    """Fresh InMemorySpanExporter and a configured TracerProvider."""
    exporter = InMemorySpanExporter()
    configure_tracing(exporter=exporter, service_name="test-service")
    return exporter


# ---------------------------------------------------------------------------
# configure_tracing
# ---------------------------------------------------------------------------


class TestConfigureTracing:
    def test_returns_tracer_provider(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = configure_tracing(exporter=InMemorySpanExporter())
        assert isinstance(provider, TracerProvider)

    def test_service_name_on_resource(self):
        provider = configure_tracing(exporter=InMemorySpanExporter(), service_name="rerank-test")
        assert provider.resource.attributes["service.name"] == "rerank-test"

    def test_missing_otlp_package_raises_import_error(self, monkeypatch):
        """When the otlp exporter package is absent, a helpful ImportError is raised."""
        import builtins

        real_import = builtins.__import__

        def mock_import(name, *args, **kwargs):
            if "otlp" in name:
                raise ImportError("mocked missing package")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", mock_import)
        with pytest.raises(ImportError, match="opentelemetry-exporter-otlp"):
            configure_tracing(endpoint="http://localhost:6006/v1/traces")


# ---------------------------------------------------------------------------
# get_tracer
# ---------------------------------------------------------------------------


class TestGetTracer:
    def test_returns_tracer(self, mem_exporter):
        tracer = get_tracer("test.component")
        assert hasattr(tracer, "start_as_current_span")

    def test_spans_reach_configured_exporter(self, mem_exporter):
        with get_tracer("test.component").start_as_current_span("probe"):
            pass
        assert [s.name for s in mem_exporter.get_finished_spans()] == ["probe"]


# ---------------------------------------------------------------------------
# traced_stage
# ---------------------------------------------------------------------------


class TestTracedStage:
    def test_records_query_and_attributes(self, mem_exporter):
        with traced_stage(get_tracer("stage"), "stage2", "remote work", **{ATTR_RERANKER_TOP_K: 5}):
            pass
        span = mem_exporter.get_finished_spans()[0]
        assert span.name == "stage2"
        assert span.attributes[ATTR_INPUT_VALUE] == "remote work"
        assert span.attributes[ATTR_RERANKER_TOP_K] == 5
        assert span.status.status_code == StatusCode.OK

    def test_none_attributes_skipped(self, mem_exporter):
        with traced_stage(get_tracer("stage"), "stage1", "q", **{ATTR_RETRIEVAL_DOCUMENTS: None}):
            pass
        assert ATTR_RETRIEVAL_DOCUMENTS not in mem_exporter.get_finished_spans()[0].attributes

    def test_body_can_set_attributes(self, mem_exporter):
        with traced_stage(get_tracer("stage"), "stage1", "q") as span:
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, 12)
        assert mem_exporter.get_finished_spans()[0].attributes[ATTR_RETRIEVAL_DOCUMENTS] == 12

    def test_error_status_and_reraise(self, mem_exporter):
        with pytest.raises(RuntimeError, match="network error"):
            with traced_stage(get_tracer("stage"), "stage1", "q"):
                raise RuntimeError("network error")
        span = mem_exporter.get_finished_spans()[0]
        assert span.status.status_code == StatusCode.ERROR
        assert any(event.name == "exception" for event in span.events)


# ---------------------------------------------------------------------------
# Orchestrator span tree
# ---------------------------------------------------------------------------


class TestOrchestratorSpans:
    def _orchestrator(self, rerank_error):
        retriever = MagicMock()
        retriever.embedder.model = "text-embedding-3-small"
        retriever.retrieve = AsyncMock(
            return_value=[HybridCandidate(id="c0", content="chunk", metadata={}, hybrid_score=0.9)]
        )
        engine = MagicMock()
        engine.rerank = AsyncMock(side_effect=rerank_error)
        return TwoStageOrchestrator(retriever=retriever, engine=engine)

    def test_stage_spans_nested_under_request(self, mem_exporter):
        orchestrator = self._orchestrator(RuntimeError("reranker down"))
        asyncio.run(orchestrator.execute("What is the VPN policy?", ["D"], "user-1"))

        spans = {s.name: s for s in mem_exporter.get_finished_spans()}
        assert {"two_stage", "stage1", "stage2"} <= set(spans)
        root = spans["two_stage"]
        for name in ("stage1", "stage2"):
            assert spans[name].parent is not None
            assert spans[name].parent.span_id == root.context.span_id
        assert spans["stage1"].attributes[ATTR_RETRIEVAL_DOCUMENTS] == 1
        assert spans["stage2"].status.status_code == StatusCode.ERROR
        assert root.status.status_code == StatusCode.OK
