"""OpenTelemetry tracing helpers for the retrieval and re-ranking pipeline.

Key concepts:
- Span          : a single named, timed unit of work (stage 1, stage 2, one rerank call)
- Trace         : a tree of spans that together describe one end-to-end request
- TracerProvider: the entry point that configures how spans are created and exported
- Exporter      : receives completed spans and forwards them to an observability backend

Usage with an OTLP backend (e.g. Arize Phoenix):

    from rag_rerank.tracing import configure_tracing, get_tracer

    configure_tracing(endpoint="http://localhost:6006/v1/traces", service_name="rag-rerank")
    tracer = get_tracer("rag-rerank.orchestrator")

Usage without a backend (development / testing):

    configure_tracing()   # uses ConsoleSpanExporter by default
    with traced_stage(get_tracer("dev"), "stage1", "remote work policy") as span:
        span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, 12)
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

# ---------------------------------------------------------------------------
# OpenInference semantic-convention attribute names
# ---------------------------------------------------------------------------

ATTR_INPUT_VALUE = "input.value"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"
ATTR_EMBEDDING_MODEL_NAME = "embedding.model_name"
ATTR_RERANKER_MODEL_NAME = "reranker.model_name"
ATTR_RERANKER_PROVIDER = "reranker.provider"
ATTR_RERANKER_TOP_K = "reranker.top_k"
ATTR_RERANKER_INPUT_DOCUMENTS = "reranker.input_documents"
ATTR_RERANKER_OUTPUT_DOCUMENTS = "reranker.output_documents"
ATTR_FALLBACK_USED = "rerank.fallback_used"
ATTR_CACHE_HIT = "rerank.cache_hit"

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "rag-rerank",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register a global TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint URL to send traces to. When *None* and no
            custom *exporter* is given, spans are printed to stdout via
            :class:`~opentelemetry.sdk.trace.export.ConsoleSpanExporter`.
        service_name: Label that identifies this service in the backend.
        exporter: An already-constructed exporter (e.g. ``InMemorySpanExporter``
            in tests). When provided, *endpoint* is ignored.

    Returns:
        The configured provider, also installed as the global OTel provider.
    """
    global _provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint.  Install it with:\n"
                "  pip install 'rag-rerank[otlp]'"
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the configured provider, or the no-op global one."""
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


@contextmanager
def traced_stage(
    tracer: trace.Tracer, name: str, query: str, **attributes: Any
) -> Iterator[trace.Span]:
    """Record a pipeline stage as a span.

    The span carries the query as ``input.value`` plus any extra attributes,
    ends with OK status on normal exit, and with ERROR status (and the
    recorded exception) when the body raises. The exception is re-raised.

    Example::

        with traced_stage(tracer, "stage2", query, **{ATTR_RERANKER_TOP_K: 20}) as span:
            results = await engine.rerank(request)
            span.set_attribute(ATTR_RERANKER_OUTPUT_DOCUMENTS, len(results))
    """
    with tracer.start_as_current_span(name) as span:
        span.set_attribute(ATTR_INPUT_VALUE, query)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(trace.StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise
        span.set_status(trace.StatusCode.OK)
