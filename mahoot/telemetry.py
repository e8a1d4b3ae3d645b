"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for feed allocation and ingestion

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

from mahoot.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "End-to-end latency of feed generation",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

FEED_POSTS_SERVED_TOTAL = Counter(
    "feed_posts_served_total",
    "Posts placed on a feed page (each one is a new exposure)",
)

FEED_EMPTY_TOTAL = Counter(
    "feed_empty_total",
    "Feed requests short-circuited to an empty page",
    ["reason"],  # 'no_followees' | 'budget_exhausted' | 'no_capacity'
)

VIEW_RECORDS_TOTAL = Counter(
    "view_records_total",
    "View record insert attempts",
    ["outcome"],  # 'inserted' | 'duplicate'
)

INGESTION_EVENTS_TOTAL = Counter(
    "ingestion_events_total",
    "Records processed by the ingestion worker",
    ["type"],
)

FOLLOWEE_REBALANCE_TOTAL = Counter(
    "followee_rebalance_total",
    "Default-tier quota recalculations triggered by followee count changes",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing(service_name: str | None = None) -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.otel_enabled:
        logger.info("OTel tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": service_name or settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument popular libraries so their spans appear in traces
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
