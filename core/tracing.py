import os

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace.export import ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

log = structlog.get_logger(__name__)


def init_tracer(app_name: str = "virdis-fiat-conversion"):
    """Initialize OpenTelemetry tracer with OTLP exporter"""
    provider = TracerProvider(resource=Resource.create({"service.name": app_name}))

    # The OTLP exporter targets localhost:4317 by default. Without a collector
    # (local runs, tests) spans go to a console exporter instead, so the tracer
    # keeps working and no background export errors are logged.
    # DISABLE_TRACING forces the console exporter.
    if os.getenv("DISABLE_TRACING", "").lower() in {"1", "true", "yes"}:
        exporter = ConsoleSpanExporter()
    else:
        try:
            # Reads OTEL_EXPORTER_OTLP_ENDPOINT from the environment when set
            exporter = OTLPSpanExporter()
        except Exception as exc:  # pragma: no cover – only hit when collector absent
            log.warning("OTLP exporter unavailable, tracing disabled", error=str(exc))
            exporter = ConsoleSpanExporter()  # writes spans to stdout

    # Batch export off the request path
    provider.add_span_processor(BatchSpanProcessor(exporter))

    # Install globally so get_tracer and the FastAPI instrumentation share it
    trace.set_tracer_provider(provider)


def get_tracer(name: str):
    """Tracer bound to the globally installed provider."""
    return trace.get_tracer(name)
