"""OpenTelemetry tracing configuration for background jobs."""
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from recurring_billing.config import settings


def setup_tracing(engine=None) -> None:  # noqa: ANN001
    """
    Configure OpenTelemetry tracing with SQLAlchemy instrumentation.

    Does nothing unless an OTLP endpoint is configured.

    Args:
        engine: Optional async engine to instrument; all engines otherwise
    """
    if not settings.otel_exporter_otlp_endpoint:
        return

    resource = Resource(attributes={SERVICE_NAME: settings.otel_service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)

    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    else:
        SQLAlchemyInstrumentor().instrument()


def get_tracer(name: str) -> trace.Tracer:
    """
    Get a tracer instance for creating custom spans.

    Args:
        name: Tracer name (typically module name)

    Returns:
        Tracer: OpenTelemetry tracer instance
    """
    return trace.get_tracer(name)
