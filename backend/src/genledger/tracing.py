"""OpenTelemetry setup and the job-scoped spans used by the completion flow."""
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import UUID

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from genledger.config import settings

# Health and metrics probes would otherwise dominate sampled traces
EXCLUDED_URLS = "health,health/ready,metrics"


def setup_tracing(app, engine=None) -> None:  # noqa: ANN001
    """
    Export spans over OTLP/HTTP and instrument the app and its database engine.

    Args:
        app: FastAPI application instance
        engine: Async engine whose sync engine should be instrumented
    """
    resource = Resource(attributes={SERVICE_NAME: settings.otel_service_name, SERVICE_VERSION: "0.1.0"})
    sampler = ParentBased(TraceIdRatioBased(settings.otel_sample_ratio))
    provider = TracerProvider(resource=resource, sampler=sampler)
    exporter = OTLPSpanExporter(endpoint=f"{settings.otel_exporter_otlp_endpoint.rstrip('/')}/v1/traces")
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> trace.Tracer:
    """No-op until ``setup_tracing`` installs a provider."""
    return trace.get_tracer(name)


@contextmanager
def job_span(tracer: trace.Tracer, name: str, job_id: UUID, trigger: Optional[str] = None) -> Iterator[trace.Span]:
    """Span tagged with the job id and, when known, the trigger driving it."""
    with tracer.start_as_current_span(name) as span:
        span.set_attribute("job.id", str(job_id))
        if trigger:
            span.set_attribute("job.trigger", trigger)
        yield span
