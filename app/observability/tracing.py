"""
Webhook tracing with OpenTelemetry.

Every delivery runs inside one ``webhook.<provider>`` span that ends tagged
with the outcome it produced. FastAPI request spans and SQLAlchemy query spans
nest around and under it when tracing is enabled.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from app.config import settings
from app.models.domain import WebhookResult


def build_resource(service_name: str, version: str, environment: str = "") -> Resource:
    """Service identity attached to every exported span."""
    attributes = {"service.name": service_name, "service.version": version}
    if environment:
        attributes["deployment.environment"] = environment
    return Resource.create(attributes)


def setup_tracing() -> TracerProvider | None:
    """
    Install a tracer provider that batches spans to the OTLP collector.

    Returns None without touching the global provider when tracing is disabled.
    """
    if not settings.tracing_enabled:
        return None

    provider = TracerProvider(
        resource=build_resource(
            settings.service_name, settings.api_version, settings.deployment_environment
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)
    return provider


def instrument_fastapi(app: Any) -> None:
    """Wrap each HTTP request in a server span. Call once after app creation."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace store queries issued through the async engine."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """Add non-None attributes to a span, stringifying non-primitive values."""
    for key, value in attributes.items():
        if value is not None:
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)
            else:
                span.set_attribute(key, str(value))


def set_span_error(span: Span, error: Exception) -> None:
    """Mark span as error and record exception."""
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


@contextmanager
def webhook_span(tracer: Tracer, provider: str) -> Iterator[Span]:
    """
    Span around one webhook delivery.

    An exception escaping the handler marks the span as failed before it
    propagates.
    """
    with tracer.start_as_current_span(
        f"webhook.{provider}", record_exception=False, set_status_on_exception=False
    ) as span:
        span.set_attribute("webhook.provider", provider)
        try:
            yield span
        except Exception as exc:
            set_span_error(span, exc)
            raise


def record_webhook_result(span: Span, result: WebhookResult) -> None:
    """Tag the span with the delivery's outcome; 5xx outcomes mark it as failed."""
    add_span_attributes(
        span,
        **{
            "webhook.outcome": result.outcome.value,
            "webhook.event_type": result.event_type,
            "http.status_code": result.status_code,
            "enduser.id": result.user_id,
        },
    )
    if result.status_code >= 500:
        span.set_status(Status(StatusCode.ERROR, result.outcome.value))
