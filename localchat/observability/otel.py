"""
OpenTelemetry configuration and initialization.

This module sets up observability with OpenTelemetry including:
- Automatic instrumentation for FastAPI and HTTPx
- Custom metrics for tool executions, retrievals and model requests
- Resource detection and labeling
- OTLP exporter for sending traces to backend
"""

import logging
import os
from typing import Dict, Any, Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind

from localchat.config import settings

logger = logging.getLogger(__name__)

# Global variables
_meter: Optional[metrics.Meter] = None
_tracer: Optional[trace.Tracer] = None
_tool_counter: Optional[metrics.Counter] = None
_tool_duration_histogram: Optional[metrics.Histogram] = None
_retrieval_counter: Optional[metrics.Counter] = None
_retrieval_duration_histogram: Optional[metrics.Histogram] = None
_model_metrics: Optional[Dict[str, Any]] = None


def get_meter() -> metrics.Meter:
    """Get the OpenTelemetry meter."""
    if _meter is None:
        return metrics.get_meter(__name__)
    return _meter


def get_tracer() -> trace.Tracer:
    """Get the OpenTelemetry tracer."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def init_telemetry(
    service_name: str = "localchat-agent",
    service_version: str = "1.0.0",
    environment: Optional[str] = None,
) -> None:
    """
    Initialize OpenTelemetry with proper configuration.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        environment: Environment (dev, staging, prod)
    """
    global _meter, _tracer

    resource = Resource.create(
        attributes={
            "service.name": service_name,
            "service.version": service_version,
            "service.namespace": "localchat",
            "deployment.environment": environment or os.getenv("ENVIRONMENT", "development"),
            "process.pid": os.getpid(),
        }
    )

    trace_provider = TracerProvider(resource=resource)

    metric_readers = []
    if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
        trace_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT),
                export_interval_millis=30000,
            )
        )

    trace.set_tracer_provider(trace_provider)
    _tracer = trace_provider.get_tracer(__name__)

    meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
    metrics.set_meter_provider(meter_provider)
    _meter = meter_provider.get_meter(__name__)

    _init_custom_metrics()
    _setup_instrumentation()

    logger.info(
        "OpenTelemetry initialized",
        extra={
            "service_name": service_name,
            "otel_endpoint": settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            "environment": environment or os.getenv("ENVIRONMENT", "development")
        }
    )


def _init_custom_metrics() -> None:
    """Initialize custom metrics for agent operations."""
    global _tool_counter, _tool_duration_histogram
    global _retrieval_counter, _retrieval_duration_histogram, _model_metrics

    if not _meter:
        return

    _tool_counter = _meter.create_counter(
        name="tool_executions_total",
        description="Total number of tool executions",
        unit="1"
    )

    _tool_duration_histogram = _meter.create_histogram(
        name="tool_execution_duration_seconds",
        description="Duration of tool executions",
        unit="s"
    )

    _retrieval_counter = _meter.create_counter(
        name="rag_retrievals_total",
        description="Total number of retrieval queries",
        unit="1"
    )

    _retrieval_duration_histogram = _meter.create_histogram(
        name="rag_retrieval_duration_seconds",
        description="Duration of retrieval queries",
        unit="s"
    )

    _model_metrics = {
        "requests": _meter.create_counter(
            name="model_turns_total",
            description="Total number of orchestrated model turns",
            unit="1"
        ),
        "rounds": _meter.create_histogram(
            name="model_turn_rounds",
            description="Model requests issued per turn",
            unit="1"
        ),
        "duration": _meter.create_histogram(
            name="model_turn_duration_seconds",
            description="Wall-clock duration of a turn",
            unit="s"
        ),
    }

    logger.info("Custom OpenTelemetry metrics initialized")


def _setup_instrumentation() -> None:
    """Set up automatic instrumentation for common libraries."""
    FastAPIInstrumentor().instrument()

    # Model service, embedding, search and vector store calls all go through httpx
    HTTPXClientInstrumentor().instrument()

    logger.info("Automatic instrumentation configured")


def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Optional[Dict[str, Any]] = None
) -> trace.Span:
    """
    Create a new span with common attributes.

    Args:
        name: Name of the span
        kind: Kind of span (client, server, internal, etc.)
        attributes: Additional attributes to add to the span

    Returns:
        The created span
    """
    tracer = get_tracer()

    span_attrs = {
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.namespace": "localchat",
    }
    if attributes:
        span_attrs.update(attributes)

    return tracer.start_span(name, kind=kind, attributes=span_attrs)


def record_tool_execution(
    tool_name: str,
    execution_time: float,
    success: bool,
    error_type: Optional[str] = None,
) -> None:
    """
    Record metrics for a tool execution.

    Args:
        tool_name: Name of the tool executed
        execution_time: Time taken to execute the tool in seconds
        success: Whether the execution was successful
        error_type: Type of error if execution failed
    """
    if not _tool_counter or not _tool_duration_histogram:
        return

    _tool_counter.add(
        1,
        attributes={
            "tool_name": tool_name,
            "success": str(success),
            "error_type": error_type or "none",
        }
    )

    _tool_duration_histogram.record(
        execution_time,
        attributes={
            "tool_name": tool_name,
            "success": str(success),
        }
    )


def record_retrieval(
    surface: str,
    results_count: int,
    retrieval_time: float,
    query_length: int,
) -> None:
    """
    Record metrics for a retrieval query.

    Args:
        surface: Which collection was searched (documents, conversations)
        results_count: Number of chunks returned
        retrieval_time: Time taken in seconds
        query_length: Length of the query text
    """
    if not _retrieval_counter or not _retrieval_duration_histogram:
        return

    _retrieval_counter.add(
        1,
        attributes={
            "surface": surface,
            "results_count_bucket": _bucket_results_count(results_count)
        }
    )

    _retrieval_duration_histogram.record(
        retrieval_time,
        attributes={
            "surface": surface,
            "query_length_bucket": _bucket_query_length(query_length)
        }
    )


def record_model_request(model: str, rounds: int, duration: float, success: bool = True) -> None:
    """
    Record a completed (or failed) orchestrated turn.

    Args:
        model: Model name
        rounds: Number of model requests issued
        duration: Turn duration in seconds
        success: Whether the turn finished without error
    """
    if not _model_metrics:
        return

    attributes = {"model": model, "success": str(success)}
    _model_metrics["requests"].add(1, attributes=attributes)
    _model_metrics["rounds"].record(rounds, attributes=attributes)
    _model_metrics["duration"].record(duration, attributes=attributes)


def _bucket_results_count(count: int) -> str:
    """Bucket the results count for metrics."""
    if count == 0:
        return "0"
    elif count <= 5:
        return "1-5"
    elif count <= 10:
        return "6-10"
    elif count <= 20:
        return "11-20"
    else:
        return "20+"


def _bucket_query_length(length: int) -> str:
    """Bucket the query length for metrics."""
    if length <= 10:
        return "short"
    elif length <= 30:
        return "medium"
    else:
        return "long"


def add_span_attributes(attributes: Dict[str, Any]) -> None:
    """
    Add attributes to the current active span.

    Args:
        attributes: Dictionary of attributes to add
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        for key, value in attributes.items():
            span.set_attribute(key, str(value))


def add_span_event(name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
    """
    Add an event to the current active span.

    Args:
        name: Name of the event
        attributes: Event attributes
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name, attributes or {})
