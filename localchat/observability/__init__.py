"""Observability module with conditional OpenTelemetry support.

This module provides observability functions that work regardless of whether
OpenTelemetry is enabled. When disabled, noop implementations are used to
avoid conditional checks throughout the codebase.
"""

from typing import Any, Dict, Optional

from localchat.config import settings

if settings.OTEL_ENABLED:
    from localchat.observability.otel import (
        init_telemetry,
        get_meter,
        get_tracer,
        create_span as _create_span,
        record_tool_execution,
        record_retrieval,
        record_model_request,
        add_span_attributes,
        add_span_event,
    )

    create_span = _create_span
else:
    class NoopSpan:
        """Noop span that does nothing but provides the span interface."""

        def set_attribute(self, key: str, value: Any) -> None:
            """Noop: Set attribute."""
            pass

        def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
            """Noop: Add event."""
            pass

        def end(self) -> None:
            """Noop: End span."""
            pass

        def is_recording(self) -> bool:
            """Noop: Always returns False."""
            return False

        def __enter__(self) -> "NoopSpan":
            return self

        def __exit__(self, *args) -> None:
            pass

    def init_telemetry(
        service_name: str = "localchat-agent",
        service_version: str = "1.0.0",
        environment: Optional[str] = None,
    ) -> None:
        """Noop: OpenTelemetry is disabled."""
        pass

    def get_meter():
        """Noop: Returns None when OpenTelemetry is disabled."""
        return None

    def get_tracer():
        """Noop: Returns None when OpenTelemetry is disabled."""
        return None

    def create_span(
        name: str,
        kind: Any = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> NoopSpan:
        """Noop: Returns a NoopSpan when OpenTelemetry is disabled."""
        return NoopSpan()

    def record_tool_execution(
        tool_name: str,
        execution_time: float,
        success: bool,
        error_type: Optional[str] = None,
    ) -> None:
        """Noop: OpenTelemetry is disabled."""
        pass

    def record_retrieval(
        surface: str,
        results_count: int,
        retrieval_time: float,
        query_length: int,
    ) -> None:
        """Noop: OpenTelemetry is disabled."""
        pass

    def record_model_request(
        model: str,
        rounds: int,
        duration: float,
        success: bool = True,
    ) -> None:
        """Noop: OpenTelemetry is disabled."""
        pass

    def add_span_attributes(attributes: Dict[str, Any]) -> None:
        """Noop: OpenTelemetry is disabled."""
        pass

    def add_span_event(name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        """Noop: OpenTelemetry is disabled."""
        pass


__all__ = [
    "init_telemetry",
    "get_meter",
    "get_tracer",
    "create_span",
    "record_tool_execution",
    "record_retrieval",
    "record_model_request",
    "add_span_attributes",
    "add_span_event",
]
