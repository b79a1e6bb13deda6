"""
layerhost - Tracing with OpenTelemetry

Spans around ``HostBuilder.build()`` (one per phase) and around host start
and stop. Until :func:`setup_tracing` installs the SDK provider the API's
no-op provider is in effect and spans are free.

Usage:
    from observability.tracing import setup_tracing, TracingConfig

    setup_tracing(TracingConfig(console_export=True))
    host = create_default_builder().build()   # emits host.build.* spans
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import SpanKind, Status, StatusCode

TRACER_NAME = "layerhost"

_provider: Optional[TracerProvider] = None


@dataclass
class TracingConfig:
    """Settings for :func:`setup_tracing`."""

    service_name: str = "layerhost"
    sample_rate: float = field(default_factory=lambda: float(os.getenv("LAYERHOST_TRACE_SAMPLE_RATE", "1.0")))
    console_export: bool = field(
        default_factory=lambda: os.getenv("LAYERHOST_TRACE_CONSOLE", "false").lower() == "true"
    )
    resource_attributes: Dict[str, str] = field(default_factory=dict)


def setup_tracing(config: Optional[TracingConfig] = None) -> TracerProvider:
    """Install the SDK tracer provider globally. Idempotent."""
    global _provider
    if _provider is not None:
        return _provider

    config = config or TracingConfig()
    rate = min(max(config.sample_rate, 0.0), 1.0)
    _provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: config.service_name, **config.resource_attributes}),
        sampler=ParentBased(root=TraceIdRatioBased(rate)),
    )
    if config.console_export:
        _provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(_provider)
    return _provider


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush and drop the installed provider."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: SpanKind = SpanKind.INTERNAL,
    tracer_name: str = TRACER_NAME,
) -> Iterator[trace.Span]:
    """
    Run the block inside a span; an exception escaping it fails the span.

    Example:
        >>> with create_span("host.build.container_build", attributes={"host.build.phase": "container_build"}):
        ...     provider = factory.create_service_provider(container_builder)
    """
    with get_tracer(tracer_name).start_as_current_span(
        name,
        kind=kind,
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, f"{type(e).__name__}: {e}"))
            raise
