"""
layerhost - Observability Package

Structured logging (structlog) and tracing (OpenTelemetry) used by the
configuration, container and hosting layers.

Usage:
    from observability import setup_observability, get_logger

    setup_observability(log_level="DEBUG", tracing=True)
    logger = get_logger(__name__)
"""
from observability.logging import (
    LoggingConfig,
    configure_from_section,
    get_logger,
    setup_logging,
    set_host_identity,
    unit_context,
)
from observability.tracing import (
    TracingConfig,
    create_span,
    get_tracer,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    # Logging
    "LoggingConfig",
    "setup_logging",
    "get_logger",
    "configure_from_section",
    "set_host_identity",
    "unit_context",
    # Tracing
    "TracingConfig",
    "setup_tracing",
    "get_tracer",
    "create_span",
    "shutdown_tracing",
    # Combined setup
    "setup_observability",
]


def setup_observability(
    service_name: str = "layerhost",
    log_level: str = "INFO",
    json_logs: bool = False,
    tracing: bool = False,
    console_spans: bool = False,
) -> None:
    """
    Set up logging and, when ``tracing`` is true, the OpenTelemetry SDK.

    Args:
        service_name: Reported on every log event and span resource
        log_level: Root log level
        json_logs: Render events as JSON lines
        tracing: Install the SDK tracer provider
        console_spans: Print finished spans to stdout
    """
    if tracing:
        setup_tracing(TracingConfig(service_name=service_name, console_export=console_spans))
    setup_logging(LoggingConfig(service_name=service_name, level=log_level, json_format=json_logs), force=True)
