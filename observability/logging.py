"""
layerhost - Structured Logging

structlog rendered through the standard library root logger. The build
phases, provider reloads and unit start/stop all log through
:func:`get_logger`, so one :func:`setup_logging` call (or
:func:`configure_from_section` with the host's ``Logging`` section) controls
the whole process.

Usage:
    from observability.logging import get_logger, setup_logging, LoggingConfig

    setup_logging(LoggingConfig(level="DEBUG", json_format=True))

    logger = get_logger(__name__)
    logger.info("Hosted service started", service="Worker")

    with unit_context("Worker"):
        logger.info("Polling")   # carries unit="Worker"
"""
from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

import structlog
from opentelemetry import trace
from structlog.types import EventDict, Processor, WrappedLogger

_configured: bool = False

# Stamped on every event; updated once the host environment is known
_host_identity: Dict[str, str] = {"application": "layerhost", "environment": "Production"}

# Level names accepted from configuration besides the stdlib ones
_LEVEL_ALIASES = {"INFORMATION": "INFO", "TRACE": "DEBUG", "NONE": "CRITICAL"}


@dataclass
class LoggingConfig:
    """Settings for :func:`setup_logging`."""

    service_name: str = "layerhost"
    environment: str = field(default_factory=lambda: os.getenv("LAYERHOST_ENVIRONMENT", "Production"))
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: os.getenv("LOG_FORMAT", "console").lower() == "json")
    include_trace_ids: bool = True


def _trace_ids(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = f"{ctx.trace_id:032x}"
        event_dict["span_id"] = f"{ctx.span_id:016x}"
    return event_dict


def _host_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in _host_identity.items():
        event_dict.setdefault(key, value)
    return event_dict


def set_host_identity(application: str, environment: str) -> None:
    """Name the application and environment reported by every later event."""
    _host_identity.update(application=application, environment=environment)


def _level_number(level: str) -> int:
    name = str(level).upper()
    value = logging.getLevelName(_LEVEL_ALIASES.get(name, name))
    return value if isinstance(value, int) else logging.INFO


def setup_logging(config: Optional[LoggingConfig] = None, force: bool = False) -> None:
    """
    Configure structlog and the root logger.

    A second call is a no-op unless ``force`` is set. Loggers are not cached,
    so module-level loggers obtained earlier render with the new settings.
    """
    global _configured
    if _configured and not force:
        return
    config = config or LoggingConfig()
    set_host_identity(config.service_name, config.environment)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _host_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if config.include_trace_ids:
        processors.append(_trace_ids)
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if config.json_format else structlog.dev.ConsoleRenderer(colors=False),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    level = _level_number(config.level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("asyncio").setLevel(max(level, logging.WARNING))

    _configured = True


def configure_from_section(
    section: Any,
    service_name: str = "layerhost",
    environment: str = "Production",
    defaults: Optional[LoggingConfig] = None,
) -> LoggingConfig:
    """
    Reconfigure logging from a ``Logging`` configuration section.

    Recognised keys: ``Level`` (stdlib level name) and ``Format``
    (``json`` or ``console``). Absent keys keep ``defaults``.
    """
    config = LoggingConfig(service_name=service_name, environment=environment)
    if defaults is not None:
        config.level = defaults.level
        config.json_format = defaults.json_format
    level = section.get("Level")
    if level:
        config.level = level
    fmt = section.get("Format")
    if fmt:
        config.json_format = fmt.lower() == "json"
    setup_logging(config, force=True)
    return config


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for ``name``; sets up default logging on first use."""
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)


@contextmanager
def unit_context(unit: str, **fields: Any) -> Iterator[None]:
    """Bind ``unit`` (and ``fields``) to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(unit=unit, **fields):
        yield
