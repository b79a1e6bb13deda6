"""
layerhost - Unified Error Handling

Error hierarchy shared by the configuration layer, the service container
and the host build/run pipeline.

Every error knows its severity and, once it escapes ``HostBuilder.build()``,
the build phase it came from. Raising one inside an active span marks the
span as failed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    """How bad an error is for the host."""

    WARNING = "warning"    # host keeps going
    ERROR = "error"        # one unit or operation failed
    CRITICAL = "critical"  # host cannot be built or run
    FATAL = "fatal"        # misuse of the API


@dataclass
class ErrorContext:
    """Where an error happened, for logs and reports."""

    component: str
    operation: str
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(cls, component: str, operation: str, **details: Any) -> "ErrorContext":
        """Context stamped with the ids of the active span, if any."""
        ctx = trace.get_current_span().get_span_context()
        if not ctx.is_valid:
            return cls(component, operation, details=details)
        return cls(
            component,
            operation,
            trace_id=f"{ctx.trace_id:032x}",
            span_id=f"{ctx.span_id:016x}",
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class HostingError(Exception):
    """
    Base exception for all layerhost errors.

    Attributes:
        message: Human readable description
        context: Optional :class:`ErrorContext`
        severity: Defaults to the class' ``default_severity``
        cause: The underlying exception, when wrapping one
        phase: Build phase the error escaped from, set by the orchestrator
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "HOSTING_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
        phase: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.severity = severity or self.default_severity
        self.cause = cause
        self.phase = phase
        self.raised_at = datetime.now(timezone.utc)
        self._mark_span()

    def _mark_span(self) -> None:
        span = trace.get_current_span()
        if not span.is_recording():
            return
        span.set_status(Status(StatusCode.ERROR, self.message))
        span.record_exception(self)
        span.set_attribute("layerhost.error.code", self.error_code)
        span.set_attribute("layerhost.error.severity", self.severity.value)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form for JSON logs and CLI output."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "phase": self.phase,
            "raised_at": self.raised_at.isoformat(),
            "context": None if self.context is None else self.context.to_dict(),
            "cause": None if self.cause is None else repr(self.cause),
        }

    def __str__(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if self.phase:
            text += f" (phase: {self.phase})"
        if self.context is not None:
            text += f" (in {self.context.component}.{self.context.operation})"
        if self.cause is not None:
            text += f" [caused by: {self.cause}]"
        return text

    def with_context(self, component: str = "unknown", operation: str = "unknown", **details: Any) -> "HostingError":
        """Attach context, or merge ``details`` into the existing one."""
        if self.context is None:
            self.context = ErrorContext.capture(component, operation, **details)
        else:
            self.context.details.update(details)
        return self


class ConfigurationError(HostingError):
    """Malformed or missing provider input."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.provider = provider
        self.source = source


class AlreadyBuiltError(HostingError):
    """A registration or ``build()`` call arrived after the build started."""

    error_code = "ALREADY_BUILT"
    default_severity = ErrorSeverity.FATAL

    def __init__(self, message: str, target: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.target = target


class ResolutionError(HostingError):
    """A required service could not be resolved from the provider."""

    error_code = "RESOLUTION_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str, service_key: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.service_key = service_key


class HostBuildError(HostingError):
    """Wraps an arbitrary exception raised by a deferred build action."""

    error_code = "HOST_BUILD_ERROR"
    default_severity = ErrorSeverity.CRITICAL


@dataclass(frozen=True)
class UnitFailure:
    """One long-running unit that ended up faulted."""

    unit: str
    operation: str
    error: BaseException

    def describe(self) -> str:
        return f"{self.unit} ({self.operation}): {type(self.error).__name__}: {self.error}"


class LifecycleError(HostingError):
    """
    A long-running unit failed to start, stop, or run.

    Stop failures are collected and reported once, after every stop attempt
    has been issued; ``failures`` lists each faulted unit.
    """

    error_code = "LIFECYCLE_ERROR"
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        failures: Optional[List[UnitFailure]] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.failures: List[UnitFailure] = list(failures or [])

    @property
    def units(self) -> List[str]:
        return [f.unit for f in self.failures]

    @classmethod
    def aggregate(cls, operation: str, failures: List[UnitFailure]) -> "LifecycleError":
        """Build a single error reporting every collected failure."""
        details = "; ".join(f.describe() for f in failures)
        return cls(
            f"{len(failures)} unit(s) faulted during {operation}: {details}",
            failures=failures,
            cause=failures[0].error if len(failures) == 1 else None,
        )


class StartCancelledError(LifecycleError):
    """Cancellation was observed before every unit had started."""

    error_code = "START_CANCELLED"
    default_severity = ErrorSeverity.WARNING


def annotate_phase(error: BaseException, phase: str) -> HostingError:
    """
    Attach the failing build phase to an error escaping the orchestrator.

    Hosting errors keep their type and gain ``phase``; anything else is
    wrapped in a :class:`HostBuildError`.
    """
    if isinstance(error, HostingError):
        if error.phase is None:
            error.phase = phase
        return error
    return HostBuildError(
        f"Host build failed in phase '{phase}': {type(error).__name__}: {error}",
        cause=error,
        phase=phase,
    )
