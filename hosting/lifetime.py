"""
layerhost - Hosted Service Lifetime

Long-running units the host starts and stops, the state each unit is in,
the application lifetime events and the options that bound start and stop.

Cancellation tokens are plain :class:`asyncio.Event` objects: a unit should
abandon what it is doing once the token is set.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol, runtime_checkable

from configuration.root import ConfigurationRoot
from core.errors import ConfigurationError
from observability.logging import get_logger

logger = get_logger("layerhost.hosting.lifetime")


@runtime_checkable
class HostedService(Protocol):
    """A unit started when the host starts and stopped when it stops."""

    @property
    def name(self) -> str:
        ...

    async def start(self, cancellation_token: asyncio.Event) -> None:
        """Return once the unit is running; abandon when the token is set."""
        ...

    async def stop(self, cancellation_token: asyncio.Event) -> None:
        """Stop gracefully; the token is set when graceful stop runs out of time."""
        ...


class BackgroundService(ABC):
    """
    Base class for a hosted service whose work is a single coroutine.

    ``start`` schedules :meth:`execute` as a task and returns immediately;
    ``stop`` sets the stopping token and waits for the task to finish, or
    cancels it without waiting once the stop is abandoned.

    Usage:
        class Heartbeat(BackgroundService):
            async def execute(self, stopping_token: asyncio.Event) -> None:
                while not stopping_token.is_set():
                    logger.info("beat")
                    await asyncio.sleep(1)
    """

    def __init__(self, name: Optional[str] = None):
        self._name = name or self.__class__.__name__
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping_token: Optional[asyncio.Event] = None
        self._exception: Optional[BaseException] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def execute_task(self) -> Optional[asyncio.Task[None]]:
        return self._task

    @property
    def exception(self) -> Optional[BaseException]:
        """The error :meth:`execute` ended with, if any."""
        return self._exception

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, cancellation_token: asyncio.Event) -> None:
        self._stopping_token = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"bg:{self.name}")

    async def _run(self) -> None:
        assert self._stopping_token is not None
        try:
            await self.execute(self._stopping_token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._exception = e
            logger.error("Background service failed", service=self.name, error=str(e), exc_info=True)

    async def stop(self, cancellation_token: asyncio.Event) -> None:
        if self._task is None:
            return
        assert self._stopping_token is not None
        self._stopping_token.set()
        abandon = asyncio.ensure_future(cancellation_token.wait())
        try:
            await asyncio.wait({self._task, abandon}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abandon.cancel()
            # Abandoned: cancel execute but do not wait for it to unwind
            if not self._task.done():
                self._task.cancel()

    @abstractmethod
    async def execute(self, stopping_token: asyncio.Event) -> None:
        """Override to implement the service logic."""
        ...


class UnitState(Enum):
    """Lifecycle state of one hosted service."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAULTED = "faulted"


@dataclass
class HostedUnit:
    """A hosted service and where it is in its lifecycle."""

    service: HostedService
    state: UnitState = UnitState.CREATED
    error: Optional[BaseException] = None
    started: bool = False

    @property
    def name(self) -> str:
        return getattr(self.service, "name", None) or type(self.service).__name__

    def fault(self, error: BaseException) -> None:
        self.state = UnitState.FAULTED
        self.error = error


class BackgroundServiceExceptionBehavior(Enum):
    """What the host does when a background service's ``execute`` fails."""

    STOP_HOST = "StopHost"
    IGNORE = "Ignore"


@dataclass
class HostOptions:
    """Timeouts and failure handling for the run loop."""

    shutdown_timeout: float = 30.0
    startup_timeout: Optional[float] = None
    background_service_exception_behavior: BackgroundServiceExceptionBehavior = (
        BackgroundServiceExceptionBehavior.STOP_HOST
    )

    SHUTDOWN_TIMEOUT_KEY = "shutdownTimeoutSeconds"
    STARTUP_TIMEOUT_KEY = "startupTimeoutSeconds"
    EXCEPTION_BEHAVIOR_KEY = "backgroundServiceExceptionBehavior"

    @classmethod
    def from_configuration(
        cls,
        configuration: ConfigurationRoot,
        defaults: Optional["HostOptions"] = None,
    ) -> "HostOptions":
        """Read overrides from the configuration, keeping ``defaults`` otherwise."""
        base = defaults or cls()
        options = cls(
            shutdown_timeout=base.shutdown_timeout,
            startup_timeout=base.startup_timeout,
            background_service_exception_behavior=base.background_service_exception_behavior,
        )

        shutdown = configuration.get(cls.SHUTDOWN_TIMEOUT_KEY)
        if shutdown:
            options.shutdown_timeout = _parse_seconds(cls.SHUTDOWN_TIMEOUT_KEY, shutdown)

        startup = configuration.get(cls.STARTUP_TIMEOUT_KEY)
        if startup:
            options.startup_timeout = _parse_seconds(cls.STARTUP_TIMEOUT_KEY, startup)

        behavior = configuration.get(cls.EXCEPTION_BEHAVIOR_KEY)
        if behavior:
            for member in BackgroundServiceExceptionBehavior:
                if member.value.casefold() == behavior.casefold():
                    options.background_service_exception_behavior = member
                    break
            else:
                raise ConfigurationError(
                    f"'{behavior}' is not a valid value for '{cls.EXCEPTION_BEHAVIOR_KEY}'",
                    source=cls.EXCEPTION_BEHAVIOR_KEY,
                )
        return options


def _parse_seconds(key: str, raw: str) -> float:
    try:
        seconds = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"'{raw}' is not a number of seconds for '{key}'", source=key, cause=e) from e
    if seconds < 0:
        raise ConfigurationError(f"'{key}' must not be negative", source=key)
    return seconds


@dataclass
class ApplicationLifetime:
    """
    Application-wide lifetime events.

    ``application_started`` is set once every hosted service started,
    ``application_stopping`` when shutdown begins (including through
    :meth:`stop_application`), ``application_stopped`` once it completed.
    """

    application_started: asyncio.Event = field(default_factory=asyncio.Event)
    application_stopping: asyncio.Event = field(default_factory=asyncio.Event)
    application_stopped: asyncio.Event = field(default_factory=asyncio.Event)
    _stopping_callbacks: List[Callable[[], None]] = field(default_factory=list, repr=False)

    def on_stopping(self, callback: Callable[[], None]) -> None:
        self._stopping_callbacks.append(callback)

    def stop_application(self) -> None:
        """Request that the running host shuts down."""
        if self.application_stopping.is_set():
            return
        logger.info("Application stop requested")
        self.notify_stopping()

    def notify_started(self) -> None:
        self.application_started.set()

    def notify_stopping(self) -> None:
        if self.application_stopping.is_set():
            return
        self.application_stopping.set()
        for callback in list(self._stopping_callbacks):
            callback()

    def notify_stopped(self) -> None:
        self.application_stopped.set()
