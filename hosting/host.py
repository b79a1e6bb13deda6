"""
layerhost - Host

The built host: owns the service provider, the environment and the final
configuration, and drives hosted services through start, run and stop.

Start is strictly sequential in registration order; a unit that fails to
start causes the units already started to be stopped in reverse order.
Stop runs in reverse order, each unit bounded by the shutdown timeout, and
reports every failure together once all units have been asked to stop.
"""
from __future__ import annotations

import asyncio
import signal
import sys
import time
from typing import Any, List, NoReturn, Optional

from configuration.root import ConfigurationRoot
from core.errors import LifecycleError, StartCancelledError, UnitFailure
from di.container import IServiceProvider
from hosting.environment import HostEnvironment
from hosting.lifetime import (
    ApplicationLifetime,
    BackgroundService,
    BackgroundServiceExceptionBehavior,
    HostedService,
    HostedUnit,
    HostOptions,
    UnitState,
)
from observability.logging import get_logger, unit_context
from observability.tracing import create_span

logger = get_logger("layerhost.hosting.host")


class Host:
    """
    A built, runnable host.

    Usage:
        host = create_default_builder(sys.argv[1:]).configure_services(...).build()
        sys.exit(host.run_sync())

        # or, inside a running loop
        async with host:
            await do_work(host.services)
    """

    def __init__(
        self,
        services: IServiceProvider,
        environment: HostEnvironment,
        configuration: ConfigurationRoot,
        lifetime: ApplicationLifetime,
        options: Optional[HostOptions] = None,
    ):
        self._services = services
        self._environment = environment
        self._configuration = configuration
        self._lifetime = lifetime
        self._options = options or HostOptions()
        self._units: List[HostedUnit] = []
        self._runtime_failures: List[UnitFailure] = []
        self._started = False
        self._stopped = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def services(self) -> IServiceProvider:
        return self._services

    @property
    def environment(self) -> HostEnvironment:
        return self._environment

    @property
    def configuration(self) -> ConfigurationRoot:
        return self._configuration

    @property
    def lifetime(self) -> ApplicationLifetime:
        return self._lifetime

    @property
    def options(self) -> HostOptions:
        return self._options

    @property
    def units(self) -> List[HostedUnit]:
        return list(self._units)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start(self, cancellation_token: Optional[asyncio.Event] = None) -> None:
        """Start every hosted service, in registration order."""
        if self._started:
            return
        self._started = True
        token = cancellation_token or asyncio.Event()
        start_time = time.time()

        with create_span("host.start", attributes={"host.environment": self._environment.environment_name}):
            self._units = [HostedUnit(s) for s in self._services.get_services(HostedService)]
            logger.info("Hosting starting", units=len(self._units))

            started: List[HostedUnit] = []
            for unit in self._units:
                if token.is_set():
                    await self._abort_start(started, None)

                unit.state = UnitState.STARTING
                logger.debug("Starting hosted service", service=unit.name)
                try:
                    with unit_context(unit.name):
                        completed = await self._start_unit(unit, token)
                except Exception as e:
                    unit.fault(e)
                    logger.error("Hosted service failed to start", service=unit.name, error=str(e))
                    await self._abort_start(started, UnitFailure(unit.name, "start", e))

                if unit.started:
                    started.append(unit)
                if not completed:
                    await self._abort_start(started, None)

                unit.state = UnitState.RUNNING
                self._watch(unit)
                logger.info("Hosted service started", service=unit.name)

        self._lifetime.notify_started()
        logger.info(
            "Hosting started",
            environment=self._environment.environment_name,
            content_root=self._environment.content_root_path,
            duration_ms=round((time.time() - start_time) * 1000),
        )

    async def _start_unit(self, unit: HostedUnit, token: asyncio.Event) -> bool:
        """
        Start one unit, racing its start against the token and the timeout.

        Returns False when cancellation was observed first. A unit still
        starting is given up to the startup timeout before it is abandoned.
        """
        timeout = self._options.startup_timeout
        start_task = asyncio.ensure_future(unit.service.start(token))
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {start_task, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()

        if start_task in done:
            start_task.result()
            unit.started = True
            return True

        if not done:
            _abandon(start_task)
            raise TimeoutError(f"Start of '{unit.name}' did not complete within {timeout}s")

        logger.warning("Cancellation requested while starting", service=unit.name)
        done, _ = await asyncio.wait({start_task}, timeout=timeout)
        if start_task in done and not start_task.cancelled() and start_task.exception() is None:
            unit.started = True
            unit.state = UnitState.RUNNING
        else:
            error: Optional[BaseException] = None
            if start_task.done() and not start_task.cancelled():
                error = start_task.exception()
            else:
                _abandon(start_task)
            unit.fault(error or asyncio.CancelledError())
            logger.warning("Abandoned hosted service start", service=unit.name)
        return False

    async def _abort_start(self, started: List[HostedUnit], failure: Optional[UnitFailure]) -> NoReturn:
        """Stop already-started units in reverse and raise."""
        rollback = await self._stop_units(started)
        if failure is None:
            raise StartCancelledError(
                "Host start was cancelled before every hosted service started",
                failures=rollback,
            )
        raise LifecycleError(
            f"Hosted service '{failure.unit}' failed to start: "
            f"{type(failure.error).__name__}: {failure.error}",
            failures=[failure] + rollback,
            cause=failure.error,
        ).with_context("host", "start", unit=failure.unit) from failure.error

    def _watch(self, unit: HostedUnit) -> None:
        service = unit.service
        if not isinstance(service, BackgroundService) or service.execute_task is None:
            return

        def on_done(_task: "asyncio.Task[None]") -> None:
            error = service.exception
            if error is None:
                return
            unit.fault(error)
            self._runtime_failures.append(UnitFailure(unit.name, "execute", error))
            behavior = self._options.background_service_exception_behavior
            if behavior is BackgroundServiceExceptionBehavior.STOP_HOST:
                logger.critical("Background service faulted; stopping the host", service=unit.name)
                self._lifetime.stop_application()
            else:
                logger.error("Background service faulted", service=unit.name)

        service.execute_task.add_done_callback(on_done)

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    async def stop(self) -> None:
        """
        Stop started units in reverse order, then dispose the services.

        Raises:
            LifecycleError: listing every unit that failed or timed out
        """
        if self._stopped:
            return
        self._stopped = True
        self._lifetime.notify_stopping()
        stop_time = time.time()

        with create_span("host.stop"):
            logger.info("Hosting stopping", units=len(self._units))
            failures = await self._stop_units([u for u in self._units if u.started])
            await self._dispose_services()

        self._lifetime.notify_stopped()
        logger.info(
            "Hosting stopped",
            failures=len(failures),
            duration_ms=round((time.time() - stop_time) * 1000),
        )
        if failures:
            raise LifecycleError.aggregate("stop", failures)

    async def _stop_units(self, units: List[HostedUnit]) -> List[UnitFailure]:
        failures: List[UnitFailure] = []
        for unit in reversed(units):
            with unit_context(unit.name):
                failure = await self._stop_unit(unit)
            if failure is not None:
                failures.append(failure)
        return failures

    async def _stop_unit(self, unit: HostedUnit) -> Optional[UnitFailure]:
        timeout = self._options.shutdown_timeout
        already_faulted = unit.state is UnitState.FAULTED
        if not already_faulted:
            unit.state = UnitState.STOPPING
        token = asyncio.Event()
        stop_task = asyncio.ensure_future(unit.service.stop(token))
        done, _ = await asyncio.wait({stop_task}, timeout=timeout)

        error: Optional[BaseException] = None
        if not done:
            token.set()
            _abandon(stop_task)
            error = TimeoutError(f"Stop of '{unit.name}' did not complete within {timeout}s")
        elif stop_task.cancelled():
            error = asyncio.CancelledError()
        else:
            error = stop_task.exception()

        unit.started = False
        if error is not None:
            unit.fault(error)
            logger.error("Hosted service failed to stop", service=unit.name, error=str(error))
            return UnitFailure(unit.name, "stop", error)
        if not already_faulted:
            unit.state = UnitState.STOPPED
        logger.debug("Hosted service stopped", service=unit.name)
        return None

    async def _dispose_services(self) -> None:
        services: Any = self._services
        if hasattr(services, "aclose"):
            await services.aclose()
        elif hasattr(services, "dispose"):
            services.dispose()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self, cancellation_token: Optional[asyncio.Event] = None) -> None:
        """
        Start, block until shutdown is requested, then stop.

        Shutdown is requested by :meth:`ApplicationLifetime.stop_application`,
        by ``cancellation_token`` or by SIGINT/SIGTERM.

        Raises:
            LifecycleError: when any unit failed to start, run or stop
        """
        token = cancellation_token or asyncio.Event()
        installed = self._install_signal_handlers()
        try:
            try:
                await self.start(token)
            except LifecycleError:
                self._stopped = True
                await self._dispose_services()
                self._lifetime.notify_stopped()
                raise
            await self._wait_for_shutdown(token)
        finally:
            self._remove_signal_handlers(installed)

        stop_error: Optional[LifecycleError] = None
        try:
            await self.stop()
        except LifecycleError as e:
            stop_error = e

        failures = list(self._runtime_failures)
        if stop_error is not None:
            failures.extend(stop_error.failures)
        if failures:
            raise LifecycleError.aggregate("run", failures)

    async def _wait_for_shutdown(self, token: asyncio.Event) -> None:
        waiters = {
            asyncio.ensure_future(self._lifetime.application_stopping.wait()),
            asyncio.ensure_future(token.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    def _install_signal_handlers(self) -> List[signal.Signals]:
        if sys.platform == "win32":
            return []
        loop = asyncio.get_running_loop()
        installed: List[signal.Signals] = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._lifetime.stop_application)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug("Signal handler not installed", signal=sig.name, error=str(e))
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: List[signal.Signals]) -> None:
        if not installed:
            return
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    def run_sync(self, cancellation_token: Optional[asyncio.Event] = None) -> int:
        """Run on a fresh event loop; returns the process exit code."""
        try:
            asyncio.run(self.run(cancellation_token))
        except LifecycleError as e:
            logger.error("Host terminated with faulted units", units=e.units, error=e.message)
            return 1
        return 0

    # -------------------------------------------------------------------------
    # Context manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> "Host":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return (
            f"Host(application={self._environment.application_name!r}, "
            f"environment={self._environment.environment_name!r}, units={len(self._units)})"
        )


def _abandon(task: "asyncio.Future[Any]") -> None:
    """Cancel ``task`` without waiting for it to honour the cancellation."""
    task.cancel()
    task.add_done_callback(_discard_outcome)


def _discard_outcome(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


def run_host(host: Host) -> int:
    """Run ``host`` to completion and return the process exit code."""
    return host.run_sync()
