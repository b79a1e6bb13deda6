"""
layerhost - Host Builder

Registration calls only record actions. ``build()`` runs them once, in a
fixed phase order, and returns the finished :class:`~hosting.host.Host`:

    BUILD_HOST_CONFIGURATION → RESOLVE_ENVIRONMENT → CREATE_BUILD_CONTEXT →
    BUILD_APP_CONFIGURATION → ASSEMBLE_SERVICE_REGISTRY → CONTAINER_BUILD →
    FINALIZE

Every phase runs even when it has nothing to do. Actions within a phase run
in the order they were registered. A failure in any phase aborts the build;
the error carries the name of the phase it escaped from.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from configuration.builder import ConfigurationBuilder
from configuration.providers import ChainedConfigurationProvider
from configuration.root import ConfigurationRoot
from core.errors import AlreadyBuiltError, annotate_phase
from di.container import IServiceProvider, ServiceCollection
from di.factory import DefaultServiceProviderFactory, IServiceProviderFactory
from hosting.context import HostBuilderContext
from hosting.environment import HostEnvironment, resolve_environment
from hosting.host import Host
from hosting.lifetime import ApplicationLifetime, HostOptions
from observability.logging import get_logger
from observability.tracing import create_span

logger = get_logger("layerhost.hosting.builder")

HostConfigurationAction = Callable[[ConfigurationBuilder], None]
AppConfigurationAction = Callable[[HostBuilderContext, ConfigurationBuilder], None]
ServicesAction = Callable[[HostBuilderContext, ServiceCollection], None]
ContainerAction = Callable[[HostBuilderContext, Any], None]
FactoryResolver = Callable[[HostBuilderContext], IServiceProviderFactory]


class BuildPhase(Enum):
    """Host build phases, in execution order."""

    BUILD_HOST_CONFIGURATION = "build_host_configuration"
    RESOLVE_ENVIRONMENT = "resolve_environment"
    CREATE_BUILD_CONTEXT = "create_build_context"
    BUILD_APP_CONFIGURATION = "build_app_configuration"
    ASSEMBLE_SERVICE_REGISTRY = "assemble_service_registry"
    CONTAINER_BUILD = "container_build"
    FINALIZE = "finalize"


@dataclass
class _BuildState:
    """Values produced by one phase and consumed by later ones."""

    host_configuration: Optional[ConfigurationRoot] = None
    environment: Optional[HostEnvironment] = None
    context: Optional[HostBuilderContext] = None
    app_configuration: Optional[ConfigurationRoot] = None
    services: Optional[ServiceCollection] = None
    service_provider: Optional[IServiceProvider] = None
    host: Optional[Host] = None


class HostBuilder:
    """
    Collects configuration and service registrations, then builds a host.

    Usage:
        host = (
            HostBuilder()
            .configure_host_configuration(lambda config: config.add_environment_variables("LAYERHOST_"))
            .configure_app_configuration(lambda ctx, config: config.add_json_file("appsettings.json", optional=True))
            .configure_services(lambda ctx, services: services.add_singleton(Clock))
            .build()
        )
    """

    def __init__(self, properties: Optional[Dict[Any, Any]] = None):
        self.properties: Dict[Any, Any] = properties if properties is not None else {}
        self._host_configuration_actions: List[HostConfigurationAction] = []
        self._app_configuration_actions: List[AppConfigurationAction] = []
        self._services_actions: List[ServicesAction] = []
        self._container_actions: List[ContainerAction] = []
        self._factory_resolver: FactoryResolver = lambda _ctx: DefaultServiceProviderFactory()
        self._built = False
        self._phases_run: List[BuildPhase] = []

    @property
    def phases_run(self) -> List[BuildPhase]:
        """Phases completed by :meth:`build`, in order."""
        return list(self._phases_run)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def _check_not_built(self, operation: str) -> None:
        if self._built:
            raise AlreadyBuiltError(
                f"Cannot call '{operation}': the host was already built",
                target=f"HostBuilder.{operation}",
            )

    def configure_host_configuration(self, action: HostConfigurationAction) -> "HostBuilder":
        """Add an action that registers providers for the host configuration."""
        self._check_not_built("configure_host_configuration")
        self._host_configuration_actions.append(action)
        return self

    def configure_app_configuration(self, action: AppConfigurationAction) -> "HostBuilder":
        """Add an action that registers providers for the application configuration."""
        self._check_not_built("configure_app_configuration")
        self._app_configuration_actions.append(action)
        return self

    def configure_services(self, action: ServicesAction) -> "HostBuilder":
        """Add an action that registers services."""
        self._check_not_built("configure_services")
        self._services_actions.append(action)
        return self

    def use_service_provider_factory(self, factory: Any) -> "HostBuilder":
        """
        Replace the container backend.

        ``factory`` is an :class:`~di.factory.IServiceProviderFactory` or a
        callable taking the build context and returning one. The last call wins.
        """
        self._check_not_built("use_service_provider_factory")
        if hasattr(factory, "create_builder") and hasattr(factory, "create_service_provider"):
            self._factory_resolver = lambda _ctx: factory
        elif callable(factory):
            self._factory_resolver = factory
        else:
            raise TypeError(f"{factory!r} is neither a service provider factory nor a callable returning one")
        return self

    def configure_container(self, action: ContainerAction) -> "HostBuilder":
        """Add an action that configures the backend's intermediate container builder."""
        self._check_not_built("configure_container")
        self._container_actions.append(action)
        return self

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(self) -> Host:
        """
        Run every registered action and return the host.

        Raises:
            AlreadyBuiltError: on a second call
            HostingError: any failure, annotated with the phase it came from
        """
        self._check_not_built("build")
        self._built = True

        state = _BuildState()
        build_start = time.time()
        phases = (
            (BuildPhase.BUILD_HOST_CONFIGURATION, self._build_host_configuration),
            (BuildPhase.RESOLVE_ENVIRONMENT, self._resolve_environment),
            (BuildPhase.CREATE_BUILD_CONTEXT, self._create_build_context),
            (BuildPhase.BUILD_APP_CONFIGURATION, self._build_app_configuration),
            (BuildPhase.ASSEMBLE_SERVICE_REGISTRY, self._assemble_service_registry),
            (BuildPhase.CONTAINER_BUILD, self._container_build),
            (BuildPhase.FINALIZE, self._finalize),
        )

        with create_span("host.build"):
            for phase, run in phases:
                self._run_phase(phase, run, state)

        assert state.host is not None
        logger.info(
            "Host built",
            application=state.host.environment.application_name,
            environment=state.host.environment.environment_name,
            duration_ms=round((time.time() - build_start) * 1000),
        )
        return state.host

    def _run_phase(self, phase: BuildPhase, run: Callable[[_BuildState], None], state: _BuildState) -> None:
        phase_start = time.time()
        logger.debug("Host build phase starting", phase=phase.value)
        try:
            with create_span(f"host.build.{phase.value}", attributes={"host.build.phase": phase.value}):
                run(state)
        except Exception as e:
            error = annotate_phase(e, phase.value)
            logger.error("Host build failed", phase=phase.value, error=error.message)
            if error is e:
                raise
            raise error from e
        self._phases_run.append(phase)
        logger.debug(
            "Host build phase completed",
            phase=phase.value,
            duration_ms=round((time.time() - phase_start) * 1000, 2),
        )

    def _build_host_configuration(self, state: _BuildState) -> None:
        builder = ConfigurationBuilder(self.properties).set_base_path(os.getcwd())
        for action in self._host_configuration_actions:
            action(builder)
        state.host_configuration = builder.build()

    def _resolve_environment(self, state: _BuildState) -> None:
        assert state.host_configuration is not None
        state.environment = resolve_environment(state.host_configuration)

    def _create_build_context(self, state: _BuildState) -> None:
        assert state.environment is not None and state.host_configuration is not None
        state.context = HostBuilderContext(state.environment, state.host_configuration, self.properties)

    def _build_app_configuration(self, state: _BuildState) -> None:
        context = state.context
        assert context is not None and state.host_configuration is not None
        builder = ConfigurationBuilder(self.properties).set_base_path(
            context.host_environment.content_root_path
        )
        builder.add(ChainedConfigurationProvider(state.host_configuration, name="HostConfiguration"))
        for action in self._app_configuration_actions:
            action(context, builder)
        state.app_configuration = builder.build()
        context.configuration = state.app_configuration

    def _assemble_service_registry(self, state: _BuildState) -> None:
        context = state.context
        configuration = state.app_configuration
        assert context is not None and configuration is not None
        services = ServiceCollection()
        services.add_instance(HostEnvironment, context.host_environment)
        services.add_instance(HostBuilderContext, context)
        services.add_instance(ConfigurationRoot, configuration)
        services.add_singleton(HostOptions, lambda _sp: HostOptions.from_configuration(configuration))
        services.add_singleton(ApplicationLifetime)
        services.add_singleton(
            Host,
            lambda sp: Host(
                getattr(sp, "provider", sp),
                sp.get_required_service(HostEnvironment),
                sp.get_required_service(ConfigurationRoot),
                sp.get_required_service(ApplicationLifetime),
                sp.get_required_service(HostOptions),
            ),
        )
        for action in self._services_actions:
            action(context, services)
        state.services = services
        logger.debug("Service registry assembled", descriptors=len(services))

    def _container_build(self, state: _BuildState) -> None:
        context = state.context
        assert context is not None and state.services is not None
        factory = self._factory_resolver(context)
        container_builder = factory.create_builder(state.services)
        for action in self._container_actions:
            action(context, container_builder)
        state.service_provider = factory.create_service_provider(container_builder)

    def _finalize(self, state: _BuildState) -> None:
        assert state.service_provider is not None
        state.host = state.service_provider.get_required_service(Host)
