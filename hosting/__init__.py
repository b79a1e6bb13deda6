"""
layerhost - Hosting Module

Builds a host from deferred configuration and service registrations, then
runs its hosted services until shutdown.

Usage:
    from hosting import create_default_builder, BackgroundService

    class Worker(BackgroundService):
        async def execute(self, stopping_token):
            await stopping_token.wait()

    host = (
        create_default_builder(sys.argv[1:])
        .configure_services(lambda ctx, services: services.add_hosted_service(Worker))
        .build()
    )
    sys.exit(host.run_sync())
"""

from hosting.builder import BuildPhase, HostBuilder
from hosting.context import HostBuilderContext
from hosting.defaults import create_default_builder
from hosting.environment import (
    Environments,
    HostDefaults,
    HostEnvironment,
    PhysicalFileProvider,
    resolve_environment,
)
from hosting.host import Host, run_host
from hosting.lifetime import (
    ApplicationLifetime,
    BackgroundService,
    BackgroundServiceExceptionBehavior,
    HostedService,
    HostedUnit,
    HostOptions,
    UnitState,
)
from hosting.reload import ConfigurationReloadService

__all__ = [
    # Builder
    "HostBuilder",
    "BuildPhase",
    "HostBuilderContext",
    "create_default_builder",
    # Environment
    "Environments",
    "HostDefaults",
    "HostEnvironment",
    "PhysicalFileProvider",
    "resolve_environment",
    # Run loop
    "Host",
    "run_host",
    "HostedService",
    "BackgroundService",
    "BackgroundServiceExceptionBehavior",
    "HostedUnit",
    "HostOptions",
    "UnitState",
    "ApplicationLifetime",
    "ConfigurationReloadService",
]
