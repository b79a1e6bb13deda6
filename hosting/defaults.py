"""
layerhost - Default Host Builder

:func:`create_default_builder` wires the usual provider stack.

Host configuration, lowest to highest precedence:
    1. ``contentRoot`` = current working directory
    2. environment variables starting with ``LAYERHOST_`` (prefix removed)
    3. command line arguments

Application configuration, lowest to highest precedence:
    1. the host configuration
    2. ``appsettings.json`` (optional, reloaded on change)
    3. ``appsettings.<Environment>.json`` (optional, reloaded on change)
    4. per-application secrets, in Development only
    5. all environment variables
    6. command line arguments
"""
from __future__ import annotations

import os
from typing import Optional, Sequence

from config import HostingSettings, get_settings
from configuration.builder import ConfigurationBuilder
from configuration.root import ConfigurationRoot
from di.container import ServiceCollection, ServiceProviderOptions
from di.factory import DefaultServiceProviderFactory
from hosting.builder import HostBuilder
from hosting.context import HostBuilderContext
from hosting.environment import HostDefaults
from hosting.lifetime import HostOptions
from hosting.reload import ConfigurationReloadService
from observability.logging import LoggingConfig, configure_from_section, get_logger

logger = get_logger("layerhost.hosting.defaults")


def create_default_builder(
    args: Optional[Sequence[str]] = None,
    settings: Optional[HostingSettings] = None,
) -> HostBuilder:
    """
    Create a :class:`HostBuilder` with the default providers and services.

    Usage:
        host = create_default_builder(sys.argv[1:]).configure_services(register).build()
        sys.exit(host.run_sync())
    """
    settings = settings or get_settings()
    args = list(args) if args else []
    builder = HostBuilder()

    def configure_host(config: ConfigurationBuilder) -> None:
        config.add_in_memory({HostDefaults.CONTENT_ROOT_KEY: os.getcwd()})
        config.add_environment_variables(prefix=settings.env_prefix)
        if args:
            config.add_command_line(args)

    def configure_app(context: HostBuilderContext, config: ConfigurationBuilder) -> None:
        env = context.host_environment
        config.add_json_file(settings.settings_file, optional=True, reload_on_change=settings.reload_on_change)
        config.add_json_file(
            settings.environment_settings_file(env.environment_name),
            optional=True,
            reload_on_change=settings.reload_on_change,
        )
        if env.is_development() and env.application_name:
            config.add_secrets(env.application_name, settings.secrets_dir)
        config.add_environment_variables()
        if args:
            config.add_command_line(args)

    def configure_services(context: HostBuilderContext, services: ServiceCollection) -> None:
        env = context.host_environment
        configure_from_section(
            context.configuration.get_section("Logging"),
            service_name=env.application_name,
            environment=env.environment_name,
            defaults=LoggingConfig(level=settings.log_level, json_format=settings.json_logs),
        )
        defaults = HostOptions(
            shutdown_timeout=settings.shutdown_timeout,
            startup_timeout=settings.startup_timeout,
        )
        services.add_singleton(
            HostOptions,
            lambda sp: HostOptions.from_configuration(sp.get_required_service(ConfigurationRoot), defaults),
        )
        if settings.reload_on_change:
            services.add_hosted_service(
                lambda sp: ConfigurationReloadService(
                    sp.get_required_service(ConfigurationRoot),
                    settings.reload_poll_interval,
                )
            )

    def service_provider_factory(context: HostBuilderContext) -> DefaultServiceProviderFactory:
        development = context.host_environment.is_development()
        return DefaultServiceProviderFactory(
            ServiceProviderOptions(validate_scopes=development, validate_on_build=development)
        )

    logger.debug(
        "Default host builder created",
        settings_file=settings.settings_file,
        reload_on_change=settings.reload_on_change,
        args=len(args),
    )
    return (
        builder
        .configure_host_configuration(configure_host)
        .configure_app_configuration(configure_app)
        .configure_services(configure_services)
        .use_service_provider_factory(service_provider_factory)
    )
