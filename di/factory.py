"""
layerhost - Service Provider Factories

The seam between the host builder and a container backend. During the
container-build phase the host calls, in order:

1. ``factory.create_builder(services)`` to get the backend's intermediate builder
2. every ``configure_container`` action with that builder
3. ``factory.create_service_provider(builder)`` to get the final provider

Any backend that can answer :class:`~di.container.IServiceProvider` can be
plugged in with ``HostBuilder.use_service_provider_factory``.
"""

from __future__ import annotations

from typing import Optional, Protocol, TypeVar, runtime_checkable

from di.container import (
    IServiceProvider,
    ServiceCollection,
    ServiceProvider,
    ServiceProviderOptions,
)

TBuilder = TypeVar("TBuilder")


@runtime_checkable
class IServiceProviderFactory(Protocol[TBuilder]):
    """Creates an intermediate container builder and the final provider."""

    def create_builder(self, services: ServiceCollection) -> TBuilder:
        ...

    def create_service_provider(self, container_builder: TBuilder) -> IServiceProvider:
        ...


class DefaultServiceProviderFactory:
    """
    Factory for the built-in :class:`~di.container.ServiceProvider`.

    The intermediate builder is the service collection itself.
    """

    def __init__(self, options: Optional[ServiceProviderOptions] = None) -> None:
        self.options = options or ServiceProviderOptions()

    def create_builder(self, services: ServiceCollection) -> ServiceCollection:
        return services

    def create_service_provider(self, container_builder: ServiceCollection) -> ServiceProvider:
        container_builder.make_read_only()
        return ServiceProvider(list(container_builder), self.options)
