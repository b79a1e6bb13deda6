"""
layerhost - Dependency Injection Module

An ordered service registry and a small default container:
- Duplicate registrations are legal; the last one answers single lookups
- ``get_services`` returns every registration in order
- Singleton, scoped and transient lifetimes with scope disposal
- Factories receive the resolving scope (no auto-wiring)
- Pluggable backends through :class:`IServiceProviderFactory`

Usage:
    from di import ServiceCollection, DefaultServiceProviderFactory

    services = ServiceCollection()
    services.add_singleton(Clock)
    services.add_scoped(UnitOfWork, lambda sp: UnitOfWork(sp.get_required_service(Clock)))

    factory = DefaultServiceProviderFactory()
    provider = factory.create_service_provider(factory.create_builder(services))

    with provider.create_scope() as scope:
        uow = scope.get_required_service(UnitOfWork)
"""

from di.container import (
    IServiceProvider,
    Scope,
    ServiceCollection,
    ServiceDescriptor,
    ServiceLifetime,
    ServiceProvider,
    ServiceProviderOptions,
)
from di.factory import DefaultServiceProviderFactory, IServiceProviderFactory

__all__ = [
    # Registry
    "ServiceCollection",
    "ServiceDescriptor",
    "ServiceLifetime",
    # Resolution
    "IServiceProvider",
    "ServiceProvider",
    "ServiceProviderOptions",
    "Scope",
    # Backends
    "IServiceProviderFactory",
    "DefaultServiceProviderFactory",
]
