"""
layerhost - Service Registry and Default Container

The registry (:class:`ServiceCollection`) is an ordered, append-only list of
:class:`ServiceDescriptor` records. Several descriptors may share a service
key; the default :class:`ServiceProvider` indexes the list once when it is
created so that:

- ``get_service(key)`` returns the instance of the **last** descriptor
  registered for ``key``
- ``get_services(key)`` returns one instance per descriptor, in
  registration order

Lifetimes:
- SINGLETON: built at most once per provider, on the root scope
- SCOPED: built once per :class:`Scope`, disposed when the scope ends
- TRANSIENT: built on every request, disposed with the scope that built it

There is no auto-wiring: factories receive the resolving scope and pull
their own dependencies, implementation types are called without arguments.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    TypeVar,
    runtime_checkable,
)

from core.errors import AlreadyBuiltError, ResolutionError
from observability.logging import get_logger

logger = get_logger("layerhost.di")

T = TypeVar("T")

_MISSING = object()


class ServiceLifetime(Enum):
    """Service lifetime options."""

    SINGLETON = "singleton"  # One instance per provider
    SCOPED = "scoped"        # One instance per scope
    TRANSIENT = "transient"  # New instance every time


@runtime_checkable
class IServiceProvider(Protocol):
    """What every container backend must be able to answer."""

    def get_service(self, service_key: Any) -> Any:
        """Instance for the last registration of ``service_key``, or ``None``."""
        ...

    def get_required_service(self, service_key: Any) -> Any:
        """Like :meth:`get_service` but raises :class:`ResolutionError`."""
        ...

    def get_services(self, service_key: Any) -> List[Any]:
        """Instances for every registration of ``service_key``, in order."""
        ...


@dataclass
class ServiceDescriptor:
    """Describes how a service is created and how long it lives."""

    service_key: Any
    lifetime: ServiceLifetime = ServiceLifetime.SINGLETON
    factory: Optional[Callable[["Scope"], Any]] = None
    instance: Any = _MISSING
    implementation_type: Optional[type] = None

    def __post_init__(self) -> None:
        strategies = sum((
            self.factory is not None,
            self.instance is not _MISSING,
            self.implementation_type is not None,
        ))
        if strategies == 0:
            if not isinstance(self.service_key, type):
                raise TypeError(
                    f"Service key {self.service_key!r} is not a type; "
                    "a factory, instance or implementation type is required"
                )
            self.implementation_type = self.service_key
        elif strategies > 1:
            raise TypeError("Specify only one of factory, instance or implementation_type")
        if self.has_instance and self.lifetime is not ServiceLifetime.SINGLETON:
            raise TypeError("Instance registrations are always singletons")

    @property
    def has_instance(self) -> bool:
        return self.instance is not _MISSING

    def describe(self) -> str:
        if self.has_instance:
            how = f"instance of {type(self.instance).__name__}"
        elif self.factory is not None:
            how = f"factory {getattr(self.factory, '__qualname__', repr(self.factory))}"
        else:
            how = f"type {self.implementation_type.__name__}"  # type: ignore[union-attr]
        return f"{_key_name(self.service_key)} ({self.lifetime.value}, {how})"


def _key_name(key: Any) -> str:
    return getattr(key, "__name__", None) or repr(key)


def _as_descriptor(
    service_key: Any,
    implementation: Any,
    lifetime: ServiceLifetime,
) -> ServiceDescriptor:
    if implementation is None:
        return ServiceDescriptor(service_key, lifetime)
    if isinstance(implementation, type):
        return ServiceDescriptor(service_key, lifetime, implementation_type=implementation)
    if callable(implementation):
        return ServiceDescriptor(service_key, lifetime, factory=implementation)
    raise TypeError(
        f"Cannot register {implementation!r} for {_key_name(service_key)}: "
        "expected a type or a factory; use add_instance for objects"
    )


class ServiceCollection:
    """
    Ordered registry of service descriptors.

    Usage:
        services = ServiceCollection()
        services.add_singleton(Clock)
        services.add_scoped(UnitOfWork, lambda sp: UnitOfWork(sp.get_required_service(Database)))
        services.add_instance("greeting", "hello")
    """

    def __init__(self, descriptors: Optional[Sequence[ServiceDescriptor]] = None) -> None:
        self._descriptors: List[ServiceDescriptor] = list(descriptors or [])
        self._read_only = False

    # Registration --------------------------------------------------------

    def _check_writable(self) -> None:
        if self._read_only:
            raise AlreadyBuiltError(
                "The service collection is read-only once the container is built",
                target="ServiceCollection",
            )

    def add(self, descriptor: ServiceDescriptor) -> "ServiceCollection":
        self._check_writable()
        self._descriptors.append(descriptor)
        return self

    def add_singleton(self, service_key: Any, implementation: Any = None) -> "ServiceCollection":
        return self.add(_as_descriptor(service_key, implementation, ServiceLifetime.SINGLETON))

    def add_scoped(self, service_key: Any, implementation: Any = None) -> "ServiceCollection":
        return self.add(_as_descriptor(service_key, implementation, ServiceLifetime.SCOPED))

    def add_transient(self, service_key: Any, implementation: Any = None) -> "ServiceCollection":
        return self.add(_as_descriptor(service_key, implementation, ServiceLifetime.TRANSIENT))

    def add_instance(self, service_key: Any, instance: Any) -> "ServiceCollection":
        return self.add(ServiceDescriptor(service_key, ServiceLifetime.SINGLETON, instance=instance))

    def try_add(self, descriptor: ServiceDescriptor) -> bool:
        """Add only when nothing is registered for the key yet."""
        if self.contains(descriptor.service_key):
            return False
        self.add(descriptor)
        return True

    def try_add_singleton(self, service_key: Any, implementation: Any = None) -> bool:
        return self.try_add(_as_descriptor(service_key, implementation, ServiceLifetime.SINGLETON))

    def try_add_scoped(self, service_key: Any, implementation: Any = None) -> bool:
        return self.try_add(_as_descriptor(service_key, implementation, ServiceLifetime.SCOPED))

    def try_add_transient(self, service_key: Any, implementation: Any = None) -> bool:
        return self.try_add(_as_descriptor(service_key, implementation, ServiceLifetime.TRANSIENT))

    def remove_all(self, service_key: Any) -> int:
        self._check_writable()
        before = len(self._descriptors)
        self._descriptors = [d for d in self._descriptors if d.service_key != service_key]
        return before - len(self._descriptors)

    def configure_options(self, model: Type[T], section: Any) -> "ServiceCollection":
        """
        Register ``model`` as a singleton bound from a configuration section.

        ``section`` is anything with a ``bind(model)`` method, such as a
        :class:`~configuration.root.ConfigurationSection`. Binding happens on
        first resolution.
        """
        return self.add_singleton(model, lambda _sp: section.bind(model))

    def add_hosted_service(self, implementation: Any) -> "ServiceCollection":
        """
        Register a long-running unit the host starts and stops.

        ``implementation`` is a hosted-service type, a factory taking the
        provider, or an already-built instance.
        """
        from hosting.lifetime import HostedService

        if not isinstance(implementation, type) and not callable(implementation):
            return self.add_instance(HostedService, implementation)
        return self.add_singleton(HostedService, implementation)

    # Inspection ----------------------------------------------------------

    def contains(self, service_key: Any) -> bool:
        return any(d.service_key == service_key for d in self._descriptors)

    def descriptors_for(self, service_key: Any) -> List[ServiceDescriptor]:
        return [d for d in self._descriptors if d.service_key == service_key]

    def make_read_only(self) -> None:
        self._read_only = True

    @property
    def is_read_only(self) -> bool:
        return self._read_only

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(list(self._descriptors))

    def __len__(self) -> int:
        return len(self._descriptors)

    def __getitem__(self, index: int) -> ServiceDescriptor:
        return self._descriptors[index]


@dataclass
class ServiceProviderOptions:
    """Checks the default container runs on top of plain resolution."""

    validate_scopes: bool = False    # reject scoped services resolved from the root
    validate_on_build: bool = False  # construct every singleton while building


# ----------------------------------------------------------------------------
# Disposal helpers
# ----------------------------------------------------------------------------

def _dispose(instance: Any) -> bool:
    """Synchronously dispose ``instance``; False when only async disposal exists."""
    for name in ("dispose", "close"):
        method = getattr(instance, name, None)
        if method is None:
            continue
        if asyncio.iscoroutinefunction(method):
            return False
        method()
        return True
    return not any(hasattr(instance, n) for n in ("dispose_async", "aclose"))


async def _dispose_async(instance: Any) -> None:
    for name in ("dispose_async", "aclose", "dispose", "close"):
        method = getattr(instance, name, None)
        if method is None:
            continue
        result = method()
        if asyncio.iscoroutine(result):
            await result
        return


def _is_disposable(instance: Any) -> bool:
    return any(hasattr(instance, n) for n in ("dispose", "close", "dispose_async", "aclose"))


class Scope:
    """
    A resolution scope.

    Scoped instances are cached here; scoped and transient instances created
    through this scope are disposed, newest first, when it closes.

    Usage:
        with provider.create_scope() as scope:
            uow = scope.get_required_service(UnitOfWork)

        async with provider.create_scope() as scope:
            ...
    """

    def __init__(self, provider: "ServiceProvider", is_root: bool = False) -> None:
        self._provider = provider
        self._is_root = is_root
        self._instances: Dict[int, Any] = {}
        self._disposables: List[Any] = []
        self._lock = threading.RLock()
        self._closed = False

    @property
    def provider(self) -> "ServiceProvider":
        return self._provider

    @property
    def is_root(self) -> bool:
        return self._is_root

    # IServiceProvider ----------------------------------------------------

    def get_service(self, service_key: Any) -> Any:
        indices = self._provider._indices(service_key)
        if not indices:
            return None
        return self._resolve(indices[-1])

    def get_required_service(self, service_key: Any) -> Any:
        indices = self._provider._indices(service_key)
        if not indices:
            raise ResolutionError(
                f"No service registered for '{_key_name(service_key)}'",
                service_key=service_key,
            )
        return self._resolve(indices[-1])

    def get_services(self, service_key: Any) -> List[Any]:
        return [self._resolve(i) for i in self._provider._indices(service_key)]

    def create_scope(self) -> "Scope":
        return self._provider.create_scope()

    # Resolution ----------------------------------------------------------

    def _resolve(self, index: int) -> Any:
        if self._closed:
            raise ResolutionError("Cannot resolve services from a disposed scope")
        descriptor = self._provider._descriptors[index]

        if descriptor.lifetime is ServiceLifetime.SINGLETON:
            return self._provider._singleton(index)

        if descriptor.lifetime is ServiceLifetime.SCOPED:
            if self._is_root and self._provider.options.validate_scopes:
                raise ResolutionError(
                    f"Cannot resolve scoped service '{descriptor.describe()}' from the root provider",
                    service_key=descriptor.service_key,
                )
            with self._lock:
                if index not in self._instances:
                    instance = self._provider._create(index, self)
                    self._instances[index] = instance
                    self._track(instance)
                return self._instances[index]

        instance = self._provider._create(index, self)
        with self._lock:
            self._track(instance)
        return instance

    def _track(self, instance: Any) -> None:
        if _is_disposable(instance):
            self._disposables.append(instance)

    # Disposal ------------------------------------------------------------

    def close(self) -> None:
        """Dispose tracked instances synchronously, newest first."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            disposables, self._disposables = self._disposables, []
            self._instances.clear()
        for instance in reversed(disposables):
            if not _dispose(instance):
                logger.warning(
                    "Instance only supports async disposal; use 'async with' or aclose()",
                    instance=type(instance).__name__,
                )

    async def aclose(self) -> None:
        """Dispose tracked instances, awaiting async disposal, newest first."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            disposables, self._disposables = self._disposables, []
            self._instances.clear()
        for instance in reversed(disposables):
            await _dispose_async(instance)

    def __enter__(self) -> "Scope":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    async def __aenter__(self) -> "Scope":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


class ServiceProvider:
    """
    Default container backend.

    Resolves from an immutable snapshot of the registry taken at
    construction; later changes to the collection are not seen.
    """

    def __init__(
        self,
        descriptors: Sequence[ServiceDescriptor],
        options: Optional[ServiceProviderOptions] = None,
    ) -> None:
        self._descriptors: tuple = tuple(descriptors)
        self.options = options or ServiceProviderOptions()
        self._index: Dict[Any, List[int]] = {}
        for position, descriptor in enumerate(self._descriptors):
            self._index.setdefault(descriptor.service_key, []).append(position)

        self._singletons: Dict[int, Any] = {}
        self._owned_singletons: List[Any] = []
        self._lock = threading.RLock()
        self._resolving = threading.local()
        self._root = Scope(self, is_root=True)
        self._disposed = False

        logger.debug(
            "Service provider created",
            descriptors=len(self._descriptors),
            keys=len(self._index),
        )

        if self.options.validate_on_build:
            self._validate()

    # IServiceProvider ----------------------------------------------------

    def get_service(self, service_key: Any) -> Any:
        return self._root.get_service(service_key)

    def get_required_service(self, service_key: Any) -> Any:
        return self._root.get_required_service(service_key)

    def get_services(self, service_key: Any) -> List[Any]:
        return self._root.get_services(service_key)

    def is_registered(self, service_key: Any) -> bool:
        return service_key in self._index

    def create_scope(self) -> Scope:
        if self._disposed:
            raise ResolutionError("Cannot create a scope from a disposed provider")
        return Scope(self)

    # Internals -----------------------------------------------------------

    def _indices(self, service_key: Any) -> List[int]:
        if self._disposed:
            raise ResolutionError("Cannot resolve services from a disposed provider")
        return self._index.get(service_key, [])

    def _singleton(self, index: int) -> Any:
        with self._lock:
            if index not in self._singletons:
                instance = self._create(index, self._root)
                self._singletons[index] = instance
                if not self._descriptors[index].has_instance and _is_disposable(instance):
                    self._owned_singletons.append(instance)
            return self._singletons[index]

    def _create(self, index: int, scope: Scope) -> Any:
        descriptor: ServiceDescriptor = self._descriptors[index]
        if descriptor.has_instance:
            return descriptor.instance

        stack: List[int] = getattr(self._resolving, "stack", None) or []
        if index in stack:
            chain = " -> ".join(_key_name(self._descriptors[i].service_key) for i in stack + [index])
            raise ResolutionError(
                f"Circular dependency detected: {chain}",
                service_key=descriptor.service_key,
            )
        self._resolving.stack = stack + [index]
        try:
            if descriptor.factory is not None:
                return descriptor.factory(scope)
            return descriptor.implementation_type()  # type: ignore[misc]
        finally:
            self._resolving.stack = stack

    def _validate(self) -> None:
        for index, descriptor in enumerate(self._descriptors):
            if descriptor.lifetime is not ServiceLifetime.SINGLETON:
                continue
            try:
                self._singleton(index)
            except ResolutionError as e:
                raise ResolutionError(
                    f"Error while validating the service descriptor {descriptor.describe()}: {e.message}",
                    service_key=descriptor.service_key,
                    cause=e,
                ) from e

    # Disposal ------------------------------------------------------------

    def dispose(self) -> None:
        """Dispose root-tracked and singleton instances, newest first."""
        if self._disposed:
            return
        self._root.close()
        with self._lock:
            owned, self._owned_singletons = self._owned_singletons, []
            self._singletons.clear()
            self._disposed = True
        for instance in reversed(owned):
            if not _dispose(instance):
                logger.warning(
                    "Singleton only supports async disposal; use aclose()",
                    instance=type(instance).__name__,
                )

    async def aclose(self) -> None:
        if self._disposed:
            return
        await self._root.aclose()
        with self._lock:
            owned, self._owned_singletons = self._owned_singletons, []
            self._singletons.clear()
            self._disposed = True
        for instance in reversed(owned):
            await _dispose_async(instance)

    def __repr__(self) -> str:
        return f"ServiceProvider(descriptors={len(self._descriptors)}, keys={len(self._index)})"
