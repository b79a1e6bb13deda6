"""
Tests for the service registry and the default container.
"""
import pytest

from core.errors import AlreadyBuiltError, ResolutionError
from di import (
    DefaultServiceProviderFactory,
    IServiceProvider,
    ServiceCollection,
    ServiceDescriptor,
    ServiceLifetime,
    ServiceProvider,
    ServiceProviderOptions,
)


class Clock:
    pass


class Greeter:
    def __init__(self, greeting: str = "hello"):
        self.greeting = greeting


class Resource:
    """Records when it is disposed."""

    def __init__(self, log=None, name="resource"):
        self.log = log if log is not None else []
        self.name = name
        self.closed = False

    def close(self):
        self.closed = True
        self.log.append(self.name)


class AsyncResource:
    def __init__(self, log, name):
        self.log = log
        self.name = name

    async def aclose(self):
        self.log.append(self.name)


def build(services: ServiceCollection, **options) -> ServiceProvider:
    return ServiceProvider(list(services), ServiceProviderOptions(**options))


# =============================================================================
# REGISTRY
# =============================================================================


class TestServiceCollection:
    """Tests for registration."""

    def test_duplicates_are_kept_in_order(self):
        services = ServiceCollection()
        services.add_instance("greeting", "a").add_instance("greeting", "b")
        assert len(services) == 2
        assert [d.instance for d in services.descriptors_for("greeting")] == ["a", "b"]

    def test_try_add_skips_existing_key(self):
        services = ServiceCollection()
        assert services.try_add_singleton(Clock) is True
        assert services.try_add_singleton(Clock, lambda sp: Clock()) is False
        assert len(services) == 1

    def test_remove_all(self):
        services = ServiceCollection().add_singleton(Clock).add_transient(Clock)
        assert services.remove_all(Clock) == 2
        assert not services.contains(Clock)

    def test_descriptor_defaults_to_key_type(self):
        descriptor = ServiceDescriptor(Clock, ServiceLifetime.TRANSIENT)
        assert descriptor.implementation_type is Clock

    def test_descriptor_requires_a_strategy_for_non_types(self):
        with pytest.raises(TypeError):
            ServiceDescriptor("name", ServiceLifetime.SINGLETON)

    def test_instances_must_be_singletons(self):
        with pytest.raises(TypeError):
            ServiceDescriptor("name", ServiceLifetime.SCOPED, instance="x")

    def test_none_is_a_valid_instance(self):
        provider = build(ServiceCollection().add_instance("nothing", None))
        assert provider.is_registered("nothing")
        assert provider.get_service("nothing") is None

    def test_read_only_after_build(self):
        services = ServiceCollection()
        factory = DefaultServiceProviderFactory()
        factory.create_service_provider(factory.create_builder(services))
        with pytest.raises(AlreadyBuiltError):
            services.add_singleton(Clock)


# =============================================================================
# RESOLUTION
# =============================================================================


class TestResolution:
    """Tests for single and multiple resolution."""

    def test_last_registration_wins(self):
        services = ServiceCollection()
        services.add_singleton(Greeter, lambda sp: Greeter("first"))
        services.add_singleton(Greeter, lambda sp: Greeter("second"))
        provider = build(services)
        assert provider.get_service(Greeter).greeting == "second"

    def test_get_services_returns_all_in_order(self):
        services = ServiceCollection()
        services.add_singleton(Greeter, lambda sp: Greeter("first"))
        services.add_singleton(Greeter, lambda sp: Greeter("second"))
        provider = build(services)
        assert [g.greeting for g in provider.get_services(Greeter)] == ["first", "second"]

    def test_single_and_all_share_singletons(self):
        services = ServiceCollection().add_singleton(Clock).add_singleton(Clock)
        provider = build(services)
        assert provider.get_service(Clock) is provider.get_services(Clock)[-1]

    def test_missing_service(self):
        provider = build(ServiceCollection())
        assert provider.get_service(Clock) is None
        assert provider.get_services(Clock) == []
        with pytest.raises(ResolutionError) as exc_info:
            provider.get_required_service(Clock)
        assert exc_info.value.service_key is Clock

    def test_factory_receives_provider(self):
        services = ServiceCollection()
        services.add_instance("greeting", "hi")
        services.add_transient(Greeter, lambda sp: Greeter(sp.get_required_service("greeting")))
        assert build(services).get_required_service(Greeter).greeting == "hi"

    def test_registry_changes_after_build_are_not_seen(self):
        services = ServiceCollection().add_instance("a", 1)
        provider = build(services)
        services.add_instance("a", 2)
        assert provider.get_service("a") == 1

    def test_circular_dependency_is_detected(self):
        services = ServiceCollection()
        services.add_transient("a", lambda sp: sp.get_required_service("b"))
        services.add_transient("b", lambda sp: sp.get_required_service("a"))
        with pytest.raises(ResolutionError) as exc_info:
            build(services).get_service("a")
        assert "Circular dependency" in exc_info.value.message

    def test_provider_satisfies_protocol(self):
        assert isinstance(build(ServiceCollection()), IServiceProvider)


# =============================================================================
# LIFETIMES
# =============================================================================


class TestLifetimes:
    """Tests for singleton, scoped and transient lifetimes."""

    def test_singleton_is_shared_across_scopes(self):
        provider = build(ServiceCollection().add_singleton(Clock))
        with provider.create_scope() as scope:
            assert scope.get_service(Clock) is provider.get_service(Clock)

    def test_transient_is_new_every_time(self):
        provider = build(ServiceCollection().add_transient(Clock))
        assert provider.get_service(Clock) is not provider.get_service(Clock)

    def test_scoped_is_shared_within_a_scope_only(self):
        provider = build(ServiceCollection().add_scoped(Clock))
        with provider.create_scope() as first, provider.create_scope() as second:
            assert first.get_service(Clock) is first.get_service(Clock)
            assert first.get_service(Clock) is not second.get_service(Clock)

    def test_scoped_from_root_rejected_when_validating(self):
        provider = build(ServiceCollection().add_scoped(Clock), validate_scopes=True)
        with pytest.raises(ResolutionError):
            provider.get_service(Clock)

    def test_singleton_capturing_scoped_rejected_when_validating(self):
        services = ServiceCollection()
        services.add_scoped(Clock)
        services.add_singleton(Greeter, lambda sp: Greeter(str(sp.get_required_service(Clock))))
        provider = build(services, validate_scopes=True)
        with provider.create_scope() as scope:
            with pytest.raises(ResolutionError):
                scope.get_service(Greeter)

    def test_validate_on_build_constructs_singletons(self):
        created = []
        services = ServiceCollection()
        services.add_singleton(Clock, lambda sp: created.append("clock") or Clock())
        build(services, validate_on_build=True)
        assert created == ["clock"]

    def test_validate_on_build_surfaces_missing_dependencies(self):
        services = ServiceCollection()
        services.add_singleton(Greeter, lambda sp: Greeter(sp.get_required_service("greeting")))
        with pytest.raises(ResolutionError) as exc_info:
            build(services, validate_on_build=True)
        assert "Greeter" in exc_info.value.message


# =============================================================================
# DISPOSAL
# =============================================================================


class TestDisposal:
    """Tests for disposal of owned instances."""

    def test_scope_disposes_in_reverse_creation_order(self):
        log = []
        services = ServiceCollection()
        services.add_scoped("first", lambda sp: Resource(log, "first"))
        services.add_transient("second", lambda sp: Resource(log, "second"))
        provider = build(services)
        with provider.create_scope() as scope:
            scope.get_service("first")
            scope.get_service("second")
        assert log == ["second", "first"]

    def test_resolving_from_closed_scope_raises(self):
        provider = build(ServiceCollection().add_scoped(Clock))
        scope = provider.create_scope()
        scope.close()
        with pytest.raises(ResolutionError):
            scope.get_service(Clock)

    def test_provider_disposes_singletons_but_not_instances(self):
        log = []
        external = Resource(log, "external")
        services = ServiceCollection()
        services.add_instance("external", external)
        services.add_singleton("owned", lambda sp: Resource(log, "owned"))
        provider = build(services)
        provider.get_service("external")
        provider.get_service("owned")
        provider.dispose()
        assert log == ["owned"]
        assert not external.closed

    def test_disposed_provider_rejects_resolution(self):
        provider = build(ServiceCollection().add_singleton(Clock))
        provider.dispose()
        with pytest.raises(ResolutionError):
            provider.get_service(Clock)

    @pytest.mark.asyncio
    async def test_async_scope_awaits_async_disposal(self):
        log = []
        services = ServiceCollection()
        services.add_scoped("a", lambda sp: AsyncResource(log, "a"))
        services.add_scoped("b", lambda sp: Resource(log, "b"))
        provider = build(services)
        async with provider.create_scope() as scope:
            scope.get_service("a")
            scope.get_service("b")
        assert log == ["b", "a"]

    @pytest.mark.asyncio
    async def test_provider_aclose(self):
        log = []
        services = ServiceCollection()
        services.add_singleton("a", lambda sp: AsyncResource(log, "a"))
        provider = build(services)
        provider.get_service("a")
        await provider.aclose()
        assert log == ["a"]
