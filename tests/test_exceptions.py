"""Tests for the diplan exception hierarchy."""

from typing import Optional

import pytest

from diplan import (
    SCOPED,
    SINGLETON,
    TRANSIENT,
    Container,
    DIPlanActivationError,
    DIPlanCompilationError,
    DIPlanConfigurationError,
    DIPlanContainerLockedError,
    DIPlanCyclicDependencyError,
    DIPlanDependencyNotRegisteredError,
    DIPlanError,
    DIPlanLifestyleMismatchError,
    DIPlanObjectDisposedError,
)
from diplan.exceptions import DIPlanInvalidOperationError, DIPlanRecursionLimitError


class CycleA:
    def __init__(self, b: "CycleB") -> None:
        self.b = b


class CycleB:
    def __init__(self, a: CycleA) -> None:
        self.a = a


class SelfReferencing:
    def __init__(self, other: "SelfReferencing") -> None:
        self.other = other


class Database:
    pass


class Cache:
    pass


class TestHierarchy:
    @pytest.mark.parametrize(
        "error_type",
        [
            DIPlanActivationError,
            DIPlanCompilationError,
            DIPlanConfigurationError,
            DIPlanContainerLockedError,
            DIPlanCyclicDependencyError,
            DIPlanInvalidOperationError,
            DIPlanObjectDisposedError,
            DIPlanRecursionLimitError,
        ],
    )
    def test_all_errors_derive_from_base(self, error_type: type[Exception]) -> None:
        assert issubclass(error_type, DIPlanError)

    def test_specialized_errors(self) -> None:
        assert issubclass(DIPlanDependencyNotRegisteredError, DIPlanActivationError)
        assert issubclass(DIPlanLifestyleMismatchError, DIPlanConfigurationError)


class TestDIPlanDependencyNotRegisteredError:
    def test_raises_when_service_not_registered(
        self,
        container_no_autoregister: Container,
    ) -> None:
        class UnregisteredService:
            pass

        with pytest.raises(DIPlanDependencyNotRegisteredError) as exc_info:
            container_no_autoregister.resolve(UnregisteredService)

        assert exc_info.value.service_type is UnregisteredService
        assert "No registration for type 'UnregisteredService'" in str(exc_info.value)

    def test_abstract_types_are_not_autoregistered(self, container: Container) -> None:
        from abc import ABC, abstractmethod

        class Port(ABC):
            @abstractmethod
            def send(self) -> None: ...

        with pytest.raises(DIPlanDependencyNotRegisteredError):
            container.resolve(Port)

    def test_builtins_are_not_autoregistered(self, container: Container) -> None:
        with pytest.raises(DIPlanDependencyNotRegisteredError):
            container.resolve(str)


class TestDIPlanConfigurationError:
    def test_missing_dependency_names_parameter_and_type(
        self,
        container_no_autoregister: Container,
    ) -> None:
        class Service:
            def __init__(self, database: Database) -> None:
                self.database = database

        container_no_autoregister.register(Service)

        with pytest.raises(DIPlanConfigurationError) as exc_info:
            container_no_autoregister.resolve(Service)

        assert exc_info.value.parameter_name == "database"
        assert exc_info.value.service_type is Database
        assert "'database'" in str(exc_info.value)
        assert "'Database'" in str(exc_info.value)

    def test_optional_dependency_resolves_to_none(
        self,
        container_no_autoregister: Container,
    ) -> None:
        class Service:
            def __init__(self, cache: Optional[Cache]) -> None:
                self.cache = cache

        container_no_autoregister.register(Service)

        assert container_no_autoregister.resolve(Service).cache is None

    def test_unresolvable_parameter_with_default_keeps_default(
        self,
        container_no_autoregister: Container,
    ) -> None:
        sentinel = Cache()

        class Service:
            def __init__(self, cache: Cache = sentinel) -> None:
                self.cache = cache

        container_no_autoregister.register(Service)

        assert container_no_autoregister.resolve(Service).cache is sentinel

    def test_duplicate_registration_rejected(self, container: Container) -> None:
        container.register(Database)

        with pytest.raises(DIPlanConfigurationError, match="already been registered"):
            container.register(Database)

    def test_implementation_must_derive_from_service(self, container: Container) -> None:
        with pytest.raises(DIPlanConfigurationError) as exc_info:
            container.register(Database, Cache)

        assert exc_info.value.implementation_type is Cache

    def test_unannotated_required_parameter(self, container: Container) -> None:
        class Service:
            def __init__(self, value) -> None:  # type: ignore[no-untyped-def]
                self.value = value

        container.register(Service)

        with pytest.raises(DIPlanConfigurationError) as exc_info:
            container.resolve(Service)

        assert exc_info.value.parameter_name == "value"


class TestDIPlanCyclicDependencyError:
    def test_two_type_cycle_lists_both_types(self, container: Container) -> None:
        with pytest.raises(DIPlanCyclicDependencyError) as exc_info:
            container.resolve(CycleA)

        assert exc_info.value.cycle == [CycleA, CycleB, CycleA]
        assert "CycleA -> CycleB -> CycleA" in str(exc_info.value)

    def test_self_cycle(self, container: Container) -> None:
        with pytest.raises(DIPlanCyclicDependencyError) as exc_info:
            container.resolve(SelfReferencing)

        assert exc_info.value.cycle == [SelfReferencing, SelfReferencing]

    def test_cycle_reported_on_every_attempt(self, container: Container) -> None:
        for _ in range(3):
            with pytest.raises(DIPlanCyclicDependencyError):
                container.resolve(CycleB)


class TestDIPlanContainerLockedError:
    def test_register_after_resolve(self, container: Container) -> None:
        container.resolve(Database)

        with pytest.raises(DIPlanContainerLockedError) as exc_info:
            container.register(Cache)

        assert "register 'Cache'" in str(exc_info.value)
        assert exc_info.value.lock_site

    def test_every_registration_method_is_rejected(self, container: Container) -> None:
        container.lock()

        with pytest.raises(DIPlanContainerLockedError):
            container.register_factory(Cache, Cache)
        with pytest.raises(DIPlanContainerLockedError):
            container.register_instance(Cache, Cache())
        with pytest.raises(DIPlanContainerLockedError):
            container.register_collection(Cache, [Cache])
        with pytest.raises(DIPlanContainerLockedError):
            container.add_plan_interceptor(lambda plan: plan)
        with pytest.raises(DIPlanContainerLockedError):
            container.register_initializer(Cache, lambda cache: None)


class TestDIPlanActivationError:
    def test_constructor_failure_wrapped_for_autoregistered_type(
        self,
        container: Container,
    ) -> None:
        class Exploding:
            def __init__(self) -> None:
                msg = "boom"
                raise RuntimeError(msg)

        with pytest.raises(DIPlanActivationError) as exc_info:
            container.resolve(Exploding)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "boom" in str(exc_info.value)

    def test_factory_failure_wrapped(self, container: Container) -> None:
        def broken_factory() -> Database:
            msg = "no connection"
            raise ConnectionError(msg)

        container.register_factory(Database, broken_factory)

        with pytest.raises(DIPlanActivationError, match="delegate") as exc_info:
            container.resolve(Database)

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_factory_returning_none(self, container: Container) -> None:
        container.register_factory(Database, lambda: None)

        with pytest.raises(DIPlanActivationError, match="returned None") as exc_info:
            container.resolve(Database)

        assert exc_info.value.service_type is Database


class TestDIPlanLifestyleMismatchError:
    def test_singleton_capturing_transient(self, container: Container) -> None:
        class Consumer:
            def __init__(self, cache: Cache) -> None:
                self.cache = cache

        container.register(Cache, lifestyle=TRANSIENT)
        container.register(Consumer, lifestyle=SINGLETON)

        with pytest.raises(DIPlanLifestyleMismatchError) as exc_info:
            container.resolve(Consumer)

        relationship = exc_info.value.relationship
        assert relationship.implementation_type is Consumer
        assert relationship.dependency.service_type is Cache

    def test_scoped_capturing_transient(self, container: Container) -> None:
        class Consumer:
            def __init__(self, cache: Cache) -> None:
                self.cache = cache

        container.register(Consumer, lifestyle=SCOPED)

        with container.enter_scope(), pytest.raises(DIPlanLifestyleMismatchError):
            container.resolve(Consumer)


class TestDIPlanObjectDisposedError:
    def test_resolve_after_dispose(self, container: Container) -> None:
        container.dispose()

        with pytest.raises(DIPlanObjectDisposedError):
            container.resolve(Database)

    def test_register_after_dispose(self, container: Container) -> None:
        container.dispose()

        with pytest.raises(DIPlanObjectDisposedError):
            container.register(Database)
