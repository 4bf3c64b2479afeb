from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, TypeVar, overload

from diplan._internal.compiler import PlanCompiler
from diplan._internal.identifiers import PredicateContext
from diplan._internal.plan_builder import ConstructionPlanBuilder
from diplan._internal.producer import InstanceProducer, ProducerEnvironment
from diplan._internal.registry import Registry
from diplan._internal.resolution_cache import ResolutionCache
from diplan._internal.type_checks import is_runtime_class, type_name
from diplan._internal.type_matching import OpenGenericTypeMatcher
from diplan.exceptions import (
    DIPlanConfigurationError,
    DIPlanDependencyNotRegisteredError,
    DIPlanError,
    DIPlanObjectDisposedError,
)
from diplan.lifestyles import SINGLETON, TRANSIENT
from diplan.options import ContainerOptions
from diplan.scope import Scope

if TYPE_CHECKING:
    from diplan._internal.binding import (
        ConstructorResolutionBehavior,
        PropertySelectionBehavior,
    )
    from diplan._internal.diagnostics import KnownRelationship
    from diplan._internal.ids import MonotonicIdGenerator
    from diplan._internal.plan_builder import PlanInterceptor
    from diplan._internal.type_matching import TypeMatcher
    from diplan.lifestyles import Lifestyle
    from diplan.scope import ScopeLocator

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Container:
    """Register services, resolve them, and own the instances it caches.

    Registration happens first, from a single thread. The first resolution (or
    an explicit ``lock()``) locks the container: registrations are rejected from
    then on, while resolution is safe from any number of threads.

    Each registration becomes an ``InstanceProducer``. On first use a producer
    realizes its construction plan, compiles it once into a factory, and wraps
    the factory with its lifestyle. Scoped instances live in the ambient scope
    created by ``enter_scope``. Singletons live in the container's own scope and
    are disposed with ``dispose``/``adispose``.

    Examples:
        .. code-block:: python

            container = Container()
            container.register(Repository, SqlRepository, lifestyle=SCOPED)
            container.register(Clock, lifestyle=SINGLETON)

            with container.enter_scope():
                repository = container.resolve(Repository)

    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        default_lifestyle: Lifestyle = TRANSIENT,
        resolve_unregistered_concrete_types: bool = True,
        allow_overriding_registrations: bool = False,
        suppress_lifestyle_mismatch_verification: bool = False,
        constructor_resolution: ConstructorResolutionBehavior | None = None,
        property_selection: PropertySelectionBehavior | None = None,
        scope_locator: ScopeLocator | None = None,
        id_generator: MonotonicIdGenerator | None = None,
    ) -> None:
        """Initialize a container.

        Args:
            default_lifestyle: Lifestyle for registrations that omit one and for
                auto-registered concrete types.
            resolve_unregistered_concrete_types: Construct eligible concrete
                classes without a registration. Disable for strict mode.
            allow_overriding_registrations: Let a second registration of a service
                replace the first one instead of raising.
            suppress_lifestyle_mismatch_verification: Skip the build-time check
                for longer-lived components capturing shorter-lived dependencies.
            constructor_resolution: Override how constructor parameters are selected.
            property_selection: Override which attributes are injected after
                construction. By default no attributes are injected.
            scope_locator: Override how the ambient scope is found.
            id_generator: Override the generator of container and scope ids.

        """
        overrides: dict[str, Any] = {
            "constructor_resolution": constructor_resolution,
            "property_selection": property_selection,
            "scope_locator": scope_locator,
            "id_generator": id_generator,
        }
        self._options = ContainerOptions(
            default_lifestyle=default_lifestyle,
            resolve_unregistered_concrete_types=resolve_unregistered_concrete_types,
            allow_overriding_registrations=allow_overriding_registrations,
            suppress_lifestyle_mismatch_verification=suppress_lifestyle_mismatch_verification,
            **{name: value for name, value in overrides.items() if value is not None},
        )
        id_generator = self._options.id_generator
        self._container_id = id_generator.next_id()
        self._container_scope = Scope(scope_id=id_generator.next_id())
        self._disposed = False
        self._dispose_lock = threading.Lock()

        self._resolution_cache = ResolutionCache(
            container_id=self._container_id,
            build_root_producer=self._build_root_producer,
        )
        self._environment = ProducerEnvironment(
            build_lock=self._resolution_cache.build_lock,
            compiler=PlanCompiler(),
            container_scope=self._container_scope,
            scope_locator=self._options.scope_locator,
            lock_container=self._resolution_cache.lock_for_resolution,
            suppress_lifestyle_mismatch_verification=(
                self._options.suppress_lifestyle_mismatch_verification
            ),
        )
        self._registry = Registry(options=self._options, environment=self._environment)

    @property
    def options(self) -> ContainerOptions:
        return self._options

    @property
    def container_id(self) -> int:
        return self._container_id

    @property
    def is_locked(self) -> bool:
        return self._resolution_cache.is_locked

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # region Registration Methods

    def register(
        self,
        service_type: Any,
        implementation: type[Any] | None = None,
        *,
        lifestyle: Lifestyle | None = None,
        parameter_overrides: Mapping[str, Any] | None = None,
        suppress_disposal: bool = False,
    ) -> InstanceProducer:
        """Register a class constructed by the container.

        Args:
            service_type: Service requested by consumers.
            implementation: Concrete class to construct. Defaults to ``service_type``.
            lifestyle: Lifestyle of the registration. Defaults to the container's
                ``default_lifestyle``.
            parameter_overrides: Values (or plan nodes) for constructor parameters,
                by parameter name, used instead of resolving them.
            suppress_disposal: Never close instances created by this registration.

        Returns:
            The producer created for the registration.

        Raises:
            DIPlanContainerLockedError: If the container is already locked.
            DIPlanConfigurationError: If the implementation is not a concrete
                subclass of the service, or the service is already registered.

        Examples:
            .. code-block:: python

                container.register(Notifier, EmailNotifier, lifestyle=SINGLETON)
                container.register(Retry, parameter_overrides={"attempts": 3})

        """
        self._ensure_can_register(f"register '{type_name(service_type)}'")
        implementation_type = service_type if implementation is None else implementation
        self._validate_implementation(service_type, implementation_type)
        builder = self._registry.builder_for_type(
            implementation_type,
            lifestyle=lifestyle or self._options.default_lifestyle,
            parameter_overrides=parameter_overrides,
            suppress_disposal=suppress_disposal,
        )
        producer = self._registry.create_producer(service_type, builder)
        self._registry.add(producer)
        return producer

    def register_factory(
        self,
        service_type: Any,
        factory: Callable[..., Any],
        *,
        lifestyle: Lifestyle | None = None,
        parameter_overrides: Mapping[str, Any] | None = None,
        suppress_disposal: bool = False,
    ) -> InstanceProducer:
        """Register a factory delegate; its parameters are injected like constructor parameters.

        A factory returning ``None`` fails resolution with ``DIPlanActivationError``.
        Whether created instances are disposed is decided per instance.
        """
        self._ensure_can_register(f"register a factory for '{type_name(service_type)}'")
        if not callable(factory):
            msg = f"Factory for '{type_name(service_type)}' must be callable, got {factory!r}."
            raise DIPlanConfigurationError(msg, service_type=service_type)
        builder = ConstructionPlanBuilder.for_factory(
            factory,
            lifestyle=lifestyle or self._options.default_lifestyle,
            settings=self._registry.settings,
            parameter_overrides=parameter_overrides,
            suppress_disposal=suppress_disposal,
        )
        producer = self._registry.create_producer(service_type, builder)
        self._registry.add(producer)
        return producer

    def register_instance(self, service_type: Any, instance: Any) -> InstanceProducer:
        """Register an existing object as a singleton. The container never closes it."""
        self._ensure_can_register(f"register an instance of '{type_name(service_type)}'")
        if instance is None:
            msg = f"Cannot register None as the instance of '{type_name(service_type)}'."
            raise DIPlanConfigurationError(msg, service_type=service_type)
        builder = ConstructionPlanBuilder.for_instance(
            instance,
            lifestyle=SINGLETON,
            settings=self._registry.settings,
        )
        producer = self._registry.create_producer(service_type, builder)
        self._registry.add(producer)
        return producer

    def register_conditional(
        self,
        service_type: Any,
        implementation: type[Any],
        predicate: Callable[[PredicateContext], bool],
        *,
        lifestyle: Lifestyle | None = None,
    ) -> InstanceProducer:
        """Register an implementation used only where ``predicate`` accepts the request.

        The predicate receives a ``PredicateContext`` naming the consumer the
        dependency is injected into (``None`` for ``resolve`` calls). At most one
        conditional registration may apply to any consumer.

        Examples:
            .. code-block:: python

                container.register_conditional(
                    Logger,
                    AuditLogger,
                    lambda context: context.consumer is not None
                    and context.consumer.implementation_type is PaymentService,
                )

        """
        self._ensure_can_register(f"register a conditional '{type_name(service_type)}'")
        if not callable(predicate):
            msg = f"Predicate for '{type_name(service_type)}' must be callable, got {predicate!r}."
            raise DIPlanConfigurationError(msg, service_type=service_type)
        self._validate_implementation(service_type, implementation)
        builder = self._registry.builder_for_type(
            implementation,
            lifestyle=lifestyle or self._options.default_lifestyle,
        )
        producer = self._registry.create_producer(service_type, builder, predicate=predicate)
        self._registry.add_conditional(producer)
        return producer

    def register_collection(
        self,
        service_type: Any,
        implementations: Iterable[type[Any]],
        *,
        lifestyle: Lifestyle | None = None,
    ) -> list[InstanceProducer]:
        """Append implementations to the collection resolved by ``resolve_many``.

        Constructor parameters annotated ``Sequence[service_type]`` or
        ``Iterable[service_type]`` receive a tuple of the collection's instances.
        """
        self._ensure_can_register(f"register a collection of '{type_name(service_type)}'")
        producers: list[InstanceProducer] = []
        for implementation in implementations:
            self._validate_implementation(service_type, implementation)
            builder = self._registry.builder_for_type(
                implementation,
                lifestyle=lifestyle or self._options.default_lifestyle,
            )
            producers.append(self._registry.create_producer(service_type, builder))
        for producer in producers:
            self._registry.add_to_collection(service_type, producer)
        return producers

    def register_initializer(
        self,
        service_type: type[T],
        initializer: Callable[[T], Any],
    ) -> None:
        """Run ``initializer`` on instances whose implementation derives from ``service_type``.

        Initializers run in registration order, after construction and property
        injection.
        """
        self._ensure_can_register(f"register an initializer for '{type_name(service_type)}'")
        if not is_runtime_class(service_type):
            msg = f"Initializers are registered per class, got {service_type!r}."
            raise DIPlanConfigurationError(msg, service_type=service_type)
        if not callable(initializer):
            msg = f"Initializer for '{type_name(service_type)}' must be callable."
            raise DIPlanConfigurationError(msg, service_type=service_type)
        self._registry.add_initializer(service_type, initializer)

    def add_plan_interceptor(self, interceptor: PlanInterceptor) -> None:
        """Add a ``(plan) -> plan`` transformer applied to every plan built from now on.

        Interceptors run in registration order, after property injection and
        before initializers. Returning anything other than a
        ``ConstructionPlan`` is a configuration error.

        Examples:
            .. code-block:: python

                def trace_handlers(plan: ConstructionPlan) -> ConstructionPlan:
                    if plan.service_type is not Handler:
                        return plan
                    return plan.with_root(WrapNode(plan.root, TracingHandler))


                container.add_plan_interceptor(trace_handlers)

        """
        self._ensure_can_register("add a plan interceptor")
        if not callable(interceptor):
            msg = f"Plan interceptor must be callable, got {interceptor!r}."
            raise DIPlanConfigurationError(msg)
        self._registry.add_interceptor(interceptor)

    def register_type_matcher(self, matcher: TypeMatcher) -> None:
        """Consult ``matcher`` for services without an explicit registration."""
        self._ensure_can_register("register a type matcher")
        if not callable(getattr(matcher, "match", None)):
            msg = f"Type matcher {matcher!r} must define a 'match(service_type)' method."
            raise DIPlanConfigurationError(msg)
        self._registry.add_type_matcher(matcher)

    def register_open_generic(
        self,
        open_service: Any,
        open_implementation: type[Any],
        *,
        lifestyle: Lifestyle | None = None,
    ) -> None:
        """Close ``open_implementation`` for every requested ``open_service[...]``."""
        self._ensure_can_register(f"register open generic '{type_name(open_service)}'")
        self._registry.add_type_matcher(
            OpenGenericTypeMatcher(open_service, open_implementation, lifestyle),
        )

    # endregion Registration Methods

    # region Resolution and Scope Management

    @overload
    def resolve(self, service_type: type[T]) -> T: ...

    @overload
    def resolve(self, service_type: Any) -> Any: ...

    def resolve(self, service_type: Any) -> Any:
        """Resolve an instance of ``service_type``.

        The first call locks the container.

        Raises:
            DIPlanDependencyNotRegisteredError: If nothing can produce the service.
            DIPlanActivationError: If construction failed.
            DIPlanCyclicDependencyError: If the service depends on itself.
            DIPlanConfigurationError: If the registration cannot be built.
            DIPlanObjectDisposedError: If the container is disposed.

        """
        self._require_not_disposed()
        producer = self._resolution_cache.get_or_build_root_producer(service_type)
        if producer is None:
            raise self._not_registered_error(service_type)
        return producer.get_instance()

    def resolve_many(self, service_type: type[T]) -> Iterator[T]:
        """Lazily resolve every instance registered with ``register_collection``.

        Instances are created as the iterator advances. Iterate again by calling
        ``resolve_many`` again. A service without a collection yields nothing.
        """
        self._require_not_disposed()
        self.lock()
        producers = self._registry.find_collection(service_type)
        return (producer.get_instance() for producer in producers)

    def enter_scope(self, parent: Scope | None = None) -> Scope:
        """Create a scope for one unit of work.

        Use the scope as a context manager to make it the ambient scope for
        scoped lifestyles and dispose it on exit.

        Args:
            parent: Parent scope. Defaults to the currently active scope.

        """
        self._require_not_disposed()
        locator = self._options.scope_locator
        if parent is None:
            parent = locator.get_current_scope()
        scope = Scope(
            scope_id=self._options.id_generator.next_id(),
            parent_scope=parent,
            locator=locator,
        )
        logger.debug(
            "Scope %d created in container %d (parent=%s)",
            scope.scope_id,
            self._container_id,
            None if parent is None else parent.scope_id,
        )
        return scope

    def lock(self) -> None:
        """Lock the container for registration. Calling it again does nothing."""
        self._resolution_cache.lock_for_resolution()

    # endregion Resolution and Scope Management

    # region Diagnostics

    def get_registration(
        self,
        service_type: Any,
        *,
        throw_on_failure: bool = False,
    ) -> InstanceProducer | None:
        """Return the valid producer for ``service_type``, or ``None``.

        Locks the container.

        Args:
            service_type: Service to look up.
            throw_on_failure: Raise instead of returning ``None`` when the service
                is unknown or its plan cannot be realized.

        """
        self._require_not_disposed()
        producer = self._resolution_cache.get_or_build_root_producer(service_type)
        if producer is None:
            if throw_on_failure:
                raise self._not_registered_error(service_type)
            return None
        if not producer.is_valid:
            if throw_on_failure and producer.failure is not None:
                raise producer.failure
            return None
        return producer

    def get_current_registrations(self) -> list[InstanceProducer]:
        """Return every producer created so far, explicit registrations first."""
        return self._registry.all_producers()

    def get_relationships(self, producer: InstanceProducer) -> list[KnownRelationship]:
        """Return the dependencies embedded in ``producer``'s plan; empty before it is realized."""
        return producer.get_relationships()

    def verify(self) -> None:
        """Lock the container, then build and create every registration once.

        Scoped registrations are created inside a throw-away scope. Singletons
        created here are kept.

        Raises:
            DIPlanConfigurationError: Listing every registration that failed.

        """
        self._require_not_disposed()
        self.lock()
        producers = self._registry.all_producers()
        failures: list[tuple[InstanceProducer, Exception]] = [
            (producer, producer.failure)
            for producer in producers
            if not producer.is_valid and producer.failure is not None
        ]
        if not failures:
            with self.enter_scope():
                for producer in producers:
                    try:
                        producer.get_instance()
                    except DIPlanError as error:
                        failures.append((producer, error))
        if failures:
            details = "\n".join(
                f"- {producer.service_identifier}: {error}" for producer, error in failures
            )
            count = len(failures)
            msg = f"The configuration is invalid. {count} registration(s) failed:\n{details}"
            raise DIPlanConfigurationError(msg) from failures[0][1]

    # endregion Diagnostics

    # region Disposal

    def dispose(self) -> None:
        """Dispose the container scope, closing singletons in reverse creation order.

        Later calls do nothing. Resolving from a disposed container raises
        ``DIPlanObjectDisposedError``.
        """
        if not self._mark_disposed():
            return
        self._container_scope.dispose()

    async def adispose(self) -> None:
        """Asynchronous variant of ``dispose``."""
        if not self._mark_disposed():
            return
        await self._container_scope.adispose()

    # endregion Disposal

    def _build_root_producer(self, service_type: Any) -> InstanceProducer | None:
        return self._registry.find_producer(service_type, None)

    def _ensure_can_register(self, action: str) -> None:
        self._require_not_disposed()
        self._resolution_cache.ensure_not_locked(action)

    def _require_not_disposed(self) -> None:
        if self._disposed:
            msg = f"Container {self._container_id} has been disposed."
            raise DIPlanObjectDisposedError(msg)

    def _mark_disposed(self) -> bool:
        with self._dispose_lock:
            if self._disposed:
                return False
            self._disposed = True
            return True

    def _validate_implementation(self, service_type: Any, implementation: Any) -> None:
        if not is_runtime_class(implementation):
            msg = (
                f"Implementation for '{type_name(service_type)}' must be a class, got "
                f"{implementation!r}. Use 'register_factory' for callables."
            )
            raise DIPlanConfigurationError(
                msg,
                service_type=service_type,
                implementation_type=implementation,
            )
        if inspect.isabstract(implementation):
            msg = (
                f"'{type_name(implementation)}' is abstract and cannot be constructed as the "
                f"implementation of '{type_name(service_type)}'."
            )
            raise DIPlanConfigurationError(
                msg,
                service_type=service_type,
                implementation_type=implementation,
            )
        if not is_runtime_class(service_type) or getattr(service_type, "_is_protocol", False):
            return
        try:
            is_subclass = issubclass(implementation, service_type)
        except TypeError:
            return
        if not is_subclass:
            msg = (
                f"'{type_name(implementation)}' does not derive from "
                f"'{type_name(service_type)}' and cannot be registered as its implementation."
            )
            raise DIPlanConfigurationError(
                msg,
                service_type=service_type,
                implementation_type=implementation,
            )

    def _not_registered_error(self, service_type: Any) -> DIPlanDependencyNotRegisteredError:
        msg = f"No registration for type '{type_name(service_type)}' could be found."
        if not self._options.resolve_unregistered_concrete_types and is_runtime_class(
            service_type,
        ):
            msg += " Resolving unregistered concrete types is disabled."
        return DIPlanDependencyNotRegisteredError(msg, service_type=service_type)


__all__ = ["Container"]
