"""Registration store and dependency lookup.

The registry keeps the producers created by explicit registrations, the
conditional and collection registrations, the type matchers, and the
producers derived on demand for unregistered services. It also owns the arena
that lets several service types share one plan builder when they are
registered with the same implementation and lifestyle.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from diplan._internal.identifiers import InjectionConsumer, PredicateContext, ServiceIdentifier
from diplan._internal.plan_builder import ConstructionPlanBuilder, PlanBuildSettings
from diplan._internal.producer import InstanceProducer
from diplan._internal.type_checks import type_name
from diplan._internal.type_matching import ConcreteTypeAutoregistrationPolicy
from diplan.exceptions import DIPlanConfigurationError

if TYPE_CHECKING:
    from diplan._internal.plan_builder import PlanInterceptor
    from diplan._internal.producer import ProducerEnvironment
    from diplan._internal.type_matching import TypeMatcher
    from diplan.lifestyles import Lifestyle
    from diplan.options import ContainerOptions


class Registry:
    """Store registrations and find the producer for a requested dependency."""

    def __init__(
        self,
        *,
        options: ContainerOptions,
        environment: ProducerEnvironment,
    ) -> None:
        self._options = options
        self._environment = environment
        self._interceptors: list[PlanInterceptor] = []
        self._initializers: list[tuple[type[Any], Callable[[Any], Any]]] = []
        self._type_matchers: list[TypeMatcher] = []
        self._producers: dict[Any, InstanceProducer] = {}
        self._conditional_producers: dict[Any, list[InstanceProducer]] = {}
        self._collections: dict[Any, list[InstanceProducer]] = {}
        self._derived_producers: dict[Any, InstanceProducer | None] = {}
        self._derived_lock = threading.Lock()
        self._arena: dict[tuple[str, Any, bool], ConstructionPlanBuilder] = {}
        self._arena_lock = threading.Lock()
        self._autoregistration_policy = ConcreteTypeAutoregistrationPolicy()
        self.settings = PlanBuildSettings(
            constructor_resolution=options.constructor_resolution,
            property_selection=options.property_selection,
            resolver=self,
            interceptors=self._interceptors,
            initializers=self._initializers,
        )

    def builder_for_type(
        self,
        implementation_type: type[Any],
        *,
        lifestyle: Lifestyle,
        parameter_overrides: Mapping[str, Any] | None = None,
        suppress_disposal: bool = False,
    ) -> ConstructionPlanBuilder:
        """Return a builder constructing ``implementation_type``.

        Builders without parameter overrides are shared per
        ``(lifestyle name, implementation type, suppress_disposal)``, so a singleton
        registered under several service types yields a single instance.
        """
        if parameter_overrides:
            return ConstructionPlanBuilder.for_type(
                implementation_type,
                lifestyle=lifestyle,
                settings=self.settings,
                parameter_overrides=parameter_overrides,
                suppress_disposal=suppress_disposal,
            )
        key = (lifestyle.name, implementation_type, suppress_disposal)
        with self._arena_lock:
            builder = self._arena.get(key)
            if builder is None:
                builder = ConstructionPlanBuilder.for_type(
                    implementation_type,
                    lifestyle=lifestyle,
                    settings=self.settings,
                    suppress_disposal=suppress_disposal,
                )
                self._arena[key] = builder
        return builder

    def create_producer(
        self,
        service_type: Any,
        builder: ConstructionPlanBuilder,
        *,
        predicate: Callable[[PredicateContext], bool] | None = None,
        auto_registered: bool = False,
    ) -> InstanceProducer:
        return InstanceProducer(
            service_identifier=ServiceIdentifier(service_type, predicate),
            builder=builder,
            environment=self._environment,
            auto_registered=auto_registered,
        )

    def add(self, producer: InstanceProducer) -> None:
        """Store an unconditional registration.

        Raises:
            DIPlanConfigurationError: If the service already has a registration and
                overriding is disabled, or if it has conditional registrations.

        """
        service_type = producer.service_type
        if service_type in self._conditional_producers:
            msg = (
                f"'{type_name(service_type)}' already has conditional registrations. Mixing "
                "conditional and unconditional registrations for one service is not supported."
            )
            raise DIPlanConfigurationError(msg, service_type=service_type)
        if service_type in self._producers and not self._options.allow_overriding_registrations:
            msg = (
                f"'{type_name(service_type)}' has already been registered. Pass "
                "'allow_overriding_registrations=True' to the container to replace "
                "registrations."
            )
            raise DIPlanConfigurationError(msg, service_type=service_type)
        self._producers[service_type] = producer

    def add_conditional(self, producer: InstanceProducer) -> None:
        service_type = producer.service_type
        if service_type in self._producers:
            msg = (
                f"'{type_name(service_type)}' already has an unconditional registration. "
                "Mixing conditional and unconditional registrations for one service is not "
                "supported."
            )
            raise DIPlanConfigurationError(msg, service_type=service_type)
        self._conditional_producers.setdefault(service_type, []).append(producer)

    def add_to_collection(self, item_type: Any, producer: InstanceProducer) -> None:
        self._collections.setdefault(item_type, []).append(producer)

    def add_type_matcher(self, matcher: TypeMatcher) -> None:
        self._type_matchers.append(matcher)

    def add_interceptor(self, interceptor: PlanInterceptor) -> None:
        self._interceptors.append(interceptor)

    def add_initializer(self, service_type: type[Any], initializer: Callable[[Any], Any]) -> None:
        self._initializers.append((service_type, initializer))

    def find_producer(
        self,
        service_type: Any,
        consumer: InjectionConsumer | None,
    ) -> InstanceProducer | None:
        """Return the producer for ``service_type`` as seen by ``consumer``.

        Explicit registrations win, then conditional registrations whose predicate
        accepts the consumer, then type matchers, then concrete-type
        autoregistration. A service with conditional registrations has no
        producer when none of its predicates applies.

        Raises:
            DIPlanConfigurationError: If more than one conditional registration
                applies.

        """
        producer = self._producers.get(service_type)
        if producer is not None:
            return producer
        conditionals = self._conditional_producers.get(service_type)
        if conditionals:
            return self._select_conditional(service_type, conditionals, consumer)
        return self._find_derived(service_type)

    def find_collection(self, item_type: Any) -> tuple[InstanceProducer, ...]:
        return tuple(self._collections.get(item_type, ()))

    def all_producers(self) -> list[InstanceProducer]:
        """Return every producer known to the registry, explicit ones first."""
        producers: list[InstanceProducer] = list(self._producers.values())
        for conditionals in self._conditional_producers.values():
            producers.extend(conditionals)
        for collection in self._collections.values():
            producers.extend(collection)
        with self._derived_lock:
            producers.extend(p for p in self._derived_producers.values() if p is not None)
        return producers

    def _select_conditional(
        self,
        service_type: Any,
        conditionals: list[InstanceProducer],
        consumer: InjectionConsumer | None,
    ) -> InstanceProducer | None:
        applicable: list[InstanceProducer] = []
        for producer in conditionals:
            predicate = producer.service_identifier.predicate
            context = PredicateContext(service_type, producer.implementation_type, consumer)
            if predicate is not None and predicate(context):
                applicable.append(producer)

        if len(applicable) > 1:
            implementations = ", ".join(
                f"'{type_name(producer.implementation_type)}'" for producer in applicable
            )
            target = "a root request" if consumer is None else str(consumer)
            msg = (
                f"Multiple conditional registrations for '{type_name(service_type)}' apply to "
                f"{target}: {implementations}. Make the predicates mutually exclusive."
            )
            raise DIPlanConfigurationError(
                msg,
                service_type=service_type,
                implementation_type=None if consumer is None else consumer.implementation_type,
                parameter_name=None if consumer is None else consumer.parameter_name,
            )
        return applicable[0] if applicable else None

    def _find_derived(self, service_type: Any) -> InstanceProducer | None:
        try:
            return self._derived_producers[service_type]
        except KeyError:
            pass
        producer = self._build_derived(service_type)
        with self._derived_lock:
            return self._derived_producers.setdefault(service_type, producer)

    def _build_derived(self, service_type: Any) -> InstanceProducer | None:
        for matcher in self._type_matchers:
            match = matcher.match(service_type)
            if match is None:
                continue
            builder = ConstructionPlanBuilder.for_type(
                match.implementation_type,
                lifestyle=match.lifestyle or self._options.default_lifestyle,
                settings=self.settings,
                type_arguments=match.type_arguments,
            )
            return self.create_producer(service_type, builder)

        if not self._options.resolve_unregistered_concrete_types:
            return None
        if not self._autoregistration_policy.is_eligible_concrete(service_type):
            return None
        builder = self.builder_for_type(
            service_type,
            lifestyle=self._options.default_lifestyle,
        )
        return self.create_producer(service_type, builder, auto_registered=True)


__all__ = ["Registry"]
