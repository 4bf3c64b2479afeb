from __future__ import annotations

import inspect
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from diplan import SINGLETON, TRANSIENT, Container
from diplan._internal.binding import (
    MarkedPropertySelection,
    NoPropertySelection,
    SignatureConstructorResolution,
)
from diplan._internal.disposal import Disposability
from diplan._internal.identifiers import InjectionConsumer
from diplan._internal.plan_builder import (
    ConstructionPlanBuilder,
    PlanBuildSettings,
    RecipeKind,
)
from diplan._internal.producer import InstanceProducer
from diplan.exceptions import DIPlanConfigurationError
from diplan.markers import Inject
from diplan.plans import (
    CollectionNode,
    ConstantNode,
    ConstructionPlan,
    ConstructorNode,
    FactoryNode,
    InitializerNode,
    PlaceholderNode,
    ProducerNode,
    PropertyInjectionNode,
    WrapNode,
)


class _Clock:
    pass


class _Handler:
    pass


class _Service:
    def __init__(self, clock: _Clock, retries: int = 3) -> None:
        self.clock = clock
        self.retries = retries


class _Dispatcher:
    def __init__(self, handlers: Sequence[_Handler]) -> None:
        self.handlers = handlers


class _Report:
    clock: Inject[_Clock]


class _PositionalOnly:
    def __init__(self, clock: _Clock, /) -> None:
        self.clock = clock


class _Closeable:
    def close(self) -> None:
        pass


class _StubResolver:
    """Resolve a fixed set of producers, recording every lookup."""

    def __init__(
        self,
        producers: dict[Any, InstanceProducer] | None = None,
        collections: dict[Any, tuple[InstanceProducer, ...]] | None = None,
    ) -> None:
        self.producers = producers or {}
        self.collections = collections or {}
        self.lookups: list[tuple[Any, InjectionConsumer | None]] = []

    def find_producer(
        self,
        service_type: Any,
        consumer: InjectionConsumer | None,
    ) -> InstanceProducer | None:
        self.lookups.append((service_type, consumer))
        return self.producers.get(service_type)

    def find_collection(self, item_type: Any) -> tuple[InstanceProducer, ...]:
        return self.collections.get(item_type, ())


def _settings(
    resolver: _StubResolver,
    *,
    interceptors: Sequence[Callable[[ConstructionPlan], ConstructionPlan]] = (),
    initializers: Sequence[tuple[type[Any], Callable[[Any], Any]]] = (),
    marked_properties: bool = False,
) -> PlanBuildSettings:
    return PlanBuildSettings(
        constructor_resolution=SignatureConstructorResolution(),
        property_selection=(
            MarkedPropertySelection() if marked_properties else NoPropertySelection()
        ),
        resolver=resolver,
        interceptors=interceptors,
        initializers=initializers,
    )


def _producer(service_type: type[Any]) -> InstanceProducer:
    container = Container()
    return container.register(service_type, lifestyle=SINGLETON)


def test_constructor_plan_embeds_resolved_dependency() -> None:
    clock_producer = _producer(_Clock)
    resolver = _StubResolver({_Clock: clock_producer})
    builder = ConstructionPlanBuilder.for_type(
        _Service,
        lifestyle=TRANSIENT,
        settings=_settings(resolver),
    )

    plan = builder.build_plan(_Service)

    assert isinstance(plan.root, ConstructorNode)
    assert plan.root.implementation_type is _Service
    assert [argument.name for argument in plan.root.arguments] == ["clock"]
    node = plan.root.arguments[0].node
    assert isinstance(node, ProducerNode)
    assert node.producer is clock_producer
    assert resolver.lookups[0] == (_Clock, InjectionConsumer(_Service, "clock"))


def test_unresolvable_parameter_with_default_is_omitted() -> None:
    resolver = _StubResolver({_Clock: _producer(_Clock)})
    builder = ConstructionPlanBuilder.for_type(
        _Service,
        lifestyle=TRANSIENT,
        settings=_settings(resolver),
    )

    plan = builder.build_plan(_Service)

    assert isinstance(plan.root, ConstructorNode)
    assert "retries" not in {argument.name for argument in plan.root.arguments}


def test_missing_required_dependency_raises() -> None:
    builder = ConstructionPlanBuilder.for_type(
        _Service,
        lifestyle=TRANSIENT,
        settings=_settings(_StubResolver()),
    )

    with pytest.raises(DIPlanConfigurationError) as exc_info:
        builder.build_plan(_Service)

    assert exc_info.value.parameter_name == "clock"
    assert exc_info.value.implementation_type is _Service


def test_positional_only_parameter_kind_kept() -> None:
    resolver = _StubResolver({_Clock: _producer(_Clock)})
    builder = ConstructionPlanBuilder.for_type(
        _PositionalOnly,
        lifestyle=TRANSIENT,
        settings=_settings(resolver),
    )

    plan = builder.build_plan(_PositionalOnly)

    assert isinstance(plan.root, ConstructorNode)
    assert plan.root.arguments[0].kind is inspect.Parameter.POSITIONAL_ONLY


def test_sequence_parameter_becomes_collection_node() -> None:
    handlers = (_producer(_Handler), _producer(_Handler))
    resolver = _StubResolver(collections={_Handler: handlers})
    builder = ConstructionPlanBuilder.for_type(
        _Dispatcher,
        lifestyle=TRANSIENT,
        settings=_settings(resolver),
    )

    plan = builder.build_plan(_Dispatcher)

    assert isinstance(plan.root, ConstructorNode)
    node = plan.root.arguments[0].node
    assert isinstance(node, CollectionNode)
    assert node.item_type is _Handler
    assert [item.producer for item in node.items] == list(handlers)  # type: ignore[union-attr]


def test_factory_plan() -> None:
    def make_service(clock: _Clock) -> _Service:
        return _Service(clock)

    resolver = _StubResolver({_Clock: _producer(_Clock)})
    builder = ConstructionPlanBuilder.for_factory(
        make_service,
        lifestyle=TRANSIENT,
        settings=_settings(resolver),
    )

    plan = builder.build_plan(_Service)

    assert builder.kind is RecipeKind.FACTORY
    assert builder.wraps_delegate
    assert builder.disposability is Disposability.UNKNOWN
    assert isinstance(plan.root, FactoryNode)
    assert plan.implementation_type is make_service


def test_instance_plan_is_constant_and_never_disposed() -> None:
    instance = _Closeable()
    builder = ConstructionPlanBuilder.for_instance(
        instance,
        lifestyle=SINGLETON,
        settings=_settings(_StubResolver()),
    )

    plan = builder.build_plan(_Closeable)

    assert plan.root == ConstantNode(instance)
    assert builder.suppress_disposal
    assert builder.disposability is Disposability.NEVER


def test_constructor_disposability_from_type() -> None:
    settings = _settings(_StubResolver())

    closeable = ConstructionPlanBuilder.for_type(_Closeable, lifestyle=TRANSIENT, settings=settings)
    plain = ConstructionPlanBuilder.for_type(_Clock, lifestyle=TRANSIENT, settings=settings)

    assert closeable.disposability is Disposability.ALWAYS
    assert plain.disposability is Disposability.NEVER


def test_property_injection_skipped_without_selected_properties() -> None:
    builder = ConstructionPlanBuilder.for_type(
        _Clock,
        lifestyle=TRANSIENT,
        settings=_settings(_StubResolver(), marked_properties=True),
    )

    plan = builder.build_plan(_Clock)

    assert isinstance(plan.root, ConstructorNode)


def test_property_injection_node_added() -> None:
    resolver = _StubResolver({_Clock: _producer(_Clock)})
    builder = ConstructionPlanBuilder.for_type(
        _Report,
        lifestyle=TRANSIENT,
        settings=_settings(resolver, marked_properties=True),
    )

    plan = builder.build_plan(_Report)

    assert isinstance(plan.root, PropertyInjectionNode)
    assert [argument.name for argument in plan.root.properties] == ["clock"]


def test_missing_property_dependency_raises() -> None:
    builder = ConstructionPlanBuilder.for_type(
        _Report,
        lifestyle=TRANSIENT,
        settings=_settings(_StubResolver(), marked_properties=True),
    )

    with pytest.raises(DIPlanConfigurationError, match="Property 'clock'"):
        builder.build_plan(_Report)


def test_steps_applied_in_order() -> None:
    """Interceptors see the base plan, initializers wrap the intercepted root."""
    seen_roots: list[Any] = []

    def interceptor(plan: ConstructionPlan) -> ConstructionPlan:
        seen_roots.append(plan.root)
        return plan.with_root(WrapNode(plan.root, lambda instance: instance))

    def initializer(instance: Any) -> None:
        pass

    builder = ConstructionPlanBuilder.for_type(
        _Clock,
        lifestyle=TRANSIENT,
        settings=_settings(
            _StubResolver(),
            interceptors=[interceptor],
            initializers=[(_Clock, initializer)],
        ),
    )

    plan = builder.build_plan(_Clock)

    assert isinstance(seen_roots[0], ConstructorNode)
    assert plan.intercepted
    assert isinstance(plan.root, InitializerNode)
    assert isinstance(plan.root.target, WrapNode)
    assert plan.root.initializers == (initializer,)


def test_unchanged_plan_is_not_marked_intercepted() -> None:
    builder = ConstructionPlanBuilder.for_type(
        _Clock,
        lifestyle=TRANSIENT,
        settings=_settings(_StubResolver(), interceptors=[lambda plan: plan]),
    )

    assert not builder.build_plan(_Clock).intercepted


def test_initializer_for_unrelated_type_skipped() -> None:
    builder = ConstructionPlanBuilder.for_type(
        _Clock,
        lifestyle=TRANSIENT,
        settings=_settings(_StubResolver(), initializers=[(_Handler, lambda instance: None)]),
    )

    assert isinstance(builder.build_plan(_Clock).root, ConstructorNode)


def test_parameter_override_replaces_placeholder_last() -> None:
    placeholder_seen: list[bool] = []

    def interceptor(plan: ConstructionPlan) -> ConstructionPlan:
        placeholder_seen.append(any(isinstance(node, PlaceholderNode) for node in plan.nodes()))
        return plan

    resolver = _StubResolver({_Clock: _producer(_Clock)})
    builder = ConstructionPlanBuilder.for_type(
        _Service,
        lifestyle=TRANSIENT,
        settings=_settings(resolver, interceptors=[interceptor]),
        parameter_overrides={"retries": 7},
    )

    plan = builder.build_plan(_Service)

    assert placeholder_seen == [True]
    assert isinstance(plan.root, ConstructorNode)
    retries = next(argument for argument in plan.root.arguments if argument.name == "retries")
    assert retries.node == ConstantNode(7)
    assert not any(isinstance(node, PlaceholderNode) for node in plan.nodes())


def test_relationships_recorded_once() -> None:
    clock_producer = _producer(_Clock)
    resolver = _StubResolver({_Clock: clock_producer})
    builder = ConstructionPlanBuilder.for_type(
        _Service,
        lifestyle=SINGLETON,
        settings=_settings(resolver),
    )

    builder.build_plan(_Service)
    builder.build_plan(_Service)

    relationships = builder.relationships
    assert len(relationships) == 1
    assert relationships[0].implementation_type is _Service
    assert relationships[0].lifestyle is SINGLETON
    assert relationships[0].dependency is clock_producer
