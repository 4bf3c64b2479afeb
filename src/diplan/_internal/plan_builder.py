"""Build inspectable construction plans from registration recipes.

A ``ConstructionPlanBuilder`` owns one recipe (a class to construct, a
factory delegate to call, or a constant) and turns it into a
``ConstructionPlan`` in a fixed order:

1. the base node, with one producer node per resolved parameter;
2. property injection, only when the property-selection behavior selects any;
3. plan interceptors, in registration order;
4. initializers whose service type matches the implementation;
5. parameter overrides, replacing placeholder nodes.

Building a plan never creates instances and never caches anything except the
relationship metadata used for diagnostics.
"""

from __future__ import annotations

import inspect
import threading
import types
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, Union, cast, get_args, get_origin

from diplan._internal.diagnostics import KnownRelationship
from diplan._internal.disposal import Disposability, disposability_of
from diplan._internal.identifiers import InjectionConsumer
from diplan._internal.type_checks import (
    collection_item_type,
    is_runtime_class,
    type_name,
    unwrap_annotated,
)
from diplan._internal.type_matching import substitute_typevars
from diplan.exceptions import DIPlanConfigurationError
from diplan.plans import (
    PLAN_NODE_TYPES,
    CollectionNode,
    ConstantNode,
    ConstructionPlan,
    ConstructorNode,
    FactoryNode,
    InitializerNode,
    PlaceholderNode,
    PlanArgument,
    PlanNode,
    ProducerNode,
    PropertyInjectionNode,
    replace_nodes,
)

if TYPE_CHECKING:
    from diplan._internal.binding import (
        BoundParameter,
        ConstructorResolutionBehavior,
        PropertySelectionBehavior,
    )
    from diplan._internal.producer import InstanceProducer
    from diplan.lifestyles import Lifestyle

PlanInterceptor = Callable[[ConstructionPlan], ConstructionPlan]


class RecipeKind(Enum):
    CONSTRUCTOR = "constructor"
    FACTORY = "factory"
    INSTANCE = "instance"


class DependencyResolver(Protocol):
    def find_producer(
        self,
        service_type: Any,
        consumer: InjectionConsumer | None,
    ) -> InstanceProducer | None:
        """Return the producer satisfying ``service_type`` for ``consumer``, if any."""
        ...

    def find_collection(self, item_type: Any) -> tuple[InstanceProducer, ...]:
        """Return the producers registered as a collection of ``item_type``."""
        ...


@dataclass(frozen=True, slots=True, kw_only=True)
class PlanBuildSettings:
    """Container collaborators shared by every builder.

    ``interceptors`` and ``initializers`` are the container's live lists. They
    only change before the container is locked, and plans are only built after.
    """

    constructor_resolution: ConstructorResolutionBehavior
    property_selection: PropertySelectionBehavior
    resolver: DependencyResolver
    interceptors: Sequence[PlanInterceptor]
    initializers: Sequence[tuple[type[Any], Callable[[Any], Any]]]


class ConstructionPlanBuilder:
    """Turn one registration recipe into construction plans.

    A builder is created once per registration and may be shared by several
    producers when the same implementation is registered under several
    service types with the same lifestyle.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        kind: RecipeKind,
        lifestyle: Lifestyle,
        settings: PlanBuildSettings,
        implementation_type: Any = None,
        factory: Callable[..., Any] | None = None,
        instance: Any = None,
        parameter_overrides: Mapping[str, Any] | None = None,
        type_arguments: Mapping[TypeVar, Any] | None = None,
        suppress_disposal: bool = False,
    ) -> None:
        self._kind = kind
        self._lifestyle = lifestyle
        self._settings = settings
        self._implementation_type = implementation_type
        self._factory = factory
        self._instance = instance
        self._parameter_overrides = dict(parameter_overrides or {})
        self._type_arguments = dict(type_arguments or {})
        self._suppress_disposal = suppress_disposal
        self._relationships: dict[tuple[int, int], KnownRelationship] = {}
        self._relationships_lock = threading.Lock()

    @classmethod
    def for_type(
        cls,
        implementation_type: type[Any],
        *,
        lifestyle: Lifestyle,
        settings: PlanBuildSettings,
        parameter_overrides: Mapping[str, Any] | None = None,
        type_arguments: Mapping[TypeVar, Any] | None = None,
        suppress_disposal: bool = False,
    ) -> ConstructionPlanBuilder:
        return cls(
            kind=RecipeKind.CONSTRUCTOR,
            lifestyle=lifestyle,
            settings=settings,
            implementation_type=implementation_type,
            parameter_overrides=parameter_overrides,
            type_arguments=type_arguments,
            suppress_disposal=suppress_disposal,
        )

    @classmethod
    def for_factory(
        cls,
        factory: Callable[..., Any],
        *,
        lifestyle: Lifestyle,
        settings: PlanBuildSettings,
        parameter_overrides: Mapping[str, Any] | None = None,
        suppress_disposal: bool = False,
    ) -> ConstructionPlanBuilder:
        return cls(
            kind=RecipeKind.FACTORY,
            lifestyle=lifestyle,
            settings=settings,
            factory=factory,
            parameter_overrides=parameter_overrides,
            suppress_disposal=suppress_disposal,
        )

    @classmethod
    def for_instance(
        cls,
        instance: Any,
        *,
        lifestyle: Lifestyle,
        settings: PlanBuildSettings,
    ) -> ConstructionPlanBuilder:
        return cls(
            kind=RecipeKind.INSTANCE,
            lifestyle=lifestyle,
            settings=settings,
            implementation_type=type(instance),
            instance=instance,
            suppress_disposal=True,
        )

    @property
    def kind(self) -> RecipeKind:
        return self._kind

    @property
    def lifestyle(self) -> Lifestyle:
        return self._lifestyle

    @property
    def implementation_type(self) -> Any:
        """Concrete class for constructor and instance recipes, the delegate for factories."""
        if self._kind is RecipeKind.FACTORY:
            return self._factory
        return self._implementation_type

    @property
    def wraps_delegate(self) -> bool:
        return self._kind is RecipeKind.FACTORY

    @property
    def suppress_disposal(self) -> bool:
        return self._suppress_disposal

    @property
    def disposability(self) -> Disposability:
        if self._kind is RecipeKind.CONSTRUCTOR:
            return disposability_of(self._implementation_type)
        if self._kind is RecipeKind.INSTANCE:
            return Disposability.NEVER
        return Disposability.UNKNOWN

    def disposability_for(self, plan: ConstructionPlan) -> Disposability:
        """Return the disposability of instances produced by ``plan``.

        An interceptor may have replaced what the plan produces, so intercepted
        plans are checked at runtime. Registered instances are never disposed.
        """
        if plan.intercepted and self._kind is not RecipeKind.INSTANCE:
            return Disposability.UNKNOWN
        return self.disposability

    @property
    def relationships(self) -> list[KnownRelationship]:
        """Consumer/dependency pairs seen in the plans built so far."""
        with self._relationships_lock:
            return list(self._relationships.values())

    def build_plan(self, service_type: Any) -> ConstructionPlan:
        """Build the construction plan for ``service_type``.

        Raises:
            DIPlanConfigurationError: If a dependency cannot be resolved, an
                interceptor returns nothing, or a parameter override names an
                unknown parameter.

        """
        implementation = self.implementation_type
        root = self._build_base_node()
        if self._kind is RecipeKind.CONSTRUCTOR:
            root = self._apply_property_injection(root)

        plan = ConstructionPlan(
            service_type=service_type,
            implementation_type=implementation,
            root=root,
        )
        plan = self._apply_interceptors(plan)
        plan = self._apply_initializers(plan)
        plan = self._apply_parameter_overrides(plan)
        self._record_relationships(plan)
        return plan

    def _build_base_node(self) -> PlanNode:
        if self._kind is RecipeKind.INSTANCE:
            return ConstantNode(self._instance)
        if self._kind is RecipeKind.FACTORY:
            factory = cast("Callable[..., Any]", self._factory)
            return FactoryNode(factory, self._bind_arguments(factory))
        return ConstructorNode(
            self._implementation_type,
            self._bind_arguments(self._implementation_type),
        )

    def _bind_arguments(self, implementation: Callable[..., Any]) -> tuple[PlanArgument, ...]:
        parameters = self._settings.constructor_resolution.select_parameters(implementation)
        known_names = {parameter.name for parameter in parameters}
        unknown_overrides = sorted(set(self._parameter_overrides) - known_names)
        if unknown_overrides:
            formatted = ", ".join(f"'{name}'" for name in unknown_overrides)
            msg = (
                f"Parameter overrides {formatted} do not match any injectable parameter "
                f"of '{type_name(implementation)}'."
            )
            raise DIPlanConfigurationError(msg, implementation_type=implementation)

        arguments: list[PlanArgument] = []
        skipped_positional = False
        for parameter in parameters:
            node = self._bind_parameter(implementation, parameter)
            if node is None:
                skipped_positional = skipped_positional or (
                    parameter.kind is inspect.Parameter.POSITIONAL_ONLY
                )
                continue
            if skipped_positional and parameter.kind is inspect.Parameter.POSITIONAL_ONLY:
                msg = (
                    f"Positional-only parameter '{parameter.name}' of "
                    f"'{type_name(implementation)}' follows a positional-only parameter that "
                    "could not be resolved."
                )
                raise DIPlanConfigurationError(
                    msg,
                    implementation_type=implementation,
                    parameter_name=parameter.name,
                )
            arguments.append(PlanArgument(name=parameter.name, node=node, kind=parameter.kind))
        return tuple(arguments)

    def _bind_parameter(
        self,
        implementation: Callable[..., Any],
        parameter: BoundParameter,
    ) -> PlanNode | None:
        annotation = substitute_typevars(
            unwrap_annotated(parameter.annotation)[0],
            self._type_arguments,
        )
        if parameter.name in self._parameter_overrides:
            return PlaceholderNode(parameter.name, annotation)

        consumer = InjectionConsumer(implementation, parameter.name)
        node = self._resolve_dependency(annotation, consumer)
        if node is not None:
            return node
        if parameter.has_default:
            return None
        if _is_optional(annotation):
            return ConstantNode(None)

        msg = (
            f"The constructor of '{type_name(implementation)}' contains parameter "
            f"'{parameter.name}' of type '{type_name(annotation)}', which is not registered "
            "and cannot be created. Register it, or give the parameter a default value."
        )
        raise DIPlanConfigurationError(
            msg,
            service_type=annotation,
            implementation_type=implementation,
            parameter_name=parameter.name,
        )

    def _resolve_dependency(self, annotation: Any, consumer: InjectionConsumer) -> PlanNode | None:
        resolver = self._settings.resolver
        item_type = collection_item_type(annotation)
        if item_type is not None:
            producers = resolver.find_collection(item_type)
            return CollectionNode(item_type, tuple(self._embed(p) for p in producers))

        target = _strip_optional(annotation)
        producer = resolver.find_producer(target, consumer)
        if producer is None:
            return None
        return self._embed(producer)

    def _embed(self, producer: InstanceProducer) -> ProducerNode:
        # The producer realizes embedded plans afterwards, walking the graph
        # without recursion.
        return ProducerNode(producer)

    def _apply_property_injection(self, root: PlanNode) -> PlanNode:
        selection = self._settings.property_selection
        properties = selection.select_properties(self._implementation_type)
        if not properties:
            return root

        bound: list[PlanArgument] = []
        for selected in properties:
            annotation = substitute_typevars(selected.annotation, self._type_arguments)
            consumer = InjectionConsumer(self._implementation_type, selected.name)
            node = self._resolve_dependency(annotation, consumer)
            if node is None:
                msg = (
                    f"Property '{selected.name}' of '{type_name(self._implementation_type)}' "
                    f"is of type '{type_name(annotation)}', which is not registered and cannot "
                    "be created."
                )
                raise DIPlanConfigurationError(
                    msg,
                    service_type=annotation,
                    implementation_type=self._implementation_type,
                    parameter_name=selected.name,
                )
            bound.append(PlanArgument(name=selected.name, node=node))
        return PropertyInjectionNode(root, tuple(bound))

    def _apply_interceptors(self, plan: ConstructionPlan) -> ConstructionPlan:
        intercepted = False
        for interceptor in self._settings.interceptors:
            result = interceptor(plan)
            if not isinstance(result, ConstructionPlan):
                msg = (
                    f"Plan interceptor {interceptor!r} returned {result!r} for "
                    f"'{type_name(plan.service_type)}' instead of a construction plan."
                )
                raise DIPlanConfigurationError(
                    msg,
                    service_type=plan.service_type,
                    implementation_type=plan.implementation_type,
                )
            if result.root is not plan.root:
                intercepted = True
            plan = result
        if intercepted and not plan.intercepted:
            plan = ConstructionPlan(
                service_type=plan.service_type,
                implementation_type=plan.implementation_type,
                root=plan.root,
                intercepted=True,
            )
        return plan

    def _apply_initializers(self, plan: ConstructionPlan) -> ConstructionPlan:
        target_type = plan.implementation_type
        if not is_runtime_class(target_type):
            target_type = plan.service_type
        if not is_runtime_class(target_type):
            return plan

        initializers = tuple(
            initializer
            for service_type, initializer in self._settings.initializers
            if _is_subclass(target_type, service_type)
        )
        if not initializers:
            return plan
        return plan.with_root(InitializerNode(plan.root, initializers))

    def _apply_parameter_overrides(self, plan: ConstructionPlan) -> ConstructionPlan:
        if not self._parameter_overrides:
            return plan
        overrides = self._parameter_overrides

        def replacement(node: PlanNode) -> PlanNode | None:
            if isinstance(node, PlaceholderNode) and node.parameter_name in overrides:
                value = overrides[node.parameter_name]
                if isinstance(value, PLAN_NODE_TYPES):
                    return value
                return ConstantNode(value)
            return None

        return plan.with_root(replace_nodes(plan.root, replacement))

    def _record_relationships(self, plan: ConstructionPlan) -> None:
        with self._relationships_lock:
            for producer in plan.producers():
                key = (id(plan.implementation_type), id(producer))
                if key not in self._relationships:
                    self._relationships[key] = KnownRelationship(
                        implementation_type=plan.implementation_type,
                        lifestyle=self._lifestyle,
                        dependency=producer,
                    )

    def __repr__(self) -> str:
        return (
            f"ConstructionPlanBuilder(kind={self._kind.value}, "
            f"implementation={type_name(self.implementation_type)}, "
            f"lifestyle={self._lifestyle.name})"
        )


def _is_optional(annotation: Any) -> bool:
    if get_origin(annotation) not in (Union, types.UnionType):
        return False
    return type(None) in get_args(annotation)


def _strip_optional(annotation: Any) -> Any:
    if not _is_optional(annotation):
        return annotation
    remaining = tuple(argument for argument in get_args(annotation) if argument is not type(None))
    if len(remaining) == 1:
        return remaining[0]
    return annotation


def _is_subclass(candidate: type[Any], service_type: Any) -> bool:
    if not is_runtime_class(service_type):
        return False
    try:
        return issubclass(candidate, service_type)
    except TypeError:
        return False


__all__ = [
    "ConstructionPlanBuilder",
    "DependencyResolver",
    "PlanBuildSettings",
    "PlanInterceptor",
    "RecipeKind",
]
