"""Inspectable construction plans.

A construction plan is a small tree of frozen nodes describing how one
instance is built: which constructor or factory is invoked with which
arguments, which properties are assigned afterwards, and which initializers
run. Plans are built by ``ConstructionPlanBuilder``, may be rewritten by plan
interceptors, and are compiled once into a zero-argument factory.
"""

from __future__ import annotations

import dataclasses
import inspect
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from typing_extensions import TypeAlias

    from diplan._internal.producer import InstanceProducer


@dataclass(frozen=True, slots=True)
class ConstantNode:
    """Yield a fixed value."""

    value: Any


@dataclass(frozen=True, slots=True)
class PlanArgument:
    """Bind the value produced by ``node`` to a named parameter or attribute."""

    name: str
    node: PlanNode
    kind: inspect._ParameterKind = inspect.Parameter.POSITIONAL_OR_KEYWORD


@dataclass(frozen=True, slots=True)
class ConstructorNode:
    """Invoke ``implementation_type`` with the given arguments."""

    implementation_type: type[Any]
    arguments: tuple[PlanArgument, ...] = ()


@dataclass(frozen=True, slots=True)
class FactoryNode:
    """Invoke a user-supplied factory delegate with the given arguments."""

    factory: Callable[..., Any]
    arguments: tuple[PlanArgument, ...] = ()


@dataclass(frozen=True, slots=True, eq=False)
class ProducerNode:
    """Embed the output of another producer, including its lifestyle caching."""

    producer: InstanceProducer


@dataclass(frozen=True, slots=True)
class CollectionNode:
    """Build a tuple with one element per item node, in registration order."""

    item_type: Any
    items: tuple[PlanNode, ...] = ()


@dataclass(frozen=True, slots=True)
class PropertyInjectionNode:
    """Build ``target`` and then assign each property on the result."""

    target: PlanNode
    properties: tuple[PlanArgument, ...]


@dataclass(frozen=True, slots=True)
class InitializerNode:
    """Build ``target`` and then pass the result to each initializer in order."""

    target: PlanNode
    initializers: tuple[Callable[[Any], Any], ...]


@dataclass(frozen=True, slots=True)
class WrapNode:
    """Build ``target`` and replace it with ``wrapper(instance)``.

    Plan interceptors use this node to decorate or proxy an instance.
    """

    target: PlanNode
    wrapper: Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class PlaceholderNode:
    """Mark a parameter whose value is supplied by a parameter override.

    Placeholders are replaced as the last plan-building step. A plan that still
    contains one cannot be compiled.
    """

    parameter_name: str
    annotation: Any = None


PlanNode: TypeAlias = Union[
    ConstantNode,
    ConstructorNode,
    FactoryNode,
    ProducerNode,
    CollectionNode,
    PropertyInjectionNode,
    InitializerNode,
    WrapNode,
    PlaceholderNode,
]


PLAN_NODE_TYPES: tuple[type[Any], ...] = (
    ConstantNode,
    ConstructorNode,
    FactoryNode,
    ProducerNode,
    CollectionNode,
    PropertyInjectionNode,
    InitializerNode,
    WrapNode,
    PlaceholderNode,
)


@dataclass(frozen=True, slots=True)
class ConstructionPlan:
    """Realized description of how to build one instance of ``service_type``.

    Attributes:
        service_type: Service the plan was built for.
        implementation_type: Concrete type the plan produces, or the factory
            delegate for factory registrations.
        root: Root node of the plan tree.
        intercepted: True when a plan interceptor replaced the root.

    """

    service_type: Any
    implementation_type: Any
    root: PlanNode
    intercepted: bool = False

    def with_root(self, root: PlanNode) -> ConstructionPlan:
        """Return a copy of the plan with a different root node."""
        return dataclasses.replace(self, root=root)

    def nodes(self) -> Iterator[PlanNode]:
        """Iterate over every node of the plan, parents before children."""
        return iter_nodes(self.root)

    def producers(self) -> list[InstanceProducer]:
        """Return the producers embedded directly in this plan, in plan order."""
        return [node.producer for node in self.nodes() if isinstance(node, ProducerNode)]


def child_nodes(node: PlanNode) -> tuple[PlanNode, ...]:
    """Return the direct children of a node."""
    if isinstance(node, (ConstructorNode, FactoryNode)):
        return tuple(argument.node for argument in node.arguments)
    if isinstance(node, PropertyInjectionNode):
        return (node.target, *(argument.node for argument in node.properties))
    if isinstance(node, (InitializerNode, WrapNode)):
        return (node.target,)
    if isinstance(node, CollectionNode):
        return node.items
    return ()


def iter_nodes(node: PlanNode) -> Iterator[PlanNode]:
    """Iterate over a node and all of its descendants, parents first.

    Producer nodes are leaves: the plans of embedded producers are not entered.
    """
    stack: list[PlanNode] = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(child_nodes(current)))


def replace_nodes(
    node: PlanNode,
    replacement: Callable[[PlanNode], PlanNode | None],
) -> PlanNode:
    """Rebuild a plan tree, substituting nodes chosen by ``replacement``.

    ``replacement`` is called for every node, parents first. When it returns a
    node, that node takes the original's place and its subtree is not visited.
    When it returns ``None`` the children are visited instead. Unchanged
    subtrees are returned as the same objects.

    Args:
        node: Root of the tree to rebuild.
        replacement: Callback returning a substitute node or ``None``.

    """
    substitute = replacement(node)
    if substitute is not None:
        return substitute

    if isinstance(node, (ConstructorNode, FactoryNode)):
        arguments = _replace_arguments(node.arguments, replacement)
        if arguments is node.arguments:
            return node
        return dataclasses.replace(node, arguments=arguments)
    if isinstance(node, PropertyInjectionNode):
        target = replace_nodes(node.target, replacement)
        properties = _replace_arguments(node.properties, replacement)
        if target is node.target and properties is node.properties:
            return node
        return dataclasses.replace(node, target=target, properties=properties)
    if isinstance(node, (InitializerNode, WrapNode)):
        target = replace_nodes(node.target, replacement)
        if target is node.target:
            return node
        return dataclasses.replace(node, target=target)
    if isinstance(node, CollectionNode):
        items = tuple(replace_nodes(item, replacement) for item in node.items)
        if all(new is old for new, old in zip(items, node.items, strict=True)):
            return node
        return dataclasses.replace(node, items=items)
    return node


def _replace_arguments(
    arguments: tuple[PlanArgument, ...],
    replacement: Callable[[PlanNode], PlanNode | None],
) -> tuple[PlanArgument, ...]:
    replaced = tuple(
        dataclasses.replace(argument, node=replace_nodes(argument.node, replacement))
        for argument in arguments
    )
    if all(new.node is old.node for new, old in zip(replaced, arguments, strict=True)):
        return arguments
    return replaced


__all__ = [
    "CollectionNode",
    "ConstantNode",
    "ConstructionPlan",
    "ConstructorNode",
    "FactoryNode",
    "PLAN_NODE_TYPES",
    "InitializerNode",
    "PlaceholderNode",
    "PlanArgument",
    "PlanNode",
    "ProducerNode",
    "PropertyInjectionNode",
    "WrapNode",
    "child_nodes",
    "iter_nodes",
    "replace_nodes",
]
