"""Compile construction plans into zero-argument factories.

The compiler turns each plan node into a small callable object. Argument
binding is decided once at compile time, so calling the resulting factory
does no signature inspection and no dictionary building beyond the keyword
arguments themselves.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any, Protocol

from diplan._internal.type_checks import type_name
from diplan.exceptions import DIPlanCompilationError, DIPlanError
from diplan.plans import (
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
    WrapNode,
)


class CompiledFactory(Protocol):
    def __call__(self) -> Any: ...


class ConstantFactory:
    __slots__ = ("_value",)

    def __init__(self, value: Any) -> None:
        self._value = value

    def __call__(self) -> Any:
        return self._value


class CallFactory:
    """Invoke a class or delegate with no arguments."""

    __slots__ = ("_target",)

    def __init__(self, target: Callable[..., Any]) -> None:
        self._target = target

    def __call__(self) -> Any:
        return self._target()


class ArgsCallFactory:
    """Invoke a class or delegate with positional and keyword argument factories."""

    __slots__ = ("_keyword_factories", "_keyword_names", "_positional_factories", "_target")

    def __init__(
        self,
        target: Callable[..., Any],
        positional_factories: tuple[CompiledFactory, ...],
        keyword_names: tuple[str, ...],
        keyword_factories: tuple[CompiledFactory, ...],
    ) -> None:
        self._target = target
        self._positional_factories = positional_factories
        self._keyword_names = keyword_names
        self._keyword_factories = keyword_factories

    def __call__(self) -> Any:
        args = [factory() for factory in self._positional_factories]
        kwargs = {
            name: factory()
            for name, factory in zip(self._keyword_names, self._keyword_factories, strict=True)
        }
        return self._target(*args, **kwargs)


class CollectionFactory:
    __slots__ = ("_item_factories",)

    def __init__(self, item_factories: tuple[CompiledFactory, ...]) -> None:
        self._item_factories = item_factories

    def __call__(self) -> tuple[Any, ...]:
        return tuple(factory() for factory in self._item_factories)


class PropertyInjectionFactory:
    __slots__ = ("_names", "_target", "_value_factories")

    def __init__(
        self,
        target: CompiledFactory,
        names: tuple[str, ...],
        value_factories: tuple[CompiledFactory, ...],
    ) -> None:
        self._target = target
        self._names = names
        self._value_factories = value_factories

    def __call__(self) -> Any:
        instance = self._target()
        for name, factory in zip(self._names, self._value_factories, strict=True):
            setattr(instance, name, factory())
        return instance


class InitializerFactory:
    __slots__ = ("_initializers", "_target")

    def __init__(
        self,
        target: CompiledFactory,
        initializers: tuple[Callable[[Any], Any], ...],
    ) -> None:
        self._target = target
        self._initializers = initializers

    def __call__(self) -> Any:
        instance = self._target()
        for initializer in self._initializers:
            initializer(instance)
        return instance


class WrapFactory:
    __slots__ = ("_target", "_wrapper")

    def __init__(self, target: CompiledFactory, wrapper: Callable[[Any], Any]) -> None:
        self._target = target
        self._wrapper = wrapper

    def __call__(self) -> Any:
        return self._wrapper(self._target())


class PlanCompiler:
    """Compile a ``ConstructionPlan`` into a ``CompiledFactory``.

    Compilation has no side effects on shared state. Embedded producers are
    compiled as calls to their ``get_instance``, so their own lifestyle caching
    applies.
    """

    def compile(self, plan: ConstructionPlan) -> CompiledFactory:
        """Compile ``plan``.

        Raises:
            DIPlanCompilationError: If any node cannot be compiled.

        """
        try:
            return self._compile_node(plan.root)
        except DIPlanError:
            raise
        except Exception as error:
            msg = (
                f"Failed to compile the construction plan for "
                f"'{type_name(plan.service_type)}': {error}"
            )
            raise DIPlanCompilationError(msg) from error

    def _compile_node(self, node: PlanNode) -> CompiledFactory:  # noqa: PLR0911
        if isinstance(node, ConstantNode):
            return ConstantFactory(node.value)
        if isinstance(node, ProducerNode):
            return node.producer.get_instance
        if isinstance(node, ConstructorNode):
            return self._compile_call(node.implementation_type, node.arguments)
        if isinstance(node, FactoryNode):
            return self._compile_call(node.factory, node.arguments)
        if isinstance(node, CollectionNode):
            return CollectionFactory(tuple(self._compile_node(item) for item in node.items))
        if isinstance(node, PropertyInjectionNode):
            return PropertyInjectionFactory(
                self._compile_node(node.target),
                tuple(argument.name for argument in node.properties),
                tuple(self._compile_node(argument.node) for argument in node.properties),
            )
        if isinstance(node, InitializerNode):
            return InitializerFactory(self._compile_node(node.target), node.initializers)
        if isinstance(node, WrapNode):
            return WrapFactory(self._compile_node(node.target), node.wrapper)
        if isinstance(node, PlaceholderNode):
            msg = (
                f"Parameter '{node.parameter_name}' is still a placeholder. Supply it "
                "with a parameter override."
            )
            raise DIPlanCompilationError(msg)
        msg = f"Unsupported plan node {node!r}."
        raise DIPlanCompilationError(msg)

    def _compile_call(
        self,
        target: Callable[..., Any],
        arguments: tuple[PlanArgument, ...],
    ) -> CompiledFactory:
        if not callable(target):
            msg = f"{target!r} is not callable."
            raise DIPlanCompilationError(msg)
        if not arguments:
            return CallFactory(target)

        positional: list[CompiledFactory] = []
        keyword_names: list[str] = []
        keyword_factories: list[CompiledFactory] = []
        for argument in arguments:
            factory = self._compile_node(argument.node)
            if argument.kind is inspect.Parameter.POSITIONAL_ONLY:
                if keyword_names:
                    msg = (
                        f"Positional-only argument '{argument.name}' follows keyword "
                        f"arguments for '{type_name(target)}'."
                    )
                    raise DIPlanCompilationError(msg)
                positional.append(factory)
            else:
                keyword_names.append(argument.name)
                keyword_factories.append(factory)

        return ArgsCallFactory(
            target,
            tuple(positional),
            tuple(keyword_names),
            tuple(keyword_factories),
        )


__all__ = ["CompiledFactory", "PlanCompiler"]
