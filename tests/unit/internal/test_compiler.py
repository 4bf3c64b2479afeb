from __future__ import annotations

import inspect

import pytest

from diplan._internal.compiler import PlanCompiler
from diplan.exceptions import DIPlanCompilationError
from diplan.plans import (
    CollectionNode,
    ConstantNode,
    ConstructionPlan,
    ConstructorNode,
    FactoryNode,
    InitializerNode,
    PlaceholderNode,
    PlanArgument,
    PropertyInjectionNode,
    WrapNode,
)


class _Engine:
    def __init__(self, power: int, *, name: str = "default") -> None:
        self.power = power
        self.name = name


class _Gauge:
    reading: int


def _plan(root: object) -> ConstructionPlan:
    return ConstructionPlan(
        service_type=_Engine,
        implementation_type=_Engine,
        root=root,  # type: ignore[arg-type]
    )


def test_constant_node() -> None:
    factory = PlanCompiler().compile(_plan(ConstantNode(42)))

    assert factory() == 42


def test_constructor_without_arguments_creates_new_instances() -> None:
    factory = PlanCompiler().compile(_plan(ConstructorNode(_Gauge)))

    first = factory()
    second = factory()

    assert isinstance(first, _Gauge)
    assert first is not second


def test_constructor_with_keyword_arguments() -> None:
    root = ConstructorNode(
        _Engine,
        (
            PlanArgument("power", ConstantNode(300)),
            PlanArgument("name", ConstantNode("v8"), inspect.Parameter.KEYWORD_ONLY),
        ),
    )

    engine = PlanCompiler().compile(_plan(root))()

    assert engine.power == 300
    assert engine.name == "v8"


def test_positional_only_arguments_passed_positionally() -> None:
    def build(a: int, b: int, /, c: int) -> tuple[int, int, int]:
        return (a, b, c)

    root = FactoryNode(
        build,
        (
            PlanArgument("a", ConstantNode(1), inspect.Parameter.POSITIONAL_ONLY),
            PlanArgument("b", ConstantNode(2), inspect.Parameter.POSITIONAL_ONLY),
            PlanArgument("c", ConstantNode(3)),
        ),
    )

    assert PlanCompiler().compile(_plan(root))() == (1, 2, 3)


def test_collection_node_builds_tuple_in_order() -> None:
    root = CollectionNode(int, (ConstantNode(1), ConstantNode(2), ConstantNode(3)))

    assert PlanCompiler().compile(_plan(root))() == (1, 2, 3)


def test_property_injection_assigns_after_construction() -> None:
    root = PropertyInjectionNode(
        ConstructorNode(_Gauge),
        (PlanArgument("reading", ConstantNode(7)),),
    )

    gauge = PlanCompiler().compile(_plan(root))()

    assert gauge.reading == 7


def test_initializers_run_in_order() -> None:
    calls: list[str] = []
    root = InitializerNode(
        ConstructorNode(_Gauge),
        (lambda gauge: calls.append("first"), lambda gauge: calls.append("second")),
    )

    PlanCompiler().compile(_plan(root))()

    assert calls == ["first", "second"]


def test_wrap_node_replaces_instance() -> None:
    root = WrapNode(ConstantNode(2), lambda value: value * 10)

    assert PlanCompiler().compile(_plan(root))() == 20


def test_placeholder_cannot_be_compiled() -> None:
    root = ConstructorNode(_Engine, (PlanArgument("power", PlaceholderNode("power", int)),))

    with pytest.raises(DIPlanCompilationError, match="'power'"):
        PlanCompiler().compile(_plan(root))


def test_non_callable_target_rejected() -> None:
    root = FactoryNode(42, (PlanArgument("x", ConstantNode(1)),))  # type: ignore[arg-type]

    with pytest.raises(DIPlanCompilationError, match="not callable"):
        PlanCompiler().compile(_plan(root))


def test_unknown_node_rejected() -> None:
    with pytest.raises(DIPlanCompilationError, match="Unsupported plan node"):
        PlanCompiler().compile(_plan(object()))


def test_compiled_factory_reused_without_recompiling() -> None:
    created: list[int] = []

    def make() -> int:
        created.append(1)
        return len(created)

    factory = PlanCompiler().compile(_plan(FactoryNode(make)))

    assert [factory(), factory(), factory()] == [1, 2, 3]
