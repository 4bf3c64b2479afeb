from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from diplan._internal.type_checks import type_name


@dataclass(frozen=True, slots=True)
class InjectionConsumer:
    """The class or factory parameter a dependency is injected into."""

    implementation_type: Any
    parameter_name: str

    def __str__(self) -> str:
        return f"parameter '{self.parameter_name}' of '{type_name(self.implementation_type)}'"


@dataclass(frozen=True, slots=True)
class PredicateContext:
    """Arguments passed to the predicate of a conditional registration.

    Attributes:
        service_type: Requested service.
        implementation_type: Implementation the conditional registration would use.
        consumer: Where the dependency is injected, or ``None`` for a root request
            made through ``Container.resolve``.

    """

    service_type: Any
    implementation_type: Any
    consumer: InjectionConsumer | None


@dataclass(frozen=True, slots=True, eq=False)
class ServiceIdentifier:
    """Service type plus the predicate discriminating a conditional registration."""

    service_type: Any
    predicate: Callable[[PredicateContext], bool] | None = None

    @property
    def is_conditional(self) -> bool:
        return self.predicate is not None

    def __str__(self) -> str:
        if self.predicate is None:
            return type_name(self.service_type)
        return f"{type_name(self.service_type)} (conditional)"


__all__ = ["InjectionConsumer", "PredicateContext", "ServiceIdentifier"]
