"""Resolve services that have no explicit registration.

Type matchers are consulted, in registration order, for any requested service
without an explicit registration. ``OpenGenericTypeMatcher`` closes an open
generic implementation over the requested type arguments. When no matcher
applies, ``ConcreteTypeAutoregistrationPolicy`` decides whether the requested
type can simply be constructed.
"""

from __future__ import annotations

import datetime
import decimal
import inspect
import pathlib
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeGuard, TypeVar, get_args, get_origin

from diplan._internal.type_checks import is_runtime_class, type_name
from diplan.exceptions import DIPlanConfigurationError

if TYPE_CHECKING:
    from diplan.lifestyles import Lifestyle


@dataclass(frozen=True, slots=True)
class TypeMatch:
    """Implementation chosen by a type matcher for a requested service.

    Attributes:
        implementation_type: Class to construct.
        type_arguments: TypeVar substitutions applied to constructor annotations.
        lifestyle: Lifestyle to use, or ``None`` for the container default.

    """

    implementation_type: type[Any]
    type_arguments: Mapping[TypeVar, Any] = field(default_factory=dict)
    lifestyle: Lifestyle | None = None


class TypeMatcher(Protocol):
    def match(self, service_type: Any) -> TypeMatch | None:
        """Return the implementation for ``service_type``, or ``None`` when not applicable."""
        ...


class OpenGenericTypeMatcher:
    """Close ``open_implementation`` for requests of ``open_service[...]``.

    Examples:
        .. code-block:: python

            class Repository(Generic[T]): ...


            class SqlRepository(Repository[T]): ...


            container.register_open_generic(Repository, SqlRepository)
            container.resolve(Repository[User])  # SqlRepository over User

    """

    def __init__(
        self,
        open_service: Any,
        open_implementation: type[Any],
        lifestyle: Lifestyle | None = None,
    ) -> None:
        service_parameters = _typevar_parameters(open_service)
        if not service_parameters:
            msg = f"'{type_name(open_service)}' is not an open generic type."
            raise DIPlanConfigurationError(msg, service_type=open_service)
        if not is_runtime_class(open_implementation) or inspect.isabstract(open_implementation):
            msg = (
                f"Open generic implementation {open_implementation!r} for "
                f"'{type_name(open_service)}' must be a concrete class."
            )
            raise DIPlanConfigurationError(
                msg,
                service_type=open_service,
                implementation_type=open_implementation,
            )
        self._open_service = open_service
        self._open_implementation = open_implementation
        self._lifestyle = lifestyle
        self._template_arguments = self._find_template_arguments(service_parameters)

    @property
    def open_service(self) -> Any:
        return self._open_service

    @property
    def open_implementation(self) -> type[Any]:
        return self._open_implementation

    def match(self, service_type: Any) -> TypeMatch | None:
        if get_origin(service_type) is not self._open_service:
            return None
        arguments = get_args(service_type)
        if len(arguments) != len(self._template_arguments):
            return None

        mapping: dict[TypeVar, Any] = {}
        for template, argument in zip(self._template_arguments, arguments, strict=True):
            if isinstance(template, TypeVar):
                known = mapping.setdefault(template, argument)
                if known != argument:
                    return None
            elif template != argument:
                return None

        validate_typevar_arguments(mapping)
        return TypeMatch(
            implementation_type=self._open_implementation,
            type_arguments=mapping,
            lifestyle=self._lifestyle,
        )

    def _find_template_arguments(self, service_parameters: tuple[TypeVar, ...]) -> tuple[Any, ...]:
        if self._open_implementation is self._open_service:
            return service_parameters
        for base in getattr(self._open_implementation, "__orig_bases__", ()):
            if get_origin(base) is self._open_service:
                return get_args(base)
        msg = (
            f"'{type_name(self._open_implementation)}' does not derive from a parameterized "
            f"'{type_name(self._open_service)}', so its type arguments cannot be inferred."
        )
        raise DIPlanConfigurationError(
            msg,
            service_type=self._open_service,
            implementation_type=self._open_implementation,
        )


@dataclass(frozen=True, slots=True)
class ConcreteTypeAutoregistrationPolicy:
    """Decide which unregistered types can be constructed without a registration."""

    ignored_base_types: tuple[type[Any], ...] = (
        pathlib.PurePath,
        datetime.datetime,
        datetime.date,
        datetime.time,
        datetime.timedelta,
        uuid.UUID,
        decimal.Decimal,
        BaseException,
    )

    def is_eligible_concrete(self, candidate: object) -> TypeGuard[type[Any]]:
        """Return true when a candidate can be auto-registered as a concrete type.

        Args:
            candidate: Value being checked for eligibility.

        """
        if not is_runtime_class(candidate):
            return False
        if candidate.__module__ == "builtins":
            return False
        if inspect.isabstract(candidate):
            return False
        if getattr(candidate, "_is_protocol", False):
            return False
        if _typevar_parameters(candidate):
            return False
        if issubclass(candidate, type):
            return False
        return not issubclass(candidate, self.ignored_base_types)


def substitute_typevars(value: Any, mapping: Mapping[TypeVar, Any]) -> Any:
    """Substitute TypeVars in a type expression using a resolved mapping.

    Args:
        value: Type expression that may contain TypeVars.
        mapping: Mapping from TypeVars to concrete type arguments.

    """
    if not mapping:
        return value
    if isinstance(value, TypeVar):
        return mapping.get(value, value)

    origin = get_origin(value)
    if origin is None:
        return value
    arguments = get_args(value)
    if not arguments:
        return value

    substituted = tuple(substitute_typevars(argument, mapping) for argument in arguments)
    try:
        if len(substituted) == 1:
            return origin[substituted[0]]
        return origin[substituted]
    except TypeError:
        return value


def validate_typevar_arguments(typevar_map: Mapping[TypeVar, Any]) -> None:
    """Validate closed generic arguments against TypeVar constraints and bounds.

    Raises:
        DIPlanConfigurationError: If any argument violates its TypeVar's
            constraints or bound.

    """
    for typevar, argument in typevar_map.items():
        if _is_type_argument_valid(typevar=typevar, argument=argument):
            continue
        constraints = typevar.__constraints__
        if constraints:
            formatted_constraints = ", ".join(repr(item) for item in constraints)
            msg = (
                f"Generic argument {argument!r} for TypeVar '{typevar.__name__}' must satisfy "
                f"one of: {formatted_constraints}."
            )
        else:
            msg = (
                f"Generic argument {argument!r} for TypeVar '{typevar.__name__}' must satisfy "
                f"bound {typevar.__bound__!r}."
            )
        raise DIPlanConfigurationError(msg)


def _typevar_parameters(value: Any) -> tuple[TypeVar, ...]:
    return tuple(
        parameter
        for parameter in getattr(value, "__parameters__", ())
        if isinstance(parameter, TypeVar)
    )


def _is_type_argument_valid(*, typevar: TypeVar, argument: Any) -> bool:
    constraints = typevar.__constraints__
    if constraints:
        return any(
            _matches_type_constraint(argument=argument, constraint=constraint)
            for constraint in constraints
        )
    bound = typevar.__bound__
    if bound is None:
        return True
    return _matches_type_constraint(argument=argument, constraint=bound)


def _matches_type_constraint(*, argument: Any, constraint: Any) -> bool:
    if constraint is Any:
        return True
    argument_type = get_origin(argument) or argument
    constraint_type = get_origin(constraint) or constraint
    if isinstance(argument_type, type) and isinstance(constraint_type, type):
        try:
            return issubclass(argument_type, constraint_type)
        except TypeError:
            return False
    return argument == constraint


__all__ = [
    "ConcreteTypeAutoregistrationPolicy",
    "OpenGenericTypeMatcher",
    "TypeMatch",
    "TypeMatcher",
    "substitute_typevars",
    "validate_typevar_arguments",
]
