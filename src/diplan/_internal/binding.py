"""Binding policies: which parameters and properties a plan injects.

``ConstructorResolutionBehavior`` turns a class or factory into the list of
parameters to fill. ``PropertySelectionBehavior`` picks class attributes to
assign after construction. Both are pluggable through ``ContainerOptions``.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from inspect import Parameter
from typing import Any, Protocol, get_type_hints

from diplan._internal.type_checks import is_runtime_class, unwrap_annotated
from diplan.exceptions import DIPlanConfigurationError
from diplan.markers import is_inject_annotation

_MISSING_ANNOTATION = object()


@dataclass(frozen=True, slots=True)
class BoundParameter:
    """One constructor or factory parameter the plan has to supply.

    Attributes:
        name: Parameter name.
        annotation: Resolved annotation with ``Annotated`` metadata kept.
        kind: Parameter kind, used to pass the value positionally or by keyword.
        has_default: Whether the callable can be invoked without this argument.

    """

    name: str
    annotation: Any
    kind: inspect._ParameterKind
    has_default: bool


@dataclass(frozen=True, slots=True)
class BoundProperty:
    """One class attribute assigned after construction."""

    name: str
    annotation: Any


class ConstructorResolutionBehavior(Protocol):
    def select_parameters(self, implementation: Callable[..., Any]) -> tuple[BoundParameter, ...]:
        """Return the parameters to inject into ``implementation``."""
        ...


class PropertySelectionBehavior(Protocol):
    def select_properties(self, implementation_type: type[Any]) -> tuple[BoundProperty, ...]:
        """Return the attributes to inject into instances of ``implementation_type``."""
        ...


class SignatureConstructorResolution:
    """Bind parameters from the callable signature and its type hints.

    Variadic parameters are never injected. A required parameter without a
    usable annotation is a configuration error. An optional one is left to its
    default.
    """

    def select_parameters(self, implementation: Callable[..., Any]) -> tuple[BoundParameter, ...]:
        implementation_name = _callable_name(implementation)
        try:
            signature = inspect.signature(implementation)
        except (TypeError, ValueError) as error:
            msg = (
                f"Unable to inspect the signature of '{implementation_name}'. "
                "Register a factory for it instead."
            )
            raise DIPlanConfigurationError(msg, implementation_type=implementation) from error

        annotations, annotation_error = self._resolved_type_hints(implementation)
        bound: list[BoundParameter] = []
        for parameter in signature.parameters.values():
            if parameter.kind in (Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD):
                continue
            annotation = self._resolve_parameter_annotation(
                implementation=implementation,
                implementation_name=implementation_name,
                parameter=parameter,
                annotations=annotations,
                annotation_error=annotation_error,
            )
            if annotation is _MISSING_ANNOTATION:
                continue
            bound.append(
                BoundParameter(
                    name=parameter.name,
                    annotation=annotation,
                    kind=parameter.kind,
                    has_default=parameter.default is not Parameter.empty,
                ),
            )
        return tuple(bound)

    def _resolve_parameter_annotation(
        self,
        *,
        implementation: Callable[..., Any],
        implementation_name: str,
        parameter: Parameter,
        annotations: dict[str, Any],
        annotation_error: Exception | None,
    ) -> Any:
        annotation = annotations.get(parameter.name, _MISSING_ANNOTATION)
        if annotation is not _MISSING_ANNOTATION:
            return annotation

        raw_annotation = parameter.annotation
        if raw_annotation is not Parameter.empty and not isinstance(raw_annotation, str):
            return raw_annotation

        if parameter.default is not Parameter.empty:
            return _MISSING_ANNOTATION

        error_message = (
            f"Unable to infer the dependency for required parameter '{parameter.name}' "
            f"of '{implementation_name}'. Add a type annotation or a default value."
        )
        if annotation_error is None:
            raise DIPlanConfigurationError(
                error_message,
                implementation_type=implementation,
                parameter_name=parameter.name,
            )
        msg = f"{error_message} Original annotation error: {annotation_error}"
        raise DIPlanConfigurationError(
            msg,
            implementation_type=implementation,
            parameter_name=parameter.name,
        ) from annotation_error

    def _resolved_type_hints(
        self,
        implementation: Callable[..., Any],
    ) -> tuple[dict[str, Any], Exception | None]:
        target: Any = (
            implementation.__init__ if is_runtime_class(implementation) else implementation
        )
        try:
            annotations = get_type_hints(target, include_extras=True)
        except (AttributeError, NameError, TypeError) as error:
            return {}, error
        annotations.pop("return", None)
        return annotations, None


class NoPropertySelection:
    """Never inject properties, so the property-injection step is skipped entirely."""

    def select_properties(self, implementation_type: type[Any]) -> tuple[BoundProperty, ...]:
        return ()


class MarkedPropertySelection:
    """Inject class attributes annotated with ``Inject[T]``.

    Examples:
        .. code-block:: python

            class ReportService:
                clock: Inject[Clock]


            container = Container(property_selection=MarkedPropertySelection())

    """

    def select_properties(self, implementation_type: type[Any]) -> tuple[BoundProperty, ...]:
        try:
            annotations = get_type_hints(implementation_type, include_extras=True)
        except (AttributeError, NameError, TypeError) as error:
            msg = (
                f"Unable to read the attribute annotations of "
                f"'{_callable_name(implementation_type)}' for property injection: {error}"
            )
            raise DIPlanConfigurationError(msg, implementation_type=implementation_type) from error

        return tuple(
            BoundProperty(name=name, annotation=unwrap_annotated(annotation)[0])
            for name, annotation in annotations.items()
            if is_inject_annotation(annotation)
        )


def _callable_name(implementation: Callable[..., Any]) -> str:
    qualname = getattr(implementation, "__qualname__", None)
    if not qualname:
        return repr(implementation)
    return qualname.rpartition("<locals>.")[2]


__all__ = [
    "BoundParameter",
    "BoundProperty",
    "ConstructorResolutionBehavior",
    "MarkedPropertySelection",
    "NoPropertySelection",
    "PropertySelectionBehavior",
    "SignatureConstructorResolution",
]
