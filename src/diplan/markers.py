from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any, TypeVar, Union, get_args, get_origin

T = TypeVar("T")


class InjectMarker:
    """Mark a class attribute for property injection.

    Only property-selection behaviors that look for this marker act on it, such
    as ``MarkedPropertySelection``. The default behavior never injects
    properties.
    """

    def __repr__(self) -> str:
        return "InjectMarker()"


if TYPE_CHECKING:
    Inject = Union[T, T]  # noqa: UP007,PYI016
    """Mark a class attribute for property injection.

    At runtime ``Inject[T]`` becomes ``Annotated[T, InjectMarker()]``.

    Examples:
        .. code-block:: python

            class ReportService:
                clock: Inject[Clock]

    """

else:

    class Inject:
        """Mark a class attribute for property injection.

        At runtime ``Inject[T]`` resolves to ``Annotated[T, InjectMarker()]``.
        """

        def __class_getitem__(cls, item: T) -> Annotated[T, InjectMarker]:
            if get_origin(item) is Annotated:
                inner, *metadata = get_args(item)
                return _build_annotated((inner, *metadata, InjectMarker()))
            return _build_annotated((item, InjectMarker()))


def is_inject_annotation(annotation: Any) -> bool:
    """Return true when ``annotation`` carries an ``InjectMarker``."""
    if get_origin(annotation) is not Annotated:
        return False
    return any(isinstance(metadata, InjectMarker) for metadata in get_args(annotation)[1:])


def _build_annotated(params: tuple[Any, ...]) -> Any:
    return Annotated[params]  # type: ignore[valid-type]


__all__ = ["Inject", "InjectMarker", "is_inject_annotation"]
