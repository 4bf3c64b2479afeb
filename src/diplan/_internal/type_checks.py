from __future__ import annotations

import collections.abc
import types
from typing import Annotated, Any, TypeGuard, get_args, get_origin

_COLLECTION_ORIGINS: frozenset[Any] = frozenset(
    {
        collections.abc.Sequence,
        collections.abc.Iterable,
        collections.abc.Collection,
        tuple,
    },
)


def is_runtime_class(candidate: object) -> TypeGuard[type[Any]]:
    """Return true when candidate is a runtime class safe for class-only operations.

    Args:
        candidate: Value being checked for eligibility or runtime type constraints.

    """
    return isinstance(candidate, type) and not isinstance(candidate, types.GenericAlias)


def unwrap_annotated(annotation: Any) -> tuple[Any, tuple[Any, ...]]:
    """Split ``Annotated[T, ...]`` into ``T`` and its metadata.

    Args:
        annotation: Annotation to split. Plain annotations come back with empty metadata.

    """
    if get_origin(annotation) is Annotated:
        base, *metadata = get_args(annotation)
        return base, tuple(metadata)
    return annotation, ()


def collection_item_type(annotation: Any) -> Any | None:
    """Return ``X`` for ``Sequence[X]``, ``Iterable[X]``, ``Collection[X]`` or ``tuple[X, ...]``.

    Any other annotation returns ``None``.

    Args:
        annotation: Parameter annotation to inspect.

    """
    origin = get_origin(annotation)
    if origin not in _COLLECTION_ORIGINS:
        return None
    args = get_args(annotation)
    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:  # noqa: PLR2004
            return args[0]
        return None
    if len(args) != 1:
        return None
    return args[0]


def type_name(candidate: Any) -> str:
    """Return a readable name for a type or type-like annotation.

    Classes defined inside functions are named without the enclosing
    function's ``<locals>`` path.
    """
    if is_runtime_class(candidate):
        return candidate.__qualname__.rpartition("<locals>.")[2]
    return repr(candidate)


__all__ = ["collection_item_type", "is_runtime_class", "type_name", "unwrap_annotated"]
