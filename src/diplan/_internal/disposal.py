from __future__ import annotations

import inspect
from enum import Enum
from typing import Any

from diplan._internal.type_checks import type_name
from diplan.exceptions import DIPlanInvalidOperationError


class Disposability(Enum):
    """What is statically known about whether instances of a registration need disposal."""

    ALWAYS = "always"
    """Every instance exposes ``close()`` or ``aclose()``."""

    NEVER = "never"
    """No instance exposes ``close()`` or ``aclose()``."""

    UNKNOWN = "unknown"
    """Only the instance itself can tell, checked when it is cached."""


def supports_sync_disposal(candidate: object) -> bool:
    """Return true when ``candidate`` has a callable ``close``."""
    return callable(getattr(candidate, "close", None))


def supports_async_disposal(candidate: object) -> bool:
    """Return true when ``candidate`` has a callable ``aclose``."""
    return callable(getattr(candidate, "aclose", None))


def is_disposable(candidate: object) -> bool:
    """Return true when ``candidate`` can be closed synchronously or asynchronously."""
    return supports_sync_disposal(candidate) or supports_async_disposal(candidate)


def disposability_of(implementation_type: Any) -> Disposability:
    """Return the static disposability of instances created from ``implementation_type``.

    Constructor registrations create instances of exactly the implementation type,
    so the type answers the question. Anything else must be checked per instance.

    Args:
        implementation_type: Concrete class, or ``None`` when only a factory is known.

    """
    if not isinstance(implementation_type, type):
        return Disposability.UNKNOWN
    if is_disposable(implementation_type):
        return Disposability.ALWAYS
    return Disposability.NEVER


def should_dispose(instance: object, disposability: Disposability) -> bool:
    """Resolve the disposal decision for one cached instance."""
    if disposability is Disposability.ALWAYS:
        return True
    if disposability is Disposability.NEVER:
        return False
    return is_disposable(instance)


def dispose_instance(instance: object) -> None:
    """Close ``instance`` synchronously.

    Raises:
        DIPlanInvalidOperationError: If the instance can only be closed asynchronously.

    """
    close = getattr(instance, "close", None)
    if callable(close):
        result = close()
        if inspect.isawaitable(result):
            _discard_awaitable(result)
            msg = (
                f"'{type_name(type(instance))}.close()' returned an awaitable. Dispose the "
                "scope with 'adispose()' to close it."
            )
            raise DIPlanInvalidOperationError(msg)
        return
    if supports_async_disposal(instance):
        msg = (
            f"'{type_name(type(instance))}' only supports asynchronous disposal. Dispose the "
            "scope with 'adispose()' or use 'async with'."
        )
        raise DIPlanInvalidOperationError(msg)


async def adispose_instance(instance: object) -> None:
    """Close ``instance``, preferring ``aclose()`` over ``close()``."""
    aclose = getattr(instance, "aclose", None)
    if callable(aclose):
        await aclose()
        return
    close = getattr(instance, "close", None)
    if callable(close):
        result = close()
        if inspect.isawaitable(result):
            await result


def _discard_awaitable(awaitable: Any) -> None:
    close = getattr(awaitable, "close", None)
    if callable(close):
        close()


__all__ = [
    "Disposability",
    "adispose_instance",
    "disposability_of",
    "dispose_instance",
    "is_disposable",
    "should_dispose",
    "supports_async_disposal",
    "supports_sync_disposal",
]
