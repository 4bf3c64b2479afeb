"""Lifestyles decide how long a created instance is reused.

A lifestyle is a stateless strategy that wraps a raw factory with caching:
``TRANSIENT`` creates a new instance per request, ``SCOPED`` caches one
instance per active scope, and ``SINGLETON`` caches one instance per
container. ``Lifestyle.create_custom`` builds any other caching policy.

Every lifestyle has a name, used as part of the key for sharing construction
plans between registrations, and a length, used to detect longer-lived
components that capture shorter-lived dependencies.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from diplan._internal.disposal import Disposability
from diplan._internal.type_checks import type_name
from diplan.exceptions import DIPlanActivationError, DIPlanConfigurationError

if TYPE_CHECKING:
    from diplan.scope import Scope, ScopeLocator

TRANSIENT_LENGTH = 1
SCOPED_LENGTH = 500
SINGLETON_LENGTH = 1000

_MISSING = object()


@dataclass(frozen=True, slots=True, kw_only=True)
class CachingContext:
    """Everything a lifestyle needs to know about the registration it caches.

    Attributes:
        cache_key: Registration identity instances are cached under. Registrations
            sharing a construction plan share the key, and therefore the instance.
        service_type: Requested service, used in error messages.
        disposability: Static disposal knowledge for created instances.
        suppress_disposal: Never register created instances for disposal.
        container_scope: Scope owned by the container, alive until the container
            is disposed.
        scope_locator: Locator returning the ambient scope.

    """

    cache_key: Hashable
    service_type: Any
    disposability: Disposability
    suppress_disposal: bool
    container_scope: Scope
    scope_locator: ScopeLocator


class Lifestyle:
    """Base class for caching strategies applied to compiled factories."""

    __slots__ = ("_length", "_name")

    def __init__(self, name: str, length: int) -> None:
        if not name:
            msg = "Lifestyle name must be a non-empty string."
            raise DIPlanConfigurationError(msg)
        if length < 1:
            msg = f"Lifestyle length must be a positive integer, got {length}."
            raise DIPlanConfigurationError(msg)
        self._name = name
        self._length = length

    @property
    def name(self) -> str:
        return self._name

    @property
    def length(self) -> int:
        """Relative lifetime of instances; longer-lived lifestyles have larger lengths."""
        return self._length

    def create_cached_factory(
        self,
        raw_factory: Callable[[], Any],
        context: CachingContext,
    ) -> Callable[[], Any]:
        """Wrap ``raw_factory`` with this lifestyle's caching.

        Args:
            raw_factory: Compiled factory creating a new instance per call.
            context: Registration details the caching depends on.

        """
        raise NotImplementedError

    @staticmethod
    def create_custom(
        name: str,
        length: int,
        applier: Callable[[Callable[[], Any]], Callable[[], Any]],
    ) -> Lifestyle:
        """Create a lifestyle from a function wrapping raw factories.

        Args:
            name: Lifestyle name.
            length: Relative lifetime compared with the built-in lifestyles
                (transient 1, scoped 500, singleton 1000).
            applier: Receives the raw factory and returns the caching factory.

        Examples:
            .. code-block:: python

                def per_thread(factory):
                    local = threading.local()

                    def cached():
                        if not hasattr(local, "instance"):
                            local.instance = factory()
                        return local.instance

                    return cached


                PER_THREAD = Lifestyle.create_custom("per-thread", 700, per_thread)

        """
        return _CustomLifestyle(name, length, applier)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, length={self._length})"


class TransientLifestyle(Lifestyle):
    """Create a new instance on every request, without tracking it for disposal."""

    __slots__ = ()

    def __init__(self) -> None:
        super().__init__("transient", TRANSIENT_LENGTH)

    def create_cached_factory(
        self,
        raw_factory: Callable[[], Any],
        context: CachingContext,
    ) -> Callable[[], Any]:
        return raw_factory


class ScopedLifestyle(Lifestyle):
    """Reuse one instance per active scope and dispose it with that scope."""

    __slots__ = ()

    def __init__(self) -> None:
        super().__init__("scoped", SCOPED_LENGTH)

    def create_cached_factory(
        self,
        raw_factory: Callable[[], Any],
        context: CachingContext,
    ) -> Callable[[], Any]:
        return _ScopedInstanceFactory(raw_factory, context)


class SingletonLifestyle(Lifestyle):
    """Reuse one instance per container and dispose it with the container."""

    __slots__ = ()

    def __init__(self) -> None:
        super().__init__("singleton", SINGLETON_LENGTH)

    def create_cached_factory(
        self,
        raw_factory: Callable[[], Any],
        context: CachingContext,
    ) -> Callable[[], Any]:
        return _SingletonInstanceFactory(raw_factory, context)


class _CustomLifestyle(Lifestyle):
    __slots__ = ("_applier",)

    def __init__(
        self,
        name: str,
        length: int,
        applier: Callable[[Callable[[], Any]], Callable[[], Any]],
    ) -> None:
        super().__init__(name, length)
        if not callable(applier):
            msg = f"Custom lifestyle '{name}' needs a callable applier, got {applier!r}."
            raise DIPlanConfigurationError(msg)
        self._applier = applier

    def create_cached_factory(
        self,
        raw_factory: Callable[[], Any],
        context: CachingContext,
    ) -> Callable[[], Any]:
        cached_factory = self._applier(raw_factory)
        if not callable(cached_factory):
            msg = (
                f"Custom lifestyle '{self.name}' returned {cached_factory!r} instead of a "
                f"factory for '{type_name(context.service_type)}'."
            )
            raise DIPlanConfigurationError(msg, service_type=context.service_type)
        return cached_factory


class _ScopedInstanceFactory:
    """Resolve the instance from the ambient scope's cache."""

    __slots__ = ("_context", "_raw_factory")

    def __init__(self, raw_factory: Callable[[], Any], context: CachingContext) -> None:
        self._raw_factory = raw_factory
        self._context = context

    def __call__(self) -> Any:
        context = self._context
        scope = context.scope_locator.get_current_scope()
        if scope is None:
            msg = (
                f"'{type_name(context.service_type)}' is registered as scoped, but is requested "
                "outside the context of an active scope. Resolve it inside "
                "'with container.enter_scope():'."
            )
            raise DIPlanActivationError(msg, service_type=context.service_type)
        return scope.get_or_create(
            context.cache_key,
            self._raw_factory,
            disposability=context.disposability,
            suppress_disposal=context.suppress_disposal,
        )


class _SingletonInstanceFactory:
    """Cache the instance in the container scope.

    Stores the instance directly in the factory for the fastest possible cache hit.
    """

    __slots__ = ("_context", "_instance", "_raw_factory")

    def __init__(self, raw_factory: Callable[[], Any], context: CachingContext) -> None:
        self._raw_factory = raw_factory
        self._context = context
        self._instance: Any = _MISSING

    def __call__(self) -> Any:
        instance = self._instance
        if instance is not _MISSING:
            return instance
        context = self._context
        instance = context.container_scope.get_or_create(
            context.cache_key,
            self._raw_factory,
            disposability=context.disposability,
            suppress_disposal=context.suppress_disposal,
        )
        self._instance = instance
        return instance


TRANSIENT: Lifestyle = TransientLifestyle()
SCOPED: Lifestyle = ScopedLifestyle()
SINGLETON: Lifestyle = SingletonLifestyle()


__all__ = [
    "SCOPED",
    "SCOPED_LENGTH",
    "SINGLETON",
    "SINGLETON_LENGTH",
    "TRANSIENT",
    "TRANSIENT_LENGTH",
    "CachingContext",
    "Lifestyle",
    "ScopedLifestyle",
    "SingletonLifestyle",
    "TransientLifestyle",
]
