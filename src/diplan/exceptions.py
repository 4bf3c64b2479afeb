from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from diplan._internal.diagnostics import KnownRelationship


class DIPlanError(Exception):
    """Represent a base class for all diplan-specific failures.

    Catch this type when you want to handle any diplan error path without
    matching each concrete exception class individually.
    """


class DIPlanConfigurationError(DIPlanError):
    """Signal a registration recipe that cannot be turned into a construction plan.

    Raised by registration APIs for invalid arguments and by plan building when a
    constructor parameter cannot be resolved, a parameter has no usable
    annotation, a plan interceptor returns nothing, or conditional registrations
    are ambiguous for a consumer.

    Typical fixes include registering the missing dependency, annotating the
    offending parameter, or giving it a default value.
    """

    def __init__(
        self,
        message: str,
        *,
        service_type: Any = None,
        implementation_type: Any = None,
        parameter_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.service_type = service_type
        self.implementation_type = implementation_type
        self.parameter_name = parameter_name


class DIPlanLifestyleMismatchError(DIPlanConfigurationError):
    """Signal that a longer-lived component captures a shorter-lived dependency.

    Raised the first time a producer is compiled when, for example, a singleton
    depends on a scoped or transient service.

    Typical fixes include aligning the lifestyles, or suppressing the check for
    a single registration with ``InstanceProducer.suppress_diagnostic`` or for
    the whole container with ``suppress_lifestyle_mismatch_verification=True``.
    """

    def __init__(self, message: str, *, relationship: KnownRelationship) -> None:
        super().__init__(
            message,
            service_type=relationship.dependency.service_type,
            implementation_type=relationship.implementation_type,
        )
        self.relationship = relationship


class DIPlanContainerLockedError(DIPlanError):
    """Signal a registration attempted after the container was locked.

    The container locks itself on the first resolution or on an explicit
    ``Container.lock()`` call. ``lock_site`` holds the formatted call stack of
    the call that locked it.

    Typical fix is moving all registrations before the first ``resolve``.
    """

    def __init__(self, message: str, *, lock_site: str) -> None:
        super().__init__(message)
        self.lock_site = lock_site


class DIPlanCyclicDependencyError(DIPlanError):
    """Signal a self-referential construction chain.

    ``cycle`` lists the types taking part in the chain, outermost first. The
    chain is accumulated while the error propagates out of nested producers.
    """

    def __init__(self, service_type: Any) -> None:
        self.cycle: list[Any] = [service_type]
        super().__init__(self._format_message())

    def add_to_cycle(self, service_type: Any) -> None:
        """Prepend a type that was being built when the cycle surfaced.

        Args:
            service_type: Type of the producer the error propagates through.

        """
        if len(self.cycle) > 1 and self.cycle[0] is self.cycle[-1]:
            return
        self.cycle.insert(0, service_type)
        self.args = (self._format_message(),)

    def _format_message(self) -> str:
        chain = " -> ".join(_type_name(service_type) for service_type in self.cycle)
        return (
            f"The configuration is invalid. '{_type_name(self.cycle[-1])}' is directly or "
            f"indirectly depending on itself. The cyclic graph contains: {chain}."
        )


class DIPlanActivationError(DIPlanError):
    """Signal a runtime construction failure.

    Raised by ``resolve`` when a constructor or factory raised, when a factory
    returned ``None``, or when a scoped service is requested with no active
    scope. The root cause is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, service_type: Any = None) -> None:
        super().__init__(message)
        self.service_type = service_type


class DIPlanDependencyNotRegisteredError(DIPlanActivationError):
    """Signal that a requested service has no registration.

    Raised by ``resolve`` when the service is not registered, no type matcher
    accepts it, and it is not an eligible concrete type (or concrete type
    resolution is disabled).

    Typical fix is registering the service explicitly.
    """


class DIPlanCompilationError(DIPlanError):
    """Signal that a construction plan could not be compiled into a factory.

    The compiler failure is chained as ``__cause__``.
    """


class DIPlanObjectDisposedError(DIPlanError):
    """Signal use of a scope or container after it was disposed."""


class DIPlanInvalidOperationError(DIPlanError):
    """Signal an operation that is not valid for the given object or state.

    Raised when an object with neither ``close()`` nor ``aclose()`` is registered
    for disposal, or when synchronous disposal meets an object that can only be
    closed asynchronously.
    """


class DIPlanRecursionLimitError(DIPlanError):
    """Signal that teardown kept scheduling new work past the recursion ceiling.

    Disposal drains end-of-scope actions and disposables in rounds. A teardown
    that keeps registering new work every round is most likely
    self-referential, and disposal stops after a fixed number of rounds.
    """


def _type_name(service_type: Any) -> str:
    qualname = getattr(service_type, "__qualname__", None)
    if not qualname:
        return repr(service_type)
    return qualname.rpartition("<locals>.")[2]


__all__ = [
    "DIPlanActivationError",
    "DIPlanCompilationError",
    "DIPlanConfigurationError",
    "DIPlanContainerLockedError",
    "DIPlanCyclicDependencyError",
    "DIPlanDependencyNotRegisteredError",
    "DIPlanError",
    "DIPlanInvalidOperationError",
    "DIPlanLifestyleMismatchError",
    "DIPlanObjectDisposedError",
    "DIPlanRecursionLimitError",
]
