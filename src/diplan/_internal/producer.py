"""Instance producers bind a service to a plan builder and a lifestyle.

A producer realizes its construction plan at most once, compiles it into a raw
factory, checks the lifestyles of the dependencies embedded in it, and wraps
the factory with the lifestyle's caching. Realization runs under the
container's build lock the first time. Once the factory is published every
call reads it without locking.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, cast

from diplan._internal.cyclic_guard import CyclicDependencyGuard
from diplan._internal.diagnostics import (
    DiagnosticType,
    KnownRelationship,
    describe_lifestyle_mismatch,
    find_lifestyle_mismatch,
)
from diplan._internal.identifiers import ServiceIdentifier
from diplan._internal.type_checks import type_name
from diplan.exceptions import (
    DIPlanActivationError,
    DIPlanConfigurationError,
    DIPlanContainerLockedError,
    DIPlanCyclicDependencyError,
    DIPlanError,
    DIPlanInvalidOperationError,
    DIPlanLifestyleMismatchError,
    DIPlanObjectDisposedError,
)
from diplan.lifestyles import CachingContext

if TYPE_CHECKING:
    from diplan._internal.compiler import CompiledFactory, PlanCompiler
    from diplan._internal.plan_builder import ConstructionPlanBuilder
    from diplan.lifestyles import Lifestyle
    from diplan.plans import ConstructionPlan
    from diplan.scope import Scope, ScopeLocator

logger = logging.getLogger(__name__)

_PASS_THROUGH_ERRORS = (
    DIPlanConfigurationError,
    DIPlanContainerLockedError,
    DIPlanCyclicDependencyError,
    DIPlanObjectDisposedError,
)


class ProducerState(Enum):
    UNCOMPILED = "uncompiled"
    COMPILING = "compiling"
    COMPILED = "compiled"
    FAILED = "failed"


@dataclass(frozen=True, slots=True, kw_only=True)
class ProducerEnvironment:
    """Container services every producer needs.

    Attributes:
        build_lock: Re-entrant lock serializing plan realization and compilation.
        compiler: Plan compiler.
        container_scope: Scope caching singletons.
        scope_locator: Ambient scope lookup for scoped lifestyles.
        lock_container: Callback locking the container for registration.
        suppress_lifestyle_mismatch_verification: Skip the mismatch check for
            every producer.

    """

    build_lock: threading.RLock
    compiler: PlanCompiler
    container_scope: Scope
    scope_locator: ScopeLocator
    lock_container: Callable[[], None]
    suppress_lifestyle_mismatch_verification: bool = False


class _RequireInstance:
    """Reject ``None`` before the lifestyle can cache it."""

    __slots__ = ("_factory", "_service_type")

    def __init__(self, factory: CompiledFactory, service_type: Any) -> None:
        self._factory = factory
        self._service_type = service_type

    def __call__(self) -> Any:
        instance = self._factory()
        if instance is None:
            msg = f"The registered factory for '{type_name(self._service_type)}' returned None."
            raise DIPlanActivationError(msg, service_type=self._service_type)
        return instance


class InstanceProducer:
    """Produce instances of one service using one plan builder and one lifestyle.

    ``get_instance`` never returns ``None``: a missing instance is always an
    error. ``build_plan`` exposes the realized plan. ``is_valid`` reports whether
    the plan can be realized without raising.
    """

    def __init__(
        self,
        *,
        service_identifier: ServiceIdentifier,
        builder: ConstructionPlanBuilder,
        environment: ProducerEnvironment,
        auto_registered: bool = False,
    ) -> None:
        self._service_identifier = service_identifier
        self._builder = builder
        self._environment = environment
        self._auto_registered = auto_registered
        self._state = ProducerState.UNCOMPILED
        self._plan: ConstructionPlan | None = None
        self._factory: Callable[[], Any] | None = None
        self._cyclic_guard: CyclicDependencyGuard | None = CyclicDependencyGuard(
            service_identifier.service_type,
        )
        self._is_valid: bool | None = None
        self._failure: Exception | None = None
        self._suppressed_diagnostics: dict[DiagnosticType, str] = {}

    @property
    def service_identifier(self) -> ServiceIdentifier:
        return self._service_identifier

    @property
    def service_type(self) -> Any:
        return self._service_identifier.service_type

    @property
    def implementation_type(self) -> Any:
        return self._builder.implementation_type

    @property
    def lifestyle(self) -> Lifestyle:
        return self._builder.lifestyle

    @property
    def builder(self) -> ConstructionPlanBuilder:
        return self._builder

    @property
    def state(self) -> ProducerState:
        return self._state

    @property
    def is_auto_registered(self) -> bool:
        return self._auto_registered

    @property
    def wraps_delegate(self) -> bool:
        return self._builder.wraps_delegate

    @property
    def is_valid(self) -> bool:
        """Return whether the plan can be realized, caching the verdict.

        A failure is kept in ``failure`` instead of being raised.
        """
        if self._is_valid is None:
            try:
                self.build_plan()
            except Exception as error:  # noqa: BLE001
                self._failure = error
                self._is_valid = False
            else:
                self._is_valid = True
        return self._is_valid

    @property
    def failure(self) -> Exception | None:
        """Error captured by ``is_valid``, if the plan could not be realized."""
        return self._failure

    def get_instance(self) -> Any:
        """Return an instance, applying the lifestyle's caching.

        Raises:
            DIPlanActivationError: If construction failed.
            DIPlanCyclicDependencyError: If the service depends on itself.
            DIPlanConfigurationError: If the plan cannot be built.

        """
        guard = self._cyclic_guard
        if guard is None:
            factory = cast("Callable[[], Any]", self._factory)
            try:
                return factory()
            except Exception as error:
                if not self._should_wrap(error):
                    raise
                raise self._activation_error(error) from error

        guard.check()
        try:
            instance = self._get_factory()()
        except DIPlanCyclicDependencyError as error:
            guard.reset()
            error.add_to_cycle(self.service_type)
            raise
        except Exception as error:
            guard.reset()
            if not self._should_wrap(error):
                raise
            raise self._activation_error(error) from error

        guard.reset()
        self._cyclic_guard = None
        return instance

    def build_plan(self) -> ConstructionPlan:
        """Return the realized construction plan, realizing it on first use.

        Raises:
            DIPlanConfigurationError: If the plan cannot be built.
            DIPlanCyclicDependencyError: If the plan depends on itself.

        """
        plan = self._plan
        if plan is not None:
            return plan

        guard = self._cyclic_guard
        if guard is None:
            return self._realize_plan()
        guard.check()
        try:
            return self._realize_plan()
        except DIPlanCyclicDependencyError as error:
            error.add_to_cycle(self.service_type)
            raise
        finally:
            guard.reset()

    def get_relationships(self) -> list[KnownRelationship]:
        """Return the dependencies embedded in this producer's plan.

        Empty until the plan has been realized.
        """
        if self._plan is None:
            return []
        implementation_type = self._plan.implementation_type
        return [
            relationship
            for relationship in self._builder.relationships
            if relationship.implementation_type is implementation_type
        ]

    def suppress_diagnostic(self, diagnostic_type: DiagnosticType, justification: str) -> None:
        """Skip a build-time diagnostic for this producer.

        Args:
            diagnostic_type: Diagnostic to skip.
            justification: Why the diagnostic does not apply. Must not be empty.

        Raises:
            DIPlanConfigurationError: If ``justification`` is empty.
            DIPlanInvalidOperationError: If the producer is already compiled.

        """
        if not justification or not justification.strip():
            msg = (
                f"Suppressing '{diagnostic_type.value}' for '{type_name(self.service_type)}' "
                "requires a non-empty justification."
            )
            raise DIPlanConfigurationError(msg, service_type=self.service_type)
        if self._state is ProducerState.COMPILED:
            msg = (
                f"'{type_name(self.service_type)}' is already compiled; diagnostics can only "
                "be suppressed before the first resolution."
            )
            raise DIPlanInvalidOperationError(msg)
        self._suppressed_diagnostics[diagnostic_type] = justification

    def is_diagnostic_suppressed(self, diagnostic_type: DiagnosticType) -> bool:
        return diagnostic_type in self._suppressed_diagnostics

    def _realize_plan(self) -> ConstructionPlan:
        plan = self._plan
        if plan is not None:
            return plan
        with self._environment.build_lock:
            if self._plan is None:
                self._environment.lock_container()
                self._realize_plan_graph()
        return cast("ConstructionPlan", self._plan)

    def _realize_plan_graph(self) -> None:
        """Realize this plan and every unrealized plan it embeds, depth first.

        The walk keeps its own stack, so graph depth is not bounded by the
        interpreter's recursion limit. A producer met again on the current path
        is a cycle. Plans are published only once the whole graph is realized,
        so a failure anywhere leaves every producer of the walk unrealized.
        Dependencies are published before their consumers.
        """
        realized: dict[InstanceProducer, ConstructionPlan] = {}
        path: list[InstanceProducer] = []
        on_path: set[InstanceProducer] = set()
        pending: list[Iterator[InstanceProducer]] = []

        def enter(producer: InstanceProducer) -> None:
            plan = producer._builder.build_plan(producer.service_type)  # noqa: SLF001
            realized[producer] = plan
            path.append(producer)
            on_path.add(producer)
            pending.append(iter(plan.producers()))

        enter(self)
        while pending:
            dependency = next(pending[-1], None)
            if dependency is None:
                pending.pop()
                on_path.discard(path.pop())
                continue
            if dependency in on_path:
                raise _cycle_error(path[path.index(dependency) :])
            if dependency._plan is None and dependency not in realized:  # noqa: SLF001
                enter(dependency)

        for producer, plan in reversed(realized.items()):
            producer._plan = plan  # noqa: SLF001
            logger.debug(
                "Realized construction plan for %s (lifestyle=%s, intercepted=%s)",
                type_name(producer.service_type),
                producer.lifestyle.name,
                plan.intercepted,
            )

    def _get_factory(self) -> Callable[[], Any]:
        factory = self._factory
        if factory is not None:
            return factory
        with self._environment.build_lock:
            factory = self._factory
            if factory is not None:
                return factory
            self._state = ProducerState.COMPILING
            try:
                factory = self._compile()
            except Exception:
                self._state = ProducerState.FAILED
                raise
            self._factory = factory
            self._state = ProducerState.COMPILED
        return factory

    def _compile(self) -> Callable[[], Any]:
        plan = self._realize_plan()
        raw_factory = self._environment.compiler.compile(plan)
        self._verify_lifestyles()
        context = CachingContext(
            cache_key=self._builder,
            service_type=self.service_type,
            disposability=self._builder.disposability_for(plan),
            suppress_disposal=self._builder.suppress_disposal,
            container_scope=self._environment.container_scope,
            scope_locator=self._environment.scope_locator,
        )
        factory = self.lifestyle.create_cached_factory(
            _RequireInstance(raw_factory, self.service_type),
            context,
        )
        logger.debug(
            "Compiled factory for %s (lifestyle=%s)",
            type_name(self.service_type),
            self.lifestyle.name,
        )
        return factory

    def _verify_lifestyles(self) -> None:
        if self._environment.suppress_lifestyle_mismatch_verification:
            return
        if self.is_diagnostic_suppressed(DiagnosticType.LIFESTYLE_MISMATCH):
            return
        mismatch = find_lifestyle_mismatch(self.get_relationships())
        if mismatch is not None:
            msg = describe_lifestyle_mismatch(mismatch)
            raise DIPlanLifestyleMismatchError(msg, relationship=mismatch)

    def _should_wrap(self, error: Exception) -> bool:
        if isinstance(error, _PASS_THROUGH_ERRORS):
            return False
        if isinstance(error, DIPlanActivationError) and error.service_type is self.service_type:
            return False
        if isinstance(error, DIPlanError):
            return self.wraps_delegate or self._auto_registered
        return True

    def _activation_error(self, error: Exception) -> DIPlanActivationError:
        service = type_name(self.service_type)
        cause = f"{type(error).__name__}: {error}"
        if self.wraps_delegate:
            msg = f"The registered delegate for '{service}' raised an exception. {cause}"
        elif self._auto_registered:
            msg = (
                f"Creating unregistered concrete type '{service}' failed. {cause} Register the "
                "type explicitly to control how it is created."
            )
        else:
            msg = f"Failed to create an instance of '{service}'. {cause}"
        return DIPlanActivationError(msg, service_type=self.service_type)

    def __repr__(self) -> str:
        return (
            f"InstanceProducer(service={self._service_identifier}, "
            f"implementation={type_name(self.implementation_type)}, "
            f"lifestyle={self.lifestyle.name}, state={self._state.value})"
        )


def _cycle_error(cycle: list[InstanceProducer]) -> DIPlanCyclicDependencyError:
    error = DIPlanCyclicDependencyError(cycle[0].service_type)
    for producer in reversed(cycle):
        error.add_to_cycle(producer.service_type)
    return error


__all__ = ["InstanceProducer", "ProducerEnvironment", "ProducerState"]
