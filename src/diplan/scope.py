"""Scopes own the instances cached for one unit of work and tear them down.

A scope caches instances per registration, remembers which of them must be
closed, and runs end-of-scope actions. Disposal happens exactly once: end
actions run first, in registration order, then disposables are closed in
reverse order of registration. Failures are deferred so every disposable gets
its chance to close; the first failure is re-raised afterwards.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Awaitable, Callable, Hashable, Iterator
from contextvars import ContextVar, Token
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any, Protocol

from diplan._internal.disposal import (
    Disposability,
    adispose_instance,
    dispose_instance,
    is_disposable,
    should_dispose,
)
from diplan._internal.type_checks import type_name
from diplan.exceptions import (
    DIPlanInvalidOperationError,
    DIPlanObjectDisposedError,
    DIPlanRecursionLimitError,
)

if TYPE_CHECKING:
    from typing_extensions import Self

logger = logging.getLogger(__name__)

MAX_DISPOSE_RECURSION = 100
"""Maximum number of drain rounds a single dispose call performs."""

_MISSING = object()


class ScopeState(Enum):
    ALIVE = "alive"
    DISPOSING = "disposing"
    DISPOSED = "disposed"


class ScopeLocator(Protocol):
    """Find the ambient scope for the calling thread or task."""

    def get_current_scope(self) -> Scope | None:
        """Return the active scope, or ``None`` when no scope is active."""
        ...

    def activate(self, scope: Scope) -> Any:
        """Make ``scope`` the active scope and return a token for ``deactivate``."""
        ...

    def deactivate(self, token: Any) -> None:
        """Restore the scope that was active before the matching ``activate``."""
        ...


class ContextVarScopeLocator:
    """Scope locator backed by a ``ContextVar``.

    Threads and asyncio tasks each see their own active scope.
    """

    __slots__ = ("_current",)

    def __init__(self) -> None:
        self._current: ContextVar[Scope | None] = ContextVar("diplan_current_scope", default=None)

    def get_current_scope(self) -> Scope | None:
        return self._current.get()

    def activate(self, scope: Scope) -> Token[Scope | None]:
        return self._current.set(scope)

    def deactivate(self, token: Token[Scope | None]) -> None:
        self._current.reset(token)


class Scope:
    """Per-unit-of-work instance cache with ordered teardown.

    Use it as a context manager to make it the ambient scope for the block and
    dispose it on exit:

    .. code-block:: python

        with container.enter_scope() as scope:
            service = container.resolve(RequestService)

    All members are safe to call from several threads. ``get_or_create``,
    ``register_for_disposal``, ``when_scope_ends`` and the item accessors fail
    with ``DIPlanObjectDisposedError`` once the scope is disposed. ``dispose`` and
    ``adispose`` may be called any number of times; only the first call does work.
    """

    def __init__(
        self,
        *,
        scope_id: int,
        parent_scope: Scope | None = None,
        locator: ScopeLocator | None = None,
    ) -> None:
        self._scope_id = scope_id
        self._parent_scope = parent_scope
        self._locator = locator
        self._lock = threading.RLock()
        self._state = ScopeState.ALIVE
        self._instances: dict[Hashable, Any] = {}
        self._items: dict[Hashable, Any] = {}
        self._disposables: list[Any] = []
        self._end_actions: list[Callable[[], Any]] = []
        self._activation_tokens: list[Any] = []

    @property
    def scope_id(self) -> int:
        return self._scope_id

    @property
    def parent_scope(self) -> Scope | None:
        return self._parent_scope

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def is_disposed(self) -> bool:
        return self._state is ScopeState.DISPOSED

    def get_or_create(
        self,
        key: Hashable,
        factory: Callable[[], Any],
        *,
        disposability: Disposability = Disposability.UNKNOWN,
        suppress_disposal: bool = False,
    ) -> Any:
        """Return the instance cached under ``key``, creating it on first use.

        A new instance is registered for disposal unless ``suppress_disposal`` is
        set. ``disposability`` says whether that needs a runtime check: only
        ``Disposability.UNKNOWN`` inspects the instance.

        Args:
            key: Registration identity the instance is cached under.
            factory: Zero-argument factory creating the instance.
            disposability: Static disposal knowledge for the registration.
            suppress_disposal: Never register the instance for disposal.

        """
        with self._lock:
            self._require_not_disposed()
            instance = self._instances.get(key, _MISSING)
            if instance is not _MISSING:
                return instance
            instance = factory()
            self._instances[key] = instance
            if not suppress_disposal and should_dispose(instance, disposability):
                self._disposables.append(instance)
            return instance

    def register_for_disposal(self, instance: Any) -> None:
        """Close ``instance`` when this scope is disposed.

        Raises:
            DIPlanInvalidOperationError: If the instance has neither ``close()`` nor ``aclose()``.
            DIPlanObjectDisposedError: If the scope is already disposed.

        """
        if not is_disposable(instance):
            msg = (
                f"'{type_name(type(instance))}' cannot be registered for disposal because it "
                "has neither a 'close()' nor an 'aclose()' method."
            )
            raise DIPlanInvalidOperationError(msg)
        with self._lock:
            self._require_not_disposed()
            self._disposables.append(instance)

    def when_scope_ends(self, action: Callable[[], Any]) -> None:
        """Run ``action`` when the scope is disposed, before any instance is closed.

        Actions run in registration order. If one raises, the actions queued
        after it are abandoned, but disposal still proceeds. An action returning
        an awaitable is awaited by ``adispose``.
        """
        if not callable(action):
            msg = f"End-of-scope action must be callable, got {action!r}."
            raise DIPlanInvalidOperationError(msg)
        with self._lock:
            self._require_not_disposed()
            self._end_actions.append(action)

    def get_item(self, key: Hashable) -> Any:
        """Return the item stored under ``key``, or ``None``."""
        with self._lock:
            self._require_not_disposed()
            return self._items.get(key)

    def set_item(self, key: Hashable, value: Any) -> None:
        """Store ``value`` under ``key``; storing ``None`` removes the item."""
        with self._lock:
            self._require_not_disposed()
            if value is None:
                self._items.pop(key, None)
            else:
                self._items[key] = value

    def dispose(self) -> None:
        """Run end-of-scope actions and close every registered disposable.

        Raises:
            DIPlanRecursionLimitError: If teardown keeps queueing new work.
            Exception: The first failure raised by an action or a disposable,
                after every disposable was attempted.

        """
        if not self._begin_disposal():
            return
        errors: list[Exception] = []
        try:
            for end_actions, disposables in self._drain_rounds(errors):
                self._run_end_actions(end_actions, errors)
                for instance in reversed(disposables):
                    try:
                        dispose_instance(instance)
                    except Exception as error:  # noqa: BLE001
                        errors.append(error)
        finally:
            self._finish_disposal()
        self._raise_deferred(errors)

    async def adispose(self) -> None:
        """Asynchronous variant of ``dispose``.

        Disposables are closed with ``aclose()`` when they have it and with
        ``close()`` otherwise. Awaitables returned by end actions are awaited.
        """
        if not self._begin_disposal():
            return
        errors: list[Exception] = []
        try:
            for end_actions, disposables in self._drain_rounds(errors):
                await self._arun_end_actions(end_actions, errors)
                for instance in reversed(disposables):
                    try:
                        await adispose_instance(instance)
                    except Exception as error:  # noqa: BLE001
                        errors.append(error)
        finally:
            self._finish_disposal()
        self._raise_deferred(errors)

    def __enter__(self) -> Self:
        self._activate()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        try:
            self.dispose()
        finally:
            self._deactivate()

    async def __aenter__(self) -> Self:
        self._activate()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        try:
            await self.adispose()
        finally:
            self._deactivate()

    def __repr__(self) -> str:
        return f"Scope(scope_id={self._scope_id}, state={self._state.value})"

    def _activate(self) -> None:
        if self._locator is not None:
            self._activation_tokens.append(self._locator.activate(self))

    def _deactivate(self) -> None:
        if self._locator is not None and self._activation_tokens:
            self._locator.deactivate(self._activation_tokens.pop())

    def _require_not_disposed(self) -> None:
        if self._state is ScopeState.DISPOSED:
            msg = f"Cannot access a disposed scope (scope_id={self._scope_id})."
            raise DIPlanObjectDisposedError(msg)

    def _begin_disposal(self) -> bool:
        with self._lock:
            if self._state is not ScopeState.ALIVE:
                return False
            self._state = ScopeState.DISPOSING
            return True

    def _finish_disposal(self) -> None:
        with self._lock:
            self._state = ScopeState.DISPOSED
            self._instances.clear()
            self._items.clear()
            self._disposables.clear()
            self._end_actions.clear()
        logger.debug("Scope %d disposed", self._scope_id)

    def _drain_rounds(
        self,
        errors: list[Exception],
    ) -> Iterator[tuple[list[Callable[[], Any]], list[Any]]]:
        # Teardown may queue new actions or disposables, so keep draining until
        # a round finds nothing left or the ceiling is reached.
        for _ in range(MAX_DISPOSE_RECURSION):
            with self._lock:
                end_actions, self._end_actions = self._end_actions, []
                disposables, self._disposables = self._disposables, []
            if not end_actions and not disposables:
                return
            yield end_actions, disposables

        with self._lock:
            pending = len(self._end_actions) + len(self._disposables)
        if pending:
            msg = (
                f"Disposal of scope {self._scope_id} exceeded {MAX_DISPOSE_RECURSION} rounds "
                f"with {pending} item(s) still queued. A disposable or end-of-scope action "
                "is most likely registering new work for the scope it is torn down with."
            )
            errors.append(DIPlanRecursionLimitError(msg))

    def _run_end_actions(
        self,
        end_actions: list[Callable[[], Any]],
        errors: list[Exception],
    ) -> None:
        for action in end_actions:
            try:
                result = action()
            except Exception as error:  # noqa: BLE001
                errors.append(error)
                return
            if inspect.isawaitable(result):
                _close_awaitable(result)
                msg = (
                    f"End-of-scope action {action!r} returned an awaitable. Dispose the scope "
                    "with 'adispose()' to await it."
                )
                errors.append(DIPlanInvalidOperationError(msg))
                return

    async def _arun_end_actions(
        self,
        end_actions: list[Callable[[], Any]],
        errors: list[Exception],
    ) -> None:
        for action in end_actions:
            try:
                result = action()
                if inspect.isawaitable(result):
                    await result
            except Exception as error:  # noqa: BLE001
                errors.append(error)
                return

    def _raise_deferred(self, errors: list[Exception]) -> None:
        if not errors:
            return
        for error in errors[1:]:
            logger.warning(
                "Additional failure while disposing scope %d",
                self._scope_id,
                exc_info=error,
            )
        raise errors[0]


def _close_awaitable(awaitable: Awaitable[Any]) -> None:
    close = getattr(awaitable, "close", None)
    if callable(close):
        close()


__all__ = [
    "MAX_DISPOSE_RECURSION",
    "ContextVarScopeLocator",
    "Scope",
    "ScopeLocator",
    "ScopeState",
]
