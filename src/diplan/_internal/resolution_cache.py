"""Container-level coordination between registration and resolution.

``ResolutionCache`` owns the one-way lock transition and the root producer
snapshot. The snapshot is an immutable mapping replaced wholesale under a
writer lock, so lookups never take a lock. Two threads resolving the same
unseen service at once may both build a producer; only the first one
published is ever returned.
"""

from __future__ import annotations

import logging
import threading
import traceback
from collections.abc import Callable, Hashable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from diplan._internal.type_checks import type_name
from diplan.exceptions import DIPlanConfigurationError, DIPlanContainerLockedError

if TYPE_CHECKING:
    from diplan._internal.producer import InstanceProducer

logger = logging.getLogger(__name__)


class ResolutionCache:
    """Track the lock transition and cache root producers by requested service.

    Args:
        container_id: Id of the owning container, used in log and error messages.
        build_root_producer: Builds the producer for a service requested through
            ``Container.resolve``, or returns ``None`` when nothing can produce it.

    """

    def __init__(
        self,
        *,
        container_id: int,
        build_root_producer: Callable[[Any], InstanceProducer | None],
    ) -> None:
        self._container_id = container_id
        self._build_root_producer = build_root_producer
        self._root_producers: Mapping[Hashable, InstanceProducer | None] = MappingProxyType({})
        self._writer_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._locked = False
        self._lock_site: str | None = None
        self.build_lock = threading.RLock()

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def lock_site(self) -> str | None:
        """Formatted call stack of the call that locked the container."""
        return self._lock_site

    def lock_for_resolution(self) -> None:
        """Lock the container for registration. Calling it again does nothing."""
        if self._locked:
            return
        with self._state_lock:
            if self._locked:
                return
            self._lock_site = "".join(traceback.format_stack()[:-1])
            self._locked = True
        logger.info("Container %d locked for registration", self._container_id)

    def ensure_not_locked(self, action: str) -> None:
        """Raise when the container is locked.

        Args:
            action: Description of the attempted change, used in the error message.

        Raises:
            DIPlanContainerLockedError: If the container is locked.

        """
        if not self._locked:
            return
        lock_site = self._lock_site or ""
        msg = (
            f"Cannot {action}: the container can't be changed after the first call to "
            "'resolve', 'resolve_many', 'get_registration', 'verify' or 'lock'. The container "
            f"was locked at:\n{lock_site}"
        )
        raise DIPlanContainerLockedError(msg, lock_site=lock_site)

    def get_or_build_root_producer(self, service_type: Any) -> InstanceProducer | None:
        """Return the cached root producer for ``service_type``, building it on a miss.

        A ``None`` result is cached as well, so repeated lookups of a service that
        cannot be produced stay cheap.

        Raises:
            DIPlanConfigurationError: If ``service_type`` cannot be used as a key.

        """
        snapshot = self._root_producers
        try:
            return snapshot[service_type]
        except KeyError:
            pass
        except TypeError as error:
            msg = f"{service_type!r} cannot be used as a service key: {error}"
            raise DIPlanConfigurationError(msg, service_type=service_type) from error

        self.lock_for_resolution()
        producer = self._build_root_producer(service_type)

        with self._writer_lock:
            current = self._root_producers
            if service_type in current:
                return current[service_type]
            updated = dict(current)
            updated[service_type] = producer
            self._root_producers = MappingProxyType(updated)

        if producer is not None:
            logger.debug(
                "Cached root producer for %s in container %d",
                type_name(service_type),
                self._container_id,
            )
        return producer

    def cached_producers(self) -> list[InstanceProducer]:
        """Return the root producers published so far."""
        return [producer for producer in self._root_producers.values() if producer is not None]


__all__ = ["ResolutionCache"]
