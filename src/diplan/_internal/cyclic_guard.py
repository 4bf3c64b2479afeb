from __future__ import annotations

import threading
from typing import Any

from diplan.exceptions import DIPlanCyclicDependencyError


class CyclicDependencyGuard:
    """Detect a producer re-entering itself on the same call path.

    Entries are tracked per thread, so concurrent first resolutions of one
    producer from different threads are not mistaken for a cycle. Resolution
    never suspends, which makes the thread the call path.
    """

    __slots__ = ("_in_progress", "_lock", "_service_type")

    def __init__(self, service_type: Any) -> None:
        self._service_type = service_type
        self._lock = threading.Lock()
        self._in_progress: set[int] = set()

    def check(self) -> None:
        """Mark the calling thread as building the producer.

        Raises:
            DIPlanCyclicDependencyError: If the calling thread is already building it.

        """
        thread_id = threading.get_ident()
        with self._lock:
            if thread_id in self._in_progress:
                raise DIPlanCyclicDependencyError(self._service_type)
            self._in_progress.add(thread_id)

    def reset(self) -> None:
        """Clear the calling thread's mark."""
        with self._lock:
            self._in_progress.discard(threading.get_ident())

    @property
    def is_in_progress(self) -> bool:
        with self._lock:
            return threading.get_ident() in self._in_progress


__all__ = ["CyclicDependencyGuard"]
