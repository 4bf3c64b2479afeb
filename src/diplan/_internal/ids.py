from __future__ import annotations

import itertools
import threading


class MonotonicIdGenerator:
    """Hand out increasing integer ids for containers and scopes.

    Each container owns its generator, so ids never leak between containers.
    """

    __slots__ = ("_counter", "_lock")

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        """Return the next id."""
        with self._lock:
            return next(self._counter)


__all__ = ["MonotonicIdGenerator"]
