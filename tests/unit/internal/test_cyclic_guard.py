from __future__ import annotations

import threading

import pytest

from diplan._internal.cyclic_guard import CyclicDependencyGuard
from diplan.exceptions import DIPlanCyclicDependencyError


class _Service:
    pass


class _Other:
    pass


def test_second_check_on_same_thread_raises() -> None:
    guard = CyclicDependencyGuard(_Service)
    guard.check()

    with pytest.raises(DIPlanCyclicDependencyError) as exc_info:
        guard.check()

    assert exc_info.value.cycle == [_Service]


def test_reset_allows_next_check() -> None:
    guard = CyclicDependencyGuard(_Service)
    guard.check()
    guard.reset()

    guard.check()

    assert guard.is_in_progress


def test_other_threads_are_not_a_cycle() -> None:
    guard = CyclicDependencyGuard(_Service)
    guard.check()
    errors: list[Exception] = []

    def check_elsewhere() -> None:
        try:
            guard.check()
            guard.reset()
        except DIPlanCyclicDependencyError as error:
            errors.append(error)

    thread = threading.Thread(target=check_elsewhere)
    thread.start()
    thread.join()

    assert not errors
    assert guard.is_in_progress


def test_cycle_chain_stops_when_closed() -> None:
    error = DIPlanCyclicDependencyError(_Service)

    error.add_to_cycle(_Other)
    error.add_to_cycle(_Service)
    error.add_to_cycle(_Other)

    assert error.cycle == [_Service, _Other, _Service]
    assert "_Service -> _Other -> _Service" in str(error)
