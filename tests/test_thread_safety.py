"""Tests for thread safety of Container."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest

from diplan import (
    SCOPED,
    SINGLETON,
    Container,
    DIPlanContainerLockedError,
    DIPlanCyclicDependencyError,
)


class ServiceA:
    pass


class ServiceB:
    def __init__(self, a: ServiceA) -> None:
        self.a = a


class SlowSingleton:
    instance_count = 0
    count_lock = threading.Lock()

    def __init__(self) -> None:
        time.sleep(0.01)
        with SlowSingleton.count_lock:
            SlowSingleton.instance_count += 1


class Unregistered:
    pass


class TestConcurrentResolution:
    def test_concurrent_singleton_resolution_same_instance(
        self,
        container_singleton: Container,
    ) -> None:
        """Concurrent singleton resolution returns same instance."""
        results: list[ServiceA] = []
        errors: list[Exception] = []

        def resolve_service() -> None:
            try:
                instance = container_singleton.resolve(ServiceA)
                results.append(instance)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=resolve_service) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(results) == 10
        assert all(r is results[0] for r in results)

    def test_concurrent_transient_resolution_different_instances(
        self,
        container: Container,
    ) -> None:
        """Concurrent transient resolution creates different instances."""
        results: list[ServiceA] = []
        errors: list[Exception] = []

        def resolve_service() -> None:
            try:
                instance = container.resolve(ServiceA)
                results.append(instance)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=resolve_service) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(results) == 10
        unique_instances = {id(r) for r in results}
        assert len(unique_instances) == 10

    def test_slow_singleton_constructed_exactly_once(self) -> None:
        """A singleton with a slow constructor is created once under contention."""
        SlowSingleton.instance_count = 0
        container = Container()
        container.register(SlowSingleton, lifestyle=SINGLETON)
        barrier = threading.Barrier(20)

        def resolve_slow() -> SlowSingleton:
            barrier.wait()
            return container.resolve(SlowSingleton)

        with ThreadPoolExecutor(max_workers=20) as executor:
            futures = [executor.submit(resolve_slow) for _ in range(20)]
            results = [f.result() for f in as_completed(futures)]

        assert len(results) == 20
        assert all(r is results[0] for r in results)
        assert SlowSingleton.instance_count == 1

    def test_scoped_instances_isolated_per_thread(self) -> None:
        """Each thread's scope caches its own scoped instance."""
        container = Container()
        container.register(ServiceA, lifestyle=SCOPED)
        results: dict[int, tuple[ServiceA, ServiceA]] = {}
        barrier = threading.Barrier(5)

        def resolve_in_scope(index: int) -> None:
            with container.enter_scope():
                barrier.wait()
                results[index] = (container.resolve(ServiceA), container.resolve(ServiceA))

        threads = [threading.Thread(target=resolve_in_scope, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 5
        for first, second in results.values():
            assert first is second
        assert len({id(first) for first, _ in results.values()}) == 5


class TestLockedRegistration:
    def test_registration_after_lock_fails_while_resolution_continues(self) -> None:
        """Registering after lock raises, concurrent resolution keeps working."""
        container = Container()
        container.register(ServiceA, lifestyle=SINGLETON)
        container.lock()

        stop = threading.Event()
        results: list[ServiceA] = []
        errors: list[Exception] = []

        def keep_resolving() -> None:
            try:
                while not stop.is_set():
                    results.append(container.resolve(ServiceA))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=keep_resolving) for _ in range(4)]
        for t in threads:
            t.start()
        try:
            with pytest.raises(DIPlanContainerLockedError) as exc_info:
                container.register(ServiceB)
        finally:
            stop.set()
            for t in threads:
                t.join()

        assert not errors
        assert results
        assert all(r is results[0] for r in results)
        assert exc_info.value.lock_site

    def test_first_concurrent_resolutions_lock_once(self) -> None:
        """Many threads racing to lock the container leave it locked."""
        container = Container()
        barrier = threading.Barrier(10)

        def resolve_first() -> None:
            barrier.wait()
            container.resolve(ServiceB)

        with ThreadPoolExecutor(max_workers=10) as executor:
            for f in [executor.submit(resolve_first) for _ in range(10)]:
                f.result()

        assert container.is_locked
        with pytest.raises(DIPlanContainerLockedError):
            container.register(Unregistered)


class TestStress:
    def test_many_concurrent_resolutions(self) -> None:
        """100 threads resolving a small graph concurrently."""
        container = Container()

        class StressService:
            def __init__(self, a: ServiceA, b: ServiceB) -> None:
                self.a = a
                self.b = b

        results: list[StressService] = []
        errors: list[Exception] = []

        def resolve_complex() -> None:
            try:
                instance = container.resolve(StressService)
                results.append(instance)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=resolve_complex) for _ in range(100)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(results) == 100
        for r in results:
            assert isinstance(r.a, ServiceA)
            assert isinstance(r.b, ServiceB)
            assert isinstance(r.b.a, ServiceA)


class CircularX:
    """X -> Y (circular)."""

    def __init__(self, y: "CircularY") -> None:
        self.y = y


class CircularY:
    """Y -> X (circular)."""

    def __init__(self, x: "CircularX") -> None:
        self.x = x


class TestCircularDetectionThreadSafety:
    def test_circular_detection_thread_isolated(self) -> None:
        """Every thread detects the cycle, and nothing else goes wrong."""
        container = Container()
        circular_errors: list[DIPlanCyclicDependencyError] = []
        unexpected_errors: list[Exception] = []

        def resolve_circular() -> None:
            try:
                container.resolve(CircularX)
            except DIPlanCyclicDependencyError as e:
                circular_errors.append(e)
            except Exception as e:
                unexpected_errors.append(e)

        threads = [threading.Thread(target=resolve_circular) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not unexpected_errors
        assert len(circular_errors) == 10
        for error in circular_errors:
            assert CircularX in error.cycle
            assert CircularY in error.cycle

    def test_concurrent_circular_and_normal_resolution(self) -> None:
        """Cycle detection in one thread doesn't affect resolution in another."""
        container = Container()
        normal_results: list[ServiceB] = []
        circular_errors: list[Exception] = []

        def resolve_normal() -> None:
            for _ in range(20):
                normal_results.append(container.resolve(ServiceB))

        def resolve_circular() -> None:
            for _ in range(20):
                try:
                    container.resolve(CircularX)
                except DIPlanCyclicDependencyError as e:
                    circular_errors.append(e)

        threads = [
            threading.Thread(target=resolve_normal),
            threading.Thread(target=resolve_circular),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(normal_results) == 20
        assert len(circular_errors) == 20
