"""Tests for thread safety of producers and the container."""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from diforge.container import Container
from diforge.lifestyles import Lifestyle
from diforge.producer import InstanceProducer
from diforge.scope import Scope

THREAD_COUNT = 8


class ServiceA:
    pass


class ServiceB:
    def __init__(self, a: ServiceA) -> None:
        self.a = a


class ServiceC:
    def __init__(self, b: ServiceB) -> None:
        self.b = b


def _produce_concurrently(producer: InstanceProducer, count: int = THREAD_COUNT) -> tuple[list[Any], list[Exception]]:
    barrier = threading.Barrier(count)
    results: list[Any] = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def produce() -> None:
        try:
            barrier.wait()
            instance = producer.produce_instance()
            with lock:
                results.append(instance)
        except Exception as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=produce) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestCompileOnce:
    def test_concurrent_first_requests_compile_once(self, counting_compiler: Any) -> None:
        """Many threads requesting an uncompiled producer compile its factory exactly once."""
        container = Container(expression_compiler=counting_compiler)
        producer = container.register(ServiceC)

        results, errors = _produce_concurrently(producer)

        assert not errors
        assert len(results) == THREAD_COUNT
        assert len(counting_compiler.compiled) == 1
        assert len({id(result) for result in results}) == THREAD_COUNT

    def test_each_producer_compiles_once(self, counting_compiler: Any) -> None:
        """Concurrent requests for different producers compile one factory per producer."""
        container = Container(expression_compiler=counting_compiler)
        producers = [container.register(ServiceA), container.register(ServiceB), container.register(ServiceC)]
        barrier = threading.Barrier(THREAD_COUNT * len(producers))
        errors: list[Exception] = []

        def produce(producer: InstanceProducer) -> None:
            try:
                barrier.wait()
                producer.produce_instance()
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=produce, args=(producer,))
            for producer in producers
            for _ in range(THREAD_COUNT)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(counting_compiler.compiled) == len(producers)

    def test_compiled_factory_is_reused(self, counting_compiler: Any) -> None:
        """Subsequent calls reuse the cached factory."""
        container = Container(expression_compiler=counting_compiler)
        producer = container.register(ServiceB)

        for _ in range(5):
            producer.produce_instance()

        assert len(counting_compiler.compiled) == 1


class TestConcurrentResolution:
    def test_concurrent_singleton_resolution_same_instance(self, singleton_container: Container) -> None:
        """Concurrent singleton resolution returns the same instance."""
        producer = singleton_container.register(ServiceB)

        results, errors = _produce_concurrently(producer)

        assert not errors
        assert len(results) == THREAD_COUNT
        assert all(r is results[0] for r in results)
        assert all(r.a is results[0].a for r in results)

    def test_concurrent_transient_resolution_different_instances(self, container: Container) -> None:
        """Concurrent transient resolution creates different instances."""
        producer = container.register(ServiceA)

        results, errors = _produce_concurrently(producer)

        assert not errors
        assert len({id(r) for r in results}) == THREAD_COUNT

    def test_concurrent_implicit_registration_yields_one_producer(self, container: Container) -> None:
        """Threads requesting an unregistered type share one implicit producer."""
        barrier = threading.Barrier(THREAD_COUNT)

        def lookup() -> InstanceProducer | None:
            barrier.wait()
            return container.get_registration(ServiceC)

        with ThreadPoolExecutor(max_workers=THREAD_COUNT) as executor:
            producers = list(executor.map(lambda _: lookup(), range(THREAD_COUNT)))

        assert all(producer is producers[0] for producer in producers)
        assert producers[0] is not None


class TestScopeThreadIsolation:
    def test_scope_is_not_visible_from_other_threads(self, container: Container) -> None:
        """An ambient scope belongs to the thread that entered it."""
        seen: list[Scope | None] = []

        with container.begin_scope():
            thread = threading.Thread(target=lambda: seen.append(Scope.current()))
            thread.start()
            thread.join()
            assert Scope.current() is not None

        assert seen == [None]

    def test_scoped_instances_per_thread_scope(self, container: Container) -> None:
        """Threads with their own scopes receive their own scoped instances."""
        producer = container.register(ServiceA, lifestyle=Lifestyle.SCOPED)
        barrier = threading.Barrier(THREAD_COUNT)
        results: list[tuple[ServiceA, ServiceA]] = []
        errors: list[Exception] = []
        lock = threading.Lock()

        def resolve_in_scope() -> None:
            try:
                with container.begin_scope():
                    barrier.wait()
                    pair = (producer.produce_instance(), producer.produce_instance())
                with lock:
                    results.append(pair)
            except Exception as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=resolve_in_scope) for _ in range(THREAD_COUNT)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert all(first is second for first, second in results)
        assert len({id(first) for first, _ in results}) == THREAD_COUNT
