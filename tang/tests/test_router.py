"""Tests for the LRU backend router."""

import threading
import time

import pytest

from tang.models import BackendKey
from tang.router import BackendRouter


class FakeBackend:
    def __init__(self, key):
        self.key = key
        self.stopped = False

    def stop(self):
        self.stopped = True


class CountingFactory:
    """Backend factory that remembers everything it made."""

    def __init__(self, delay=0.0):
        self.made = []
        self.delay = delay

    def __call__(self, key):
        if self.delay:
            time.sleep(self.delay)
        backend = FakeBackend(key)
        self.made.append(backend)
        return backend

    @property
    def stopped(self):
        return [b.key for b in self.made if b.stopped]


def _key(i):
    return BackendKey(ref=f"branch{i}", repository="repo")


@pytest.fixture
def factory():
    return CountingFactory()


@pytest.fixture
def router(factory):
    r = BackendRouter(factory, capacity=5)
    yield r
    r.close()


class TestResolve:
    """Tests for resolve()."""

    def test_spawns_on_first_use(self, router, factory):
        backend = router.resolve(_key(0))
        assert backend.key == _key(0)
        assert len(factory.made) == 1

    def test_reuses_cached_backend(self, router, factory):
        first = router.resolve(_key(0))
        second = router.resolve(_key(0))
        assert first is second
        assert len(factory.made) == 1

    def test_six_keys_evict_exactly_one(self, router, factory):
        for i in range(6):
            router.resolve(_key(i))

        assert factory.stopped == [_key(0)]
        assert router.keys() == [_key(i) for i in range(1, 6)]

    def test_eviction_is_least_recently_used(self, router, factory):
        for i in range(5):
            router.resolve(_key(i))
        router.resolve(_key(0))  # touch
        router.resolve(_key(5))

        assert factory.stopped == [_key(1)]
        assert router.keys() == [_key(2), _key(3), _key(4), _key(0), _key(5)]

    def test_evicted_key_respawns(self, router, factory):
        for i in range(6):
            router.resolve(_key(i))

        backend = router.resolve(_key(0))

        assert backend.stopped is False
        assert len(factory.made) == 7
        assert factory.stopped == [_key(0), _key(1)]

    def test_concurrent_resolves_spawn_once(self):
        factory = CountingFactory(delay=0.05)
        router = BackendRouter(factory, capacity=5)
        results = []

        def worker():
            results.append(router.resolve(_key(0)))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        router.close()

        assert len(factory.made) == 1
        assert all(r is results[0] for r in results)

    def test_factory_error_reaches_caller(self, router):
        def broken(key):
            raise OSError("no fork for you")

        router.factory = broken
        with pytest.raises(OSError):
            router.resolve(_key(0))
        assert router.keys() == []


class TestClose:
    """Tests for close()."""

    def test_close_stops_everything(self, factory):
        router = BackendRouter(factory, capacity=5)
        for i in range(3):
            router.resolve(_key(i))

        router.close()

        assert sorted(factory.stopped) == sorted(_key(i) for i in range(3))

    def test_resolve_after_close_fails(self, factory):
        router = BackendRouter(factory)
        router.close()
        with pytest.raises(RuntimeError):
            router.resolve(_key(0))

    def test_close_twice(self, factory):
        router = BackendRouter(factory)
        router.close()
        router.close()


def test_capacity_must_be_positive(factory):
    with pytest.raises(ValueError):
        BackendRouter(factory, capacity=0)
