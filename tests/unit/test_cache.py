import threading
import time

import pytest

from ctxhub_mcp.cache import LRUCache


def test_evicts_least_recently_used():
    cache = LRUCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1  # a is now most recent
    cache.put("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_zero_capacity_is_unbounded():
    cache = LRUCache(capacity=0)
    for i in range(1000):
        cache.put(i, i)
    assert len(cache) == 1000


def test_negative_capacity_rejected():
    with pytest.raises(ValueError):
        LRUCache(capacity=-1)


def test_get_or_load_loads_once_per_key():
    cache = LRUCache(capacity=4)
    calls = []

    def loader(key):
        calls.append(key)
        return key.upper()

    assert cache.get_or_load("account", loader) == "ACCOUNT"
    assert cache.get_or_load("account", loader) == "ACCOUNT"
    assert calls == ["account"]


def test_get_or_load_concurrent_same_key_single_load():
    cache = LRUCache(capacity=4)
    gate = threading.Event()
    calls = []

    def loader(key):
        calls.append(key)
        gate.wait(timeout=2)
        return 42

    results = []
    threads = [threading.Thread(target=lambda: results.append(cache.get_or_load("k", loader))) for _ in range(4)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join()

    assert results == [42, 42, 42, 42]
    assert calls == ["k"]


def test_failed_load_is_not_cached():
    cache = LRUCache(capacity=4)

    def boom(key):
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        cache.get_or_load("k", boom)
    assert "k" not in cache
    assert cache.get_or_load("k", lambda k: 7) == 7


def _wait_for_users(cache, key, n, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        entry = cache._key_locks.get(key)
        if entry is not None and entry.users == n:
            return
        time.sleep(0.005)
    raise AssertionError(f"expected {n} users on key lock {key!r}")


def test_failed_load_does_not_let_waiter_and_newcomer_load_together():
    cache = LRUCache(capacity=4)
    guard = threading.Lock()
    active = 0
    peak = 0
    calls = []
    first_started = threading.Event()
    release_first = threading.Event()
    second_started = threading.Event()
    release_second = threading.Event()

    def loader(key):
        nonlocal active, peak
        with guard:
            n = len(calls)
            calls.append(key)
            active += 1
            peak = max(peak, active)
        try:
            if n == 0:
                first_started.set()
                release_first.wait(timeout=2)
                raise RuntimeError("backend down")
            second_started.set()
            release_second.wait(timeout=2)
            return "loaded"
        finally:
            with guard:
                active -= 1

    results = {}

    def run(name):
        try:
            results[name] = cache.get_or_load("Account", loader)
        except RuntimeError as e:
            results[name] = e

    first = threading.Thread(target=run, args=("first",))
    first.start()
    assert first_started.wait(timeout=2)

    waiter = threading.Thread(target=run, args=("waiter",))
    waiter.start()
    _wait_for_users(cache, "Account", 2)

    release_first.set()
    assert second_started.wait(timeout=2)
    first.join(timeout=2)

    newcomer = threading.Thread(target=run, args=("newcomer",))
    newcomer.start()
    _wait_for_users(cache, "Account", 2)

    release_second.set()
    for t in (waiter, newcomer):
        t.join(timeout=2)

    assert isinstance(results["first"], RuntimeError)
    assert results["waiter"] == "loaded"
    assert results["newcomer"] == "loaded"
    assert len(calls) == 2
    assert peak == 1
    assert cache._key_locks == {}
