from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class _KeyLock:
    """Per-key load lock; `users` counts threads holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class LRUCache(Generic[K, V]):
    """
    Thread-safe least-recently-used cache.

    capacity=0 means unbounded. `get_or_load` serializes loading per key: two
    callers asking for the same missing key trigger a single load, while
    distinct keys load concurrently.
    """

    def __init__(self, capacity: int = 256) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._data: "OrderedDict[K, V]" = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: Dict[K, _KeyLock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            if key not in self._data:
                return default
            self._data.move_to_end(key)
            return self._data[key]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            if self.capacity and len(self._data) > self.capacity:
                self._data.popitem(last=False)

    def get_or_load(self, key: K, loader: Callable[[K], V]) -> V:
        cached = self.get(key, _MISSING)  # type: ignore[arg-type]
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        with self._lock:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1

        try:
            with entry.lock:
                cached = self.get(key, _MISSING)  # type: ignore[arg-type]
                if cached is not _MISSING:
                    return cached  # type: ignore[return-value]
                value = loader(key)
                self.put(key, value)
                return value
        finally:
            # drop the entry only once nobody holds or waits on it
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._key_locks[key]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
