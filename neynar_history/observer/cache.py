"""
Request coalescing for current-score lookups.

TTLCache keeps a recent result per key for a short time; SingleFlight makes
concurrent callers for the same key share one in-flight computation (the
followers get the leader's result or exception).
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Callable, Generic, Hashable, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Thread-safe key -> value cache with a fixed time-to-live. ttl <= 0 disables it."""

    def __init__(self, ttl_sec: float, *, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_sec
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[Hashable, tuple[float, T]] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, key: Hashable) -> T | None:
        if not self.enabled:
            return None
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires, value = item
            if expires <= self._clock():
                del self._items[key]
                return None
            return value

    def set(self, key: Hashable, value: T) -> None:
        if not self.enabled:
            return
        now = self._clock()
        with self._lock:
            if len(self._items) >= self._max_entries:
                self._items = {k: v for k, v in self._items.items() if v[0] > now}
                if len(self._items) >= self._max_entries:
                    self._items.pop(next(iter(self._items)))
            self._items[key] = (now + self._ttl, value)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._items.pop(key, None)


class SingleFlight(Generic[T]):
    """At most one concurrent execution of fn per key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: dict[Hashable, Future] = {}

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        with self._lock:
            existing = self._inflight.get(key)
            if existing is None:
                future: Future = Future()
                self._inflight[key] = future
        if existing is not None:
            return existing.result()

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._inflight
