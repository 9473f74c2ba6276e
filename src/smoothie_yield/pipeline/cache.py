"""Explicit time-to-live cache owned by the orchestration layer."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any, TypeVar

T = TypeVar("T")


class TTLCache:
    """Thread-safe mapping whose entries expire ``ttl_seconds`` after being set.

    ``clock`` defaults to :func:`time.monotonic` and may be replaced in tests.
    When ``maxsize`` is reached the oldest entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self.maxsize = maxsize
        self._clock = clock
        self._data: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            expires, value = entry
            if self._clock() >= expires:
                del self._data[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key not in self._data and len(self._data) >= self.maxsize:
                oldest = min(self._data, key=lambda k: self._data[k][0])
                del self._data[oldest]
            self._data[key] = (self._clock() + self.ttl_seconds, value)

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        """Cached value for ``key``, computing and storing it on a miss."""

        sentinel = object()
        value = self.get(key, sentinel)
        if value is sentinel:
            value = compute()
            self.set(key, value)
        return value  # type: ignore[return-value]

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop ``key``, or every entry when ``key`` is ``None``."""

        with self._lock:
            if key is None:
                self._data.clear()
            else:
                self._data.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for expires, _ in self._data.values() if expires > now)


__all__ = ["TTLCache"]
