"""Explicit TTL cache injected into market-data providers."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stale: bool


@dataclass
class _Slot:
    value: Any
    stored_at: float
    ttl_seconds: float


class TTLCache:
    """Keep values with a per-entry time-to-live.

    Expired entries are not evicted on read; ``get`` reports them as stale so
    providers can fall back to them when a refresh fails.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._slots: Dict[str, _Slot] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry[Any]]:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                return None
            age = self._clock() - slot.stored_at
            return CacheEntry(value=slot.value, stale=age > slot.ttl_seconds)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._slots[key] = _Slot(value=value, stored_at=self._clock(), ttl_seconds=float(ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._slots.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)


__all__ = ["CacheEntry", "TTLCache"]
