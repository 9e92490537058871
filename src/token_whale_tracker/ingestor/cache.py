"""Explicit snapshot cache for the market data aggregator."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: float


class SnapshotCache(Generic[T]):
    """Holds the most recent value per key along with when it was stored.

    The cache never expires entries on its own; callers ask ``is_fresh``
    with whatever TTL applies to them (the normal refresh window, or the
    relaxed window used when the primary feed is down).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def age(self, key: str) -> float | None:
        """Seconds since ``key`` was stored, or None if absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry.stored_at

    def is_fresh(self, key: str, ttl: float) -> bool:
        age = self.age(key)
        return age is not None and age <= ttl

    def clear(self) -> None:
        self._entries.clear()
