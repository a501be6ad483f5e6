"""Time-boxed cache for analytics payloads.

Keys are ``(metric_set, subject_key, time_range_key)``. An entry is served
while ``now - computed_at < ttl``; after that the caller recomputes on its own
request (no background refresh). The lock guards dict operations only and is
never held while a payload is being computed.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

CacheKey = tuple[str, str, str]


@dataclass(frozen=True)
class CacheEntry:
    payload: Any
    computed_at: float


class AnalyticsCache:
    """Thread-safe TTL map. ``clock`` returns seconds (monotonic by default)."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(metric_set: str, subject: str | None, time_range: str) -> CacheKey:
        return (metric_set, subject.lower() if subject else "all", time_range)

    def get(self, key: CacheKey) -> Any | None:
        """Fresh payload for ``key`` or None; expired entries are evicted."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now - entry.computed_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.payload

    def put(self, key: CacheKey, payload: Any) -> None:
        entry = CacheEntry(payload=payload, computed_at=self._clock())
        with self._lock:
            self._entries[key] = entry

    def clear(self) -> int:
        """Purge everything; returns how many entries were dropped."""
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
