"""
Bounded in-memory cache of processed transaction signatures.

A performance optimization only: the record store's unique constraints are
the correctness backstop. When the cache overflows, the oldest entries are
evicted until it is back at 75% of its maximum.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

EVICT_TO_FRACTION = 0.75


class ProcessedSignatureCache:
    """Thread-safe map signature -> time processed (Unix seconds)."""

    def __init__(
        self,
        max_size: int = 100_000,
        retention_sec: float = 24 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.retention_sec = retention_sec
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, signature: object) -> bool:
        with self._lock:
            return signature in self._entries

    def add(self, signature: str) -> None:
        """Record signature as processed now; evict oldest entries if over max_size."""
        now = self._clock()
        with self._lock:
            # Re-adding moves the entry to the back so insertion order tracks recency
            self._entries.pop(signature, None)
            self._entries[signature] = now
            if len(self._entries) > self.max_size:
                self._evict_locked()

    def _evict_locked(self) -> None:
        target = max(1, int(self.max_size * EVICT_TO_FRACTION))
        excess = len(self._entries) - target
        if excess <= 0:
            return
        # oldest by processed time; ties keep insertion order
        oldest = sorted(self._entries.items(), key=lambda kv: kv[1])[:excess]
        for sig, _ in oldest:
            del self._entries[sig]

    def sweep_expired(self) -> int:
        """Drop entries older than retention_sec. Returns how many were removed."""
        cutoff = self._clock() - self.retention_sec
        with self._lock:
            expired = [sig for sig, ts in self._entries.items() if ts < cutoff]
            for sig in expired:
                del self._entries[sig]
        return len(expired)

    def utilization(self) -> float:
        with self._lock:
            return len(self._entries) / self.max_size

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
