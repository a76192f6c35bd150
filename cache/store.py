"""
cache/store.py -- In-process TTL cache for GET responses.

Entries expire lazily: get() deletes an expired key it runs into. Once the
number of keys grows past `cleanup_threshold`, set() sweeps every expired
key in one pass so never-read keys do not pile up.

State is per instance and per process. The cache is only touched from the
event loop, so there is no locking.

Usage:
    cache = ResponseCache(default_ttl_ms=300_000)
    cache.set("GET:/api/v1/items?a=1", payload)
    cache.get("GET:/api/v1/items?a=1")   # payload or None
    cache.purge_expired()
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_DEFAULT_TTL_MS = 5 * 60 * 1000
_DEFAULT_CLEANUP_THRESHOLD = 1000


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class _Entry:
    data: Any
    expires_at: float


class ResponseCache:
    def __init__(
        self,
        default_ttl_ms: int = _DEFAULT_TTL_MS,
        cleanup_threshold: int = _DEFAULT_CLEANUP_THRESHOLD,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self.default_ttl_ms = default_ttl_ms
        self.cleanup_threshold = cleanup_threshold
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        """Return cached data for key if it exists and hasn't expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.expires_at <= self._clock():
            self._delete(key)
            self.misses += 1
            return None
        self.hits += 1
        return entry.data

    def set(self, key: str, data: Any, ttl_ms: int | None = None) -> None:
        """Store data for key, replacing any existing entry."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = _Entry(data=data, expires_at=self._clock() + ttl)
        if len(self._entries) > self.cleanup_threshold:
            self.purge_expired()

    def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            self._delete(key)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "keys": sorted(self._entries),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def _delete(self, key: str) -> None:
        self._entries.pop(key, None)
