"""In-process TTL caches shared by services and route handlers."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

from app.observability.metrics import metrics

logger = logging.getLogger(__name__)

V = TypeVar("V")

_DEFAULT_PRUNE_THRESHOLD = 100


@dataclass(frozen=True)
class _CacheEntry(Generic[V]):
    stored_at: float
    value: V


class TTLCache(Generic[V]):
    """Key/value cache whose entries are fresh for ``ttl_seconds``.

    Expired entries stay readable through :meth:`get_stale` so callers can
    serve the last good value when an upstream fails. Once the cache holds
    more than ``prune_threshold`` entries, writes drop anything older than
    twice the TTL. Concurrent misses on the same key are not coalesced.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        name: str = "cache",
        prune_threshold: int = _DEFAULT_PRUNE_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._name = name
        self._prune_threshold = prune_threshold
        self._clock = clock
        self._entries: dict[Hashable, _CacheEntry[V]] = {}
        self._hits = 0
        self._misses = 0
        self._lock = Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def cache_stats(self) -> dict[str, int]:
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._entries)}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> V | None:
        """Return the value for ``key`` when it is still within the TTL."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            fresh = entry is not None and now - entry.stored_at < self._ttl
            if fresh:
                self._hits += 1
            else:
                self._misses += 1
        metrics.increment(
            "cache.hit" if fresh else "cache.miss", tags={"cache": self._name}
        )
        return entry.value if fresh else None

    def get_stale(self, key: Hashable) -> V | None:
        """Return the last stored value for ``key`` regardless of age."""
        with self._lock:
            entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def age(self, key: Hashable) -> float | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry.stored_at

    def set(self, key: Hashable, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = _CacheEntry(stored_at=now, value=value)
            if len(self._entries) > self._prune_threshold:
                self._prune(now)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def _prune(self, now: float) -> None:
        cutoff = now - self._ttl * 2
        expired = [key for key, entry in self._entries.items() if entry.stored_at < cutoff]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("cache.pruned", extra={"cache": self._name, "removed": len(expired)})


class ReadThroughCache(Generic[V]):
    """Single-value cache that calls ``loader`` on a miss or after invalidation."""

    def __init__(
        self,
        loader: Callable[[], V],
        ttl_seconds: float,
        *,
        name: str = "read_through",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._loader = loader
        self._ttl = ttl_seconds
        self._name = name
        self._clock = clock
        self._entry: _CacheEntry[V] | None = None
        self._loads = 0
        self._lock = Lock()

    @property
    def loads(self) -> int:
        """Number of times the loader has run."""
        return self._loads

    def get(self) -> V:
        with self._lock:
            now = self._clock()
            entry = self._entry
            if entry is not None and now - entry.stored_at < self._ttl:
                return entry.value
            value = self._loader()
            self._entry = _CacheEntry(stored_at=now, value=value)
            self._loads += 1
        logger.info("cache.reloaded", extra={"cache": self._name, "loads": self._loads})
        metrics.increment("cache.reload", tags={"cache": self._name})
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None
        logger.info("cache.invalidated", extra={"cache": self._name})
