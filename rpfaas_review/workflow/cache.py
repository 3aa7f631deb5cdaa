"""
Tag-based read-through cache with short TTLs.

Used for per-principal permission lookups and per-kind record list queries.
Every entry is filed under one or more string tags; writers invalidate by
tag (``permissions``, ``records:building``) rather than by key, so a mutation
does not need to know which keys were derived from the data it touched.

Process-local and thread-safe. Multi-worker deployments each hold their own
copy, bounded by the TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    """A cached value with expiration."""

    value: Any
    tags: frozenset[str]
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.monotonic()) >= self.expires_at


class TagCache:
    """
    Thread-safe in-memory cache keyed by string, invalidated by tag.

    Usage:
        cache = TagCache(default_ttl=30)
        perms = cache.get_or_load(
            f"permissions:{user_id}",
            tags=["permissions", f"permissions:{user_id}"],
            loader=lambda: resolve(user_id),
        )
        cache.invalidate_tag("permissions")
    """

    def __init__(
        self,
        default_ttl: float = 30,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._tag_index: dict[str, set[str]] = {}
        # Bumped on every invalidation so in-flight loads can detect it
        self._tag_generation: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.RLock()
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        """Return the cached value for ``key`` or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                self._remove(key)
                return None
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        tags: Iterable[str] = (),
        ttl: float | None = None,
    ) -> None:
        """Store ``value`` under ``key``, filed under each of ``tags``."""
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            if key in self._entries:
                self._remove(key)
            elif len(self._entries) >= self._max_size:
                self._evict()
            tag_set = frozenset(tags)
            self._entries[key] = CacheEntry(
                value=value, tags=tag_set, expires_at=self._clock() + ttl,
            )
            for tag in tag_set:
                self._tag_index.setdefault(tag, set()).add(key)

    def get_or_load(
        self,
        key: str,
        loader: Callable[[], T],
        tags: Iterable[str] = (),
        ttl: float | None = None,
        cache_if: Callable[[T], bool] | None = None,
    ) -> T:
        """
        Return the cached value for ``key``, calling ``loader`` on a miss.

        The loaded value is not stored if any of ``tags`` was invalidated
        while the loader ran, or if ``cache_if`` rejects it.
        """
        tags = tuple(tags)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._clock()):
                self.hits += 1
                return entry.value
            self.misses += 1
            snapshot = self._generations(tags)

        # Loader runs outside the lock; two concurrent misses may both load.
        value = loader()
        if cache_if is not None and not cache_if(value):
            return value

        with self._lock:
            if self._generations(tags) != snapshot:
                logger.debug("Cache load discarded after invalidation: %s", key)
                return value
            self.set(key, value, tags=tags, ttl=ttl)
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._remove(key)

    def invalidate_tag(self, tag: str) -> int:
        """Drop every entry filed under ``tag``. Returns the number dropped."""
        with self._lock:
            self._tag_generation[tag] = self._tag_generation.get(tag, 0) + 1
            keys = self._tag_index.pop(tag, set())
            for key in list(keys):
                self._remove(key)
        if keys:
            logger.debug("Cache tag invalidated: %s (%d entries)", tag, len(keys))
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()
            self._tag_index.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ── Internal ────────────────────────────────────────────────

    def _generations(self, tags: tuple[str, ...]) -> tuple[int, ...]:
        return (self._epoch,) + tuple(self._tag_generation.get(t, 0) for t in tags)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]

    def _evict(self) -> None:
        """Drop expired entries, then the soonest-to-expire if still full."""
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            self._remove(key)
        if len(self._entries) >= self._max_size:
            oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
            self._remove(oldest)
