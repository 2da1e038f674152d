"""Generic process-wide key/value cache with TTL, FIFO eviction and tags.

Semantics:
- Every entry is stamped ``expires_at = now + (ttl or default_ttl)`` on set
- get/has expire lazily; CacheSweeper removes expired entries periodically
- Inserting a new key at max_size evicts the oldest-timestamp entries first
  (FIFO by insertion, not LRU by access), calling on_evict for each
- invalidate_by_tag removes every entry carrying the tag
- An optional CacheMirror receives every set/delete/clear and reloads
  non-expired entries on construction; mirror failures are logged only

The cache has no data-source knowledge: keys and tags are caller-defined.
All map access is guarded by an RLock, so the sweeper may run on any thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from conduit.config import (
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS,
    DEFAULT_CACHE_TTL_SECONDS,
)
from conduit.errors import CacheIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PREFIX = "cache:"


@dataclass
class CacheEntry(Generic[T]):
    """A cached value.

    Attributes:
        data: The cached value.
        timestamp: Wall-clock insertion time (epoch seconds).
        expires_at: Wall-clock expiry time (epoch seconds).
        tags: Labels for bulk invalidation.
    """

    data: T
    timestamp: float
    expires_at: float
    tags: tuple[str, ...] = ()

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) > self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache counters."""

    hits: int
    misses: int
    size: int
    evictions: int


class CacheMirror(Protocol):
    """Durable mirror for cache entries.

    Implementations must raise CacheIOError (and only CacheIOError) on failure.
    """

    def save(self, key: str, entry: CacheEntry[Any]) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def load(self) -> list[tuple[str, CacheEntry[Any]]]: ...


EvictCallback = Callable[[str, CacheEntry[Any]], None]


@dataclass
class CacheConfig:
    """GenericCache configuration.

    Attributes:
        default_ttl: TTL in seconds applied when set() gets no ttl.
        max_size: Maximum number of entries.
        on_evict: Called with (key, entry) for each evicted or swept entry.
        mirror: Optional durable mirror.
    """

    default_ttl: float = DEFAULT_CACHE_TTL_SECONDS
    max_size: int = DEFAULT_CACHE_MAX_SIZE
    on_evict: EvictCallback | None = None
    mirror: CacheMirror | None = field(default=None, repr=False)


class GenericCache:
    """Key/value cache with TTL, capacity eviction and tag invalidation."""

    def __init__(self, config: CacheConfig | None = None) -> None:
        """Initialize the cache, reloading entries from the mirror if configured.

        Args:
            config: Cache configuration. Defaults to CacheConfig().
        """
        self._config = config or CacheConfig()
        if self._config.max_size <= 0:
            raise ValueError(f"max_size must be positive, got {self._config.max_size}")
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        if self._config.mirror is not None:
            self._load_from_mirror()

    @property
    def config(self) -> CacheConfig:
        return self._config

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired():
                self._remove(key)
                self._misses += 1
                return None

            self._hits += 1
            return entry.data

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: float | None = None,
        tags: list[str] | tuple[str, ...] | None = None,
    ) -> None:
        """Store a value.

        Args:
            key: Cache key.
            value: Value to store.
            ttl: Time-to-live in seconds (default_ttl if None).
            tags: Labels for invalidate_by_tag.
        """
        effective_ttl = self._config.default_ttl if ttl is None else ttl
        now = time.time()
        entry: CacheEntry[Any] = CacheEntry(
            data=value,
            timestamp=now,
            expires_at=now + effective_ttl,
            tags=tuple(tags or ()),
        )

        with self._lock:
            if key in self._entries:
                # Re-insert so dict order keeps tracking insertion time.
                del self._entries[key]
            else:
                while len(self._entries) >= self._config.max_size:
                    self._evict_oldest()

            self._entries[key] = entry
            self._mirror_call("save", key, entry)

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], T],
        *,
        ttl: float | None = None,
        tags: list[str] | tuple[str, ...] | None = None,
    ) -> T:
        """Return the cached value, computing and storing it on miss."""
        with self._lock:
            cached = self.get(key)
            if cached is not None:
                return cached  # type: ignore[no-any-return]
            value = factory()
            self.set(key, value, ttl=ttl, tags=tags)
            return value

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it was present."""
        with self._lock:
            existed = key in self._entries
            self._remove(key)
            return existed

    def has(self, key: str) -> bool:
        """True if the key is present and not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired():
                self._remove(key)
                return False
            return True

    def invalidate_by_tag(self, tag: str) -> int:
        """Remove every entry tagged with ``tag``. Returns the count removed."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if tag in e.tags]
            for key in keys:
                self._remove(key)
        if keys:
            logger.debug("Invalidated %d cache entries for tag %s", len(keys), tag)
        return len(keys)

    def clear(self) -> None:
        """Remove all entries (and mirrored copies)."""
        with self._lock:
            self._entries.clear()
            self._mirror_call("clear")

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                evictions=self._evictions,
            )

    def sweep_expired(self) -> int:
        """Remove entries that are expired at sweep time. Returns the count removed.

        An entry replaced after the snapshot is left alone.
        """
        now = time.time()
        with self._lock:
            expired = [(k, e) for k, e in self._entries.items() if e.is_expired(now)]
            removed = 0
            for key, entry in expired:
                if self._entries.get(key) is not entry:
                    continue
                del self._entries[key]
                self._mirror_call("remove", key)
                self._notify_evict(key, entry)
                removed += 1
        if removed:
            logger.debug("Cache sweep removed %d expired entries", removed)
        return removed

    def _remove(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._mirror_call("remove", key)

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].timestamp)
        entry = self._entries.pop(oldest_key)
        self._mirror_call("remove", oldest_key)
        self._evictions += 1
        self._notify_evict(oldest_key, entry)

    def _notify_evict(self, key: str, entry: CacheEntry[Any]) -> None:
        if self._config.on_evict is not None:
            self._config.on_evict(key, entry)

    def _mirror_call(self, op: str, *args: Any) -> None:
        mirror = self._config.mirror
        if mirror is None:
            return
        try:
            getattr(mirror, op)(*args)
        except CacheIOError as e:
            logger.warning("Cache mirror %s failed: %s", op, e)

    def _load_from_mirror(self) -> None:
        mirror = self._config.mirror
        assert mirror is not None
        try:
            loaded = mirror.load()
        except CacheIOError as e:
            logger.warning("Cache mirror load failed; starting empty: %s", e)
            return

        now = time.time()
        restored = 0
        for key, entry in sorted(loaded, key=lambda item: item[1].timestamp):
            if entry.is_expired(now):
                self._mirror_call("remove", key)
                continue
            if len(self._entries) >= self._config.max_size:
                self._evict_oldest()
            self._entries[key] = entry
            restored += 1
        logger.info("Restored %d cache entries from mirror", restored)


class CacheSweeper:
    """Background task that periodically sweeps expired cache entries."""

    def __init__(
        self,
        cache: GenericCache,
        interval: float = DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the sweeper.

        Args:
            cache: Cache to sweep.
            interval: Seconds between sweeps.
        """
        self._cache = cache
        self._interval = interval
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start sweeping."""
        if self._running:
            logger.warning("Cache sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Cache sweeper started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Stop sweeping."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Cache sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                self._cache.sweep_expired()
            except Exception as e:
                logger.error("Error in cache sweep: %s", e, exc_info=True)


_global_cache: GenericCache | None = None
_global_lock = threading.Lock()


def get_cache(config: CacheConfig | None = None) -> GenericCache:
    """Return the process-wide cache, creating it on first call.

    ``config`` only applies to the call that creates the instance.
    """
    global _global_cache
    with _global_lock:
        if _global_cache is None:
            _global_cache = GenericCache(config)
        return _global_cache


def reset_cache() -> None:
    """Wipe and drop the process-wide cache. Maintenance and tests only."""
    global _global_cache
    with _global_lock:
        if _global_cache is not None:
            _global_cache.clear()
            _global_cache = None
