"""Conduit cache - generic TTL cache with tag invalidation and durable mirror."""

from conduit.cache.fingerprint import compute_fingerprint, data_source_tag, fetch_fingerprint
from conduit.cache.persistence import SqliteCacheMirror, build_cache
from conduit.cache.store import (
    CacheConfig,
    CacheEntry,
    CacheMirror,
    CacheStats,
    CacheSweeper,
    GenericCache,
    get_cache,
    reset_cache,
)

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheMirror",
    "CacheStats",
    "CacheSweeper",
    "GenericCache",
    "SqliteCacheMirror",
    "build_cache",
    "compute_fingerprint",
    "data_source_tag",
    "fetch_fingerprint",
    "get_cache",
    "reset_cache",
]
