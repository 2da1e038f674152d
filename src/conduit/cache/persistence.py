"""SQLite-backed durable mirror for GenericCache.

Entries are stored as JSON under ``<prefix><key>`` so several caches can share
one database file. Values must be JSON-serializable to be mirrored; other
values stay memory-only (the save fails with CacheIOError, which the cache
logs and ignores).

Environment:
    CONDUIT_CACHE_DB_PATH: Path to the SQLite database file.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from conduit.cache.store import (
    DEFAULT_PREFIX,
    CacheConfig,
    CacheEntry,
    EvictCallback,
    GenericCache,
)
from conduit.config import Settings
from conduit.errors import CacheIOError

logger = logging.getLogger(__name__)


class SqliteCacheMirror:
    """Durable key/value mirror in a single SQLite table.

    A single connection is shared behind a lock; the database and parent
    directories are created on first use.
    """

    _CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS cache_entries (
            key TEXT PRIMARY KEY,
            payload TEXT NOT NULL
        )
    """

    _UPSERT_SQL = "INSERT OR REPLACE INTO cache_entries (key, payload) VALUES (?, ?)"
    _DELETE_SQL = "DELETE FROM cache_entries WHERE key = ?"
    _DELETE_PREFIX_SQL = "DELETE FROM cache_entries WHERE substr(key, 1, ?) = ?"
    _SELECT_PREFIX_SQL = "SELECT key, payload FROM cache_entries WHERE substr(key, 1, ?) = ?"

    def __init__(self, db_path: str, prefix: str = DEFAULT_PREFIX) -> None:
        """Initialize the mirror.

        Args:
            db_path: SQLite database file path.
            prefix: Key prefix isolating this cache's rows.
        """
        self._db_path = db_path
        self._prefix = prefix
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Open (once) and return the shared connection.

        Raises:
            CacheIOError: If the database cannot be opened or initialized.
        """
        if self._conn is not None:
            return self._conn

        try:
            path = Path(self._db_path)
            if path.is_dir():
                raise CacheIOError(f"Cache mirror path is a directory: {self._db_path}")
            path.parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(self._CREATE_TABLE_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise CacheIOError(f"Failed to open cache mirror: {e}") from e
        except OSError as e:
            raise CacheIOError(f"Failed to create cache mirror directory: {e}") from e

        self._conn = conn
        logger.info("Opened cache mirror at %s", self._db_path)
        return conn

    def _execute(self, sql: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        with self._lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(sql, params).fetchall()
                conn.commit()
            except sqlite3.Error as e:
                raise CacheIOError(f"Cache mirror query failed: {e}") from e
            return rows

    def save(self, key: str, entry: CacheEntry[Any]) -> None:
        """Persist an entry.

        Raises:
            CacheIOError: On serialization or database failure.
        """
        try:
            payload = json.dumps(
                {
                    "data": entry.data,
                    "timestamp": entry.timestamp,
                    "expires_at": entry.expires_at,
                    "tags": list(entry.tags),
                },
                sort_keys=True,
                separators=(",", ":"),
            )
        except (TypeError, ValueError) as e:
            raise CacheIOError(f"Cache value for key is not serializable: {e}") from e

        self._execute(self._UPSERT_SQL, (self._prefix + key, payload))

    def remove(self, key: str) -> None:
        """Remove an entry (no-op if absent)."""
        self._execute(self._DELETE_SQL, (self._prefix + key,))

    def clear(self) -> None:
        """Remove every entry under this mirror's prefix."""
        self._execute(self._DELETE_PREFIX_SQL, (len(self._prefix), self._prefix))

    def load(self) -> list[tuple[str, CacheEntry[Any]]]:
        """Load every entry under this mirror's prefix.

        Rows that cannot be decoded are skipped and removed.

        Raises:
            CacheIOError: On database failure.
        """
        rows = self._execute(self._SELECT_PREFIX_SQL, (len(self._prefix), self._prefix))
        entries: list[tuple[str, CacheEntry[Any]]] = []
        for full_key, payload in rows:
            key = full_key[len(self._prefix) :]
            try:
                raw = json.loads(payload)
                entry: CacheEntry[Any] = CacheEntry(
                    data=raw["data"],
                    timestamp=float(raw["timestamp"]),
                    expires_at=float(raw["expires_at"]),
                    tags=tuple(raw.get("tags") or ()),
                )
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Dropping undecodable cache mirror row: %s", e)
                self.remove(key)
                continue
            entries.append((key, entry))
        return entries

    def close(self) -> None:
        """Close the shared connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def build_cache(settings: Settings, on_evict: EvictCallback | None = None) -> GenericCache:
    """Build a GenericCache from Settings, mirrored to SQLite when a path is set."""
    mirror = SqliteCacheMirror(settings.cache_db_path) if settings.cache_db_path else None
    return GenericCache(
        CacheConfig(
            default_ttl=settings.cache_default_ttl,
            max_size=settings.cache_max_size,
            on_evict=on_evict,
            mirror=mirror,
        )
    )
