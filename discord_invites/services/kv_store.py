"""Key-value cache backends with per-entry TTL.

Values are JSON objects. Every backend raises ``CacheStoreError`` on failure;
callers decide whether a failure matters.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import aiosqlite

from ..config import Settings
from ..errors import CacheStoreError, ConfigurationError


class KVStore(Protocol):
    async def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


def _decode(raw: str) -> Dict[str, Any]:
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise CacheStoreError(f"Malformed cache entry: {e}") from e
    if not isinstance(value, dict):
        raise CacheStoreError("Malformed cache entry: expected a JSON object")
    return value


class SqliteKVStore:
    """Cache store backed by a local SQLite file."""

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self._clock = clock

    async def init_db(self) -> None:
        """Create database schema if not exists."""
        try:
            os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        expires_at INTEGER NOT NULL
                    )
                    """
                )
                await db.commit()
        except (sqlite3.Error, OSError) as e:
            raise CacheStoreError(f"Failed to initialize cache store: {e}") from e

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = int(self._clock())
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    "SELECT value, expires_at FROM kv_entries WHERE key = ?", (key,)
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    return None
                if int(row["expires_at"]) <= now:
                    await db.execute(
                        "DELETE FROM kv_entries WHERE key = ? AND expires_at <= ?", (key, now)
                    )
                    await db.commit()
                    return None
                raw = row["value"]
        except sqlite3.Error as e:
            raise CacheStoreError(f"Cache read failed: {e}") from e
        return _decode(raw)

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise CacheStoreError(f"TTL must be positive, got {ttl_seconds}")
        now = int(self._clock())
        expires_at = now + int(ttl_seconds)
        try:
            payload = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheStoreError(f"Value is not JSON serializable: {e}") from e
        try:
            async with aiosqlite.connect(self.db_path) as db:
                # abandoned keys are never read again, so expiry is enforced on write
                await db.execute("DELETE FROM kv_entries WHERE expires_at <= ?", (now,))
                await db.execute(
                    """
                    INSERT INTO kv_entries (key, value, expires_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        expires_at = excluded.expires_at
                    """,
                    (key, payload, expires_at),
                )
                await db.commit()
        except sqlite3.Error as e:
            raise CacheStoreError(f"Cache write failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                await db.commit()
        except sqlite3.Error as e:
            raise CacheStoreError(f"Cache delete failed: {e}") from e

    async def purge_expired(self) -> int:
        """Delete every expired row; return how many were removed."""
        now = int(self._clock())
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("DELETE FROM kv_entries WHERE expires_at <= ?", (now,))
                await db.commit()
                removed = cursor.rowcount
        except sqlite3.Error as e:
            raise CacheStoreError(f"Cache purge failed: {e}") from e
        if removed:
            logging.getLogger(__name__).info(
                "Purged %s expired cache entries", removed, extra={"operation": "kv_purge"}
            )
        return removed


class MemoryKVStore:
    """Per-process cache store; entries vanish on restart."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # key -> (expires_at, json payload)
        self._entries: Dict[str, Tuple[float, str]] = {}

    def _prune(self, now: float) -> None:
        expired = [key for key, (exp, _raw) in self._entries.items() if exp <= now]
        for key in expired:
            self._entries.pop(key, None)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = self._clock()
        self._prune(now)
        entry = self._entries.get(key)
        if entry is None:
            return None
        return _decode(entry[1])

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise CacheStoreError(f"TTL must be positive, got {ttl_seconds}")
        try:
            payload = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheStoreError(f"Value is not JSON serializable: {e}") from e
        now = self._clock()
        self._prune(now)
        self._entries[key] = (now + ttl_seconds, payload)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._entries)


async def create_store_from_settings(settings: Settings) -> Optional[KVStore]:
    """Build the configured cache backend, or None when caching is disabled."""
    backend = settings.CACHE_BACKEND.strip().lower()
    if backend == "none":
        return None
    if backend == "memory":
        return MemoryKVStore()
    if backend == "sqlite":
        store = SqliteKVStore(settings.CACHE_DB_PATH)
        await store.init_db()
        return store
    raise ConfigurationError(f"Unknown CACHE_BACKEND: {settings.CACHE_BACKEND!r}")
