"""Key/value cache for serialized catalog records.

Failures never reach the caller: a broken read is a miss, a broken write
is reported as ``False`` and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

LIST_KEY = "catalog:list"
DETAIL_PREFIX = "catalog:detail:"


def detail_key(identity: int) -> str:
    return f"{DETAIL_PREFIX}{identity}"


class CatalogCache(Protocol):
    async def get(self, key: str) -> str | None:
        """Return the serialized value or None on miss or failure."""

    async def set(self, key: str, value: str) -> bool:
        """Store a serialized value; False when the write failed."""

    async def clear_namespace(self, prefix: str) -> int:
        """Drop every key starting with prefix and return how many went."""


class InMemoryCatalogCache:
    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._entries.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._entries[key] = value
        return True

    async def clear_namespace(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)


@dataclass
class SqliteCatalogCache:
    """Persistent cache in a single SQLite table, one row per key."""

    db_path: str

    def __post_init__(self) -> None:
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        if not self._schema_ready:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS catalog_cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """
            )
            conn.commit()
            self._schema_ready = True
        return conn

    def _get_sync(self, key: str) -> str | None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM catalog_cache WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return None if row is None else row[0]

    def _set_sync(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO catalog_cache (key, value, updated_at) VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()

    def _clear_sync(self, prefix: str) -> int:
        conn = self._connect()
        try:
            # substr keeps '_' and '%' in prefixes literal
            cursor = conn.execute(
                "DELETE FROM catalog_cache WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except sqlite3.Error as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, exc)
            return None

    async def set(self, key: str, value: str) -> bool:
        try:
            await asyncio.to_thread(self._set_sync, key, value)
        except sqlite3.Error as exc:
            logger.warning("Cache write failed for %s, ignoring: %s", key, exc)
            return False
        return True

    async def clear_namespace(self, prefix: str) -> int:
        try:
            return await asyncio.to_thread(self._clear_sync, prefix)
        except sqlite3.Error as exc:
            logger.warning("Cache clear failed for %s: %s", prefix, exc)
            return 0


def create_cache(cache_path: str | None) -> CatalogCache:
    if cache_path:
        return SqliteCatalogCache(db_path=cache_path)
    return InMemoryCatalogCache()
