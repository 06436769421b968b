from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional, TypeVar, Union

from optimist.base.cache import BaseCacheAdapter, Updater
from optimist.exception import OptimistError

try:
    import aiosqlite

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FILENAME = "optimist-cache.sqlite3"
CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS cache_items (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (namespace, key)
)
"""


class SQLiteCacheAdapter(BaseCacheAdapter):
    """File based cache stored in a single SQLite database under
    `directory`. Several namespaces (and several processes) may share the
    same file. `update` holds a write lock on the file from the read to the
    write, so concurrent updates never interleave."""

    def __init__(
        self,
        namespace: str,
        directory: Union[str, Path],
        filename: str = DEFAULT_FILENAME,
    ) -> None:
        if not AIOSQLITE_ENABLED:
            raise OptimistError(
                "SQLite driver not found. Try reinstalling Optimist: "
                "pip install optimist[sqlite]"
            )
        super().__init__(namespace)
        self._directory = Path(directory)
        self._path = self._directory / filename
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_directory(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        if not self._directory.is_dir():
            raise OptimistError(
                f'Impossible to create the root directory "{self._directory}".'
            )

    async def open(self) -> None:
        """Keep a connection open until `close` is called"""
        if self._db is None:
            self._db = await self._connect()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _connect(self):
        self._ensure_directory()
        db = await aiosqlite.connect(self._path)
        await db.execute(CREATE_TABLE)
        await db.commit()
        logger.debug("Opened cache file %s for %s", self._path, self)
        return db

    @asynccontextmanager
    async def connection(self):
        """Yield a connection and commit on success. Work on the kept open
        connection is serialized so that transactions never overlap."""
        async with self.lock:
            db = self._db or await self._connect()
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            else:
                await db.commit()
            finally:
                if db is not self._db:
                    await db.close()

    async def get(self, key: str) -> Optional[bytes]:
        async with self.connection() as db:
            cursor = await db.execute(
                "SELECT value FROM cache_items WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            row = await cursor.fetchone()
        return bytes(row[0]) if row else None

    async def set(self, key: str, value: bytes) -> None:
        async with self.connection() as db:
            await db.execute(
                "INSERT OR REPLACE INTO cache_items (namespace, key, value) "
                "VALUES (?, ?, ?)",
                (self.namespace, key, bytes(value)),
            )

    async def update(self, key: str, updater: Updater[T]) -> T:
        async with self.connection() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT value FROM cache_items WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            row = await cursor.fetchone()
            value, result = updater(bytes(row[0]) if row else None)
            if value is None:
                await db.execute(
                    "DELETE FROM cache_items WHERE namespace = ? AND key = ?",
                    (self.namespace, key),
                )
            else:
                await db.execute(
                    "INSERT OR REPLACE INTO cache_items "
                    "(namespace, key, value) VALUES (?, ?, ?)",
                    (self.namespace, key, bytes(value)),
                )
        return result

    async def delete(self, key: str) -> None:
        async with self.connection() as db:
            await db.execute(
                "DELETE FROM cache_items WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )

    async def clear(self) -> None:
        async with self.connection() as db:
            await db.execute(
                "DELETE FROM cache_items WHERE namespace = ?",
                (self.namespace,),
            )

    async def keys(self) -> List[str]:
        async with self.connection() as db:
            cursor = await db.execute(
                "SELECT key FROM cache_items WHERE namespace = ? ORDER BY key",
                (self.namespace,),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
