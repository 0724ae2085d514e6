"""
Connection handling for the SQLite adaptors.

Source databases are read through a small pool of read-only connections kept in
an `asyncio.Queue`; the target database gets a single write connection guarded
by a lock, since SQLite allows one writer at a time.
"""
import asyncio
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

import aiosqlite

from ...config import DatabaseConfig
from .errors import translate_error


async def _configure(conn: aiosqlite.Connection, config: DatabaseConfig):
    await conn.execute(f"PRAGMA cache_size = {config.cache_size_kib};")
    await conn.execute(f"PRAGMA busy_timeout = {config.busy_timeout_ms};")


async def open_write_connection(config: DatabaseConfig) -> aiosqlite.Connection:
    try:
        conn = await aiosqlite.connect(config.db_path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA synchronous = NORMAL;")
        await _configure(conn, config)
    except sqlite3.Error as e:
        raise translate_error(e, f"Opening target database {config.db_path}") from e
    return conn


class ReadPool:
    """A fixed-size pool of read-only connections to one database file."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=config.pool_size)
        self._connections: List[aiosqlite.Connection] = []

    async def open(self) -> "ReadPool":
        # mode=ro makes sure the migration can never modify the source.
        connect_string = f"file:{self.config.db_path}?mode=ro"
        try:
            for _ in range(self.config.pool_size):
                conn = await aiosqlite.connect(connect_string, uri=True)
                self._connections.append(conn)
                await _configure(conn, self.config)
                await self._pool.put(conn)
        except sqlite3.Error as e:
            await self.close()
            raise translate_error(e, f"Opening source database {self.config.db_path}") from e
        return self

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    async def close(self):
        await asyncio.gather(*(conn.close() for conn in self._connections))
        self._connections.clear()
