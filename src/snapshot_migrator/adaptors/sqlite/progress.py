"""Persisted cursors for paged migration runs, stored in the target database."""
import asyncio
import sqlite3
from datetime import datetime, timezone

import aiosqlite

from ...config import TargetConfig
from ...models import MigrationCursor
from .errors import translate_error


class SQLiteProgressStore:
    def __init__(self, conn: aiosqlite.Connection, write_lock: asyncio.Lock, config: TargetConfig):
        self.conn = conn
        self.write_lock = write_lock
        self.table = config.progress_table

    async def create_schema(self):
        try:
            await self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    run_name TEXT PRIMARY KEY,
                    last_persistence_id TEXT,
                    last_sequence_number INTEGER,
                    last_row_id INTEGER,
                    completed INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """
            )
            await self.conn.commit()
        except sqlite3.Error as e:
            raise translate_error(e, f"Creating {self.table}") from e

    async def load(self, run_name: str) -> MigrationCursor | None:
        query = (
            "SELECT last_persistence_id, last_sequence_number, last_row_id, completed, updated_at "
            f"FROM {self.table} WHERE run_name = ?"
        )
        try:
            async with self.conn.execute(query, (run_name,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise translate_error(e, f"Loading migration cursor '{run_name}'") from e
        if row is None:
            return None
        persistence_id, sequence_number, row_id, completed, updated_at = row
        return MigrationCursor(
            run_name=run_name,
            persistence_id=persistence_id,
            sequence_number=sequence_number,
            row_id=row_id,
            completed=bool(completed),
            updated_at=datetime.fromisoformat(updated_at),
        )

    async def save(self, cursor: MigrationCursor):
        updated_at = datetime.now(timezone.utc)
        async with self.write_lock:
            try:
                await self.conn.execute(
                    f"INSERT OR REPLACE INTO {self.table} (run_name, last_persistence_id, "
                    "last_sequence_number, last_row_id, completed, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        cursor.run_name,
                        cursor.persistence_id,
                        cursor.sequence_number,
                        cursor.row_id,
                        int(cursor.completed),
                        updated_at.isoformat(),
                    ),
                )
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                raise translate_error(e, f"Saving migration cursor '{cursor.run_name}'") from e
            except BaseException:
                await self.conn.rollback()
                raise

    async def reset(self, run_name: str):
        async with self.write_lock:
            try:
                await self.conn.execute(f"DELETE FROM {self.table} WHERE run_name = ?", (run_name,))
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                raise translate_error(e, f"Resetting migration cursor '{run_name}'") from e
            except BaseException:
                await self.conn.rollback()
                raise
