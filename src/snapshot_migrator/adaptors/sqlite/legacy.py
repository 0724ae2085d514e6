"""
Read side of the migration: the legacy snapshot table and the journal.

Everything here runs on connections borrowed from the read-only source pool.
Streaming methods are async generators that hold their connection (and the open
cursor) until they are exhausted or closed, so callers should wrap them in
`contextlib.aclosing` when they may stop early.
"""
import logging
import sqlite3
from typing import AsyncIterator, List

from ...config import SourceConfig
from ...models import LegacySnapshotRow, MigrationCursor
from .errors import translate_error
from .pool import ReadPool
from .timestamps import from_millis


def _to_row(record) -> LegacySnapshotRow:
    persistence_id, sequence_number, created, snapshot, ser_id, ser_manifest, row_id = record
    return LegacySnapshotRow(
        persistence_id=persistence_id,
        sequence_number=sequence_number,
        created=from_millis(created),
        snapshot=snapshot,
        serializer_id=ser_id,
        serializer_manifest=ser_manifest,
        row_id=row_id,
    )


class SQLiteJournalEnumerator:
    """Streams the distinct persistence ids found in the legacy journal."""

    def __init__(self, pool: ReadPool, config: SourceConfig):
        self.pool = pool
        self.table = config.journal_table

    async def persistence_ids(self, limit: int) -> AsyncIterator[str]:
        query = f"SELECT DISTINCT persistence_id FROM {self.table} ORDER BY persistence_id LIMIT ?"
        async with self.pool.connection() as conn:
            try:
                async with conn.execute(query, (limit,)) as cursor:
                    async for (persistence_id,) in cursor:
                        yield persistence_id
            except sqlite3.Error as e:
                raise translate_error(e, f"Enumerating persistence ids from {self.table}") from e


class SQLiteLegacyReader:
    """
    Reads rows from the legacy snapshot table.

    The full scan and the paged reads share one deterministic order:
    (persistence_id, sequence_number, rowid).
    """

    def __init__(self, pool: ReadPool, config: SourceConfig):
        self.pool = pool
        self.table = config.legacy_snapshot_table
        self._columns = (
            "persistence_id, sequence_number, created, snapshot, "
            "snapshot_ser_id, snapshot_ser_manifest, rowid"
        )

    async def latest_for(self, persistence_id: str) -> LegacySnapshotRow | None:
        """Returns the row with the highest sequence number, newest `created` and then highest rowid winning ties."""
        query = (
            f"SELECT {self._columns} FROM {self.table} WHERE persistence_id = ? "
            "ORDER BY sequence_number DESC, created DESC, rowid DESC LIMIT 1"
        )
        async with self.pool.connection() as conn:
            try:
                async with conn.execute(query, (persistence_id,)) as cursor:
                    record = await cursor.fetchone()
            except sqlite3.Error as e:
                raise translate_error(e, f"Reading latest snapshot for {persistence_id}") from e
        if record is None:
            return None
        return _to_row(record)

    async def stream_all(self) -> AsyncIterator[LegacySnapshotRow]:
        query = (
            f"SELECT {self._columns} FROM {self.table} "
            "ORDER BY persistence_id, sequence_number, rowid"
        )
        async with self.pool.connection() as conn:
            try:
                async with conn.execute(query) as cursor:
                    async for record in cursor:
                        yield _to_row(record)
            except sqlite3.Error as e:
                raise translate_error(e, f"Scanning {self.table}") from e
        logging.debug(f"Finished scanning {self.table}")

    async def read_page(self, after: MigrationCursor | None, limit: int) -> List[LegacySnapshotRow]:
        """Reads up to `limit` rows strictly after `after` in scan order."""
        if after is None or after.persistence_id is None:
            query = (
                f"SELECT {self._columns} FROM {self.table} "
                "ORDER BY persistence_id, sequence_number, rowid LIMIT ?"
            )
            params = (limit,)
        else:
            query = (
                f"SELECT {self._columns} FROM {self.table} "
                "WHERE (persistence_id, sequence_number, rowid) > (?, ?, ?) "
                "ORDER BY persistence_id, sequence_number, rowid LIMIT ?"
            )
            params = (after.persistence_id, after.sequence_number, after.row_id, limit)
        async with self.pool.connection() as conn:
            try:
                async with conn.execute(query, params) as cursor:
                    records = await cursor.fetchall()
            except sqlite3.Error as e:
                raise translate_error(e, f"Reading a page of {self.table}") from e
        return [_to_row(record) for record in records]
