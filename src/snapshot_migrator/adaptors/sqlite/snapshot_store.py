"""
This module provides the SQLite implementation of the new snapshot schema.

It is the target store's own read/write path: `save` encodes a payload with the
codec and persists it, and the read methods decode rows back. The migration
engine only uses `save`; the readers exist for verification and for the
application that owns the store.
"""
import asyncio
import logging
import sqlite3
from typing import Any, AsyncIterator

import aiosqlite

from ...codec import SnapshotCodec
from ...config import TargetConfig
from ...errors import DeserializationError
from ...models import DecodedSnapshot, SnapshotMetadata, WritePolicy
from .errors import translate_error
from .timestamps import from_millis, to_millis


class SQLiteSnapshotStore:
    """
    Snapshot rows keyed by (persistence_id, sequence_number). All writes go
    through one shared connection and are serialized by `write_lock`.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock,
        codec: SnapshotCodec,
        config: TargetConfig,
    ):
        self.conn = conn
        self.write_lock = write_lock
        self.codec = codec
        self.table = config.snapshot_table

    async def create_schema(self):
        try:
            await self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    persistence_id TEXT NOT NULL,
                    sequence_number INTEGER NOT NULL,
                    created INTEGER NOT NULL,
                    snapshot_ser_id INTEGER NOT NULL,
                    snapshot_ser_manifest TEXT NOT NULL,
                    snapshot_payload BLOB NOT NULL,
                    PRIMARY KEY (persistence_id, sequence_number)
                )
            """
            )
            await self.conn.commit()
        except sqlite3.Error as e:
            raise translate_error(e, f"Creating {self.table}") from e

    async def save(
        self,
        metadata: SnapshotMetadata,
        payload: Any,
        *,
        policy: WritePolicy = WritePolicy.REPLACE_SEQUENCE,
        serializer_id: int | None = None,
        manifest: str | None = None,
    ):
        """
        Encodes and persists one snapshot in its own transaction.

        REPLACE_ENTITY leaves exactly this row for the persistence id,
        REPLACE_SEQUENCE upserts by (persistence_id, sequence_number) and
        INSERT raises `WriteError` if that key already exists.
        """
        encoded = self.codec.encode(payload, serializer_id, manifest)
        params = (
            metadata.persistence_id,
            metadata.sequence_number,
            to_millis(metadata.timestamp),
            encoded.serializer_id,
            encoded.manifest,
            encoded.data,
        )
        verb = "INSERT OR REPLACE" if policy == WritePolicy.REPLACE_SEQUENCE else "INSERT"
        insert = (
            f"{verb} INTO {self.table} (persistence_id, sequence_number, created, "
            "snapshot_ser_id, snapshot_ser_manifest, snapshot_payload) VALUES (?, ?, ?, ?, ?, ?)"
        )
        async with self.write_lock:
            try:
                await self.conn.execute("BEGIN")
                if policy == WritePolicy.REPLACE_ENTITY:
                    await self.conn.execute(
                        f"DELETE FROM {self.table} WHERE persistence_id = ?",
                        (metadata.persistence_id,),
                    )
                await self.conn.execute(insert, params)
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                logging.error(
                    f"Failed to save snapshot {metadata.persistence_id}@{metadata.sequence_number}: {e}"
                )
                raise translate_error(e, f"Saving snapshot into {self.table}") from e
            except BaseException:
                # Queued behind any statement still running on the connection thread.
                await self.conn.rollback()
                raise

    def _decode(self, record) -> DecodedSnapshot:
        persistence_id, sequence_number, created, ser_id, manifest, data = record
        serializer = self.codec.registry.resolve(ser_id, manifest)
        payload = serializer.from_binary(data, manifest or None)
        return DecodedSnapshot(
            metadata=SnapshotMetadata(
                persistence_id=persistence_id,
                sequence_number=sequence_number,
                timestamp=from_millis(created),
            ),
            payload=payload,
            serializer_id=ser_id,
            manifest=manifest,
        )

    async def load_latest(self, persistence_id: str) -> DecodedSnapshot | None:
        """Loads the snapshot with the highest sequence number, or None."""
        query = (
            "SELECT persistence_id, sequence_number, created, snapshot_ser_id, "
            f"snapshot_ser_manifest, snapshot_payload FROM {self.table} "
            "WHERE persistence_id = ? ORDER BY sequence_number DESC LIMIT 1"
        )
        try:
            async with self.conn.execute(query, (persistence_id,)) as cursor:
                record = await cursor.fetchone()
        except sqlite3.Error as e:
            raise translate_error(e, f"Loading snapshot for {persistence_id}") from e
        if record is None:
            return None
        return self._decode(record)

    async def snapshots(self, persistence_id: str | None = None) -> AsyncIterator[DecodedSnapshot]:
        """Streams stored snapshots ordered by (persistence_id, sequence_number)."""
        columns = (
            "persistence_id, sequence_number, created, snapshot_ser_id, "
            "snapshot_ser_manifest, snapshot_payload"
        )
        if persistence_id is None:
            query = f"SELECT {columns} FROM {self.table} ORDER BY persistence_id, sequence_number"
            params = ()
        else:
            query = (
                f"SELECT {columns} FROM {self.table} WHERE persistence_id = ? "
                "ORDER BY sequence_number"
            )
            params = (persistence_id,)
        try:
            async with self.conn.execute(query, params) as cursor:
                async for record in cursor:
                    try:
                        yield self._decode(record)
                    except DeserializationError as e:
                        logging.error(f"Stored snapshot {record[0]}@{record[1]} cannot be decoded: {e}")
                        raise
        except sqlite3.Error as e:
            raise translate_error(e, f"Reading {self.table}") from e

    async def count(self) -> int:
        try:
            async with self.conn.execute(f"SELECT COUNT(*) FROM {self.table}") as cursor:
                (total,) = await cursor.fetchone()
        except sqlite3.Error as e:
            raise translate_error(e, f"Counting {self.table}") from e
        return total
