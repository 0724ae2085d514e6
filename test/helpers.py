import asyncio
import json

import aiosqlite

from snapshot_migrator import pack_envelope
from snapshot_migrator.codec import JSON_SERIALIZER_ID

BASE_CREATED = 1_700_000_000_000


def snapshot_row(
    persistence_id,
    sequence_number,
    payload=None,
    *,
    created=None,
    envelope=False,
    serializer_id=JSON_SERIALIZER_ID,
    manifest=None,
    raw=None,
):
    """Builds a legacy_snapshot tuple; JSON payloads unless `raw` bytes are given."""
    data = raw if raw is not None else json.dumps(payload).encode("utf-8")
    if created is None:
        created = BASE_CREATED + sequence_number
    if envelope:
        return (persistence_id, sequence_number, created, pack_envelope(serializer_id, manifest or "", data), None, None)
    return (persistence_id, sequence_number, created, data, serializer_id, manifest)


async def seed_legacy(db_path, snapshots=(), journal_ids=None):
    if journal_ids is None:
        journal_ids = sorted({row[0] for row in snapshots})
    async with aiosqlite.connect(db_path) as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS journal (
                ordering INTEGER PRIMARY KEY AUTOINCREMENT,
                persistence_id TEXT NOT NULL,
                sequence_number INTEGER NOT NULL,
                message BLOB
            )
        """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS legacy_snapshot (
                persistence_id TEXT NOT NULL,
                sequence_number INTEGER NOT NULL,
                created INTEGER NOT NULL,
                snapshot BLOB NOT NULL,
                snapshot_ser_id INTEGER,
                snapshot_ser_manifest TEXT
            )
        """
        )
        # Two journal events per id, so the enumeration has to de-duplicate.
        await conn.executemany(
            "INSERT INTO journal (persistence_id, sequence_number) VALUES (?, ?)",
            [(persistence_id, n) for persistence_id in journal_ids for n in (1, 2)],
        )
        await conn.executemany(
            "INSERT INTO legacy_snapshot (persistence_id, sequence_number, created, snapshot, "
            "snapshot_ser_id, snapshot_ser_manifest) VALUES (?, ?, ?, ?, ?, ?)",
            list(snapshots),
        )
        await conn.commit()


async def count_legacy(db_path) -> int:
    async with aiosqlite.connect(db_path) as conn:
        async with conn.execute("SELECT COUNT(*) FROM legacy_snapshot") as cursor:
            (total,) = await cursor.fetchone()
    return total


async def target_state(migrator):
    return [
        (s.metadata.persistence_id, s.metadata.sequence_number, s.payload)
        async for s in migrator.store.snapshots()
    ]


class StallingConnection:
    """
    Wraps a connection and blocks forever on the `stall_on`-th statement that
    starts with `prefix`, so a write can be cancelled in the middle of its
    transaction. Only `execute` is intercepted.
    """

    def __init__(self, conn, prefix, stall_on=1):
        self._conn = conn
        self._prefix = prefix
        self._remaining = stall_on
        self.stalled = asyncio.Event()

    def __getattr__(self, name):
        return getattr(self._conn, name)

    async def execute(self, sql, *args):
        if sql.lstrip().startswith(self._prefix):
            self._remaining -= 1
            if self._remaining == 0:
                self.stalled.set()
                await asyncio.Event().wait()
        return await self._conn.execute(sql, *args)
