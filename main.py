import asyncio
import json
import os
import tempfile
import time

import aiosqlite
from pydantic import BaseModel

from snapshot_migrator import pack_envelope, sqlite_migrator_factory
from snapshot_migrator.codec import MODEL_SERIALIZER_ID


class CounterState(BaseModel):
    count: int = 0


async def create_legacy_database(db_path: str, num_counters: int, snapshots_per_counter: int):
    """Writes a journal and a legacy snapshot table the way the old store laid them out."""
    async with aiosqlite.connect(db_path) as conn:
        await conn.execute("CREATE TABLE journal (persistence_id TEXT NOT NULL, sequence_number INTEGER NOT NULL)")
        await conn.execute(
            """
            CREATE TABLE legacy_snapshot (
                persistence_id TEXT NOT NULL,
                sequence_number INTEGER NOT NULL,
                created INTEGER NOT NULL,
                snapshot BLOB NOT NULL,
                snapshot_ser_id INTEGER,
                snapshot_ser_manifest TEXT
            )
        """
        )
        now = int(time.time() * 1000)
        for i in range(num_counters):
            persistence_id = f"counter-{i}"
            await conn.execute("INSERT INTO journal VALUES (?, ?)", (persistence_id, 1))
            for n in range(1, snapshots_per_counter + 1):
                state = CounterState(count=n * 10).model_dump_json().encode("utf-8")
                await conn.execute(
                    "INSERT INTO legacy_snapshot VALUES (?, ?, ?, ?, NULL, NULL)",
                    (persistence_id, n * 10, now, pack_envelope(MODEL_SERIALIZER_ID, "counter", state)),
                )
        # An entity that never took a snapshot.
        await conn.execute("INSERT INTO journal VALUES (?, ?)", ("counter-idle", 1))
        await conn.commit()


async def main():
    with tempfile.TemporaryDirectory() as tmpdir:
        source = os.path.join(tmpdir, "legacy.db")
        target = os.path.join(tmpdir, "target.db")
        await create_legacy_database(source, num_counters=3, snapshots_per_counter=4)

        config = {"source": {"db_path": source}, "target": {"db_path": target}}
        async with sqlite_migrator_factory(config, models={"counter": CounterState}) as migrator:
            report = await migrator.migrate_latest()
            print(json.dumps(report.model_dump(mode="json"), indent=2))

            async for snapshot in migrator.store.snapshots():
                print(
                    f"{snapshot.metadata.persistence_id} @ {snapshot.metadata.sequence_number}: "
                    f"count={snapshot.payload.count}"
                )


if __name__ == "__main__":
    asyncio.run(main())
