import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Mapping, Type

from pydantic import BaseModel

from ...codec import SerializerRegistry, SnapshotCodec, default_registry
from ...config import MigratorConfig
from ...migrator import SnapshotMigrator
from .legacy import SQLiteJournalEnumerator, SQLiteLegacyReader
from .pool import ReadPool, open_write_connection
from .progress import SQLiteProgressStore
from .snapshot_store import SQLiteSnapshotStore


@asynccontextmanager
async def sqlite_migrator_factory(
    config: MigratorConfig | Dict,
    *,
    registry: SerializerRegistry | None = None,
    models: Mapping[str, Type[BaseModel]] | None = None,
) -> AsyncIterator[SnapshotMigrator]:
    """
    Opens the source pool and the target connection described by `config`,
    wires the migration components together and yields a `SnapshotMigrator`.
    All connections are closed when the context exits.

    Pass a custom `registry` to decode application-specific payloads, or just
    `models` to register pydantic snapshot classes with the default one.
    """
    if not isinstance(config, MigratorConfig):
        config = MigratorConfig.model_validate(config)
    if registry is None:
        registry = default_registry(models)
    codec = SnapshotCodec(registry)

    source_pool = await ReadPool(config.source).open()
    try:
        target_conn = await open_write_connection(config.target)
    except BaseException:
        await source_pool.close()
        raise

    try:
        write_lock = asyncio.Lock()
        store = SQLiteSnapshotStore(target_conn, write_lock, codec, config.target)
        progress = SQLiteProgressStore(target_conn, write_lock, config.target)
        if config.target.create_schema:
            await store.create_schema()
            await progress.create_schema()

        migrator = SnapshotMigrator(
            config,
            enumerator=SQLiteJournalEnumerator(source_pool, config.source),
            reader=SQLiteLegacyReader(source_pool, config.source),
            codec=codec,
            store=store,
            progress=progress,
        )
        logging.info(f"Migrating snapshots from {config.source.db_path} to {config.target.db_path}")
        yield migrator
    finally:
        await asyncio.gather(source_pool.close(), target_conn.close())
