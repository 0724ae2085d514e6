"""
This module implements the migration orchestrator.

`SnapshotMigrator` drives one of three pipelines through the codec and the
target writer:

* `migrate_latest` enumerates persistence ids from the journal and moves the
  newest legacy snapshot of each one, overwriting by persistence id.
* `migrate_all` scans the whole legacy table and moves every row.
* `migrate_paged` does the same scan page by page and records a cursor after
  every page, so an interrupted run resumes where it stopped.

Rows are pulled from the source on demand. With the default parallelism of 1
each item is read, decoded and written before the next one is pulled. Higher
parallelism keeps up to that many items in flight, but never two snapshots of
the same entity at once. The first error aborts the run; rows that were already
written stay in the target.
"""
import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Set

from .codec import SnapshotCodec
from .config import MigratorConfig
from .errors import MigrationError
from .models import (
    LegacySnapshotRow,
    MigrationCursor,
    MigrationMode,
    MigrationReport,
    MigrationState,
    WritePolicy,
)
from .protocols import EntityEnumerator, LegacyReader, ProgressStore, SnapshotStore
from .writer import TargetWriter


async def _iterate(rows: List[LegacySnapshotRow]) -> AsyncIterator[LegacySnapshotRow]:
    for row in rows:
        yield row


def _entity_of(row: LegacySnapshotRow) -> str:
    return row.persistence_id


def _raise_first_error(tasks: Iterable[asyncio.Task]):
    # Retrieve every exception so none is reported as "never retrieved".
    errors = [task.exception() for task in tasks if not task.cancelled()]
    errors = [error for error in errors if error is not None]
    if errors:
        raise errors[0]


class SnapshotMigrator:
    def __init__(
        self,
        config: MigratorConfig,
        *,
        enumerator: EntityEnumerator,
        reader: LegacyReader,
        codec: SnapshotCodec,
        store: SnapshotStore,
        progress: ProgressStore | None = None,
    ):
        self.config = config
        self.enumerator = enumerator
        self.reader = reader
        self.codec = codec
        self.store = store
        self.progress = progress
        self.state = MigrationState.IDLE
        self.last_report: MigrationReport | None = None

    @asynccontextmanager
    async def _run(self, mode: MigrationMode) -> AsyncIterator[MigrationReport]:
        """Tracks one run through RUNNING to COMPLETED or FAILED."""
        if self.state == MigrationState.RUNNING:
            raise MigrationError("A migration is already running on this migrator")
        report = MigrationReport(
            mode=mode,
            state=MigrationState.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        self.state = MigrationState.RUNNING
        self.last_report = report
        logging.info(f"Starting {mode.value} snapshot migration")
        try:
            yield report
        except BaseException as e:
            report.state = MigrationState.FAILED
            report.error = f"{type(e).__name__}: {e}"
            report.finished_at = datetime.now(timezone.utc)
            self.state = MigrationState.FAILED
            logging.error(
                f"{mode.value} snapshot migration failed after {report.migrated} snapshots: {report.error}"
            )
            raise
        report.state = MigrationState.COMPLETED
        report.finished_at = datetime.now(timezone.utc)
        self.state = MigrationState.COMPLETED
        logging.info(
            f"{mode.value} snapshot migration completed: {report.migrated} migrated, "
            f"{report.skipped} skipped in {report.duration:.3f}s"
        )

    async def _migrate_row(self, row: LegacySnapshotRow, writer: TargetWriter, report: MigrationReport):
        snapshot = self.codec.decode(row)
        logging.debug(f"Migrating snapshot for {snapshot.metadata}")
        await writer.save(
            snapshot.metadata,
            snapshot.payload,
            serializer_id=snapshot.serializer_id,
            manifest=snapshot.manifest,
        )
        report.migrated += 1

    async def _pump(
        self,
        items: AsyncIterator[Any],
        handle: Callable[[Any], Awaitable[None]],
        key: Callable[[Any], str],
    ):
        # aclosing closes the source cursor even when the run fails or is cancelled.
        async with aclosing(items) as source:
            if self.config.parallelism == 1:
                async for item in source:
                    await handle(item)
                return
            await self._pump_concurrently(source, handle, key)

    async def _pump_concurrently(
        self,
        source: AsyncIterator[Any],
        handle: Callable[[Any], Awaitable[None]],
        key: Callable[[Any], str],
    ):
        limit = self.config.parallelism
        pending: Set[asyncio.Task] = set()
        in_flight: Dict[str, asyncio.Task] = {}

        def forget(task: asyncio.Task, item_key: str):
            if in_flight.get(item_key) is task:
                del in_flight[item_key]

        try:
            async for item in source:
                while len(pending) >= limit:
                    done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                    _raise_first_error(done)
                item_key = key(item)
                previous = in_flight.get(item_key)
                if previous is not None:
                    # One snapshot per entity in flight, in scan order.
                    await previous
                task = asyncio.create_task(handle(item))
                task.add_done_callback(lambda t, k=item_key: forget(t, k))
                in_flight[item_key] = task
                pending.add(task)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                _raise_first_error(done)
        finally:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def migrate_latest(self) -> MigrationReport:
        """
        Moves the newest snapshot of every persistence id found in the journal.

        Ids without any legacy snapshot are skipped. Target rows are keyed by
        persistence id alone, so running this twice leaves the same state.
        """
        writer = TargetWriter(self.store, WritePolicy.REPLACE_ENTITY)
        async with self._run(MigrationMode.LATEST) as report:

            async def migrate_entity(persistence_id: str):
                row = await self.reader.latest_for(persistence_id)
                if row is None:
                    logging.debug(f"No snapshot stored for {persistence_id}, skipping")
                    report.skipped += 1
                    return
                await self._migrate_row(row, writer, report)

            await self._pump(
                self.enumerator.persistence_ids(self.config.enumerate_limit),
                migrate_entity,
                key=lambda persistence_id: persistence_id,
            )
            if report.skipped:
                logging.warning(f"{report.skipped} persistence ids had no snapshot to migrate")
        return report

    async def migrate_all(self) -> MigrationReport:
        """
        Moves every legacy snapshot, ordered by persistence id and sequence number.

        Writes are strict inserts unless `full_history_overwrite` is set, so a
        second run against a populated target fails on the first duplicate.
        """
        policy = WritePolicy.REPLACE_SEQUENCE if self.config.full_history_overwrite else WritePolicy.INSERT
        writer = TargetWriter(self.store, policy)
        async with self._run(MigrationMode.ALL) as report:
            await self._pump(
                self.reader.stream_all(),
                lambda row: self._migrate_row(row, writer, report),
                key=_entity_of,
            )
        return report

    async def migrate_paged(self, run_name: str = "default", *, reset: bool = False) -> MigrationReport:
        """
        Moves every legacy snapshot one page at a time, persisting a cursor
        after each page.

        Re-running a failed or interrupted run resumes after the last saved
        cursor; the partially written page is rewritten, which is safe because
        paged writes upsert by (persistence id, sequence number). A completed
        run does nothing unless `reset` is given.
        """
        if self.progress is None:
            raise MigrationError("Paged migration requires a progress store")
        writer = TargetWriter(self.store, WritePolicy.REPLACE_SEQUENCE)
        async with self._run(MigrationMode.PAGED) as report:
            if reset:
                await self.progress.reset(run_name)
            cursor = await self.progress.load(run_name)
            if cursor is not None and cursor.completed:
                logging.info(f"Paged migration '{run_name}' already completed, nothing to do")
                return report
            if cursor is not None and cursor.persistence_id is not None:
                logging.info(
                    f"Resuming paged migration '{run_name}' after "
                    f"{cursor.persistence_id}@{cursor.sequence_number}"
                )

            page_size = self.config.page_size
            while True:
                page = await self.reader.read_page(cursor, page_size)
                if not page:
                    break
                await self._pump(
                    _iterate(page),
                    lambda row: self._migrate_row(row, writer, report),
                    key=_entity_of,
                )
                last = page[-1]
                cursor = MigrationCursor(
                    run_name=run_name,
                    persistence_id=last.persistence_id,
                    sequence_number=last.sequence_number,
                    row_id=last.row_id,
                )
                await self.progress.save(cursor)
                report.pages += 1
                logging.info(
                    f"Paged migration '{run_name}': page {report.pages} done, "
                    f"{report.migrated} snapshots migrated"
                )
                if len(page) < page_size:
                    break

            finished = cursor or MigrationCursor(run_name=run_name)
            await self.progress.save(finished.model_copy(update={"completed": True}))
        return report

    async def run(self, mode: MigrationMode | str, **kwargs) -> MigrationReport:
        mode = MigrationMode(mode)
        if mode == MigrationMode.LATEST:
            return await self.migrate_latest()
        if mode == MigrationMode.ALL:
            return await self.migrate_all()
        return await self.migrate_paged(**kwargs)
