import argparse
import asyncio
import os
import tempfile
import time

import aiosqlite

from snapshot_migrator import sqlite_migrator_factory

from main import CounterState, create_legacy_database


async def benchmark(num_counters: int, snapshots_per_counter: int, parallelism: int):
    total = num_counters * snapshots_per_counter
    print(f"Benchmarking migration of {total} snapshots (parallelism={parallelism})...")

    with tempfile.TemporaryDirectory() as tmpdir:
        source = os.path.join(tmpdir, "legacy.db")
        await create_legacy_database(source, num_counters, snapshots_per_counter)

        async def run_mode(mode: str) -> float:
            target = os.path.join(tmpdir, f"target-{mode}.db")
            config = {
                "source": {"db_path": source, "pool_size": parallelism + 1},
                "target": {"db_path": target},
                "parallelism": parallelism,
            }
            async with sqlite_migrator_factory(config, models={"counter": CounterState}) as migrator:
                start = time.perf_counter()
                report = await migrator.run(mode)
                elapsed = time.perf_counter() - start
            print(f"{mode:>6}: {report.migrated} snapshots in {elapsed:.4f}s ({report.migrated / elapsed:,.0f} snapshots/s)")
            return elapsed

        for mode in ("latest", "all", "paged"):
            await run_mode(mode)

        async with aiosqlite.connect(source) as conn:
            async with conn.execute("SELECT COUNT(*) FROM legacy_snapshot") as cursor:
                (remaining,) = await cursor.fetchone()
        assert remaining == total


async def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--counters", type=int, default=200)
    parser.add_argument("--snapshots-per-counter", type=int, default=10)
    parser.add_argument("--parallelism", type=int, default=1)
    args = parser.parse_args()
    await benchmark(args.counters, args.snapshots_per_counter, args.parallelism)


if __name__ == "__main__":
    asyncio.run(main())
