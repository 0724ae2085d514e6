import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from .adaptors.sqlite import sqlite_migrator_factory
from .config import MigratorConfig
from .errors import MigrationError
from .models import MigrationMode


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapshot_migrator",
        description="Migrate legacy snapshot rows into the new snapshot schema.",
    )
    parser.add_argument("--source", required=True, help="Path to the legacy SQLite database")
    parser.add_argument("--target", required=True, help="Path to the target SQLite database")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in MigrationMode],
        default=MigrationMode.LATEST.value,
    )
    parser.add_argument("--parallelism", type=int, default=1)
    parser.add_argument("--page-size", type=int, default=1000)
    parser.add_argument("--run-name", default="default", help="Cursor name for paged runs")
    parser.add_argument("--reset", action="store_true", help="Restart a paged run from the beginning")
    parser.add_argument("--full-history-overwrite", action="store_true")
    parser.add_argument("--journal-table", default="journal")
    parser.add_argument("--legacy-snapshot-table", default="legacy_snapshot")
    parser.add_argument("--snapshot-table", default="snapshot")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def config_from_args(args: argparse.Namespace) -> MigratorConfig:
    return MigratorConfig.model_validate(
        {
            "source": {
                "db_path": args.source,
                "pool_size": args.parallelism + 1,
                "journal_table": args.journal_table,
                "legacy_snapshot_table": args.legacy_snapshot_table,
            },
            "target": {"db_path": args.target, "snapshot_table": args.snapshot_table},
            "parallelism": args.parallelism,
            "page_size": args.page_size,
            "full_history_overwrite": args.full_history_overwrite,
        }
    )


async def run(args: argparse.Namespace) -> int:
    try:
        config = config_from_args(args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1
    try:
        async with sqlite_migrator_factory(config) as migrator:
            if args.mode == MigrationMode.PAGED.value:
                report = await migrator.migrate_paged(args.run_name, reset=args.reset)
            else:
                report = await migrator.run(args.mode)
    except MigrationError as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        return 1
    print(report.model_dump_json(indent=2))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
