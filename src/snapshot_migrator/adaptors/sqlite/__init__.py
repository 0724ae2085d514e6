from .factory import sqlite_migrator_factory
from .legacy import SQLiteJournalEnumerator, SQLiteLegacyReader
from .progress import SQLiteProgressStore
from .snapshot_store import SQLiteSnapshotStore

__all__ = [
    "sqlite_migrator_factory",
    "SQLiteJournalEnumerator",
    "SQLiteLegacyReader",
    "SQLiteProgressStore",
    "SQLiteSnapshotStore",
]
