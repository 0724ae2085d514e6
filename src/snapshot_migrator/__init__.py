# snapshot_migrator package

from .codec import SerializerRegistry, SnapshotCodec, default_registry, pack_envelope
from .config import MigratorConfig, SourceConfig, TargetConfig
from .errors import (
    DeserializationError,
    MigrationError,
    QueryError,
    SerializationError,
    StorageConnectionError,
    StorageError,
    WriteError,
)
from .migrator import SnapshotMigrator
from .models import (
    DecodedSnapshot,
    LegacySnapshotRow,
    MigrationMode,
    MigrationReport,
    MigrationState,
    SnapshotMetadata,
)
from .adaptors.sqlite import sqlite_migrator_factory

__all__ = [
    "SerializerRegistry",
    "SnapshotCodec",
    "default_registry",
    "pack_envelope",
    "MigratorConfig",
    "SourceConfig",
    "TargetConfig",
    "DeserializationError",
    "MigrationError",
    "QueryError",
    "SerializationError",
    "StorageConnectionError",
    "StorageError",
    "WriteError",
    "SnapshotMigrator",
    "DecodedSnapshot",
    "LegacySnapshotRow",
    "MigrationMode",
    "MigrationReport",
    "MigrationState",
    "SnapshotMetadata",
    "sqlite_migrator_factory",
]
