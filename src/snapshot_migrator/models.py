"""
This module defines the data models that flow through the migration pipeline
using Pydantic. Rows read from the legacy schema are immutable; reports and
cursors are produced by the engine itself.
"""
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class MigrationMode(str, Enum):
    LATEST = "latest"
    ALL = "all"
    PAGED = "paged"


class WritePolicy(str, Enum):
    REPLACE_ENTITY = "replace_entity"
    INSERT = "insert"
    REPLACE_SEQUENCE = "replace_sequence"


class MigrationState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LegacySnapshotRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    persistence_id: str
    sequence_number: int
    created: datetime
    snapshot: bytes
    serializer_id: Optional[int] = None
    serializer_manifest: Optional[str] = None
    # SQLite rowid, the stable identifier used for tie-breaks and paging.
    row_id: Optional[int] = None


class SnapshotMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    persistence_id: str
    sequence_number: int
    timestamp: datetime


class DecodedSnapshot(BaseModel):
    metadata: SnapshotMetadata
    payload: Any
    # The scheme the payload was decoded with, reused when it is re-encoded.
    serializer_id: int
    manifest: str = ""


class EncodedPayload(BaseModel):
    data: bytes
    serializer_id: int
    manifest: str = ""


class MigrationCursor(BaseModel):
    run_name: str
    persistence_id: Optional[str] = None
    sequence_number: Optional[int] = None
    row_id: Optional[int] = None
    completed: bool = False
    updated_at: Optional[datetime] = None


class MigrationReport(BaseModel):
    mode: MigrationMode
    state: MigrationState = MigrationState.IDLE
    migrated: int = 0
    skipped: int = 0
    pages: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
