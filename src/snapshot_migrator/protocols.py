"""
This module defines the abstract protocols the migration engine is written against.

The orchestrator only talks to these `Protocol`-based interfaces, so the SQLite
adaptors can be swapped for another database without touching the pipeline.
"""
from typing import Any, AsyncIterator, List, Protocol

from .models import LegacySnapshotRow, MigrationCursor, SnapshotMetadata, WritePolicy


class Serializer(Protocol):
    """A single payload encoding scheme, identified by a numeric id."""
    identifier: int

    def manifest(self, obj: Any) -> str:
        ...

    def to_binary(self, obj: Any) -> bytes:
        ...

    def from_binary(self, data: bytes, manifest: str | None) -> Any:
        ...


class EntityEnumerator(Protocol):
    def persistence_ids(self, limit: int) -> AsyncIterator[str]:
        ...


class LegacyReader(Protocol):
    async def latest_for(self, persistence_id: str) -> LegacySnapshotRow | None:
        ...

    def stream_all(self) -> AsyncIterator[LegacySnapshotRow]:
        ...

    async def read_page(
        self, after: MigrationCursor | None, limit: int
    ) -> List[LegacySnapshotRow]:
        ...


class SnapshotStore(Protocol):
    """The public write path of the target snapshot store."""

    async def save(
        self,
        metadata: SnapshotMetadata,
        payload: Any,
        *,
        policy: WritePolicy,
        serializer_id: int | None = None,
        manifest: str | None = None,
    ):
        ...


class ProgressStore(Protocol):
    async def load(self, run_name: str) -> MigrationCursor | None:
        ...

    async def save(self, cursor: MigrationCursor):
        ...

    async def reset(self, run_name: str):
        ...
