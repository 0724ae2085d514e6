from typing import Any

from .models import SnapshotMetadata, WritePolicy
from .protocols import SnapshotStore


class TargetWriter:
    """
    Persists decoded snapshots through the target store's write path.

    The policy fixes the key a run writes under: the persistence id alone for
    latest-only migration, or (persistence id, sequence number) for full history.
    Every call is its own transaction.
    """

    def __init__(self, store: SnapshotStore, policy: WritePolicy):
        self.store = store
        self.policy = policy

    async def save(
        self,
        metadata: SnapshotMetadata,
        payload: Any,
        serializer_id: int | None = None,
        manifest: str | None = None,
    ):
        await self.store.save(
            metadata,
            payload,
            policy=self.policy,
            serializer_id=serializer_id,
            manifest=manifest,
        )
