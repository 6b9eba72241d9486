# src/storage/base_state_store.py — v1
"""Abstract durable store for pipeline snapshots and raw part sets."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from partledger.pipeline.state import INCOMPLETE_STATUSES, PipelineSnapshot
from partledger.storage.models import StoredPartSet


class BaseStateStore(ABC):
    """Unified interface for state storage backends.

    Write failures raise StorageError; callers must not assume a snapshot
    was persisted unless save_state returned normally.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier (e.g., 'json', 'sqlite', 'tiered')."""

    # --- Part sets ---

    @abstractmethod
    async def save_parts(self, part_set: StoredPartSet) -> None:
        """Store (or replace) the raw parts of a series."""

    @abstractmethod
    async def load_parts(self, series_id: str) -> StoredPartSet | None:
        """Load the raw parts of a series."""

    @abstractmethod
    async def delete_parts(self, series_id: str) -> int:
        """Delete stored parts; returns the number of parts removed."""

    # --- Snapshots ---

    @abstractmethod
    async def save_state(self, snapshot: PipelineSnapshot) -> None:
        """Store (or replace) the snapshot of a series."""

    @abstractmethod
    async def load_state(self, series_id: str) -> PipelineSnapshot | None:
        """Load the snapshot of a series."""

    @abstractmethod
    async def delete_state(self, series_id: str) -> None:
        """Remove the snapshot of a series."""

    @abstractmethod
    async def list_states(self) -> list[PipelineSnapshot]:
        """All stored snapshots."""

    @abstractmethod
    async def list_part_sets(self) -> list[StoredPartSet]:
        """All stored part sets."""

    @abstractmethod
    async def usage_bytes(self) -> int:
        """Bytes currently used by the backend."""

    # --- Derived operations ---

    async def list_incomplete(self) -> list[PipelineSnapshot]:
        """Snapshots still worth resuming or inspecting."""
        return [s for s in await self.list_states() if s.status in INCOMPLETE_STATUSES]

    async def delete_expired_parts(self, now: datetime) -> tuple[int, int]:
        """Delete part sets past their expiry; returns (parts, bytes) removed."""
        removed = 0
        freed = 0
        for part_set in await self.list_part_sets():
            if part_set.expires_at <= now:
                freed += part_set.total_bytes
                removed += await self.delete_parts(part_set.series_id)
        return removed, freed

    def close(self) -> None:
        """Release backend resources."""
