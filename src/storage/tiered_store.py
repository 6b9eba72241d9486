# src/storage/tiered_store.py — v1
"""Two-tier state store: small payloads in JSON files, large ones in SQLite.

Callers see one store. Each record lives in exactly one tier, chosen by the
size of its serialized payload at write time.
"""

from __future__ import annotations

import logging

from partledger.pipeline.state import PipelineSnapshot
from partledger.storage.base_state_store import BaseStateStore
from partledger.storage.json_store import JsonStateStore
from partledger.storage.models import StoredPartSet
from partledger.storage.sqlite_store import SqliteStateStore

logger = logging.getLogger(__name__)


class TieredStateStore(BaseStateStore):
    """Route each record to the fast or the durable tier by payload size."""

    def __init__(
        self,
        small: BaseStateStore,
        large: BaseStateStore,
        threshold_bytes: int = 64 * 1024,
    ) -> None:
        self._small = small
        self._large = large
        self._threshold = threshold_bytes

    @property
    def backend_name(self) -> str:
        return "tiered"

    def _tiers_for(self, payload_size: int) -> tuple[BaseStateStore, BaseStateStore]:
        """(target, other) for a payload of the given size."""
        if payload_size > self._threshold:
            return self._large, self._small
        return self._small, self._large

    async def save_parts(self, part_set: StoredPartSet) -> None:
        size = len(part_set.model_dump_json().encode("utf-8"))
        target, other = self._tiers_for(size)
        await target.save_parts(part_set)
        await other.delete_parts(part_set.series_id)
        logger.debug(
            "Stored %d parts for %s in %s tier (%d bytes)",
            len(part_set.parts), part_set.series_id, target.backend_name, size,
        )

    async def load_parts(self, series_id: str) -> StoredPartSet | None:
        return await self._small.load_parts(series_id) or await self._large.load_parts(
            series_id
        )

    async def delete_parts(self, series_id: str) -> int:
        return await self._small.delete_parts(series_id) + await self._large.delete_parts(
            series_id
        )

    async def save_state(self, snapshot: PipelineSnapshot) -> None:
        size = len(snapshot.model_dump_json().encode("utf-8"))
        target, other = self._tiers_for(size)
        await target.save_state(snapshot)
        await other.delete_state(snapshot.series_id)

    async def load_state(self, series_id: str) -> PipelineSnapshot | None:
        return await self._small.load_state(series_id) or await self._large.load_state(
            series_id
        )

    async def delete_state(self, series_id: str) -> None:
        await self._small.delete_state(series_id)
        await self._large.delete_state(series_id)

    async def list_states(self) -> list[PipelineSnapshot]:
        return await self._small.list_states() + await self._large.list_states()

    async def list_part_sets(self) -> list[StoredPartSet]:
        return await self._small.list_part_sets() + await self._large.list_part_sets()

    async def usage_bytes(self) -> int:
        return await self._small.usage_bytes() + await self._large.usage_bytes()

    def close(self) -> None:
        self._small.close()
        self._large.close()


def create_tiered_store(root: str, threshold_bytes: int = 64 * 1024) -> TieredStateStore:
    """JSON tier under root, SQLite tier at root/partledger_state.db."""
    return TieredStateStore(
        small=JsonStateStore(root),
        large=SqliteStateStore(f"{root}/partledger_state.db"),
        threshold_bytes=threshold_bytes,
    )
