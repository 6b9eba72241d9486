# src/storage/json_store.py — v1
"""JSON file-based state store (STORAGE_BACKEND=json, and the small tier).

One file per series under STORAGE_ROOT/states and STORAGE_ROOT/parts.
Writes go to a temporary file first and are then renamed into place.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, ValidationError

from partledger.core.errors import StorageError
from partledger.pipeline.state import PipelineSnapshot
from partledger.storage.base_state_store import BaseStateStore
from partledger.storage.models import StoredPartSet

logger = logging.getLogger(__name__)


class JsonStateStore(BaseStateStore):
    """File-based state store using JSON files."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._states = self._root / "states"
        self._parts = self._root / "parts"
        self._states.mkdir(parents=True, exist_ok=True)
        self._parts.mkdir(parents=True, exist_ok=True)

    @property
    def backend_name(self) -> str:
        return "json"

    async def save_parts(self, part_set: StoredPartSet) -> None:
        self._write(self._path(self._parts, part_set.series_id), part_set)

    async def load_parts(self, series_id: str) -> StoredPartSet | None:
        return self._read(self._path(self._parts, series_id), StoredPartSet)

    async def delete_parts(self, series_id: str) -> int:
        path = self._path(self._parts, series_id)
        existing = self._read(path, StoredPartSet)
        self._unlink(path)
        return len(existing.parts) if existing else 0

    async def save_state(self, snapshot: PipelineSnapshot) -> None:
        self._write(self._path(self._states, snapshot.series_id), snapshot)

    async def load_state(self, series_id: str) -> PipelineSnapshot | None:
        return self._read(self._path(self._states, series_id), PipelineSnapshot)

    async def delete_state(self, series_id: str) -> None:
        self._unlink(self._path(self._states, series_id))

    async def list_states(self) -> list[PipelineSnapshot]:
        return self._read_all(self._states, PipelineSnapshot)

    async def list_part_sets(self) -> list[StoredPartSet]:
        return self._read_all(self._parts, StoredPartSet)

    async def usage_bytes(self) -> int:
        return sum(
            p.stat().st_size
            for directory in (self._states, self._parts)
            for p in directory.glob("*.json")
        )

    # --- Helpers ---

    @staticmethod
    def _path(directory: Path, series_id: str) -> Path:
        safe_id = series_id.replace("/", "_").replace("\\", "_")
        return directory / f"{safe_id}.json"

    @staticmethod
    def _write(path: Path, model: BaseModel) -> None:
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(model.model_dump_json(), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path.name}: {e}") from e

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {path.name}: {e}") from e

    @staticmethod
    def _read(path: Path, model_cls: type[BaseModel]):
        if not path.exists():
            return None
        try:
            return model_cls.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, json.JSONDecodeError) as e:
            logger.warning("Failed to read %s: %s", path.name, e)
            return None

    def _read_all(self, directory: Path, model_cls: type[BaseModel]) -> list:
        items = []
        for path in sorted(directory.glob("*.json")):
            item = self._read(path, model_cls)
            if item is not None:
                items.append(item)
        return items
