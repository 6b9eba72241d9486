# src/storage/sqlite_store.py — v1
"""SQLite-based state store (STORAGE_BACKEND=sqlite, and the large tier).

Uses stdlib sqlite3; suited to large part sets and many series.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from partledger.core.errors import StorageError
from partledger.pipeline.state import PipelineSnapshot
from partledger.storage.base_state_store import BaseStateStore
from partledger.storage.models import StoredPartSet

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pipeline_states (
    series_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    status TEXT NOT NULL,
    saved_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_states_status ON pipeline_states(status);
CREATE TABLE IF NOT EXISTS part_sets (
    series_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    part_count INTEGER NOT NULL,
    expires_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_parts_expires ON part_sets(expires_at);
"""


class SqliteStateStore(BaseStateStore):
    """SQLite-backed state store."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    @property
    def backend_name(self) -> str:
        return "sqlite"

    async def save_parts(self, part_set: StoredPartSet) -> None:
        self._execute(
            """INSERT OR REPLACE INTO part_sets
               (series_id, data, part_count, expires_at) VALUES (?, ?, ?, ?)""",
            (
                part_set.series_id,
                part_set.model_dump_json(),
                len(part_set.parts),
                part_set.expires_at.isoformat(),
            ),
        )

    async def load_parts(self, series_id: str) -> StoredPartSet | None:
        row = self._conn.execute(
            "SELECT data FROM part_sets WHERE series_id = ?", (series_id,)
        ).fetchone()
        return self._decode(row, StoredPartSet, series_id)

    async def delete_parts(self, series_id: str) -> int:
        row = self._conn.execute(
            "SELECT part_count FROM part_sets WHERE series_id = ?", (series_id,)
        ).fetchone()
        self._execute("DELETE FROM part_sets WHERE series_id = ?", (series_id,))
        return row[0] if row else 0

    async def save_state(self, snapshot: PipelineSnapshot) -> None:
        self._execute(
            """INSERT OR REPLACE INTO pipeline_states
               (series_id, data, status, saved_at) VALUES (?, ?, ?, ?)""",
            (
                snapshot.series_id,
                snapshot.model_dump_json(),
                snapshot.status,
                snapshot.saved_at.isoformat(),
            ),
        )

    async def load_state(self, series_id: str) -> PipelineSnapshot | None:
        row = self._conn.execute(
            "SELECT data FROM pipeline_states WHERE series_id = ?", (series_id,)
        ).fetchone()
        return self._decode(row, PipelineSnapshot, series_id)

    async def delete_state(self, series_id: str) -> None:
        self._execute("DELETE FROM pipeline_states WHERE series_id = ?", (series_id,))

    async def list_states(self) -> list[PipelineSnapshot]:
        rows = self._conn.execute(
            "SELECT data, series_id FROM pipeline_states ORDER BY saved_at"
        ).fetchall()
        return [
            s for s in (self._decode(r, PipelineSnapshot, r[1]) for r in rows) if s
        ]

    async def list_part_sets(self) -> list[StoredPartSet]:
        rows = self._conn.execute(
            "SELECT data, series_id FROM part_sets ORDER BY expires_at"
        ).fetchall()
        return [s for s in (self._decode(r, StoredPartSet, r[1]) for r in rows) if s]

    async def usage_bytes(self) -> int:
        row = self._conn.execute(
            "SELECT COALESCE((SELECT SUM(LENGTH(CAST(data AS BLOB))) FROM pipeline_states), 0)"
            " + COALESCE((SELECT SUM(LENGTH(CAST(data AS BLOB))) FROM part_sets), 0)"
        ).fetchone()
        return int(row[0])

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- Helpers ---

    def _execute(self, sql: str, params: tuple) -> None:
        try:
            self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"SQLite write failed: {e}") from e

    @staticmethod
    def _decode(row, model_cls, series_id: str):
        if row is None:
            return None
        try:
            return model_cls.model_validate_json(row[0])
        except ValidationError as e:
            logger.warning("Failed to deserialize %s for %s: %s", model_cls.__name__, series_id, e)
            return None
