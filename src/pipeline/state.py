# src/pipeline/state.py — v1
"""Immutable posting pipeline state and its persisted snapshot.

PipelineState is never mutated in place: transitions return a new value
via ``model_copy(update=...)``. PipelineSnapshot is what the state store
writes, one per series.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from partledger.core.models import ErrorLogEntry, SeriesManifest
from partledger.manifest.migration import load_manifest

PipelineStatus = Literal["in_progress", "paused", "completed", "failed", "cancelled"]
STATE_VERSION = 1
INCOMPLETE_STATUSES: tuple[PipelineStatus, ...] = ("in_progress", "paused", "failed")


class PipelineState(BaseModel):
    """Progress pointer, retry counters and flags for one series."""

    model_config = ConfigDict(frozen=True)

    # === IDENTITY ===
    series_id: str
    total_parts: int = Field(ge=1)

    # === PROGRESS ===
    current_part: int = Field(default=1, ge=1)
    attempts: dict[int, int] = Field(default_factory=dict)
    root_locator: str | None = None

    # === FLAGS ===
    cancelled: bool = False
    paused: bool = False
    failed: bool = False

    # === ERROR LOG ===
    errors: tuple[ErrorLogEntry, ...] = ()

    # === OWNERSHIP ===
    active_owner: str | None = None
    heartbeat_at: datetime | None = None

    @property
    def status(self) -> PipelineStatus:
        if self.cancelled:
            return "cancelled"
        if self.paused:
            return "paused"
        if self.current_part > self.total_parts:
            return "completed"
        if self.failed:
            return "failed"
        return "in_progress"

    @property
    def can_resume(self) -> bool:
        return self.status in ("paused", "cancelled", "in_progress")

    def attempt_for(self, part_number: int) -> int:
        return self.attempts.get(part_number, 0)

    def is_locked_by_other(
        self, owner: str, now: datetime, expiry_s: float
    ) -> bool:
        """True when a different owner heartbeated within the lock expiry."""
        if self.active_owner is None or self.active_owner == owner:
            return False
        if self.heartbeat_at is None:
            return False
        return (now - self.heartbeat_at).total_seconds() < expiry_s


class PipelineSnapshot(BaseModel):
    """Persisted record of a pipeline: state plus the manifest it drives."""

    state_version: int = STATE_VERSION
    series_id: str
    author: str
    manifest: SeriesManifest
    state: PipelineState
    status: PipelineStatus
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("manifest", mode="before")
    @classmethod
    def upgrade_manifest(cls, value: Any) -> Any:  # noqa: N805
        # Snapshots written before the current manifest shape are upgraded here.
        if isinstance(value, dict):
            return load_manifest(value)
        return value

    @classmethod
    def capture(
        cls,
        state: PipelineState,
        manifest: SeriesManifest,
        author: str,
        saved_at: datetime | None = None,
    ) -> PipelineSnapshot:
        extra: dict[str, Any] = {} if saved_at is None else {"saved_at": saved_at}
        return cls(
            series_id=state.series_id,
            author=author,
            manifest=manifest,
            state=state,
            status=state.status,
            **extra,
        )
