# src/storage/retention.py — v1
"""Retention policy and storage-pressure cleanup for the state store.

Stored part sets carry their own expiry (set at save time from
RETENTION_INCOMPLETE_DAYS). Snapshots are aged from ``saved_at``:
completed after RETENTION_COMPLETED_DAYS, failed after
RETENTION_FAILED_DAYS, everything else after RETENTION_INCOMPLETE_DAYS.
An emergency pass additionally drops in-progress and paused snapshots
older than EMERGENCY_INCOMPLETE_DAYS.

Every pass is appended to a cleanup log persisted as JSON next to the
store (``cleanup_log.json``).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from partledger.config.settings import Settings
from partledger.pipeline.state import PipelineSnapshot
from partledger.storage.base_state_store import BaseStateStore
from partledger.storage.models import (
    CleanupLog,
    CleanupLogEntry,
    CleanupStats,
    QuotaReport,
)

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 200


def load_cleanup_log(path: Path) -> CleanupLog:
    """Load the cleanup log; a missing or unreadable file yields an empty log."""
    if not path.exists():
        return CleanupLog()
    try:
        return CleanupLog(**json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Failed to load cleanup log from %s: %s", path, e)
        return CleanupLog()


def save_cleanup_log(log: CleanupLog, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(log.model_dump_json(indent=2), encoding="utf-8")


def part_set_expiry(settings: Settings, saved_at: datetime) -> datetime:
    """Expiry stamped on a part set saved at ``saved_at``."""
    return saved_at + timedelta(days=settings.retention_incomplete_days)


class RetentionManager:
    """Apply retention rules and quota checks to one state store."""

    def __init__(
        self,
        store: BaseStateStore,
        settings: Settings,
        log_path: Path | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._log_path = log_path

    # === QUOTA ===

    async def check_quota(self, now: datetime | None = None) -> QuotaReport:
        """Measure usage; at the critical ratio, run an emergency cleanup."""
        used = await self._store.usage_bytes()
        capacity = self._settings.storage_capacity_bytes
        ratio = used / capacity if capacity > 0 else 1.0

        if ratio >= self._settings.quota_critical_ratio:
            level = "critical"
            logger.warning(
                "Critical storage usage %.1f%% (%d/%d bytes), running emergency cleanup",
                ratio * 100, used, capacity,
            )
            await self.cleanup_expired(emergency=True, now=now)
        elif ratio >= self._settings.quota_warning_ratio:
            level = "warning"
            logger.warning(
                "High storage usage %.1f%% (%d/%d bytes)", ratio * 100, used, capacity
            )
        else:
            level = "ok"
            logger.debug("Storage usage %.1f%%", ratio * 100)

        return QuotaReport(
            used_bytes=used,
            capacity_bytes=capacity,
            usage_ratio=ratio,
            level=level,
        )

    # === CLEANUP ===

    def is_expired(
        self, snapshot: PipelineSnapshot, now: datetime, emergency: bool = False
    ) -> bool:
        """Whether a snapshot is past its retention window."""
        age_days = (now - snapshot.saved_at).total_seconds() / 86400
        status = snapshot.status
        if status == "completed":
            return age_days > self._settings.retention_completed_days
        if status == "failed":
            return age_days > self._settings.retention_failed_days
        if emergency and status in ("in_progress", "paused"):
            return age_days > self._settings.emergency_incomplete_days
        return age_days > self._settings.retention_incomplete_days

    async def cleanup_expired(
        self, emergency: bool = False, now: datetime | None = None
    ) -> CleanupStats:
        """Delete expired part sets and snapshots.

        Args:
            emergency: Also drop in-progress/paused snapshots past the
                emergency age.
            now: Reference time (defaults to current UTC time).

        Returns:
            CleanupStats for this pass.
        """
        now = now or datetime.now(timezone.utc)
        logger.info("Starting %s cleanup", "emergency" if emergency else "routine")

        parts_deleted, bytes_freed = await self._store.delete_expired_parts(now)

        states_deleted = 0
        for snapshot in await self._store.list_states():
            if self.is_expired(snapshot, now, emergency):
                await self._store.delete_state(snapshot.series_id)
                states_deleted += 1

        stats = CleanupStats(
            parts_deleted=parts_deleted,
            states_deleted=states_deleted,
            bytes_freed=bytes_freed,
            emergency=emergency,
        )
        self._record(stats, now)
        logger.info(
            "Cleanup complete: %d parts, %d states deleted, %d bytes freed",
            parts_deleted, states_deleted, bytes_freed,
        )
        return stats

    def cleanup_history(self) -> CleanupLog:
        if self._log_path is None:
            return CleanupLog()
        return load_cleanup_log(self._log_path)

    def _record(self, stats: CleanupStats, now: datetime) -> None:
        if self._log_path is None:
            return
        log = load_cleanup_log(self._log_path)
        log.entries.append(CleanupLogEntry(timestamp=now, stats=stats))
        log.entries = log.entries[-MAX_LOG_ENTRIES:]
        save_cleanup_log(log, self._log_path)
