# src/storage/models.py — v1
"""Storage domain models: stored part sets, quota reports, cleanup log."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class StoredPartSet(BaseModel):
    """Raw part texts kept so an interrupted series can resume without re-splitting."""

    series_id: str
    parts: list[str]
    title: str = "Untitled"
    source_url: str = ""
    author: str | None = None
    saved_at: datetime
    expires_at: datetime

    @property
    def total_bytes(self) -> int:
        return sum(len(p.encode("utf-8", "surrogatepass")) for p in self.parts)


class QuotaReport(BaseModel):
    """Storage usage against configured capacity."""

    used_bytes: int
    capacity_bytes: int
    usage_ratio: float
    level: Literal["ok", "warning", "critical"]


class CleanupStats(BaseModel):
    """What one cleanup pass removed."""

    parts_deleted: int = 0
    states_deleted: int = 0
    bytes_freed: int = 0
    emergency: bool = False


class CleanupLogEntry(BaseModel):
    timestamp: datetime
    stats: CleanupStats


class CleanupLog(BaseModel):
    entries: list[CleanupLogEntry] = Field(default_factory=list)
