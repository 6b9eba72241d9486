# src/api/models.py — v1
"""API-level models: PreparedSeries, SeriesRunResult."""

from __future__ import annotations

from pydantic import BaseModel, Field

from partledger.core.models import ContentPart, SeriesManifest, VerificationReport
from partledger.pipeline.posting_pipeline import PipelineStatusReport
from partledger.pipeline.state import PipelineStatus


class PreparedSeries(BaseModel):
    """Split, hashed and manifested content, ready to publish."""

    manifest: SeriesManifest
    parts: list[ContentPart]
    warnings: list[str] = Field(default_factory=list)

    @property
    def series_id(self) -> str:
        return self.manifest.series_id

    @property
    def texts(self) -> list[str]:
        return [p.content for p in self.parts]


class SeriesRunResult(BaseModel):
    """Return value of facade.publish_series() and facade.resume_series()."""

    series_id: str
    outcome: PipelineStatus
    report: PipelineStatusReport
    manifest: SeriesManifest
    verification: VerificationReport | None = None
