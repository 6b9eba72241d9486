# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides test settings, a small multi-part series, a recording transport
and a fake sleep. No network access: every transport and node is mocked.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from partledger.config.settings import Settings
from partledger.core.errors import PermanentTransportError, TransientTransportError
from partledger.core.models import PublishPayload, PublishResult, SeriesManifest
from partledger.hashing.dual_hash import hash_series
from partledger.manifest.builder import create_manifest
from partledger.manifest.tags import build_discovery_tags
from partledger.pipeline.retry import RetryPolicy
from partledger.pipeline.state import PipelineSnapshot, PipelineState
from partledger.storage.models import StoredPartSet

SERIES_ID = "3f2b8c1e-9d4a-4b7e-8f60-1a2b3c4d5e6f"


# === FIXTURES: Settings ===


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from any .env file, storing under tmp_path."""
    return Settings(
        _env_file=None,
        storage_root=tmp_path / "state",
        storage_backend="json",
        time_unit_s=0.001,
        log_file=tmp_path / "logs" / "test.log",
    )


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three attempts, backoff 1/3/9 units, a two-unit cooldown."""
    return RetryPolicy(max_attempts=3, backoff_delays=(1.0, 3.0, 9.0), cooldown_units=2)


# === FIXTURES: Sample data ===


@pytest.fixture
def sample_texts() -> list[str]:
    return [
        "Part one of the archived report.\n\n",
        "Part two continues the findings.\n\n",
        "Part three closes the report.",
    ]


def make_manifest(texts: list[str], series_id: str = SERIES_ID) -> SeriesManifest:
    hashes = hash_series(texts)
    return create_manifest(
        series_id=series_id,
        source_url="https://example.org/report",
        title="Annual Report",
        total_parts=len(texts),
        content_hash_full=hashes.full,
        part_hashes=hashes.per_part,
        tags=build_discovery_tags(series_id, extra=["ARCHIVE2024Q4"]),
    )


@pytest.fixture
def sample_manifest(sample_texts) -> SeriesManifest:
    return make_manifest(sample_texts)


# === FIXTURES: Transport and clock ===


class RecordingTransport:
    """Async publish callable that records payloads and replays scripted failures.

    ``failures`` maps a part number to a list of exceptions, consumed one per
    attempt; once exhausted the part publishes successfully.
    """

    def __init__(self, failures: dict[int, list[Exception]] | None = None) -> None:
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.payloads: list[PublishPayload] = []

    async def __call__(self, payload: PublishPayload) -> PublishResult:
        self.payloads.append(payload)
        pending = self.failures.get(payload.part_number)
        if pending:
            raise pending.pop(0)
        return PublishResult(locator=payload.locator, author=payload.author)

    @property
    def published_parts(self) -> list[int]:
        return [p.part_number for p in self.payloads]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def transient_error() -> Exception:
    return TransientTransportError("HTTP 503 from node")


@pytest.fixture
def auth_error() -> Exception:
    return PermanentTransportError("Missing required posting authority")


class FakeSleep:
    """Awaitable sleep that only records the requested durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fixed_clock():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    return lambda: now


@pytest.fixture
def recorded_events() -> list[Any]:
    return []


@pytest.fixture
def series_id() -> str:
    return SERIES_ID


@pytest.fixture
def manifest_factory():
    return make_manifest


@pytest.fixture
def transport_factory():
    return RecordingTransport


# === FIXTURES: Persistence ===


@pytest.fixture
def snapshot_factory(sample_manifest):
    """Build a PipelineSnapshot for a series in a given condition."""

    def _make(
        series_id: str = SERIES_ID,
        saved_at: datetime | None = None,
        **state_fields: Any,
    ) -> PipelineSnapshot:
        manifest = sample_manifest.model_copy(update={"series_id": series_id})
        state = PipelineState(
            series_id=series_id, total_parts=manifest.total_parts, **state_fields
        )
        snapshot = PipelineSnapshot.capture(state, manifest, "alice")
        if saved_at is not None:
            snapshot = snapshot.model_copy(update={"saved_at": saved_at})
        return snapshot

    return _make


@pytest.fixture
def part_set_factory(sample_texts):
    """Build a StoredPartSet expiring at a given time."""

    def _make(
        series_id: str = SERIES_ID,
        expires_at: datetime | None = None,
        parts: list[str] | None = None,
    ) -> StoredPartSet:
        saved = datetime(2026, 3, 1, tzinfo=timezone.utc)
        return StoredPartSet(
            series_id=series_id,
            parts=list(sample_texts if parts is None else parts),
            title="Annual Report",
            author="alice",
            saved_at=saved,
            expires_at=expires_at or datetime(2026, 3, 15, tzinfo=timezone.utc),
        )

    return _make
