# tests/unit/pipeline/test_unit_resume_verifier.py — v1
"""Tests for pipeline/resume_verifier.py — checking posted parts on the ledger."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from partledger.core.errors import AllNodesFailedError
from partledger.core.models import ContentRecord
from partledger.manifest.builder import update_after_publish
from partledger.manifest.compact import embed_marker
from partledger.pipeline.resume_verifier import ResumeVerifier


@pytest.fixture
def posted_manifest(sample_manifest):
    manifest = update_after_publish(sample_manifest, 1, "loc-1", "alice")
    return update_after_publish(manifest, 2, "loc-2", "alice")


def _client(bodies: dict[str, object]) -> MagicMock:
    """Query client whose fetch_content answers from ``bodies`` keyed by locator."""

    async def fetch(author, locator):
        value = bodies.get(locator)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return None
        return ContentRecord(author=author, locator=locator, body=value)

    client = MagicMock()
    client.fetch_content = AsyncMock(side_effect=fetch)
    return client


class TestResumeVerifier:
    @pytest.mark.asyncio
    async def test_all_posted_verified(self, posted_manifest, sample_texts):
        client = _client({
            "loc-1": embed_marker(sample_texts[0], posted_manifest, 1),
            "loc-2": embed_marker(sample_texts[1], posted_manifest, 2),
        })
        report = await ResumeVerifier(client).verify(posted_manifest)
        assert report.verified == [1, 2]
        assert report.failed == []
        assert report.missing == [3]
        assert report.total_checked == 2
        assert report.all_verified is False
        client.fetch_content.assert_any_await("alice", "loc-1")

    @pytest.mark.asyncio
    async def test_hash_mismatch(self, posted_manifest, sample_texts):
        client = _client({
            "loc-1": sample_texts[0],
            "loc-2": "tampered text",
        })
        report = await ResumeVerifier(client).verify(posted_manifest)
        assert report.verified == [1]
        assert report.failed == [2]
        assert report.reasons == {2: "hash_mismatch"}

    @pytest.mark.asyncio
    async def test_not_found_and_error(self, posted_manifest):
        client = _client({"loc-2": AllNodesFailedError("condenser_api.get_content", None)})
        report = await ResumeVerifier(client).verify(posted_manifest)
        assert report.failed == [1, 2]
        assert report.reasons == {1: "not_found", 2: "error"}

    @pytest.mark.asyncio
    async def test_explicit_expected_hashes(self, posted_manifest, sample_texts):
        client = _client({"loc-1": sample_texts[0], "loc-2": sample_texts[1]})
        expected = ["0" * 64, posted_manifest.part_hashes[1].sha256, "x"]
        report = await ResumeVerifier(client).verify(posted_manifest, expected)
        assert report.failed == [1]
        assert report.verified == [2]

    @pytest.mark.asyncio
    async def test_progress_callback(self, posted_manifest, sample_texts):
        client = _client({"loc-1": sample_texts[0], "loc-2": sample_texts[1]})
        calls = []

        def progress(checked, total, part):
            calls.append((checked, total, part))
            raise RuntimeError("progress bug")

        report = await ResumeVerifier(client).verify(posted_manifest, progress=progress)
        assert calls == [(1, 2, 1), (2, 2, 2)]
        assert report.verified == [1, 2]

    @pytest.mark.asyncio
    async def test_nothing_posted(self, sample_manifest):
        client = _client({})
        report = await ResumeVerifier(client).verify(sample_manifest)
        assert report.total_checked == 0
        assert report.missing == [1, 2, 3]
        client.fetch_content.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_parts_ending_in_space_verify(self, manifest_factory):
        texts = ["first words ", "end of a sentence. ", "last"]
        manifest = update_after_publish(manifest_factory(texts), 1, "loc-1", "alice")
        manifest = update_after_publish(manifest, 2, "loc-2", "alice")
        client = _client({
            "loc-1": embed_marker(texts[0], manifest, 1),
            "loc-2": embed_marker(texts[1], manifest, 2),
        })
        report = await ResumeVerifier(client).verify(manifest)
        assert report.verified == [1, 2]
        assert report.failed == []
