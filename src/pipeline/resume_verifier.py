# src/pipeline/resume_verifier.py — v1
"""Check that parts recorded as posted really exist on the ledger.

Run before resuming a series: local state may claim a part is posted while
the ledger lost it or never committed it. Fetched bodies have their
manifest marker stripped before hashing, since the marker was appended
after the part hash was computed.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Sequence
from typing import Any, Callable

from partledger.core.models import HashTriple, SeriesManifest, VerificationReport
from partledger.hashing.dual_hash import hash_one, strip_manifest_marker
from partledger.query.base_query_client import BaseQueryClient

logger = logging.getLogger(__name__)

# progress(checked, to_check, part_number)
VerifyProgress = Callable[[int, int, int], Any]


class ResumeVerifier:
    """Classify each part as verified, failed or missing."""

    def __init__(self, query_client: BaseQueryClient) -> None:
        self._client = query_client

    async def verify(
        self,
        manifest: SeriesManifest,
        expected_part_hashes: Sequence[HashTriple | str] | None = None,
        progress: VerifyProgress | None = None,
    ) -> VerificationReport:
        """Fetch every posted part and compare its primary digest.

        Args:
            manifest: Manifest whose posted parts are checked.
            expected_part_hashes: Expected hash per part (defaults to the
                manifest's own part hashes). Only the primary digest is compared.
            progress: Optional callback (checked, to_check, part_number).

        Returns:
            VerificationReport. ``failed`` parts carry a reason:
            ``not_found``, ``error`` or ``hash_mismatch``.
        """
        expected = list(expected_part_hashes or manifest.part_hashes)
        report = VerificationReport()
        posted = [r for r in manifest.parts if r.status == "posted"]
        report.missing = [r.part_number for r in manifest.parts if r.status != "posted"]

        for index, record in enumerate(posted, start=1):
            n = record.part_number
            report.total_checked += 1
            try:
                fetched = await self._client.fetch_content(record.author or "", record.locator or "")
            except Exception as exc:
                logger.warning("Part %d could not be fetched: %s", n, exc)
                report.failed.append(n)
                report.reasons[n] = "error"
                await _report(progress, index, len(posted), n)
                continue

            if fetched is None:
                logger.warning("Part %d not found at %s/%s", n, record.author, record.locator)
                report.failed.append(n)
                report.reasons[n] = "not_found"
            elif _primary(expected, n) != hash_one(strip_manifest_marker(fetched.body)).sha256:
                logger.warning("Part %d hash mismatch", n)
                report.failed.append(n)
                report.reasons[n] = "hash_mismatch"
            else:
                report.verified.append(n)
            await _report(progress, index, len(posted), n)

        logger.info(
            "Verification of %s: %d verified, %d failed, %d missing",
            manifest.series_id, len(report.verified), len(report.failed), len(report.missing),
        )
        return report


def _primary(expected: Sequence[HashTriple | str], part_number: int) -> str | None:
    if part_number > len(expected):
        return None
    value = expected[part_number - 1]
    return value if isinstance(value, str) else value.sha256


async def _report(progress: VerifyProgress | None, checked: int, total: int, part: int) -> None:
    if progress is None:
        return
    try:
        result = progress(checked, total, part)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Verification progress callback raised; continuing")
