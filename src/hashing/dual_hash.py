# src/hashing/dual_hash.py — v1
"""Dual-layer hashing: every part alone, and the reassembled whole.

Each text is fingerprinted with SHA-256 (primary), BLAKE2b-512 (secondary)
and MD5 (tertiary, legacy only). Verification compares only the digests an
expected record actually carries, so records that stored the primary digest
alone keep verifying.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from partledger.core.models import HashTriple, PartHash

logger = logging.getLogger(__name__)

MARKER_PREFIX = "<!--ARCHIVE-MANIFEST:"
MARKER_SUFFIX = "-->"

# Up to two line breaks (CRLF tolerated) in front of the marker belong to it,
# plus indentation after the last of them. Spaces before the first break are
# part content. The body is matched lazily across lines.
_MARKER_RE = re.compile(
    r"(?:(?:\r?\n){1,2}[ \t]*)?" + re.escape(MARKER_PREFIX) + r".*?" + MARKER_SUFFIX,
    re.DOTALL,
)


def strip_manifest_marker(content: str) -> str:
    """Remove every embedded manifest marker and its leading separator."""
    if not content or not isinstance(content, str):
        return content
    return _MARKER_RE.sub("", content)


def hash_one(text: str) -> HashTriple:
    """Compute the hash triple of one text (UTF-8).

    Raises:
        TypeError: If text is not a string.
    """
    if not isinstance(text, str):
        raise TypeError("hash_one requires a string input")
    data = text.encode("utf-8", "surrogatepass")
    return HashTriple(
        sha256=hashlib.sha256(data).hexdigest(),
        blake2b=hashlib.blake2b(data).hexdigest(),
        md5=hashlib.md5(data, usedforsecurity=False).hexdigest(),
    )


@dataclass(frozen=True)
class SeriesHashes:
    """Per-part hashes plus the hash of the concatenated whole."""

    per_part: list[PartHash]
    full: HashTriple


def hash_series(parts: Sequence[str]) -> SeriesHashes:
    """Hash each part and the concatenation of all parts (no separator).

    Raises:
        ValueError: If parts is empty.
    """
    if not parts:
        raise ValueError("hash_series requires a non-empty list of parts")

    per_part = [
        PartHash(part_number=i, **hash_one(text).model_dump())
        for i, text in enumerate(parts, start=1)
    ]
    full = hash_one("".join(parts))
    logger.debug(
        "Hashed %d parts, full sha256 %s...", len(parts), full.sha256[:16]
    )
    return SeriesHashes(per_part=per_part, full=full)


@dataclass
class PartVerification:
    """Digest-by-digest comparison for one part."""

    part_number: int
    valid: bool
    matches: dict[str, bool] = field(default_factory=dict)


@dataclass
class SeriesVerification:
    """Outcome of verify_series."""

    valid: bool
    part_results: list[PartVerification] = field(default_factory=list)
    full_match: bool = False
    full_matches: dict[str, bool] = field(default_factory=dict)
    reason: str | None = None
    expected_count: int | None = None
    actual_count: int | None = None


def _as_expected(value: HashTriple | Mapping[str, Any] | str) -> HashTriple:
    # A bare string is the legacy primary-only record.
    if isinstance(value, HashTriple):
        return value
    if isinstance(value, str):
        return HashTriple(sha256=value)
    return HashTriple.model_validate(dict(value))


def compare_digests(actual: HashTriple, expected: HashTriple) -> dict[str, bool]:
    """Compare only the digests present in expected."""
    computed = actual.digests()
    return {
        name: computed.get(name) == value
        for name, value in expected.digests().items()
    }


def verify_series(
    parts: Sequence[str],
    expected_part_hashes: Sequence[HashTriple | Mapping[str, Any] | str],
    expected_full: HashTriple | Mapping[str, Any] | str,
) -> SeriesVerification:
    """Check parts against previously recorded hashes.

    Args:
        parts: Part texts in order (markers already stripped).
        expected_part_hashes: One expected record per part.
        expected_full: Expected hash of the whole; a bare string is treated
            as a legacy primary digest.

    Returns:
        SeriesVerification; ``reason`` is ``"part_count_mismatch"`` when the
        counts differ, ``"hash_mismatch"`` on any digest mismatch.
    """
    if len(parts) != len(expected_part_hashes):
        return SeriesVerification(
            valid=False,
            reason="part_count_mismatch",
            expected_count=len(expected_part_hashes),
            actual_count=len(parts),
        )

    actual = hash_series(parts)
    part_results: list[PartVerification] = []
    for computed, expected in zip(actual.per_part, expected_part_hashes):
        matches = compare_digests(computed, _as_expected(expected))
        ok = all(matches.values())
        if not ok:
            logger.warning("Part %d hash mismatch: %s", computed.part_number, matches)
        part_results.append(
            PartVerification(part_number=computed.part_number, valid=ok, matches=matches)
        )

    full_matches = compare_digests(actual.full, _as_expected(expected_full))
    full_ok = all(full_matches.values())
    valid = full_ok and all(r.valid for r in part_results)
    return SeriesVerification(
        valid=valid,
        part_results=part_results,
        full_match=full_ok,
        full_matches=full_matches,
        reason=None if valid else "hash_mismatch",
        expected_count=len(expected_part_hashes),
        actual_count=len(parts),
    )
