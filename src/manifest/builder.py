# src/manifest/builder.py — v1
"""Series manifest creation, validation and post-publish updates.

A manifest is created once per series and afterwards only changed by the
posting pipeline, through update_after_publish.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from partledger.core.errors import ManifestValidationError
from partledger.core.models import (
    THREADED_ARCHITECTURE,
    HashTriple,
    LegacySeriesManifest,
    PartHash,
    PartRecord,
    SeriesManifest,
)
from partledger.manifest.migration import load_manifest

logger = logging.getLogger(__name__)

MAX_PARTS = 100
UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
REQUIRED_FIELDS = (
    "series_id", "version", "total_parts", "content_hash_full", "source_url",
    "part_hashes",
)


def generate_series_id() -> str:
    """New random UUIDv4 text."""
    return str(uuid.uuid4())


def is_valid_series_id(series_id: Any) -> bool:
    return isinstance(series_id, str) and bool(UUID4_RE.match(series_id))


def create_manifest(
    *,
    source_url: str,
    title: str,
    total_parts: int,
    content_hash_full: HashTriple | Mapping[str, Any],
    part_hashes: Sequence[PartHash | Mapping[str, Any]],
    tags: list[str] | None = None,
    series_id: str | None = None,
    author: str | None = None,
    parts: Sequence[PartRecord | Mapping[str, Any]] | None = None,
    chunk_size_target: int = 58 * 1024,
    metadata_overhead_reserved: int = 2 * 1024,
    boundary_algorithm: str = "paragraph-aware-v1",
) -> SeriesManifest:
    """Build and validate a new manifest.

    Args:
        source_url: Where the content came from.
        title: Series title.
        total_parts: Number of parts.
        content_hash_full: Complete hash triple of the whole content.
        part_hashes: One hash entry per part, in order.
        tags: Discovery tags.
        series_id: Explicit id; a UUIDv4 is generated when omitted.
        author: Default author recorded on fresh part records.
        parts: Existing part records (migration/resume); must match total_parts.

    Raises:
        ManifestValidationError: On missing fields, count mismatches, an
            incomplete full hash, or any rule checked by validate_manifest.
    """
    if not source_url or not title or not total_parts or content_hash_full is None:
        raise ManifestValidationError("Missing required manifest fields")
    if part_hashes is None or len(part_hashes) != total_parts:
        count = 0 if part_hashes is None else len(part_hashes)
        raise ManifestValidationError(
            f"Part hash count ({count}) doesn't match total parts ({total_parts})"
        )

    try:
        full = (
            content_hash_full
            if isinstance(content_hash_full, HashTriple)
            else HashTriple.model_validate(dict(content_hash_full))
        )
        hashes = [
            h if isinstance(h, PartHash) else PartHash.model_validate(dict(h))
            for h in part_hashes
        ]
        records = (
            [
                p if isinstance(p, PartRecord) else PartRecord.model_validate(dict(p))
                for p in parts
            ]
            if parts is not None
            else [
                PartRecord(part_number=i, author=author)
                for i in range(1, total_parts + 1)
            ]
        )
    except ValidationError as exc:
        raise ManifestValidationError(f"Invalid manifest input: {exc}") from exc

    if not full.is_complete:
        raise ManifestValidationError(
            "content_hash_full must contain sha256, blake2b and md5"
        )
    if len(records) != total_parts:
        raise ManifestValidationError(
            f"Parts array length ({len(records)}) doesn't match total parts ({total_parts})"
        )

    manifest = SeriesManifest(
        series_id=series_id or generate_series_id(),
        source_url=source_url,
        title=title,
        created_at=datetime.now(timezone.utc),
        total_parts=total_parts,
        architecture=THREADED_ARCHITECTURE,
        root_locator=None,
        content_hash_full=full,
        part_hashes=hashes,
        tags=list(tags or []),
        parts=records,
        boundary_algorithm=boundary_algorithm,
        chunk_size_target=chunk_size_target,
        metadata_overhead_reserved=metadata_overhead_reserved,
    )
    validate_manifest(manifest)
    logger.info(
        "Created manifest %s: '%s', %d parts", manifest.series_id, title, total_parts
    )
    return manifest


def _check_required(data: Mapping[str, Any]) -> list[str]:
    return [
        f"Manifest missing required field: {name}"
        for name in REQUIRED_FIELDS
        if data.get(name) is None or data.get(name) == ""
    ]


def manifest_errors(manifest: SeriesManifest) -> list[str]:
    """Every rule violation of a parsed manifest (empty when valid)."""
    errors: list[str] = []

    if not is_valid_series_id(manifest.series_id):
        errors.append(f"Invalid series_id format: {manifest.series_id}")

    if not 1 <= manifest.total_parts <= MAX_PARTS:
        errors.append(
            f"Invalid total_parts: {manifest.total_parts} (must be 1-{MAX_PARTS})"
        )

    if len(manifest.parts) != manifest.total_parts:
        errors.append(
            f"Parts array length mismatch: expected {manifest.total_parts}, "
            f"got {len(manifest.parts)}"
        )
    if len(manifest.part_hashes) != manifest.total_parts:
        errors.append(
            f"Part hashes count mismatch: expected {manifest.total_parts}, "
            f"got {len(manifest.part_hashes)}"
        )

    if not manifest.content_hash_full.sha256:
        errors.append("content_hash_full must contain sha256")

    for index, entry in enumerate(manifest.part_hashes, start=1):
        if not entry.sha256:
            errors.append(f"Part hash {index} missing sha256")
        if entry.part_number != index:
            errors.append(
                f"Part hash {index} has incorrect part_number: {entry.part_number}"
            )

    for index, record in enumerate(manifest.parts, start=1):
        if record.part_number != index:
            errors.append(
                f"Part {index} has incorrect part_number: {record.part_number}"
            )
        if record.status == "posted":
            if not record.locator:
                errors.append(f"Part {index} marked as posted but missing locator")
            if not record.author:
                errors.append(f"Part {index} marked as posted but missing author")

    if (
        manifest.architecture is not None
        and manifest.architecture != THREADED_ARCHITECTURE
    ):
        errors.append(
            f"Invalid architecture: {manifest.architecture} "
            f"(must be '{THREADED_ARCHITECTURE}')"
        )

    return errors


def validate_manifest(
    manifest: SeriesManifest | LegacySeriesManifest | Mapping[str, Any],
) -> bool:
    """Validate a manifest of any shape.

    Returns:
        True when valid.

    Raises:
        ManifestValidationError: Listing every violated rule.
    """
    if isinstance(manifest, Mapping):
        missing = _check_required(manifest)
        if missing:
            raise ManifestValidationError(missing[0], errors=missing)
        root = manifest.get("root_locator", manifest.get("root_permlink"))
        if root is not None and not isinstance(root, str):
            raise ManifestValidationError(
                f"Invalid root locator: must be null or string (got {type(root).__name__})"
            )

    parsed = load_manifest(manifest)
    errors = manifest_errors(parsed)
    if errors:
        raise ManifestValidationError("; ".join(errors), errors=errors)
    return True


def update_after_publish(
    manifest: SeriesManifest,
    part_number: int,
    locator: str,
    author: str,
    posted_at: datetime | None = None,
) -> SeriesManifest:
    """Return a copy of manifest with one part marked posted.

    Raises:
        ManifestValidationError: If part_number is out of range or the
            locator/author is empty.
    """
    if not 1 <= part_number <= manifest.total_parts:
        raise ManifestValidationError(f"Invalid part number: {part_number}")
    if not locator or not author:
        raise ManifestValidationError(
            f"Part {part_number} cannot be marked posted without locator and author"
        )

    updated = manifest.model_copy(deep=True)
    updated.parts[part_number - 1] = PartRecord(
        part_number=part_number,
        locator=locator,
        author=author,
        status="posted",
        posted_at=posted_at or datetime.now(timezone.utc),
    )
    return updated
