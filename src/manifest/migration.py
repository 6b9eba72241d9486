# src/manifest/migration.py — v1
"""Load stored manifests of either shape and upgrade legacy ones once.

Legacy manifests predate hash triples and threading: the full hash may be a
bare SHA-256 string, part hashes may carry the primary digest only, and the
architecture and root locator fields may be absent.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import TypeAdapter, ValidationError

from partledger.core.errors import ManifestValidationError
from partledger.core.models import (
    DEFAULT_HASH_ALGORITHM,
    AnyManifest,
    HashTriple,
    LegacySeriesManifest,
    PartRecord,
    SeriesManifest,
)

logger = logging.getLogger(__name__)

_MANIFEST_ADAPTER: TypeAdapter[SeriesManifest | LegacySeriesManifest] = TypeAdapter(
    AnyManifest
)


def detect_shape(data: Mapping[str, Any]) -> Literal["current", "legacy"]:
    """Classify a raw manifest mapping."""
    declared = data.get("manifest_shape")
    if declared in ("current", "legacy"):
        return declared
    full = data.get("content_hash_full")
    if not isinstance(full, Mapping):
        return "legacy"
    if "architecture" not in data or not data.get("parts"):
        return "legacy"
    if not full.get("blake2b") or not full.get("md5"):
        return "legacy"
    return "current"


def _format_errors(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]


def upgrade_legacy(legacy: LegacySeriesManifest) -> SeriesManifest:
    """Convert a legacy manifest to the current shape."""
    full = legacy.content_hash_full
    if isinstance(full, str):
        full = HashTriple(sha256=full)

    parts = legacy.parts or [
        PartRecord(part_number=i) for i in range(1, legacy.total_parts + 1)
    ]

    data: dict[str, Any] = {
        "series_id": legacy.series_id,
        "version": legacy.version,
        "source_url": legacy.source_url,
        "title": legacy.title,
        "created_at": legacy.created_at or datetime.now(timezone.utc),
        "total_parts": legacy.total_parts,
        "architecture": legacy.architecture,
        "root_locator": legacy.root_locator,
        "content_hash_full": full,
        "hash_algorithm": legacy.hash_algorithm
        or (DEFAULT_HASH_ALGORITHM if full.is_complete else "SHA-256"),
        "part_hashes": legacy.part_hashes,
        "tags": legacy.tags,
        "parts": parts,
    }
    for name in ("boundary_algorithm", "chunk_size_target", "metadata_overhead_reserved"):
        value = getattr(legacy, name)
        if value is not None:
            data[name] = value

    logger.info("Upgraded legacy manifest %s", legacy.series_id)
    return SeriesManifest(**data)


def load_manifest(
    data: SeriesManifest | LegacySeriesManifest | Mapping[str, Any],
) -> SeriesManifest:
    """Return a current-shape manifest from any stored representation.

    Raises:
        ManifestValidationError: If the data does not parse as either shape.
    """
    if isinstance(data, SeriesManifest):
        return data
    if isinstance(data, LegacySeriesManifest):
        return upgrade_legacy(data)
    if not isinstance(data, Mapping):
        raise ManifestValidationError(
            f"Manifest must be a mapping (got {type(data).__name__})"
        )

    payload = dict(data)
    payload["manifest_shape"] = detect_shape(payload)
    try:
        parsed = _MANIFEST_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        errors = _format_errors(exc)
        raise ManifestValidationError(
            f"Invalid manifest: {'; '.join(errors)}", errors=errors
        ) from exc

    if isinstance(parsed, LegacySeriesManifest):
        return upgrade_legacy(parsed)
    return parsed
