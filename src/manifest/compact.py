# src/manifest/compact.py — v1
"""Compact manifest embedded in each published body, and its extraction.

The marker is an HTML comment appended after a blank line:

    <!--ARCHIVE-MANIFEST:{"s":...,"v":...,"t":...,"p":...,"h":...,"u":...}-->

``>`` is escaped inside the JSON so the payload can never close the comment.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from partledger.core.errors import ManifestTooLargeError, ManifestValidationError
from partledger.core.models import CompactManifest, ContentRecord, SeriesManifest
from partledger.hashing.dual_hash import MARKER_PREFIX, MARKER_SUFFIX
from partledger.manifest.migration import load_manifest

logger = logging.getLogger(__name__)

MANIFEST_SIZE_LIMIT = 16 * 1024
MARKER_SEPARATOR = "\n\n"
METADATA_KEY = "arcMultiPart"

_MARKER_BODY_RE = re.compile(
    re.escape(MARKER_PREFIX) + r"(.*?)" + re.escape(MARKER_SUFFIX), re.DOTALL
)


def compact_encode(manifest: SeriesManifest, current_part: int) -> str:
    """Serialize the compact form of manifest for one part.

    Raises:
        ManifestTooLargeError: If the JSON exceeds 16 KiB.
    """
    compact = {
        "s": manifest.series_id,
        "v": manifest.version,
        "t": manifest.total_parts,
        "p": current_part,
        "h": manifest.content_hash_full.model_dump(exclude_none=True),
        "u": manifest.source_url,
    }
    text = json.dumps(compact, separators=(",", ":"), ensure_ascii=False)
    text = text.replace(">", "\\u003e")
    size = len(text.encode("utf-8"))
    if size > MANIFEST_SIZE_LIMIT:
        raise ManifestTooLargeError(size, MANIFEST_SIZE_LIMIT)
    return text


def compact_decode(text: str) -> CompactManifest:
    """Parse a compact manifest.

    Raises:
        ManifestTooLargeError: If text exceeds 16 KiB (checked before parsing).
        ManifestValidationError: If text is not a valid compact manifest.
    """
    if not isinstance(text, str):
        raise ManifestValidationError("Compact manifest must be a string")
    size = len(text.encode("utf-8", "surrogatepass"))
    if size > MANIFEST_SIZE_LIMIT:
        raise ManifestTooLargeError(size, MANIFEST_SIZE_LIMIT)
    try:
        return CompactManifest.model_validate_json(text)
    except ValidationError as exc:
        raise ManifestValidationError(
            f"Failed to parse compact manifest: {exc.error_count()} error(s)"
        ) from exc


def build_marker(manifest: SeriesManifest, current_part: int) -> str:
    return f"{MARKER_PREFIX}{compact_encode(manifest, current_part)}{MARKER_SUFFIX}"


def embed_marker(content: str, manifest: SeriesManifest, current_part: int) -> str:
    """Append the marker to a part's content after a blank line."""
    return content + MARKER_SEPARATOR + build_marker(manifest, current_part)


def find_marker(body: str | None) -> CompactManifest | None:
    """Decode the first marker in a body, or None when absent or unreadable."""
    if not body:
        return None
    match = _MARKER_BODY_RE.search(body)
    if match is None:
        return None
    try:
        return compact_decode(match.group(1))
    except (ManifestValidationError, ManifestTooLargeError) as exc:
        logger.warning("Ignoring unreadable manifest marker: %s", exc)
        return None


def _metadata_dict(metadata: Mapping[str, Any] | str | None) -> Mapping[str, Any]:
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            return {}
    return metadata if isinstance(metadata, Mapping) else {}


def extract_manifest_from_post(
    record: ContentRecord | Mapping[str, Any],
) -> SeriesManifest | CompactManifest | None:
    """Recover series information from a published entry.

    The full manifest in structured metadata is preferred; the compact
    marker in the body is the fallback. Returns None when neither is usable.
    """
    if isinstance(record, ContentRecord):
        metadata, body = record.json_metadata, record.body
    else:
        metadata, body = record.get("json_metadata"), record.get("body")

    full = _metadata_dict(metadata).get(METADATA_KEY)
    if isinstance(full, Mapping):
        try:
            return load_manifest(full)
        except ManifestValidationError as exc:
            logger.warning("Structured manifest unreadable, trying marker: %s", exc)

    return find_marker(body)
