# src/pipeline/payload.py — v1
"""Publish payload construction for one part of a series.

Part 1 is a root entry filed under the first tag; every later part is a
threaded reply to part 1 and therefore needs its locator.
"""

from __future__ import annotations

from partledger.core.errors import PermanentTransportError
from partledger.core.models import PublishPayload, SeriesManifest
from partledger.manifest.compact import METADATA_KEY, embed_marker

DEFAULT_APP_NAME = "archive/1.0"
DEFAULT_PARENT_TAG = "archive"


def part_title(manifest: SeriesManifest, part_number: int) -> str:
    return f"{manifest.title or 'Untitled'} [Part {part_number}/{manifest.total_parts}]"


def suggested_locator(series_id: str, part_number: int) -> str:
    return f"{series_id[:8]}-part-{part_number}"


def build_payload(
    manifest: SeriesManifest,
    content: str,
    part_number: int,
    author: str,
    root_locator: str | None = None,
    app_name: str = DEFAULT_APP_NAME,
    default_parent_tag: str = DEFAULT_PARENT_TAG,
) -> PublishPayload:
    """Build the payload handed to the transport for one part.

    Args:
        manifest: Current manifest; its snapshot goes into structured metadata.
        content: Raw part text (the marker is appended here).
        part_number: 1-based part number.
        author: Publishing account.
        root_locator: Locator of part 1, required for parts 2..N.
        app_name: Value of the ``app`` metadata field.
        default_parent_tag: Parent category for part 1 when the series has no tags.

    Raises:
        PermanentTransportError: If a reply part has no root locator.
        ManifestTooLargeError: If the compact manifest exceeds its ceiling.
    """
    snapshot = manifest.model_dump(mode="json", exclude={"manifest_shape"})
    snapshot["current_part"] = part_number
    snapshot["part_number"] = part_number

    if part_number == 1:
        parent_author = ""
        parent_locator = manifest.tags[0] if manifest.tags else default_parent_tag
    else:
        if not root_locator:
            raise PermanentTransportError(
                f"Part {part_number} requires the root locator from part 1, "
                "but it is not set; cannot post as threaded reply"
            )
        parent_author = author
        parent_locator = root_locator

    return PublishPayload(
        part_number=part_number,
        author=author,
        locator=suggested_locator(manifest.series_id, part_number),
        parent_author=parent_author,
        parent_locator=parent_locator,
        title=part_title(manifest, part_number),
        body=embed_marker(content, manifest, part_number),
        json_metadata={
            "tags": list(manifest.tags),
            "app": app_name,
            METADATA_KEY: snapshot,
        },
    )
