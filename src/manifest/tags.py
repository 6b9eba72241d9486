# src/manifest/tags.py — v1
"""Discovery tags attached to every published part.

The identity tag marks every archived entry; the bucket tag narrows a
series lookup to one of 16 buckets keyed by the first hex digit of the
series id.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

IDENTITY_TAG = "archivedcontenthaf"
BUCKET_TAG_PREFIX = "SERIES"
_HEX_RE = re.compile(r"^[0-9a-f]$")


def series_bucket_tag(series_id: str) -> str:
    """Return the SERIES<hex> bucket tag for a series id.

    Raises:
        ValueError: If series_id is empty or does not start with a hex digit.
    """
    if not series_id or not isinstance(series_id, str):
        raise ValueError("series_bucket_tag requires a series id string")
    clean = series_id.replace("-", "")
    if not clean:
        raise ValueError("series id is empty once hyphens are removed")
    first = clean[0].lower()
    if not _HEX_RE.match(first):
        raise ValueError(f"series id starts with non-hex character {first!r}")
    return BUCKET_TAG_PREFIX + first.upper()


def build_discovery_tags(
    series_id: str,
    extra: list[str] | None = None,
    identity_tag: str = IDENTITY_TAG,
) -> list[str]:
    """Identity tag first, then the bucket tag, then any extra tags (deduplicated)."""
    tags = [identity_tag, series_bucket_tag(series_id)]
    for tag in extra or []:
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _parse_date(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def compute_date_tag(
    publication_date: str | datetime | None,
    last_modified: str | datetime | None = None,
    now: datetime | None = None,
) -> str:
    """Quarterly date tag, e.g. ARCHIVE2024Q4.

    The publication date wins over the last-modified date. When neither is
    usable the current date is used and the tag is marked ARCHIVEnow.
    """
    date = _parse_date(publication_date) or _parse_date(last_modified)
    prefix = "ARCHIVE"
    if date is None:
        if publication_date or last_modified:
            logger.warning("Unparseable date, tagging with current date")
        date = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        prefix = "ARCHIVEnow"
    quarter = (date.month - 1) // 3 + 1
    return f"{prefix}{date.year}Q{quarter}"
