# src/chunking/content_splitter.py — v1
"""Paragraph-aware splitting of oversized content into ordered parts.

Parts are exact slices of the input: nothing is trimmed, so joining the
parts in order reproduces the original text.
"""

from __future__ import annotations

import logging
from typing import Any

from partledger.chunking.boundary_splitter import FALLBACK_ORDER, BoundaryKind, find_split
from partledger.chunking.size_estimator import estimate_bytes
from partledger.config.settings import Settings, load_settings
from partledger.core.errors import PartLimitExceededError
from partledger.core.models import BoundaryType, ContentPart

logger = logging.getLogger(__name__)

SECONDS_PER_PART_ESTIMATE = 5
PREVIEW_CHARS = 100


class ContentSplitter:
    """Split content against the budgets configured in Settings."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or load_settings()
        self._safe_budget = settings.safe_chunk_size_bytes
        self._usable_budget = settings.usable_chunk_bytes
        self._min_part = settings.min_chunk_size_bytes
        self._max_parts = settings.max_parts
        self._overhead = settings.size_overhead_percent

    @property
    def usable_budget(self) -> int:
        return self._usable_budget

    def split(self, content: str, title: str = "Untitled") -> list[ContentPart]:
        """Split content into ordered parts.

        Raises:
            TypeError: If content is not a string.
            PartLimitExceededError: If more than max_parts parts would be needed.
        """
        if not isinstance(content, str):
            raise TypeError(
                f"split requires a string (got {type(content).__name__})"
            )

        if self._estimate(content) <= self._safe_budget:
            return [self._make_part(1, content, "none", total=1)]

        logger.info(
            "Splitting '%s': %d estimated bytes, %d usable per part",
            title, self._estimate(content), self._usable_budget,
        )

        parts: list[ContentPart] = []
        remaining = content
        while remaining:
            part_number = len(parts) + 1
            if part_number > self._max_parts:
                raise PartLimitExceededError(self._max_parts)

            if self._estimate(remaining) <= self._usable_budget:
                parts.append(self._make_part(part_number, remaining, "end"))
                break

            offset, boundary = self._choose_split(remaining)
            if offset == 0:
                logger.warning(
                    "No split possible for part %d, emitting remainder whole",
                    part_number,
                )
                parts.append(self._make_part(part_number, remaining, "emergency"))
                break

            parts.append(self._make_part(part_number, remaining[:offset], boundary))
            remaining = remaining[offset:]

        for part in parts:
            part.total_parts = len(parts)

        logger.info("Split '%s' into %d parts", title, len(parts))
        return parts

    def _choose_split(self, remaining: str) -> tuple[int, BoundaryType]:
        offset = 0
        for kind in FALLBACK_ORDER:
            offset = find_split(remaining, self._usable_budget, kind, self._overhead)
            if offset <= 0:
                continue
            if (
                self._estimate(remaining[:offset]) >= self._min_part
                or not remaining[offset:].strip()
            ):
                return offset, kind.value
        # Nothing met the minimum: the last attempt was the character split.
        return offset, BoundaryKind.CHARACTER.value

    def _estimate(self, text: str) -> int:
        return estimate_bytes(text, self._overhead)

    def _make_part(
        self, part_number: int, content: str, boundary: BoundaryType, total: int = 0
    ) -> ContentPart:
        return ContentPart(
            part_number=part_number,
            total_parts=total,
            content=content,
            byte_size=self._estimate(content),
            word_count=len(content.split()),
            boundary=boundary,
        )


def split_content(
    content: str, title: str = "Untitled", settings: Settings | None = None
) -> list[ContentPart]:
    """Convenience wrapper around ContentSplitter.split."""
    return ContentSplitter(settings).split(content, title)


def generate_split_preview(
    parts: list[ContentPart], safe_budget: int = 58 * 1024
) -> dict[str, Any]:
    """Summarise a split for display before posting."""
    total_words = sum(p.word_count for p in parts)
    total_bytes = sum(p.byte_size for p in parts)
    largest = max((p.byte_size for p in parts), default=0)
    return {
        "total_parts": len(parts),
        "total_words": total_words,
        "total_bytes": total_bytes,
        "total_size_kb": round(total_bytes / 1024, 2),
        "parts": [
            {
                "part_number": p.part_number,
                "word_count": p.word_count,
                "byte_size": p.byte_size,
                "size_kb": round(p.byte_size / 1024, 2),
                "boundary": p.boundary,
                "preview": p.content[:PREVIEW_CHARS]
                + ("..." if len(p.content) > PREVIEW_CHARS else ""),
            }
            for p in parts
        ],
        "estimated_posting_time_s": len(parts) * SECONDS_PER_PART_ESTIMATE,
        "safety_margin_kb": round((safe_budget - largest) / 1024, 2),
    }
