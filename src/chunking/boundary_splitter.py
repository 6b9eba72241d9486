# src/chunking/boundary_splitter.py — v1
"""Find the largest prefix of a text that ends on a boundary and fits a budget.

Marker kinds return the offset just after the last marker whose prefix
estimate fits; the character kind returns the offset before the first code
point that would overflow. Every kind is a single pass over the text.
"""

from __future__ import annotations

import re
from enum import Enum

from partledger.chunking.size_estimator import (
    OVERHEAD_PERCENT,
    char_utf8_len,
    max_raw_bytes,
    utf8_len,
    with_overhead,
)


class BoundaryKind(str, Enum):
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    WORD = "word"
    CHARACTER = "character"


PARAGRAPH_MARKERS = ("\n\n", "</p>", "<br><br>", "<br/><br/>")
SENTENCE_MARKERS = (". ", "! ", "? ", ".\n", "!\n", "?\n")
WORD_MARKERS = (" ",)

# Leftmost match wins; on a tie the first-listed marker wins.
_MARKER_PATTERNS: dict[BoundaryKind, re.Pattern[str]] = {
    kind: re.compile("|".join(re.escape(m) for m in markers))
    for kind, markers in (
        (BoundaryKind.PARAGRAPH, PARAGRAPH_MARKERS),
        (BoundaryKind.SENTENCE, SENTENCE_MARKERS),
        (BoundaryKind.WORD, WORD_MARKERS),
    )
}

FALLBACK_ORDER = (
    BoundaryKind.PARAGRAPH,
    BoundaryKind.SENTENCE,
    BoundaryKind.WORD,
    BoundaryKind.CHARACTER,
)


def find_split(
    text: str,
    target_bytes: int,
    kind: BoundaryKind | str = BoundaryKind.PARAGRAPH,
    overhead_percent: int = OVERHEAD_PERCENT,
) -> int:
    """Return a split offset into text for the given boundary kind.

    Args:
        text: Text to split.
        target_bytes: Budget the estimated size of ``text[:offset]`` must fit.
        kind: Boundary kind (enum member or its string value).
        overhead_percent: Serialization overhead used by the estimate.

    Returns:
        Offset in code points; 0 when no boundary of this kind fits.

    Raises:
        ValueError: If kind is not a known boundary kind.
    """
    kind = BoundaryKind(kind)
    if kind is BoundaryKind.CHARACTER:
        return _split_character(text, target_bytes, overhead_percent)
    return _split_markers(text, target_bytes, _MARKER_PATTERNS[kind], overhead_percent)


def _split_markers(
    text: str, target_bytes: int, pattern: re.Pattern[str], overhead_percent: int
) -> int:
    best = 0
    consumed = 0
    raw_bytes = 0
    for match in pattern.finditer(text):
        end = match.end()
        raw_bytes += utf8_len(text[consumed:end])
        consumed = end
        if with_overhead(raw_bytes, overhead_percent) > target_bytes:
            break
        best = end
    return best


def _split_character(text: str, target_bytes: int, overhead_percent: int) -> int:
    limit = max_raw_bytes(target_bytes, overhead_percent)
    raw_bytes = 0
    for offset, ch in enumerate(text):
        raw_bytes += char_utf8_len(ch)
        if raw_bytes > limit:
            return offset
    return len(text)
