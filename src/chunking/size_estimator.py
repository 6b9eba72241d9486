# src/chunking/size_estimator.py — v1
"""Byte-size estimation for content headed to a size-limited ledger.

The estimate is the UTF-8 encoded length plus a uniform serialization
overhead (quotes, escapes) rounded up. Lone surrogates count as three
bytes, like any other BMP code point.
"""

from __future__ import annotations

from typing import Any

SAFE_CHUNK_SIZE_BYTES = 58 * 1024
METADATA_OVERHEAD_BYTES = 2 * 1024
OVERHEAD_PERCENT = 3


def utf8_len(text: str) -> int:
    """Encoded UTF-8 length of text, tolerating lone surrogates."""
    return len(text.encode("utf-8", "surrogatepass"))


def char_utf8_len(ch: str) -> int:
    """Encoded length of a single code point (1 to 4 bytes)."""
    cp = ord(ch)
    if cp < 0x80:
        return 1
    if cp < 0x800:
        return 2
    if cp < 0x10000:
        return 3
    return 4


def with_overhead(raw_bytes: int, overhead_percent: int = OVERHEAD_PERCENT) -> int:
    """Apply the serialization overhead to a raw byte count (ceil)."""
    return raw_bytes + (raw_bytes * overhead_percent + 99) // 100


def max_raw_bytes(target_bytes: int, overhead_percent: int = OVERHEAD_PERCENT) -> int:
    """Largest raw byte count whose estimate still fits target_bytes."""
    if target_bytes <= 0:
        return 0
    raw = target_bytes * 100 // (100 + overhead_percent)
    while with_overhead(raw + 1, overhead_percent) <= target_bytes:
        raw += 1
    while raw > 0 and with_overhead(raw, overhead_percent) > target_bytes:
        raw -= 1
    return raw


def estimate_bytes(text: Any, overhead_percent: int = OVERHEAD_PERCENT) -> int:
    """Estimated serialized size of text. Empty or non-string input is 0."""
    if not text or not isinstance(text, str):
        return 0
    return with_overhead(utf8_len(text), overhead_percent)


def needs_splitting(text: str, safe_budget: int = SAFE_CHUNK_SIZE_BYTES) -> bool:
    """True when text cannot be published as a single part."""
    return estimate_bytes(text) > safe_budget


def estimate_part_count(
    text: str,
    safe_budget: int = SAFE_CHUNK_SIZE_BYTES,
    metadata_overhead: int = METADATA_OVERHEAD_BYTES,
) -> int:
    """Rough part count, before boundary placement is known."""
    usable = safe_budget - metadata_overhead
    total = estimate_bytes(text)
    return max(1, -(-total // usable))
