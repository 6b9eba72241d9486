# src/chunking/part_validator.py — v1
"""Part validation ensuring integrity constraints.

Validates:
- Contiguous 1-based numbering and consistent total_parts
- Byte-exact reconstruction of the original content
- Per-part size within the usable budget (emergency parts only warn)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from partledger.core.models import ContentPart


@dataclass
class ValidationResult:
    """Result of part validation."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_parts(
    parts: list[ContentPart],
    original: str | None = None,
    max_part_bytes: int = 56 * 1024,
) -> ValidationResult:
    """Validate a split for integrity.

    Args:
        parts: Ordered list of parts.
        original: Source content; when given, reconstruction is checked.
        max_part_bytes: Usable per-part budget (estimated bytes).

    Returns:
        ValidationResult with errors and warnings.
    """
    result = ValidationResult()

    if not parts:
        result.valid = False
        result.errors.append("Empty part list")
        return result

    total = len(parts)
    for i, part in enumerate(parts):
        if part.part_number != i + 1:
            result.valid = False
            result.errors.append(
                f"Part at index {i} numbered {part.part_number}, expected {i + 1}"
            )

        if part.total_parts != total:
            result.valid = False
            result.errors.append(
                f"Part {part.part_number} total_parts {part.total_parts} != {total}"
            )

        if total > 1 and part.byte_size > max_part_bytes:
            msg = (
                f"Part {part.part_number} exceeds budget: "
                f"{part.byte_size} > {max_part_bytes}"
            )
            if part.boundary == "emergency":
                result.warnings.append(msg)
            else:
                result.valid = False
                result.errors.append(msg)

        if not part.content.strip():
            result.warnings.append(f"Part {part.part_number} is blank")

    if original is not None and "".join(p.content for p in parts) != original:
        result.valid = False
        result.errors.append("Parts do not reconstruct the original content")

    return result
