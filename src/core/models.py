# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Pipeline state lives in pipeline.state and persisted part sets in
storage.models; everything else that crosses a module boundary is here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

BoundaryType = Literal[
    "none", "end", "paragraph", "sentence", "word", "character", "emergency"
]
PartStatus = Literal["pending", "posted", "failed"]
Phase = Literal[
    "preparing", "posting", "retrying", "cooldown", "success", "failed",
    "cancelled", "paused",
]
ErrorKind = Literal["transient", "permanent", "cancelled"]

DEFAULT_HASH_ALGORITHM = "SHA-256, BLAKE2b, MD5"
THREADED_ARCHITECTURE = "threaded_replies"
MANIFEST_VERSION = "1.0"


# === CONTENT PARTS ===


class ContentPart(BaseModel):
    """One size-bounded slice of the original content.

    ``content`` is the exact slice: concatenating every part in order
    reproduces the original text byte for byte.
    """

    part_number: int = Field(ge=1)
    total_parts: int = Field(default=0, ge=0)
    content: str
    byte_size: int = Field(ge=0)
    word_count: int = Field(ge=0)
    boundary: BoundaryType


# === HASHES ===


class HashTriple(BaseModel):
    """Primary, secondary and tertiary digests of one text (hex).

    Only ``sha256`` is mandatory so that legacy records, which carried the
    primary digest alone, can be represented and compared.
    """

    model_config = ConfigDict(frozen=True)

    sha256: str
    blake2b: str | None = None
    md5: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.blake2b is not None and self.md5 is not None

    def digests(self) -> dict[str, str]:
        """Digests actually present, keyed by algorithm field name."""
        return {
            name: value
            for name, value in (
                ("sha256", self.sha256),
                ("blake2b", self.blake2b),
                ("md5", self.md5),
            )
            if value is not None
        }


class PartHash(HashTriple):
    """Digests of one part, tagged with its 1-based number."""

    part_number: int = Field(ge=1)


# === SERIES MANIFEST ===


class PartRecord(BaseModel):
    """Publication record of one part inside a manifest."""

    model_config = ConfigDict(populate_by_name=True)

    part_number: int = Field(ge=1)
    locator: str | None = Field(
        default=None, validation_alias=AliasChoices("locator", "permlink")
    )
    author: str | None = None
    status: PartStatus = "pending"
    posted_at: datetime | None = None


class SeriesManifest(BaseModel):
    """Authoritative descriptor of a series (current shape)."""

    model_config = ConfigDict(populate_by_name=True)

    manifest_shape: Literal["current"] = "current"

    # --- Identity ---
    series_id: str
    version: str = MANIFEST_VERSION
    source_url: str
    title: str
    created_at: datetime
    total_parts: int

    # --- Threading ---
    architecture: str | None = THREADED_ARCHITECTURE
    root_locator: str | None = Field(
        default=None, validation_alias=AliasChoices("root_locator", "root_permlink")
    )

    # --- Integrity ---
    content_hash_full: HashTriple
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    part_hashes: list[PartHash]

    # --- Publication ---
    tags: list[str] = Field(default_factory=list)
    parts: list[PartRecord]

    # --- Splitting parameters ---
    boundary_algorithm: str = "paragraph-aware-v1"
    chunk_size_target: int = 58 * 1024
    metadata_overhead_reserved: int = 2 * 1024

    def part(self, part_number: int) -> PartRecord:
        """Return the record for a 1-based part number."""
        return self.parts[part_number - 1]

    @property
    def posted_count(self) -> int:
        return sum(1 for p in self.parts if p.status == "posted")

    @property
    def is_complete(self) -> bool:
        return bool(self.parts) and all(p.status == "posted" for p in self.parts)


class LegacySeriesManifest(BaseModel):
    """Manifest as written before hash triples and threading existed.

    Loaded only to be upgraded once by manifest.migration.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    manifest_shape: Literal["legacy"] = "legacy"

    series_id: str
    version: str = MANIFEST_VERSION
    source_url: str = ""
    title: str = ""
    created_at: datetime | None = None
    total_parts: int
    architecture: str | None = None
    root_locator: str | None = Field(
        default=None, validation_alias=AliasChoices("root_locator", "root_permlink")
    )
    content_hash_full: HashTriple | str
    hash_algorithm: str | None = None
    part_hashes: list[PartHash]
    tags: list[str] = Field(default_factory=list)
    parts: list[PartRecord] = Field(default_factory=list)
    boundary_algorithm: str | None = None
    chunk_size_target: int | None = None
    metadata_overhead_reserved: int | None = None


AnyManifest = Annotated[
    Union[SeriesManifest, LegacySeriesManifest],
    Field(discriminator="manifest_shape"),
]


class CompactManifest(BaseModel):
    """Short form embedded in every published body."""

    model_config = ConfigDict(populate_by_name=True)

    series_id: str = Field(alias="s")
    version: str = Field(default=MANIFEST_VERSION, alias="v")
    total_parts: int = Field(alias="t")
    current_part: int = Field(alias="p")
    content_hash: HashTriple | str | None = Field(default=None, alias="h")
    source_url: str | None = Field(default=None, alias="u")


# === PIPELINE I/O ===


class ErrorLogEntry(BaseModel):
    """One failed publish attempt, as kept in the pipeline error log."""

    model_config = ConfigDict(frozen=True)

    part_number: int
    attempt: int
    message: str
    error_kind: ErrorKind
    timestamp: datetime


class ProgressEvent(BaseModel):
    """Notification emitted on every pipeline transition."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    part_number: int
    total_parts: int
    attempt: int = 0
    max_attempts: int = 0
    message: str = ""
    error: str | None = None
    cooldown_remaining: int | None = None
    cooldown_total: int | None = None
    can_resume: bool = False
    manifest: SeriesManifest | None = None


class PublishPayload(BaseModel):
    """Everything a transport needs to publish one part."""

    part_number: int
    author: str
    locator: str
    parent_author: str
    parent_locator: str
    title: str
    body: str
    json_metadata: dict[str, Any]


class PublishResult(BaseModel):
    """What a transport reports back. ``locator`` must be present on success."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    locator: str | None = Field(
        default=None, validation_alias=AliasChoices("locator", "permlink")
    )
    author: str | None = None


# === READ SIDE ===


class ContentRecord(BaseModel):
    """A published entry as returned by the query side."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    author: str
    locator: str = Field(validation_alias=AliasChoices("locator", "permlink"))
    title: str = ""
    body: str = ""
    json_metadata: dict[str, Any] | str | None = None
    created: str | None = None


class VerificationReport(BaseModel):
    """Outcome of checking posted parts against the ledger."""

    verified: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    missing: list[int] = Field(default_factory=list)
    total_checked: int = 0
    reasons: dict[int, str] = Field(default_factory=dict)

    @property
    def all_verified(self) -> bool:
        return not self.failed and not self.missing
