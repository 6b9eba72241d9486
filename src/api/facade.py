# src/api/facade.py — v1
"""Public API facade: prepare, publish and resume a multi-part series.

Usage:
    from partledger.api.facade import prepare_series, publish_series
    prepared = prepare_series(content, title="Report", source_url=url)
    result = await publish_series(prepared, transport, author="alice")
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from partledger.api.models import PreparedSeries, SeriesRunResult
from partledger.chunking.content_splitter import ContentSplitter
from partledger.chunking.part_validator import validate_parts
from partledger.config.settings import Settings, load_settings
from partledger.core.errors import ContentValidationError, IntegrityError, StorageError
from partledger.core.models import VerificationReport
from partledger.hashing.dual_hash import hash_series, verify_series
from partledger.manifest.builder import create_manifest, generate_series_id
from partledger.manifest.tags import build_discovery_tags, compute_date_tag
from partledger.pipeline.posting_pipeline import Observer, PostingPipeline
from partledger.pipeline.resume_verifier import ResumeVerifier

if TYPE_CHECKING:
    from partledger.query.base_query_client import BaseQueryClient
    from partledger.storage.base_state_store import BaseStateStore
    from partledger.transport.base_transport import BaseTransport, PublishCallable

logger = logging.getLogger(__name__)


def prepare_series(
    content: str,
    title: str,
    source_url: str,
    series_id: str | None = None,
    extra_tags: list[str] | None = None,
    publication_date: str | datetime | None = None,
    settings: Settings | None = None,
) -> PreparedSeries:
    """Split content, hash every part and build the series manifest.

    Args:
        content: Full text to publish.
        title: Series title (each part gets a "[Part n/N]" suffix).
        source_url: Where the content came from.
        series_id: Explicit series id; a UUIDv4 is generated when omitted.
        extra_tags: Additional discovery tags.
        publication_date: Source publication date for the quarterly tag.
        settings: Global settings. Loaded from .env if None.

    Returns:
        PreparedSeries ready for publish_series().

    Raises:
        ContentValidationError: If the split does not validate.
        PartLimitExceededError: If more than the maximum number of parts is needed.
        ManifestValidationError: If the manifest cannot be built.
    """
    settings = settings or load_settings()

    parts = ContentSplitter(settings).split(content, title)
    check = validate_parts(parts, content, settings.usable_chunk_bytes)
    if not check.valid:
        raise ContentValidationError("; ".join(check.errors))
    for warning in check.warnings:
        logger.warning(warning)

    hashes = hash_series([p.content for p in parts])
    sid = series_id or generate_series_id()
    tags = build_discovery_tags(
        sid,
        extra=[compute_date_tag(publication_date), *(extra_tags or [])],
        identity_tag=settings.identity_tag,
    )
    manifest = create_manifest(
        series_id=sid,
        source_url=source_url,
        title=title,
        total_parts=len(parts),
        content_hash_full=hashes.full,
        part_hashes=hashes.per_part,
        tags=tags,
        chunk_size_target=settings.safe_chunk_size_bytes,
        metadata_overhead_reserved=settings.metadata_overhead_bytes,
        boundary_algorithm=settings.boundary_algorithm,
    )
    logger.info("Prepared series %s: %d part(s)", sid, len(parts))
    return PreparedSeries(manifest=manifest, parts=parts, warnings=check.warnings)


async def publish_series(
    prepared: PreparedSeries,
    transport: BaseTransport | PublishCallable,
    author: str,
    store: BaseStateStore | None = None,
    observer: Observer | None = None,
    settings: Settings | None = None,
    **pipeline_kwargs: Any,
) -> SeriesRunResult:
    """Publish a prepared series from part 1.

    Returns:
        SeriesRunResult with the outcome and final manifest.
    """
    pipeline = PostingPipeline(
        prepared.manifest,
        prepared.parts,
        transport,
        author,
        store=store,
        observer=observer,
        settings=settings,
        **pipeline_kwargs,
    )
    outcome = await pipeline.start()
    return _result(pipeline, outcome)


async def resume_series(
    series_id: str,
    transport: BaseTransport | PublishCallable,
    store: BaseStateStore,
    query_client: BaseQueryClient | None = None,
    observer: Observer | None = None,
    settings: Settings | None = None,
    **pipeline_kwargs: Any,
) -> SeriesRunResult:
    """Resume a persisted series.

    Loads the snapshot and stored parts, checks the parts against the
    manifest hashes, verifies posted parts on the ledger when a query
    client is given, then restarts the pipeline from the reconciled pointer.

    Raises:
        StorageError: If the snapshot or the stored parts are missing.
        IntegrityError: If the stored parts no longer match their hashes.
        PipelineBusyError: If another live owner holds the series.
    """
    snapshot = await PostingPipeline.load_persisted(store, series_id)
    if snapshot is None:
        raise StorageError(f"No persisted state for series {series_id}")
    part_set = await store.load_parts(series_id)
    if part_set is None:
        raise StorageError(f"Stored parts for series {series_id} are missing or expired")

    manifest = snapshot.manifest
    check = verify_series(part_set.parts, manifest.part_hashes, manifest.content_hash_full)
    if not check.valid:
        raise IntegrityError(
            f"Stored parts of {series_id} do not match the manifest ({check.reason})"
        )

    pipeline = PostingPipeline.from_snapshot(
        snapshot,
        part_set.parts,
        transport,
        store=store,
        observer=observer,
        settings=settings,
        **pipeline_kwargs,
    )

    await pipeline.ensure_unlocked()

    verification: VerificationReport | None = None
    if query_client is not None:
        verification = await ResumeVerifier(query_client).verify(pipeline.manifest)
        await pipeline.reconcile(verification)

    outcome = await pipeline.start()
    return _result(pipeline, outcome, verification)


def _result(
    pipeline: PostingPipeline,
    outcome: str,
    verification: VerificationReport | None = None,
) -> SeriesRunResult:
    return SeriesRunResult(
        series_id=pipeline.series_id,
        outcome=outcome,  # type: ignore[arg-type]
        report=pipeline.get_state(),
        manifest=pipeline.manifest,
        verification=verification,
    )
