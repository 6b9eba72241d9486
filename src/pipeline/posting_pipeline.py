# src/pipeline/posting_pipeline.py — v1
"""Async driver of the posting pipeline.

Feeds events into ``transitions.advance`` and executes the commands it
returns: publishing through the transport, waiting out backoff and
cooldown one time unit at a time, notifying the observer and persisting
a snapshot through the state store.

Cancellation and pause are cooperative. Both are checked before every
publish and every waited unit. A cancel also aborts an in-flight transport
call (polled once per unit); a pause lets it finish first.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import socket
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from partledger.config.settings import Settings, load_settings
from partledger.core.errors import (
    ContentValidationError,
    PipelineBusyError,
    PipelineCancelledError,
    TransportContractError,
)
from partledger.core.models import (
    ContentPart,
    ErrorLogEntry,
    PartRecord,
    ProgressEvent,
    PublishPayload,
    PublishResult,
    SeriesManifest,
    VerificationReport,
)
from partledger.logging.context import series_context, set_part_context
from partledger.manifest.builder import validate_manifest
from partledger.pipeline.payload import build_payload
from partledger.pipeline.retry import RetryPolicy, classify_error
from partledger.pipeline.state import PipelineSnapshot, PipelineState, PipelineStatus
from partledger.pipeline.transitions import (
    AttemptFailed,
    AttemptSucceeded,
    Backoff,
    BackoffElapsed,
    CancelObserved,
    Command,
    Cooldown,
    CooldownElapsed,
    DeleteState,
    Event,
    Finish,
    Notify,
    PauseObserved,
    Persist,
    Publish,
    Started,
    advance,
)
from partledger.storage.base_state_store import BaseStateStore
from partledger.storage.models import StoredPartSet
from partledger.storage.retention import part_set_expiry
from partledger.transport.base_transport import BaseTransport, PublishCallable, as_transport

logger = logging.getLogger(__name__)

Observer = Callable[[ProgressEvent], Any]
Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_owner() -> str:
    """Owner id for the persisted lock: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class PipelineStatusReport(BaseModel):
    """Read-only view of a pipeline returned by ``get_state``."""

    series_id: str
    status: PipelineStatus
    running: bool
    current_part: int
    total_parts: int
    attempts: dict[int, int] = Field(default_factory=dict)
    cancelled: bool = False
    paused: bool = False
    failed: bool = False
    errors: list[ErrorLogEntry] = Field(default_factory=list)
    root_locator: str | None = None
    posted_count: int = 0
    pending_count: int = 0
    failed_count: int = 0


class PostingPipeline:
    """Publish the parts of one series, sequentially and resumably.

    Args:
        manifest: Validated series manifest (copied, never mutated in place).
        parts: Raw part texts (or ContentParts), one per manifest part.
        transport: BaseTransport or a sync/async publish callable.
        author: Publishing account.
        store: State store for snapshots and stored parts (optional).
        observer: Sync or async callable receiving ProgressEvents.
        settings: Application settings (retry, cooldown, time unit, lock).
        policy: Overrides the retry policy derived from settings.
        owner: Lock owner id; generated when omitted.
        sleep: Awaitable sleep, injectable for tests.
        clock: UTC clock, injectable for tests.
        state: Initial state, e.g. restored from a snapshot.

    Raises:
        ManifestValidationError: If the manifest is invalid.
        ContentValidationError: If the parts do not match the manifest.
    """

    def __init__(
        self,
        manifest: SeriesManifest,
        parts: Sequence[str | ContentPart],
        transport: BaseTransport | PublishCallable,
        author: str,
        store: BaseStateStore | None = None,
        observer: Observer | None = None,
        settings: Settings | None = None,
        policy: RetryPolicy | None = None,
        owner: str | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = _utcnow,
        state: PipelineState | None = None,
    ) -> None:
        validate_manifest(manifest)
        texts = [p.content if isinstance(p, ContentPart) else p for p in parts]
        if len(texts) != manifest.total_parts:
            raise ContentValidationError(
                f"Got {len(texts)} parts for a manifest of {manifest.total_parts}"
            )
        if not author:
            raise ContentValidationError("An author is required to publish")

        self._settings = settings or load_settings()
        self._policy = policy or RetryPolicy.from_settings(self._settings)
        self._manifest = manifest.model_copy(deep=True)
        self._parts = texts
        self._transport = as_transport(transport)
        self._author = author
        self._store = store
        self._observer = observer
        self._owner = owner or default_owner()
        self._sleep = sleep
        self._clock = clock
        self._unit = self._settings.time_unit_s

        self._state = state or PipelineState(
            series_id=manifest.series_id,
            total_parts=manifest.total_parts,
            root_locator=manifest.root_locator,
        )
        if self._state.series_id != manifest.series_id:
            raise ContentValidationError("State and manifest belong to different series")

        self._cancel_requested = asyncio.Event()
        self._pause_requested = asyncio.Event()
        self._running = False

    # === PROPERTIES ===

    @property
    def series_id(self) -> str:
        return self._manifest.series_id

    @property
    def manifest(self) -> SeriesManifest:
        return self._manifest.model_copy(deep=True)

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def running(self) -> bool:
        return self._running

    # === PUBLIC API ===

    async def start(self) -> PipelineStatus:
        """Run from the current pointer until a terminal outcome.

        Returns:
            The outcome: completed, failed, cancelled or paused.

        Raises:
            PipelineBusyError: If this instance is already running or a
                different live owner holds the persisted state.
            StorageError: If a snapshot cannot be written.
        """
        if self._running:
            raise PipelineBusyError(self.series_id, self._owner)
        await self.ensure_unlocked()

        self._cancel_requested.clear()
        self._pause_requested.clear()
        self._running = True
        try:
            with series_context(self.series_id):
                logger.info(
                    "Starting series %s at part %d/%d",
                    self.series_id, self._state.current_part, self._state.total_parts,
                )
                await self._ensure_parts_saved()
                outcome = await self._run(Started(owner=self._owner, at=self._clock()))
                logger.info("Series %s finished: %s", self.series_id, outcome)
                return outcome
        finally:
            self._running = False

    async def resume(self) -> PipelineStatus:
        """Continue a paused or cancelled run; same as start()."""
        if self._running:
            self._pause_requested.clear()
            return self._state.status
        return await self.start()

    async def pause(self) -> None:
        """Pause at the next suspension point (or now, when idle)."""
        if self._running:
            self._pause_requested.set()
            return
        if self._state.status in ("completed", "failed"):
            logger.info("Pause ignored: series %s is %s", self.series_id, self._state.status)
            return
        await self._run(PauseObserved())

    async def cancel(self) -> None:
        """Cancel at the next suspension point (or now, when idle)."""
        if self._running:
            self._cancel_requested.set()
            return
        if self._state.status == "completed":
            logger.info("Cancel ignored: series %s is complete", self.series_id)
            return
        await self._run(CancelObserved())

    def get_state(self) -> PipelineStatusReport:
        state = self._state
        statuses = [p.status for p in self._manifest.parts]
        return PipelineStatusReport(
            series_id=state.series_id,
            status=state.status,
            running=self._running,
            current_part=state.current_part,
            total_parts=state.total_parts,
            attempts=dict(state.attempts),
            cancelled=state.cancelled,
            paused=state.paused,
            failed=state.failed,
            errors=list(state.errors),
            root_locator=state.root_locator,
            posted_count=statuses.count("posted"),
            pending_count=statuses.count("pending"),
            failed_count=statuses.count("failed"),
        )

    async def reset_failure(self) -> None:
        """Clear a permanent failure so the series can be started again."""
        if self._running:
            raise PipelineBusyError(self.series_id, self._owner)
        attempts = {
            k: v for k, v in self._state.attempts.items() if k != self._state.current_part
        }
        self._state = self._state.model_copy(update={"failed": False, "attempts": attempts})
        await self._persist()

    async def reconcile(self, report: VerificationReport) -> None:
        """Apply a verification report before resuming.

        Parts the ledger could not confirm go back to pending, and the
        pointer moves to the first part that is not posted.

        Raises:
            PipelineBusyError: If running, or another live owner holds the
                persisted state (checked before anything is written).
        """
        if self._running:
            raise PipelineBusyError(self.series_id, self._owner)
        await self.ensure_unlocked()

        manifest = self._manifest.model_copy(deep=True)
        for n in report.failed:
            if 1 <= n <= manifest.total_parts:
                manifest.parts[n - 1] = PartRecord(part_number=n)
        root = self._state.root_locator
        if 1 in report.failed:
            manifest.root_locator = None
            root = None

        pointer = next(
            (r.part_number for r in manifest.parts if r.status != "posted"),
            manifest.total_parts + 1,
        )
        self._manifest = manifest
        self._state = self._state.model_copy(
            update={"current_part": pointer, "root_locator": root}
        )
        if report.failed:
            logger.warning(
                "Series %s: parts %s failed verification and will be re-posted",
                self.series_id, report.failed,
            )
        await self._persist()

    @classmethod
    async def load_persisted(
        cls, store: BaseStateStore, series_id: str
    ) -> PipelineSnapshot | None:
        return await store.load_state(series_id)

    def restore_state(self, snapshot: PipelineSnapshot) -> None:
        """Rehydrate pointer, attempts, flags and root locator from a snapshot."""
        if self._running:
            raise PipelineBusyError(self.series_id, self._owner)
        if snapshot.series_id != self.series_id:
            raise ContentValidationError(
                f"Snapshot for {snapshot.series_id} cannot restore {self.series_id}"
            )
        self._state = snapshot.state
        self._manifest = snapshot.manifest.model_copy(deep=True)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PipelineSnapshot,
        parts: Sequence[str | ContentPart],
        transport: BaseTransport | PublishCallable,
        **kwargs: Any,
    ) -> PostingPipeline:
        kwargs.setdefault("author", snapshot.author)
        return cls(
            manifest=snapshot.manifest,
            parts=parts,
            transport=transport,
            state=snapshot.state,
            **kwargs,
        )

    # === EVENT LOOP ===

    async def _run(self, event: Event) -> PipelineStatus:
        pending: Event | None = event
        while pending is not None:
            transition = advance(self._state, self._manifest, pending, self._policy)
            self._state = transition.state
            self._manifest = transition.manifest
            pending = None
            for command in transition.commands:
                if isinstance(command, Finish):
                    return command.outcome
                next_event = await self._execute(command)
                if next_event is not None:
                    pending = next_event
        return self._state.status

    async def _execute(self, command: Command) -> Event | None:
        if isinstance(command, Notify):
            await self._notify(command)
        elif isinstance(command, Persist):
            await self._persist()
        elif isinstance(command, DeleteState):
            await self._delete_state()
        elif isinstance(command, Publish):
            return await self._publish(command)
        elif isinstance(command, Backoff):
            interrupted = await self._wait_units(command.delay_units)
            return interrupted or BackoffElapsed(command.part_number, command.next_attempt)
        elif isinstance(command, Cooldown):
            interrupted = await self._wait_units(1)
            return interrupted or CooldownElapsed(command.part_number, command.remaining - 1)
        return None

    # === COMMAND HANDLERS ===

    def _interruption(self) -> Event | None:
        if self._cancel_requested.is_set():
            return CancelObserved()
        if self._pause_requested.is_set():
            return PauseObserved()
        return None

    async def _wait_units(self, units: float) -> Event | None:
        """Sleep ``units`` time units in steps of one, checking for interruption."""
        remaining = units
        while remaining > 0:
            interrupted = self._interruption()
            if interrupted is not None:
                return interrupted
            step = min(1.0, remaining)
            await self._sleep(step * self._unit)
            remaining -= step
        return self._interruption()

    async def _publish(self, command: Publish) -> Event:
        interrupted = self._interruption()
        if interrupted is not None:
            return interrupted

        n = command.part_number
        try:
            payload = build_payload(
                self._manifest,
                self._parts[n - 1],
                n,
                self._author,
                root_locator=self._state.root_locator,
                app_name=self._settings.app_name,
                default_parent_tag=self._settings.default_parent_tag,
            )
            result = await self._call_transport(payload)
            if not result.locator:
                raise TransportContractError(
                    "Transport returned invalid result (missing locator)"
                )
        except PipelineCancelledError:
            logger.info("Publish of part %d aborted by cancel", n)
            return CancelObserved()
        except Exception as exc:
            kind = classify_error(exc)
            message = str(exc) or type(exc).__name__
            logger.warning(
                "Part %d attempt %d failed (%s): %s", n, command.attempt, kind, message
            )
            return AttemptFailed(
                part_number=n,
                attempt=command.attempt,
                message=message,
                kind=kind,
                at=self._clock(),
            )

        logger.info("Part %d/%d posted as %s", n, self._state.total_parts, result.locator)
        return AttemptSucceeded(
            part_number=n,
            locator=result.locator,
            author=result.author or self._author,
            at=self._clock(),
        )

    async def _call_transport(self, payload: PublishPayload) -> PublishResult:
        """Await the transport, aborting it if cancel is requested meanwhile."""
        task = asyncio.ensure_future(self._transport.publish(payload))
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self._unit)
                if done:
                    return task.result()
                if self._cancel_requested.is_set():
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
                    raise PipelineCancelledError("Cancelled while publishing")
        except asyncio.CancelledError:
            task.cancel()
            raise

    async def _notify(self, command: Notify) -> None:
        set_part_context(command.part_number, command.phase)
        event = ProgressEvent(
            phase=command.phase,
            part_number=command.part_number,
            total_parts=self._state.total_parts,
            attempt=command.attempt,
            max_attempts=self._policy.max_attempts,
            message=command.message,
            error=command.error,
            cooldown_remaining=command.cooldown_remaining,
            cooldown_total=command.cooldown_total,
            can_resume=command.can_resume,
            manifest=self._manifest.model_copy(deep=True),
        )
        if command.phase == "cooldown":
            logger.debug(command.message)
        else:
            logger.info(command.message)

        if self._observer is None:
            return
        try:
            result = self._observer(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Progress observer raised; continuing")

    async def _persist(self) -> None:
        if self._running and self._state.active_owner == self._owner:
            self._state = self._state.model_copy(update={"heartbeat_at": self._clock()})
        if self._store is None:
            return
        await self._store.save_state(
            PipelineSnapshot.capture(
                self._state, self._manifest, self._author, saved_at=self._clock()
            )
        )

    async def _delete_state(self) -> None:
        if self._store is None:
            return
        await self._store.delete_state(self.series_id)
        removed = await self._store.delete_parts(self.series_id)
        logger.info("Series %s complete; removed state and %d stored parts", self.series_id, removed)

    async def ensure_unlocked(self) -> None:
        """Raise PipelineBusyError if a different live owner holds the persisted state."""
        if self._store is None:
            return
        persisted = await self._store.load_state(self.series_id)
        if persisted is None:
            return
        if persisted.state.is_locked_by_other(
            self._owner, self._clock(), self._settings.posting_lock_expiry_s
        ):
            raise PipelineBusyError(self.series_id, persisted.state.active_owner or "unknown")

    async def _ensure_parts_saved(self) -> None:
        if self._store is None:
            return
        if await self._store.load_parts(self.series_id) is not None:
            return
        now = self._clock()
        await self._store.save_parts(
            StoredPartSet(
                series_id=self.series_id,
                parts=list(self._parts),
                title=self._manifest.title or "Untitled",
                source_url=self._manifest.source_url,
                author=self._author,
                saved_at=now,
                expires_at=part_set_expiry(self._settings, now),
            )
        )
