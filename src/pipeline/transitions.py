# src/pipeline/transitions.py — v1
"""Pure state machine of the posting pipeline.

``advance`` takes the current PipelineState, the manifest it drives, one
event and the retry policy, and returns the next state, the (possibly
updated) manifest and the commands the driver must execute, in order.
Nothing here performs I/O: publishing, sleeping, persisting and observer
notification are all expressed as commands.

Phases:
    preparing -> posting -> {retrying <-> posting} -> cooldown -> posting ...
    -> success | failed | cancelled | paused
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from partledger.core.models import ErrorKind, ErrorLogEntry, Phase, SeriesManifest
from partledger.manifest.builder import update_after_publish
from partledger.pipeline.retry import RetryPolicy
from partledger.pipeline.state import PipelineState, PipelineStatus

# === EVENTS ===


@dataclass(frozen=True)
class Started:
    """A run begins (fresh start or resume)."""

    owner: str
    at: datetime


@dataclass(frozen=True)
class AttemptSucceeded:
    part_number: int
    locator: str
    author: str
    at: datetime


@dataclass(frozen=True)
class AttemptFailed:
    part_number: int
    attempt: int
    message: str
    kind: ErrorKind
    at: datetime


@dataclass(frozen=True)
class BackoffElapsed:
    """The backoff before ``attempt`` (1-based) is over."""

    part_number: int
    attempt: int


@dataclass(frozen=True)
class CooldownElapsed:
    """One cooldown unit passed; ``remaining`` units are left."""

    part_number: int
    remaining: int


@dataclass(frozen=True)
class CancelObserved:
    pass


@dataclass(frozen=True)
class PauseObserved:
    pass


Event = Union[
    Started,
    AttemptSucceeded,
    AttemptFailed,
    BackoffElapsed,
    CooldownElapsed,
    CancelObserved,
    PauseObserved,
]


# === COMMANDS ===


@dataclass(frozen=True)
class Notify:
    """Emit a ProgressEvent to the observer."""

    phase: Phase
    part_number: int
    message: str
    attempt: int = 0
    error: str | None = None
    cooldown_remaining: int | None = None
    cooldown_total: int | None = None
    can_resume: bool = False


@dataclass(frozen=True)
class Persist:
    """Write the current snapshot to the state store."""


@dataclass(frozen=True)
class DeleteState:
    """Remove the persisted snapshot and stored parts (series complete)."""


@dataclass(frozen=True)
class Publish:
    part_number: int
    attempt: int


@dataclass(frozen=True)
class Backoff:
    """Wait ``delay_units`` before publishing ``next_attempt``."""

    part_number: int
    next_attempt: int
    delay_units: float


@dataclass(frozen=True)
class Cooldown:
    """Wait one unit, then feed back CooldownElapsed(remaining - 1)."""

    part_number: int
    remaining: int


@dataclass(frozen=True)
class Finish:
    outcome: PipelineStatus


Command = Union[Notify, Persist, DeleteState, Publish, Backoff, Cooldown, Finish]


@dataclass(frozen=True)
class Transition:
    state: PipelineState
    manifest: SeriesManifest
    commands: tuple[Command, ...] = field(default_factory=tuple)

    @property
    def finished(self) -> Finish | None:
        for command in self.commands:
            if isinstance(command, Finish):
                return command
        return None


class TransitionError(ValueError):
    """An event does not apply to the current state."""


# === TRANSITION FUNCTION ===


def advance(
    state: PipelineState,
    manifest: SeriesManifest,
    event: Event,
    policy: RetryPolicy,
) -> Transition:
    """Apply one event and return the next state plus commands."""
    if isinstance(event, Started):
        return _on_started(state, manifest, event, policy)
    if isinstance(event, AttemptSucceeded):
        _check_current(state, event.part_number)
        return _on_success(state, manifest, event, policy)
    if isinstance(event, AttemptFailed):
        _check_current(state, event.part_number)
        return _on_failure(state, manifest, event, policy)
    if isinstance(event, BackoffElapsed):
        _check_current(state, event.part_number)
        return _begin_attempt(state, manifest, event.part_number, event.attempt, policy)
    if isinstance(event, CooldownElapsed):
        _check_current(state, event.part_number)
        return _on_cooldown(state, manifest, event, policy)
    if isinstance(event, CancelObserved):
        return _cancel(state, manifest)
    if isinstance(event, PauseObserved):
        return _pause(state, manifest, f"Paused at part {_display_part(state)}/{state.total_parts}")
    raise TransitionError(f"Unknown event: {event!r}")


def _check_current(state: PipelineState, part_number: int) -> None:
    if part_number != state.current_part:
        raise TransitionError(
            f"Event for part {part_number} but pointer is at {state.current_part}"
        )


def _display_part(state: PipelineState) -> int:
    return min(state.current_part, state.total_parts)


def _on_started(
    state: PipelineState,
    manifest: SeriesManifest,
    event: Started,
    policy: RetryPolicy,
) -> Transition:
    if state.failed:
        return Transition(
            state,
            manifest,
            (
                Notify(
                    phase="failed",
                    part_number=_display_part(state),
                    message="Series failed permanently; reset the failure before resuming",
                    can_resume=False,
                ),
                Finish("failed"),
            ),
        )

    pointer = _next_unposted(manifest, state.current_part)

    root = state.root_locator or manifest.root_locator
    if root is None and manifest.part(1).status == "posted":
        root = manifest.part(1).locator

    state = state.model_copy(
        update={
            "current_part": pointer,
            "root_locator": root,
            "cancelled": False,
            "paused": False,
            "active_owner": event.owner,
            "heartbeat_at": event.at,
        }
    )

    if pointer > state.total_parts:
        return _complete(state, manifest)

    preparing = Notify(
        phase="preparing",
        part_number=pointer,
        message=f"Preparing to post part {pointer}/{state.total_parts}",
    )
    begun = _begin_attempt(state, manifest, pointer, 1, policy)
    return Transition(begun.state, begun.manifest, (preparing, *begun.commands))


def _next_unposted(manifest: SeriesManifest, start: int) -> int:
    """First part at or after start that is not posted (total_parts + 1 if none)."""
    pointer = start
    while pointer <= manifest.total_parts and manifest.part(pointer).status == "posted":
        pointer += 1
    return pointer


def _begin_attempt(
    state: PipelineState,
    manifest: SeriesManifest,
    part_number: int,
    attempt: int,
    policy: RetryPolicy,
) -> Transition:
    attempts = dict(state.attempts)
    attempts[part_number] = attempt
    state = state.model_copy(update={"attempts": attempts})

    if attempt == 1:
        phase: Phase = "posting"
        message = f"Posting part {part_number}/{state.total_parts}"
    else:
        phase = "retrying"
        message = (
            f"Retrying part {part_number}/{state.total_parts} "
            f"(attempt {attempt}/{policy.max_attempts})"
        )

    return Transition(
        state,
        manifest,
        (
            Notify(phase=phase, part_number=part_number, message=message, attempt=attempt),
            Persist(),
            Publish(part_number, attempt),
        ),
    )


def _on_success(
    state: PipelineState,
    manifest: SeriesManifest,
    event: AttemptSucceeded,
    policy: RetryPolicy,
) -> Transition:
    n = event.part_number
    manifest = update_after_publish(manifest, n, event.locator, event.author, event.at)

    # Earlier parts that already carry a locator but were never marked posted.
    for earlier in range(1, n):
        record = manifest.part(earlier)
        if record.status != "posted" and record.locator and record.author:
            manifest = update_after_publish(
                manifest, earlier, record.locator, record.author,
                record.posted_at or event.at,
            )

    root = state.root_locator
    if n == 1:
        root = event.locator
        manifest = manifest.model_copy(update={"root_locator": event.locator})

    attempt = state.attempt_for(n)
    attempts = {k: v for k, v in state.attempts.items() if k != n}
    state = state.model_copy(update={"attempts": attempts, "root_locator": root})

    if _next_unposted(manifest, n + 1) > state.total_parts:
        state = state.model_copy(update={"current_part": state.total_parts + 1})
        return _complete(state, manifest)

    cooldown = policy.cooldown_units
    return Transition(
        state,
        manifest,
        (
            Notify(
                phase="cooldown",
                part_number=n,
                message=(
                    f"Part {n}/{state.total_parts} posted; waiting {cooldown} "
                    f"before part {n + 1}"
                ),
                attempt=attempt,
                cooldown_remaining=cooldown,
                cooldown_total=cooldown,
            ),
            Persist(),
            Cooldown(n, cooldown),
        ),
    )


def _on_cooldown(
    state: PipelineState,
    manifest: SeriesManifest,
    event: CooldownElapsed,
    policy: RetryPolicy,
) -> Transition:
    n = event.part_number
    if event.remaining > 0:
        return Transition(
            state,
            manifest,
            (
                Notify(
                    phase="cooldown",
                    part_number=n,
                    message=f"Cooldown: {event.remaining} left before part {n + 1}",
                    cooldown_remaining=event.remaining,
                    cooldown_total=policy.cooldown_units,
                ),
                Cooldown(n, event.remaining),
            ),
        )

    pointer = _next_unposted(manifest, n + 1)
    state = state.model_copy(update={"current_part": pointer})
    if pointer > state.total_parts:
        return _complete(state, manifest)
    return _begin_attempt(state, manifest, pointer, 1, policy)


def _on_failure(
    state: PipelineState,
    manifest: SeriesManifest,
    event: AttemptFailed,
    policy: RetryPolicy,
) -> Transition:
    n = event.part_number
    entry = ErrorLogEntry(
        part_number=n,
        attempt=event.attempt,
        message=event.message,
        error_kind=event.kind,
        timestamp=event.at,
    )
    attempts = dict(state.attempts)
    attempts[n] = event.attempt
    state = state.model_copy(
        update={"attempts": attempts, "errors": (*state.errors, entry)}
    )

    if event.kind == "cancelled":
        return _cancel(state, manifest)

    if event.kind == "permanent":
        state = state.model_copy(update={"failed": True, "active_owner": None})
        return Transition(
            state,
            manifest,
            (
                Notify(
                    phase="failed",
                    part_number=n,
                    message=f"Part {n}/{state.total_parts} failed permanently: {event.message}",
                    attempt=event.attempt,
                    error=event.message,
                    can_resume=False,
                ),
                Persist(),
                Finish("failed"),
            ),
        )

    if event.attempt < policy.max_attempts:
        delay = policy.delay_for(event.attempt)
        return Transition(
            state,
            manifest,
            (
                Notify(
                    phase="retrying",
                    part_number=n,
                    message=(
                        f"Attempt {event.attempt}/{policy.max_attempts} for part "
                        f"{n}/{state.total_parts} failed; retrying in {delay:g}"
                    ),
                    attempt=event.attempt,
                    error=event.message,
                ),
                Persist(),
                Backoff(n, event.attempt + 1, delay),
            ),
        )

    return _pause(
        state,
        manifest,
        f"Part {n}/{state.total_parts} paused after {event.attempt} failed attempts",
        attempt=event.attempt,
        error=event.message,
    )


# === TERMINAL TRANSITIONS ===


def _complete(state: PipelineState, manifest: SeriesManifest) -> Transition:
    state = state.model_copy(update={"active_owner": None})
    return Transition(
        state,
        manifest,
        (
            Notify(
                phase="success",
                part_number=state.total_parts,
                message=f"All {state.total_parts} parts posted",
            ),
            DeleteState(),
            Finish("completed"),
        ),
    )


def _cancel(state: PipelineState, manifest: SeriesManifest) -> Transition:
    state = state.model_copy(update={"cancelled": True, "active_owner": None})
    part = _display_part(state)
    return Transition(
        state,
        manifest,
        (
            Notify(
                phase="cancelled",
                part_number=part,
                message=f"Cancelled at part {part}/{state.total_parts}",
                attempt=state.attempt_for(part),
                can_resume=True,
            ),
            Persist(),
            Finish("cancelled"),
        ),
    )


def _pause(
    state: PipelineState,
    manifest: SeriesManifest,
    message: str,
    attempt: int = 0,
    error: str | None = None,
) -> Transition:
    state = state.model_copy(update={"paused": True, "active_owner": None})
    return Transition(
        state,
        manifest,
        (
            Notify(
                phase="paused",
                part_number=_display_part(state),
                message=message,
                attempt=attempt,
                error=error,
                can_resume=True,
            ),
            Persist(),
            Finish("paused"),
        ),
    )
