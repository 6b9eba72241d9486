# src/pipeline/retry.py — v1
"""Publish retry policy and transport error classification.

Errors are sorted into three kinds: permanent failures stop the series,
cancellations end the run, and everything else is treated as transient.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from partledger.config.settings import Settings
from partledger.core.errors import (
    ContentValidationError,
    ManifestValidationError,
    PermanentTransportError,
    PipelineCancelledError,
    ResourceExhaustedError,
    TransientTransportError,
)
from partledger.core.models import ErrorKind

PERMANENT_MARKERS: tuple[str, ...] = (
    "auth",
    "permission",
    "unauthorized",
    "invalid key",
    "posting key",
    "validation",
    "invalid",
    "missing required",
    "assert",
)
CANCELLED_MARKERS: tuple[str, ...] = ("cancel", "abort")

_PERMANENT_TYPES = (
    PermanentTransportError,
    ResourceExhaustedError,
    ManifestValidationError,
    ContentValidationError,
    AssertionError,
)


def classify_error(error: BaseException | str) -> ErrorKind:
    """Classify a publish failure.

    Typed errors are classified by type. Anything else falls back to
    message markers, with ``transient`` as the default.
    """
    if isinstance(error, (PipelineCancelledError, asyncio.CancelledError)):
        return "cancelled"
    if isinstance(error, _PERMANENT_TYPES):
        return "permanent"
    if isinstance(error, TransientTransportError):
        return "transient"

    msg = str(error).lower()
    if any(marker in msg for marker in PERMANENT_MARKERS):
        return "permanent"
    if any(marker in msg for marker in CANCELLED_MARKERS):
        return "cancelled"
    return "transient"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling, backoff schedule and cooldown (all in time units)."""

    max_attempts: int = 3
    backoff_delays: tuple[float, ...] = (1.0, 3.0, 9.0)
    cooldown_units: int = 20

    def delay_for(self, attempt: int) -> float:
        """Backoff after a failed 1-based ``attempt``; the last delay repeats."""
        if not self.backoff_delays:
            return 0.0
        index = min(max(attempt, 1), len(self.backoff_delays)) - 1
        return self.backoff_delays[index]

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            backoff_delays=tuple(settings.retry_backoff_delays_list),
            cooldown_units=settings.cooldown_units,
        )
