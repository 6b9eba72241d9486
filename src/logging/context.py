# src/logging/context.py — v1
"""Contextual logging support: attach series_id, part_number and phase to records."""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

_series_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "series_id", default=None
)
_part_number: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "part_number", default=None
)
_phase: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "phase", default=None
)


@dataclass
class LogContext:
    """Snapshot of the current logging context."""

    series_id: str | None = None
    part_number: int | None = None
    phase: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        series_id=_series_id.get(),
        part_number=_part_number.get(),
        phase=_phase.get(),
    )


def set_series_context(series_id: str | None) -> None:
    """Set series-level context (once per pipeline run)."""
    _series_id.set(series_id)


def set_part_context(part_number: int | None, phase: str | None = None) -> None:
    """Set part-level context (per transition)."""
    _part_number.set(part_number)
    _phase.set(phase)


@contextmanager
def series_context(series_id: str) -> Iterator[None]:
    """Scope series context to a block, restoring the previous values on exit."""
    tokens = (
        _series_id.set(series_id),
        _part_number.set(None),
        _phase.set(None),
    )
    try:
        yield
    finally:
        _phase.reset(tokens[2])
        _part_number.reset(tokens[1])
        _series_id.reset(tokens[0])


def clear_context() -> None:
    """Reset all context variables."""
    _series_id.set(None)
    _part_number.set(None)
    _phase.set(None)
