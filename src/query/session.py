# src/query/session.py — v1
"""Single-flight search sessions.

Each request opens a SearchSession holding a unique token and its own
cancel event. Only one session may be live at a time. Closing a session
clears the shared slot only if that session is still the active one, so a
slow request finishing late can never clear a newer request's state.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field

from partledger.core.errors import QueryBusyError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class SearchSession:
    token: int
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()


class SessionGuard:
    """Hands out sessions and tracks which one is active."""

    def __init__(self) -> None:
        self._tokens = itertools.count(1)
        self._active: SearchSession | None = None

    @property
    def active(self) -> SearchSession | None:
        return self._active

    def open(self) -> SearchSession:
        """Start a new session.

        Raises:
            QueryBusyError: If a live (not cancelled) session is active.
        """
        if self._active is not None and not self._active.cancelled:
            raise QueryBusyError(
                "A search is already in progress; wait for it or cancel it first"
            )
        session = SearchSession(token=next(self._tokens))
        self._active = session
        return session

    def close(self, session: SearchSession) -> None:
        if self._active is not None and self._active.token == session.token:
            self._active = None

    def cancel_active(self) -> bool:
        if self._active is None or self._active.cancelled:
            return False
        logger.info("Cancelling search session %d", self._active.token)
        self._active.cancel()
        return True
