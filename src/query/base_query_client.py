# src/query/base_query_client.py — v1
"""Abstract read-side client for the ledger."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from partledger.core.models import ContentRecord


class BaseQueryClient(ABC):
    """Unified interface for ledger read backends."""

    @abstractmethod
    async def fetch_content(self, author: str, locator: str) -> ContentRecord | None:
        """Fetch one published entry; None when it does not exist."""

    @abstractmethod
    async def query(self, params: Mapping[str, Any]) -> Any:
        """Run one raw request and return its result."""

    def cancel_current_search(self) -> bool:
        """Cancel the active request, if any. Returns whether one was cancelled."""
        return False

    async def aclose(self) -> None:
        """Release network resources."""
