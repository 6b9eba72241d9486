# src/transport/base_transport.py — v1
"""Abstract publish transport and an adapter for plain callables.

A transport publishes one part to the ledger and reports the locator it
was stored under. Raising is the only way to report failure; returning a
result without a locator is a contract violation.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Union

from pydantic import ValidationError

from partledger.core.errors import TransportContractError
from partledger.core.models import PublishPayload, PublishResult

PublishCallable = Callable[
    [PublishPayload],
    Union[PublishResult, Mapping[str, Any], Awaitable[Union[PublishResult, Mapping[str, Any]]]],
]


class BaseTransport(ABC):
    """Unified interface for ledger publish backends."""

    @abstractmethod
    async def publish(self, payload: PublishPayload) -> PublishResult:
        """Publish one part. Raises on failure."""

    @property
    def transport_name(self) -> str:
        return type(self).__name__


def coerce_result(raw: Any) -> PublishResult:
    """Normalise a transport return value.

    Raises:
        TransportContractError: If raw is not a result carrying a locator.
    """
    if isinstance(raw, PublishResult):
        result = raw
    elif isinstance(raw, Mapping):
        try:
            result = PublishResult.model_validate(dict(raw))
        except ValidationError as exc:
            raise TransportContractError(f"Malformed transport result: {exc}") from exc
    else:
        raise TransportContractError(
            f"Transport returned {type(raw).__name__}, expected a result with a locator"
        )
    if not result.locator:
        raise TransportContractError("Transport returned invalid result (missing locator)")
    return result


class CallableTransport(BaseTransport):
    """Wrap a sync or async function ``fn(payload) -> result``."""

    def __init__(self, fn: PublishCallable, name: str | None = None) -> None:
        self._fn = fn
        self._name = name or getattr(fn, "__name__", "callable")

    @property
    def transport_name(self) -> str:
        return self._name

    async def publish(self, payload: PublishPayload) -> PublishResult:
        raw = self._fn(payload)
        if inspect.isawaitable(raw):
            raw = await raw
        return coerce_result(raw)


def as_transport(obj: BaseTransport | PublishCallable) -> BaseTransport:
    """Return obj unchanged if it is a transport, else wrap it."""
    if isinstance(obj, BaseTransport):
        return obj
    if callable(obj):
        return CallableTransport(obj)
    raise TypeError(f"Not a transport or callable: {type(obj).__name__}")
