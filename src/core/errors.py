# src/core/errors.py — v1
"""Exception taxonomy shared across modules.

Validation errors are raised before any network call. Transport errors are
captured by the posting pipeline into its error log; everything else
propagates to the caller.
"""

from __future__ import annotations


class PartledgerError(Exception):
    """Base class for all package errors."""


# === VALIDATION ===


class ContentValidationError(PartledgerError, ValueError):
    """Content or parts are structurally invalid."""


class ManifestValidationError(PartledgerError, ValueError):
    """A series manifest (or its compact form) failed validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


# === RESOURCE LIMITS ===


class ResourceExhaustedError(PartledgerError):
    """A hard resource ceiling was hit."""


class PartLimitExceededError(ResourceExhaustedError):
    """Splitting would need more parts than a series may hold."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Content requires more than {limit} parts; split it into smaller series"
        )


class ManifestTooLargeError(ResourceExhaustedError):
    """A compact manifest exceeds the size ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Compact manifest is {size} bytes (limit {limit})")


# === TRANSPORT ===


class TransportError(PartledgerError):
    """Base for failures reported by a publish transport."""


class TransientTransportError(TransportError):
    """Network, timeout or rate-limit failure. Safe to retry."""


class PermanentTransportError(TransportError):
    """Authorisation or validation failure. Retrying will not help."""


class TransportContractError(PermanentTransportError):
    """The transport returned a result that does not honour its contract."""


# === PIPELINE ===


class PipelineCancelledError(PartledgerError):
    """Raised inside the driver when a suspension point observes cancel."""


class PipelineBusyError(PartledgerError):
    """Another live pipeline instance holds the series."""

    def __init__(self, series_id: str, owner: str):
        self.series_id = series_id
        self.owner = owner
        super().__init__(f"Series {series_id} is being posted by {owner}")


class IntegrityError(PartledgerError):
    """Reconstructed content does not match its recorded hashes."""


# === QUERY ===


class QueryError(PartledgerError):
    """Base for read-side failures."""


class QueryBusyError(QueryError):
    """A search is already in progress on this client."""


class QueryCancelledError(QueryError):
    """The active search session was cancelled."""


class AllNodesFailedError(QueryError):
    """Every configured node failed for one request."""

    def __init__(self, method: str, last_error: Exception | None):
        self.method = method
        self.last_error = last_error
        super().__init__(f"All nodes failed for {method}: {last_error}")


class NodeResponseError(QueryError):
    """A node answered, but with an RPC error or a malformed body."""


# === STORAGE ===


class StorageError(PartledgerError):
    """A durable storage backend failed to read or write."""
