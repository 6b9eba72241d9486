# src/storage/store_factory.py — v1
"""Factory for state store instantiation from settings."""

from __future__ import annotations

from partledger.config.settings import Settings
from partledger.storage.base_state_store import BaseStateStore


def create_state_store(settings: Settings | None = None) -> BaseStateStore:
    """Instantiate the configured state backend.

    Args:
        settings: Application settings. Defaults to the tiered backend
            under ``.partledger/state``.

    Returns:
        Configured BaseStateStore implementation.
    """
    backend = "tiered" if settings is None else settings.storage_backend
    root = ".partledger/state" if settings is None else str(settings.storage_root.expanduser())

    if backend == "json":
        from partledger.storage.json_store import JsonStateStore
        return JsonStateStore(root=root)

    if backend == "sqlite":
        from partledger.storage.sqlite_store import SqliteStateStore
        return SqliteStateStore(db_path=f"{root}/partledger_state.db")

    if backend == "tiered":
        from partledger.storage.tiered_store import create_tiered_store
        threshold = 64 * 1024 if settings is None else settings.storage_tier_threshold_bytes
        return create_tiered_store(root, threshold_bytes=threshold)

    raise ValueError(f"Unsupported storage backend: {backend!r}")
