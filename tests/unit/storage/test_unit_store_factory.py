# tests/unit/storage/test_unit_store_factory.py — v1
"""Tests for storage/store_factory.py."""

from __future__ import annotations

import pytest

from partledger.storage.json_store import JsonStateStore
from partledger.storage.sqlite_store import SqliteStateStore
from partledger.storage.store_factory import create_state_store
from partledger.storage.tiered_store import TieredStateStore


class TestCreateStateStore:
    def test_json(self, settings):
        store = create_state_store(settings)
        assert isinstance(store, JsonStateStore)

    def test_sqlite(self, settings, tmp_path):
        store = create_state_store(settings.model_copy(update={"storage_backend": "sqlite"}))
        try:
            assert isinstance(store, SqliteStateStore)
            assert (tmp_path / "state" / "partledger_state.db").exists()
        finally:
            store.close()

    def test_tiered(self, settings):
        store = create_state_store(settings.model_copy(update={"storage_backend": "tiered"}))
        try:
            assert isinstance(store, TieredStateStore)
        finally:
            store.close()

    def test_unknown_backend(self, settings):
        with pytest.raises(ValueError, match="Unsupported storage backend"):
            create_state_store(settings.model_copy(update={"storage_backend": "redis"}))
