"""Tests for BatchWriter."""

from unittest.mock import MagicMock

import pytest

from src.db.batch_writer import BatchWriter
from src.db.document_store import MAX_BATCH_OPERATIONS, DocumentNotFoundError


class TestBatchWriter:
    def test_flushes_when_full(self, store):
        writer = BatchWriter(store, limit=3)
        for index in range(7):
            writer.set("products", f"P{index}", {"index": index})

        assert writer.committed_batches == 2
        assert writer.pending == 1
        assert writer.finalize() == 3
        assert writer.committed_operations == 7
        assert len(store.query("products")) == 7

    def test_mixed_operations(self, store):
        store.set("users", "U1", {"name": "Ann"})
        store.set("users", "U2", {"name": "Bob"})
        writer = BatchWriter(store, limit=2)

        writer.update("users", "U1", {"name": "Anna"}).delete("users", "U2").set("users", "U3", {"name": "Cy"})
        writer.finalize()

        assert store.get("users", "U1").get("name") == "Anna"
        assert not store.get("users", "U2").exists
        assert store.get("users", "U3").exists

    def test_empty_finalize(self):
        store = MagicMock()

        writer = BatchWriter(store)

        assert writer.finalize() == 0
        store.batch.return_value.commit.assert_not_called()

    def test_limit_capped_at_store_maximum(self, store):
        assert BatchWriter(store, limit=10_000).limit == MAX_BATCH_OPERATIONS

    def test_invalid_limit(self, store):
        with pytest.raises(ValueError):
            BatchWriter(store, limit=0)

    def test_failed_commit_keeps_earlier_batches(self, store):
        writer = BatchWriter(store, limit=2)
        writer.set("products", "P1", {})
        writer.set("products", "P2", {})
        writer.update("products", "missing", {"name": "x"})

        with pytest.raises(DocumentNotFoundError):
            writer.finalize()

        assert writer.committed_batches == 1
        assert len(store.query("products")) == 2
