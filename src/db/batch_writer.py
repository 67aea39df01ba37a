"""Chunked multi-document writes."""

import logging
from typing import Any

from src.config import BATCH_LIMIT
from src.db.document_store import MAX_BATCH_OPERATIONS, DocumentStore, WriteBatch

logger = logging.getLogger(__name__)


class BatchWriter:
    """
    Queue writes into store batches, committing whenever a batch is full.

    Callers add operations without tracking counts and call ``finalize()``
    once to flush whatever remains. A failed commit propagates; batches
    committed before it stay committed.

    Args:
        store: Document store to write to
        limit: Maximum operations per batch, capped at the store's hard limit
        label: Prefix used in log lines
    """

    def __init__(self, store: DocumentStore, limit: int = BATCH_LIMIT, label: str = "batch"):
        if limit < 1:
            raise ValueError("Batch limit must be positive")
        self.store = store
        self.limit = min(limit, MAX_BATCH_OPERATIONS)
        self.label = label
        self.committed_batches = 0
        self.committed_operations = 0
        self._batch: WriteBatch = store.batch()

    @property
    def pending(self) -> int:
        return len(self._batch)

    def _make_room(self) -> None:
        if len(self._batch) >= self.limit:
            self.flush()

    def set(self, collection: str, document_id: str, data: dict[str, Any], merge: bool = False) -> "BatchWriter":
        self._make_room()
        self._batch.set(collection, document_id, data, merge=merge)
        return self

    def update(self, collection: str, document_id: str, fields: dict[str, Any]) -> "BatchWriter":
        self._make_room()
        self._batch.update(collection, document_id, fields)
        return self

    def delete(self, collection: str, document_id: str) -> "BatchWriter":
        self._make_room()
        self._batch.delete(collection, document_id)
        return self

    def flush(self) -> None:
        count = len(self._batch)
        if count == 0:
            return
        self._batch.commit()
        self.committed_batches += 1
        self.committed_operations += count
        logger.info(f"[{self.label}] Committed batch of {count} operations")
        self._batch = self.store.batch()

    def finalize(self) -> int:
        """Commit the remaining operations and return the number of committed batches."""
        self.flush()
        return self.committed_batches
