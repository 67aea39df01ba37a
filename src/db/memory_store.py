"""In-memory document store for local development and tests."""

import copy
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from src.db.document_store import (
    ChangeEvent,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    Filter,
    SnapshotCallback,
    Subscription,
    Transaction,
    WriteBatch,
    matches_filters,
    resolve_timestamps,
    set_path,
    sort_documents,
    validate_filters,
)
from src.db.triggers import TriggerRegistry

logger = logging.getLogger(__name__)


class _Listener:
    def __init__(self, collection, filters, callback, order_by):
        self.collection = collection
        self.filters = filters
        self.callback = callback
        self.order_by = order_by
        self.last_snapshot = None


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe store keeping every collection in a dict.

    Writes are applied under a single lock, so each document update, batch
    commit and transaction is atomic. Triggers and live subscriptions are
    notified synchronously once the write has been applied.
    """

    def __init__(self, triggers: TriggerRegistry | None = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._last_timestamp: datetime | None = None
        self._listeners: list[_Listener] = []
        self.triggers = triggers

    def attach_triggers(self, triggers: TriggerRegistry) -> None:
        self.triggers = triggers

    def now(self) -> datetime:
        """Server clock; strictly increasing so writes are totally ordered."""
        with self._lock:
            current = datetime.now(timezone.utc)
            if self._last_timestamp is not None and current <= self._last_timestamp:
                current = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = current
            return current

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    # Raw mutations, called with the lock held. Each returns the change event.

    def _apply_set(self, collection: str, document_id: str, data: dict[str, Any], merge: bool) -> ChangeEvent:
        docs = self._collection(collection)
        before = copy.deepcopy(docs.get(document_id))
        resolved = resolve_timestamps(data, self.now())
        if merge and before is not None:
            after = copy.deepcopy(before)
            for key, value in resolved.items():
                set_path(after, key, value)
        else:
            after = resolved
        docs[document_id] = after
        kind = "created" if before is None else "updated"
        return ChangeEvent(collection, document_id, kind, before, copy.deepcopy(after))

    def _apply_update(self, collection: str, document_id: str, fields: dict[str, Any]) -> ChangeEvent:
        docs = self._collection(collection)
        if document_id not in docs:
            raise DocumentNotFoundError(collection, document_id)
        before = copy.deepcopy(docs[document_id])
        after = copy.deepcopy(before)
        now = self.now()
        for path, value in fields.items():
            set_path(after, path, resolve_timestamps(value, now))
        docs[document_id] = after
        return ChangeEvent(collection, document_id, "updated", before, copy.deepcopy(after))

    def _apply_delete(self, collection: str, document_id: str) -> ChangeEvent | None:
        docs = self._collection(collection)
        before = docs.pop(document_id, None)
        if before is None:
            return None
        return ChangeEvent(collection, document_id, "deleted", before, None)

    def _apply(self, op, collection, document_id, data, merge=False) -> ChangeEvent | None:
        if op == "set":
            return self._apply_set(collection, document_id, data, merge)
        if op == "update":
            return self._apply_update(collection, document_id, data)
        return self._apply_delete(collection, document_id)

    def _publish(self, events: list[ChangeEvent | None]) -> None:
        events = [e for e in events if e is not None]
        if not events:
            return
        touched = {e.collection for e in events}
        for listener in list(self._listeners):
            if listener.collection in touched:
                self._notify_listener(listener)
        if self.triggers is not None:
            for event in events:
                self.triggers.dispatch(event)

    def _notify_listener(self, listener: _Listener) -> None:
        documents = self.query(listener.collection, listener.filters, listener.order_by)
        snapshot = [(d.id, d.data) for d in documents]
        if snapshot == listener.last_snapshot:
            return
        listener.last_snapshot = snapshot
        try:
            listener.callback(documents)
        except Exception as e:
            logger.error(f"Snapshot listener on {listener.collection} failed: {e}")

    # DocumentStore API

    def get(self, collection: str, document_id: str) -> Document:
        with self._lock:
            data = self._collection(collection).get(document_id)
            return Document(document_id, copy.deepcopy(data))

    def add(self, collection: str, data: dict[str, Any]) -> str:
        document_id = self.new_id()
        self.set(collection, document_id, data)
        return document_id

    def set(self, collection: str, document_id: str, data: dict[str, Any], merge: bool = False) -> None:
        with self._lock:
            event = self._apply_set(collection, document_id, data, merge)
        self._publish([event])

    def update(self, collection: str, document_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            event = self._apply_update(collection, document_id, fields)
        self._publish([event])

    def delete(self, collection: str, document_id: str) -> None:
        with self._lock:
            event = self._apply_delete(collection, document_id)
        self._publish([event])

    def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        filters = filters or []
        validate_filters(filters)
        with self._lock:
            documents = [
                Document(document_id, copy.deepcopy(data))
                for document_id, data in self._collection(collection).items()
                if matches_filters(data, filters)
            ]
        documents = sort_documents(documents, order_by)
        return documents[:limit] if limit is not None else documents

    def batch(self) -> WriteBatch:
        return InMemoryWriteBatch(self)

    def transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        txn = InMemoryTransaction(self)
        with self._lock:
            result = fn(txn)
            events = txn.apply()
        self._publish(events)
        return result

    def subscribe(
        self,
        collection: str,
        filters: list[Filter] | None,
        callback: SnapshotCallback,
        order_by: tuple[str, str] | None = None,
    ) -> Subscription:
        validate_filters(filters or [])
        listener = _Listener(collection, filters or [], callback, order_by)
        with self._lock:
            self._listeners.append(listener)
        self._notify_listener(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return Subscription(remove)

    def collection_names(self) -> list[str]:
        with self._lock:
            return [name for name, docs in self._collections.items() if docs]


class InMemoryWriteBatch(WriteBatch):
    def __init__(self, store: InMemoryDocumentStore):
        super().__init__()
        self._store = store

    def commit(self) -> None:
        if self.committed:
            return
        store = self._store
        with store._lock:
            snapshot = copy.deepcopy(store._collections)
            try:
                events = [store._apply(*operation) for operation in self._operations]
            except Exception:
                store._collections = snapshot
                raise
        self.committed = True
        store._publish(events)


class InMemoryTransaction(Transaction):
    def __init__(self, store: InMemoryDocumentStore):
        self._store = store
        self._writes: list[tuple[str, str, str, dict[str, Any], bool]] = []

    def get(self, collection: str, document_id: str) -> Document:
        if self._writes:
            raise RuntimeError("Transactions must perform all reads before writes")
        return self._store.get(collection, document_id)

    def set(self, collection: str, document_id: str, data: dict[str, Any]) -> None:
        self._writes.append(("set", collection, document_id, data, False))

    def update(self, collection: str, document_id: str, fields: dict[str, Any]) -> None:
        self._writes.append(("update", collection, document_id, fields, False))

    def apply(self) -> list[ChangeEvent | None]:
        store = self._store
        snapshot = copy.deepcopy(store._collections)
        try:
            return [store._apply(*write) for write in self._writes]
        except Exception:
            store._collections = snapshot
            raise
