"""Document store contract shared by the MongoDB and in-memory backends."""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Hard per-batch operation limit of the store
MAX_BATCH_OPERATIONS = 500

FILTER_OPERATORS = ("==", "in", "array-contains")


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when a write is applied."""

    def __repr__(self):
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo):
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentStoreError(Exception):
    pass


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document {collection}/{document_id} not found")
        self.collection = collection
        self.document_id = document_id


class BatchLimitExceededError(DocumentStoreError):
    pass


@dataclass
class Document:
    id: str
    data: dict[str, Any] | None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, path: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return get_path(self.data, path, default)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **(self.data or {})}


@dataclass
class ChangeEvent:
    """A created/updated/deleted notification for one document."""

    collection: str
    document_id: str
    kind: str  # created | updated | deleted
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    params: dict[str, str] = field(default_factory=dict)


Filter = tuple[str, str, Any]
SnapshotCallback = Callable[[list[Document]], None]


def get_path(data: dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted field path out of a nested dict."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def set_path(data: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def resolve_timestamps(value: Any, now: datetime) -> Any:
    """Return a copy of ``value`` with every SERVER_TIMESTAMP replaced by ``now``."""
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: resolve_timestamps(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_timestamps(v, now) for v in value]
    return copy.deepcopy(value)


def matches_filters(data: dict[str, Any], filters: list[Filter]) -> bool:
    for path, op, expected in filters:
        actual = get_path(data, path)
        if op == "==":
            if actual != expected:
                return False
        elif op == "in":
            if actual not in expected:
                return False
        elif op == "array-contains":
            if not isinstance(actual, list) or expected not in actual:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


def validate_filters(filters: list[Filter]) -> None:
    for _, op, _ in filters:
        if op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")


def split_collection_path(collection: str) -> tuple[str, str | None, str | None]:
    """Split ``parent/{id}/child`` into its parts; top-level names return (name, None, None)."""
    parts = collection.split("/")
    if len(parts) == 1:
        return parts[0], None, None
    if len(parts) == 3:
        return parts[0], parts[1], parts[2]
    raise ValueError(f"Invalid collection path: {collection}")


class Subscription:
    """Handle returned by ``DocumentStore.subscribe``."""

    def __init__(self, on_unsubscribe: Callable[[], None]):
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._on_unsubscribe()


class WriteBatch(ABC):
    """Queued multi-document writes applied atomically on commit."""

    def __init__(self):
        self._operations: list[tuple[str, str, str, dict[str, Any] | None, bool]] = []
        self.committed = False

    def __len__(self):
        return len(self._operations)

    def _queue(self, op: str, collection: str, document_id: str, data: dict[str, Any] | None, merge: bool = False):
        if self.committed:
            raise DocumentStoreError("Batch already committed")
        if len(self._operations) >= MAX_BATCH_OPERATIONS:
            raise BatchLimitExceededError(f"A batch may hold at most {MAX_BATCH_OPERATIONS} operations")
        self._operations.append((op, collection, document_id, data, merge))

    def set(self, collection: str, document_id: str, data: dict[str, Any], merge: bool = False):
        self._queue("set", collection, document_id, data, merge)
        return self

    def update(self, collection: str, document_id: str, fields: dict[str, Any]):
        self._queue("update", collection, document_id, fields)
        return self

    def delete(self, collection: str, document_id: str):
        self._queue("delete", collection, document_id, None)
        return self

    @abstractmethod
    def commit(self) -> None:
        """Apply every queued operation atomically."""


class Transaction(ABC):
    """Read-modify-write scope handed to ``DocumentStore.transaction`` callbacks."""

    @abstractmethod
    def get(self, collection: str, document_id: str) -> Document:
        pass

    @abstractmethod
    def set(self, collection: str, document_id: str, data: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def update(self, collection: str, document_id: str, fields: dict[str, Any]) -> None:
        pass


class DocumentStore(ABC):
    """Transactional document database with live queries and change triggers."""

    @abstractmethod
    def new_id(self) -> str:
        pass

    @abstractmethod
    def get(self, collection: str, document_id: str) -> Document:
        pass

    @abstractmethod
    def add(self, collection: str, data: dict[str, Any]) -> str:
        pass

    @abstractmethod
    def set(self, collection: str, document_id: str, data: dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    def update(self, collection: str, document_id: str, fields: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete(self, collection: str, document_id: str) -> None:
        pass

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        pass

    @abstractmethod
    def batch(self) -> WriteBatch:
        pass

    @abstractmethod
    def transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        pass

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        filters: list[Filter] | None,
        callback: SnapshotCallback,
        order_by: tuple[str, str] | None = None,
    ) -> Subscription:
        pass


def sort_documents(documents: list[Document], order_by: tuple[str, str] | None) -> list[Document]:
    if not order_by:
        return documents
    path, direction = order_by
    present = [d for d in documents if d.get(path) is not None]
    missing = [d for d in documents if d.get(path) is None]
    present.sort(key=lambda d: d.get(path), reverse=direction == "desc")
    return present + missing
