"""MongoDB connection and document store backend."""

import copy
import logging
import threading
import uuid
from typing import Any, Callable

from pymongo import ASCENDING, DESCENDING, MongoClient, UpdateOne
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure, PyMongoError

from src.config import MONGO_CONFIG
from src.db.document_store import (
    SERVER_TIMESTAMP,
    ChangeEvent,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    Filter,
    SnapshotCallback,
    Subscription,
    Transaction,
    WriteBatch,
    split_collection_path,
    validate_filters,
)
from src.db.triggers import TriggerRegistry

logger = logging.getLogger(__name__)

PARENT_FIELD = "_parent"

# Every collection the app writes; the trigger stream requires exact pre- and post-images for all of them
IMAGE_COLLECTIONS = (
    "exchanges",
    "users",
    "products",
    "chats",
    "chats_messages",
    "notifications",
    "archived_users",
    "archived_users_products",
)


def _strip(raw: dict[str, Any] | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    return {k: v for k, v in raw.items() if k not in ("_id", PARENT_FIELD)}


def _translate_filters(filters: list[Filter]) -> dict[str, Any]:
    query: dict[str, Any] = {}
    for path, op, value in filters:
        if op == "==":
            query[path] = value
        elif op == "in":
            query[path] = {"$in": list(value)}
        elif op == "array-contains":
            # Equality on an array field matches any element
            query[path] = value
    return query


def _without_timestamps(value: Any, path: str, stamped: list[str]) -> Any:
    """Copy ``value`` leaving out SERVER_TIMESTAMP entries, collecting their dotted paths."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if item is SERVER_TIMESTAMP:
                stamped.append(f"{path}.{key}")
            else:
                result[key] = _without_timestamps(item, f"{path}.{key}", stamped)
        return result
    if isinstance(value, list) and any(item is SERVER_TIMESTAMP for item in value):
        raise ValueError(f"SERVER_TIMESTAMP is not supported inside arrays ({path})")
    return copy.deepcopy(value)


def _update_pipeline(fields: dict[str, Any], replace_id: str | None = None) -> list[dict[str, Any]]:
    """
    Build an aggregation-pipeline update from a patch.

    Values are written as literals; every SERVER_TIMESTAMP, nested or not,
    becomes ``$$NOW`` so timestamps come from the database clock. With
    ``replace_id`` the document is replaced instead of patched.
    """
    stamped: list[str] = []
    values = {}
    for path, value in fields.items():
        if value is SERVER_TIMESTAMP:
            stamped.append(path)
        else:
            values[path] = _without_timestamps(value, path, stamped)
    pipeline = []
    if replace_id is not None:
        pipeline.append({"$replaceWith": {"$literal": {**values, "_id": replace_id}}})
    elif values:
        pipeline.append({"$set": {path: {"$literal": value} for path, value in values.items()}})
    if stamped:
        pipeline.append({"$set": {path: "$$NOW" for path in stamped}})
    return pipeline


class MongoDBClient(DocumentStore):
    def __init__(self, uri: str | None = None, database: str | None = None):
        self.client = MongoClient(uri or MONGO_CONFIG["uri"], tz_aware=True)
        self.db: Database = self.client[database or MONGO_CONFIG["database"]]

    def get_collection(self, name: str) -> Collection:
        """Get a MongoDB collection."""
        return self.db[name]

    def _locate(self, collection: str) -> tuple[Collection, dict[str, Any]]:
        """Map a collection path to its MongoDB collection and parent scope."""
        parent, parent_id, child = split_collection_path(collection)
        if parent_id is None:
            return self.db[parent], {}
        return self.db[f"{parent}_{child}"], {PARENT_FIELD: parent_id}

    def create_indexes(self):
        """Create necessary indexes."""
        self.db.get_collection("exchanges").create_index([("requesterId", ASCENDING), ("status", ASCENDING)])
        self.db.get_collection("exchanges").create_index([("ownerId", ASCENDING), ("status", ASCENDING)])
        self.db.get_collection("exchanges").create_index("chatId")
        self.db.get_collection("chats").create_index("participants")
        self.db.get_collection("chats_messages").create_index([(PARENT_FIELD, ASCENDING), ("createdAt", ASCENDING)])
        self.db.get_collection("notifications").create_index([("recipientId", ASCENDING), ("createdAt", DESCENDING)])
        self.db.get_collection("products").create_index("userId")
        self.db.get_collection("archived_users_products").create_index(PARENT_FIELD)

    def enable_pre_images(self):
        """Record pre- and post-images so triggers see each change exactly as committed."""
        existing = set(self.db.list_collection_names())
        for name in IMAGE_COLLECTIONS:
            if name not in existing:
                self.db.create_collection(name)
            self.db.command("collMod", name, changeStreamPreAndPostImages={"enabled": True})

    # DocumentStore API

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def get(self, collection: str, document_id: str, session: ClientSession | None = None) -> Document:
        col, scope = self._locate(collection)
        raw = col.find_one({"_id": document_id, **scope}, session=session)
        return Document(document_id, _strip(raw))

    def add(self, collection: str, data: dict[str, Any]) -> str:
        document_id = self.new_id()
        self.set(collection, document_id, data)
        return document_id

    def _set_operation(self, collection: str, document_id: str, data: dict[str, Any], merge: bool):
        col, scope = self._locate(collection)
        pipeline = _update_pipeline({**data, **scope}, replace_id=None if merge else document_id)
        return col, UpdateOne({"_id": document_id}, pipeline, upsert=True)

    def set(
        self,
        collection: str,
        document_id: str,
        data: dict[str, Any],
        merge: bool = False,
        session: ClientSession | None = None,
    ) -> None:
        col, operation = self._set_operation(collection, document_id, data, merge)
        col.bulk_write([operation], session=session)

    def update(
        self,
        collection: str,
        document_id: str,
        fields: dict[str, Any],
        session: ClientSession | None = None,
    ) -> None:
        col, scope = self._locate(collection)
        result = col.update_one({"_id": document_id, **scope}, _update_pipeline(fields), session=session)
        if result.matched_count == 0:
            raise DocumentNotFoundError(collection, document_id)

    def delete(self, collection: str, document_id: str, session: ClientSession | None = None) -> None:
        col, scope = self._locate(collection)
        col.delete_one({"_id": document_id, **scope}, session=session)

    def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        filters = filters or []
        validate_filters(filters)
        col, scope = self._locate(collection)
        cursor = col.find({**_translate_filters(filters), **scope})
        if order_by:
            path, direction = order_by
            cursor = cursor.sort(path, DESCENDING if direction == "desc" else ASCENDING)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [Document(raw["_id"], _strip(raw)) for raw in cursor]

    def batch(self) -> WriteBatch:
        return MongoWriteBatch(self)

    def transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        with self.client.start_session() as session:
            # with_transaction retries the callback on transient conflicts
            return session.with_transaction(lambda s: fn(MongoTransaction(self, s)))

    def subscribe(
        self,
        collection: str,
        filters: list[Filter] | None,
        callback: SnapshotCallback,
        order_by: tuple[str, str] | None = None,
    ) -> Subscription:
        validate_filters(filters or [])
        col, _ = self._locate(collection)
        stop = threading.Event()
        state = {"stream": None}

        def push():
            try:
                callback(self.query(collection, filters, order_by))
            except Exception as e:
                logger.error(f"Snapshot listener on {collection} failed: {e}")

        def listen():
            push()
            try:
                with col.watch() as stream:
                    state["stream"] = stream
                    while not stop.is_set() and stream.alive:
                        change = stream.try_next()
                        if change is not None:
                            push()
                        else:
                            stop.wait(0.2)
            except PyMongoError as e:
                if not stop.is_set():
                    logger.error(f"Change stream for {collection} stopped: {e}")

        thread = threading.Thread(target=listen, name=f"snapshot-{collection}", daemon=True)
        thread.start()

        def close():
            stop.set()
            if state["stream"] is not None:
                state["stream"].close()

        return Subscription(close)

    # Trigger delivery

    def _event_from_change(self, change: dict[str, Any]) -> ChangeEvent | None:
        kinds = {"insert": "created", "replace": "updated", "update": "updated", "delete": "deleted"}
        kind = kinds.get(change.get("operationType"))
        if kind is None:
            return None
        before = change.get("fullDocumentBeforeChange")
        after = change.get("fullDocument")
        name = change["ns"]["coll"]
        parent_id = (after or before or {}).get(PARENT_FIELD)
        collection = name
        if parent_id is not None and "_" in name:
            parent, child = name.rsplit("_", 1)
            collection = f"{parent}/{parent_id}/{child}"
        document_id = change["documentKey"]["_id"]
        if kind != "created" and before is None:
            logger.warning(f"Skipping {kind} event on {collection}/{document_id} without a pre-image")
            return None
        return ChangeEvent(
            collection=collection,
            document_id=document_id,
            kind=kind,
            before=_strip(before),
            after=_strip(after),
        )

    def watch_changes(self, triggers: TriggerRegistry, stop: threading.Event | None = None) -> None:
        """Dispatch database change events to triggers until ``stop`` is set."""
        stop = stop or threading.Event()
        resume_token = None
        while not stop.is_set():
            try:
                with self.db.watch(
                    full_document="required",
                    full_document_before_change="required",
                    resume_after=resume_token,
                ) as stream:
                    logger.info(f"Watching change stream on database {self.db.name}")
                    while not stop.is_set() and stream.alive:
                        change = stream.try_next()
                        if change is None:
                            stop.wait(0.2)
                            continue
                        resume_token = stream.resume_token
                        event = self._event_from_change(change)
                        if event is not None and triggers.has_handlers(event.collection):
                            triggers.dispatch(event)
            except OperationFailure as e:
                logger.error(f"Change stream failed, resuming: {e}")
                stop.wait(1)


class MongoWriteBatch(WriteBatch):
    def __init__(self, store: MongoDBClient):
        super().__init__()
        self._store = store

    def commit(self) -> None:
        if self.committed:
            return
        store = self._store

        def apply(session: ClientSession):
            for op, collection, document_id, data, merge in self._operations:
                if op == "set":
                    store.set(collection, document_id, data, merge=merge, session=session)
                elif op == "update":
                    store.update(collection, document_id, data, session=session)
                else:
                    store.delete(collection, document_id, session=session)

        with store.client.start_session() as session:
            session.with_transaction(apply)
        self.committed = True


class MongoTransaction(Transaction):
    def __init__(self, store: MongoDBClient, session: ClientSession):
        self._store = store
        self._session = session

    def get(self, collection: str, document_id: str) -> Document:
        return self._store.get(collection, document_id, session=self._session)

    def set(self, collection: str, document_id: str, data: dict[str, Any]) -> None:
        self._store.set(collection, document_id, data, session=self._session)

    def update(self, collection: str, document_id: str, fields: dict[str, Any]) -> None:
        self._store.update(collection, document_id, fields, session=self._session)
