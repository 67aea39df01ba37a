"""Notification sink: writes inbox records and manages their read state."""

import logging
from typing import Any, Callable

from src.db.batch_writer import BatchWriter
from src.db.document_store import SERVER_TIMESTAMP, DocumentStore, Subscription
from src.errors import AuthorizationError, NotFoundError
from src.models.notifications import Notification, NotificationType

logger = logging.getLogger(__name__)

COLLECTION = "notifications"


class NotificationService:
    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def build(
        recipient_id: str,
        sender_id: str,
        notification_type: NotificationType,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Document body for a new unread notification."""
        notification = Notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            type=notification_type,
            entity_id=entity_id,
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )
        document = notification.to_document()
        document["createdAt"] = SERVER_TIMESTAMP
        return document

    def notify(
        self,
        recipient_id: str,
        sender_id: str,
        notification_type: NotificationType,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        notification_id = self.store.add(
            COLLECTION, self.build(recipient_id, sender_id, notification_type, entity_id, metadata)
        )
        logger.info(f"Notification {notification_type.value} created for {recipient_id}: {notification_id}")
        return notification_id

    def notify_safely(self, *args, **kwargs) -> str | None:
        """Best-effort notify: failures are logged and never raised."""
        try:
            return self.notify(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error creating notification: {e}")
            return None

    def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        filters = [("recipientId", "==", user_id)]
        if unread_only:
            filters.append(("isRead", "==", False))
        documents = self.store.query(COLLECTION, filters, order_by=("createdAt", "desc"))
        return [Notification.from_document(d) for d in documents]

    def subscribe(self, user_id: str, callback: Callable[[list[Notification]], None]) -> Subscription:
        """Live inbox for a user, newest first."""
        return self.store.subscribe(
            COLLECTION,
            [("recipientId", "==", user_id)],
            lambda documents: callback([Notification.from_document(d) for d in documents]),
            order_by=("createdAt", "desc"),
        )

    def mark_read(self, notification_id: str, user_id: str) -> None:
        document = self.store.get(COLLECTION, notification_id)
        if not document.exists:
            raise NotFoundError("Notification not found")
        if document.get("recipientId") != user_id:
            raise AuthorizationError("Only the recipient can update a notification")
        if not document.get("isRead"):
            self.store.update(COLLECTION, notification_id, {"isRead": True})

    def mark_all_read(self, user_id: str) -> int:
        unread = self.store.query(COLLECTION, [("recipientId", "==", user_id), ("isRead", "==", False)])
        writer = BatchWriter(self.store, label="notifications")
        for document in unread:
            writer.update(COLLECTION, document.id, {"isRead": True})
        writer.finalize()
        return len(unread)

    def clear_all(self, user_id: str) -> int:
        documents = self.store.query(COLLECTION, [("recipientId", "==", user_id)])
        writer = BatchWriter(self.store, label="notifications")
        for document in documents:
            writer.delete(COLLECTION, document.id)
        writer.finalize()
        logger.info(f"Cleared {len(documents)} notifications for {user_id}")
        return len(documents)
