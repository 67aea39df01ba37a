"""Exchange lifecycle: offers, status transitions and reviews."""

import logging
import threading
from typing import Any, Callable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.db.document_store import SERVER_TIMESTAMP, Document, DocumentStore, Subscription, Transaction
from src.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.models.exchanges import (
    MAX_REVIEW_COMMENT_LENGTH,
    OPEN_STATUSES,
    USER_DELETED_REASON,
    Exchange,
    ExchangePatch,
    ExchangeStatus,
    Offer,
    Review,
    review_update,
)
from src.models.notifications import NotificationType
from src.services.chat_service import ChatService
from src.services.notification_service import NotificationService
from src.services.user_service import UserService
from src.utils.text import snippet

logger = logging.getLogger(__name__)

COLLECTION = "exchanges"

OWNER_ONLY = "owner"
EITHER_PARTY = "party"

# (from, to) -> who may perform the transition
TRANSITIONS = {
    (ExchangeStatus.PENDING, ExchangeStatus.ACCEPTED): OWNER_ONLY,
    (ExchangeStatus.PENDING, ExchangeStatus.REJECTED): OWNER_ONLY,
    (ExchangeStatus.ACCEPTED, ExchangeStatus.COMPLETED): EITHER_PARTY,
}

STATUS_NOTIFICATIONS = {
    ExchangeStatus.ACCEPTED: NotificationType.OFFER_ACCEPTED,
    ExchangeStatus.REJECTED: NotificationType.OFFER_REJECTED,
    ExchangeStatus.COMPLETED: NotificationType.EXCHANGE_COMPLETED,
}

_offer_adapter = TypeAdapter(Offer)


def _first_error(error: PydanticValidationError) -> str:
    details = error.errors()
    if not details:
        return "Invalid input"
    location = ".".join(str(part) for part in details[0].get("loc", ()))
    message = details[0].get("msg", "Invalid input")
    return f"{location}: {message}" if location else message


class ExchangeService:
    def __init__(
        self,
        store: DocumentStore,
        chats: ChatService,
        notifications: NotificationService,
        users: UserService,
    ):
        self.store = store
        self.chats = chats
        self.notifications = notifications
        self.users = users

    def _load(self, document: Document) -> Exchange:
        if not document.exists:
            raise NotFoundError("Exchange not found")
        return Exchange.from_document(document)

    def get_exchange(self, exchange_id: str, user_id: str) -> Exchange:
        exchange = self._load(self.store.get(COLLECTION, exchange_id))
        if not exchange.is_party(user_id):
            raise AuthorizationError("You are not a party to this exchange")
        return exchange

    def has_pending_exchange(self, requester_id: str, product_id: str) -> bool:
        documents = self.store.query(
            COLLECTION,
            [
                ("requesterId", "==", requester_id),
                ("productId", "==", product_id),
                ("status", "==", ExchangeStatus.PENDING.value),
            ],
            limit=1,
        )
        return bool(documents)

    def create_offer(
        self,
        product_id: str,
        product_name: str,
        requester_id: str,
        owner_id: str,
        offer: Offer | dict[str, Any],
    ) -> str:
        """
        Open an exchange on a product.

        Creates the chat first so the exchange can reference it, seeds the
        chat with the offer message when there is one, then notifies the
        owner. A failed seed message or notification does not undo the
        exchange.

        Returns:
            The new exchange id
        """
        if not product_id or not product_name:
            raise ValidationError("Product id and name are required")
        if not requester_id or not owner_id:
            raise ValidationError("Requester and owner are required")
        if requester_id == owner_id:
            raise ValidationError("You cannot make an offer on your own product")
        if isinstance(offer, dict):
            try:
                offer = _offer_adapter.validate_python(offer)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid offer ({_first_error(e)})") from e
        if self.has_pending_exchange(requester_id, product_id):
            raise ConflictError("You already have a pending offer on this product")

        chat_id = self.chats.create_chat(requester_id, owner_id, product_id, product_name)

        exchange = Exchange(
            product_id=product_id,
            product_name=product_name,
            requester_id=requester_id,
            owner_id=owner_id,
            status=ExchangeStatus.PENDING,
            chat_id=chat_id,
            offer=offer,
        )
        document = exchange.to_document()
        document["createdAt"] = SERVER_TIMESTAMP
        document["updatedAt"] = SERVER_TIMESTAMP
        exchange_id = self.store.add(COLLECTION, document)
        logger.info(f"Exchange {exchange_id} created by {requester_id} on product {product_id}")

        message = (offer.message or "").strip()
        if message:
            try:
                self.chats.append_message(chat_id, message, requester_id, is_offer_message=True)
            except Exception as e:
                logger.error(f"Failed to seed chat {chat_id} with the offer message for exchange {exchange_id}: {e}")

        metadata = {
            "productName": product_name,
            "productId": product_id,
            "offerType": offer.type,
            "offeredProductId": getattr(offer, "offered_product_id", None),
            "offeredProductName": getattr(offer, "offered_product_name", None),
            "message": snippet(message) if message else None,
            "senderName": self.users.get_display_name(requester_id),
        }
        self.notifications.notify_safely(owner_id, requester_id, NotificationType.NEW_OFFER, exchange_id, metadata)
        return exchange_id

    def update_status(self, exchange_id: str, new_status: str | ExchangeStatus, caller_id: str) -> Exchange:
        """
        Move an exchange along its lifecycle as ``caller_id``.

        The owner accepts or rejects pending offers; either party completes
        an accepted exchange. Rejected and completed exchanges are final.
        The counterparty is notified once the change is committed.
        """
        try:
            target = ExchangeStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown status: {new_status}")

        def transition(txn: Transaction) -> Exchange:
            exchange = self._load(txn.get(COLLECTION, exchange_id))
            if not exchange.is_party(caller_id):
                raise AuthorizationError("You are not a party to this exchange")
            if exchange.status.is_terminal:
                raise ConflictError(f"Exchange is already {exchange.status.value}")
            rule = TRANSITIONS.get((exchange.status, target))
            if rule is None:
                raise ConflictError(f"Cannot change exchange status from {exchange.status.value} to {target.value}")
            if rule == OWNER_ONLY and caller_id != exchange.owner_id:
                raise AuthorizationError(f"Only the product owner can mark an offer as {target.value}")

            patch = ExchangePatch(
                status=target,
                touch_updated_at=True,
                touch_completed_at=target == ExchangeStatus.COMPLETED,
            )
            txn.update(COLLECTION, exchange_id, patch.to_update())
            exchange.status = target
            return exchange

        exchange = self.store.transaction(transition)
        logger.info(f"Exchange {exchange_id} moved to {target.value} by {caller_id}")

        metadata = {
            "productName": exchange.product_name,
            "productId": exchange.product_id,
            "senderName": self.users.get_display_name(caller_id),
        }
        self.notifications.notify_safely(
            exchange.counterparty(caller_id), caller_id, STATUS_NOTIFICATIONS[target], exchange_id, metadata
        )
        return exchange

    def submit_review(self, exchange_id: str, reviewer_id: str, rating: int, comment: str | None = None) -> Review:
        """
        Attach or replace the caller's review on a completed exchange.

        The review is keyed by reviewer, so each party holds at most one
        review per exchange; re-submitting keeps the original creation time.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")
        comment = comment or ""
        if not isinstance(comment, str):
            raise ValidationError("Comment must be text")
        if len(comment) > MAX_REVIEW_COMMENT_LENGTH:
            raise ValidationError(f"Comment too long (max {MAX_REVIEW_COMMENT_LENGTH} characters)")

        def write_review(txn: Transaction) -> Review:
            exchange = self._load(txn.get(COLLECTION, exchange_id))
            if not exchange.is_party(reviewer_id):
                raise AuthorizationError("Only the parties of an exchange can review it")
            if exchange.status != ExchangeStatus.COMPLETED:
                raise ConflictError("Only completed exchanges can be reviewed")
            previous = exchange.reviews.get(reviewer_id)
            review = Review(
                rating=rating,
                comment=comment,
                reviewer_id=reviewer_id,
                reviewed_user_id=exchange.counterparty(reviewer_id),
                created_at=previous.created_at if previous else None,
            )
            txn.update(COLLECTION, exchange_id, review_update(review))
            return review

        review = self.store.transaction(write_review)
        logger.info(f"Review by {reviewer_id} saved on exchange {exchange_id}")
        return review

    def open_exchanges_for_user(self, user_id: str) -> list[Document]:
        """Pending or accepted exchanges where the user is requester or owner."""
        seen = {}
        for field in ("requesterId", "ownerId"):
            for document in self.store.query(COLLECTION, [(field, "==", user_id), ("status", "in", OPEN_STATUSES)]):
                seen.setdefault(document.id, document)
        return list(seen.values())

    @staticmethod
    def force_reject_patch() -> dict[str, Any]:
        """Administrative override closing an open exchange of a deleted account."""
        return ExchangePatch(
            status=ExchangeStatus.REJECTED,
            rejection_reason=USER_DELETED_REASON,
            touch_updated_at=True,
        ).to_update()

    def _summaries(self, documents: list[Document], user_id: str) -> list[dict[str, Any]]:
        summaries = []
        for document in documents:
            exchange = Exchange.from_document(document)
            summary = exchange.to_response()
            partner_id = exchange.counterparty(user_id)
            summary["partner"] = {"id": partner_id, "name": self.users.get_display_name(partner_id)}
            chat = self.store.get("chats", exchange.chat_id)
            last_message = chat.get("lastMessage")
            summary["lastMessage"] = last_message
            activity = (last_message or {}).get("createdAt") or exchange.updated_at or exchange.created_at
            summaries.append((activity, summary))
        dated = [item for item in summaries if item[0] is not None]
        undated = [item for item in summaries if item[0] is None]
        dated.sort(key=lambda item: item[0], reverse=True)
        return [summary for _, summary in dated + undated]

    def list_user_exchanges(self, user_id: str) -> list[dict[str, Any]]:
        """Exchanges where the user is requester or owner, most recent activity first."""
        documents = {}
        for field in ("requesterId", "ownerId"):
            for document in self.store.query(COLLECTION, [(field, "==", user_id)]):
                documents[document.id] = document
        return self._summaries(list(documents.values()), user_id)

    def subscribe_user_exchanges(
        self, user_id: str, callback: Callable[[list[dict[str, Any]]], None]
    ) -> Subscription:
        """Live view over both sides of the user's exchanges."""
        lock = threading.Lock()
        sides: dict[str, list[Document]] = {"requesterId": [], "ownerId": []}
        ready = set()

        def on_side(field: str):
            def deliver(documents: list[Document]):
                with lock:
                    sides[field] = documents
                    ready.add(field)
                    if len(ready) < len(sides):
                        return
                    merged = {d.id: d for side in sides.values() for d in side}
                callback(self._summaries(list(merged.values()), user_id))

            return deliver

        subscriptions = [
            self.store.subscribe(COLLECTION, [(field, "==", user_id)], on_side(field)) for field in sides
        ]

        def close():
            for subscription in subscriptions:
                subscription.unsubscribe()

        return Subscription(close)
