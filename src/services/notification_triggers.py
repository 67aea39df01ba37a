"""Trigger handlers delivering offer and message notifications."""

import logging

from src.config import BASE_URL
from src.db.document_store import ChangeEvent, DocumentStore
from src.integrations.email_client import EmailRelay
from src.models.notifications import NotificationType
from src.services.notification_service import NotificationService
from src.services.user_service import UserService
from src.utils.text import escape_html, snippet

logger = logging.getLogger(__name__)

OFFER_TYPE_LABELS = {"exchange": "Exchange", "chat": "Chat only"}


class NotificationTriggers:
    """
    Runs off the request path so slow email delivery never delays the
    user-facing call. Every handler is best-effort: failures are logged.
    """

    def __init__(
        self,
        store: DocumentStore,
        notifications: NotificationService,
        users: UserService,
        email: EmailRelay,
        base_url: str = BASE_URL,
    ):
        self.store = store
        self.notifications = notifications
        self.users = users
        self.email = email
        self.base_url = base_url.rstrip("/")

    def _recipient_email(self, user_id: str, preference: str) -> tuple[str | None, str]:
        """Email address of a user who accepts this kind of email, with their name."""
        profile = self.users.get_profile(user_id)
        if profile is None:
            logger.warning(f"User {user_id} not found")
            return None, ""
        address = self.users.get_email(user_id, profile)
        if not address:
            logger.error(f"Could not determine email for user {user_id}")
            return None, ""
        preferences = profile.notifications
        if not preferences.email or not getattr(preferences, preference):
            logger.info(f"User {user_id} opted out of {preference} emails")
            return None, ""
        return address, profile.name or ""

    def on_exchange_created(self, event: ChangeEvent) -> bool:
        """Email the product owner about a new offer."""
        exchange = event.after
        if not exchange:
            return False
        try:
            owner_email, owner_name = self._recipient_email(exchange["ownerId"], "exchanges")
            if not owner_email:
                return False

            requester_name = self.users.get_display_name(exchange["requesterId"])
            offer = exchange.get("offer") or {}
            safe_product_name = escape_html(exchange.get("productName", ""))
            safe_offered_product = escape_html(offer.get("offeredProductName", ""))
            safe_message = escape_html(offer.get("message", ""))
            offer_label = OFFER_TYPE_LABELS.get(offer.get("type"), "Offer")

            details = [f"<li>Type: {offer_label}</li>"]
            if safe_offered_product:
                details.append(f"<li>Offered product: {safe_offered_product}</li>")
            if safe_message:
                details.append(f"<li>Message: &quot;{safe_message}&quot;</li>")

            subject = f"New offer for your product: {safe_product_name}"
            html = f"""
      <h2>You have a new offer!</h2>
      <p>Hi {escape_html(owner_name)},</p>
      <p><strong>{escape_html(requester_name)}</strong> made an offer on your product <strong>{safe_product_name}</strong>.</p>
      <p><strong>Offer details:</strong></p>
      <ul>
        {"".join(details)}
      </ul>
      <p>Open the platform to reply:</p>
      <a href="{self.base_url}/exchanges/details/{event.document_id}">View exchange</a>
    """
            self.email.send(owner_email, subject, html)
            return True
        except Exception as e:
            logger.error(f"Error processing new offer notification for {event.document_id}: {e}")
            return False

    def _exchange_for_chat(self, chat_id: str) -> str | None:
        documents = self.store.query("exchanges", [("chatId", "==", chat_id)], limit=1)
        return documents[0].id if documents else None

    def on_message_created(self, event: ChangeEvent) -> bool:
        """Notify the other participant of a chat message, skipping offer seed messages."""
        message = event.after
        chat_id = event.params.get("chatId")
        if not message or not chat_id:
            return False
        if message.get("isOfferMessage"):
            logger.info(f"Skipping notification for offer message {event.document_id}")
            return False

        try:
            chat = self.store.get("chats", chat_id)
            if not chat.exists:
                logger.warning(f"Chat {chat_id} not found")
                return False

            sender_id = message.get("senderId")
            recipient_id = next((uid for uid in chat.get("participants", []) if uid != sender_id), None)
            if not recipient_id:
                logger.warning(f"No recipient found for message in chat {chat_id}")
                return False

            exchange_id = self._exchange_for_chat(chat_id)
            sender_name = self.users.get_display_name(sender_id)
            text = message.get("text", "")

            self.notifications.notify_safely(
                recipient_id,
                sender_id,
                NotificationType.MESSAGE_RECEIVED,
                exchange_id or chat_id,
                {
                    "productName": chat.get("listingTitle"),
                    "productId": chat.get("listingId"),
                    "senderName": sender_name,
                    "message": snippet(text),
                },
            )

            recipient_email, recipient_name = self._recipient_email(recipient_id, "messages")
            if not recipient_email:
                return True

            link = f"{self.base_url}/exchanges/details/{exchange_id}" if exchange_id else f"{self.base_url}/exchanges"
            safe_sender_name = escape_html(sender_name)
            subject = f"New message from {safe_sender_name}"
            html = f"""
      <h2>New message received</h2>
      <p>Hi {escape_html(recipient_name)},</p>
      <p><strong>{safe_sender_name}</strong> sent you a message about <strong>{escape_html(chat.get("listingTitle", ""))}</strong>:</p>
      <blockquote style="background: #f9f9f9; padding: 10px; border-left: 5px solid #ccc;">
        {escape_html(text)}
      </blockquote>
      <a href="{link}">Go to the exchange</a>
    """
            self.email.send(recipient_email, subject, html)
            return True
        except Exception as e:
            logger.error(f"Error processing new message notification for chat {chat_id}: {e}")
            return False
