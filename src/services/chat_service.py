"""Append-only message threads bound to exchanges."""

import logging
from typing import Callable

from src.db.document_store import SERVER_TIMESTAMP, DocumentStore, Subscription
from src.errors import AuthorizationError, NotFoundError, ValidationError
from src.models.chats import MAX_MESSAGE_LENGTH, Chat, Message, messages_collection

logger = logging.getLogger(__name__)

COLLECTION = "chats"


def _activity_key(chat: Chat):
    if chat.last_message and chat.last_message.created_at is not None:
        return chat.last_message.created_at
    return chat.created_at


class ChatService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def create_chat(self, requester_id: str, owner_id: str, listing_id: str, listing_title: str) -> str:
        """Create the thread for a new exchange, participants ordered [requester, owner]."""
        chat = Chat(participants=[requester_id, owner_id], listing_id=listing_id, listing_title=listing_title)
        document = chat.to_document()
        document["createdAt"] = SERVER_TIMESTAMP
        chat_id = self.store.add(COLLECTION, document)
        logger.info(f"Chat {chat_id} created for listing {listing_id}")
        return chat_id

    def get_chat(self, chat_id: str) -> Chat:
        document = self.store.get(COLLECTION, chat_id)
        if not document.exists:
            raise NotFoundError("Chat not found")
        return Chat.from_document(document)

    def _get_participant_chat(self, chat_id: str, user_id: str) -> Chat:
        chat = self.get_chat(chat_id)
        if user_id not in chat.participants:
            raise AuthorizationError("You are not a participant of this chat")
        return chat

    def append_message(self, chat_id: str, text: str, sender_id: str, is_offer_message: bool = False) -> str:
        """Append a message and refresh the chat's denormalized last message."""
        message = Message(text=text, sender_id=sender_id, is_offer_message=is_offer_message)
        document = message.to_document()
        document["createdAt"] = SERVER_TIMESTAMP
        if not is_offer_message:
            document.pop("isOfferMessage", None)
        message_id = self.store.add(messages_collection(chat_id), document)
        self.store.update(COLLECTION, chat_id, {"lastMessage": {"text": text, "createdAt": SERVER_TIMESTAMP}})
        return message_id

    def send_message(self, chat_id: str, text: str, sender_id: str) -> str:
        """
        Send a message as one of the chat's participants.

        Recipient notification happens in the message trigger, not here.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
        self._get_participant_chat(chat_id, sender_id)
        message_id = self.append_message(chat_id, text, sender_id)
        logger.info(f"Message {message_id} sent in chat {chat_id} by {sender_id}")
        return message_id

    def list_messages(self, chat_id: str, user_id: str) -> list[Message]:
        self._get_participant_chat(chat_id, user_id)
        documents = self.store.query(messages_collection(chat_id), order_by=("createdAt", "asc"))
        return [Message.from_document(d) for d in documents]

    def subscribe_messages(self, chat_id: str, callback: Callable[[list[Message]], None]) -> Subscription:
        return self.store.subscribe(
            messages_collection(chat_id),
            None,
            lambda documents: callback([Message.from_document(d) for d in documents]),
            order_by=("createdAt", "asc"),
        )

    def subscribe_user_chats(self, user_id: str, callback: Callable[[list[Chat]], None]) -> Subscription:
        """Chats the user takes part in, most recent message first."""

        def deliver(documents):
            chats = [Chat.from_document(d) for d in documents]
            with_activity = [c for c in chats if _activity_key(c) is not None]
            without_activity = [c for c in chats if _activity_key(c) is None]
            with_activity.sort(key=_activity_key, reverse=True)
            callback(with_activity + without_activity)

        return self.store.subscribe(COLLECTION, [("participants", "array-contains", user_id)], deliver)
