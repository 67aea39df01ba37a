"""
Pydantic models for the 'chats' collection and its 'messages' sub-collection.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.base import DocumentModel

MAX_MESSAGE_LENGTH = 2000


class LastMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str
    created_at: Any = None


class Chat(DocumentModel):
    participants: list[str] = Field(min_length=2, max_length=2)
    listing_id: str
    listing_title: str
    last_message: LastMessage | None = None
    created_at: datetime | None = None

    def other_participant(self, user_id: str) -> str | None:
        return next((uid for uid in self.participants if uid != user_id), None)


class Message(DocumentModel):
    text: str
    sender_id: str
    created_at: datetime | None = None
    is_offer_message: bool = False


def messages_collection(chat_id: str) -> str:
    return f"chats/{chat_id}/messages"
