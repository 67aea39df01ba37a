"""
Pydantic models for the 'notifications' collection.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from src.models.base import DocumentModel


class NotificationType(str, Enum):
    NEW_OFFER = "NEW_OFFER"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    EXCHANGE_COMPLETED = "EXCHANGE_COMPLETED"


class Notification(DocumentModel):
    recipient_id: str
    sender_id: str
    type: NotificationType
    entity_id: str
    is_read: bool = False
    created_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
