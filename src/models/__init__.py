"""
Init file for the Pydantic document models.
"""

from .chats import Chat, LastMessage, Message
from .exchanges import ChatOffer, Exchange, ExchangeOffer, ExchangePatch, ExchangeStatus, Offer, Review
from .notifications import Notification, NotificationType
from .products import Product
from .users import NotificationPreferences, Reputation, UserProfile

__all__ = [
    "Chat",
    "ChatOffer",
    "Exchange",
    "ExchangeOffer",
    "ExchangePatch",
    "ExchangeStatus",
    "LastMessage",
    "Message",
    "Notification",
    "NotificationPreferences",
    "NotificationType",
    "Offer",
    "Product",
    "Reputation",
    "Review",
    "UserProfile",
]
