"""
Pydantic models for the 'users' collection.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.models.base import DocumentModel


class Reputation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    average_rating: float = 0.0
    total_reviews: int = 0


class NotificationPreferences(BaseModel):
    """Absent flags count as enabled."""

    email: bool = True
    exchanges: bool = True
    messages: bool = True


class UserProfile(DocumentModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    reputation: Reputation | None = None
    points: int | None = None
    level: str | None = None
    last_updated: Any = None
    notifications: NotificationPreferences = NotificationPreferences()
