"""
Pydantic models for the 'exchanges' collection.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.db.document_store import SERVER_TIMESTAMP
from src.models.base import DocumentModel

MAX_REVIEW_COMMENT_LENGTH = 280
MAX_OFFER_MESSAGE_LENGTH = 1000

USER_DELETED_REASON = "user_deleted"


class ExchangeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExchangeStatus.REJECTED, ExchangeStatus.COMPLETED)


OPEN_STATUSES = [ExchangeStatus.PENDING.value, ExchangeStatus.ACCEPTED.value]


class _OfferBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str | None = Field(None, max_length=MAX_OFFER_MESSAGE_LENGTH)


class ExchangeOffer(_OfferBase):
    """Goods-for-goods proposal naming the product offered in return."""

    type: Literal["exchange"] = "exchange"
    offered_product_id: str
    offered_product_name: str


class ChatOffer(_OfferBase):
    """Conversation-only proposal."""

    type: Literal["chat"] = "chat"


Offer = Annotated[Union[ExchangeOffer, ChatOffer], Field(discriminator="type")]


class Review(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rating: int = Field(ge=1, le=5)
    comment: str = Field("", max_length=MAX_REVIEW_COMMENT_LENGTH)
    reviewer_id: str
    reviewed_user_id: str
    created_at: Any = None

    @field_validator("rating", mode="before")
    @classmethod
    def rating_must_be_integer(cls, value):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("Rating must be an integer between 1 and 5")
        return value


class Exchange(DocumentModel):
    product_id: str
    product_name: str
    requester_id: str
    owner_id: str
    status: ExchangeStatus = ExchangeStatus.PENDING
    chat_id: str
    offer: Offer
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    rejection_reason: str | None = None
    reviews: dict[str, Review] = Field(default_factory=dict)

    @model_validator(mode="after")
    def parties_must_differ(self):
        if self.requester_id == self.owner_id:
            raise ValueError("An exchange needs two different users")
        return self

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.owner_id)

    def counterparty(self, user_id: str) -> str:
        return self.owner_id if user_id == self.requester_id else self.requester_id


class ExchangePatch(BaseModel):
    """
    Fields merged into an exchange by a partial update.

    Only fields explicitly set are written; the ``touch_*`` flags stamp the
    corresponding timestamps with the store's clock.
    """

    status: ExchangeStatus | None = None
    rejection_reason: str | None = None
    touch_updated_at: bool = False
    touch_completed_at: bool = False

    def to_update(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if self.status is not None:
            fields["status"] = self.status.value
        if self.rejection_reason is not None:
            fields["rejectionReason"] = self.rejection_reason
        if self.touch_updated_at:
            fields["updatedAt"] = SERVER_TIMESTAMP
        if self.touch_completed_at:
            fields["completedAt"] = SERVER_TIMESTAMP
        return fields


def review_update(review: Review) -> dict[str, Any]:
    """Partial update writing one reviewer's entry of the reviews map."""
    document = review.model_dump(by_alias=True)
    if document.get("createdAt") is None:
        document["createdAt"] = SERVER_TIMESTAMP
    return {f"reviews.{review.reviewer_id}": document}
