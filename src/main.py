"""FastAPI application exposing the exchange callable endpoints."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from src.auth import get_caller, get_context, get_optional_caller, get_verified_caller
from src.context import AppContext, build_context
from src.errors import ServiceError
from src.integrations.identity_client import Caller
from src.models.exchanges import Offer

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context()
    yield


# Create FastAPI app
app = FastAPI(
    title="Garden Exchange API",
    description="Exchange lifecycle, chat, notifications and reputation for a community marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models for request/response
class OfferRequest(BaseModel):
    product_id: str
    product_name: str
    owner_id: str
    offer: Offer


class StatusRequest(BaseModel):
    status: str


class ReviewRequest(BaseModel):
    rating: int
    comment: Optional[str] = None


class MessageRequest(BaseModel):
    text: str


class ContactRequest(BaseModel):
    name: str
    email: str
    message: str
    subject: Optional[str] = None


def _service_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "Garden Exchange API"}


# Exchange Endpoints
@app.post("/api/offers")
def create_offer(
    request: OfferRequest,
    caller: Caller = Depends(get_verified_caller),
    context: AppContext = Depends(get_context),
):
    """Create an offer (exchange + chat) on a product."""
    try:
        exchange_id = context.exchanges.create_offer(
            product_id=request.product_id,
            product_name=request.product_name,
            requester_id=caller.uid,
            owner_id=request.owner_id,
            offer=request.offer,
        )
        return {"success": True, "exchangeId": exchange_id}
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error creating offer: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/exchanges")
def list_exchanges(caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)):
    """List the caller's exchanges, most recent activity first."""
    try:
        return {"exchanges": context.exchanges.list_user_exchanges(caller.uid)}
    except Exception as e:
        logger.error(f"Error listing exchanges: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/exchanges/pending")
def has_pending_exchange(
    product_id: str = Query(..., alias="productId", min_length=1),
    caller: Caller = Depends(get_caller),
    context: AppContext = Depends(get_context),
):
    """Check whether the caller already has a pending offer on a product."""
    try:
        return {"hasPendingExchange": context.exchanges.has_pending_exchange(caller.uid, product_id)}
    except Exception as e:
        logger.error(f"Error checking pending exchange: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/exchanges/{exchange_id}")
def get_exchange(exchange_id: str, caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)):
    """Get one exchange the caller takes part in."""
    try:
        return context.exchanges.get_exchange(exchange_id, caller.uid).to_response()
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error getting exchange {exchange_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.patch("/api/exchanges/{exchange_id}/status")
def update_exchange_status(
    exchange_id: str,
    request: StatusRequest,
    caller: Caller = Depends(get_verified_caller),
    context: AppContext = Depends(get_context),
):
    """Accept, reject or complete an exchange."""
    try:
        exchange = context.exchanges.update_status(exchange_id, request.status, caller.uid)
        return {"success": True, "status": exchange.status.value}
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error updating exchange {exchange_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/exchanges/{exchange_id}/reviews")
def submit_review(
    exchange_id: str,
    request: ReviewRequest,
    caller: Caller = Depends(get_verified_caller),
    context: AppContext = Depends(get_context),
):
    """Review the other party of a completed exchange."""
    try:
        review = context.exchanges.submit_review(exchange_id, caller.uid, request.rating, request.comment)
        return {"success": True, "review": review.model_dump(by_alias=True, mode="json")}
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error submitting review on {exchange_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# Chat Endpoints
@app.post("/api/chats/{chat_id}/messages")
def send_message(
    chat_id: str,
    request: MessageRequest,
    caller: Caller = Depends(get_verified_caller),
    context: AppContext = Depends(get_context),
):
    """Send a chat message."""
    try:
        message_id = context.chats.send_message(chat_id, request.text, caller.uid)
        return {"success": True, "messageId": message_id}
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error sending message in chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/chats/{chat_id}/messages")
def list_messages(chat_id: str, caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)):
    """Messages of a chat in sending order."""
    try:
        messages = context.chats.list_messages(chat_id, caller.uid)
        return {"messages": [m.to_response() for m in messages]}
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error listing messages in chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# Notification Endpoints
@app.get("/api/notifications")
def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    caller: Caller = Depends(get_caller),
    context: AppContext = Depends(get_context),
):
    """The caller's notifications, newest first."""
    try:
        notifications = context.notifications.list_for_user(caller.uid, unread_only=unread_only)
        return {"notifications": [n.to_response() for n in notifications]}
    except Exception as e:
        logger.error(f"Error listing notifications: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/notifications/read-all")
def mark_all_notifications_read(caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)):
    """Mark every notification of the caller as read."""
    try:
        updated = context.notifications.mark_all_read(caller.uid)
        return {"success": True, "updated": updated}
    except Exception as e:
        logger.error(f"Error marking notifications read: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str, caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)
):
    """Mark one notification as read."""
    try:
        context.notifications.mark_read(notification_id, caller.uid)
        return {"success": True}
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error marking notification {notification_id} read: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.delete("/api/notifications")
def clear_notifications(caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)):
    """Delete all of the caller's notifications."""
    try:
        deleted = context.notifications.clear_all(caller.uid)
        return {"success": True, "deleted": deleted}
    except Exception as e:
        logger.error(f"Error clearing notifications: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# Contact Endpoint
@app.post("/api/contact")
def submit_contact_form(
    request: ContactRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    context: AppContext = Depends(get_context),
):
    """Send a message to the site administrators."""
    try:
        return context.contact.submit_contact_form(
            name=request.name,
            email=request.email,
            message=request.message,
            subject=request.subject,
            caller_id=caller.uid if caller else None,
        )
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error in contact form: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# Account Endpoint
@app.delete("/api/account")
def delete_user_account(caller: Caller = Depends(get_caller), context: AppContext = Depends(get_context)):
    """Delete the caller's own account. The user id always comes from the token."""
    try:
        return context.accounts.delete_user_account(caller.uid)
    except ServiceError as e:
        raise _service_error(e)
    except Exception as e:
        logger.error(f"Error deleting account {caller.uid}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
