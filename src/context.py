"""Wiring of the store, external clients and services for one process."""

import logging
from dataclasses import dataclass

from src.config import DOCUMENT_STORE
from src.db.document_store import DocumentStore
from src.db.redis_client import RedisClient
from src.db.triggers import TriggerRegistry
from src.integrations.email_client import EmailRelay
from src.integrations.identity_client import IdentityProvider
from src.integrations.storage_client import BlobStore
from src.services.account_service import AccountService
from src.services.chat_service import ChatService
from src.services.contact_service import ContactService
from src.services.exchange_service import ExchangeService
from src.services.notification_service import NotificationService
from src.services.notification_triggers import NotificationTriggers
from src.services.reputation_service import ReputationService
from src.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    store: DocumentStore
    triggers: TriggerRegistry
    identity: IdentityProvider
    users: UserService
    notifications: NotificationService
    chats: ChatService
    exchanges: ExchangeService
    reputation: ReputationService
    notification_triggers: NotificationTriggers
    accounts: AccountService
    contact: ContactService


def create_store(kind: str = DOCUMENT_STORE) -> DocumentStore:
    if kind == "memory":
        from src.db.memory_store import InMemoryDocumentStore

        return InMemoryDocumentStore()
    from src.db.mongodb_client import MongoDBClient

    return MongoDBClient()


def register_triggers(context: AppContext) -> TriggerRegistry:
    triggers = context.triggers
    triggers.on_updated("exchanges", context.reputation.on_exchange_updated)
    triggers.on_updated("users", context.reputation.on_user_updated)
    triggers.on_created("exchanges", context.notification_triggers.on_exchange_created)
    triggers.on_created("chats/{chatId}/messages", context.notification_triggers.on_message_created)
    triggers.on_deleted("products", context.accounts.on_product_deleted)
    return triggers


def build_context(
    store: DocumentStore | None = None,
    identity: IdentityProvider | None = None,
    email: EmailRelay | None = None,
    storage: BlobStore | None = None,
    redis_client: RedisClient | None = None,
    dispatch_triggers: bool | None = None,
) -> AppContext:
    """
    Build the services for a process.

    Stores that deliver change events in-process (the in-memory store) get
    the trigger registry attached; MongoDB delivers them to the separate
    trigger worker instead.
    """
    store = store or create_store()
    identity = identity or IdentityProvider()
    email = email or EmailRelay()
    storage = storage or BlobStore()
    redis_client = redis_client or RedisClient()

    users = UserService(store, identity)
    notifications = NotificationService(store)
    chats = ChatService(store)
    exchanges = ExchangeService(store, chats, notifications, users)
    context = AppContext(
        store=store,
        triggers=TriggerRegistry(),
        identity=identity,
        users=users,
        notifications=notifications,
        chats=chats,
        exchanges=exchanges,
        reputation=ReputationService(store),
        notification_triggers=NotificationTriggers(store, notifications, users, email),
        accounts=AccountService(store, exchanges, notifications, storage, identity),
        contact=ContactService(email, redis_client),
    )
    register_triggers(context)

    if dispatch_triggers is None:
        dispatch_triggers = hasattr(store, "attach_triggers")
    if dispatch_triggers:
        store.attach_triggers(context.triggers)
        logger.info("Triggers dispatched in-process")
    return context
