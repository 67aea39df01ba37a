"""Shared fixtures: services wired over the in-memory store with mocked externals."""

from unittest.mock import MagicMock

import pytest

from src.context import build_context
from src.db.memory_store import InMemoryDocumentStore
from src.db.redis_client import RedisClient
from src.integrations.email_client import EmailRelay
from src.integrations.identity_client import IdentityProvider
from src.integrations.storage_client import BlobStore


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def mock_email():
    email = MagicMock(spec=EmailRelay)
    email.send.return_value = "<message-id>"
    return email


@pytest.fixture
def mock_identity():
    identity = MagicMock(spec=IdentityProvider)
    identity.get_user.return_value = {"uid": "unknown", "email": None}
    return identity


@pytest.fixture
def mock_storage():
    storage = MagicMock(spec=BlobStore)
    storage.is_managed_url.side_effect = lambda url: isinstance(url, str) and "firebasestorage" in url
    storage.delete_url.return_value = True
    return storage


@pytest.fixture
def mock_redis():
    redis_client = MagicMock(spec=RedisClient)
    redis_client.rate_limit_check.return_value = True
    return redis_client


@pytest.fixture
def context(store, mock_identity, mock_email, mock_storage, mock_redis):
    return build_context(
        store=store,
        identity=mock_identity,
        email=mock_email,
        storage=mock_storage,
        redis_client=mock_redis,
    )


@pytest.fixture
def users(store):
    """Two users with profiles: alice owns products, bob makes offers."""
    store.set("users", "alice", {"name": "Alice", "email": "alice@example.com"})
    store.set("users", "bob", {"name": "Bob", "email": "bob@example.com"})
    return "alice", "bob"


@pytest.fixture
def notifications_for(store):
    def query(recipient_id, notification_type=None):
        filters = [("recipientId", "==", recipient_id)]
        if notification_type is not None:
            filters.append(("type", "==", notification_type))
        return store.query("notifications", filters)

    return query
