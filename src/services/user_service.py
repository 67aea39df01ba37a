"""Lookups on user profiles used by notifications and emails."""

import logging

from src.db.document_store import DocumentStore
from src.integrations.identity_client import IdentityError, IdentityProvider
from src.models.users import UserProfile
from src.utils.text import DEFAULT_DISPLAY_NAME

logger = logging.getLogger(__name__)

COLLECTION = "users"


class UserService:
    def __init__(self, store: DocumentStore, identity: IdentityProvider | None = None):
        self.store = store
        self.identity = identity

    def get_profile(self, user_id: str) -> UserProfile | None:
        document = self.store.get(COLLECTION, user_id)
        if not document.exists:
            return None
        return UserProfile.from_document(document)

    def get_display_name(self, user_id: str) -> str:
        try:
            profile = self.get_profile(user_id)
        except Exception as e:
            logger.error(f"Error fetching user name for {user_id}: {e}")
            return DEFAULT_DISPLAY_NAME
        if profile is None or not profile.name:
            return DEFAULT_DISPLAY_NAME
        return profile.name

    def get_email(self, user_id: str, profile: UserProfile | None = None) -> str | None:
        """Email from the profile, falling back to the identity provider's record."""
        if profile is not None and profile.email:
            return profile.email
        if self.identity is None:
            return None
        try:
            return self.identity.get_user(user_id).get("email")
        except IdentityError as e:
            logger.error(f"Error fetching identity record for user {user_id}: {e}")
            return None
