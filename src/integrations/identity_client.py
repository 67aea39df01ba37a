"""Identity provider client: token verification and admin operations."""

import logging
from dataclasses import dataclass

import jwt
import requests

from src.config import APP_CHECK_SECRET, IDENTITY_CONFIG

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class InvalidTokenError(IdentityError):
    pass


class IdentityUserNotFoundError(IdentityError):
    pass


@dataclass
class Caller:
    """Verified identity of the user behind a request."""

    uid: str
    email: str | None = None
    email_verified: bool = False


class IdentityProvider:
    def __init__(self, config: dict | None = None, app_check_secret: str | None = None, session=None):
        self.config = {**IDENTITY_CONFIG, **(config or {})}
        self.app_check_secret = APP_CHECK_SECRET if app_check_secret is None else app_check_secret
        self.session = session or requests.Session()

    def verify_token(self, token: str) -> Caller:
        """
        Verify an ID token and return its caller.

        Raises:
            InvalidTokenError: If the token is malformed, expired or carries no user id
        """
        options = {"verify_aud": self.config["audience"] is not None}
        try:
            claims = jwt.decode(
                token,
                self.config["jwt_secret"],
                algorithms=[self.config["jwt_algorithm"]],
                audience=self.config["audience"],
                options=options,
            )
        except jwt.PyJWTError as e:
            raise InvalidTokenError(str(e)) from e

        uid = claims.get("uid") or claims.get("sub")
        if not uid:
            raise InvalidTokenError("Token carries no user id")
        return Caller(uid=uid, email=claims.get("email"), email_verified=bool(claims.get("email_verified", False)))

    def verify_app_check(self, token: str) -> bool:
        if not token or not self.app_check_secret:
            return False
        try:
            jwt.decode(token, self.app_check_secret, algorithms=["HS256"], options={"verify_aud": False})
        except jwt.PyJWTError as e:
            logger.warning(f"Rejected app attestation token: {e}")
            return False
        return True

    def _admin_url(self, uid: str) -> str:
        return f"{self.config['admin_url'].rstrip('/')}/users/{uid}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config['admin_token']}"}

    def get_user(self, uid: str) -> dict:
        """Fetch the account record ({uid, email, ...}) for a user."""
        try:
            response = self.session.get(self._admin_url(uid), headers=self._headers(), timeout=self.config["timeout"])
        except requests.RequestException as e:
            raise IdentityError(f"Identity provider unreachable: {e}") from e
        if response.status_code == 404:
            raise IdentityUserNotFoundError(uid)
        if not response.ok:
            raise IdentityError(f"Failed to fetch user {uid}: HTTP {response.status_code}")
        return response.json()

    def delete_user(self, uid: str) -> None:
        """Delete an account; an already deleted account counts as success."""
        try:
            response = self.session.delete(self._admin_url(uid), headers=self._headers(), timeout=self.config["timeout"])
        except requests.RequestException as e:
            raise IdentityError(f"Identity provider unreachable: {e}") from e
        if response.status_code == 404:
            logger.info(f"Identity account {uid} already deleted")
            return
        if not response.ok:
            raise IdentityError(f"Failed to delete user {uid}: HTTP {response.status_code}")
