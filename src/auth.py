"""Request authentication dependencies for the callable endpoints."""

import logging

from fastapi import Depends, Header, HTTPException, Request

from src.config import ENFORCE_APP_CHECK, REQUIRE_VERIFIED_EMAIL
from src.context import AppContext
from src.errors import AuthenticationError, AuthorizationError, ServiceError
from src.integrations.identity_client import Caller, InvalidTokenError

logger = logging.getLogger(__name__)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _rejected(error: ServiceError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def require_app_check(
    x_app_check: str | None = Header(None),
    context: AppContext = Depends(get_context),
) -> None:
    """Reject requests that do not come from an attested app instance."""
    if not ENFORCE_APP_CHECK:
        return
    if not context.identity.verify_app_check(x_app_check):
        raise _rejected(AuthenticationError("App attestation failed"))


def get_optional_caller(
    authorization: str | None = Header(None),
    context: AppContext = Depends(get_context),
    _: None = Depends(require_app_check),
) -> Caller | None:
    token = _bearer_token(authorization)
    if token is None:
        return None
    try:
        return context.identity.verify_token(token)
    except InvalidTokenError as e:
        logger.warning(f"Rejected ID token: {e}")
        raise _rejected(AuthenticationError("Invalid authentication token"))


def get_caller(caller: Caller | None = Depends(get_optional_caller)) -> Caller:
    if caller is None:
        raise _rejected(AuthenticationError("Authentication required"))
    return caller


def get_verified_caller(caller: Caller = Depends(get_caller)) -> Caller:
    if REQUIRE_VERIFIED_EMAIL and not caller.email_verified:
        raise _rejected(AuthorizationError("Email verification required"))
    return caller
