"""Error taxonomy shared by services and endpoints."""


class ServiceError(Exception):
    """Base class for errors surfaced to callers of the entrypoints."""

    status_code = 500
    code = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400
    code = "invalid-argument"


class AuthenticationError(ServiceError):
    status_code = 401
    code = "unauthenticated"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "permission-denied"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not-found"


class ConflictError(ServiceError):
    """Raised for invalid status transitions and duplicate pending offers."""

    status_code = 409
    code = "failed-precondition"


class RateLimitError(ServiceError):
    status_code = 429
    code = "resource-exhausted"


class InternalError(ServiceError):
    status_code = 500
    code = "internal"
