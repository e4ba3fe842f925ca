from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    The set is closed: every failure leaving the service layer is one of the
    subclasses below, each with a fixed HTTP status and stable error code:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - validation_error (422)
    - bad_request (400)
    - server_error (500)
    """

    status_code: int = 422
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationFailed(ServiceError):
    """Input is well-formed JSON but violates a business rule (422)."""
    status_code = 422
    error_code = "validation_error"


class BadRequestError(ServiceError):
    """Request is missing something the route cannot work without (400)."""
    status_code = 400
    error_code = "bad_request"


class AuthenticationError(ServiceError):
    """Missing, invalid or expired credential (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Authenticated but not allowed, including CSRF failures (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Duplicate username or email (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Storage or crypto failure; details stay in the logs (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationFailed",
    "BadRequestError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
]
