from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries the HTTP status and the stable ``error`` kind rendered
    in ``{"success": false, "error": <kind>, "message": <text>}``:
    - Validation Error (400)
    - Bad Request (400)
    - Unauthorized (401)
    - Access Denied (403)
    - Not Found (404)
    - Conflict (409)
    - Provider Error (502)
    - Server Error (500)
    """

    status_code: int = 400
    error: str = "Validation Error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Missing or malformed input (400)."""
    status_code = 400
    error = "Validation Error"


class BadRequestError(ValidationError):
    """Request is well-formed but cannot be honoured, e.g. an OAuth state mismatch."""
    error = "Bad Request"


class AuthenticationError(ServiceError):
    """Bad credentials or an invalid, expired or revoked token (401)."""
    status_code = 401
    error = "Unauthorized"


class ForbiddenError(ServiceError):
    """Authenticated but not allowed to touch the resource (403)."""
    status_code = 403
    error = "Access Denied"


class NotFoundError(ServiceError):
    status_code = 404
    error = "Not Found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate email (409)."""
    status_code = 409
    error = "Conflict"


class ExternalProviderError(ServiceError):
    """The identity provider failed or returned something unusable."""
    status_code = 502
    error = "Provider Error"


class ServerError(ServiceError):
    status_code = 500
    error = "Server Error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ExternalProviderError",
    "ServerError",
]
