"""
core/errors.py -- Typed failures raised by the account service.

Every component raises one of these instead of returning error values. The
HTTP layer (api/main.py) owns the single exception handler that maps them to
the {"error": {"code", "message"}} envelope, so auth/ never imports FastAPI
to signal a failure.

status_code and code are class attributes: the type alone decides the HTTP
status, the instance only carries the human-readable message.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for failures that map to a client-visible error response."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or missing input, a uniqueness violation, or mismatched confirmation fields."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class AuthenticationError(AppError):
    """Wrong credentials. Never says whether the account exists."""

    status_code = 401
    code = "bad_credentials"
    default_message = "Invalid email or password"


class InvalidSession(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Please login to access this resource"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to access this resource"


class NotFoundError(AppError):
    """Entity absent. Only used where existence is not a secret."""

    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class ExpiredOrInvalidToken(AppError):
    """Reset token unknown or past its expiry. The two cases are deliberately collapsed."""

    status_code = 400
    code = "invalid_reset_token"
    default_message = "Reset Password token is invalid or has been expired"


class InternalError(AppError):
    """Crypto or transport failure. The message is logged, never sent to the client."""

    status_code = 500
    code = "internal_error"
