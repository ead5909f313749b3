from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code rendered into the error envelope:
    - validation_error (400)
    - unauthorized (401)
    - invalid_credentials (401)
    - csrf_mismatch (403)
    """

    status_code: int = 400
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


class ValidationError(ServiceError):
    """Malformed or incomplete request (400, or 422 for body validation)."""
    status_code = 400
    error_code = "validation_error"


class UnauthenticatedError(ServiceError):
    """Protected path requested without a principal in the session (401).

    Raised for both "never logged in" and "session expired"; callers see the
    same signal either way.
    """
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(ServiceError):
    """Login rejected (401). The message never says which field was wrong."""
    status_code = 401
    error_code = "invalid_credentials"


class CsrfMismatchError(ServiceError):
    """Mutating request without a header token equal to the session token (403)."""
    status_code = 403
    error_code = "csrf_mismatch"


__all__ = [
    "ServiceError",
    "ValidationError",
    "UnauthenticatedError",
    "InvalidCredentialsError",
    "CsrfMismatchError",
]
