from __future__ import annotations

from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from sessionauth.storage.models import Principal

# Stable error codes returned in the error envelope
_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "invalid_credentials",
    "csrf_mismatch",
    "forbidden",
    "not_found",
    "validation_error",
    "server_error",
})

MAX_USERNAME_LENGTH = 256
MAX_PASSWORD_LENGTH = 1024


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class PrincipalResponse(BaseModel):
    name: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(name=principal.name)


class LoginResult(BaseModel):
    name: str
    authorities: List[str] = Field(default_factory=list)


class ResourceResponse(BaseModel):
    id: str
    content: str


class TokenResponse(BaseModel):
    token: str
