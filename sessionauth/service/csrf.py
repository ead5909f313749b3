"""CSRF token issuance and validation.

The token reaches the browser through a cookie that scripts can read and
comes back in a request header. Browsers attach cookies to cross-site
requests on their own but never attach custom headers, so only a script
running on our origin can echo the value back.
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Request, Response

from sessionauth.logging import get_logger
from sessionauth.service.errors import CsrfMismatchError
from sessionauth.storage.models import CSRF_TOKEN_ATTR, Session

logger = get_logger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

# 32 random bytes, 256 bits of entropy
TOKEN_BYTES = 32


def is_safe_method(method: str) -> bool:
    return method.upper() in SAFE_METHODS


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class CsrfTokenManager:
    def __init__(
        self,
        *,
        cookie_name: str = "XSRF-TOKEN",
        header_name: str = "X-XSRF-TOKEN",
        cookie_secure: bool = False,
    ) -> None:
        self.cookie_name = cookie_name
        self.header_name = header_name
        self.cookie_secure = cookie_secure

    def ensure_token(self, session: Session) -> str:
        """Return the session's token, generating and storing one if absent.

        The caller persists the session.
        """
        token = session.csrf_token
        if token:
            return token
        token = generate_token()
        session.attributes[CSRF_TOKEN_ATTR] = token
        return token

    def rotate_token(self, session: Session) -> str:
        token = generate_token()
        session.attributes[CSRF_TOKEN_ATTR] = token
        return token

    def mirror_to_cookie(
        self, request: Request, response: Response, token: str
    ) -> bool:
        """Set the script-readable token cookie unless the client already holds ``token``."""
        if request.cookies.get(self.cookie_name) == token:
            return False
        response.set_cookie(
            self.cookie_name,
            token,
            path="/",
            httponly=False,
            secure=self.cookie_secure,
            samesite="lax",
        )
        return True

    def validate(self, request: Request, session: Optional[Session]) -> bool:
        if is_safe_method(request.method):
            return True
        header_token = request.headers.get(self.header_name)
        expected = session.csrf_token if session else None
        if not header_token or not expected:
            logger.warning(
                "csrf_mismatch",
                path=request.url.path,
                method=request.method,
                reason="missing_header" if not header_token else "no_session_token",
            )
            raise CsrfMismatchError("missing or invalid CSRF token")
        if not secrets.compare_digest(header_token.encode(), expected.encode()):
            logger.warning(
                "csrf_mismatch",
                path=request.url.path,
                method=request.method,
                reason="stale_or_forged",
            )
            raise CsrfMismatchError("missing or invalid CSRF token")
        return True
