from __future__ import annotations

from uuid import uuid4

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse

from sessionauth.api.filters import SecurityContext, get_security_context
from sessionauth.api.schemas import (
    MAX_PASSWORD_LENGTH,
    MAX_USERNAME_LENGTH,
    Envelope,
    LoginResult,
    PrincipalResponse,
    ResourceResponse,
    TokenResponse,
)
from sessionauth.logging import get_logger
from sessionauth.service.errors import CsrfMismatchError, UnauthenticatedError, ValidationError
from sessionauth.service.identity import Credentials
from sessionauth.storage.models import Principal

logger = get_logger(__name__)

router = APIRouter()


def get_principal(ctx: SecurityContext = Depends(get_security_context)) -> Principal:
    principal = ctx.principal
    if principal is None:
        raise UnauthenticatedError("authentication required")
    return principal


@router.get("/user", response_model=PrincipalResponse, tags=["auth"])
async def current_user(principal: Principal = Depends(get_principal)):
    """Who am I. The client's only source of truth for its authenticated flag."""
    return PrincipalResponse.from_principal(principal)


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(
    username: str = Form(..., max_length=MAX_USERNAME_LENGTH),
    password: str = Form(..., max_length=MAX_PASSWORD_LENGTH),
    ctx: SecurityContext = Depends(get_security_context),
):
    """Authenticate with a URL-encoded username/password form.

    Success moves the principal into a new session id and a new CSRF token;
    both cookies are re-issued on the way out.

    Raises:
        400: If username or password is blank
        401: If credentials are invalid (generic message)
        403: If the CSRF header is missing/stale or the session was superseded
    """
    if ctx.session is None:
        raise CsrfMismatchError("missing or invalid CSRF token")
    if not username.strip() or not password:
        raise ValidationError("username and password are required")
    new_session = ctx.runtime.auth.login(
        ctx.session, Credentials(username=username, password=password)
    )
    ctx.establish(new_session)
    principal = new_session.principal
    return Envelope(
        status="ok",
        data=LoginResult(name=principal.name, authorities=list(principal.authorities)),
    )


@router.post("/logout", response_model=Envelope, tags=["auth"])
async def logout(ctx: SecurityContext = Depends(get_security_context)):
    ctx.runtime.auth.logout(ctx.session)
    ctx.clear()
    return Envelope(status="ok", data={"message": "logged out"})


@router.get("/resource", response_model=ResourceResponse, tags=["resource"])
async def resource(principal: Principal = Depends(get_principal)):
    return ResourceResponse(id=str(uuid4()), content="Hello World")


@router.get("/token", response_model=TokenResponse, tags=["auth"])
async def session_token(
    principal: Principal = Depends(get_principal),
    ctx: SecurityContext = Depends(get_security_context),
):
    """Expose the session id for backends reading it from the session header."""
    logger.info("session_token_issued", user=principal.name)
    return TokenResponse(token=ctx.session.id)


_PAGES = {
    "index.html": "<h1>Demo</h1><div id=\"app\">Loading...</div>",
    "home.html": "<h1>Home</h1><p>Log in to see the greeting.</p>",
    "login.html": "<h1>Login</h1><div id=\"login-form\"></div>",
}


def _page(name: str) -> HTMLResponse:
    return HTMLResponse(f"<!doctype html><html><body>{_PAGES[name]}</body></html>")


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
@router.get("/index.html", response_class=HTMLResponse, include_in_schema=False)
async def index_page() -> HTMLResponse:
    return _page("index.html")


@router.get("/home.html", response_class=HTMLResponse, include_in_schema=False)
async def home_page() -> HTMLResponse:
    return _page("home.html")


@router.get("/login.html", response_class=HTMLResponse, include_in_schema=False)
async def login_page() -> HTMLResponse:
    return _page("login.html")
