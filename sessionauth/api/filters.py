"""Per-request security filter chain.

Every request runs the guards in ``DEFAULT_GUARDS`` order before reaching a
route. A guard either returns (pass through) or raises a ``ServiceError``
which short-circuits the chain. Whatever the outcome, the response leaves
with a session cookie and an ``XSRF-TOKEN`` cookie the client can use for its
next mutating request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from fastapi import Request, Response

from sessionauth.api.error_handling import service_error_response
from sessionauth.config import Settings
from sessionauth.logging import get_logger
from sessionauth.service.errors import ServiceError, UnauthenticatedError
from sessionauth.service.runtime import Runtime, get_runtime
from sessionauth.storage.models import Principal, Session

logger = get_logger(__name__)


@dataclass
class SecurityContext:
    request: Request
    runtime: Runtime
    session: Optional[Session] = None
    incoming_session_id: Optional[str] = None
    via_header: bool = False

    @property
    def settings(self) -> Settings:
        return self.runtime.settings

    @property
    def principal(self) -> Optional[Principal]:
        return self.session.principal if self.session else None

    def establish(self, session: Session) -> None:
        """Adopt a new session (login rotation) for the rest of the request."""
        self.session = session

    def clear(self) -> None:
        """Drop the session after the handler invalidated it (logout)."""
        self.session = None


Guard = Callable[[SecurityContext], Awaitable[None]]


def path_matches(path: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        if pattern.endswith("/**") or pattern.endswith("/*"):
            prefix = pattern.rsplit("/", 1)[0]
            if path == prefix or path.startswith(prefix + "/"):
                return True
        elif path == pattern:
            return True
    return False


async def resolve_session(ctx: SecurityContext) -> None:
    """Load the session named by the session header or cookie; never creates one."""
    settings = ctx.settings
    header_id = ctx.request.headers.get(settings.session_header_name)
    session_id = header_id or ctx.request.cookies.get(settings.session_cookie_name)
    ctx.via_header = bool(header_id)
    ctx.incoming_session_id = session_id
    if session_id:
        ctx.session = ctx.runtime.store.get(session_id)


async def csrf_guard(ctx: SecurityContext) -> None:
    ctx.runtime.csrf.validate(ctx.request, ctx.session)


async def authorization_guard(ctx: SecurityContext) -> None:
    if path_matches(ctx.request.url.path, ctx.settings.permitted_paths):
        return
    if ctx.principal is None:
        raise UnauthenticatedError("authentication required")


DEFAULT_GUARDS: Sequence[Guard] = (resolve_session, csrf_guard, authorization_guard)


def _write_session_id(ctx: SecurityContext, response: Response, session: Session) -> None:
    settings = ctx.settings
    if ctx.via_header:
        response.headers[settings.session_header_name] = session.id
        return
    response.set_cookie(
        settings.session_cookie_name,
        session.id,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def issue_token(ctx: SecurityContext, response: Response) -> None:
    """Make sure the response carries a session and the token stored in it."""
    runtime = ctx.runtime
    session = ctx.session
    if session is None:
        # Lazy anonymous session: the token has to live somewhere server-side
        session = runtime.store.create()
        ctx.session = session
        logger.debug("anonymous_session_created", path=ctx.request.url.path)
    had_token = session.csrf_token is not None
    token = runtime.csrf.ensure_token(session)
    if not had_token:
        runtime.store.save(session)
    runtime.csrf.mirror_to_cookie(ctx.request, response, token)
    if session.id != ctx.incoming_session_id:
        _write_session_id(ctx, response, session)


class SecurityFilterChain:
    def __init__(self, guards: Sequence[Guard] = DEFAULT_GUARDS) -> None:
        self.guards = tuple(guards)

    async def __call__(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        ctx = SecurityContext(request=request, runtime=get_runtime())
        request.state.security = ctx
        try:
            for guard in self.guards:
                await guard(ctx)
        except ServiceError as exc:
            response = service_error_response(request, exc, ctx.settings)
        else:
            response = await call_next(request)
        issue_token(ctx, response)
        return response


def get_security_context(request: Request) -> SecurityContext:
    ctx = getattr(request.state, "security", None)
    if ctx is None:
        raise RuntimeError("security filter chain is not installed")
    return ctx
