"""Client-side auth controller for a single-page app talking to the service.

``AuthState`` is the one place the ``authenticated`` flag lives. It is handed
to every component that renders protected content, and it only changes after
a server round-trip has answered.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, List, Optional

import httpx

from sessionauth.logging import get_logger

logger = get_logger(__name__)

LOGIN_ERROR_MESSAGE = "There was a problem logging in. Please try again."
XHR_HEADERS = {"X-Requested-With": "XMLHttpRequest"}


@dataclass(frozen=True)
class AuthSnapshot:
    authenticated: bool = False
    username: Optional[str] = None
    error: Optional[str] = None


Listener = Callable[[AuthSnapshot], None]


class AuthState:
    """Observable holder for the client's authentication state."""

    def __init__(self) -> None:
        self._snapshot = AuthSnapshot()
        self._listeners: List[Listener] = []

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def authenticated(self) -> bool:
        return self._snapshot.authenticated

    @property
    def username(self) -> Optional[str]:
        return self._snapshot.username

    @property
    def error(self) -> Optional[str]:
        return self._snapshot.error

    def update(self, **changes) -> AuthSnapshot:
        new = replace(self._snapshot, **changes)
        if new == self._snapshot:
            return new
        self._snapshot = new
        for listener in list(self._listeners):
            listener(new)
        return new

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class AuthController:
    def __init__(
        self,
        client: httpx.AsyncClient,
        state: AuthState,
        *,
        csrf_cookie_name: str = "XSRF-TOKEN",
        csrf_header_name: str = "X-XSRF-TOKEN",
        user_path: str = "/user",
        login_path: str = "/login",
        logout_path: str = "/logout",
        bootstrap_path: str = "/",
    ) -> None:
        self.client = client
        self.state = state
        self.csrf_cookie_name = csrf_cookie_name
        self.csrf_header_name = csrf_header_name
        self.user_path = user_path
        self.login_path = login_path
        self.logout_path = logout_path
        self.bootstrap_path = bootstrap_path

    def _csrf_token(self) -> Optional[str]:
        return self.client.cookies.get(self.csrf_cookie_name)

    async def ensure_csrf_cookie(self) -> Optional[str]:
        """Fetch a safe page once if no token cookie has been handed out yet."""
        token = self._csrf_token()
        if token:
            return token
        await self.client.get(self.bootstrap_path, headers=XHR_HEADERS)
        return self._csrf_token()

    async def _mutating_headers(self) -> dict:
        headers = dict(XHR_HEADERS)
        token = await self.ensure_csrf_cookie()
        if token:
            headers[self.csrf_header_name] = token
        return headers

    async def probe(self) -> bool:
        """Ask the server who we are; the answer replaces whatever was known."""
        try:
            response = await self.client.get(self.user_path, headers=XHR_HEADERS)
        except httpx.HTTPError as exc:
            logger.warning("auth_probe_failed", error=str(exc))
            self.state.update(authenticated=False, username=None)
            return False
        name = None
        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict) and isinstance(payload.get("name"), str):
                name = payload["name"]
            else:
                logger.warning("auth_probe_unexpected_body", status_code=response.status_code)
        self.state.update(authenticated=bool(name), username=name)
        return bool(name)

    async def login(self, username: str, password: str) -> bool:
        """Submit credentials, then re-probe.

        The login response status is not trusted on its own: depending on
        server configuration success and failure can both come back as a
        redirect, so the identity probe decides.
        """
        headers = await self._mutating_headers()
        try:
            await self.client.post(
                self.login_path,
                data={"username": username, "password": password},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("auth_login_request_failed", error=str(exc))
        authenticated = await self.probe()
        self.state.update(error=None if authenticated else LOGIN_ERROR_MESSAGE)
        return authenticated

    async def logout(self) -> None:
        headers = await self._mutating_headers()
        try:
            response = await self.client.post(self.logout_path, headers=headers)
            if response.status_code >= 400:
                logger.warning("auth_logout_rejected", status_code=response.status_code)
        except httpx.HTTPError as exc:
            logger.warning("auth_logout_request_failed", error=str(exc))
        self.state.update(authenticated=False, username=None, error=None)
