from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from sessionauth.logging import get_logger
from sessionauth.service.csrf import CsrfTokenManager
from sessionauth.service.errors import CsrfMismatchError, InvalidCredentialsError
from sessionauth.service.identity import Credentials, IdentityProvider
from sessionauth.storage.models import PRINCIPAL_ATTR, Principal, Session

logger = get_logger(__name__)


class SessionStore(Protocol):
    def create(self, attributes: Optional[Dict[str, Any]] = None) -> Session: ...

    def get(self, session_id: str) -> Optional[Session]: ...

    def save(self, session: Session) -> None: ...

    def invalidate(self, session_id: str) -> None: ...

    def rotate(
        self, old_session_id: str, attributes: Optional[Dict[str, Any]] = None
    ) -> Optional[Session]: ...

    def verify_connection(self) -> None: ...


class AuthService:
    """Anonymous/Authenticated transitions for a session.

    Login always moves the principal into a freshly minted session id so an
    identifier planted before authentication is worthless afterwards.
    """

    def __init__(
        self,
        store: SessionStore,
        identity: IdentityProvider,
        csrf: CsrfTokenManager,
    ) -> None:
        self.store = store
        self.identity = identity
        self.csrf = csrf
        self.logger = logger

    def current_principal(self, session: Optional[Session]) -> Optional[Principal]:
        if session is None:
            return None
        return session.principal

    def login(self, session: Session, credentials: Credentials) -> Session:
        """Authenticate ``credentials`` and return the rotated session.

        Raises:
            InvalidCredentialsError: credentials rejected; ``session`` untouched.
            CsrfMismatchError: ``session`` was rotated or invalidated by a
                concurrent request before this one could rotate it.
        """
        principal = self.identity.authenticate(credentials)
        if principal is None:
            raise InvalidCredentialsError("invalid username or password")

        attributes = {
            k: v for k, v in session.attributes.items() if k != PRINCIPAL_ATTR
        }
        attributes[PRINCIPAL_ATTR] = principal
        new_session = self.store.rotate(session.id, attributes)
        if new_session is None:
            self.logger.warning("login_session_superseded", user=principal.name)
            raise CsrfMismatchError("session is no longer valid; reload and retry")
        # The old token was exposed to the anonymous session; never carry it over
        self.csrf.rotate_token(new_session)
        self.store.save(new_session)
        self.logger.info(
            "login_succeeded",
            user=principal.name,
            authorities=list(principal.authorities),
        )
        return new_session

    def logout(self, session: Optional[Session]) -> None:
        if session is None:
            return
        principal = session.principal
        self.store.invalidate(session.id)
        self.logger.info("logout", user=principal.name if principal else None)
