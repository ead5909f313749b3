from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from sessionauth.logging import get_logger
from sessionauth.storage.models import Principal

logger = get_logger(__name__)

DEFAULT_AUTHORITIES = ("ROLE_USER",)

_AUTHORITY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class IdentityProvider(Protocol):
    def authenticate(self, credentials: Credentials) -> Optional[Principal]: ...


class InMemoryIdentityProvider:
    """Username/password accounts held in process, hashed with argon2id."""

    def __init__(self) -> None:
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self._accounts: Dict[str, Tuple[str, Tuple[str, ...]]] = {}
        # Verified against when the username is unknown so both failure paths cost the same
        self._dummy_hash = self._pwd_hasher.hash("not-a-real-password")

    @classmethod
    def from_entries(cls, entries: Iterable[str]) -> "InMemoryIdentityProvider":
        """Build from ``name:password[:ROLE|ROLE]`` entries."""
        provider = cls()
        for entry in entries:
            name, password, authorities = _parse_account_entry(entry)
            provider.add_user(name, password, authorities)
        return provider

    def add_user(
        self, username: str, password: str, authorities: Iterable[str] = DEFAULT_AUTHORITIES
    ) -> None:
        if password.startswith("$argon2"):
            digest = password
        else:
            digest = self.hash_password(password)
        self._accounts[username] = (digest, tuple(authorities) or DEFAULT_AUTHORITIES)

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def authenticate(self, credentials: Credentials) -> Optional[Principal]:
        account = self._accounts.get(credentials.username)
        stored_hash = account[0] if account else self._dummy_hash
        try:
            verified = self._pwd_hasher.verify(stored_hash, credentials.password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            verified = False
        if not account or not verified:
            logger.info("credential_check_failed", known_user=account is not None)
            return None
        return Principal(name=credentials.username, authorities=account[1])


def _parse_account_entry(entry: str) -> Tuple[str, str, Tuple[str, ...]]:
    name, sep, rest = entry.partition(":")
    if not sep or not name:
        raise ValueError(f"invalid account entry for {name or '<empty>'!r}; expected name:password")
    # argon2 hashes contain '$' but never ':'; roles follow the last ':'
    password, sep, roles = rest.rpartition(":")
    if not sep:
        password, roles = rest, ""
    if not password:
        raise ValueError(f"invalid account entry for {name!r}; password is empty")
    authorities = tuple(r.strip() for r in roles.split("|") if r.strip())
    # A password containing ':' must be followed by an explicit roles segment
    if any(not _AUTHORITY_RE.match(a) for a in authorities):
        raise ValueError(
            f"invalid account entry for {name!r}; roles must be upper-case names like ROLE_USER "
            "(passwords containing ':' need an explicit roles segment)"
        )
    return name.strip(), password, authorities or DEFAULT_AUTHORITIES
