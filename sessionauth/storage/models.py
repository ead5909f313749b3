from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

PRINCIPAL_ATTR = "principal"
CSRF_TOKEN_ATTR = "csrf_token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class Principal:
    name: str
    authorities: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"name": self.name, "authorities": list(self.authorities)}

    @classmethod
    def from_dict(cls, data: dict) -> "Principal":
        return cls(name=data["name"], authorities=tuple(data.get("authorities") or ()))


@dataclass
class Session:
    id: str
    created_at: datetime
    last_accessed_at: datetime
    max_inactive_seconds: int = 30 * 60
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        max_inactive_seconds: int = 30 * 60,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> "Session":
        now = _utcnow()
        return cls(
            id=new_session_id(),
            created_at=now,
            last_accessed_at=now,
            max_inactive_seconds=max_inactive_seconds,
            attributes=dict(attributes or {}),
        )

    @property
    def expires_at(self) -> datetime:
        return self.last_accessed_at + timedelta(seconds=self.max_inactive_seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    @property
    def principal(self) -> Optional[Principal]:
        raw = self.attributes.get(PRINCIPAL_ATTR)
        if isinstance(raw, Principal):
            return raw
        if isinstance(raw, dict) and raw.get("name"):
            return Principal.from_dict(raw)
        return None

    @property
    def csrf_token(self) -> Optional[str]:
        raw = self.attributes.get(CSRF_TOKEN_ATTR)
        if isinstance(raw, str) and raw:
            return raw
        return None

    def to_dict(self) -> dict:
        attributes = dict(self.attributes)
        principal = attributes.get(PRINCIPAL_ATTR)
        if isinstance(principal, Principal):
            attributes[PRINCIPAL_ATTR] = principal.to_dict()
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "max_inactive_seconds": self.max_inactive_seconds,
            "attributes": attributes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            last_accessed_at=datetime.fromisoformat(data["last_accessed_at"]),
            max_inactive_seconds=int(data.get("max_inactive_seconds", 30 * 60)),
            attributes=dict(data.get("attributes") or {}),
        )
