from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis import Redis

from sessionauth.logging import get_logger
from sessionauth.storage.models import Session

logger = get_logger(__name__)


class RedisSessionStore:
    """Session store shared by every process pointed at the same Redis.

    Each session is one JSON document whose key TTL is the idle timeout;
    reading a session slides the TTL forward.
    """

    KEY_PREFIX = "sessionauth:session:"

    # Atomic delete-old + create-new. Returns 0 when the old session is gone,
    # so only one of several concurrent rotations of the same session wins.
    _ROTATE_SCRIPT = """
local old_key = KEYS[1]
local new_key = KEYS[2]
if redis.call('EXISTS', old_key) == 0 then
  return 0
end
redis.call('DEL', old_key)
redis.call('SET', new_key, ARGV[1], 'EX', tonumber(ARGV[2]))
return 1
"""

    def __init__(
        self,
        redis_url: str,
        *,
        max_inactive_seconds: int = 30 * 60,
        socket_timeout: float = 5.0,
        client: Optional[Redis] = None,
    ) -> None:
        self.redis_url = redis_url
        self.max_inactive_seconds = max_inactive_seconds
        self.client = client or Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._rotate = self.client.register_script(self._ROTATE_SCRIPT)

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    @staticmethod
    def _dump(session: Session) -> str:
        return json.dumps(session.to_dict(), separators=(",", ":"))

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        self.client.ping()

    def create(self, attributes: Optional[Dict[str, Any]] = None) -> Session:
        sess = Session.new(self.max_inactive_seconds, attributes)
        self.client.set(self._key(sess.id), self._dump(sess), ex=self.max_inactive_seconds, nx=True)
        return sess

    def get(self, session_id: str) -> Optional[Session]:
        if not session_id:
            return None
        key = self._key(session_id)
        pipe = self.client.pipeline()
        pipe.get(key)
        pipe.expire(key, self.max_inactive_seconds)
        raw, _ = pipe.execute()
        if not raw:
            return None
        try:
            sess = Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("session_decode_failed", session_id=session_id, error=str(exc))
            self.client.delete(key)
            return None
        sess.last_accessed_at = datetime.now(timezone.utc)
        return sess

    def save(self, session: Session) -> None:
        # XX: never resurrect a session that was invalidated mid-request
        self.client.set(
            self._key(session.id),
            self._dump(session),
            ex=session.max_inactive_seconds,
            xx=True,
        )

    def invalidate(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))

    def rotate(
        self, old_session_id: str, attributes: Optional[Dict[str, Any]] = None
    ) -> Optional[Session]:
        sess = Session.new(self.max_inactive_seconds, attributes)
        rotated = self._rotate(
            keys=[self._key(old_session_id), self._key(sess.id)],
            args=[self._dump(sess), self.max_inactive_seconds],
        )
        if not int(rotated or 0):
            return None
        return sess

    def close(self) -> None:
        self.client.close()
