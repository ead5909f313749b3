from __future__ import annotations

import copy
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sessionauth.logging import get_logger
from sessionauth.storage.models import Session


class MemorySessionStore:
    """In-process session store for single-node deployments and tests.

    Expired sessions are dropped when read. Every write path also sweeps the
    whole map, at most once per ``purge_interval_seconds``.
    """

    def __init__(
        self, max_inactive_seconds: int = 30 * 60, purge_interval_seconds: int = 60
    ) -> None:
        self.logger = get_logger(__name__)
        self.max_inactive_seconds = max_inactive_seconds
        self.purge_interval_seconds = purge_interval_seconds
        self.sessions: Dict[str, Session] = {}
        # RLock for all data operations; rotate() and create() nest purge_expired()
        self._data_lock = threading.RLock()
        self._last_purge = self._now()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def verify_connection(self) -> None:
        return None

    def _maybe_purge(self, now: datetime) -> None:
        if now - self._last_purge < timedelta(seconds=self.purge_interval_seconds):
            return
        self._last_purge = now
        self.purge_expired()

    def create(self, attributes: Optional[Dict[str, Any]] = None) -> Session:
        with self._data_lock:
            self._maybe_purge(self._now())
            sess = Session.new(self.max_inactive_seconds, attributes)
            self.sessions[sess.id] = sess
            return copy.deepcopy(sess)

    def get(self, session_id: str) -> Optional[Session]:
        if not session_id:
            return None
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return None
            now = self._now()
            if sess.is_expired(now):
                self.sessions.pop(session_id, None)
                self.logger.debug("session_expired", session_id=session_id)
                return None
            sess.last_accessed_at = now
            # Callers mutate attributes freely; only save() writes them back
            return copy.deepcopy(sess)

    def save(self, session: Session) -> None:
        with self._data_lock:
            if session.id not in self.sessions:
                # Invalidated (or rotated away) while the request was running
                return
            self.sessions[session.id] = copy.deepcopy(session)

    def invalidate(self, session_id: str) -> None:
        with self._data_lock:
            self.sessions.pop(session_id, None)

    def rotate(
        self, old_session_id: str, attributes: Optional[Dict[str, Any]] = None
    ) -> Optional[Session]:
        with self._data_lock:
            now = self._now()
            old = self.sessions.pop(old_session_id, None)
            if old is None or old.is_expired(now):
                return None
            self._maybe_purge(now)
            sess = Session.new(self.max_inactive_seconds, attributes)
            self.sessions[sess.id] = sess
            return copy.deepcopy(sess)

    def purge_expired(self) -> int:
        now = self._now()
        with self._data_lock:
            stale = [sid for sid, sess in self.sessions.items() if sess.is_expired(now)]
            for sid in stale:
                self.sessions.pop(sid, None)
        if stale:
            self.logger.debug("session_purge", purged=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._data_lock:
            return len(self.sessions)
