from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from sessionauth.config import get_settings, reset_settings_cache
from sessionauth.logging import get_logger
from sessionauth.service.auth import AuthService, SessionStore
from sessionauth.service.csrf import CsrfTokenManager
from sessionauth.service.identity import InMemoryIdentityProvider
from sessionauth.storage.memory import MemorySessionStore
from sessionauth.storage.redis_store import RedisSessionStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.store: SessionStore = self._build_store()
        self.csrf = CsrfTokenManager(
            cookie_name=self.settings.csrf_cookie_name,
            header_name=self.settings.csrf_header_name,
            cookie_secure=self.settings.cookie_secure,
        )
        self.identity = InMemoryIdentityProvider.from_entries(self.settings.auth_users)
        self.auth = AuthService(self.store, self.identity, self.csrf)
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            permitted_paths=self.settings.permitted_paths,
            entry_point=self.settings.entry_point.value,
        )

    def _memory_store(self, timeout: int) -> MemorySessionStore:
        return MemorySessionStore(
            max_inactive_seconds=timeout,
            purge_interval_seconds=self.settings.session_purge_interval_seconds,
        )

    def _build_store(self) -> SessionStore:
        timeout = self.settings.session_timeout_seconds
        if self.settings.use_memory_store or not self.settings.redis_url:
            return self._memory_store(timeout)

        redis_error: Exception | None = None
        try:
            store = RedisSessionStore(self.settings.redis_url, max_inactive_seconds=timeout)
            store.verify_connection()
            return store
        except Exception as exc:
            redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for the shared session store; start Redis or set "
                "USE_MEMORY_STORE=true / ALLOW_REDIS_FALLBACK_DEV=true for a local fallback."
            ) from redis_error

        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error),
            message="Sessions are held in process memory and are not shared across workers.",
        )
        return self._memory_store(timeout)

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if callable(close):
            close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime
