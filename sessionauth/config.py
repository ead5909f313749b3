from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntryPoint(str, Enum):
    """How an unauthenticated request to a protected path is answered."""

    STATUS = "status"
    REDIRECT = "redirect"


DEFAULT_PERMITTED_PATHS = (
    "/",
    "/index.html",
    "/home.html",
    "/login.html",
    "/login",
    "/logout",
    "/healthz",
)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


class Settings(BaseModel):
    """Runtime settings for the session/CSRF service."""

    redis_url: str | None = env_field(None, "REDIS_URL")
    use_memory_store: bool = env_field(True, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors (sync Redis client, memory fallback).",
    )

    session_cookie_name: str = env_field("SESSION", "SESSION_COOKIE_NAME")
    session_header_name: str = env_field(
        "X-Auth-Token",
        "SESSION_HEADER_NAME",
        description="Header that may carry the session id instead of the cookie",
    )
    session_timeout_minutes: int = env_field(
        30, "SESSION_TIMEOUT_MINUTES", description="Idle timeout before a session expires"
    )
    session_purge_interval_seconds: int = env_field(
        60,
        "SESSION_PURGE_INTERVAL_SECONDS",
        description="Minimum gap between sweeps of expired sessions in the memory store",
    )
    csrf_cookie_name: str = env_field("XSRF-TOKEN", "CSRF_COOKIE_NAME")
    csrf_header_name: str = env_field("X-XSRF-TOKEN", "CSRF_HEADER_NAME")
    cookie_secure: bool = env_field(
        False, "COOKIE_SECURE", description="Mark cookies Secure (enable behind HTTPS)"
    )

    permitted_paths: list[str] = env_field(
        list(DEFAULT_PERMITTED_PATHS),
        "PERMITTED_PATHS",
        description="Comma separated paths reachable without a principal; '/**' suffix matches prefixes",
    )
    entry_point: EntryPoint = env_field(EntryPoint.STATUS, "AUTH_ENTRY_POINT")
    login_page: str = env_field("/login.html", "LOGIN_PAGE")
    auth_users: list[str] = env_field(
        ["user:password:ROLE_USER"],
        "AUTH_USERS",
        description=(
            "Comma separated name:password[:ROLE|ROLE]; password may be an argon2 hash. "
            "A password containing ':' needs an explicit roles segment."
        ),
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("permitted_paths", "auth_users", "cors_allow_origins", mode="before")
    @classmethod
    def _parse_csv(cls, value: Any) -> list[str]:
        return _split_csv(value)

    @field_validator("entry_point")
    @classmethod
    def _validate_entry_point(cls, value: EntryPoint) -> EntryPoint:
        return EntryPoint(value)

    @field_validator("session_timeout_minutes")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SESSION_TIMEOUT_MINUTES must be at least 1")
        return value

    @field_validator("session_purge_interval_seconds")
    @classmethod
    def _validate_purge_interval(cls, value: int) -> int:
        if value < 0:
            raise ValueError("SESSION_PURGE_INTERVAL_SECONDS cannot be negative")
        return value

    @field_validator("csrf_cookie_name", "csrf_header_name", "session_cookie_name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("cookie and header names cannot be empty")
        return value.strip()

    @property
    def session_timeout_seconds(self) -> int:
        return self.session_timeout_minutes * 60


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
