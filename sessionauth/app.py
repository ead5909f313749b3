from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sessionauth.api.error_handling import register_exception_handlers
from sessionauth.api.filters import SecurityFilterChain
from sessionauth.api.routes import router
from sessionauth.config import get_settings
from sessionauth.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

_settings = get_settings()

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    from sessionauth.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info("app_started", version=__version__, store=type(runtime.store).__name__)
    yield
    try:
        runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Session Auth Demo", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Credentials are enabled, so never fall back to a wildcard
    return ["http://localhost:8080", "http://127.0.0.1:8080"]


# Middleware added last runs first: correlation id -> security headers -> filter chain -> routes
app.middleware("http")(SecurityFilterChain())


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Authenticated answers must not be cached by shared proxies
    response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with X-Request-ID (client supplied or generated) for log tracing."""
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "X-Requested-With",
        "X-Request-ID",
        _settings.csrf_header_name,
        _settings.session_header_name,
    ],
    expose_headers=["X-Request-ID", _settings.session_header_name],
    max_age=3600,
)


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> JSONResponse:
    """Session store connectivity check."""
    from sessionauth.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    store_name = type(runtime.store).__name__
    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection), HEALTH_CHECK_TIMEOUT_SECONDS
        )
        checks["session_store"] = {"status": "healthy", "type": store_name}
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component="session_store")
        checks["session_store"] = {"status": "unhealthy", "type": store_name}
    except Exception as exc:
        logger.error("health_check_session_store_failed", error=str(exc))
        checks["session_store"] = {"status": "unhealthy", "type": store_name}

    healthy = all(check["status"] == "healthy" for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def create_app() -> FastAPI:
    return app
