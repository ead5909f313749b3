from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response

from sessionauth.api.schemas import Envelope, ErrorBody
from sessionauth.config import EntryPoint, Settings, get_settings
from sessionauth.logging import get_logger
from sessionauth.service.errors import ServiceError, UnauthenticatedError, ValidationError

logger = get_logger(__name__)

# Stable error codes mapped to HTTP status codes
_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "validation_error",
    422: "validation_error",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details or None)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def _is_xhr(request: Request) -> bool:
    return request.headers.get("X-Requested-With", "").lower() == "xmlhttprequest"


def entry_point_response(
    request: Request, exc: UnauthenticatedError, settings: Settings
) -> Response:
    """Answer an unauthenticated request to a protected path.

    Never sends ``WWW-Authenticate`` so browsers do not pop a basic-auth dialog.
    Script requests always get the 401 even when redirects are configured.
    """
    if settings.entry_point == EntryPoint.REDIRECT and not _is_xhr(request):
        return RedirectResponse(url=settings.login_page, status_code=302)
    return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)


def service_error_response(
    request: Request, exc: ServiceError, settings: Settings | None = None
) -> Response:
    log_fn = logger.error if exc.status_code >= 500 else logger.warning
    log_fn(
        "service_error",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
    )
    if isinstance(exc, UnauthenticatedError):
        return entry_point_response(request, exc, settings or get_settings())
    return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for service errors."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        return service_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # Submitted values are dropped; a rejected form may carry a password
        errors = [{k: v for k, v in err.items() if k != "input"} for err in exc.errors()]
        error = ValidationError(
            "invalid request",
            status_code=422,
            detail={"errors": jsonable_encoder(errors)},
        )
        return service_error_response(request, error)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
        message = str(detail.get("detail", "http error"))
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "internal server error", code="server_error")
