"""
Error Responses - Maps the exception hierarchy onto HTTP statuses and the response envelope.

Every error body has the shape {success: false, message, data, timestamp}.
"""

import traceback
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from app.config import settings
from app.exceptions import (
    AccountSuspendedError,
    ConflictError,
    DataIntegrityError,
    ForbiddenError,
    IdentityError,
    InvalidCredentialsError,
    InvalidSessionError,
    InvalidTokenError,
    NotFoundError,
    OtpError,
    OtpTooManyAttemptsError,
    RateLimitedError,
    StoreUnavailableError,
    TokenExpiredError,
    ValidationFailureError,
)
from app.observability.metrics import metrics

logger = get_logger(__name__)

# Checked in order; first match wins, so subclasses come before their bases
STATUS_BY_ERROR: tuple[tuple[type[IdentityError], int], ...] = (
    (ValidationFailureError, status.HTTP_400_BAD_REQUEST),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (InvalidTokenError, status.HTTP_401_UNAUTHORIZED),
    (TokenExpiredError, status.HTTP_401_UNAUTHORIZED),
    (InvalidSessionError, status.HTTP_401_UNAUTHORIZED),
    (AccountSuspendedError, status.HTTP_403_FORBIDDEN),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (OtpTooManyAttemptsError, status.HTTP_429_TOO_MANY_REQUESTS),
    (OtpError, status.HTTP_400_BAD_REQUEST),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DataIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)

INTERNAL_ERROR_MESSAGE = "Internal server error"


def status_for(exc: IdentityError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def envelope(message: str, data: Any = None) -> dict[str, Any]:
    """Failure body in the standard envelope."""
    return {
        "success": False,
        "message": message,
        "data": data,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _diagnostics(exc: BaseException) -> dict[str, Any] | None:
    if not settings.is_development:
        return None
    return {
        "error_type": type(exc).__name__,
        "detail": str(exc),
        "traceback": traceback.format_exception(exc),
    }


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Translate service exceptions into enveloped responses."""
    status_code = status_for(exc)
    headers: dict[str, str] | None = None
    data: Any = {"code": exc.code}

    if isinstance(exc, ValidationFailureError):
        data = {
            "code": exc.code,
            "errors": [{"field": e.field, "message": e.message} for e in exc.errors],
        }
    elif isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
        data = {"code": exc.code, "retry_after_seconds": exc.retry_after_seconds}
    elif status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(exc, StoreUnavailableError):
        metrics.record_store_unavailable(exc.operation)
        headers = {"Retry-After": "1"}

    if status_code >= 500:
        logger.error(
            "request_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        message = "Service temporarily unavailable" if isinstance(exc, StoreUnavailableError) else INTERNAL_ERROR_MESSAGE
        diagnostics = _diagnostics(exc)
        if diagnostics:
            data = {"code": exc.code, **diagnostics}
        return JSONResponse(status_code=status_code, content=envelope(message, data), headers=headers)

    logger.info(
        "request_rejected",
        path=request.url.path,
        status_code=status_code,
        code=exc.code,
    )
    return JSONResponse(status_code=status_code, content=envelope(str(exc), data), headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies become 400 with field-level detail."""
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": error.get("msg", "Invalid value")})

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=envelope("Validation failed", {"code": ValidationFailureError.code, "errors": errors}),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (404 route, 405, dependency 401s) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything uncategorised: generic 500, diagnostics only in development."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True,
    )
    metrics.record_error(type(exc).__name__, "unhandled")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=envelope(INTERNAL_ERROR_MESSAGE, _diagnostics(exc)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityError, identity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
