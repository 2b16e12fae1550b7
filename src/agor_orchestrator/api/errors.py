"""Error handlers for API."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agor_orchestrator.core.exceptions import (
    AgorError,
    EnvironmentResolutionError,
    ExecutorNotFoundError,
    InvalidTaskTransitionError,
    InvalidTokenError,
    PersistenceError,
    QueuedMessageNotFoundError,
    RecordNotFoundError,
    SessionBusyError,
    SessionNotFoundError,
    SpawnError,
    TaskNotFoundError,
    TokenExhaustedError,
    TokenExpiredError,
    TokenScopeError,
    UnsupportedLaunchModeError,
    WorktreeNotFoundError,
)

logger = logging.getLogger(__name__)

# Map exceptions to HTTP status codes
EXCEPTION_STATUS_MAP: dict[type[AgorError], int] = {
    SessionNotFoundError: 404,
    TaskNotFoundError: 404,
    QueuedMessageNotFoundError: 404,
    WorktreeNotFoundError: 404,
    RecordNotFoundError: 404,
    InvalidTaskTransitionError: 409,
    SessionBusyError: 409,
    InvalidTokenError: 401,
    TokenExpiredError: 401,
    TokenExhaustedError: 401,
    TokenScopeError: 403,
    ExecutorNotFoundError: 500,
    EnvironmentResolutionError: 500,
    UnsupportedLaunchModeError: 500,
    SpawnError: 500,
    PersistenceError: 500,
}


def make_error_response(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Create a standard error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            },
            "meta": {
                "request_id": str(uuid.uuid4()),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        },
    )


async def agor_error_handler(
    request: Request,
    exc: AgorError,
) -> JSONResponse:
    """Handle AgorError exceptions."""
    status_code = EXCEPTION_STATUS_MAP.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.code} - {exc.message}")
    return make_error_response(
        code=exc.code,
        message=exc.message,
        details=exc.details,
        status_code=status_code,
    )


async def validation_error_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle validation errors."""
    logger.warning(f"ValidationError: {exc}")
    return make_error_response(
        code="INVALID_REQUEST",
        message=str(exc),
        status_code=400,
    )


async def generic_error_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected errors."""
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return make_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred",
        details={"error": str(exc)},
        status_code=500,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the app."""
    app.add_exception_handler(AgorError, agor_error_handler)  # type: ignore
    app.add_exception_handler(ValueError, validation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
