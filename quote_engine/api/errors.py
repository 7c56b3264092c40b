"""
Exception handlers mapping engine errors to HTTP responses.

    NotFoundError            -> 404
    UnauthorizedError        -> 403
    PreconditionFailedError  -> 422
    ConflictError            -> 409
    TransientStoreError      -> 503 (with Retry-After)
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from quote_engine.core.exceptions import (
    ConflictError,
    EngineError,
    NotFoundError,
    PreconditionFailedError,
    TransientStoreError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1

_STATUS_BY_ERROR: dict[type[EngineError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    PreconditionFailedError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: EngineError) -> int:
    for error_cls in type(exc).__mro__:
        if error_cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[error_cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def handle_engine_error(request: Request, exc: EngineError) -> JSONResponse:
        code = status_for(exc)
        headers = None
        if exc.retryable:
            headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
        if code >= 500:
            logger.warning("%s %s -> %d: %s", request.method, request.url.path, code, exc.message)
        return JSONResponse(
            status_code=code,
            content={"detail": exc.message, "error": exc.error_code},
            headers=headers,
        )
