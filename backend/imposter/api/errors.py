"""
领域异常到HTTP响应的映射
"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from imposter.core.exceptions import (
    AuthorizationError, NotFoundError, RoundEngineError,
    StateError, TransientStoreError, ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    AuthorizationError: 403,
    NotFoundError: 404,
    StateError: 409,
    TransientStoreError: 503,
}


def status_for(exc: RoundEngineError) -> int:
    for exc_type, status in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status
    return 500


async def round_engine_error_handler(request: Request, exc: RoundEngineError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning(f"⚠️ {request.method} {request.url.path} 失败: {exc.message}")
    return JSONResponse(
        status_code=status,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "retryable": exc.retryable,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RoundEngineError, round_engine_error_handler)
