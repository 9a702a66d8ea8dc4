"""Render every API failure in one envelope: ``{"error": {code, message, details, trace_id, timestamp}}``."""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pixelbatch.errors.exceptions import AuthorizationError, PixelBatchError
from pixelbatch.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            details=details,
            trace_id=getattr(request.state, "trace_id", "unknown"),
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PixelBatchError)
    async def pixelbatch_error_handler(request: Request, exc: PixelBatchError):
        if isinstance(exc, AuthorizationError):
            user = getattr(request.state, "user", {}) or {}
            logger.warning(
                "Batch access denied for %s on %s %s: %s",
                user.get("sub", "anonymous"), request.method, request.url.path, exc,
            )
        return _error_response(request, exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error_response(
            request, 422, "REQUEST_INVALID", "Request body or parameters are invalid", jsonable_encoder(exc.errors())
        )
