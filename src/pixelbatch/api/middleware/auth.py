"""JWT Bearer authentication middleware."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from pixelbatch.config import settings
from pixelbatch.logging_config import bind_request_context

logger = logging.getLogger(__name__)

# Paths that do not require authentication
_PUBLIC_PATHS = {
    "/api/v1/health",
    "/api/v1/health/live",
    "/api/v1/health/ready",
    "/docs",
    "/openapi.json",
    "/redoc",
}

_ANONYMOUS = {"sub": "anonymous"}


def _decode_jwt(token: str) -> dict:
    from jose import JWTError, jwt

    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.debug("JWT decode failed: %s", exc)
        raise ValueError(f"Invalid token: {exc}") from exc


class AuthMiddleware(BaseHTTPMiddleware):
    """Validate a Bearer token and attach the caller identity to request.state.user."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if path in _PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc"):
            request.state.user = dict(_ANONYMOUS)
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            user_info = self._validate_jwt(auth_header[7:])
        else:
            # No auth provided; routes enforce auth as needed
            user_info = dict(_ANONYMOUS)

        request.state.user = user_info
        bind_request_context(
            getattr(request.state, "trace_id", "unknown"),
            user_id=user_info.get("sub") if user_info.get("sub") != "anonymous" else None,
        )
        return await call_next(request)

    def _validate_jwt(self, token: str) -> dict:
        try:
            payload = _decode_jwt(token)
        except ValueError:
            return {"sub": "anonymous", "_auth_error": "invalid_token"}

        return {
            "sub": payload.get("sub", ""),
            "email": payload.get("email", ""),
        }
