"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from pixelbatch.errors.exceptions import AuthenticationError
from pixelbatch.services.batch_controller import BatchController
from pixelbatch.services.batch_queries import BatchQueries


async def get_current_user(request: Request) -> dict:
    """Return the authenticated user dict or raise 401."""
    user = getattr(request.state, "user", {})
    if "_auth_error" in (user or {}):
        raise AuthenticationError(user["_auth_error"])
    if not user or user.get("sub") in ("anonymous", ""):
        raise AuthenticationError("Authentication required")
    return user


def get_batch_controller(request: Request) -> BatchController:
    return request.app.state.batch_controller


def get_batch_queries(request: Request) -> BatchQueries:
    return request.app.state.batch_queries


# Type aliases for dependency injection
CurrentUser = Annotated[dict, Depends(get_current_user)]
Controller = Annotated[BatchController, Depends(get_batch_controller)]
Queries = Annotated[BatchQueries, Depends(get_batch_queries)]
