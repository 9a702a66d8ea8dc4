"""The error envelope every non-2xx API response uses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(
        description="Stable machine code, e.g. VALIDATION_ERROR, ENTITLEMENT_DENIED, INVALID_TRANSITION, REQUEST_INVALID",
    )
    message: str
    # dict for domain errors (e.g. {"count": 1001}), list for request-shape errors
    details: dict[str, Any] | list[Any] | str | None = None
    trace_id: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: ErrorDetail
