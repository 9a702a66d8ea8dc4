"""Pydantic models for batch jobs, their items and artifacts."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pixelbatch.models.enums import BatchStatus, ImageVisibility


class GenerationParams(BaseModel):
    """Template shared by every item in a batch.

    ``seed`` left unset (or negative) means a fresh random seed per item.
    """

    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(..., min_length=1, max_length=4000)
    negative_prompt: str | None = None
    model: str | None = None
    width: int | None = Field(None, gt=0, le=4096)
    height: int | None = Field(None, gt=0, le=4096)
    seed: int | None = None
    enhance: bool | None = None
    private: bool | None = None
    safe: bool | None = None
    image: str | None = None


class StartBatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    count: int
    generation_params: GenerationParams


class BatchJobView(BaseModel):
    """Read projection of a BatchJob returned to its owner."""

    batch_id: str
    owner_id: str
    status: BatchStatus
    total_count: int
    current_index: int
    completed_count: int
    failed_count: int
    current_item_retry_count: int | None = None
    generation_params: dict[str, Any]
    image_ids: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ArtifactView(BaseModel):
    image_id: str
    batch_id: str | None = None
    item_index: int | None = None
    url: str
    storage_key: str
    content_type: str
    size_bytes: int
    width: int
    height: int
    prompt: str
    model: str
    seed: int | None = None
    visibility: ImageVisibility
    created_at: datetime


class ControlResponse(BaseModel):
    batch_id: str
    status: BatchStatus


@dataclass
class ItemOutcome:
    """Result of one generation attempt chain for a single batch item."""

    success: bool
    image_id: str | None = None
    error_reason: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    # True when the item was not attempted because the job stopped running.
    skipped: bool = False
