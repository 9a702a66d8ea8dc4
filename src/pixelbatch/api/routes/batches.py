"""Batch generation control and query routes."""

from fastapi import APIRouter, Query

from pixelbatch.dependencies import Controller, CurrentUser, Queries
from pixelbatch.models.batch import (
    ArtifactView,
    BatchJobView,
    ControlResponse,
    StartBatchRequest,
)
from pixelbatch.services.batch_queries import DEFAULT_RECENT_LIMIT, MAX_RECENT_LIMIT, build_job_view

router = APIRouter(tags=["Batches"])


@router.post("/batches", status_code=201)
async def start_batch(
    body: StartBatchRequest,
    user: CurrentUser,
    controller: Controller,
) -> BatchJobView:
    row = await controller.start_batch(user["sub"], body.count, body.generation_params)
    return build_job_view(row, image_ids=[])


@router.get("/batches")
async def list_active_batches(user: CurrentUser, queries: Queries) -> list[BatchJobView]:
    return await queries.list_active_jobs(user["sub"])


@router.get("/batches/recent")
async def list_recent_batches(
    user: CurrentUser,
    queries: Queries,
    limit: int = Query(DEFAULT_RECENT_LIMIT, ge=1, le=MAX_RECENT_LIMIT),
) -> list[BatchJobView]:
    return await queries.list_recent_jobs(user["sub"], limit)


@router.get("/batches/{batch_id}")
async def get_batch(batch_id: str, user: CurrentUser, queries: Queries) -> BatchJobView:
    return await queries.get_job(user["sub"], batch_id)


@router.get("/batches/{batch_id}/artifacts")
async def get_batch_artifacts(batch_id: str, user: CurrentUser, queries: Queries) -> list[ArtifactView]:
    return await queries.get_job_artifacts(user["sub"], batch_id)


@router.post("/batches/{batch_id}/pause")
async def pause_batch(batch_id: str, user: CurrentUser, controller: Controller) -> ControlResponse:
    row = await controller.pause_batch(user["sub"], batch_id)
    return ControlResponse(batch_id=row.batch_id, status=row.status)


@router.post("/batches/{batch_id}/resume")
async def resume_batch(batch_id: str, user: CurrentUser, controller: Controller) -> ControlResponse:
    row = await controller.resume_batch(user["sub"], batch_id)
    return ControlResponse(batch_id=row.batch_id, status=row.status)


@router.post("/batches/{batch_id}/cancel")
async def cancel_batch(batch_id: str, user: CurrentUser, controller: Controller) -> ControlResponse:
    row = await controller.cancel_batch(user["sub"], batch_id)
    return ControlResponse(batch_id=row.batch_id, status=row.status)
