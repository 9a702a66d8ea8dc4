"""Read-only projections of batch jobs for their owners."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelbatch.db.models.batch_job import BatchJobRow
from pixelbatch.db.models.generated_image import GeneratedImageRow
from pixelbatch.errors.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from pixelbatch.models.batch import ArtifactView, BatchJobView
from pixelbatch.models.enums import ACTIVE_STATUSES
from pixelbatch.repositories.batch_job_repo import BatchJobRepository
from pixelbatch.repositories.generated_image_repo import GeneratedImageRepository

DEFAULT_RECENT_LIMIT = 10
MAX_RECENT_LIMIT = 100


def build_job_view(row: BatchJobRow, image_ids: list[str]) -> BatchJobView:
    return BatchJobView(
        batch_id=row.batch_id,
        owner_id=row.owner_id,
        status=row.status,
        total_count=row.total_count,
        current_index=row.current_index,
        completed_count=row.completed_count,
        failed_count=row.failed_count,
        current_item_retry_count=row.current_item_retry_count,
        generation_params=row.generation_params,
        image_ids=image_ids,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def build_artifact_view(row: GeneratedImageRow) -> ArtifactView:
    return ArtifactView(
        image_id=row.image_id,
        batch_id=row.batch_id,
        item_index=row.item_index,
        url=row.url,
        storage_key=row.storage_key,
        content_type=row.content_type,
        size_bytes=row.size_bytes,
        width=row.width,
        height=row.height,
        prompt=row.prompt,
        model=row.model,
        seed=row.seed,
        visibility=row.visibility,
        created_at=row.created_at,
    )


class BatchQueries:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _owned(self, repo: BatchJobRepository, caller_id: str, batch_id: str) -> BatchJobRow:
        if not caller_id:
            raise AuthenticationError()
        row = await repo.get(batch_id)
        if row is None:
            raise NotFoundError("BatchJob", batch_id)
        if row.owner_id != caller_id:
            raise AuthorizationError(f"Not authorized to view batch '{batch_id}'")
        return row

    async def _views(self, repo: BatchJobRepository, rows: list[BatchJobRow]) -> list[BatchJobView]:
        return [build_job_view(row, await repo.image_ids_for(row.batch_id)) for row in rows]

    async def get_job(self, caller_id: str, batch_id: str) -> BatchJobView:
        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            row = await self._owned(repo, caller_id, batch_id)
            return build_job_view(row, await repo.image_ids_for(batch_id))

    async def list_active_jobs(self, owner_id: str) -> list[BatchJobView]:
        """Jobs that are pending, processing or paused."""
        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            rows = await repo.list_by_owner(owner_id, statuses=ACTIVE_STATUSES)
            return await self._views(repo, rows)

    async def list_recent_jobs(self, owner_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[BatchJobView]:
        limit = max(1, min(limit, MAX_RECENT_LIMIT))
        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            rows = await repo.list_by_owner(owner_id, limit=limit)
            return await self._views(repo, rows)

    async def get_job_artifacts(self, caller_id: str, batch_id: str) -> list[ArtifactView]:
        """Resolve the job's image ids to artifact records; unresolvable ids are dropped."""
        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            await self._owned(repo, caller_id, batch_id)
            image_ids = await repo.image_ids_for(batch_id)
            rows = await GeneratedImageRepository(session).get_many(image_ids)
            return [build_artifact_view(row) for row in rows]
