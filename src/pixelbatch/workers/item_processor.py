"""Single-item generation: one job id + item index in, one ItemOutcome out."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelbatch.db.models.batch_job import BatchJobRow
from pixelbatch.models.batch import ItemOutcome
from pixelbatch.models.enums import RUNNABLE_STATUSES, ImageVisibility
from pixelbatch.repositories.batch_job_repo import BatchJobRepository
from pixelbatch.repositories.generated_image_repo import GeneratedImageRepository
from pixelbatch.services.artifact_storage import ArtifactStorage, generate_artifact_key
from pixelbatch.services.generation_client import INT32_MAX, GenerationClient
from pixelbatch.services.id_generator import IMAGE_PREFIX, generate_id
from pixelbatch.services.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1024
DEFAULT_HEIGHT = 1024
DEFAULT_MODEL = "flux"

# Must stay below the callback execution ceiling so every item records an outcome.
DEFAULT_ITEM_DEADLINE_SECONDS = 240.0


def resolve_item_params(template: dict[str, Any], rng: random.Random | None = None) -> dict[str, Any]:
    """Apply per-item overrides to the batch template.

    Only ``seed`` varies per item: a missing or negative seed gets a fresh
    random value, an explicit one is clamped to int32 max.
    """
    source = rng or random
    params = dict(template)
    seed = params.get("seed")
    if seed is None or seed < 0:
        params["seed"] = source.randint(0, INT32_MAX)
    else:
        params["seed"] = min(int(seed), INT32_MAX)
    return params


class ItemProcessor:
    """Performs one generation (with bounded local retry) for a batch item."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: GenerationClient,
        storage: ArtifactStorage,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        deadline_seconds: float = DEFAULT_ITEM_DEADLINE_SECONDS,
    ):
        self.session_factory = session_factory
        self.client = client
        self.storage = storage
        self.retry_config = retry_config or RetryConfig()
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.deadline_seconds = deadline_seconds

    async def process(self, batch_id: str, item_index: int, job: BatchJobRow | None = None) -> ItemOutcome:
        """Generate one item. Never raises: every failure becomes an unsuccessful outcome.

        ``job`` is a row the caller has already found runnable; passing it
        commits to finishing the item even if the job is paused meanwhile.
        Without it the job is loaded here and inactive jobs are skipped.
        The whole item, retries included, is bounded by ``deadline_seconds``.
        """
        try:
            return await asyncio.wait_for(self._process(batch_id, item_index, job), timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "Item %d of batch %s exceeded its %.0fs deadline", item_index, batch_id, self.deadline_seconds
            )
            return ItemOutcome(
                success=False,
                error_reason="timeout",
                error_message=f"Item exceeded its {self.deadline_seconds:g}s deadline",
            )
        except Exception as exc:
            logger.exception("Unexpected error processing item %d of batch %s", item_index, batch_id)
            return ItemOutcome(
                success=False,
                error_reason="internal_error",
                error_message=f"{type(exc).__name__}: {exc}",
            )

    async def _process(self, batch_id: str, item_index: int, job: BatchJobRow | None) -> ItemOutcome:
        if job is None:
            async with self.session_factory() as session:
                job = await BatchJobRepository(session).get(batch_id)
            if job is None:
                logger.warning("Batch %s not found, skipping item %d", batch_id, item_index)
                return ItemOutcome(success=False, skipped=True, error_reason="job_not_found")
            if job.status not in RUNNABLE_STATUSES:
                logger.info("Batch %s is %s, not generating item %d", batch_id, job.status, item_index)
                return ItemOutcome(success=False, skipped=True, error_reason="job_inactive")

        params = resolve_item_params(job.generation_params, self.rng)

        # Prompt text is user content and stays out of the logs.
        logger.info(
            "Generating item %d/%d for batch %s (model=%s, size=%sx%s, seed=%s)",
            item_index + 1, job.total_count, batch_id,
            params.get("model"), params.get("width"), params.get("height"), params["seed"],
        )

        result = await call_with_retry(
            lambda: self.client.generate(params),
            self.retry_config,
            sleep=self.sleep,
            rng=self.rng,
            label=f"batch {batch_id} item {item_index + 1}",
        )
        if not result.success:
            error = result.error
            logger.warning(
                "Item %d of batch %s failed after %d attempt(s): %s",
                item_index, batch_id, result.attempts_made, error.reason if error else "unknown",
            )
            return ItemOutcome(
                success=False,
                error_reason=error.reason if error else "unknown",
                error_message=error.message if error else "Generation failed after retries",
                retry_count=result.retry_count,
            )

        image = result.value
        key = generate_artifact_key(job.owner_id, image.content_type)
        try:
            stored = await self.storage.put(key, image.data, image.content_type)
        except OSError as exc:
            logger.error("Storing item %d of batch %s failed: %s", item_index, batch_id, exc)
            return ItemOutcome(
                success=False,
                error_reason="storage_error",
                error_message=str(exc),
                retry_count=result.retry_count,
            )

        image_id = generate_id(IMAGE_PREFIX)
        async with self.session_factory() as session:
            await GeneratedImageRepository(session).create(
                image_id=image_id,
                owner_id=job.owner_id,
                batch_id=batch_id,
                item_index=item_index,
                storage_key=stored.key,
                url=stored.url,
                content_type=image.content_type,
                size_bytes=stored.size_bytes,
                width=params.get("width") or DEFAULT_WIDTH,
                height=params.get("height") or DEFAULT_HEIGHT,
                prompt=params["prompt"],
                negative_prompt=params.get("negative_prompt"),
                model=params.get("model") or DEFAULT_MODEL,
                seed=params["seed"],
                generation_params=params,
                visibility=str(ImageVisibility.UNLISTED if params.get("private") else ImageVisibility.PUBLIC),
            )
            await session.commit()

        logger.info(
            "Item %d of batch %s completed%s",
            item_index, batch_id,
            f" after {result.attempts_made} attempts" if result.attempts_made > 1 else "",
        )
        return ItemOutcome(success=True, image_id=image_id, retry_count=result.retry_count)
