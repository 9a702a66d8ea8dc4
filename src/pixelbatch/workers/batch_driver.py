"""Scheduler driver: self-pipelining continuation chain for a batch job.

Each item runs as one delayed callback. At the start of item ``k`` the driver
advances ``current_index`` to ``k + 1`` and arms the next callback after the
rate-limit delay, so scheduling overlaps with item ``k``'s API latency. After
the item finishes its result is recorded. Every continuation re-reads the job
status before doing anything; pause and cancel therefore take effect at the
next continuation boundary and never interrupt an item in flight.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelbatch.logging_config import bind_batch_context
from pixelbatch.models.batch import ItemOutcome
from pixelbatch.models.enums import RUNNABLE_STATUSES
from pixelbatch.repositories.batch_job_repo import BatchJobRepository
from pixelbatch.services.rate_limiter import RateLimitPolicy
from pixelbatch.workers.callbacks import CallbackScheduler
from pixelbatch.workers.item_processor import ItemProcessor

logger = logging.getLogger(__name__)

PROCESS_ITEM_TASK = "process_batch_item"


class BatchDriver:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: CallbackScheduler,
        processor: ItemProcessor,
        rate_limit: RateLimitPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.processor = processor
        self.rate_limit = rate_limit or RateLimitPolicy()
        scheduler.register(PROCESS_ITEM_TASK, self.run_item)

    async def schedule_item(self, batch_id: str, item_index: int, delay_ms: int = 0) -> None:
        await self.scheduler.schedule(
            delay_ms,
            PROCESS_ITEM_TASK,
            {"batch_id": batch_id, "item_index": item_index},
        )

    async def schedule_first(self, batch_id: str) -> None:
        await self.schedule_item(batch_id, 0, delay_ms=0)

    async def advance_and_schedule(self, batch_id: str, completed_item_index: int) -> bool:
        """Advance ``current_index`` past ``completed_item_index`` and arm the next item.

        No-op (returns False) when the job is not runnable, the batch has no
        next item, or ``current_index`` is already at or beyond it.
        """
        next_index = completed_item_index + 1
        async with self.session_factory() as session:
            advanced = await BatchJobRepository(session).advance_current_index(batch_id, next_index)
            await session.commit()

        if not advanced:
            logger.debug("Batch %s: not advancing to item %d", batch_id, next_index)
            return False

        delay_ms = self.rate_limit.next_delay_ms()
        await self.schedule_item(batch_id, next_index, delay_ms)
        logger.debug("Batch %s: armed item %d in %dms", batch_id, next_index, delay_ms)
        return True

    async def record_result(self, batch_id: str, item_index: int, outcome: ItemOutcome) -> bool:
        """Record one item's outcome. Returns False for duplicates and stopped jobs."""
        async with self.session_factory() as session:
            recorded = await BatchJobRepository(session).record_item_result(batch_id, item_index, outcome)
            if recorded:
                await session.commit()

        if recorded:
            logger.info(
                "Batch %s: recorded item %d (%s)",
                batch_id, item_index, "success" if outcome.success else outcome.error_reason,
            )
        else:
            logger.info("Batch %s: result for item %d not recorded (duplicate or job stopped)", batch_id, item_index)
        return recorded

    async def run_item(self, batch_id: str, item_index: int) -> None:
        """Continuation handler for one batch item."""
        bind_batch_context(batch_id, item_index)

        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            job = await repo.get(batch_id)
            if job is None:
                logger.warning("Batch %s not found, dropping continuation for item %d", batch_id, item_index)
                return
            if job.status not in RUNNABLE_STATUSES:
                logger.info("Batch %s is %s, stopping at item %d", batch_id, job.status, item_index)
                return
            already_recorded = await repo.is_item_recorded(batch_id, item_index)

        try:
            await self.advance_and_schedule(batch_id, item_index)
        except Exception:
            # The current item still runs; a resume or restart re-arms the chain.
            logger.exception("Batch %s: failed to schedule item after %d", batch_id, item_index)

        if already_recorded:
            logger.info("Batch %s: item %d already recorded, skipping duplicate", batch_id, item_index)
            return

        # The job passed the status check above; the item runs to an outcome even if paused now.
        outcome = await self.processor.process(batch_id, item_index, job=job)
        if outcome.skipped:
            return
        await self.record_result(batch_id, item_index, outcome)

    async def rearm_active_jobs(self) -> int:
        """Re-arm unrecorded items of every runnable job.

        Used at startup when the callback substrate is not durable: items up
        to ``current_index`` that never recorded a result were lost with the
        previous process.
        """
        armed = 0
        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            jobs = await repo.list_by_status(RUNNABLE_STATUSES)
            pending: list[tuple[str, int]] = []
            for job in jobs:
                recorded = {item.item_index for item in await repo.list_items(job.batch_id)}
                last = min(job.current_index, job.total_count - 1)
                pending.extend(
                    (job.batch_id, index) for index in range(last + 1) if index not in recorded
                )

        delay_ms = 0
        for batch_id, index in pending:
            await self.schedule_item(batch_id, index, delay_ms=delay_ms)
            delay_ms += self.rate_limit.next_delay_ms()
            armed += 1
        if armed:
            logger.info("Re-armed %d batch item(s) after restart", armed)
        return armed
