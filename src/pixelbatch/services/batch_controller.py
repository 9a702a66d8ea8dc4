"""Batch status controller: creation and client-initiated transitions.

Transitions are validated against the job's current status and then applied
with a conditional update, so a racing transition surfaces as an
:class:`InvalidTransitionError` instead of overwriting the other writer.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelbatch.db.models.batch_job import BatchJobRow
from pixelbatch.errors.exceptions import (
    AuthenticationError,
    AuthorizationError,
    EntitlementError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from pixelbatch.models.batch import GenerationParams
from pixelbatch.models.enums import ACTIVE_STATUSES, RUNNABLE_STATUSES, BatchStatus
from pixelbatch.repositories.batch_job_repo import BatchJobRepository
from pixelbatch.services.entitlements import AllowAllEntitlements, EntitlementChecker
from pixelbatch.services.id_generator import BATCH_PREFIX, generate_id
from pixelbatch.workers.batch_driver import BatchDriver

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000
MIN_BATCH_SIZE = 1

# Client-initiated transitions: action -> (statuses it is accepted from, target).
# ``completed`` is never requested; the job store sets it when the counters
# reach the total, from any active status.
CONTROL_TRANSITIONS: dict[str, tuple[frozenset[BatchStatus], BatchStatus]] = {
    "pause": (RUNNABLE_STATUSES, BatchStatus.PAUSED),
    "resume": (frozenset({BatchStatus.PAUSED}), BatchStatus.PROCESSING),
    "cancel": (ACTIVE_STATUSES, BatchStatus.CANCELLED),
}


class BatchController:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        driver: BatchDriver,
        entitlements: EntitlementChecker | None = None,
        max_batch_size: int = MAX_BATCH_SIZE,
        min_batch_size: int = MIN_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.driver = driver
        self.entitlements = entitlements or AllowAllEntitlements()
        self.max_batch_size = max_batch_size
        self.min_batch_size = min_batch_size

    async def start_batch(self, owner_id: str, count: int, params: GenerationParams) -> BatchJobRow:
        """Create a pending job and arm item 0. No job is created if a precondition fails."""
        if not owner_id:
            raise AuthenticationError()
        if not self.min_batch_size <= count <= self.max_batch_size:
            raise ValidationError(
                f"Batch size must be between {self.min_batch_size} and {self.max_batch_size}",
                details={"count": count},
            )

        entitlement = await self.entitlements.check(owner_id)
        if not entitlement.allowed:
            raise EntitlementError(entitlement.reason or "Generation is not available for this account")

        batch_id = generate_id(BATCH_PREFIX)
        async with self.session_factory() as session:
            row = await BatchJobRepository(session).create(
                batch_id=batch_id,
                owner_id=owner_id,
                status=str(BatchStatus.PENDING),
                total_count=count,
                current_index=0,
                completed_count=0,
                failed_count=0,
                generation_params=params.model_dump(exclude_none=True),
            )
            await session.commit()

        await self.driver.schedule_first(batch_id)
        logger.info("Started batch %s (owner=%s, count=%d)", batch_id, owner_id, count)
        return row

    async def _transition(self, caller_id: str, batch_id: str, action: str) -> BatchJobRow:
        if not caller_id:
            raise AuthenticationError()
        allowed, to_status = CONTROL_TRANSITIONS[action]

        async with self.session_factory() as session:
            repo = BatchJobRepository(session)
            row = await repo.get(batch_id)
            if row is None:
                raise NotFoundError("BatchJob", batch_id)
            if row.owner_id != caller_id:
                raise AuthorizationError(f"Not authorized to {action} batch '{batch_id}'")
            if row.status not in allowed:
                raise InvalidTransitionError(batch_id, row.status, action)
            from_status = row.status

            if not await repo.transition_status(batch_id, allowed, to_status):
                await session.rollback()
                current = await repo.get(batch_id)
                raise InvalidTransitionError(batch_id, current.status if current else "unknown", action)
            await session.commit()
            updated = await repo.get(batch_id)

        logger.info("Batch %s: %s -> %s (%s)", batch_id, from_status, to_status, action)
        return updated

    async def pause_batch(self, caller_id: str, batch_id: str) -> BatchJobRow:
        """Stop scheduling further items; the item in flight still records its result."""
        return await self._transition(caller_id, batch_id, "pause")

    async def resume_batch(self, caller_id: str, batch_id: str) -> BatchJobRow:
        row = await self._transition(caller_id, batch_id, "resume")
        if row.current_index < row.total_count:
            await self.driver.schedule_item(batch_id, row.current_index, delay_ms=0)
        return row

    async def cancel_batch(self, caller_id: str, batch_id: str) -> BatchJobRow:
        """Terminal. Armed continuations observe the status and no-op."""
        return await self._transition(caller_id, batch_id, "cancel")
