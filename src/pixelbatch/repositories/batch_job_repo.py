"""Batch job store.

Every mutation is a single conditional UPDATE keyed by ``batch_id`` so that
concurrent continuations for the same job cannot lose updates, double-advance
``current_index`` or double-count an item. The repository is
authorization-blind; callers check ``owner_id``.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError

from pixelbatch.db.base import utcnow
from pixelbatch.db.models.batch_job import BatchItemRow, BatchJobRow
from pixelbatch.models.batch import ItemOutcome
from pixelbatch.models.enums import ACTIVE_STATUSES, RUNNABLE_STATUSES, BatchStatus
from pixelbatch.repositories.base import BaseRepository


def _values(statuses: Iterable[str]) -> list[str]:
    return [str(s) for s in statuses]


class BatchJobRepository(BaseRepository[BatchJobRow]):
    model_class = BatchJobRow
    pk_field = "batch_id"

    async def patch(self, batch_id: str, **fields: Any) -> BatchJobRow | None:
        """Merge ``fields`` into the job in one statement and return the fresh row."""
        fields.setdefault("updated_at", utcnow())
        stmt = (
            update(BatchJobRow)
            .where(BatchJobRow.batch_id == batch_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self.get(batch_id)

    async def list_by_owner(
        self,
        owner_id: str,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[BatchJobRow]:
        """List an owner's jobs, newest first."""
        stmt = select(BatchJobRow).where(BatchJobRow.owner_id == owner_id)
        if statuses is not None:
            stmt = stmt.where(BatchJobRow.status.in_(_values(statuses)))
        stmt = stmt.order_by(BatchJobRow.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_by_status(self, statuses: Iterable[str]) -> list[BatchJobRow]:
        stmt = select(BatchJobRow).where(BatchJobRow.status.in_(_values(statuses)))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def transition_status(
        self,
        batch_id: str,
        from_statuses: Iterable[str],
        to_status: BatchStatus,
    ) -> bool:
        """Set ``status`` only if it is currently one of ``from_statuses``."""
        stmt = (
            update(BatchJobRow)
            .where(
                BatchJobRow.batch_id == batch_id,
                BatchJobRow.status.in_(_values(from_statuses)),
            )
            .values(status=str(to_status), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def advance_current_index(self, batch_id: str, next_index: int) -> bool:
        """Move ``current_index`` forward to ``next_index``.

        Returns False when the index would not move forward, is out of range,
        or the job is no longer runnable.
        """
        stmt = (
            update(BatchJobRow)
            .where(
                BatchJobRow.batch_id == batch_id,
                BatchJobRow.current_index < next_index,
                BatchJobRow.total_count > next_index,
                BatchJobRow.status.in_(_values(RUNNABLE_STATUSES)),
            )
            .values(current_index=next_index, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def record_item_result(self, batch_id: str, item_index: int, outcome: ItemOutcome) -> bool:
        """Record one item's outcome exactly once.

        Inserts the ledger row and bumps the matching counter in the current
        transaction. Returns False (and rolls back) when the item was already
        recorded or the job is cancelled/completed. The caller commits.
        """
        try:
            # Core insert: a duplicate must hit the primary key, not the identity map.
            await self.session.execute(
                insert(BatchItemRow).values(
                    batch_id=batch_id,
                    item_index=item_index,
                    success=outcome.success,
                    image_id=outcome.image_id,
                    error_reason=outcome.error_reason,
                    error_message=outcome.error_message,
                    retry_count=outcome.retry_count,
                )
            )
        except IntegrityError:
            await self.session.rollback()
            return False

        counter = BatchJobRow.completed_count if outcome.success else BatchJobRow.failed_count
        bump = (
            update(BatchJobRow)
            .where(
                BatchJobRow.batch_id == batch_id,
                BatchJobRow.status.in_(_values(ACTIVE_STATUSES)),
                BatchJobRow.completed_count + BatchJobRow.failed_count < BatchJobRow.total_count,
            )
            .values(
                {
                    counter: counter + 1,
                    BatchJobRow.status: case(
                        (BatchJobRow.status == str(BatchStatus.PENDING), str(BatchStatus.PROCESSING)),
                        else_=BatchJobRow.status,
                    ),
                    BatchJobRow.current_item_retry_count: outcome.retry_count,
                    BatchJobRow.updated_at: utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(bump)
        if result.rowcount != 1:
            await self.session.rollback()
            return False

        finish = (
            update(BatchJobRow)
            .where(
                BatchJobRow.batch_id == batch_id,
                BatchJobRow.status.in_(_values(ACTIVE_STATUSES)),
                BatchJobRow.completed_count + BatchJobRow.failed_count >= BatchJobRow.total_count,
            )
            .values(status=str(BatchStatus.COMPLETED), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(finish)
        return True

    async def is_item_recorded(self, batch_id: str, item_index: int) -> bool:
        stmt = select(BatchItemRow.item_index).where(
            BatchItemRow.batch_id == batch_id,
            BatchItemRow.item_index == item_index,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_items(self, batch_id: str) -> list[BatchItemRow]:
        stmt = (
            select(BatchItemRow)
            .where(BatchItemRow.batch_id == batch_id)
            .order_by(BatchItemRow.item_index)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def image_ids_for(self, batch_id: str) -> list[str]:
        stmt = (
            select(BatchItemRow.image_id)
            .where(
                BatchItemRow.batch_id == batch_id,
                BatchItemRow.success.is_(True),
                BatchItemRow.image_id.is_not(None),
            )
            .order_by(BatchItemRow.item_index)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
