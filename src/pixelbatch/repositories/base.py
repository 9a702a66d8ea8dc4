"""Shared repository plumbing: one session, one row class, one string key."""

from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pixelbatch.db.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    model_class: ClassVar[type[Base]]
    pk_field: ClassVar[str]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, pk_value: str) -> T | None:
        """Load by key, bypassing the identity map.

        Rows change underneath us through conditional UPDATEs issued by
        concurrent continuations, so a cached instance may be stale.
        """
        stmt = (
            select(self.model_class)
            .where(getattr(self.model_class, self.pk_field) == pk_value)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **kwargs: Any) -> T:
        row = self.model_class(**kwargs)
        self.session.add(row)
        await self.session.flush()
        return row
