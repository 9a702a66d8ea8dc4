"""Generated image repository."""

from sqlalchemy import select

from pixelbatch.db.models.generated_image import GeneratedImageRow
from pixelbatch.repositories.base import BaseRepository


class GeneratedImageRepository(BaseRepository[GeneratedImageRow]):
    model_class = GeneratedImageRow
    pk_field = "image_id"

    async def get_many(self, image_ids: list[str]) -> list[GeneratedImageRow]:
        """Resolve ids in the given order, dropping any that no longer exist."""
        if not image_ids:
            return []
        stmt = select(GeneratedImageRow).where(GeneratedImageRow.image_id.in_(image_ids))
        result = await self.session.execute(stmt)
        by_id = {row.image_id: row for row in result.scalars().all()}
        return [by_id[i] for i in image_ids if i in by_id]
