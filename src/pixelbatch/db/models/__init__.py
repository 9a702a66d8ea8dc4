"""Import all ORM models so they register with Base.metadata."""

from pixelbatch.db.models.batch_job import BatchItemRow, BatchJobRow
from pixelbatch.db.models.generated_image import GeneratedImageRow

__all__ = [
    "BatchItemRow",
    "BatchJobRow",
    "GeneratedImageRow",
]
