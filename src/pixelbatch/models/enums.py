"""String enums for batch job state."""

from enum import StrEnum


class BatchStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ImageVisibility(StrEnum):
    PUBLIC = "public"
    UNLISTED = "unlisted"


# Statuses in which the scheduler may advance and process items.
RUNNABLE_STATUSES = frozenset({BatchStatus.PENDING, BatchStatus.PROCESSING})

# Statuses reported by ListActiveBatches.
ACTIVE_STATUSES = frozenset({BatchStatus.PENDING, BatchStatus.PROCESSING, BatchStatus.PAUSED})
