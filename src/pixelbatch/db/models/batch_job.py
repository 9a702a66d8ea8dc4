"""Batch job and per-item ledger tables."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pixelbatch.db.base import Base, TimestampMixin, utcnow


class BatchJobRow(Base, TimestampMixin):
    __tablename__ = "batch_jobs"

    batch_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False)
    current_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_item_retry_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generation_params: Mapped[dict] = mapped_column(JSON, nullable=False)


class BatchItemRow(Base):
    """One row per recorded item result; the composite key makes recording idempotent."""

    __tablename__ = "batch_items"

    batch_id: Mapped[str] = mapped_column(String(128), ForeignKey("batch_jobs.batch_id"), primary_key=True)
    item_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    image_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
