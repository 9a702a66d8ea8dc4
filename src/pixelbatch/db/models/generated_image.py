"""Generated image (artifact) table."""

from sqlalchemy import JSON, BigInteger, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pixelbatch.db.base import Base, TimestampMixin


class GeneratedImageRow(Base, TimestampMixin):
    __tablename__ = "generated_images"

    image_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    batch_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    item_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    negative_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    seed: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    generation_params: Mapped[dict] = mapped_column(JSON, nullable=False)
    visibility: Mapped[str] = mapped_column(String(20), nullable=False)
