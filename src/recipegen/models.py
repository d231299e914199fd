"""SQLAlchemy database models."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from recipegen.database import Base


class RecipeImageHash(Base):
    """Perceptual hash of an accepted recipe image.

    Rows are append-only. One row is written per accepted (non-placeholder)
    image so later recipes and later batches can detect near-duplicates.
    """

    __tablename__ = "recipe_image_hashes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    recipe_id: Mapped[str] = mapped_column(String, nullable=False)
    batch_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_recipe_image_hashes_hash", "hash"),
        Index("idx_recipe_image_hashes_batch_id", "batch_id"),
    )
