"""ImageTransformation model: stored result of one style transform."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Text, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from createtree.database import Base


class ImageTransformation(Base):
    __tablename__ = "image_transformations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_path: Mapped[str] = mapped_column(Text, nullable=False)
    style: Mapped[str] = mapped_column(String(100), nullable=False)
    transformed_url: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)  # success | policy_rejected | unavailable | invalid_input
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_image_transformations_style", "style"),
        Index("ix_image_transformations_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ImageTransformation {self.style} ({self.outcome})>"
