"""Clip ORM model: one fixed-length segment cut from a video."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clipline.db import Base

if TYPE_CHECKING:
    from clipline.models.video import Video


def _utcnow() -> datetime:
    return datetime.now(UTC)


def make_clip_id(video_id: str, clip_index: int) -> str:
    return f"{video_id}:{clip_index:03d}"


class Clip(Base):
    """A generated clip, identified by (video_id, clip_index)."""

    __tablename__ = "clips"
    __table_args__ = (UniqueConstraint("video_id", "clip_index", name="uq_clips_video_index"),)

    clip_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    video_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("videos.video_id", ondelete="CASCADE"), nullable=False, index=True
    )
    clip_index: Mapped[int] = mapped_column(Integer, nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    byte_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    video: Mapped["Video"] = relationship(back_populates="clips")

    def __repr__(self) -> str:
        return f"<Clip(video_id='{self.video_id}', index={self.clip_index}, path='{self.path}')>"
