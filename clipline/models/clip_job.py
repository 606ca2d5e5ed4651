"""ClipJob ORM model: per-video clip generation state."""

import enum
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clipline.db import Base

if TYPE_CHECKING:
    from clipline.models.video import Video


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ClipJobState(str, enum.Enum):
    NOT_STARTED = "NotStarted"
    GENERATING = "Generating"
    DONE = "Done"
    FAILED = "Failed"


class ClipJob(Base):
    """Current clip job state for a video. One row per video, overwritten on each write."""

    __tablename__ = "clip_jobs"

    video_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("videos.video_id", ondelete="CASCADE"), primary_key=True
    )
    state: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ClipJobState.NOT_STARTED.value, index=True
    )
    last_error_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_exit_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    video: Mapped["Video"] = relationship(back_populates="clip_job")

    def __repr__(self) -> str:
        return (
            f"<ClipJob(video_id='{self.video_id}', state='{self.state}', "
            f"exit_code={self.last_exit_code})>"
        )
