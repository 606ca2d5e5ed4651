"""Video ORM model: an imported source video and its extracted metadata."""

import enum
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clipline.db import Base

if TYPE_CHECKING:
    from clipline.models.clip import Clip
    from clipline.models.clip_job import ClipJob
    from clipline.services.ffprobe_service import MediaMetadata


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VideoStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Video(Base):
    """
    A source video owned by the pipeline.

    ``source_path`` always points at the copy made on import, never at the
    user's original file. Metadata columns are filled by ffprobe and each one
    is independently nullable because extraction can partially fail.
    """

    __tablename__ = "videos"

    video_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VideoStatus.PENDING.value, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    rotation_raw: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # ffprobe metadata
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    aspect_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    aspect_ratio_str: Mapped[str | None] = mapped_column(String(32), nullable=True)
    codec_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    codec_long_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    container_format: Mapped[str | None] = mapped_column(String(128), nullable=True)
    byte_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_extracted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    clips: Mapped[list["Clip"]] = relationship(
        back_populates="video",
        cascade="all, delete-orphan",
        order_by="Clip.clip_index",
    )
    clip_job: Mapped["ClipJob | None"] = relationship(
        back_populates="video", cascade="all, delete-orphan", uselist=False
    )

    @property
    def metadata_record(self) -> "MediaMetadata | None":
        """Typed view of the stored metadata, or None if never extracted."""
        from clipline.services.ffprobe_service import MediaMetadata

        if self.metadata_extracted_at is None:
            return None
        return MediaMetadata(
            duration_seconds=self.duration_seconds,
            frame_rate=self.frame_rate,
            width=self.width,
            height=self.height,
            aspect_ratio=self.aspect_ratio,
            aspect_ratio_str=self.aspect_ratio_str,
            rotation_raw=self.rotation_raw,
            codec_name=self.codec_name,
            codec_long_name=self.codec_long_name,
            container_format=self.container_format,
            byte_size=self.byte_size,
        )

    def __repr__(self) -> str:
        return (
            f"<Video(video_id='{self.video_id}', filename='{self.filename}', "
            f"status='{self.status}')>"
        )
