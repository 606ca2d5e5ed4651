"""Metadata store: point reads and upserts for videos, clips and clip jobs.

Every write commits immediately. Clip and clip-job writes are SQLite upserts
keyed by (video_id, clip_index) and video_id, so concurrent writers to the
same row never produce duplicates.
"""

import logging
import shutil
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core.paths import video_dir
from clipline.models.clip import Clip, make_clip_id
from clipline.models.clip_job import ClipJob, ClipJobState
from clipline.models.video import Video, VideoStatus
from clipline.services.ffprobe_service import MediaMetadata

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------


def create_video(session: Session, video_id: str, filename: str, source_path: str) -> Video:
    video = Video(
        video_id=video_id,
        filename=filename,
        source_path=source_path,
        status=VideoStatus.PENDING.value,
        created_at=_utcnow(),
    )
    session.add(video)
    session.commit()
    return video


def get_video(session: Session, video_id: str) -> Video | None:
    """Read a video, always reloading its columns from the database."""
    return session.get(Video, video_id, populate_existing=True)


def require_video(session: Session, video_id: str) -> Video:
    video = get_video(session, video_id)
    if video is None:
        raise ValueError(f"Video not found: {video_id}")
    return video


def list_videos(session: Session, status: str | None = None) -> list[Video]:
    query = select(Video).order_by(Video.created_at.desc())
    if status:
        query = query.where(Video.status == status)
    return list(session.scalars(query))


def update_video_status(session: Session, video_id: str, status: str) -> Video:
    """Set a video's review status.

    Raises:
        ValueError: If the status is unknown or the video doesn't exist
    """
    try:
        new_status = VideoStatus(status)
    except ValueError:
        allowed = ", ".join(s.value for s in VideoStatus)
        raise ValueError(f"Invalid status '{status}' (expected one of: {allowed})") from None

    video = require_video(session, video_id)
    video.status = new_status.value
    session.commit()
    logger.info("Video %s status -> %s", video_id, new_status.value)
    return video


def save_video_metadata(session: Session, video_id: str, meta: MediaMetadata) -> Video:
    """Overwrite the stored metadata of a video."""
    video = require_video(session, video_id)
    video.duration_seconds = meta.duration_seconds
    video.frame_rate = meta.frame_rate
    video.width = meta.width
    video.height = meta.height
    video.aspect_ratio = meta.aspect_ratio
    video.aspect_ratio_str = meta.aspect_ratio_str
    video.rotation_raw = meta.rotation_raw
    video.codec_name = meta.codec_name
    video.codec_long_name = meta.codec_long_name
    video.container_format = meta.container_format
    video.byte_size = meta.byte_size
    video.metadata_extracted_at = _utcnow()
    session.commit()
    return video


def set_video_error(session: Session, video_id: str, message: str | None) -> None:
    video = require_video(session, video_id)
    video.error_message = message
    session.commit()


def delete_video(session: Session, video_id: str, settings: Settings) -> bool:
    """Delete a video's files, then its row (clips and clip job cascade).

    The filesystem step is best-effort: a failure is logged and the row is
    still removed. Returns False if the video didn't exist.
    """
    video = get_video(session, video_id)
    if video is None:
        return False

    directory = video_dir(settings, video_id)
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove files for video %s at %s: %s", video_id, directory, e)

    session.delete(video)
    session.commit()
    logger.info("Deleted video %s", video_id)
    return True


# ---------------------------------------------------------------------------
# Clips
# ---------------------------------------------------------------------------


def upsert_clip(
    session: Session,
    video_id: str,
    clip_index: int,
    path: str,
    meta: MediaMetadata | None = None,
) -> Clip:
    """Insert or overwrite the clip row for (video_id, clip_index)."""
    values = {
        "path": path,
        "duration_seconds": meta.duration_seconds if meta else None,
        "frame_rate": meta.frame_rate if meta else None,
        "width": meta.width if meta else None,
        "height": meta.height if meta else None,
        "byte_size": meta.byte_size if meta else None,
        "updated_at": _utcnow(),
    }
    stmt = sqlite_insert(Clip).values(
        clip_id=make_clip_id(video_id, clip_index),
        video_id=video_id,
        clip_index=clip_index,
        **values,
    )
    stmt = stmt.on_conflict_do_update(index_elements=["video_id", "clip_index"], set_=values)
    session.execute(stmt)
    session.commit()
    return get_clip(session, video_id, clip_index)


def get_clip(session: Session, video_id: str, clip_index: int) -> Clip | None:
    query = (
        select(Clip)
        .where(Clip.video_id == video_id, Clip.clip_index == clip_index)
        .execution_options(populate_existing=True)
    )
    return session.scalars(query).first()


def list_clips(session: Session, video_id: str) -> list[Clip]:
    query = (
        select(Clip)
        .where(Clip.video_id == video_id)
        .order_by(Clip.clip_index.asc())
        .execution_options(populate_existing=True)
    )
    return list(session.scalars(query))


# ---------------------------------------------------------------------------
# Clip jobs
# ---------------------------------------------------------------------------


def set_clip_job_state(
    session: Session,
    video_id: str,
    state: ClipJobState,
    error_text: str | None = None,
    exit_code: int | None = None,
) -> ClipJob:
    """Overwrite the job record for a video (upsert keyed by video_id)."""
    values = {
        "state": ClipJobState(state).value,
        "last_error_text": error_text,
        "last_exit_code": exit_code,
        "updated_at": _utcnow(),
    }
    stmt = sqlite_insert(ClipJob).values(video_id=video_id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["video_id"], set_=values)
    session.execute(stmt)
    session.commit()
    logger.debug("Clip job %s -> %s", video_id, values["state"])
    return get_clip_job(session, video_id)


def touch_clip_job(session: Session, video_id: str) -> None:
    """Heartbeat: refresh updated_at without changing the job state."""
    session.execute(
        update(ClipJob).where(ClipJob.video_id == video_id).values(updated_at=_utcnow())
    )
    session.commit()


def get_clip_job(session: Session, video_id: str) -> ClipJob | None:
    return session.get(ClipJob, video_id, populate_existing=True)


def get_clip_job_state(session: Session, video_id: str) -> ClipJobState:
    """Current job state; a video that never ran reads as NotStarted."""
    job = get_clip_job(session, video_id)
    if job is None:
        return ClipJobState.NOT_STARTED
    return ClipJobState(job.state)


def list_clip_jobs(session: Session, state: ClipJobState | None = None) -> list[ClipJob]:
    query = select(ClipJob).execution_options(populate_existing=True)
    if state is not None:
        query = query.where(ClipJob.state == ClipJobState(state).value)
    return list(session.scalars(query))
