"""Metadata extraction for source videos and clips."""

import logging
from pathlib import Path

from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core import store
from clipline.errors import ProbeError
from clipline.models.clip import Clip
from clipline.services.ffprobe_service import MediaMetadata, extract_media_metadata
from clipline.utils.diagnostics import log_tool_failure, truncate_for_db

logger = logging.getLogger(__name__)


def record_clip_metadata(
    session: Session,
    video_id: str,
    clip_index: int,
    path: Path,
    settings: Settings,
) -> Clip:
    """Probe a clip file and upsert its row.

    This is the single path used by both the segmenter and the backfill
    scanner, so a clip row looks the same whichever one created it.

    Raises:
        ProbeError: If ffprobe cannot describe the clip
    """
    meta = extract_media_metadata(path, settings)
    return store.upsert_clip(session, video_id, clip_index, str(path), meta)


def extract_and_persist_metadata(
    session: Session,
    video_id: str,
    settings: Settings,
) -> MediaMetadata | None:
    """Probe a video's source file and save the result on the video row.

    Failures are recorded on the video (readable error + full diagnostic
    log) rather than raised. Returns the metadata, or None on failure.

    Raises:
        ValueError: If the video doesn't exist
    """
    video = store.require_video(session, video_id)
    store.set_video_error(session, video_id, None)

    try:
        meta = extract_media_metadata(video.source_path, settings)
    except ProbeError as e:
        log_path = log_tool_failure(
            settings.logs_dir, video_id, "ffprobe", "metadata extraction", e.diagnostics
        )
        store.set_video_error(
            session,
            video_id,
            f"Metadata extraction failed.\nFull log: {log_path}\n{truncate_for_db(str(e), 500)}",
        )
        logger.error("Metadata extraction failed for %s: %s", video_id, e)
        return None

    store.save_video_metadata(session, video_id, meta)
    logger.info(
        "Metadata for %s: %.2fs %sx%s @ %s fps",
        video_id,
        meta.duration_seconds or 0.0,
        meta.width,
        meta.height,
        f"{meta.frame_rate:.3f}" if meta.frame_rate else "?",
    )
    return meta
