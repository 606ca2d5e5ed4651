"""Authoritative duration for a video: cached metadata first, then a fresh probe."""

import logging
import math

from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core import store
from clipline.errors import DurationUnknown
from clipline.services.ffprobe_service import extract_media_metadata

logger = logging.getLogger(__name__)


def _usable(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def get_duration_seconds(session: Session, video_id: str, settings: Settings) -> float:
    """Return the duration of a video in seconds.

    A probe result is persisted so later calls are served from the store.
    Calling this concurrently for the same video is safe; the write is an
    overwrite of the same columns.

    Raises:
        ValueError: If the video doesn't exist
        ProbeError: If the source cannot be probed
        DurationUnknown: If no positive finite duration can be determined
    """
    video = store.require_video(session, video_id)
    if _usable(video.duration_seconds):
        return float(video.duration_seconds)

    logger.info("No cached duration for %s, probing source", video_id)
    meta = extract_media_metadata(video.source_path, settings)
    store.save_video_metadata(session, video_id, meta)

    if not _usable(meta.duration_seconds):
        raise DurationUnknown(
            f"Could not determine duration of video {video_id} "
            f"(probe reported {meta.duration_seconds!r})"
        )
    return float(meta.duration_seconds)
