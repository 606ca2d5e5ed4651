"""Deterministic on-disk layout for videos and their clips.

    <videos_dir>/<video_id>/original.mp4
    <videos_dir>/<video_id>/clips/clip_000.mp4
"""

import logging
import re
from pathlib import Path

from clipline.config import Settings

logger = logging.getLogger(__name__)

SOURCE_FILENAME = "original.mp4"
CLIP_FILENAME_RE = re.compile(r"^clip_(\d{3})\.mp4$")


def video_dir(settings: Settings, video_id: str) -> Path:
    return Path(settings.videos_dir) / video_id


def source_path(settings: Settings, video_id: str) -> Path:
    return video_dir(settings, video_id) / SOURCE_FILENAME


def clips_dir(settings: Settings, video_id: str) -> Path:
    return video_dir(settings, video_id) / "clips"


def clip_filename(clip_index: int) -> str:
    return f"clip_{clip_index:03d}.mp4"


def clip_path(settings: Settings, video_id: str, clip_index: int) -> Path:
    return clips_dir(settings, video_id) / clip_filename(clip_index)


def parse_clip_index(filename: str) -> int | None:
    """Return the index encoded in a canonical clip filename, else None."""
    m = CLIP_FILENAME_RE.match(filename)
    if not m:
        return None
    return int(m.group(1))


def has_clip_files(settings: Settings, video_id: str) -> bool:
    """True if the clips directory holds at least one canonically named file.

    An unreadable directory counts as empty.
    """
    directory = clips_dir(settings, video_id)
    if not directory.is_dir():
        return False
    try:
        return any(parse_clip_index(p.name) is not None for p in directory.iterdir())
    except OSError as e:
        logger.warning("Cannot list clips directory %s: %s", directory, e)
        return False
