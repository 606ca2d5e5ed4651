"""Import an MP4 file into the managed video store."""

import logging
import shutil
import uuid
from pathlib import Path

from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core import store
from clipline.core.paths import source_path
from clipline.models.video import Video

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".mp4"}


def make_video_id() -> str:
    return uuid.uuid4().hex


def looks_like_mp4(path: Path) -> bool:
    """Sniff the ISO base media header: the 'ftyp' box type sits at bytes 4..8."""
    with path.open("rb") as f:
        head = f.read(12)
    return len(head) >= 8 and head[4:8] == b"ftyp"


def import_video(session: Session, picked_path: str | Path, settings: Settings) -> Video:
    """Copy an MP4 into ``<videos_dir>/<video_id>/original.mp4`` and register it.

    The new video starts in Pending status with no metadata.

    Raises:
        ValueError: If the file is missing, not .mp4, or has no ftyp box
    """
    src = Path(picked_path)
    if not src.is_file():
        raise ValueError(f"File not found: {src}")
    if src.suffix.lower() not in ALLOWED_EXTENSIONS:
        raise ValueError("Only .mp4 files are allowed.")
    if not looks_like_mp4(src):
        raise ValueError("File does not look like a valid MP4 (ftyp box missing).")

    video_id = make_video_id()
    dest = source_path(settings, video_id)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)

    video = store.create_video(session, video_id, filename=src.name, source_path=str(dest))
    logger.info("Imported %s as video %s", src.name, video_id)
    return video
