"""Reconcile clip files on disk with clip rows in the database."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core.metadata import record_clip_metadata
from clipline.core.paths import clips_dir, parse_clip_index
from clipline.errors import ProbeError

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    """Counts from one backfill scan."""

    video_id: str
    scanned: int = 0
    upserted: int = 0
    failed: int = 0


def backfill_clip_metadata(
    session: Session,
    video_id: str,
    settings: Settings,
) -> BackfillResult:
    """Re-probe every canonical clip file of a video and upsert its row.

    Files that are not named clip_NNN.mp4, are not regular files, or are at
    or below the minimum size are ignored. A file that cannot be stat'ed or
    probed is logged and skipped; the scan continues.
    """
    result = BackfillResult(video_id=video_id)
    directory = clips_dir(settings, video_id)

    try:
        entries = sorted(directory.iterdir())
    except FileNotFoundError:
        logger.info("No clips directory for %s, nothing to backfill", video_id)
        return result
    except OSError as e:
        logger.warning("Cannot list clips directory %s: %s", directory, e)
        return result

    for path in entries:
        clip_index = parse_clip_index(path.name)
        if clip_index is None:
            continue

        try:
            if not path.is_file() or path.stat().st_size <= settings.clip_min_bytes:
                continue
        except OSError as e:
            logger.warning("Skipping unreadable clip %s: %s", path, e)
            continue

        result.scanned += 1
        try:
            record_clip_metadata(session, video_id, clip_index, path, settings)
        except ProbeError as e:
            logger.warning("Could not probe clip %s: %s", path, e)
            result.failed += 1
            continue
        result.upserted += 1

    logger.info(
        "Backfill for %s: scanned=%d upserted=%d failed=%d",
        video_id,
        result.scanned,
        result.upserted,
        result.failed,
    )
    return result
