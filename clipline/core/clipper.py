"""Clip generation: cut an approved video into fixed-length clips.

A run moves the video's clip job through NotStarted -> Generating ->
{Done | Failed}. Runs are idempotent: clips already on disk are reused, a
missing row for an existing clip is repaired, and a partial file is deleted
and cut again. Only one run per video is active in a process at a time.
"""

import logging
import math
import shutil
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core import store
from clipline.core.backfill import BackfillResult, backfill_clip_metadata
from clipline.core.duration import get_duration_seconds
from clipline.core.metadata import record_clip_metadata
from clipline.core.paths import clip_path, has_clip_files, video_dir
from clipline.errors import (
    AssetNotApproved,
    ClipPipelineError,
    ConcurrentRunSkipped,
    ProbeError,
    TranscodeError,
)
from clipline.models.clip_job import ClipJobState
from clipline.models.video import VideoStatus
from clipline.services.ffmpeg_service import cut_clip
from clipline.utils.diagnostics import log_tool_failure, truncate_for_db

logger = logging.getLogger(__name__)

SKIP_ALREADY_RUNNING = "already_running"
SKIP_NOT_APPROVED = "not_approved"
VIDEO_DELETED_MESSAGE = "Video deleted during generation."


@dataclass
class SegmentPlan:
    """One planned clip: [start_seconds, start_seconds + length_seconds)."""

    index: int
    start_seconds: float
    length_seconds: float


@dataclass
class ClipRunResult:
    """Summary of one clip generation run for one video."""

    video_id: str
    state: ClipJobState | None = None
    segments_total: int = 0
    generated: int = 0
    reused: int = 0
    rows_repaired: int = 0
    backfill: BackfillResult | None = None
    skipped_reason: str | None = None
    error: str | None = None
    generated_indices: list[int] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class ClipRunGuard:
    """Process-local ownership of clip runs, keyed by video id."""

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @contextmanager
    def claim(self, video_id: str) -> Iterator[None]:
        """Own the run for video_id until the block exits.

        Raises:
            ConcurrentRunSkipped: If another run already owns this video
        """
        with self._lock:
            if video_id in self._active:
                raise ConcurrentRunSkipped(video_id)
            self._active.add(video_id)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(video_id)

    def is_active(self, video_id: str) -> bool:
        with self._lock:
            return video_id in self._active


default_guard = ClipRunGuard()


def plan_segments(
    duration_seconds: float,
    clip_length_seconds: float,
    min_segment_seconds: float = 0.01,
) -> list[SegmentPlan]:
    """Split a duration into consecutive clips of clip_length_seconds.

    The last clip holds the remainder. A remainder at or below
    min_segment_seconds is dropped, so every planned clip has a positive
    length no greater than clip_length_seconds.
    """
    total = max(1, math.ceil(duration_seconds / clip_length_seconds))
    segments: list[SegmentPlan] = []
    for i in range(total):
        start = i * clip_length_seconds
        length = min(clip_length_seconds, max(0.0, duration_seconds - start))
        if length <= min_segment_seconds:
            break
        segments.append(SegmentPlan(index=i, start_seconds=start, length_seconds=length))
    return segments


def clip_looks_complete(path: Path, min_bytes: int) -> bool:
    """Cheap truncation check: a regular file larger than min_bytes."""
    try:
        return path.is_file() and path.stat().st_size > min_bytes
    except OSError:
        return False


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
        logger.info("Removed incomplete clip %s", path)
    except FileNotFoundError:
        pass


def generate_clips_for_video(
    session: Session,
    video_id: str,
    settings: Settings,
    guard: ClipRunGuard | None = None,
) -> ClipRunResult:
    """Generate all clips for an approved video.

    Returns immediately, writing nothing, if the video is not Approved or a
    run for it is already active. Tool failures are persisted on the clip
    job and the video instead of being raised.

    Args:
        session: SQLAlchemy database session
        video_id: Video identifier
        settings: Application configuration
        guard: Run ownership registry (defaults to the process-wide one)

    Returns:
        ClipRunResult describing what the run did

    Raises:
        ValueError: If the video doesn't exist
    """
    guard = guard or default_guard
    try:
        with guard.claim(video_id):
            return _generate(session, video_id, settings)
    except ConcurrentRunSkipped:
        logger.info("Clip run for %s already active, skipping", video_id)
        return ClipRunResult(video_id=video_id, skipped_reason=SKIP_ALREADY_RUNNING)
    except AssetNotApproved as e:
        logger.info("Not generating clips for %s: %s", video_id, e)
        return ClipRunResult(video_id=video_id, skipped_reason=SKIP_NOT_APPROVED)


def _generate(session: Session, video_id: str, settings: Settings) -> ClipRunResult:
    video = store.require_video(session, video_id)
    if video.status != VideoStatus.APPROVED.value:
        raise AssetNotApproved(f"status is {video.status}")

    store.set_video_error(session, video_id, None)
    store.set_clip_job_state(session, video_id, ClipJobState.GENERATING)
    result = ClipRunResult(video_id=video_id, state=ClipJobState.GENERATING)
    logger.info("Clip generation started for %s", video_id)

    try:
        _run_segments(session, video_id, video.source_path, settings, result)
    except IntegrityError:
        # A clip or job write referenced a video row that no longer exists
        session.rollback()
        if store.get_video(session, video_id) is not None:
            raise
        _stop_deleted(settings, video_id, result)
    except ClipPipelineError as e:
        if store.get_video(session, video_id) is None:
            _stop_deleted(settings, video_id, result)
        else:
            _record_failure(session, video_id, settings, e, result)
    except Exception as e:
        if store.get_video(session, video_id) is None:
            logger.warning("Clip generation for %s failed after deletion: %s", video_id, e)
            _stop_deleted(settings, video_id, result)
            return result
        logger.exception("Clip generation crashed for %s", video_id)
        message = truncate_for_db(f"Unexpected error: {e}", settings.db_error_max_chars)
        store.set_clip_job_state(session, video_id, ClipJobState.FAILED, error_text=message)
        store.set_video_error(session, video_id, message)
        raise

    return result


def _run_segments(
    session: Session,
    video_id: str,
    source_path: str,
    settings: Settings,
    result: ClipRunResult,
) -> None:
    existing = {clip.clip_index for clip in store.list_clips(session, video_id)}

    # Files on disk but no rows at all: rebuild rows before planning
    if not existing and has_clip_files(settings, video_id):
        logger.info("Clip files exist for %s but no rows; running backfill", video_id)
        result.backfill = backfill_clip_metadata(session, video_id, settings)
        existing = {clip.clip_index for clip in store.list_clips(session, video_id)}

    duration = get_duration_seconds(session, video_id, settings)
    segments = plan_segments(
        duration, settings.clip_length_seconds, settings.clip_min_segment_seconds
    )
    result.segments_total = len(segments)
    logger.info("Video %s: %.2fs -> %d clip(s)", video_id, duration, len(segments))

    for seg in segments:
        latest = store.get_video(session, video_id)
        if latest is None:
            _stop_deleted(settings, video_id, result)
            return
        if latest.status != VideoStatus.APPROVED.value:
            message = f"Stopped: video status changed to {latest.status} during generation."
            store.set_clip_job_state(session, video_id, ClipJobState.FAILED, error_text=message)
            result.state = ClipJobState.FAILED
            result.error = message
            logger.warning("Clip run for %s stopped at clip %d: %s", video_id, seg.index, message)
            return

        out_path = clip_path(settings, video_id, seg.index)

        if clip_looks_complete(out_path, settings.clip_min_bytes):
            result.reused += 1
            if seg.index not in existing:
                record_clip_metadata(session, video_id, seg.index, out_path, settings)
                existing.add(seg.index)
                result.rows_repaired += 1
            continue

        _remove_partial(out_path)

        logger.info(
            "Cutting clip %d/%d for %s: start=%.2fs length=%.2fs",
            seg.index + 1,
            len(segments),
            video_id,
            seg.start_seconds,
            seg.length_seconds,
        )
        try:
            cut_clip(
                source_path=source_path,
                output_path=str(out_path),
                start_seconds=seg.start_seconds,
                length_seconds=seg.length_seconds,
                settings=settings,
            )
        except TranscodeError as e:
            e.clip_index = seg.index
            raise

        if store.get_video(session, video_id) is None:
            _stop_deleted(settings, video_id, result)
            return

        record_clip_metadata(session, video_id, seg.index, out_path, settings)
        existing.add(seg.index)
        result.generated += 1
        result.generated_indices.append(seg.index)

        store.touch_clip_job(session, video_id)

    store.set_clip_job_state(session, video_id, ClipJobState.DONE, exit_code=0)
    result.state = ClipJobState.DONE
    logger.info(
        "Clip generation done for %s: %d generated, %d reused",
        video_id,
        result.generated,
        result.reused,
    )


def _stop_deleted(settings: Settings, video_id: str, result: ClipRunResult) -> None:
    """End a run whose video was deleted: write nothing, drop stray files."""
    logger.warning("Video %s was deleted during clip generation", video_id)
    directory = video_dir(settings, video_id)
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove leftover files for %s at %s: %s", video_id, directory, e)
    result.state = ClipJobState.FAILED
    result.error = VIDEO_DELETED_MESSAGE


def _record_failure(
    session: Session,
    video_id: str,
    settings: Settings,
    error: ClipPipelineError,
    result: ClipRunResult,
) -> None:
    """Persist a failed run: diagnostic log, clip job and video error."""
    max_chars = settings.db_error_max_chars

    if isinstance(error, TranscodeError):
        clip_index = error.clip_index
        last_index = max(result.segments_total - 1, 0)
        output = error.stderr or "(no output)"
        log_path = log_tool_failure(
            settings.logs_dir, video_id, "ffmpeg", f"clip {clip_index}", output
        )
        job_text = truncate_for_db(f"{output}\n(full log: {log_path})", max_chars)
        stderr_excerpt = error.stderr.strip() if error.stderr else ""
        video_message = (
            f"ffmpeg failed while generating clip {clip_index}/{last_index} "
            f"(exit={error.exit_code}).\nFull log: {log_path}\n"
            + (truncate_for_db(stderr_excerpt, 500) if stderr_excerpt else "(no stderr)")
        )
        exit_code = error.exit_code
    else:
        diagnostics = error.diagnostics if isinstance(error, ProbeError) else str(error)
        log_path = log_tool_failure(
            settings.logs_dir, video_id, "ffprobe", "clip generation", diagnostics
        )
        job_text = truncate_for_db(f"{error}\n(full log: {log_path})", max_chars)
        video_message = (
            f"Clip generation failed: {truncate_for_db(str(error), 500)}\nFull log: {log_path}"
        )
        exit_code = error.exit_code if isinstance(error, ProbeError) else None

    store.set_clip_job_state(
        session, video_id, ClipJobState.FAILED, error_text=job_text, exit_code=exit_code
    )
    store.set_video_error(session, video_id, video_message)
    result.state = ClipJobState.FAILED
    result.error = str(error)
    logger.error("Clip generation failed for %s: %s", video_id, error)
