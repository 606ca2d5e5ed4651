"""Reap clip jobs left in Generating by a process that died mid-run."""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from clipline.config import Settings
from clipline.core import store
from clipline.models.clip_job import ClipJobState

logger = logging.getLogger(__name__)

RECOVERY_MESSAGE_TEMPLATE = "Recovery: job was Generating but stale for > {minutes} minutes."


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def recover_stale_jobs(
    session: Session,
    settings: Settings,
    now: datetime | None = None,
) -> list[str]:
    """Mark Generating jobs with no heartbeat for stale_job_minutes as Failed.

    Jobs updated within the window are left alone, since their run may
    still be alive. Returns the ids of the videos whose jobs were reaped.
    """
    now = _as_utc(now or datetime.now(UTC))
    threshold = timedelta(minutes=settings.stale_job_minutes)
    message = RECOVERY_MESSAGE_TEMPLATE.format(minutes=settings.stale_job_minutes)

    reaped: list[str] = []
    for job in store.list_clip_jobs(session, ClipJobState.GENERATING):
        age = now - _as_utc(job.updated_at)
        if age <= threshold:
            continue
        store.set_clip_job_state(session, job.video_id, ClipJobState.FAILED, error_text=message)
        logger.warning(
            "Recovered stale clip job for %s (last update %s ago)", job.video_id, age
        )
        reaped.append(job.video_id)

    if reaped:
        logger.info("Recovered %d stale clip job(s)", len(reaped))
    return reaped
