"""Background job manager for clip generation and metadata tasks.

Uses a small ThreadPoolExecutor so long ffmpeg runs never block a request.
Jobs are stored in-memory; on process restart they are lost, but the
clip_jobs table is always the source of truth for clip generation.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from flask import Flask

from clipline.core.clipper import ClipRunGuard

logger = logging.getLogger(__name__)

ACTIONS = ("generate", "backfill", "extract_metadata")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Job:
    job_id: str
    video_id: str
    action: str  # generate|backfill|extract_metadata
    state: str = "queued"  # queued|running|success|error
    stage: str = ""
    message: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    result: dict | None = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "video_id": self.video_id,
            "action": self.action,
            "state": self.state,
            "stage": self.stage,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "result": self.result,
        }


class JobManager:
    def __init__(self, logs_dir: str, max_workers: int = 2, guard: ClipRunGuard | None = None):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="clipline-job",
        )
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._logs_dir = logs_dir
        self._guard = guard
        (Path(logs_dir) / "videos").mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, action: str, video_id: str, app: Flask) -> Job:
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        job = Job(job_id=uuid.uuid4().hex[:12], video_id=video_id, action=action)
        with self._lock:
            self._jobs[job.job_id] = job
        self._executor.submit(self._execute, job, app)
        logger.info("Job %s submitted: %s %s", job.job_id, action, video_id)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def active_for_video(self, video_id: str, action: str | None = None) -> Job | None:
        """Queued or running job for a video, optionally of one action only."""
        with self._lock:
            for job in self._jobs.values():
                if job.video_id != video_id or job.state not in ("queued", "running"):
                    continue
                if action is None or job.action == action:
                    return job
        return None

    def log_path(self, video_id: str) -> Path:
        return Path(self._logs_dir) / "videos" / f"{video_id}.log"

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _update(self, job: Job, **kwargs) -> None:
        with self._lock:
            for key, value in kwargs.items():
                setattr(job, key, value)
            job.updated_at = _utcnow()

    def _log(self, job: Job, msg: str) -> None:
        ts = _utcnow().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{ts} [{job.action}] {msg}\n"
        log_path = self.log_path(job.video_id)
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError:
            logger.warning("Failed to write video log: %s", log_path)

    # ------------------------------------------------------------------
    # Executor entry point
    # ------------------------------------------------------------------

    def _execute(self, job: Job, app: Flask) -> None:
        with app.app_context():
            session_factory = app.config["session_factory"]
            settings = app.config["settings"]
            session = session_factory()

            self._update(job, state="running", stage="starting")
            self._log(job, f"Starting {job.action} for {job.video_id}")

            try:
                if job.action == "generate":
                    self._do_generate(job, session, settings)
                elif job.action == "backfill":
                    self._do_backfill(job, session, settings)
                elif job.action == "extract_metadata":
                    self._do_extract_metadata(job, session, settings)
                else:
                    raise ValueError(f"Unknown action: {job.action}")

                self._update(job, state="success", stage="done")
                self._log(job, "Job completed successfully")

            except Exception as e:
                logger.exception("Job %s failed", job.job_id)
                self._update(job, state="error", message=str(e))
                self._log(job, f"ERROR: {e}")
            finally:
                session.close()

    # ------------------------------------------------------------------
    # Action runners: update stage/result but never set state
    # ------------------------------------------------------------------

    def _do_generate(self, job, session, settings):
        from clipline.core.clipper import generate_clips_for_video

        self._update(job, stage="generating")
        self._log(job, "Generating clips...")
        result = generate_clips_for_video(session, job.video_id, settings, guard=self._guard)

        if result.skipped:
            self._update(job, result={"success": True, "skipped": result.skipped_reason})
            self._log(job, f"Skipped: {result.skipped_reason}")
            return

        self._update(
            job,
            result={
                "success": result.error is None,
                "state": result.state.value if result.state else None,
                "clips_total": result.segments_total,
                "generated": result.generated,
                "reused": result.reused,
                "rows_repaired": result.rows_repaired,
                "error": result.error,
            },
        )
        if result.error:
            # Failure is already persisted on the clip job
            raise RuntimeError(result.error)
        self._log(
            job,
            f"Generation complete: {result.generated} generated, "
            f"{result.reused} reused of {result.segments_total}",
        )

    def _do_backfill(self, job, session, settings):
        from clipline.core.backfill import backfill_clip_metadata
        from clipline.core.store import require_video

        require_video(session, job.video_id)
        self._update(job, stage="backfilling")
        self._log(job, "Backfilling clip metadata...")
        result = backfill_clip_metadata(session, job.video_id, settings)
        self._update(
            job,
            result={
                "success": True,
                "scanned": result.scanned,
                "upserted": result.upserted,
                "failed": result.failed,
            },
        )
        self._log(
            job,
            f"Backfill complete: scanned={result.scanned} "
            f"upserted={result.upserted} failed={result.failed}",
        )

    def _do_extract_metadata(self, job, session, settings):
        from clipline.core.metadata import extract_and_persist_metadata

        self._update(job, stage="probing")
        self._log(job, "Extracting metadata...")
        meta = extract_and_persist_metadata(session, job.video_id, settings)
        if meta is None:
            raise RuntimeError("Metadata extraction failed")
        self._update(
            job,
            result={
                "success": True,
                "duration_seconds": meta.duration_seconds,
                "width": meta.width,
                "height": meta.height,
            },
        )
        self._log(job, f"Metadata extracted: {meta.duration_seconds}s {meta.width}x{meta.height}")
