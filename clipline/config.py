import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///data/clipline.db"

    # Storage
    videos_dir: str = "data/videos"
    logs_dir: str = "data/logs"

    # External tools
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    probe_timeout_seconds: int = 60
    transcode_timeout_seconds: int = 600  # 10 minutes

    # Clip generation
    clip_length_seconds: float = 120.0
    clip_min_bytes: int = 1024  # files at or below this size count as partial
    clip_min_segment_seconds: float = 0.01
    clip_video_codec: str = "libx264"
    clip_preset: str = "veryfast"
    clip_crf: int = 20
    clip_audio_codec: str = "aac"
    clip_audio_bitrate: str = "128k"

    # Jobs
    max_workers: int = 2
    stale_job_minutes: int = 10

    # Error text stored in the database is truncated to this many chars
    db_error_max_chars: int = 4000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_clip_length(self) -> "Settings":
        if self.clip_length_seconds <= 0:
            raise ValueError(
                f"clip_length_seconds must be positive, got {self.clip_length_seconds}"
            )
        if self.max_workers < 1:
            logger.warning("max_workers=%d is invalid; using 1", self.max_workers)
            self.max_workers = 1
        return self


def get_settings() -> Settings:
    return Settings()
