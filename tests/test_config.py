"""Tests for Settings validation."""

import pytest
from pydantic import ValidationError

from clipline.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.clip_length_seconds == 120.0
    assert settings.stale_job_minutes == 10
    assert settings.ffmpeg_bin == "ffmpeg"


def test_env_override(monkeypatch):
    monkeypatch.setenv("CLIP_LENGTH_SECONDS", "30")
    monkeypatch.setenv("FFPROBE_BIN", "/opt/ffmpeg/bin/ffprobe")
    settings = Settings(_env_file=None)
    assert settings.clip_length_seconds == 30.0
    assert settings.ffprobe_bin == "/opt/ffmpeg/bin/ffprobe"


@pytest.mark.parametrize("length", [0, -5])
def test_clip_length_must_be_positive(length):
    with pytest.raises(ValidationError, match="clip_length_seconds must be positive"):
        Settings(_env_file=None, clip_length_seconds=length)


def test_max_workers_clamped():
    settings = Settings(_env_file=None, max_workers=0)
    assert settings.max_workers == 1
