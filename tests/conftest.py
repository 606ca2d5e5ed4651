"""Shared fixtures: temp settings, file-backed SQLite, and a fake ffmpeg/ffprobe."""

import json
from pathlib import Path

import pytest

from clipline.config import Settings
from clipline.core import store
from clipline.core.paths import source_path
from clipline.db import get_session_factory, init_db
from clipline.models.video import VideoStatus
from clipline.services.command_runner import COMMAND_NOT_FOUND_EXIT_CODE, CommandResult

MP4_HEADER = b"\x00\x00\x00\x20ftypisom\x00\x00\x02\x00isomiso2avc1mp41"


@pytest.fixture
def test_settings(tmp_path):
    """Settings with temp directories and a file-backed database.

    A file database (rather than :memory:) gives each session its own
    connection, so writes from one session are seen by another only after
    commit, as in production.
    """
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'clipline.db'}",
        videos_dir=str(tmp_path / "videos"),
        logs_dir=str(tmp_path / "logs"),
        ffmpeg_bin="ffmpeg",
        ffprobe_bin="ffprobe",
    )


@pytest.fixture
def session_factory(test_settings):
    init_db(test_settings.database_url)
    return get_session_factory(test_settings.database_url)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


class FakeMediaTools:
    """Stands in for run_command, answering ffprobe and ffmpeg invocations.

    ffprobe reports ``durations[path]`` (or ``default_duration``) for source
    files and the cut length for clips it "encoded". ffmpeg writes
    ``clip_bytes`` bytes to the output path.
    """

    def __init__(self):
        self.default_duration: float | None = 250.0
        self.durations: dict[str, float | None] = {}
        self.clip_bytes = 4096
        self.probe_failures: set[str] = set()  # file names
        self.ffmpeg_failures: dict[str, tuple[int, str]] = {}  # file name -> (exit, stderr)
        self.missing: set[str] = set()  # programs that "aren't installed"
        self.on_cut = None  # callable(output_path) after each successful cut
        self.calls: list[tuple[str, list[str]]] = []
        self._clip_lengths: dict[str, float] = {}

    def __call__(self, program, args, timeout=None):
        self.calls.append((program, list(args)))
        if program in self.missing:
            return CommandResult(COMMAND_NOT_FOUND_EXIT_CODE, "", f"{program} not found in PATH")
        if "-version" in args:
            return CommandResult(0, f"{program} version 6.1.1 Copyright (c)\nbuilt with gcc", "")
        if program == "ffprobe":
            return self._probe(args[-1])
        if program == "ffmpeg":
            return self._cut(args)
        return CommandResult(COMMAND_NOT_FOUND_EXIT_CODE, "", f"{program} not found in PATH")

    @property
    def cuts(self) -> list[list[str]]:
        return [args for program, args in self.calls if program == "ffmpeg" and "-i" in args]

    @property
    def probes(self) -> list[str]:
        return [args[-1] for program, args in self.calls if program == "ffprobe"]

    def _probe(self, path: str) -> CommandResult:
        name = Path(path).name
        if name in self.probe_failures:
            return CommandResult(1, "", f"{path}: Invalid data found when processing input")

        if path in self._clip_lengths:
            duration = self._clip_lengths[path]
        else:
            duration = self.durations.get(path, self.default_duration)

        payload = {
            "streams": [
                {
                    "index": 0,
                    "codec_type": "audio",
                    "codec_name": "aac",
                },
                {
                    "index": 1,
                    "codec_type": "video",
                    "codec_name": "h264",
                    "codec_long_name": "H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10",
                    "width": 1920,
                    "height": 1080,
                    "r_frame_rate": "30000/1001",
                    "avg_frame_rate": "30000/1001",
                    "display_aspect_ratio": "16:9",
                    "disposition": {"default": 1},
                },
            ],
            "format": {
                "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
                "size": "123456",
            },
        }
        if duration is not None:
            payload["format"]["duration"] = f"{duration:.6f}"
        return CommandResult(0, json.dumps(payload), "")

    def _cut(self, args: list[str]) -> CommandResult:
        out = args[-1]
        name = Path(out).name
        if name in self.ffmpeg_failures:
            exit_code, stderr = self.ffmpeg_failures[name]
            Path(out).write_bytes(b"\x00" * 100)  # ffmpeg leaves a partial file behind
            return CommandResult(exit_code, "", stderr)

        Path(out).write_bytes(b"\x00" * self.clip_bytes)
        self._clip_lengths[out] = float(args[args.index("-t") + 1])
        if self.on_cut is not None:
            self.on_cut(out)
        return CommandResult(0, "", "")


@pytest.fixture
def media_tools(monkeypatch):
    fake = FakeMediaTools()
    monkeypatch.setattr("clipline.services.ffprobe_service.run_command", fake)
    monkeypatch.setattr("clipline.services.ffmpeg_service.run_command", fake)
    return fake


def make_video(
    session,
    settings,
    video_id="vid001",
    status=VideoStatus.PENDING,
    filename="holiday.mp4",
):
    """Create a video row with a small fake source file in place."""
    path = source_path(settings, video_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(MP4_HEADER + b"\x00" * 2048)
    video = store.create_video(session, video_id, filename=filename, source_path=str(path))
    if status != VideoStatus.PENDING:
        store.update_video_status(session, video_id, VideoStatus(status).value)
    return video


@pytest.fixture
def approved_video(db_session, test_settings):
    return make_video(db_session, test_settings, status=VideoStatus.APPROVED)


@pytest.fixture
def video_factory(db_session, test_settings):
    def _make(video_id="vid001", status=VideoStatus.PENDING, filename="holiday.mp4"):
        return make_video(db_session, test_settings, video_id, status, filename)

    return _make
