"""Tests for the ffmpeg service layer."""

from unittest.mock import patch

import pytest

from clipline.errors import TranscodeError
from clipline.services.command_runner import CommandResult
from clipline.services.ffmpeg_service import (
    _fmt_seconds,
    build_clip_command,
    check_dependencies,
    cut_clip,
)


@pytest.mark.parametrize(
    "value,expected",
    [(0, "0"), (0.0, "0"), (120.0, "120"), (240, "240"), (10.5, "10.5"), (10.04, "10.04")],
)
def test_fmt_seconds(value, expected):
    assert _fmt_seconds(value) == expected


def test_build_clip_command_shape(test_settings):
    args = build_clip_command("/in/original.mp4", "/out/clip_001.mp4", 120.0, 120.0, test_settings)
    assert args == [
        "-hide_banner",
        "-y",
        "-ss",
        "120",
        "-i",
        "/in/original.mp4",
        "-t",
        "120",
        "-map",
        "0:v:0",
        "-map",
        "0:a?",
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "20",
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-movflags",
        "+faststart",
        "/out/clip_001.mp4",
    ]


def test_build_clip_command_seeks_before_input(test_settings):
    args = build_clip_command("/in.mp4", "/out.mp4", 240.0, 10.0, test_settings)
    assert args.index("-ss") < args.index("-i")
    assert args[args.index("-t") + 1] == "10"


class TestCutClip:
    def test_success(self, test_settings, tmp_path, media_tools):
        src = tmp_path / "original.mp4"
        src.write_bytes(b"x" * 10)
        out = tmp_path / "clips" / "clip_000.mp4"

        result = cut_clip(str(src), str(out), 0.0, 120.0, test_settings)

        assert out.exists()
        assert result.size_bytes == media_tools.clip_bytes
        assert result.returncode == 0
        assert result.ffmpeg_command[0] == "ffmpeg"
        program, args = media_tools.calls[-1]
        assert program == "ffmpeg"

    def test_does_not_recreate_a_removed_video_dir(self, test_settings, tmp_path, media_tools):
        src = tmp_path / "original.mp4"
        src.write_bytes(b"x" * 10)
        out = tmp_path / "gone" / "clips" / "clip_000.mp4"

        with pytest.raises(FileNotFoundError):
            cut_clip(str(src), str(out), 0.0, 120.0, test_settings)
        assert not (tmp_path / "gone").exists()
        assert media_tools.cuts == []

    def test_missing_source(self, test_settings, tmp_path):
        with pytest.raises(FileNotFoundError):
            cut_clip(str(tmp_path / "nope.mp4"), str(tmp_path / "out.mp4"), 0, 10, test_settings)

    def test_failure_raises_with_stderr_and_exit_code(self, test_settings, tmp_path):
        src = tmp_path / "original.mp4"
        src.write_bytes(b"x")
        with patch(
            "clipline.services.ffmpeg_service.run_command",
            return_value=CommandResult(1, "", "Error while decoding stream #0:0"),
        ):
            with pytest.raises(TranscodeError) as exc_info:
                cut_clip(str(src), str(tmp_path / "out.mp4"), 0, 10, test_settings)
        assert exc_info.value.exit_code == 1
        assert "Error while decoding" in exc_info.value.stderr

    def test_timeout_is_a_transcode_error(self, test_settings, tmp_path):
        src = tmp_path / "original.mp4"
        src.write_bytes(b"x")
        with patch(
            "clipline.services.ffmpeg_service.run_command",
            return_value=CommandResult(124, "", "Command timed out after 600s", timed_out=True),
        ) as mock_run:
            with pytest.raises(TranscodeError) as exc_info:
                cut_clip(str(src), str(tmp_path / "out.mp4"), 0, 10, test_settings)
        assert exc_info.value.exit_code == 124
        assert mock_run.call_args.kwargs["timeout"] == test_settings.transcode_timeout_seconds

    def test_empty_output_still_reported(self, test_settings, tmp_path):
        src = tmp_path / "original.mp4"
        src.write_bytes(b"x")
        with patch(
            "clipline.services.ffmpeg_service.run_command",
            return_value=CommandResult(2, "", ""),
        ):
            with pytest.raises(TranscodeError) as exc_info:
                cut_clip(str(src), str(tmp_path / "out.mp4"), 0, 10, test_settings)
        assert exc_info.value.stderr == "(no output)"


class TestCheckDependencies:
    def test_all_present(self, test_settings, media_tools):
        status = check_dependencies(test_settings)
        assert status.ok
        assert status.message.startswith("ffmpeg version")

    def test_ffprobe_missing(self, test_settings, media_tools):
        media_tools.missing.add("ffprobe")
        status = check_dependencies(test_settings)
        assert not status.ok
        assert status.ffmpeg is True
        assert "ffprobe" in status.message
        assert "Missing dependencies" in status.message
