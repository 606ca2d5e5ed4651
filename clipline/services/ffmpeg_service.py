"""ffmpeg service: cut clips from a source video via the ffmpeg CLI."""

import logging
from dataclasses import dataclass
from pathlib import Path

from clipline.config import Settings
from clipline.errors import TranscodeError
from clipline.services.command_runner import run_command

logger = logging.getLogger(__name__)


@dataclass
class ClipCutResult:
    """Result of cutting a single clip."""

    output_path: str
    start_seconds: float
    length_seconds: float
    size_bytes: int
    ffmpeg_command: list[str]
    returncode: int
    stderr: str


@dataclass
class DependencyStatus:
    """Whether the external media tools can be run."""

    ffmpeg: bool
    ffprobe: bool
    ffmpeg_version: str = "unknown"

    @property
    def ok(self) -> bool:
        return self.ffmpeg and self.ffprobe

    @property
    def message(self) -> str:
        if self.ok:
            return self.ffmpeg_version
        missing = [
            name
            for name, present in (("ffmpeg", self.ffmpeg), ("ffprobe", self.ffprobe))
            if not present
        ]
        return (
            f"Missing dependencies: {'/'.join(missing)} not found on PATH. "
            "Install ffmpeg and make sure 'ffmpeg' and 'ffprobe' run in a terminal."
        )


def _fmt_seconds(value: float) -> str:
    """Format seconds for the command line: 120.0 -> "120", 10.5 -> "10.5"."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text or "0"


def check_dependencies(settings: Settings) -> DependencyStatus:
    """Check that ffmpeg and ffprobe can be executed."""
    ffmpeg_res = run_command(settings.ffmpeg_bin, ["-version"], timeout=5)
    ffprobe_res = run_command(settings.ffprobe_bin, ["-version"], timeout=5)
    version = "unknown"
    if ffmpeg_res.exit_code == 0 and ffmpeg_res.stdout:
        version = ffmpeg_res.stdout.split("\n")[0].strip()
    return DependencyStatus(
        ffmpeg=ffmpeg_res.exit_code == 0,
        ffprobe=ffprobe_res.exit_code == 0,
        ffmpeg_version=version,
    )


def build_clip_command(
    source_path: str,
    output_path: str,
    start_seconds: float,
    length_seconds: float,
    settings: Settings,
) -> list[str]:
    """Build the ffmpeg argument list for one clip.

    Both streams are re-encoded; stream copy would cut on keyframes and
    produce artifacts at arbitrary boundaries.
    """
    return [
        "-hide_banner",
        "-y",
        # -ss before -i seeks the input, which is fast and accurate when re-encoding
        "-ss",
        _fmt_seconds(start_seconds),
        "-i",
        source_path,
        "-t",
        _fmt_seconds(length_seconds),
        # First video stream, audio only if present
        "-map",
        "0:v:0",
        "-map",
        "0:a?",
        "-c:v",
        settings.clip_video_codec,
        "-preset",
        settings.clip_preset,
        "-crf",
        str(settings.clip_crf),
        "-c:a",
        settings.clip_audio_codec,
        "-b:a",
        settings.clip_audio_bitrate,
        # moov atom up front for progressive playback
        "-movflags",
        "+faststart",
        output_path,
    ]


def cut_clip(
    source_path: str,
    output_path: str,
    start_seconds: float,
    length_seconds: float,
    settings: Settings,
) -> ClipCutResult:
    """Cut [start, start + length) from the source into output_path.

    Args:
        source_path: Path to the source video
        output_path: Path for the clip (overwritten)
        start_seconds: Offset into the source
        length_seconds: Clip length
        settings: Application configuration (codec, timeout)

    Returns:
        ClipCutResult with command and output size

    Raises:
        FileNotFoundError: If the source doesn't exist
        TranscodeError: If ffmpeg exits non-zero or times out
    """
    if not Path(source_path).exists():
        raise FileNotFoundError(f"Source video not found: {source_path}")

    # Only the clips directory is created; the video directory must exist
    Path(output_path).parent.mkdir(exist_ok=True)
    args = build_clip_command(source_path, output_path, start_seconds, length_seconds, settings)

    res = run_command(settings.ffmpeg_bin, args, timeout=settings.transcode_timeout_seconds)

    if res.exit_code != 0:
        raise TranscodeError(
            f"ffmpeg clip creation failed (exit code {res.exit_code})",
            exit_code=res.exit_code,
            stderr=res.stderr or res.stdout or "(no output)",
        )

    size_bytes = 0
    if Path(output_path).exists():
        size_bytes = Path(output_path).stat().st_size

    return ClipCutResult(
        output_path=output_path,
        start_seconds=start_seconds,
        length_seconds=length_seconds,
        size_bytes=size_bytes,
        ffmpeg_command=[settings.ffmpeg_bin, *args],
        returncode=res.exit_code,
        stderr=res.stderr,
    )
