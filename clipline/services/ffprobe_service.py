"""ffprobe service: media inspection and metadata derivation."""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path

from clipline.config import Settings
from clipline.errors import ProbeError
from clipline.services.command_runner import run_command

logger = logging.getLogger(__name__)

# display_aspect_ratio values that mean "unknown"
_DEGENERATE_DAR = {"0:1", "N/A", ""}


@dataclass
class MediaMetadata:
    """Metadata for one media file. Every field may be unknown (None)."""

    duration_seconds: float | None = None
    frame_rate: float | None = None
    width: int | None = None
    height: int | None = None
    aspect_ratio: float | None = None
    aspect_ratio_str: str | None = None
    rotation_raw: str | None = None  # display only, never applied to pixels
    codec_name: str | None = None
    codec_long_name: str | None = None
    container_format: str | None = None
    byte_size: int | None = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)


def run_ffprobe(file_path: str | Path, settings: Settings) -> dict:
    """Run ffprobe on a file and return its parsed JSON description.

    Raises:
        ProbeError: If ffprobe exits non-zero or prints something that isn't JSON
    """
    args = [
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(file_path),
    ]
    res = run_command(settings.ffprobe_bin, args, timeout=settings.probe_timeout_seconds)

    if res.exit_code != 0:
        stderr = res.stderr.strip()
        raise ProbeError(
            f"ffprobe failed (exit={res.exit_code}).\n"
            + (f"stderr:\n{stderr}" if stderr else "No stderr output."),
            stdout=res.stdout,
            stderr=res.stderr,
            exit_code=res.exit_code,
        )

    try:
        data = json.loads(res.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(
            f"ffprobe returned non-JSON output.\nParse error: {e}\n"
            f"stdout (first 500 chars):\n{res.stdout[:500]}",
            stdout=res.stdout,
            stderr=res.stderr,
            exit_code=res.exit_code,
        ) from e

    if not isinstance(data, dict):
        raise ProbeError(
            "ffprobe returned JSON that is not an object.",
            stdout=res.stdout,
            stderr=res.stderr,
            exit_code=res.exit_code,
        )
    return data


def parse_frame_rate(expr) -> float | None:
    """Parse an ffprobe rational like "30000/1001".

    Returns None unless the result is finite and positive.
    """
    if expr is None:
        return None
    s = str(expr).strip()
    if not s:
        return None

    parts = s.split("/")
    try:
        if len(parts) == 1:
            value = float(parts[0])
        elif len(parts) == 2:
            num = float(parts[0])
            den = float(parts[1])
            if den == 0 or not math.isfinite(num) or not math.isfinite(den):
                return None
            value = num / den
        else:
            return None
    except ValueError:
        return None

    if not math.isfinite(value) or value <= 0:
        return None
    return value


def parse_duration(value) -> float | None:
    """Parse a duration in seconds; finite and >= 0, else None."""
    if value is None:
        return None
    try:
        d = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(d) or d < 0:
        return None
    return d


def _parse_dimension(value) -> int | None:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def compute_aspect_ratio(
    width: int | None,
    height: int | None,
    display_aspect_ratio: str | None,
) -> tuple[float | None, str | None]:
    """Return (ratio, "W:H" string), preferring the reported display aspect ratio."""
    if display_aspect_ratio and display_aspect_ratio not in _DEGENERATE_DAR:
        parts = display_aspect_ratio.split(":")
        if len(parts) == 2:
            try:
                a = float(parts[0])
                b = float(parts[1])
            except ValueError:
                a = b = 0.0
            if math.isfinite(a) and math.isfinite(b) and a > 0 and b > 0:
                return a / b, display_aspect_ratio

    if width and height:
        return width / height, f"{width}:{height}"

    return None, None


def extract_rotation(video_stream: dict) -> str | None:
    """Find the raw rotation hint: tags.rotate first, then side data."""
    tags = video_stream.get("tags") or {}
    rotate = tags.get("rotate")
    if rotate is not None:
        return str(rotate)

    side_data = video_stream.get("side_data_list")
    if isinstance(side_data, list):
        for entry in side_data:
            if not isinstance(entry, dict):
                continue
            # Covers "Display Matrix" entries, which carry a rotation key
            if entry.get("rotation") is not None:
                return str(entry["rotation"])

    return None


def _pick_video_stream(streams: list) -> dict | None:
    videos = [s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"]
    for stream in videos:
        if (stream.get("disposition") or {}).get("default") == 1:
            return stream
    return videos[0] if videos else None


def _file_size(file_path: str | Path, format_info: dict) -> int | None:
    """Prefer the live file size; fall back to what ffprobe reported."""
    try:
        return os.stat(file_path).st_size
    except OSError:
        try:
            return int(format_info.get("size"))
        except (TypeError, ValueError):
            return None


def metadata_from_probe(file_path: str | Path, raw: dict) -> MediaMetadata:
    """Derive a MediaMetadata record from ffprobe JSON.

    Raises:
        ProbeError: If the payload has no video stream
    """
    streams = raw.get("streams") if isinstance(raw.get("streams"), list) else []
    format_info = raw.get("format") if isinstance(raw.get("format"), dict) else {}

    video_stream = _pick_video_stream(streams)
    if video_stream is None:
        raise ProbeError(
            "ffprobe returned no video stream.",
            stdout=json.dumps(raw)[:2000],
        )

    width = _parse_dimension(video_stream.get("width"))
    height = _parse_dimension(video_stream.get("height"))

    frame_rate = parse_frame_rate(video_stream.get("r_frame_rate"))
    if frame_rate is None:
        frame_rate = parse_frame_rate(video_stream.get("avg_frame_rate"))

    duration = parse_duration(format_info.get("duration"))
    if duration is None:
        duration = parse_duration(video_stream.get("duration"))

    dar = video_stream.get("display_aspect_ratio")
    aspect_ratio, aspect_ratio_str = compute_aspect_ratio(
        width, height, dar if isinstance(dar, str) else None
    )

    codec_name = video_stream.get("codec_name")
    codec_long_name = video_stream.get("codec_long_name")
    container_format = format_info.get("format_name")

    return MediaMetadata(
        duration_seconds=duration,
        frame_rate=frame_rate,
        width=width,
        height=height,
        aspect_ratio=aspect_ratio,
        aspect_ratio_str=aspect_ratio_str,
        rotation_raw=extract_rotation(video_stream),
        codec_name=codec_name if isinstance(codec_name, str) else None,
        codec_long_name=codec_long_name if isinstance(codec_long_name, str) else None,
        container_format=container_format if isinstance(container_format, str) else None,
        byte_size=_file_size(file_path, format_info),
        raw=raw,
    )


def extract_media_metadata(file_path: str | Path, settings: Settings) -> MediaMetadata:
    """Probe a file and derive its metadata.

    Raises:
        ProbeError: On any ffprobe failure or if there is no video stream
    """
    raw = run_ffprobe(file_path, settings)
    return metadata_from_probe(file_path, raw)
