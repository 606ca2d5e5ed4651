"""Exceptions raised by the clip pipeline."""


class ClipPipelineError(Exception):
    """Base class for failures that are persisted on the video and its clip job."""


class ProbeError(ClipPipelineError):
    """ffprobe failed, returned unparseable output, or found no video stream."""

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code

    @property
    def diagnostics(self) -> str:
        """Full text for the diagnostic log."""
        parts = [str(self)]
        if self.exit_code is not None:
            parts.append(f"exit code: {self.exit_code}")
        if self.stderr.strip():
            parts.append(f"stderr:\n{self.stderr.strip()}")
        if self.stdout.strip():
            parts.append(f"stdout:\n{self.stdout.strip()}")
        return "\n".join(parts)


class DurationUnknown(ClipPipelineError):
    """Neither stored metadata nor a fresh probe yielded a usable duration."""


class TranscodeError(ClipPipelineError):
    """ffmpeg exited non-zero while cutting a clip."""

    def __init__(
        self,
        message: str,
        exit_code: int,
        stderr: str = "",
        clip_index: int | None = None,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.clip_index = clip_index


class AssetNotApproved(Exception):
    """Guard: the video is not in Approved status. Absorbed, never surfaced."""


class ConcurrentRunSkipped(Exception):
    """Guard: a clip run for this video is already active. Absorbed, never surfaced."""
