"""Append-only diagnostic logs for external tool failures."""

import re
from datetime import UTC, datetime
from pathlib import Path

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name)


def append_log(logs_dir: str | Path, filename: str, text: str) -> Path:
    """Append text to ``<logs_dir>/<filename>``. Returns the path written to."""
    path = Path(logs_dir) / _safe_filename(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(text)
    return path


def log_tool_failure(
    logs_dir: str | Path,
    video_id: str,
    tool: str,
    context: str,
    output: str,
) -> Path:
    """Write a timestamped section with full tool output to ``<video_id>-<tool>.log``."""
    ts = datetime.now(UTC).isoformat()
    entry = f"---- {ts} {context} ----\n{output}\n\n"
    return append_log(logs_dir, f"{video_id}-{tool}.log", entry)


def truncate_for_db(text: str | None, max_chars: int = 4000) -> str:
    """Bound text stored in a database row, noting the original length."""
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n... (truncated, total={len(text)})"
