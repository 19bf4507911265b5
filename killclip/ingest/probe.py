from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

from killclip.errors import ExternalCollaboratorError

VIDEO_EXTENSIONS = {".mp4", ".avi", ".mov", ".mkv", ".wmv", ".flv", ".webm"}


def resolve_video_path(video_path: str | Path) -> Path:
    """Resolve and validate an input video path by existence and extension."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.is_file():
        raise FileNotFoundError(f"Video file not found: {source_path}")
    if source_path.suffix.lower() not in VIDEO_EXTENSIONS:
        expected = ", ".join(sorted(VIDEO_EXTENSIONS))
        raise ValueError(f"Input file is not a supported video ({expected}): {source_path}")
    return source_path


def probe_media(video_path: str | Path) -> dict[str, Any]:
    """Probe container duration and primary video stream geometry via ffprobe."""

    source_path = resolve_video_path(video_path)
    payload = _run_ffprobe(source_path)
    return _normalize_probe_payload(source_path, payload)


def _run_ffprobe(video_path: Path) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise ExternalCollaboratorError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise ExternalCollaboratorError(f"ffprobe failed to read media file: {video_path}.{details}") from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise ExternalCollaboratorError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    format_entry = payload.get("format", {})
    video_streams = [stream for stream in payload.get("streams", []) if stream.get("codec_type") == "video"]
    if not video_streams:
        raise ExternalCollaboratorError(f"No video stream found in {video_path}")

    stream = video_streams[0]
    return {
        "video_path": str(video_path),
        "format_name": format_entry.get("format_name"),
        "duration_seconds": _to_float(format_entry.get("duration")) or _to_float(stream.get("duration")),
        "width": _to_int(stream.get("width")),
        "height": _to_int(stream.get("height")),
        "frame_rate": parse_frame_rate(stream.get("r_frame_rate") or stream.get("avg_frame_rate")),
        "codec_name": stream.get("codec_name"),
        "has_audio": any(entry.get("codec_type") == "audio" for entry in payload.get("streams", [])),
    }


def parse_frame_rate(raw_value: Any, default: float = 30.0) -> float:
    """Parse ffprobe's ``num/den`` rate strings, falling back to ``default``."""

    if raw_value in (None, "N/A", ""):
        return default
    text = str(raw_value)
    if "/" in text:
        numerator, denominator = text.split("/", 1)
        if float(denominator) == 0:
            return default
        return float(numerator) / float(denominator)
    return float(text)


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
