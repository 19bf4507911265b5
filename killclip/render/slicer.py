from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Sequence

from killclip.config import RenderSettings
from killclip.errors import ExternalCollaboratorError
from killclip.ingest.workspace import Workspace
from killclip.models import SegmentSpec

logger = logging.getLogger(__name__)


def extract_and_concatenate_segments(
    video_path: str | Path,
    segments: Sequence[SegmentSpec],
    output_path: str | Path,
    workspace: Workspace,
    *,
    render: RenderSettings | None = None,
    on_segment: Callable[[int, int], None] | None = None,
) -> Path:
    """Slice each segment into the workspace, then join them into ``output_path``.

    The final file is assembled inside the workspace and moved into place
    last, so a failed or interrupted run never leaves a partial output video.
    """

    if not segments:
        raise ValueError("No segments to concatenate.")

    settings = render or RenderSettings()
    source_path = Path(video_path)
    target_path = Path(output_path)
    segment_dir = workspace.subdir("segments")

    segment_paths: list[Path] = []
    for idx, segment in enumerate(segments):
        segment_path = segment_dir / f"segment_{idx:03d}.mp4"
        _run_ffmpeg(build_slice_command(source_path, segment, segment_path, settings))
        segment_paths.append(segment_path)
        logger.debug("Sliced segment %d at %.3fs for %.3fs", idx, segment.start_time, segment.duration)
        if on_segment is not None:
            on_segment(idx + 1, len(segments))

    assembled = workspace.path / f"assembled{target_path.suffix or '.mp4'}"
    if len(segment_paths) == 1:
        shutil.copyfile(segment_paths[0], assembled)
    else:
        concat_list = workspace.path / "concat_list.txt"
        concat_list.write_text(
            "\n".join(f"file '{_escape_concat_path(path)}'" for path in segment_paths) + "\n",
            encoding="utf-8",
        )
        _run_ffmpeg(build_concat_command(concat_list, assembled))

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(assembled), str(target_path))
    return target_path


def build_slice_command(
    source_path: Path,
    segment: SegmentSpec,
    output_path: Path,
    settings: RenderSettings,
) -> list[str]:
    return [
        "ffmpeg",
        "-v",
        "error",
        "-y",
        "-ss",
        f"{segment.start_time:.3f}",
        "-i",
        str(source_path),
        "-t",
        f"{segment.duration:.3f}",
        "-c:v",
        settings.video_codec,
        "-preset",
        settings.preset,
        "-crf",
        str(settings.crf),
        "-c:a",
        settings.audio_codec,
        "-movflags",
        "+faststart",
        str(output_path),
    ]


def build_concat_command(concat_list: Path, output_path: Path) -> list[str]:
    # Segments share one codec configuration, so the concat demuxer can stream-copy.
    return [
        "ffmpeg",
        "-v",
        "error",
        "-y",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(concat_list),
        "-c",
        "copy",
        str(output_path),
    ]


def _run_ffmpeg(command: list[str]) -> None:
    try:
        subprocess.run(command, check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise ExternalCollaboratorError(
            "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        details = f" ffmpeg stderr: {stderr}" if stderr else ""
        raise ExternalCollaboratorError(f"ffmpeg failed with exit code {exc.returncode}.{details}") from exc


def _escape_concat_path(path: Path) -> str:
    return str(path.resolve()).replace("'", "'\\''")
