from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from killclip.config import RenderSettings
from killclip.errors import ExternalCollaboratorError
from killclip.ingest.workspace import Workspace
from killclip.models import SegmentSpec
from killclip.render.slicer import (
    build_concat_command,
    build_slice_command,
    extract_and_concatenate_segments,
)


class _FakeFfmpeg:
    """Records ffmpeg invocations and creates the file named by the last argument."""

    def __init__(self, fail_on_call: int | None = None) -> None:
        self.commands: list[list[str]] = []
        self.fail_on_call = fail_on_call

    def __call__(self, command, **kwargs) -> subprocess.CompletedProcess[str]:
        self.commands.append(list(command))
        if self.fail_on_call is not None and len(self.commands) == self.fail_on_call:
            raise subprocess.CalledProcessError(returncode=1, cmd=command, output="", stderr="moov atom not found")
        Path(command[-1]).write_bytes(f"clip-{len(self.commands)}".encode())
        return subprocess.CompletedProcess(args=command, returncode=0, stdout="", stderr="")


def _segments() -> list[SegmentSpec]:
    return [
        SegmentSpec(start_time=0.0, end_time=3.0, duration=5.0),
        SegmentSpec(start_time=27.0, end_time=32.0, duration=5.0),
    ]


def test_slice_command_seeks_and_encodes() -> None:
    command = build_slice_command(
        Path("/videos/match.mp4"),
        SegmentSpec(start_time=12.25, end_time=17.25, duration=5.0),
        Path("/tmp/segment_000.mp4"),
        RenderSettings(),
    )

    assert command[command.index("-ss") + 1] == "12.250"
    assert command[command.index("-t") + 1] == "5.000"
    assert command[command.index("-c:v") + 1] == "libx264"
    assert command[-1] == "/tmp/segment_000.mp4"


def test_concat_command_stream_copies() -> None:
    command = build_concat_command(Path("/tmp/list.txt"), Path("/tmp/out.mp4"))

    assert command[command.index("-f") + 1] == "concat"
    assert command[command.index("-c") + 1] == "copy"


def test_segments_are_sliced_then_concatenated(tmp_path: Path, monkeypatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(subprocess, "run", fake)
    progress: list[tuple[int, int]] = []
    output = tmp_path / "out" / "highlights.mp4"

    with Workspace(root=tmp_path / "work") as workspace:
        result = extract_and_concatenate_segments(
            tmp_path / "match.mp4",
            _segments(),
            output,
            workspace,
            on_segment=lambda done, total: progress.append((done, total)),
        )
        concat_list = (workspace.path / "concat_list.txt").read_text(encoding="utf-8")

    assert result == output
    assert output.read_bytes() == b"clip-3"
    assert len(fake.commands) == 3
    assert "segment_000.mp4" in concat_list and "segment_001.mp4" in concat_list
    assert progress == [(1, 2), (2, 2)]
    assert list((tmp_path / "work").iterdir()) == []


def test_single_segment_is_copied_without_concat(tmp_path: Path, monkeypatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(subprocess, "run", fake)
    output = tmp_path / "single.mp4"

    with Workspace(root=tmp_path / "work") as workspace:
        extract_and_concatenate_segments(tmp_path / "match.mp4", _segments()[:1], output, workspace)

    assert len(fake.commands) == 1
    assert output.read_bytes() == b"clip-1"


def test_failed_slice_leaves_no_output(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(subprocess, "run", _FakeFfmpeg(fail_on_call=2))
    output = tmp_path / "out.mp4"

    with pytest.raises(ExternalCollaboratorError, match="moov atom not found"):
        with Workspace(root=tmp_path / "work") as workspace:
            extract_and_concatenate_segments(tmp_path / "match.mp4", _segments(), output, workspace)

    assert not output.exists()
    assert list((tmp_path / "work").iterdir()) == []


def test_missing_ffmpeg_is_reported(tmp_path: Path, monkeypatch) -> None:
    def _raise_missing(*args: object, **kwargs: object) -> None:
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(subprocess, "run", _raise_missing)

    with pytest.raises(ExternalCollaboratorError, match="ffmpeg executable was not found"):
        with Workspace(root=tmp_path) as workspace:
            extract_and_concatenate_segments(tmp_path / "match.mp4", _segments(), tmp_path / "o.mp4", workspace)


def test_empty_segment_list_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="No segments"):
        with Workspace(root=tmp_path) as workspace:
            extract_and_concatenate_segments(tmp_path / "match.mp4", [], tmp_path / "o.mp4", workspace)
