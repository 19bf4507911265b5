from __future__ import annotations

import json
from pathlib import Path

import numpy as np
from typer.testing import CliRunner

import killclip.cli as cli
from killclip.config import Settings
from killclip.errors import ExternalCollaboratorError
from killclip.models import PixelBuffer
from killclip.propose.project_store import load_project, save_project


def _frame(rgb: tuple[int, int, int]) -> PixelBuffer:
    array = np.zeros((12, 16, 3), dtype=np.uint8)
    array[:, :] = rgb
    return PixelBuffer.from_array(array)


def _fake_frames(video_path, frame_rate, scale_width):
    for idx in range(40):
        yield idx, _frame((230, 15, 15) if idx in {10, 11, 12} else (30, 30, 30))


def _patch_detection(monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(
        cli,
        "probe_media",
        lambda _: {"width": 1920, "height": 1080, "frame_rate": 60.0, "duration_seconds": 8.0},
    )
    monkeypatch.setattr(cli, "estimate_sampled_frame_count", lambda *args, **kwargs: 40)
    monkeypatch.setattr(cli, "iter_video_frames", _fake_frames)


def test_detect_writes_project_and_shows_progress(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)

    result = CliRunner().invoke(cli.app, ["detect", str(video)])

    assert result.exit_code == 0
    assert "[1/4] Probe video..." in result.output
    assert "[4/4] Save project done" in result.output
    assert "1. 0:02 (confidence 100%)" in result.output

    project = load_project(tmp_path / "match_detections.json")
    assert [record.frame_index for record in project.detections] == [10]
    assert project.statistics.raw_detections == 3
    assert (tmp_path / "match_detections.csv").exists()


def test_detect_applies_cli_overrides(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)
    out = tmp_path / "custom" / "project.json"

    result = CliRunner().invoke(
        cli.app,
        ["detect", str(video), "-o", str(out), "--lead", "1.5", "--min-detections", "4", "--workers", "1"],
    )

    assert result.exit_code == 0
    project = load_project(out)
    assert project.processing_options.lead_seconds == 1.5
    assert project.processing_options.min_cluster_size == 4
    assert project.detections == []


def test_detect_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)

    def _fail(_):
        raise ExternalCollaboratorError("ffprobe failed to read media file: match.mp4.")

    monkeypatch.setattr(cli, "probe_media", _fail)

    result = CliRunner().invoke(cli.app, ["detect", str(video)])

    assert result.exit_code == 1
    assert "[1/4] Probe video failed" in result.output
    assert "Error: ffprobe failed to read media file" in result.output
    assert "Traceback" not in result.output


def test_detect_rejects_out_of_range_threshold(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)

    result = CliRunner().invoke(cli.app, ["detect", str(video), "--threshold", "1.5"])

    assert result.exit_code == 1
    assert "Error: Invalid configuration" in result.output
    assert "Probe video" not in result.output


def test_generate_renders_enabled_detections_with_overrides(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)
    assert CliRunner().invoke(cli.app, ["detect", str(video)]).exit_code == 0

    captured: dict[str, object] = {}

    def _fake_generate(plan, output_path, **kwargs):
        captured["plan"] = plan
        captured["output"] = Path(output_path)
        return Path(output_path)

    monkeypatch.setattr(cli, "generate_video", _fake_generate)
    project_path = tmp_path / "match_detections.json"

    result = CliRunner().invoke(cli.app, ["generate", str(project_path), "--lead", "1", "--trail", "4"])

    assert result.exit_code == 0
    assert "[3/3] Render 1 segments done" in result.output
    plan = captured["plan"]
    assert plan.lead_seconds == 1.0
    assert plan.segments[0].start_time == 1.0
    assert plan.segments[0].end_time == 6.0
    assert captured["output"] == tmp_path / "match_detections_clips.mp4"


def test_generate_with_nothing_enabled_exits_cleanly(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)
    assert CliRunner().invoke(cli.app, ["detect", str(video)]).exit_code == 0

    project_path = tmp_path / "match_detections.json"
    project = load_project(project_path)
    for record in project.detections:
        record.enabled = False
    save_project(project, project_path)
    monkeypatch.setattr(cli, "generate_video", lambda *a, **k: (_ for _ in ()).throw(AssertionError("no render")))

    result = CliRunner().invoke(cli.app, ["generate", str(project_path)])

    assert result.exit_code == 0
    assert "No enabled detections" in result.output


def test_generate_preview_does_not_render(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)
    assert CliRunner().invoke(cli.app, ["detect", str(video)]).exit_code == 0
    monkeypatch.setattr(cli, "generate_video", lambda *a, **k: (_ for _ in ()).throw(AssertionError("no render")))

    result = CliRunner().invoke(cli.app, ["generate", str(tmp_path / "match_detections.json"), "--preview"])

    assert result.exit_code == 0
    assert '"status": "preview"' in result.output
    assert '"ffmpeg_command"' in result.output


def test_generate_reports_missing_project(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())

    result = CliRunner().invoke(cli.app, ["generate", str(tmp_path / "absent.json")])

    assert result.exit_code == 1
    assert "[1/3] Load project failed" in result.output
    assert "Error: Project file not found" in result.output


def test_run_executes_detection_then_rendering(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)
    rendered: list[Path] = []
    monkeypatch.setattr(cli, "generate_video", lambda plan, output_path, **_: rendered.append(Path(output_path)) or Path(output_path))

    result = CliRunner().invoke(cli.app, ["run", str(video)])

    assert result.exit_code == 0
    assert "[1/7] Probe video..." in result.output
    assert "[7/7] Render 1 segments done" in result.output
    assert rendered == [tmp_path.resolve() / "match_kill_clips.mp4"]


def test_run_dry_run_skips_rendering(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "match.mp4"
    video.write_bytes(b"data")
    _patch_detection(monkeypatch)
    monkeypatch.setattr(cli, "generate_video", lambda *a, **k: (_ for _ in ()).throw(AssertionError("no render")))

    result = CliRunner().invoke(cli.app, ["run", str(video), "--dry-run"])

    assert result.exit_code == 0
    assert "[4/4] Save project done" in result.output
    assert (tmp_path / "match_detections.json").exists()


def test_score_prints_breakdown(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "load_image", lambda _: _frame((250, 0, 0)))

    result = CliRunner().invoke(cli.app, ["score", str(tmp_path / "shot.png")])

    assert result.exit_code == 0
    assert '"confidence": 1.0' in result.output
    assert '"is_event": true' in result.output


def test_config_show_prints_resolved_settings(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("KILLCLIP_CONFIG", raising=False)
    configured: list[bool] = []
    monkeypatch.setattr(cli, "configure_logging", lambda settings, verbose=False: configured.append(verbose))

    result = CliRunner().invoke(cli.app, ["config", "show"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["clustering"]["merge_window_seconds"] == 2.0
    assert configured == [False]


def _fake_loader(path: Path) -> PixelBuffer:
    if path.stem.startswith("broken"):
        raise ExternalCollaboratorError(f"Unable to decode image: {path}")
    return _frame((240, 10, 10) if path.stem.startswith("red") else (60, 60, 60))


def _image_dir(root: Path, names: list[str]) -> Path:
    root.mkdir(parents=True)
    for name in names:
        (root / name).write_bytes(b"img")
    return root


def test_score_folder_prints_distribution_sorted_by_confidence(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "load_image", _fake_loader)
    folder = _image_dir(tmp_path / "shots", ["a_gray.png", "red_1.png", "broken.jpg", "readme.txt"])

    result = CliRunner().invoke(cli.app, ["score", str(folder)])

    assert result.exit_code == 0
    assert "Scoring 3 images with global_dominance" in result.output
    payload = json.loads(result.stdout)
    assert payload["detected"] == 1
    assert payload["failed"] == 1
    assert payload["confidence_distribution"] == {"high": 1, "medium": 0, "low": 0, "very_low": 2}
    assert Path(payload["images"][0]["path"]).name == "red_1.png"


def test_evaluate_reports_metrics_per_strategy_and_saves_json(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "load_image", _fake_loader)
    kills = _image_dir(tmp_path / "kill", ["red_1.png", "red_2.png", "gray_miss.png"])
    normals = _image_dir(tmp_path / "normal", ["gray_1.png", "red_false_alarm.png"])
    out = tmp_path / "reports" / "evaluation.json"

    result = CliRunner().invoke(
        cli.app,
        ["evaluate", str(kills), str(normals), "--strategy", "global_dominance", "-o", str(out)],
    )

    assert result.exit_code == 0
    assert "[1/1] Evaluate global_dominance on 3 kill / 2 non-kill images done" in result.output
    payload = json.loads(out.read_text(encoding="utf-8"))
    report = payload["strategies"][0]
    assert report["metrics"]["true_positives"] == 2
    assert report["metrics"]["false_positives"] == 1
    assert report["metrics"]["accuracy"] == 0.6
    assert sorted(Path(item["path"]).name for item in report["misclassified"]) == ["gray_miss.png", "red_false_alarm.png"]


def test_evaluate_defaults_to_every_strategy(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "load_image", _fake_loader)
    kills = _image_dir(tmp_path / "kill", ["red_1.png"])
    normals = _image_dir(tmp_path / "normal", ["gray_1.png"])

    result = CliRunner().invoke(cli.app, ["evaluate", str(kills), str(normals)])

    assert result.exit_code == 0
    assert "[4/4] Evaluate logo_template" in result.output
    payload = json.loads(result.stdout)
    assert [report["strategy"] for report in payload["strategies"]] == [
        "global_dominance",
        "brightness_stats",
        "radial_effect",
        "logo_template",
    ]


def test_evaluate_reports_missing_folder(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    normals = _image_dir(tmp_path / "normal", ["gray_1.png"])

    result = CliRunner().invoke(cli.app, ["evaluate", str(tmp_path / "absent"), str(normals)])

    assert result.exit_code == 1
    assert "Error: Image directory not found" in result.output
