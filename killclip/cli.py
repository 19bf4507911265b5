from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer

from killclip.config import Settings, load_settings, with_overrides
from killclip.ingest.frames import estimate_sampled_frame_count, iter_video_frames, load_image
from killclip.ingest.probe import probe_media, resolve_video_path
from killclip.logging_config import configure_logging
from killclip.pipeline import (
    GenerationPlan,
    build_detection_project,
    generate_video,
    resolve_generation_plan,
    save_detected_images,
    score_frames,
)
from killclip.propose.project_store import (
    default_project_path,
    export_events_csv,
    format_timestamp,
    generate_review_manifest,
    load_project,
    save_project,
)
from killclip.scoring.evaluation import evaluate_strategy, list_images, score_images, summarize_batch
from killclip.scoring.frame_scorer import SCORING_STRATEGIES, score_frame

app = typer.Typer(help="Find kill-screen flashes in a video and cut them into a highlight reel.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION_HELP = "Path to YAML configuration file."


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except BaseException:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path, verbose: bool = False) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging, verbose=verbose)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _frame_progress(total_hint: int, every: int) -> Callable[[int], None]:
    last_reported = 0

    def _report(scored: int) -> None:
        nonlocal last_reported
        if scored - last_reported < every and scored != total_hint:
            return
        last_reported = scored
        suffix = f"/{total_hint}" if total_hint else ""
        typer.echo(f"    scored {scored}{suffix} frames", err=True)

    return _report


def _fail(exc: BaseException) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="KILLCLIP_CONFIG",
        help=CONFIG_OPTION_HELP,
    )
) -> None:
    """Print resolved runtime configuration."""

    try:
        settings = _bootstrap(config_path)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("score")
def score_image(
    image_path: Path = typer.Argument(..., help="Still image (PNG/JPEG), or a folder of images to score as a batch."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="KILLCLIP_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    strategy: str | None = typer.Option(None, help="Scoring strategy override."),
) -> None:
    """Score a still image and print the sub-score breakdown, or summarize a whole folder."""

    try:
        settings = with_overrides(_bootstrap(config_path), {"scoring": {"strategy": strategy}})
        if image_path.is_dir():
            images = list_images(image_path)
            typer.echo(f"Scoring {len(images)} images with {settings.scoring.strategy}", err=True)
            results = score_images(
                images,
                settings.scoring,
                confidence_threshold=settings.detection.confidence_threshold,
                loader=load_image,
            )
            typer.echo(json.dumps({"strategy": settings.scoring.strategy, **summarize_batch(results)}, indent=2))
            return
        result = score_frame(load_image(image_path), settings.scoring)
    except (RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "image": str(image_path),
                "strategy": result.strategy,
                "confidence": round(result.confidence, 4),
                "is_event": result.is_event,
                "passes_threshold": result.confidence >= settings.detection.confidence_threshold,
                "details": {key: round(value, 4) for key, value in result.details.items()},
            },
            indent=2,
        )
    )


@app.command("evaluate")
def evaluate(
    kill_dir: Path = typer.Argument(..., help="Folder of images that show a kill-screen."),
    non_kill_dir: Path = typer.Argument(..., help="Folder of images that do not."),
    strategies: list[str] | None = typer.Option(
        None, "--strategy", help="Strategy to evaluate; repeat for several (default: all)."
    ),
    threshold: float | None = typer.Option(None, "--threshold", "-t", help="Confidence threshold in [0, 1]."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Also write the results JSON here."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="KILLCLIP_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Measure accuracy, precision, recall and F1 of scoring strategies on labelled images."""

    try:
        settings = with_overrides(_bootstrap(config_path), {"detection": {"confidence_threshold": threshold}})
        positives = list_images(kill_dir)
        negatives = list_images(non_kill_dir)
        names = strategies or list(SCORING_STRATEGIES)
        reports = []
        for index, name in enumerate(names, start=1):
            strategy_settings = with_overrides(settings, {"scoring": {"strategy": name}})
            reports.append(
                _run_with_progress(
                    index,
                    len(names),
                    f"Evaluate {name} on {len(positives)} kill / {len(negatives)} non-kill images",
                    lambda: evaluate_strategy(
                        positives,
                        negatives,
                        strategy_settings.scoring,
                        confidence_threshold=strategy_settings.detection.confidence_threshold,
                        loader=load_image,
                    ),
                )
            )
        payload = {"kill_dir": str(kill_dir), "non_kill_dir": str(non_kill_dir), "strategies": reports}
        if output is not None:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            typer.echo(f"Results saved to {output}", err=True)
    except (RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(payload, indent=2))


@app.command("detect")
def detect(
    video_path: str = typer.Argument(..., help="Input video file."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Project JSON path (default: <video>_detections.json)."),
    threshold: float | None = typer.Option(None, "--threshold", "-t", help="Confidence threshold in [0, 1]."),
    lead: float | None = typer.Option(None, "--lead", "-b", help="Seconds to include before each event."),
    trail: float | None = typer.Option(None, "--trail", "-a", help="Seconds to include after each event."),
    min_detections: int | None = typer.Option(None, "--min-detections", help="Minimum frames per cluster."),
    merge_window: float | None = typer.Option(None, "--merge-window", help="Merge window in seconds."),
    frame_rate: float | None = typer.Option(None, "--frame-rate", help="Sampling rate in frames per second."),
    scale_width: int | None = typer.Option(None, "--scale-width", help="Downscale frames to this width."),
    strategy: str | None = typer.Option(None, "--strategy", help="Frame scoring strategy."),
    workers: int | None = typer.Option(None, "--workers", help="Parallel scoring threads."),
    save_images: bool = typer.Option(False, "--save-images", help="Save a PNG of each detected frame."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="KILLCLIP_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Detect kill-screens and save an editable project JSON; no video is rendered."""

    try:
        settings = _apply_cli_overrides(
            _bootstrap(config_path, verbose),
            threshold=threshold,
            lead=lead,
            trail=trail,
            min_detections=min_detections,
            merge_window=merge_window,
            frame_rate=frame_rate,
            scale_width=scale_width,
            strategy=strategy,
            workers=workers,
        )
        summary = _detect_to_project(
            video_path=video_path,
            output=output,
            settings=settings,
            save_images=save_images,
            total_steps=4,
        )
    except (RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(summary, indent=2))


@app.command("generate")
def generate(
    project_path: Path = typer.Argument(..., help="Project JSON written by `detect`."),
    input_video: str | None = typer.Option(None, "--input", "-i", help="Override the input video path."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output video path (default: <project>_clips.mp4)."),
    lead: float | None = typer.Option(None, "--lead", "-b", help="Override seconds before each event."),
    trail: float | None = typer.Option(None, "--trail", "-a", help="Override seconds after each event."),
    preview: bool = typer.Option(False, "--preview", help="Show the segment plan without rendering."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="KILLCLIP_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Render a highlight video from the enabled detections of a project JSON."""

    try:
        settings = _bootstrap(config_path, verbose)
        summary = _generate_from_project(
            project_path=project_path,
            input_video=input_video,
            output=output,
            lead=lead,
            trail=trail,
            preview=preview,
            settings=settings,
            step_offset=0,
            total_steps=3,
        )
    except (RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(summary, indent=2))


@app.command("run")
def run_pipeline(
    video_path: str = typer.Argument(..., help="Input video file."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output video path (default: <video>_kill_clips.mp4)."),
    threshold: float | None = typer.Option(None, "--threshold", "-t", help="Confidence threshold in [0, 1]."),
    lead: float | None = typer.Option(None, "--lead", "-b", help="Seconds to include before each event."),
    trail: float | None = typer.Option(None, "--trail", "-a", help="Seconds to include after each event."),
    strategy: str | None = typer.Option(None, "--strategy", help="Frame scoring strategy."),
    workers: int | None = typer.Option(None, "--workers", help="Parallel scoring threads."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Detect and save the project without rendering."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="KILLCLIP_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Detect kill-screens and render the highlight video in one go."""

    try:
        settings = _apply_cli_overrides(
            _bootstrap(config_path, verbose),
            threshold=threshold,
            lead=lead,
            trail=trail,
            strategy=strategy,
            workers=workers,
        )
        total_steps = 4 if dry_run else 7
        detection_summary = _detect_to_project(
            video_path=video_path,
            output=None,
            settings=settings,
            save_images=False,
            total_steps=total_steps,
        )
        result: dict[str, Any] = {"status": "ok", "detection": detection_summary}

        if not dry_run:
            resolved_video = Path(detection_summary["input_video"])
            result["generation"] = _generate_from_project(
                project_path=Path(detection_summary["project_path"]),
                input_video=None,
                output=output or resolved_video.with_name(f"{resolved_video.stem}_kill_clips.mp4"),
                lead=None,
                trail=None,
                preview=False,
                settings=settings,
                step_offset=4,
                total_steps=total_steps,
            )
    except (RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps(result, indent=2))


def _apply_cli_overrides(
    settings: Settings,
    *,
    threshold: float | None = None,
    lead: float | None = None,
    trail: float | None = None,
    min_detections: int | None = None,
    merge_window: float | None = None,
    frame_rate: float | None = None,
    scale_width: int | None = None,
    strategy: str | None = None,
    workers: int | None = None,
) -> Settings:
    return with_overrides(
        settings,
        {
            "detection": {
                "confidence_threshold": threshold,
                "frame_rate": frame_rate,
                "scale_width": scale_width,
                "workers": workers,
            },
            "clustering": {"merge_window_seconds": merge_window, "min_cluster_size": min_detections},
            "segments": {"lead_seconds": lead, "trail_seconds": trail},
            "scoring": {"strategy": strategy},
        },
    )


def _detect_to_project(
    *,
    video_path: str,
    output: Path | None,
    settings: Settings,
    save_images: bool,
    total_steps: int,
) -> dict[str, Any]:
    resolved_video = resolve_video_path(video_path)
    project_path = output or default_project_path(resolved_video)
    detection = settings.detection

    probe = _run_with_progress(1, total_steps, "Probe video", lambda: probe_media(resolved_video))
    logger.info(
        "Input %s: %sx%s, %.2f fps, %.1fs",
        resolved_video.name,
        probe.get("width"),
        probe.get("height"),
        probe.get("frame_rate") or 0.0,
        probe.get("duration_seconds") or 0.0,
    )

    total_hint = estimate_sampled_frame_count(resolved_video, detection.frame_rate)
    scoring_result = _run_with_progress(
        2,
        total_steps,
        f"Score frames ({settings.scoring.strategy}, {detection.scale_width}px, {detection.frame_rate:g} fps)",
        lambda: score_frames(
            iter_video_frames(resolved_video, detection.frame_rate, detection.scale_width),
            settings.scoring,
            frame_rate=detection.frame_rate,
            workers=detection.workers,
            on_progress=_frame_progress(total_hint, detection.progress_every),
        ),
    )

    project = _run_with_progress(
        3,
        total_steps,
        "Cluster detections",
        lambda: build_detection_project(
            video_path=resolved_video,
            scoring_result=scoring_result,
            settings=settings,
        ),
    )

    def _persist() -> dict[str, str]:
        written = {"project_path": str(save_project(project, project_path))}
        written["csv_path"] = str(export_events_csv(project, project_path.with_suffix(".csv")))
        if save_images and project.detections:
            image_dir = project_path.parent / "detected_kill_screens"
            images = save_detected_images(project, image_dir, video_path=resolved_video)
            written["image_dir"] = str(image_dir)
            written["image_count"] = str(len(images))
        return written

    written = _run_with_progress(4, total_steps, "Save project", _persist)

    for record in project.detections:
        typer.echo(
            f"  {record.id}. {format_timestamp(record.timestamp_seconds)} "
            f"(confidence {round(record.confidence * 100)}%)",
            err=True,
        )

    return {
        "input_video": project.input_video,
        **written,
        "statistics": asdict(project.statistics),
        "detections": len(project.detections),
    }


def _generate_from_project(
    *,
    project_path: Path,
    input_video: str | None,
    output: Path | None,
    lead: float | None,
    trail: float | None,
    preview: bool,
    settings: Settings,
    step_offset: int,
    total_steps: int,
) -> dict[str, Any]:
    project = _run_with_progress(step_offset + 1, total_steps, "Load project", lambda: load_project(project_path))
    plan: GenerationPlan = _run_with_progress(
        step_offset + 2,
        total_steps,
        "Plan segments",
        lambda: resolve_generation_plan(
            project,
            video_override=input_video,
            lead_seconds=lead,
            trail_seconds=trail,
        ),
    )

    manifest = generate_review_manifest(project, plan.segments, video_path=plan.video_path)
    summary: dict[str, Any] = {
        "project_path": str(project_path),
        "input_video": plan.video_path,
        "detections": len(project.detections),
        "enabled_detections": len(plan.records),
        "lead_seconds": plan.lead_seconds,
        "trail_seconds": plan.trail_seconds,
        "total_duration_seconds": round(plan.total_duration, 3),
        "segments": manifest,
    }

    if not plan.segments:
        logger.warning("Project %s has no enabled detections; nothing to render.", project_path)
        typer.echo("No enabled detections; edit the project JSON and try again.", err=True)
        return {**summary, "status": "empty"}

    if preview:
        return {**summary, "status": "preview"}

    output_path = output or project_path.with_name(f"{project_path.stem}_clips.mp4")
    rendered = _run_with_progress(
        step_offset + 3,
        total_steps,
        f"Render {len(plan.segments)} segments",
        lambda: generate_video(
            plan,
            output_path,
            render=settings.render,
            work_dir=settings.pipeline.work_dir,
            on_segment=lambda done, total: typer.echo(f"    sliced {done}/{total} segments", err=True),
        ),
    )
    return {**summary, "status": "ok", "output_video": str(rendered)}


def main() -> None:
    app()


if __name__ == "__main__":
    main()
