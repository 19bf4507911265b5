from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import islice
from pathlib import Path
from typing import Callable, Iterable, Iterator

from killclip.config import RenderSettings, ScoringSettings, Settings
from killclip.errors import ConfigurationError, MalformedInputError
from killclip.ingest.frames import iter_video_frames, read_frames_at, save_frame_image
from killclip.ingest.workspace import Workspace
from killclip.models import (
    DetectionProject,
    DetectionStatistics,
    EventRecord,
    FrameSample,
    PixelBuffer,
    ProcessingOptions,
    SegmentSpec,
)
from killclip.propose.clusterer import analyze_clusters, deduplicate_samples
from killclip.propose.project_store import PROJECT_VERSION
from killclip.propose.segment_planner import plan_segments
from killclip.render.slicer import extract_and_concatenate_segments
from killclip.scoring.frame_scorer import resolve_strategy, score_frame

logger = logging.getLogger(__name__)

FrameSource = Callable[..., Iterable[tuple[int, PixelBuffer]]]
ProgressCallback = Callable[[int], None]


@dataclass(slots=True)
class FrameScoringResult:
    """Per-frame samples restored to frame order, with failure accounting."""

    samples: list[FrameSample]
    total_frames: int
    failed_frames: int
    event_frames: int = 0


@dataclass(slots=True)
class GenerationPlan:
    """Everything a generation run needs, resolved from a project plus operator overrides."""

    video_path: str
    lead_seconds: float
    trail_seconds: float
    records: list[EventRecord] = field(default_factory=list)
    segments: list[SegmentSpec] = field(default_factory=list)

    @property
    def total_duration(self) -> float:
        return sum(segment.duration for segment in self.segments)


def score_frames(
    frames: Iterable[tuple[int, PixelBuffer]],
    scoring: ScoringSettings,
    *,
    frame_rate: float,
    workers: int = 1,
    chunk_size: int = 64,
    on_progress: ProgressCallback | None = None,
) -> FrameScoringResult:
    """Score every frame, optionally on a thread pool, and restore frame order.

    A frame that fails to score is recorded with confidence 0 and counted in
    ``failed_frames``; it never aborts the batch.
    """

    resolve_strategy(scoring.strategy)

    results: list[tuple[int, float, bool, bool]] = []
    if workers <= 1:
        for frame_index, buffer in frames:
            results.append(_score_one(frame_index, buffer, scoring))
            if on_progress is not None:
                on_progress(len(results))
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="killclip-score") as executor:
            for chunk in _chunked(iter(frames), max(chunk_size, workers)):
                results.extend(
                    executor.map(lambda item: _score_one(item[0], item[1], scoring), chunk)
                )
                if on_progress is not None:
                    on_progress(len(results))

    results.sort(key=lambda row: row[0])
    samples = [
        FrameSample.from_frame(frame_index, frame_rate, confidence)
        for frame_index, confidence, _, _ in results
    ]
    return FrameScoringResult(
        samples=samples,
        total_frames=len(results),
        failed_frames=sum(1 for row in results if row[2]),
        event_frames=sum(1 for row in results if row[3]),
    )


def filter_by_threshold(samples: Iterable[FrameSample], confidence_threshold: float) -> list[FrameSample]:
    return [sample for sample in samples if sample.confidence >= confidence_threshold]


def build_detection_project(
    *,
    video_path: str | Path,
    scoring_result: FrameScoringResult,
    settings: Settings,
    created_at: datetime | None = None,
) -> DetectionProject:
    """Threshold, cluster and summarise scored frames into a persistable project."""

    detection = settings.detection
    clustering = settings.clustering

    raw_samples = filter_by_threshold(scoring_result.samples, detection.confidence_threshold)
    density = analyze_clusters(raw_samples, window_seconds=clustering.stats_window_seconds)
    result = deduplicate_samples(
        raw_samples,
        merge_window_seconds=clustering.merge_window_seconds,
        min_cluster_size=clustering.min_cluster_size,
    )

    logger.info(
        "Detections: %d raw, %d density clusters (avg %.1f, max %d), %d discarded clusters (%d frames), %d final",
        len(raw_samples),
        density.total_clusters,
        density.average_cluster_size,
        density.max_cluster_size,
        result.discarded_clusters,
        result.discarded_samples,
        len(result.events),
    )

    return DetectionProject(
        version=PROJECT_VERSION,
        input_video=str(Path(video_path).expanduser().resolve()),
        created_at=(created_at or datetime.now(timezone.utc)).isoformat(),
        processing_options=ProcessingOptions(
            confidence_threshold=detection.confidence_threshold,
            lead_seconds=settings.segments.lead_seconds,
            trail_seconds=settings.segments.trail_seconds,
            frame_rate=detection.frame_rate,
            scale_width=detection.scale_width,
            merge_window_seconds=clustering.merge_window_seconds,
            min_cluster_size=clustering.min_cluster_size,
            strategy=settings.scoring.strategy,
        ),
        statistics=DetectionStatistics(
            total_frames=scoring_result.total_frames,
            failed_frames=scoring_result.failed_frames,
            event_frames=scoring_result.event_frames,
            raw_detections=len(raw_samples),
            clustered_detections=density.total_clusters,
            discarded_clusters=result.discarded_clusters,
            discarded_samples=result.discarded_samples,
            final_detections=len(result.events),
            average_cluster_size=density.average_cluster_size,
            max_cluster_size=density.max_cluster_size,
        ),
        detections=result.events,
    )


def detect_events(
    video_path: str | Path,
    settings: Settings,
    *,
    frame_source: FrameSource = iter_video_frames,
    on_progress: ProgressCallback | None = None,
) -> DetectionProject:
    """Run scoring and clustering over a whole video."""

    detection = settings.detection
    frames = frame_source(video_path, detection.frame_rate, detection.scale_width)
    scoring_result = score_frames(
        frames,
        settings.scoring,
        frame_rate=detection.frame_rate,
        workers=detection.workers,
        on_progress=on_progress,
    )
    return build_detection_project(video_path=video_path, scoring_result=scoring_result, settings=settings)


def save_detected_images(
    project: DetectionProject,
    output_dir: str | Path,
    *,
    video_path: str | Path | None = None,
) -> list[Path]:
    """Write a PNG per detection, named by timestamp and confidence."""

    options = project.processing_options
    source = video_path or project.input_video
    frames = read_frames_at(
        source,
        [record.frame_index for record in project.detections],
        options.frame_rate,
        options.scale_width,
    )

    written: list[Path] = []
    for record in project.detections:
        buffer = frames.get(record.frame_index)
        if buffer is None:
            continue
        minutes = int(record.timestamp_seconds // 60)
        seconds = int(record.timestamp_seconds % 60)
        name = f"kill_screen_{minutes}m{seconds:02d}s_conf{round(record.confidence * 100)}.png"
        written.append(save_frame_image(Path(output_dir) / name, buffer))
    return written


def resolve_generation_plan(
    project: DetectionProject,
    *,
    video_override: str | Path | None = None,
    lead_seconds: float | None = None,
    trail_seconds: float | None = None,
) -> GenerationPlan:
    """Pick the input video and padding (operator overrides win) and plan enabled segments."""

    lead = project.processing_options.lead_seconds if lead_seconds is None else lead_seconds
    trail = project.processing_options.trail_seconds if trail_seconds is None else trail_seconds
    if lead < 0 or trail < 0:
        raise ConfigurationError(f"lead/trail seconds must be >= 0, got lead={lead}, trail={trail}")

    records = project.enabled_detections()
    return GenerationPlan(
        video_path=str(video_override or project.input_video),
        lead_seconds=lead,
        trail_seconds=trail,
        records=records,
        segments=plan_segments(records, lead, trail),
    )


def generate_video(
    plan: GenerationPlan,
    output_path: str | Path,
    *,
    render: RenderSettings | None = None,
    work_dir: str | Path | None = None,
    on_segment: Callable[[int, int], None] | None = None,
) -> Path:
    """Render the planned segments into one video inside a scope-bound workspace."""

    source = Path(plan.video_path).expanduser()
    if not source.is_file():
        raise FileNotFoundError(f"Input video not found: {source}")

    with Workspace(root=work_dir) as workspace:
        return extract_and_concatenate_segments(
            source,
            plan.segments,
            output_path,
            workspace,
            render=render,
            on_segment=on_segment,
        )


def _score_one(frame_index: int, buffer: PixelBuffer, scoring: ScoringSettings) -> tuple[int, float, bool, bool]:
    try:
        result = score_frame(buffer, scoring)
    except MalformedInputError as exc:
        logger.warning("Frame %d is malformed; scoring as 0: %s", frame_index, exc)
        return frame_index, 0.0, True, False
    except Exception as exc:
        logger.warning("Frame %d failed to score; scoring as 0: %s", frame_index, exc)
        return frame_index, 0.0, True, False

    logger.debug("Frame %d confidence %.4f", frame_index, result.confidence)
    return frame_index, result.confidence, False, result.is_event


def _chunked(iterator: Iterator[tuple[int, PixelBuffer]], size: int) -> Iterator[list[tuple[int, PixelBuffer]]]:
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk
