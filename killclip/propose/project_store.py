from __future__ import annotations

import csv
import json
import os
import shlex
import tempfile
from pathlib import Path
from typing import Any

from killclip.errors import PersistenceError
from killclip.models import (
    DetectionProject,
    DetectionStatistics,
    EventRecord,
    ProcessingOptions,
    SegmentSpec,
)

PROJECT_VERSION = "1.0.0"
SUPPORTED_VERSIONS = {"1.0.0"}


def default_project_path(video_path: str | Path) -> Path:
    path = Path(video_path)
    return path.with_name(f"{path.stem}_detections.json")


def save_project(project: DetectionProject, output_path: str | Path) -> Path:
    """Persist a project atomically so an interrupted write never clobbers a prior file."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(project.to_dict(), indent=2, ensure_ascii=False)

    handle, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(handle, "w", encoding="utf-8") as stream:
            stream.write(payload)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise

    return path


def load_project(path: str | Path) -> DetectionProject:
    """Load and validate a project file written by :func:`save_project` (possibly hand-edited)."""

    project_path = Path(path)
    if not project_path.exists():
        raise PersistenceError(f"Project file not found: {project_path}")

    try:
        payload = json.loads(project_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PersistenceError(f"Project file {project_path} is not valid JSON: {exc}") from exc

    try:
        return _parse_project(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Project file {project_path} is structurally invalid: {exc}") from exc


def _parse_project(payload: Any) -> DetectionProject:
    if not isinstance(payload, dict):
        raise ValueError("project must be a JSON object")

    version = str(payload["version"])
    if version not in SUPPORTED_VERSIONS:
        raise ValueError(f"unsupported project version {version!r}")

    options = payload["processing_options"]
    statistics = payload.get("statistics") or {}
    rows = payload["detections"]
    if not isinstance(options, dict) or not isinstance(statistics, dict):
        raise ValueError("processing_options and statistics must be objects")
    if not isinstance(rows, list):
        raise ValueError("detections must be an array")

    processing_options = ProcessingOptions(
        confidence_threshold=float(options["confidence_threshold"]),
        lead_seconds=float(options["lead_seconds"]),
        trail_seconds=float(options["trail_seconds"]),
        frame_rate=float(options["frame_rate"]),
        scale_width=int(options["scale_width"]),
        merge_window_seconds=float(options.get("merge_window_seconds", 2.0)),
        min_cluster_size=int(options.get("min_cluster_size", 2)),
        strategy=str(options.get("strategy", "global_dominance")),
    )
    if processing_options.lead_seconds < 0 or processing_options.trail_seconds < 0:
        raise ValueError("lead_seconds and trail_seconds must be >= 0")

    detections = [_parse_record(idx, row) for idx, row in enumerate(rows, start=1)]
    detections.sort(key=lambda record: (record.timestamp_seconds, record.id))
    for previous, current in zip(detections, detections[1:]):
        if current.id <= previous.id:
            raise ValueError(
                f"detection ids must be unique and increase with timestamp; "
                f"id {current.id} at {current.timestamp_seconds}s follows id {previous.id} at {previous.timestamp_seconds}s"
            )

    return DetectionProject(
        version=version,
        input_video=str(payload["input_video"]),
        created_at=str(payload["created_at"]),
        processing_options=processing_options,
        statistics=DetectionStatistics(**{key: statistics[key] for key in statistics if key in _STAT_FIELDS}),
        detections=detections,
    )


_STAT_FIELDS = set(DetectionStatistics.__dataclass_fields__)


def _parse_record(idx: int, row: Any) -> EventRecord:
    if not isinstance(row, dict):
        raise ValueError(f"detection row {idx} must be an object")

    confidence = float(row["confidence"])
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"detection row {idx} confidence {confidence} is outside [0, 1]")

    timestamp = float(row["timestamp_seconds"])
    if timestamp < 0:
        raise ValueError(f"detection row {idx} has a negative timestamp")

    enabled = row.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ValueError(f"detection row {idx} field 'enabled' must be true or false")

    return EventRecord(
        id=int(row["id"]),
        timestamp_seconds=timestamp,
        frame_index=int(row["frame_index"]),
        confidence=confidence,
        enabled=enabled,
        note=str(row["note"]) if row.get("note") is not None else None,
        cluster_info=row.get("cluster_info"),
    )


def export_events_csv(project: DetectionProject, output_path: str | Path) -> Path:
    """Write a flat CSV of detections for spreadsheet review."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fields = ["id", "timestamp", "timestamp_seconds", "frame_index", "confidence", "confidence_label", "enabled", "note"]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for record in project.detections:
            writer.writerow(
                {
                    "id": record.id,
                    "timestamp": format_timestamp(record.timestamp_seconds),
                    "timestamp_seconds": f"{record.timestamp_seconds:.3f}",
                    "frame_index": record.frame_index,
                    "confidence": f"{record.confidence:.4f}",
                    "confidence_label": confidence_label(record.confidence),
                    "enabled": "true" if record.enabled else "false",
                    "note": record.note or "",
                }
            )

    return path


def generate_review_manifest(
    project: DetectionProject,
    segments: list[SegmentSpec],
    *,
    video_path: str | None = None,
    clip_dir: str = "clips",
) -> list[dict[str, Any]]:
    """Pair each enabled detection with its planned segment and an ffmpeg snippet command."""

    manifest: list[dict[str, Any]] = []
    for record, segment in zip(project.enabled_detections(), segments):
        entry = {
            "id": record.id,
            "timestamp": format_timestamp(record.timestamp_seconds),
            "timestamp_seconds": record.timestamp_seconds,
            "confidence": round(record.confidence, 4),
            "confidence_label": confidence_label(record.confidence),
            "start_seconds": round(segment.start_time, 3),
            "end_seconds": round(segment.end_time, 3),
            "duration_seconds": round(segment.duration, 3),
            "note": record.note,
        }
        if video_path:
            entry["ffmpeg_command"] = build_ffmpeg_clip_command(
                video_path=video_path,
                segment=segment,
                clip_name=f"event_{record.id:03d}.mp4",
                output_dir=clip_dir,
            )
        manifest.append(entry)
    return manifest


def build_ffmpeg_clip_command(
    *,
    video_path: str,
    segment: SegmentSpec,
    clip_name: str,
    output_dir: str = "clips",
) -> str:
    """Generate a copy-paste ffmpeg command for one planned segment."""

    output_path = f"{output_dir.rstrip('/')}/{clip_name}"
    return (
        "ffmpeg "
        f"-ss {segment.start_time:.3f} "
        f"-i {shlex.quote(video_path)} "
        f"-t {segment.duration:.3f} "
        "-c:v libx264 -preset veryfast -crf 18 "
        "-c:a aac -b:a 160k "
        f"{shlex.quote(output_path)}"
    )


def format_timestamp(seconds: float) -> str:
    minutes = int(seconds // 60)
    return f"{minutes}:{int(seconds % 60):02d}"


def confidence_label(confidence: float) -> str:
    if confidence >= 0.9:
        return "high"
    if confidence >= 0.8:
        return "medium"
    return "low"
