from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from killclip.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "KILLCLIP_"

ScoringStrategy = Literal["global_dominance", "brightness_stats", "radial_effect", "logo_template"]
DominantChannel = Literal["red", "green", "blue"]


class DetectionSettings(BaseModel):
    confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    frame_rate: float = Field(default=5.0, gt=0.0)
    scale_width: int = Field(default=1280, gt=0)
    workers: int = Field(default=4, ge=1)
    progress_every: int = Field(default=50, ge=1)


class BrightnessStatsSettings(BaseModel):
    white_level: int = Field(default=200, ge=0, le=255)
    dominance_floor: int = Field(default=120, ge=0, le=255)


class RadialEffectSettings(BaseModel):
    center_brightness_floor: float = Field(default=120.0, ge=0.0, le=255.0)
    center_ratio_floor: float = Field(default=1.2, gt=0.0)
    edge_contrast_floor: float = Field(default=50.0, ge=0.0)
    ray_count: int = Field(default=16, ge=1)


class LogoTemplateSettings(BaseModel):
    # Portrait regions as fractions of the frame; the side is a fraction of width.
    left_x: float = Field(default=0.03, ge=0.0, le=1.0)
    right_x: float = Field(default=0.89, ge=0.0, le=1.0)
    y: float = Field(default=0.78, ge=0.0, le=1.0)
    side: float = Field(default=0.08, gt=0.0, le=1.0)
    hue_buckets: int = Field(default=8, ge=1)


class ScoringSettings(BaseModel):
    strategy: ScoringStrategy = "global_dominance"
    dominant_channel: DominantChannel = "red"
    saturation_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    brightness_floor: int = Field(default=100, ge=0, le=255)
    cell_dominance_fraction: float = Field(default=0.3, ge=0.0, le=1.0)
    intensity_normalizer: float = Field(default=100.0, gt=0.0)
    grid_size: int = Field(default=3, ge=1)
    brightness_stats: BrightnessStatsSettings = Field(default_factory=BrightnessStatsSettings)
    radial: RadialEffectSettings = Field(default_factory=RadialEffectSettings)
    logo: LogoTemplateSettings = Field(default_factory=LogoTemplateSettings)


class ClusteringSettings(BaseModel):
    merge_window_seconds: float = Field(default=2.0, gt=0.0)
    min_cluster_size: int = Field(default=2, ge=1)
    # Diagnostic statistics window; intentionally not tied to merge_window_seconds.
    stats_window_seconds: float = Field(default=2.0, gt=0.0)


class SegmentSettings(BaseModel):
    lead_seconds: float = Field(default=3.0, ge=0.0)
    trail_seconds: float = Field(default=2.0, ge=0.0)


class RenderSettings(BaseModel):
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    preset: str = "veryfast"
    crf: int = Field(default=18, ge=0, le=51)


class PipelineSettings(BaseModel):
    work_dir: Path | None = None


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str | None = None


class Settings(BaseModel):
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    clustering: ClusteringSettings = Field(default_factory=ClusteringSettings)
    segments: SegmentSettings = Field(default_factory=SegmentSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides.

    A missing file is only tolerated for the implicit default path; every
    range violation surfaces as :class:`ConfigurationError`.
    """

    explicit = config_path or os.getenv(f"{ENV_PREFIX}CONFIG")
    resolved_path = Path(explicit or DEFAULT_CONFIG_PATH)

    if resolved_path.exists():
        try:
            raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in config file {resolved_path}: {exc}") from exc
    elif explicit and resolved_path != DEFAULT_CONFIG_PATH:
        raise ConfigurationError(f"Config file not found: {resolved_path}")
    else:
        raw_config = {}

    if not isinstance(raw_config, dict):
        raise ConfigurationError(f"Config file {resolved_path} must contain a mapping.")

    data = validate_settings(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return validate_settings(data)


def validate_settings(data: dict[str, Any]) -> Settings:
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(_format_validation_error(exc)) from exc


def with_overrides(settings: Settings, overrides: dict[str, dict[str, Any]]) -> Settings:
    """Return a re-validated copy of ``settings`` with per-section CLI overrides applied."""

    data = settings.model_dump(mode="python")
    for section, values in overrides.items():
        for key, value in values.items():
            if value is not None:
                data[section][key] = value
    return validate_settings(data)


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}")
    return "Invalid configuration: " + "; ".join(problems)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    try:
        current[final_key] = _coerce_value(raw_value, current[final_key])
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{'__'.join(path).upper()}: {raw_value!r}") from exc


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
