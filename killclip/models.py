from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

import numpy as np


@dataclass(slots=True)
class PixelBuffer:
    """Decoded, row-major frame pixels (RGB order) borrowed for one scoring call."""

    width: int
    height: int
    channels: int
    data: bytes | np.ndarray

    @classmethod
    def from_array(cls, array: np.ndarray) -> PixelBuffer:
        """Wrap an ``HxWxC`` uint8 array without copying."""

        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        height, width, channels = array.shape
        return cls(width=int(width), height=int(height), channels=int(channels), data=array)

    @property
    def expected_size(self) -> int:
        return self.width * self.height * self.channels


@dataclass(frozen=True, slots=True)
class FrameSample:
    """One scored frame on the video timeline."""

    frame_index: int
    timestamp_seconds: float
    confidence: float

    @classmethod
    def from_frame(cls, frame_index: int, frame_rate: float, confidence: float) -> FrameSample:
        return cls(
            frame_index=frame_index,
            timestamp_seconds=frame_index / frame_rate,
            confidence=confidence,
        )


@dataclass(slots=True)
class FrameScore:
    """Explainable per-frame scoring output."""

    confidence: float
    is_event: bool
    strategy: str
    details: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class Cluster:
    """Time-ordered run of samples whose consecutive gaps fit inside one merge window."""

    samples: list[FrameSample]

    @property
    def start_time(self) -> float:
        return self.samples[0].timestamp_seconds

    @property
    def end_time(self) -> float:
        return self.samples[-1].timestamp_seconds

    @property
    def size(self) -> int:
        return len(self.samples)

    @property
    def peak_confidence(self) -> float:
        return max(sample.confidence for sample in self.samples)

    @property
    def average_confidence(self) -> float:
        return sum(sample.confidence for sample in self.samples) / len(self.samples)


_WRITE_ONCE_FIELDS = frozenset({"id", "timestamp_seconds", "frame_index", "confidence", "cluster_info"})


@dataclass(slots=True)
class EventRecord:
    """Persisted detection; only ``enabled`` and ``note`` may change after creation."""

    id: int
    timestamp_seconds: float
    frame_index: int
    confidence: float
    enabled: bool = True
    note: str | None = None
    cluster_info: dict[str, Any] | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _WRITE_ONCE_FIELDS:
            try:
                object.__getattribute__(self, name)
            except AttributeError:
                pass
            else:
                raise AttributeError(f"EventRecord.{name} is write-once")
        object.__setattr__(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if payload["note"] is None:
            payload.pop("note")
        if payload["cluster_info"] is None:
            payload.pop("cluster_info")
        return payload


@dataclass(frozen=True, slots=True)
class SegmentSpec:
    """Time interval handed to the slicing collaborator."""

    start_time: float
    end_time: float
    duration: float


@dataclass(slots=True)
class ClusterStatistics:
    """Read-only summary of how raw detections group on the timeline."""

    total_clusters: int
    average_cluster_size: float
    max_cluster_size: int
    clusters: list[Cluster] = field(default_factory=list)


@dataclass(slots=True)
class ProcessingOptions:
    """Effective settings a detection run was produced with."""

    confidence_threshold: float
    lead_seconds: float
    trail_seconds: float
    frame_rate: float
    scale_width: int
    merge_window_seconds: float = 2.0
    min_cluster_size: int = 2
    strategy: str = "global_dominance"


@dataclass(slots=True)
class DetectionStatistics:
    """Counts for every stage so no dropped frame or cluster goes unreported."""

    total_frames: int = 0
    failed_frames: int = 0
    event_frames: int = 0
    raw_detections: int = 0
    clustered_detections: int = 0
    discarded_clusters: int = 0
    discarded_samples: int = 0
    final_detections: int = 0
    average_cluster_size: float = 0.0
    max_cluster_size: int = 0


@dataclass(slots=True)
class DetectionProject:
    """Hand-off between a detection run and a later generation run."""

    version: str
    input_video: str
    created_at: str
    processing_options: ProcessingOptions
    statistics: DetectionStatistics
    detections: list[EventRecord] = field(default_factory=list)

    def enabled_detections(self) -> list[EventRecord]:
        return [record for record in self.detections if record.enabled]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "input_video": self.input_video,
            "created_at": self.created_at,
            "processing_options": asdict(self.processing_options),
            "statistics": asdict(self.statistics),
            "detections": [record.to_dict() for record in self.detections],
        }
