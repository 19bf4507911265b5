from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from killclip.errors import ConfigurationError
from killclip.models import Cluster, ClusterStatistics, EventRecord, FrameSample

DEFAULT_MERGE_WINDOW_SECONDS = 2.0
DEFAULT_MIN_CLUSTER_SIZE = 2

# Density diagnostics always partition with this window, whatever merge window
# the deduplication pass is configured with.
CLUSTER_STATS_WINDOW_SECONDS = 2.0

CONTINUITY_BONUS_PER_SAMPLE = 0.02
CONTINUITY_BONUS_CAP = 0.1


@dataclass(slots=True)
class ClusteringResult:
    """Deduplicated events plus the bookkeeping needed for summary statistics."""

    events: list[EventRecord]
    discarded_clusters: int = 0
    discarded_samples: int = 0


def deduplicate_samples(
    samples: Iterable[FrameSample],
    merge_window_seconds: float = DEFAULT_MERGE_WINDOW_SECONDS,
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
) -> ClusteringResult:
    """Collapse threshold-passing frame samples into one event per cluster.

    Pipeline:
    1) sort samples on the timeline
    2) greedy merge while the gap to the current cluster end fits the window
    3) drop clusters smaller than ``min_cluster_size``
    4) pick the highest-confidence sample (earliest wins ties) as representative
    5) add a capped continuity bonus and number the events 1..N
    """

    if merge_window_seconds <= 0:
        raise ConfigurationError(f"merge_window_seconds must be > 0, got {merge_window_seconds}")
    if min_cluster_size < 1:
        raise ConfigurationError(f"min_cluster_size must be >= 1, got {min_cluster_size}")

    clusters = cluster_samples(samples, merge_window_seconds)
    kept = [cluster for cluster in clusters if cluster.size >= min_cluster_size]
    dropped = [cluster for cluster in clusters if cluster.size < min_cluster_size]

    events = [
        _event_from_cluster(event_id, cluster)
        for event_id, cluster in enumerate(kept, start=1)
    ]
    return ClusteringResult(
        events=events,
        discarded_clusters=len(dropped),
        discarded_samples=sum(cluster.size for cluster in dropped),
    )


def deduplicate_events(
    samples: Iterable[FrameSample],
    merge_window_seconds: float = DEFAULT_MERGE_WINDOW_SECONDS,
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
) -> list[EventRecord]:
    return deduplicate_samples(samples, merge_window_seconds, min_cluster_size).events


def cluster_samples(samples: Iterable[FrameSample], merge_window_seconds: float) -> list[Cluster]:
    """Greedy single-pass interval merge over time-sorted samples."""

    ordered = sorted(samples, key=lambda sample: (sample.timestamp_seconds, sample.frame_index))
    clusters: list[Cluster] = []

    for sample in ordered:
        if not clusters or sample.timestamp_seconds - clusters[-1].end_time > merge_window_seconds:
            clusters.append(Cluster(samples=[sample]))
            continue
        clusters[-1].samples.append(sample)

    return clusters


def analyze_clusters(
    samples: Iterable[FrameSample],
    window_seconds: float = CLUSTER_STATS_WINDOW_SECONDS,
) -> ClusterStatistics:
    """Characterise raw detection density.

    This is read-only and uses its own window (``CLUSTER_STATS_WINDOW_SECONDS``
    unless overridden explicitly), not the deduplication merge window.
    """

    clusters = cluster_samples(samples, window_seconds)
    if not clusters:
        return ClusterStatistics(total_clusters=0, average_cluster_size=0.0, max_cluster_size=0, clusters=[])

    sizes = [cluster.size for cluster in clusters]
    return ClusterStatistics(
        total_clusters=len(clusters),
        average_cluster_size=sum(sizes) / len(clusters),
        max_cluster_size=max(sizes),
        clusters=clusters,
    )


def select_representative(cluster: Cluster) -> FrameSample:
    best = cluster.samples[0]
    for sample in cluster.samples[1:]:
        if sample.confidence > best.confidence:
            best = sample
    return best


def continuity_bonus(cluster_size: int) -> float:
    return min(CONTINUITY_BONUS_CAP, cluster_size * CONTINUITY_BONUS_PER_SAMPLE)


def enhanced_confidence(confidence: float, cluster_size: int) -> float:
    return min(1.0, confidence + continuity_bonus(cluster_size))


def _event_from_cluster(event_id: int, cluster: Cluster) -> EventRecord:
    representative = select_representative(cluster)
    confidence = enhanced_confidence(representative.confidence, cluster.size)
    return EventRecord(
        id=event_id,
        timestamp_seconds=representative.timestamp_seconds,
        frame_index=representative.frame_index,
        confidence=confidence,
        enabled=True,
        note=f"auto-detected (confidence {round(confidence * 100)}%)",
        cluster_info={
            "original_detections": cluster.size,
            "time_range": {"start": cluster.start_time, "end": cluster.end_time},
        },
    )
