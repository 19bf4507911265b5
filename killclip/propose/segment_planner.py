from __future__ import annotations

from typing import Iterable

from killclip.models import EventRecord, SegmentSpec


def plan_segment(record: EventRecord, lead_seconds: float, trail_seconds: float) -> SegmentSpec:
    """Pad one event into a clip interval; the start is clamped at the video origin."""

    return SegmentSpec(
        start_time=max(0.0, record.timestamp_seconds - lead_seconds),
        end_time=record.timestamp_seconds + trail_seconds,
        duration=lead_seconds + trail_seconds,
    )


def plan_segments(records: Iterable[EventRecord], lead_seconds: float, trail_seconds: float) -> list[SegmentSpec]:
    """Plan segments for every enabled record, preserving record order."""

    return [plan_segment(record, lead_seconds, trail_seconds) for record in records if record.enabled]
