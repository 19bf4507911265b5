from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from killclip.config import ScoringSettings


@dataclass(slots=True)
class Region:
    x: int
    y: int
    w: int
    h: int


def score_logo_template(pixels: np.ndarray, settings: ScoringSettings) -> tuple[float, dict[str, float]]:
    """Score fixed-position HUD portrait regions; the frame score is the better side."""

    rgb = pixels[:, :, :3].astype(np.float64)
    height, width = rgb.shape[:2]
    if height == 0 or width == 0:
        return 0.0, {}

    # Character portraits sit at fixed positions in the bottom HUD.
    layout = settings.logo
    side = math.floor(width * layout.side)
    top = math.floor(height * layout.y)
    left = Region(x=math.floor(width * layout.left_x), y=top, w=side, h=side)
    right = Region(x=math.floor(width * layout.right_x), y=top, w=side, h=side)

    left_scores = _score_region(rgb, left, layout.hue_buckets)
    right_scores = _score_region(rgb, right, layout.hue_buckets)

    details = {f"left_{key}": value for key, value in left_scores.items()}
    details.update({f"right_{key}": value for key, value in right_scores.items()})
    return max(left_scores["score"], right_scores["score"]), details


def _score_region(rgb: np.ndarray, region: Region, hue_buckets: int) -> dict[str, float]:
    crop = rgb[region.y : region.y + region.h, region.x : region.x + region.w]
    if crop.size == 0:
        return {"score": 0.0, "color_diversity": 0.0, "square_structure": 0.0, "brightness": 0.0, "edges": 0.0}

    diversity = _color_diversity(crop, hue_buckets)
    structure = _square_structure(rgb, region)
    brightness = _mid_brightness(crop)
    edges = _edge_density(crop)

    score = diversity * 0.3 + structure * 0.25 + brightness * 0.25 + edges * 0.2
    return {
        "score": score,
        "color_diversity": diversity,
        "square_structure": structure,
        "brightness": brightness,
        "edges": edges,
    }


def _color_diversity(crop: np.ndarray, hue_buckets: int) -> float:
    red, green, blue = crop[:, :, 0], crop[:, :, 1], crop[:, :, 2]
    peak = crop.max(axis=2)
    floor = crop.min(axis=2)
    spread = peak - floor
    saturation = np.divide(spread, peak, out=np.zeros_like(peak), where=peak > 0)

    colorful = (saturation > 0.3) & (peak > 60)
    if not colorful.any():
        return 0.0

    safe_spread = np.where(spread > 0, spread, 1.0)
    hue = np.where(
        peak == red,
        (green - blue) / safe_spread * 60,
        np.where(peak == green, (2.0 + (blue - red) / safe_spread) * 60, (4.0 + (red - green) / safe_spread) * 60),
    )
    hue = np.where(hue < 0, hue + 360, hue)
    buckets = np.floor(hue[colorful] / (360 / hue_buckets)).astype(np.int64) % hue_buckets

    used_buckets = len(np.unique(buckets))
    return min(1.0, used_buckets / hue_buckets * 0.7 + float(colorful.mean()) * 0.3)


def _square_structure(rgb: np.ndarray, region: Region) -> float:
    height, width = rgb.shape[:2]
    center_x = region.x + region.w / 2
    center_y = region.y + region.h / 2
    half = min(region.w, region.h) / 2

    top, bottom = region.y + 2, region.y + region.h - 2
    left, right = region.x + 2, region.x + region.w - 2
    border_points = [
        (center_x - half * 0.5, top), (center_x, top), (center_x + half * 0.5, top),
        (center_x - half * 0.5, bottom), (center_x, bottom), (center_x + half * 0.5, bottom),
        (left, center_y - half * 0.5), (left, center_y), (left, center_y + half * 0.5),
        (right, center_y - half * 0.5), (right, center_y), (right, center_y + half * 0.5),
    ]

    checked = 0
    straight_edges = 0
    for raw_x, raw_y in border_points:
        x, y = math.floor(raw_x), math.floor(raw_y)
        if not (0 <= x < width and 0 <= y < height):
            continue
        checked += 1
        inward_x = x + (3 if x < center_x else -3)
        inward_y = y + (3 if y < center_y else -3)
        if 0 <= inward_x < width and 0 <= inward_y < height:
            if abs(rgb[y, x, 0] - rgb[inward_y, inward_x, 0]) > 40:
                straight_edges += 1

    corners = [(left, top), (right, top), (left, bottom), (right, bottom)]
    strong_corners = sum(
        1
        for x, y in corners
        if 0 <= x < width and 0 <= y < height and _local_edge_strength(rgb, x, y) > 0.3
    )

    straight_ratio = straight_edges / checked if checked else 0.0
    return min(1.0, straight_ratio * 0.6 + strong_corners / 4 * 0.4)


def _local_edge_strength(rgb: np.ndarray, x: int, y: int) -> float:
    height, width = rgb.shape[:2]
    brightness = rgb[max(0, y - 1) : min(height, y + 2), max(0, x - 1) : min(width, x + 2)].mean(axis=2)
    center = rgb[y, x].mean()
    # The centre pixel contributes a zero difference, so exclude it from the count.
    neighbours = brightness.size - 1
    if neighbours <= 0:
        return 0.0
    return min(1.0, float(np.abs(brightness - center).sum()) / neighbours / 100)


def _mid_brightness(crop: np.ndarray) -> float:
    average = float(crop.mean())
    if average < 60 or average > 220:
        return 0.0
    if 80 <= average <= 180:
        return 1.0
    distance = min(abs(average - 80), abs(average - 180))
    return max(0.0, 1.0 - distance / 40)


def _edge_density(crop: np.ndarray) -> float:
    red = crop[:, :, 0]
    if red.shape[0] < 2 or red.shape[1] < 2:
        return 0.0
    base = red[:-1, :-1]
    gradient = np.sqrt((base - red[:-1, 1:]) ** 2 + (base - red[1:, :-1]) ** 2)
    return min(1.0, float((gradient > 25).mean()) * 3)
