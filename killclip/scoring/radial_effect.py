from __future__ import annotations

import math

import numpy as np

from killclip.config import RadialEffectSettings, ScoringSettings


def score_radial_effect(pixels: np.ndarray, settings: ScoringSettings) -> tuple[float, dict[str, float]]:
    """Detect a bright burst radiating from the frame centre."""

    rgb = pixels[:, :, :3].astype(np.float64)
    height, width = rgb.shape[:2]
    if height == 0 or width == 0:
        return 0.0, {}

    brightness = rgb.mean(axis=2)
    ys, xs = np.ogrid[:height, :width]
    center_x, center_y = width // 2, height // 2
    distance = np.sqrt((xs - center_x) ** 2 + (ys - center_y) ** 2)
    short_side = min(width, height)
    thresholds = settings.radial

    center_score = _center_brightness(brightness, distance, short_side, thresholds)
    contrast_score = _edge_contrast(brightness, distance, xs, ys, short_side, thresholds)
    radial_score = _radial_decay(brightness, center_x, center_y, short_side, thresholds.ray_count)
    saturation_score = _bright_saturation(rgb)

    confidence = center_score * 0.35 + contrast_score * 0.25 + radial_score * 0.25 + saturation_score * 0.15
    return confidence, {
        "center_brightness_score": center_score,
        "edge_contrast_score": contrast_score,
        "radial_pattern_score": radial_score,
        "color_saturation_score": saturation_score,
    }


def _center_brightness(
    brightness: np.ndarray,
    distance: np.ndarray,
    short_side: int,
    thresholds: RadialEffectSettings,
) -> float:
    center = brightness[distance <= short_side * 0.2]
    if center.size == 0:
        return 0.0

    center_mean = float(center.mean())
    ratio = center_mean / (float(brightness.mean()) + 1)
    floor = thresholds.center_brightness_floor
    if center_mean > floor and ratio > thresholds.center_ratio_floor:
        return min(1.0, (center_mean - floor) / 130 * 0.7 + (ratio - thresholds.center_ratio_floor) / 1.3 * 0.3)
    return 0.0


def _edge_contrast(
    brightness: np.ndarray,
    distance: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray,
    short_side: int,
    thresholds: RadialEffectSettings,
) -> float:
    height, width = brightness.shape
    center = brightness[distance <= short_side * 0.1]

    edge_distance = np.minimum(np.minimum(xs, width - xs), np.minimum(ys, height - ys))
    edge = brightness[edge_distance <= short_side * 0.1]
    if center.size == 0 or edge.size == 0:
        return 0.0

    difference = float(center.mean()) - float(edge.mean())
    return min(1.0, max(0.0, difference - thresholds.edge_contrast_floor) / 150)


def _radial_decay(brightness: np.ndarray, center_x: int, center_y: int, short_side: int, ray_count: int) -> float:
    height, width = brightness.shape
    max_distance = short_side * 0.4
    total = 0.0

    for ray in range(ray_count):
        angle = ray * 2 * math.pi / ray_count
        dx, dy = math.cos(angle), math.sin(angle)

        samples = []
        step = 20
        while step < max_distance:
            x = math.floor(center_x + dx * step)
            y = math.floor(center_y + dy * step)
            if 0 <= x < width and 0 <= y < height:
                samples.append(float(brightness[y, x]))
            step += 15

        if len(samples) >= 3:
            decay = sum(max(0.0, inner - outer) for inner, outer in zip(samples, samples[1:]))
            total += min(1.0, decay / (len(samples) - 1) / 50)

    return total / ray_count


def _bright_saturation(rgb: np.ndarray) -> float:
    peak = rgb.max(axis=2)
    floor = rgb.min(axis=2)
    saturation = np.divide(peak - floor, peak, out=np.zeros_like(peak), where=peak > 0)

    vivid = (saturation > 0.4) & (peak > 100)
    red, green = rgb[:, :, 0], rgb[:, :, 1]
    warm = vivid & (peak > 180) & ((red > 150) | ((red > 120) & (green > 120)))

    return min(1.0, float(vivid.mean()) * 2 + float(warm.mean()) * 3)
