from __future__ import annotations

import numpy as np

from killclip.config import ScoringSettings
from killclip.scoring.dominance import CHANNEL_INDEX

def score_brightness_stats(pixels: np.ndarray, settings: ScoringSettings) -> tuple[float, dict[str, float]]:
    """Whole-frame brightness, white-pixel, contrast and colour-share statistics."""

    rgb = pixels[:, :, :3].astype(np.float64)
    if rgb.size == 0:
        return 0.0, {}
    thresholds = settings.brightness_stats

    brightness = rgb.mean(axis=2)
    average_brightness = float(brightness.mean())
    brightness_score = min(1.0, max(0.0, (average_brightness - 80) / 120))

    white_ratio = float((brightness > thresholds.white_level).mean())
    white_score = min(1.0, white_ratio * 10)

    spread = float(brightness.std())
    spread_score = min(1.0, spread / 80)

    index = CHANNEL_INDEX[settings.dominant_channel]
    dominant = rgb[:, :, index]
    others = np.delete(rgb, index, axis=2).max(axis=2)
    dominance_ratio = float(((dominant > others) & (dominant > thresholds.dominance_floor)).mean())
    dominance_score = min(1.0, dominance_ratio * 5)

    confidence = brightness_score * 0.3 + white_score * 0.3 + spread_score * 0.2 + dominance_score * 0.2
    return confidence, {
        "average_brightness": average_brightness,
        "brightness_score": brightness_score,
        "white_pixel_ratio": white_ratio,
        "white_pixel_score": white_score,
        "brightness_spread": spread,
        "brightness_spread_score": spread_score,
        "dominance_ratio": dominance_ratio,
        "dominance_score": dominance_score,
    }
