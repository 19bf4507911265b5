from __future__ import annotations

from typing import Callable

import numpy as np

from killclip.config import ScoringSettings
from killclip.errors import ConfigurationError, MalformedInputError
from killclip.models import PixelBuffer, FrameScore
from killclip.scoring.brightness_stats import score_brightness_stats
from killclip.scoring.dominance import score_global_dominance
from killclip.scoring.logo_template import score_logo_template
from killclip.scoring.radial_effect import score_radial_effect

StrategyFn = Callable[[np.ndarray, ScoringSettings], tuple[float, dict[str, float]]]

SCORING_STRATEGIES: dict[str, StrategyFn] = {
    "global_dominance": score_global_dominance,
    "brightness_stats": score_brightness_stats,
    "radial_effect": score_radial_effect,
    "logo_template": score_logo_template,
}


def score_frame(buffer: PixelBuffer, settings: ScoringSettings | None = None) -> FrameScore:
    """Score one decoded frame with the configured strategy.

    Raises :class:`MalformedInputError` when the buffer does not match its
    declared dimensions. Callers scoring a batch are expected to turn that
    into a zero-confidence frame rather than abort.
    """

    resolved = settings or ScoringSettings()
    strategy = resolve_strategy(resolved.strategy)
    pixels = pixels_from_buffer(buffer)

    confidence, details = strategy(pixels, resolved)
    confidence = _clamp(confidence)
    return FrameScore(
        confidence=confidence,
        is_event=confidence > resolved.saturation_threshold,
        strategy=resolved.strategy,
        details=details,
    )


def frame_confidence(buffer: PixelBuffer, settings: ScoringSettings | None = None) -> float:
    """Convenience wrapper returning only the bounded confidence."""

    return score_frame(buffer, settings).confidence


def resolve_strategy(name: str) -> StrategyFn:
    normalized = name.lower().strip()
    if normalized not in SCORING_STRATEGIES:
        expected = ", ".join(sorted(SCORING_STRATEGIES))
        raise ConfigurationError(f"Unsupported scoring strategy '{name}'. Expected one of: {expected}.")
    return SCORING_STRATEGIES[normalized]


def pixels_from_buffer(buffer: PixelBuffer) -> np.ndarray:
    """Return an ``HxWxC`` uint8 view of ``buffer`` after validating its length."""

    if buffer.width < 0 or buffer.height < 0 or buffer.channels < 3:
        raise MalformedInputError(
            f"Unsupported frame geometry {buffer.width}x{buffer.height}x{buffer.channels}; "
            "at least 3 channels are required."
        )

    if isinstance(buffer.data, np.ndarray):
        flat = buffer.data.reshape(-1)
    else:
        flat = np.frombuffer(buffer.data, dtype=np.uint8)

    if flat.size != buffer.expected_size:
        raise MalformedInputError(
            f"Pixel buffer has {flat.size} values, expected "
            f"{buffer.width}x{buffer.height}x{buffer.channels}={buffer.expected_size}."
        )

    return flat.astype(np.uint8, copy=False).reshape(buffer.height, buffer.width, buffer.channels)


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, float(value)))
