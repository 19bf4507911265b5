from __future__ import annotations

import numpy as np

from killclip.config import ScoringSettings

CHANNEL_INDEX = {"red": 0, "green": 1, "blue": 2}

COVERAGE_WEIGHT = 0.4
UNIFORMITY_WEIGHT = 0.3
INTENSITY_WEIGHT = 0.2
RESIDUAL_WEIGHT = 0.1


def score_global_dominance(pixels: np.ndarray, settings: ScoringSettings) -> tuple[float, dict[str, float]]:
    """Score how much of the frame is tinted by one dominant colour channel.

    The frame is split into a ``grid_size`` x ``grid_size`` grid. A pixel is
    dominant when its designated channel is strictly above both other channels
    and above ``brightness_floor``. Four sub-scores are blended:

    * global coverage, saturating at 50% dominant pixels;
    * uniformity, the share of grid cells whose dominant fraction exceeds
      ``cell_dominance_fraction``;
    * intensity, the mean dominance margin over dominant pixels only;
    * inverse residual, which collapses once a third of the frame is not dominant.
    """

    height, width = pixels.shape[:2]
    total_pixels = height * width
    if total_pixels == 0:
        return 0.0, _details(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    mask, margin = dominance_map(pixels, settings.dominant_channel, settings.brightness_floor)

    dominant_count = int(mask.sum())
    coverage = dominant_count / total_pixels
    coverage_score = min(1.0, coverage * 2)

    cell_fractions = cell_dominance_fractions(mask, settings.grid_size)
    dominant_cells = int((cell_fractions > settings.cell_dominance_fraction).sum())
    uniformity = dominant_cells / (settings.grid_size * settings.grid_size)

    average_margin = float(margin[mask].mean()) if dominant_count else 0.0
    intensity_score = min(1.0, average_margin / settings.intensity_normalizer)

    residual_area = 1.0 - coverage_score
    inverse_residual_score = max(0.0, 1.0 - residual_area * 3)

    confidence = (
        coverage_score * COVERAGE_WEIGHT
        + uniformity * UNIFORMITY_WEIGHT
        + intensity_score * INTENSITY_WEIGHT
        + inverse_residual_score * RESIDUAL_WEIGHT
    )
    return confidence, _details(
        coverage,
        coverage_score,
        uniformity,
        average_margin,
        intensity_score,
        residual_area,
        inverse_residual_score,
    )


def dominance_map(pixels: np.ndarray, channel: str, brightness_floor: int) -> tuple[np.ndarray, np.ndarray]:
    """Return the boolean dominant-pixel mask and the per-pixel dominance margin."""

    index = CHANNEL_INDEX[channel]
    rgb = pixels[:, :, :3].astype(np.int16)
    dominant = rgb[:, :, index]
    others = np.delete(rgb, index, axis=2)
    strongest_other = others.max(axis=2)

    mask = (dominant > strongest_other) & (dominant > brightness_floor)
    margin = dominant - strongest_other
    return mask, margin


def cell_dominance_fractions(mask: np.ndarray, grid_size: int) -> np.ndarray:
    """Fraction of dominant pixels per grid cell; the last row/column absorbs remainders."""

    height, width = mask.shape
    row_edges = _cell_edges(height, grid_size)
    col_edges = _cell_edges(width, grid_size)

    fractions = np.zeros((grid_size, grid_size), dtype=np.float64)
    for row in range(grid_size):
        for col in range(grid_size):
            cell = mask[row_edges[row] : row_edges[row + 1], col_edges[col] : col_edges[col + 1]]
            if cell.size:
                fractions[row, col] = cell.mean()
    return fractions


def _cell_edges(length: int, grid_size: int) -> list[int]:
    step = length // grid_size
    return [step * index for index in range(grid_size)] + [length]


def _details(
    coverage: float,
    coverage_score: float,
    uniformity: float,
    average_margin: float,
    intensity_score: float,
    residual_area: float,
    inverse_residual_score: float,
) -> dict[str, float]:
    return {
        "global_coverage": coverage,
        "global_coverage_score": coverage_score,
        "uniformity": uniformity,
        "intensity": average_margin,
        "intensity_score": intensity_score,
        "residual_area": residual_area,
        "inverse_residual_score": inverse_residual_score,
    }
