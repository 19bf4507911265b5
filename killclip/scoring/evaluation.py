from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from killclip.config import ScoringSettings
from killclip.models import PixelBuffer
from killclip.scoring.frame_scorer import score_frame

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".webp"}

# Lower bounds of the confidence buckets used in batch summaries.
CONFIDENCE_BUCKETS = (("high", 0.7), ("medium", 0.5), ("low", 0.3), ("very_low", 0.0))

ImageLoader = Callable[[Path], PixelBuffer]


@dataclass(slots=True)
class ImageScore:
    path: str
    confidence: float
    predicted: bool
    actual: bool | None = None
    error: str | None = None

    @property
    def correct(self) -> bool | None:
        if self.actual is None:
            return None
        return self.predicted == self.actual


@dataclass(slots=True)
class ClassificationMetrics:
    """Confusion counts and the derived rates for one strategy over a labelled image set."""

    true_positives: int
    false_positives: int
    true_negatives: int
    false_negatives: int
    total: int
    accuracy: float
    precision: float
    recall: float
    f1_score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def list_images(directory: str | Path) -> list[Path]:
    """Image files directly inside ``directory``, sorted by name."""

    root = Path(directory)
    if not root.is_dir():
        raise FileNotFoundError(f"Image directory not found: {root}")
    return sorted(path for path in root.iterdir() if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS)


def score_images(
    paths: Iterable[Path],
    settings: ScoringSettings,
    *,
    confidence_threshold: float,
    loader: ImageLoader,
    actual: bool | None = None,
) -> list[ImageScore]:
    """Score still images one by one; an unreadable image scores 0 and keeps its error message."""

    results: list[ImageScore] = []
    for path in paths:
        try:
            confidence = score_frame(loader(path), settings).confidence
        except (RuntimeError, ValueError, OSError) as exc:
            logger.warning("Could not score %s: %s", path, exc)
            results.append(ImageScore(path=str(path), confidence=0.0, predicted=False, actual=actual, error=str(exc)))
            continue
        results.append(
            ImageScore(
                path=str(path),
                confidence=confidence,
                predicted=confidence >= confidence_threshold,
                actual=actual,
            )
        )
    return results


def confidence_distribution(results: Iterable[ImageScore]) -> dict[str, int]:
    counts = {name: 0 for name, _ in CONFIDENCE_BUCKETS}
    for result in results:
        for name, lower in CONFIDENCE_BUCKETS:
            if result.confidence >= lower:
                counts[name] += 1
                break
    return counts


def compute_metrics(results: Iterable[ImageScore]) -> ClassificationMetrics:
    labelled = [result for result in results if result.actual is not None]
    tp = sum(1 for r in labelled if r.actual and r.predicted)
    fp = sum(1 for r in labelled if not r.actual and r.predicted)
    tn = sum(1 for r in labelled if not r.actual and not r.predicted)
    fn = sum(1 for r in labelled if r.actual and not r.predicted)
    total = len(labelled)

    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    return ClassificationMetrics(
        true_positives=tp,
        false_positives=fp,
        true_negatives=tn,
        false_negatives=fn,
        total=total,
        accuracy=(tp + tn) / total if total else 0.0,
        precision=precision,
        recall=recall,
        f1_score=2 * precision * recall / (precision + recall) if precision + recall else 0.0,
    )


def summarize_batch(results: list[ImageScore]) -> dict[str, Any]:
    """Detection counts, bucketed confidences and per-image scores sorted from most to least confident."""

    detected = sum(1 for result in results if result.predicted)
    ranked = sorted(results, key=lambda result: result.confidence, reverse=True)
    return {
        "total": len(results),
        "detected": detected,
        "not_detected": len(results) - detected,
        "failed": sum(1 for result in results if result.error),
        "confidence_distribution": confidence_distribution(results),
        "images": [
            {
                "path": result.path,
                "confidence": round(result.confidence, 4),
                "detected": result.predicted,
                **({"error": result.error} if result.error else {}),
            }
            for result in ranked
        ],
    }


def evaluate_strategy(
    positive_images: list[Path],
    negative_images: list[Path],
    settings: ScoringSettings,
    *,
    confidence_threshold: float,
    loader: ImageLoader,
) -> dict[str, Any]:
    """Score labelled kill and non-kill images with one strategy and report its classification quality."""

    results = score_images(
        positive_images, settings, confidence_threshold=confidence_threshold, loader=loader, actual=True
    )
    results += score_images(
        negative_images, settings, confidence_threshold=confidence_threshold, loader=loader, actual=False
    )
    metrics = compute_metrics(results)
    logger.info(
        "Strategy %s: accuracy %.3f, precision %.3f, recall %.3f, f1 %.3f over %d images",
        settings.strategy,
        metrics.accuracy,
        metrics.precision,
        metrics.recall,
        metrics.f1_score,
        metrics.total,
    )
    return {
        "strategy": settings.strategy,
        "confidence_threshold": confidence_threshold,
        "metrics": metrics.to_dict(),
        "misclassified": [
            {
                "path": result.path,
                "expected": "kill" if result.actual else "non_kill",
                "confidence": round(result.confidence, 4),
            }
            for result in results
            if result.correct is False
        ],
    }
