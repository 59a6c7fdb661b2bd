"""
Mapping from similarity/intensity (0-100) to the displayed speed class and km/h.

All mappings are deterministic and monotonic: a higher score never yields a
lower class or a lower km/h estimate.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


ELIGIBILITY_THRESHOLD = 85.0

SLOW_UPPER_BOUND = 60.0
FAST_UPPER_BOUND = 85.0

# (score, km/h) knots, piecewise-linear in between
KMH_CURVE: Tuple[Tuple[float, float], ...] = (
    (0.0, 60.0),
    (40.0, 95.0),
    (60.0, 110.0),
    (85.0, 130.0),
    (100.0, 145.0),
)


class SpeedClass(str, Enum):
    """Displayed speed class, ordered slowest to fastest."""
    SLOW = "Slow"
    FAST = "Fast"
    ZOOOOOM = "Zooooom"

    @property
    def rank(self) -> int:
        return _SPEED_RANKS[self]


_SPEED_RANKS: Dict[SpeedClass, int] = {
    SpeedClass.SLOW: 0,
    SpeedClass.FAST: 1,
    SpeedClass.ZOOOOOM: 2,
}


SPEED_MESSAGES: Dict[SpeedClass, str] = {
    SpeedClass.SLOW: "Different bowling style detected. Focus on technique refinement to match benchmark.",
    SpeedClass.FAST: "Good bowling action! Moderate similarity to benchmark technique.",
    SpeedClass.ZOOOOOM: "Excellent! Outstanding technique match to benchmark bowling action!",
}


@dataclass(frozen=True)
class SpeedClassification:
    speed_class: SpeedClass
    confidence: float  # 0-1
    message: str

    @property
    def confidence_percent(self) -> float:
        return round(self.confidence * 100, 1)


def _score(value: float) -> float:
    """Clamp to [0, 100]; NaN counts as 0."""
    if value is None or math.isnan(value):
        return 0.0
    return min(100.0, max(0.0, float(value)))


def classify_speed(similarity: float) -> SpeedClassification:
    """
    Classify a 0-100 similarity score.

    Args:
        similarity: Final similarity percentage

    Returns:
        SpeedClassification with class, confidence (0-1) and message
    """
    score = _score(similarity)

    if score < SLOW_UPPER_BOUND:
        speed_class = SpeedClass.SLOW
        confidence = max(0.7, 1 - (score / SLOW_UPPER_BOUND) * 0.3)
    elif score < FAST_UPPER_BOUND:
        speed_class = SpeedClass.FAST
        confidence = max(0.8, 1 - abs(score - 72.5) / 12.5 * 0.2)
    else:
        speed_class = SpeedClass.ZOOOOOM
        confidence = max(0.9, 0.8 + ((score - FAST_UPPER_BOUND) / 15) * 0.2)

    confidence = min(1.0, confidence)
    logger.debug(f"Classified {score:.1f}% as {speed_class.value} ({confidence:.2f} confidence)")

    return SpeedClassification(
        speed_class=speed_class,
        confidence=confidence,
        message=SPEED_MESSAGES[speed_class],
    )


def intensity_to_kmh(intensity: float, curve: Sequence[Tuple[float, float]] = KMH_CURVE) -> float:
    """Estimated delivery speed for a 0-100 intensity, rounded to 0.1 km/h."""
    xs = [x for x, _ in curve]
    ys = [y for _, y in curve]
    if any(b < a for a, b in zip(ys, ys[1:])) or any(b <= a for a, b in zip(xs, xs[1:])):
        raise ValueError("km/h curve must be strictly increasing in score and non-decreasing in speed")
    return round(float(np.interp(_score(intensity), xs, ys)), 1)


def is_eligible(similarity: float, threshold: float = ELIGIBILITY_THRESHOLD) -> bool:
    return _score(similarity) >= threshold


def calculate_accuracy_score(phases: Dict[str, float], technical: Dict[str, float]) -> float:
    """
    Overall accuracy: half phase average, half technical-metric average.

    Args:
        phases: run_up, delivery, follow_through scores
        technical: rhythm, arm_swing, body_movement, release_point scores

    Returns:
        Accuracy on the same scale as the inputs, rounded to 2 decimals
    """
    phase_avg = sum(phases.get(k, 0.0) for k in ("run_up", "delivery", "follow_through")) / 3
    technical_avg = sum(
        technical.get(k, 0.0) for k in ("rhythm", "arm_swing", "body_movement", "release_point")
    ) / 4
    return round(phase_avg * 0.5 + technical_avg * 0.5, 2)


def apply_similarity_reduction(
    similarity: float,
    per_metric: Optional[Dict[str, float]] = None,
    percent: float = 0.0,
) -> Tuple[float, Dict[str, float]]:
    """
    Lower a 0-100 similarity by `percent` points and scale per-metric
    percentages by (1 - percent / 100). A percent of 0 leaves everything as is.
    """
    per_metric = dict(per_metric or {})
    if percent <= 0:
        return similarity, per_metric
    factor = 1 - percent / 100
    reduced = max(0.0, min(100.0, similarity - percent))
    scaled = {name: max(0.0, min(100.0, value * factor)) for name, value in per_metric.items()}
    return reduced, scaled
