"""
Benchmark comparison of two motion patterns.

The overall score is a weighted blend of six components:

    armSwing       0.40  correlation of arm swing velocity curves
    releasePoint   0.25  release timing as a fraction of each clip
    rhythm         0.15  correlation of the full intensity curves
    followThrough  0.15  correlation of the follow-through intensity slices
    runUp          0.10  correlation of the run-up intensity slices
    delivery       0.05  correlation of the delivery intensity slices

The weights total 1.10 and are applied as written; the blend is clamped to
[0, 1].

Curves of different lengths are resampled to a common length over index
position (not time), so a slow clip and a fast clip of the same action line
up by shape. NaN/Infinity never reaches the final score: indeterminate
components fall back to a neutral 0.5 and the event is logged.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from bowlmatch.cv.errors import BenchmarkUnavailableError, InsufficientDataError, InvalidPatternError
from bowlmatch.cv.pattern_builder import DELIVERY, FOLLOW_THROUGH, RUN_UP, MotionPattern

logger = logging.getLogger(__name__)


NEUTRAL_SIMILARITY = 0.5
ZERO_VARIANCE_EPSILON = 1e-12

ARM_SWING = "arm_swing"
RELEASE_POINT = "release_point"
RHYTHM = "rhythm"
BODY_MOVEMENT = "body_movement"

METRIC_NAMES = (ARM_SWING, RELEASE_POINT, RHYTHM, RUN_UP, DELIVERY, FOLLOW_THROUGH, BODY_MOVEMENT)

# (metric, threshold, tip); a tip is emitted when the metric falls below its threshold
RECOMMENDATION_RULES: Tuple[Tuple[str, float, str], ...] = (
    (ARM_SWING, 0.6, "Focus on arm swing technique and timing"),
    (RELEASE_POINT, 0.7, "Work on consistent release point timing"),
    (RHYTHM, 0.5, "Practice maintaining consistent bowling rhythm"),
    (FOLLOW_THROUGH, 0.6, "Improve follow-through completion"),
    (RUN_UP, 0.5, "Work on run-up consistency"),
)
POSITIVE_RECOMMENDATION = "Excellent technique! Keep practicing to maintain consistency"


def resample_array(values: Sequence[float], target_length: int) -> np.ndarray:
    """Linearly interpolate `values` onto `target_length` evenly spaced index positions."""
    arr = np.asarray(values, dtype=float)
    if target_length <= 0 or arr.size == 0:
        return np.array([], dtype=float)
    if arr.size == target_length:
        return arr.copy()
    if arr.size == 1:
        return np.full(target_length, arr[0])
    positions = np.linspace(0, arr.size - 1, target_length)
    return np.interp(positions, np.arange(arr.size), arr)


def _finite(values: Sequence[float]) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    mask = np.isfinite(arr)
    if not mask.all():
        logger.debug(f"Dropping {int((~mask).sum())} non-finite values before comparison")
    return arr[mask]


def compare_arrays(
    first: Sequence[float],
    second: Sequence[float],
    max_length: int = 30,
    tolerance: float = 0.001,
    near_identical_ratio: float = 0.8,
    near_identical_similarity: float = 0.95,
) -> float:
    """
    Correlation-based similarity of two 1D curves, in [0, 1].

    Steps:
        1. Drop non-finite values; an empty side scores 0.
        2. Resample both to min(len1, len2, max_length).
        3. If enough paired values are within `tolerance`, return
           `near_identical_similarity`.
        4. Pearson correlation mapped from [-1, 1] to [0, 1].

    Flat curves: two flat curves score 1.0 when their levels match and 0.0
    otherwise; a flat curve against a varying one scores 0.
    """
    a = _finite(first)
    b = _finite(second)
    if a.size == 0 or b.size == 0:
        return 0.0

    length = min(a.size, b.size, max_length)
    a = resample_array(a, length)
    b = resample_array(b, length)

    close = np.abs(a - b) <= tolerance
    if close.mean() >= near_identical_ratio:
        return near_identical_similarity

    a_centered = a - a.mean()
    b_centered = b - b.mean()
    a_var = float(np.sum(a_centered ** 2))
    b_var = float(np.sum(b_centered ** 2))
    a_flat = a_var < ZERO_VARIANCE_EPSILON
    b_flat = b_var < ZERO_VARIANCE_EPSILON

    if a_flat and b_flat:
        return 1.0 if abs(float(a.mean()) - float(b.mean())) < tolerance else 0.0
    if a_flat or b_flat:
        return 0.0

    correlation = float(np.sum(a_centered * b_centered) / math.sqrt(a_var * b_var))
    if not math.isfinite(correlation):
        logger.warning(f"Non-finite correlation ({correlation}), using neutral similarity")
        return NEUTRAL_SIMILARITY

    return float(min(1.0, max(0.0, (correlation + 1.0) / 2.0)))


def release_point_similarity(input_pattern: MotionPattern, benchmark: MotionPattern) -> float:
    """1 - |difference of release positions as timeline fractions|, floored at 0."""
    if input_pattern.length == 0 or benchmark.length == 0:
        return NEUTRAL_SIMILARITY
    diff = abs(input_pattern.release_fraction - benchmark.release_fraction)
    return max(0.0, 1.0 - diff)


def sanitize_component(value: Optional[float], name: str) -> float:
    """Clamp a component to [0, 1], replacing missing/non-finite values with 0.5."""
    if value is None or not math.isfinite(value):
        logger.warning(f"Non-finite {name} similarity ({value}), using neutral {NEUTRAL_SIMILARITY}")
        return NEUTRAL_SIMILARITY
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class SimilarityWeights:
    """
    Weights of the scored components.

    Applied as given, not renormalised. The defaults total 1.10, so a close
    match can exceed 1.0 before the final clamp.
    """
    arm_swing: float = 0.40
    release_point: float = 0.25
    rhythm: float = 0.15
    follow_through: float = 0.15
    run_up: float = 0.10
    delivery: float = 0.05

    def __post_init__(self):
        values = self.as_dict().values()
        if any(w < 0 for w in values):
            raise ValueError("Similarity weights must be non-negative")
        if sum(values) <= 0:
            raise ValueError("At least one similarity weight must be positive")

    @classmethod
    def from_settings(cls, settings) -> "SimilarityWeights":
        return cls(
            arm_swing=settings.weight_arm_swing,
            release_point=settings.weight_release_point,
            rhythm=settings.weight_rhythm,
            follow_through=settings.weight_follow_through,
            run_up=settings.weight_run_up,
            delivery=settings.weight_delivery,
        )

    def as_dict(self) -> Dict[str, float]:
        return {
            ARM_SWING: self.arm_swing,
            RELEASE_POINT: self.release_point,
            RHYTHM: self.rhythm,
            FOLLOW_THROUGH: self.follow_through,
            RUN_UP: self.run_up,
            DELIVERY: self.delivery,
        }


@dataclass
class SimilarityResult:
    """Outcome of one benchmark comparison. Scores are on a 0-1 scale."""
    overall_similarity: float
    per_metric: Dict[str, float] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "overall_similarity": self.overall_similarity,
            "per_metric": dict(self.per_metric),
            "recommendations": list(self.recommendations),
        }


def build_recommendations(per_metric: Dict[str, float]) -> List[str]:
    tips = [
        tip for metric, threshold, tip in RECOMMENDATION_RULES
        if per_metric.get(metric, NEUTRAL_SIMILARITY) < threshold
    ]
    return tips or [POSITIVE_RECOMMENDATION]


class SimilarityEngine:
    """
    Compares an input pattern against a benchmark pattern.

    Stateless apart from its configuration, so one engine can be shared by
    any number of sessions.
    """

    def __init__(
        self,
        weights: Optional[SimilarityWeights] = None,
        max_length: int = 30,
        tolerance: float = 0.001,
        near_identical_ratio: float = 0.8,
        near_identical_similarity: float = 0.95,
    ):
        self.weights = weights or SimilarityWeights()
        self.max_length = max_length
        self.tolerance = tolerance
        self.near_identical_ratio = near_identical_ratio
        self.near_identical_similarity = near_identical_similarity

    @classmethod
    def from_settings(cls, settings) -> "SimilarityEngine":
        return cls(
            weights=SimilarityWeights.from_settings(settings),
            max_length=settings.resample_max_length,
            tolerance=settings.near_identical_tolerance,
            near_identical_ratio=settings.near_identical_ratio,
            near_identical_similarity=settings.near_identical_similarity,
        )

    def compare_arrays(self, first: Sequence[float], second: Sequence[float]) -> float:
        return compare_arrays(
            first,
            second,
            max_length=self.max_length,
            tolerance=self.tolerance,
            near_identical_ratio=self.near_identical_ratio,
            near_identical_similarity=self.near_identical_similarity,
        )

    def phase_similarity(self, input_pattern: MotionPattern, benchmark: MotionPattern, phase: str) -> float:
        """Similarity of one phase's intensity slices; 0.5 if either range is unusable."""
        input_range = input_pattern.action_phases.get(phase)
        bench_range = benchmark.action_phases.get(phase)
        if input_range is None or bench_range is None:
            return NEUTRAL_SIMILARITY

        input_slice = input_range.slice(input_pattern.overall_intensities)
        bench_slice = bench_range.slice(benchmark.overall_intensities)
        if not input_slice or not bench_slice:
            logger.debug(f"Phase {phase} range unusable, using neutral similarity")
            return NEUTRAL_SIMILARITY

        return self.compare_arrays(input_slice, bench_slice)

    def _check_input(self, pattern: MotionPattern) -> None:
        if not pattern.is_valid or pattern.is_empty:
            raise InsufficientDataError(
                f"Input pattern rejected: {pattern.length} samples, valid={pattern.is_valid}"
            )
        pattern.check_shape()

    def _check_benchmark(self, pattern: MotionPattern) -> None:
        if not pattern.is_valid or pattern.is_empty:
            raise BenchmarkUnavailableError(
                f"Benchmark pattern rejected: {pattern.length} samples, valid={pattern.is_valid}"
            )
        try:
            pattern.check_shape()
        except InvalidPatternError as e:
            raise BenchmarkUnavailableError(f"Benchmark pattern malformed: {e}") from e

    def compare(self, input_pattern: MotionPattern, benchmark: MotionPattern) -> SimilarityResult:
        """
        Score `input_pattern` against `benchmark`.

        Raises:
            InsufficientDataError: input pattern is invalid or empty
            BenchmarkUnavailableError: benchmark pattern is invalid, empty or malformed
        """
        self._check_input(input_pattern)
        self._check_benchmark(benchmark)

        raw = {
            ARM_SWING: self.compare_arrays(
                input_pattern.arm_swing_velocities, benchmark.arm_swing_velocities
            ),
            RELEASE_POINT: release_point_similarity(input_pattern, benchmark),
            RHYTHM: self.compare_arrays(
                input_pattern.overall_intensities, benchmark.overall_intensities
            ),
            RUN_UP: self.phase_similarity(input_pattern, benchmark, RUN_UP),
            DELIVERY: self.phase_similarity(input_pattern, benchmark, DELIVERY),
            FOLLOW_THROUGH: self.phase_similarity(input_pattern, benchmark, FOLLOW_THROUGH),
            BODY_MOVEMENT: self.compare_arrays(
                input_pattern.body_movement_velocities, benchmark.body_movement_velocities
            ),
        }
        per_metric = {name: sanitize_component(value, name) for name, value in raw.items()}

        overall = sum(
            weight * per_metric[name] for name, weight in self.weights.as_dict().items()
        )
        overall = sanitize_component(overall, "overall")

        logger.info(
            "Similarity breakdown: "
            + ", ".join(f"{name}={per_metric[name]:.3f}" for name in METRIC_NAMES)
            + f" -> overall={overall:.3f}"
        )

        return SimilarityResult(
            overall_similarity=overall,
            per_metric=per_metric,
            recommendations=build_recommendations(per_metric),
        )
