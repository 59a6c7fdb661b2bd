"""
Motion pattern accumulation and finalization.

A MotionPattern is the time-series fingerprint of one bowling clip:

    armSwingVelocities      one value per consecutive valid pose pair
    bodyMovementVelocities  same indexing
    overallIntensities      arm + body at each index (rhythm signal)
    releasePointFrame       index of peak arm swing velocity
    actionPhases            runUp / delivery / followThrough index ranges

PHASE SEGMENTATION HEURISTIC:
1. Smooth the intensity timeline with a short moving average.
2. Delivery is centered on the release point and grows outward while the
   smoothed intensity stays above `delivery_intensity_ratio` x peak, with at
   least `delivery_min_radius` frames on each side and never more than
   `delivery_max_fraction` of the clip.
3. Run-up is everything before delivery, follow-through everything after.
   Both keep at least one frame so all three ranges are non-empty.

Ranges are inclusive on both ends and never overlap.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from scipy.ndimage import uniform_filter1d

from bowlmatch.cv.errors import InvalidPatternError

logger = logging.getLogger(__name__)


PATTERN_VERSION = 1

RUN_UP = "run_up"
DELIVERY = "delivery"
FOLLOW_THROUGH = "follow_through"
PHASE_NAMES = (RUN_UP, DELIVERY, FOLLOW_THROUGH)

# Serialized (document) phase keys
PHASE_DOCUMENT_KEYS = {
    RUN_UP: "runUp",
    DELIVERY: "delivery",
    FOLLOW_THROUGH: "followThrough",
}


@dataclass(frozen=True)
class PhaseRange:
    """Inclusive index range over a pattern's timeline."""
    start: int
    end: int

    def is_valid_for(self, length: int) -> bool:
        return 0 <= self.start <= self.end < length

    def slice(self, values: List[float]) -> List[float]:
        if not self.is_valid_for(len(values)):
            return []
        return list(values[self.start:self.end + 1])

    @property
    def size(self) -> int:
        return max(0, self.end - self.start + 1)

    def to_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end}


def _empty_phases() -> Dict[str, PhaseRange]:
    return {name: PhaseRange(0, 0) for name in PHASE_NAMES}


@dataclass
class MotionPattern:
    """Finalized motion time series of one clip (input or benchmark)."""
    arm_swing_velocities: List[float] = field(default_factory=list)
    body_movement_velocities: List[float] = field(default_factory=list)
    overall_intensities: List[float] = field(default_factory=list)
    release_point_frame: int = 0
    action_phases: Dict[str, PhaseRange] = field(default_factory=_empty_phases)
    is_valid: bool = True

    @property
    def length(self) -> int:
        return len(self.overall_intensities)

    @property
    def is_empty(self) -> bool:
        return self.length == 0

    @property
    def release_fraction(self) -> float:
        """Release point as a fraction of the timeline (0 for empty patterns)."""
        if self.length == 0:
            return 0.0
        return self.release_point_frame / self.length

    def check_shape(self) -> None:
        """Raise InvalidPatternError unless the arrays and indices are consistent."""
        lengths = {
            len(self.arm_swing_velocities),
            len(self.body_movement_velocities),
            len(self.overall_intensities),
        }
        if len(lengths) != 1:
            raise InvalidPatternError(
                f"Pattern arrays differ in length: arm={len(self.arm_swing_velocities)}, "
                f"body={len(self.body_movement_velocities)}, intensity={len(self.overall_intensities)}"
            )
        if self.length > 0 and not 0 <= self.release_point_frame < self.length:
            raise InvalidPatternError(
                f"releasePointFrame {self.release_point_frame} outside [0, {self.length})"
            )
        missing = [name for name in PHASE_NAMES if name not in self.action_phases]
        if missing:
            raise InvalidPatternError(f"Missing action phases: {missing}")

    def to_dict(self) -> Dict:
        """Serialize to the versioned benchmark document shape."""
        return {
            "version": PATTERN_VERSION,
            "armSwingVelocities": [float(v) for v in self.arm_swing_velocities],
            "bodyMovementVelocities": [float(v) for v in self.body_movement_velocities],
            "overallIntensities": [float(v) for v in self.overall_intensities],
            "releasePointFrame": int(self.release_point_frame),
            "actionPhases": {
                PHASE_DOCUMENT_KEYS[name]: self.action_phases[name].to_dict()
                for name in PHASE_NAMES
                if name in self.action_phases
            },
        }


def sanitize(values: List[float]) -> np.ndarray:
    """Replace NaN/Infinity with 0."""
    return np.nan_to_num(np.asarray(values, dtype=float), nan=0.0, posinf=0.0, neginf=0.0)


def detect_release_point(arm_swing_velocities: List[float]) -> int:
    """Index of the maximum arm swing velocity (first occurrence on ties)."""
    if len(arm_swing_velocities) == 0:
        return 0
    return int(np.argmax(sanitize(arm_swing_velocities)))


def segment_phases(
    intensities: List[float],
    release_index: int,
    smoothing_window: int = 3,
    min_radius: int = 3,
    intensity_ratio: float = 0.5,
    max_fraction: float = 0.5,
) -> Dict[str, PhaseRange]:
    """
    Split the intensity timeline into run-up, delivery and follow-through.

    Requires at least 3 samples; shorter timelines get degenerate (0, 0)
    ranges, which the similarity engine treats as neutral.
    """
    n = len(intensities)
    if n < 3:
        return _empty_phases()

    release = min(max(release_index, 0), n - 1)
    values = sanitize(intensities)
    if smoothing_window > 1:
        smoothed = uniform_filter1d(values, size=smoothing_window, mode="nearest")
    else:
        smoothed = values

    threshold = float(smoothed.max()) * intensity_ratio
    max_radius = max(min_radius, int(n * max_fraction / 2))

    start = release
    while start - 1 >= 0 and release - (start - 1) <= max_radius and smoothed[start - 1] >= threshold:
        start -= 1
    end = release
    while end + 1 < n and (end + 1) - release <= max_radius and smoothed[end + 1] >= threshold:
        end += 1

    start = min(start, release - min_radius)
    end = max(end, release + min_radius)

    # Keep at least one frame of run-up and follow-through
    start = min(max(start, 1), n - 2)
    end = max(min(end, n - 2), start)

    return {
        RUN_UP: PhaseRange(0, start - 1),
        DELIVERY: PhaseRange(start, end),
        FOLLOW_THROUGH: PhaseRange(end + 1, n - 1),
    }


class PatternBuilder:
    """
    Accumulates per-frame velocities for one clip and finalizes them
    into a MotionPattern.

    Usage:
        builder = PatternBuilder()
        for sample in samples:
            builder.add_sample(sample.arm_swing, sample.body_movement)
        pattern = builder.finalize()
        if not pattern.is_valid:
            ...  # too few samples, reject
    """

    def __init__(
        self,
        min_samples: int = 10,
        smoothing_window: int = 3,
        delivery_min_radius: int = 3,
        delivery_intensity_ratio: float = 0.5,
        delivery_max_fraction: float = 0.5,
    ):
        self.min_samples = min_samples
        self.smoothing_window = smoothing_window
        self.delivery_min_radius = delivery_min_radius
        self.delivery_intensity_ratio = delivery_intensity_ratio
        self.delivery_max_fraction = delivery_max_fraction

        self._arm: List[float] = []
        self._body: List[float] = []
        self._intensity: List[float] = []
        self._pattern: Optional[MotionPattern] = None

    @classmethod
    def from_settings(cls, settings) -> "PatternBuilder":
        return cls(
            min_samples=settings.min_pattern_samples,
            smoothing_window=settings.phase_smoothing_window,
            delivery_min_radius=settings.delivery_min_radius,
            delivery_intensity_ratio=settings.delivery_intensity_ratio,
            delivery_max_fraction=settings.delivery_max_fraction,
        )

    @property
    def sample_count(self) -> int:
        return len(self._intensity)

    @property
    def is_finalized(self) -> bool:
        return self._pattern is not None

    def add_sample(self, arm_velocity: float, body_velocity: float) -> float:
        """Append one velocity pair and return its overall intensity."""
        if self._pattern is not None:
            raise RuntimeError("Cannot add samples to a finalized pattern")

        if not math.isfinite(arm_velocity):
            logger.warning(f"Non-finite arm swing sample ({arm_velocity}), using 0")
            arm_velocity = 0.0
        if not math.isfinite(body_velocity):
            logger.warning(f"Non-finite body movement sample ({body_velocity}), using 0")
            body_velocity = 0.0

        intensity = arm_velocity + body_velocity
        self._arm.append(float(arm_velocity))
        self._body.append(float(body_velocity))
        self._intensity.append(float(intensity))
        return intensity

    def finalize(self) -> MotionPattern:
        """
        Detect the release point and segment phases over the complete clip.

        Patterns with fewer than `min_samples` samples are returned with
        is_valid=False and no segmentation.
        """
        if self._pattern is not None:
            return self._pattern

        pattern = MotionPattern(
            arm_swing_velocities=list(self._arm),
            body_movement_velocities=list(self._body),
            overall_intensities=list(self._intensity),
        )

        if self.sample_count < self.min_samples:
            logger.warning(
                f"Pattern has {self.sample_count} samples (minimum {self.min_samples}), marking invalid"
            )
            pattern.is_valid = False
            self._pattern = pattern
            return pattern

        pattern.release_point_frame = detect_release_point(pattern.arm_swing_velocities)
        pattern.action_phases = segment_phases(
            pattern.overall_intensities,
            pattern.release_point_frame,
            smoothing_window=self.smoothing_window,
            min_radius=self.delivery_min_radius,
            intensity_ratio=self.delivery_intensity_ratio,
            max_fraction=self.delivery_max_fraction,
        )

        phases = pattern.action_phases
        logger.info(
            f"Pattern finalized: {pattern.length} samples, release at {pattern.release_point_frame}, "
            f"runUp={phases[RUN_UP].to_dict()}, delivery={phases[DELIVERY].to_dict()}, "
            f"followThrough={phases[FOLLOW_THROUGH].to_dict()}"
        )

        self._pattern = pattern
        return pattern
