"""
Frame intensity tracking.

Used for live progress in every mode and as the whole score in pose mode,
where no benchmark is involved: the final intensity blends the peak and
the mean of the raw per-frame intensities.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


PEAK_WEIGHT = 0.6
MEAN_WEIGHT = 0.4


class ExponentialMovingAverage:
    """EMA with a fixed smoothing factor; the first value seeds the average."""

    def __init__(self, alpha: float = 0.3):
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.value: Optional[float] = None

    def update(self, sample: float) -> float:
        if self.value is None:
            self.value = sample
        else:
            self.value = self.alpha * sample + (1 - self.alpha) * self.value
        return self.value

    def reset(self) -> None:
        self.value = None


@dataclass
class PoseIntensityTracker:
    """Raw and smoothed intensity timeline of one clip."""
    alpha: float = 0.3
    ceiling: float = 6.0  # Raw intensity mapped to 100
    raw: List[float] = field(default_factory=list)
    timeline: List[Tuple[float, float]] = field(default_factory=list)  # (timestamp, smoothed)

    def __post_init__(self):
        self._ema = ExponentialMovingAverage(self.alpha)

    def add(self, timestamp: float, intensity: float) -> float:
        """Record one raw intensity and return the smoothed value."""
        if not math.isfinite(intensity):
            logger.warning(f"Non-finite frame intensity ({intensity}) at {timestamp:.3f}s, using 0")
            intensity = 0.0
        self.raw.append(intensity)
        smoothed = self._ema.update(intensity)
        self.timeline.append((timestamp, smoothed))
        return smoothed

    @property
    def smoothed(self) -> Optional[float]:
        return self._ema.value

    def final_intensity(self) -> float:
        """0.6 x peak + 0.4 x mean of the raw intensities (0 when empty)."""
        if not self.raw:
            return 0.0
        peak = max(self.raw)
        mean = sum(self.raw) / len(self.raw)
        return peak * PEAK_WEIGHT + mean * MEAN_WEIGHT

    def to_percent(self, value: float) -> float:
        """Scale a raw intensity onto 0-100 against the ceiling."""
        if self.ceiling <= 0:
            return 0.0
        return max(0.0, min(100.0, value / self.ceiling * 100))

    def reset(self) -> None:
        self.raw.clear()
        self.timeline.clear()
        self._ema.reset()
