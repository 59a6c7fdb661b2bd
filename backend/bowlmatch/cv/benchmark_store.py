"""
Benchmark pattern loading and process-wide caching.

The benchmark is a versioned JSON document with the MotionPattern shape:

    {
      "version": 1,
      "armSwingVelocities": [...],
      "bodyMovementVelocities": [...],
      "overallIntensities": [...],
      "releasePointFrame": 12,
      "actionPhases": {"runUp": {"start": 0, "end": 8}, ...}
    }

The document is validated with pydantic before use. Load failures are
surfaced as BenchmarkUnavailableError and are not cached, so the next
request (or an explicit reload) tries again.
"""

import json
import logging
import threading
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from bowlmatch.config import get_settings
from bowlmatch.cv.errors import BenchmarkUnavailableError, InvalidPatternError
from bowlmatch.cv.pattern_builder import (
    DELIVERY,
    FOLLOW_THROUGH,
    PATTERN_VERSION,
    RUN_UP,
    MotionPattern,
    PhaseRange,
)

logger = logging.getLogger(__name__)


DEFAULT_BENCHMARK_PATH = Path(__file__).resolve().parent.parent / "data" / "benchmark_pattern.json"


class PhaseRangeDocument(BaseModel):
    start: int = Field(ge=0)
    end: int = Field(ge=0)


class ActionPhasesDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_up: PhaseRangeDocument = Field(alias="runUp")
    delivery: PhaseRangeDocument
    follow_through: PhaseRangeDocument = Field(alias="followThrough")


class MotionPatternDocument(BaseModel):
    """Serialized MotionPattern. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = PATTERN_VERSION
    arm_swing_velocities: List[float] = Field(alias="armSwingVelocities")
    body_movement_velocities: List[float] = Field(alias="bodyMovementVelocities")
    overall_intensities: List[float] = Field(alias="overallIntensities")
    release_point_frame: int = Field(alias="releasePointFrame", ge=0)
    action_phases: ActionPhasesDocument = Field(alias="actionPhases")

    @model_validator(mode="after")
    def check_consistency(self):
        n = len(self.overall_intensities)
        if len(self.arm_swing_velocities) != n or len(self.body_movement_velocities) != n:
            raise ValueError(
                f"array lengths differ: arm={len(self.arm_swing_velocities)}, "
                f"body={len(self.body_movement_velocities)}, intensity={n}"
            )
        if n > 0 and self.release_point_frame >= n:
            raise ValueError(f"releasePointFrame {self.release_point_frame} outside [0, {n})")
        if self.version > PATTERN_VERSION:
            raise ValueError(f"unsupported pattern version {self.version}")
        if n > 0:
            self._check_phases(n)
        return self

    def _check_phases(self, n: int) -> None:
        phases = self.action_phases
        for key, phase in (("runUp", phases.run_up), ("delivery", phases.delivery),
                           ("followThrough", phases.follow_through)):
            if phase.start > phase.end or phase.end >= n:
                raise ValueError(f"{key} range [{phase.start}, {phase.end}] invalid for {n} samples")
        if phases.run_up.end > phases.delivery.start or phases.delivery.end > phases.follow_through.start:
            raise ValueError("action phases overlap or are out of order")

    def to_pattern(self, min_samples: int = 0) -> MotionPattern:
        phases = self.action_phases
        return MotionPattern(
            arm_swing_velocities=list(self.arm_swing_velocities),
            body_movement_velocities=list(self.body_movement_velocities),
            overall_intensities=list(self.overall_intensities),
            release_point_frame=self.release_point_frame,
            action_phases={
                RUN_UP: PhaseRange(phases.run_up.start, phases.run_up.end),
                DELIVERY: PhaseRange(phases.delivery.start, phases.delivery.end),
                FOLLOW_THROUGH: PhaseRange(phases.follow_through.start, phases.follow_through.end),
            },
            is_valid=len(self.overall_intensities) >= min_samples,
        )


def parse_pattern(data: Dict, min_samples: int = 0) -> MotionPattern:
    """
    Validate a pattern document and build a MotionPattern.

    Raises:
        InvalidPatternError: document shape is wrong
    """
    try:
        document = MotionPatternDocument.model_validate(data)
    except ValidationError as e:
        raise InvalidPatternError(f"Invalid motion pattern document: {e}") from e
    return document.to_pattern(min_samples=min_samples)


def load_benchmark_pattern(path: Union[str, Path], min_samples: int = 10) -> MotionPattern:
    """
    Load and validate the benchmark pattern document at `path`.

    Raises:
        BenchmarkUnavailableError: file missing, unreadable, malformed or too short
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise BenchmarkUnavailableError(f"Could not read benchmark pattern {path}: {e}") from e

    try:
        pattern = parse_pattern(data, min_samples=min_samples)
    except InvalidPatternError as e:
        raise BenchmarkUnavailableError(str(e)) from e

    if not pattern.is_valid:
        raise BenchmarkUnavailableError(
            f"Benchmark pattern has {pattern.length} samples (minimum {min_samples})"
        )

    logger.info(
        f"Loaded benchmark pattern from {path}: {pattern.length} samples, "
        f"release at {pattern.release_point_frame}"
    )
    return pattern


class BenchmarkStore:
    """
    Lazily loaded, read-only benchmark pattern shared across sessions.

    The first successful load is cached for the lifetime of the store;
    reload() replaces it.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, min_samples: int = 10):
        self.path = Path(path) if path else DEFAULT_BENCHMARK_PATH
        self.min_samples = min_samples
        self._pattern: Optional[MotionPattern] = None
        self._lock = threading.Lock()
        self.last_error: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self._pattern is not None

    def get(self) -> MotionPattern:
        """Return the cached benchmark, loading it on first use."""
        pattern = self._pattern
        if pattern is not None:
            return pattern
        with self._lock:
            if self._pattern is None:
                self._pattern = self._load()
            return self._pattern

    def reload(self) -> MotionPattern:
        """Re-read the benchmark document. The old pattern is kept if loading fails."""
        with self._lock:
            self._pattern = self._load()
            return self._pattern

    def _load(self) -> MotionPattern:
        try:
            pattern = load_benchmark_pattern(self.path, min_samples=self.min_samples)
        except BenchmarkUnavailableError as e:
            self.last_error = e.detail
            logger.error(f"Benchmark unavailable: {e.detail}")
            raise
        self.last_error = None
        return pattern


@lru_cache
def get_benchmark_store() -> BenchmarkStore:
    """Process-wide benchmark store configured from settings."""
    settings = get_settings()
    return BenchmarkStore(settings.benchmark_pattern_path, min_samples=settings.min_pattern_samples)
