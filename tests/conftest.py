import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pytest

from bowlmatch.config import Settings
from bowlmatch.cv.frame_sampler import VideoSource
from bowlmatch.cv.pattern_builder import DELIVERY, FOLLOW_THROUGH, RUN_UP, MotionPattern, PhaseRange
from bowlmatch.cv.pose import Keypoint, Pose
from bowlmatch.cv.pose_provider import PoseProvider


# Standing bowler in normalized image coordinates; hips sit under the shoulders, torso length 0.3
BASE_LAYOUT: Dict[str, Tuple[float, float]] = {
    "nose": (0.50, 0.15),
    "left_eye": (0.48, 0.13),
    "right_eye": (0.52, 0.13),
    "left_ear": (0.46, 0.14),
    "right_ear": (0.54, 0.14),
    "left_shoulder": (0.42, 0.30),
    "right_shoulder": (0.58, 0.30),
    "left_elbow": (0.40, 0.42),
    "right_elbow": (0.60, 0.42),
    "left_wrist": (0.39, 0.52),
    "right_wrist": (0.61, 0.52),
    "left_hip": (0.42, 0.60),
    "right_hip": (0.58, 0.60),
    "left_knee": (0.44, 0.75),
    "right_knee": (0.56, 0.75),
    "left_ankle": (0.44, 0.90),
    "right_ankle": (0.56, 0.90),
}
TORSO_LENGTH = 0.3
ARM_POINTS = ("left_elbow", "right_elbow", "left_wrist", "right_wrist")
SAMPLING_FPS = 12.0


def make_pose(
    offset: Tuple[float, float] = (0.0, 0.0),
    arm_offset: Tuple[float, float] = (0.0, 0.0),
    wrist_offset: Tuple[float, float] = (0.0, 0.0),
    scale: float = 1.0,
    confidence: float = 0.9,
    missing: Iterable[str] = (),
) -> Pose:
    """Pose built from BASE_LAYOUT with whole-body, arm and wrist displacements."""
    missing = set(missing)
    keypoints = []
    for name, (x, y) in BASE_LAYOUT.items():
        if name in missing:
            continue
        x += offset[0]
        y += offset[1]
        if name in ARM_POINTS:
            x += arm_offset[0]
            y += arm_offset[1]
        if name.endswith("wrist"):
            x += wrist_offset[0]
            y += wrist_offset[1]
        keypoints.append(Keypoint(name=name, x=x * scale, y=y * scale, confidence=confidence))
    return Pose.from_keypoints(keypoints)


def bowling_speed_profile(n: int, peak: int, base: float = 0.3, height: float = 4.0, width: float = 3.0) -> List[float]:
    """Arm speed (torso lengths / s) rising to a sharp peak at `peak`."""
    return [base + height * math.exp(-((i - peak) / width) ** 2) for i in range(n)]


def bowling_poses(n: int = 36, peak: int = 18, fps: float = SAMPLING_FPS) -> List[Pose]:
    """Poses whose arm moves with a bowling-like speed profile and whose body drifts forward."""
    dt = 1.0 / fps
    speeds = bowling_speed_profile(n, peak)
    poses = []
    arm_x = 0.0
    body_x = 0.0
    for i in range(n):
        if i > 0:
            arm_x += speeds[i] * dt * TORSO_LENGTH
            body_x += (0.4 + 0.5 * speeds[i] / 4.3) * dt * TORSO_LENGTH
        poses.append(make_pose(offset=(body_x, 0.0), arm_offset=(arm_x, 0.0)))
    return poses


def make_pattern(
    arm: Sequence[float],
    body: Optional[Sequence[float]] = None,
    intensities: Optional[Sequence[float]] = None,
    release: Optional[int] = None,
    phases: Optional[Dict[str, Tuple[int, int]]] = None,
    is_valid: bool = True,
) -> MotionPattern:
    arm = list(arm)
    body = list(body) if body is not None else [0.0] * len(arm)
    if intensities is None:
        intensities = [a + b for a, b in zip(arm, body)]
    if release is None:
        release = int(np.argmax(arm)) if arm else 0
    n = len(arm)
    if phases is None:
        third = max(1, n // 3)
        phases = {RUN_UP: (0, third - 1), DELIVERY: (third, 2 * third - 1), FOLLOW_THROUGH: (2 * third, n - 1)}
    return MotionPattern(
        arm_swing_velocities=arm,
        body_movement_velocities=body,
        overall_intensities=list(intensities),
        release_point_frame=release,
        action_phases={name: PhaseRange(*rng) for name, rng in phases.items()},
        is_valid=is_valid,
    )


class FakeVideoSource(VideoSource):
    """In-memory video: blank frames, optional unreadable timestamps and slow seeks."""

    def __init__(
        self,
        duration: float,
        frame_shape: Tuple[int, int, int] = (240, 320, 3),
        fail_indices: Iterable[int] = (),
        slow_indices: Iterable[int] = (),
        slow_seconds: float = 0.3,
        fps: float = SAMPLING_FPS,
    ):
        self._duration = duration
        self.frame_shape = frame_shape
        self.fail_indices = set(fail_indices)
        self.slow_indices = set(slow_indices)
        self.slow_seconds = slow_seconds
        self.fps = fps
        self.grabbed: List[float] = []
        self.closed = False

    @property
    def duration(self) -> float:
        return self._duration

    def grab_at(self, timestamp: float):
        import time

        index = int(round(timestamp * self.fps))
        self.grabbed.append(timestamp)
        if index in self.slow_indices:
            time.sleep(self.slow_seconds)
        if index in self.fail_indices:
            return None
        return np.zeros(self.frame_shape, dtype=np.uint8)

    def close(self) -> None:
        self.closed = True


class FakePoseProvider(PoseProvider):
    """Returns scripted poses in order, one entry per detect() call."""

    name = "fake"

    def __init__(self, poses: Sequence[Optional[Pose]] = (), fail_init: bool = False, errors: Iterable[int] = ()):
        self.poses = list(poses)
        self.fail_init = fail_init
        self.errors = set(errors)
        self.calls = 0
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        if self.fail_init:
            raise RuntimeError(f"{self.name} model missing")
        self.initialized = True

    async def detect(self, image) -> List[Pose]:
        index = self.calls
        self.calls += 1
        if index in self.errors:
            raise RuntimeError("inference failed")
        if index >= len(self.poses) or self.poses[index] is None:
            return []
        return [self.poses[index]]

    def close(self) -> None:
        self.closed = True


class StaticBenchmarkStore:
    """Benchmark store stand-in holding a fixed pattern (or an error)."""

    def __init__(self, pattern: Optional[MotionPattern] = None, error: Optional[Exception] = None):
        self.pattern = pattern
        self.error = error
        self.path = "memory"

    @property
    def is_loaded(self) -> bool:
        return self.pattern is not None

    def get(self) -> MotionPattern:
        if self.error is not None:
            raise self.error
        return self.pattern

    def reload(self) -> MotionPattern:
        return self.get()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        database_url_sync="sqlite:///:memory:",
        seek_timeout_seconds=0.5,
    )


@pytest.fixture
def benchmark_pattern() -> MotionPattern:
    """Synthetic benchmark used by the end-to-end scenarios."""
    arm = [0, 1, 2, 8, 3, 1, 0]
    return make_pattern(
        arm=arm,
        body=arm,
        intensities=[2 * v for v in arm],
        release=3,
        phases={RUN_UP: (0, 1), DELIVERY: (2, 4), FOLLOW_THROUGH: (5, 6)},
    )
