"""
Motion features extracted from consecutive poses.

Two velocities are computed for every valid pair of poses:

1. Arm swing velocity: weighted mean displacement of the shoulders, elbows
   and wrists. Wrists move fastest during a bowling action and are weighted
   3x, elbows 2x, shoulders 1x.
2. Body movement velocity: displacement of the hip/shoulder centroid.

Both are divided by the elapsed time and normalized by the shoulder-to-hip
distance so the values are in "torso lengths per second" and do not depend
on the capture resolution or how far the bowler is from the camera.

Missing or low-confidence keypoints never raise: the affected velocity is 0.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from bowlmatch.cv.pose import Pose

logger = logging.getLogger(__name__)


DEFAULT_CONFIDENCE_THRESHOLD = 0.3
MIN_BODY_SCALE = 1e-3

ARM_KEYPOINT_WEIGHTS: Dict[str, float] = {
    "left_wrist": 3.0,
    "right_wrist": 3.0,
    "left_elbow": 2.0,
    "right_elbow": 2.0,
    "left_shoulder": 1.0,
    "right_shoulder": 1.0,
}

BODY_KEYPOINTS: Tuple[str, ...] = ("left_hip", "right_hip", "left_shoulder", "right_shoulder")

# (shoulder, hip) pairs used as the body-scale reference
TORSO_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
)


@dataclass
class MotionSample:
    """Velocities for one consecutive pose pair."""
    arm_swing: float
    body_movement: float

    @property
    def intensity(self) -> float:
        return self.arm_swing + self.body_movement


def estimate_body_scale(pose: Pose, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD) -> Optional[float]:
    """Mean shoulder-to-hip distance, or None if no torso side is visible."""
    lengths: List[float] = []
    for shoulder_name, hip_name in TORSO_PAIRS:
        shoulder = pose.confident(shoulder_name, threshold)
        hip = pose.confident(hip_name, threshold)
        if shoulder and hip:
            lengths.append(shoulder.distance_to(hip))
    if not lengths:
        return None
    return float(np.mean(lengths))


def _pair_body_scale(prev_pose: Pose, curr_pose: Pose, threshold: float) -> Optional[float]:
    scales = [
        s for s in (estimate_body_scale(prev_pose, threshold), estimate_body_scale(curr_pose, threshold))
        if s is not None
    ]
    if not scales:
        return None
    scale = float(np.mean(scales))
    if not math.isfinite(scale) or scale < MIN_BODY_SCALE:
        return None
    return scale


def _finite_or_zero(value: float, label: str) -> float:
    if math.isfinite(value):
        return value
    logger.warning(f"Non-finite {label} velocity ({value}), using 0")
    return 0.0


def compute_arm_swing_velocity(
    prev_pose: Pose,
    curr_pose: Pose,
    dt: float,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> float:
    """
    Weighted arm keypoint speed between two poses, in torso lengths per second.

    Returns 0 when dt <= 0, when no arm keypoint is confident in both poses,
    or when the body scale cannot be estimated.
    """
    if dt <= 0:
        return 0.0

    scale = _pair_body_scale(prev_pose, curr_pose, confidence_threshold)
    if scale is None:
        return 0.0

    total_velocity = 0.0
    total_weight = 0.0
    for name, weight in ARM_KEYPOINT_WEIGHTS.items():
        prev_kp = prev_pose.confident(name, confidence_threshold)
        curr_kp = curr_pose.confident(name, confidence_threshold)
        if prev_kp is None or curr_kp is None:
            continue
        velocity = prev_kp.distance_to(curr_kp) / dt
        total_velocity += velocity * weight
        total_weight += weight

    if total_weight == 0:
        return 0.0

    return _finite_or_zero(total_velocity / total_weight / scale, "arm swing")


def compute_body_movement_velocity(
    prev_pose: Pose,
    curr_pose: Pose,
    dt: float,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> float:
    """
    Speed of the hip/shoulder centroid between two poses, in torso lengths per second.

    Only keypoints confident in both poses contribute to the centroids, so a
    keypoint dropping out does not look like movement.
    """
    if dt <= 0:
        return 0.0

    scale = _pair_body_scale(prev_pose, curr_pose, confidence_threshold)
    if scale is None:
        return 0.0

    prev_points = []
    curr_points = []
    for name in BODY_KEYPOINTS:
        prev_kp = prev_pose.confident(name, confidence_threshold)
        curr_kp = curr_pose.confident(name, confidence_threshold)
        if prev_kp is None or curr_kp is None:
            continue
        prev_points.append((prev_kp.x, prev_kp.y))
        curr_points.append((curr_kp.x, curr_kp.y))

    if not prev_points:
        return 0.0

    prev_centroid = np.mean(np.array(prev_points), axis=0)
    curr_centroid = np.mean(np.array(curr_points), axis=0)
    displacement = float(np.linalg.norm(curr_centroid - prev_centroid))

    return _finite_or_zero(displacement / dt / scale, "body movement")


def compute_motion_sample(
    prev_pose: Pose,
    curr_pose: Pose,
    dt: float,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> Optional[MotionSample]:
    """
    Both velocities for a pose pair.

    Returns None when dt <= 0: the pair is treated as a missing sample
    rather than a zero-motion one.
    """
    if dt <= 0 or not math.isfinite(dt):
        logger.debug(f"Skipping pose pair with non-positive dt={dt}")
        return None
    return MotionSample(
        arm_swing=compute_arm_swing_velocity(prev_pose, curr_pose, dt, confidence_threshold),
        body_movement=compute_body_movement_velocity(prev_pose, curr_pose, dt, confidence_threshold),
    )
