"""
Pose data types shared by the pose providers and the motion features.

Keypoint naming follows the 17-point COCO/MoveNet layout:
0: nose, 1: left_eye, 2: right_eye, 3: left_ear, 4: right_ear,
5: left_shoulder, 6: right_shoulder, 7: left_elbow, 8: right_elbow,
9: left_wrist, 10: right_wrist, 11: left_hip, 12: right_hip,
13: left_knee, 14: right_knee, 15: left_ankle, 16: right_ankle
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np


class MoveNetKeypoint(IntEnum):
    """MoveNet keypoint indices."""
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


KEYPOINT_NAMES: Tuple[str, ...] = tuple(kp.name.lower() for kp in MoveNetKeypoint)


@dataclass(frozen=True)
class Keypoint:
    """Single keypoint with position and confidence."""
    name: str
    x: float
    y: float
    confidence: float

    def is_confident(self, threshold: float) -> bool:
        return self.confidence >= threshold

    def distance_to(self, other: "Keypoint") -> float:
        """Euclidean distance to another keypoint."""
        return float(np.hypot(self.x - other.x, self.y - other.y))


@dataclass
class Pose:
    """
    Keypoints of one detected person in one frame.

    Keyed by joint name so providers with different landmark layouts
    (MoveNet, MediaPipe) produce interchangeable poses.
    """
    keypoints: Dict[str, Keypoint] = field(default_factory=dict)
    score: float = 0.0

    def get(self, name: str) -> Optional[Keypoint]:
        return self.keypoints.get(name)

    def confident(self, name: str, threshold: float) -> Optional[Keypoint]:
        """Return the named keypoint only if it meets the confidence threshold."""
        kp = self.keypoints.get(name)
        if kp is None or not kp.is_confident(threshold):
            return None
        return kp

    def __len__(self) -> int:
        return len(self.keypoints)

    @classmethod
    def from_keypoints(cls, keypoints: Iterable[Keypoint]) -> "Pose":
        kps = {kp.name: kp for kp in keypoints}
        score = float(np.mean([kp.confidence for kp in kps.values()])) if kps else 0.0
        return cls(keypoints=kps, score=score)

    @classmethod
    def from_movenet(cls, keypoints_with_scores: np.ndarray) -> "Pose":
        """
        Build a pose from MoveNet output.

        Args:
            keypoints_with_scores: Array of shape (17, 3) with (y, x, confidence)
        """
        keypoints: List[Keypoint] = []
        for idx, name in enumerate(KEYPOINT_NAMES):
            y, x, conf = keypoints_with_scores[idx]
            keypoints.append(Keypoint(name=name, x=float(x), y=float(y), confidence=float(conf)))
        return cls.from_keypoints(keypoints)

    def to_dict(self) -> Dict:
        """Serialize to dictionary for storage."""
        return {
            "score": self.score,
            "keypoints": [
                {"name": kp.name, "x": kp.x, "y": kp.y, "confidence": kp.confidence}
                for kp in self.keypoints.values()
            ],
        }


@dataclass
class FrameSample:
    """One sampled frame: its timestamp and the primary pose, if any."""
    timestamp: float
    pose: Optional[Pose] = None

    @property
    def has_pose(self) -> bool:
        return self.pose is not None and len(self.pose) > 0
