"""
Pose estimation using the MediaPipe Tasks PoseLandmarker.

MediaPipe returns 33 landmarks; the 17 that match the MoveNet/COCO layout
are mapped onto the shared keypoint names so both providers feed the same
motion features. Landmark visibility is used as the keypoint confidence.
"""

import asyncio
import logging
import os
from enum import IntEnum
from typing import Dict, List, Optional

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks import python
from mediapipe.tasks.python import vision

from bowlmatch.cv.pose import Keypoint, Pose
from bowlmatch.cv.pose_provider import PoseProvider

logger = logging.getLogger(__name__)


class MediaPipeLandmark(IntEnum):
    """MediaPipe Pose landmark indices used by the pipeline."""
    NOSE = 0
    LEFT_EYE = 2
    RIGHT_EYE = 5
    LEFT_EAR = 7
    RIGHT_EAR = 8
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


# Shared keypoint name -> MediaPipe landmark index
LANDMARK_NAMES: Dict[str, int] = {lm.name.lower(): lm.value for lm in MediaPipeLandmark}

MODEL_NAMES = ("pose_landmarker_lite.task", "pose_landmarker_full.task", "pose_landmarker_heavy.task")


def get_model_path(explicit_path: Optional[str] = None) -> str:
    """
    Locate a pose landmarker .task model.

    Args:
        explicit_path: Configured model path, checked first
    """
    if explicit_path:
        if os.path.exists(explicit_path):
            return os.path.abspath(explicit_path)
        raise FileNotFoundError(f"Pose landmarker model not found at {explicit_path}")

    base_dirs = [
        os.path.join(os.path.dirname(__file__), "..", "..", "models"),
        os.path.join(os.getcwd(), "models"),
    ]
    for base_dir in base_dirs:
        for name in MODEL_NAMES:
            path = os.path.abspath(os.path.join(base_dir, name))
            if os.path.exists(path):
                return path

    raise FileNotFoundError(
        "Pose landmarker model not found. "
        "Download from: https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    )


def poses_from_result(result) -> List[Pose]:
    """Convert a PoseLandmarkerResult into Poses keyed by the shared names."""
    poses: List[Pose] = []
    for pose_landmarks in result.pose_landmarks or []:
        keypoints = []
        for name, index in LANDMARK_NAMES.items():
            if index >= len(pose_landmarks):
                continue
            landmark = pose_landmarks[index]
            visibility = getattr(landmark, "visibility", None)
            keypoints.append(Keypoint(
                name=name,
                x=float(landmark.x),
                y=float(landmark.y),
                confidence=float(visibility) if visibility is not None else 0.5,
            ))
        if keypoints:
            poses.append(Pose.from_keypoints(keypoints))
    return poses


class MediaPipePoseProvider(PoseProvider):
    """PoseLandmarker in IMAGE mode; each frame is detected independently."""

    name = "mediapipe"

    def __init__(
        self,
        model_path: Optional[str] = None,
        min_detection_confidence: float = 0.5,
    ):
        self.model_path = model_path
        self.min_detection_confidence = min_detection_confidence
        self.landmarker = None

    @classmethod
    def from_settings(cls, settings) -> "MediaPipePoseProvider":
        return cls(model_path=settings.mediapipe_model_path)

    def _create(self):
        model_path = get_model_path(self.model_path)
        logger.info(f"Loading MediaPipe pose landmarker from {model_path}")
        base_options = python.BaseOptions(model_asset_path=model_path)
        options = vision.PoseLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            min_pose_detection_confidence=self.min_detection_confidence,
            num_poses=1,  # Single bowler per clip
        )
        return vision.PoseLandmarker.create_from_options(options)

    async def initialize(self) -> None:
        if self.landmarker is None:
            self.landmarker = await asyncio.to_thread(self._create)

    def _detect_sync(self, frame: np.ndarray) -> List[Pose]:
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)
        return poses_from_result(self.landmarker.detect(mp_image))

    async def detect(self, image: np.ndarray) -> List[Pose]:
        if self.landmarker is None:
            await self.initialize()
        return await asyncio.to_thread(self._detect_sync, image)

    def close(self) -> None:
        if self.landmarker is not None:
            self.landmarker.close()
            self.landmarker = None
