"""
MoveNet pose estimation for bowling action analysis.

MoveNet (single-pose, TensorFlow Hub) returns 17 COCO keypoints as
normalized (y, x, confidence) triples. Lightning is the default: the
bowler fills a good part of a 320x240 frame and speed matters more than
sub-pixel accuracy.
"""

import asyncio
import logging
from typing import List

import cv2
import numpy as np
import tensorflow as tf
import tensorflow_hub as hub

from bowlmatch.cv.pose import Pose
from bowlmatch.cv.pose_provider import PoseProvider

logger = logging.getLogger(__name__)


class MoveNetPoseProvider(PoseProvider):
    """
    MoveNet single-pose estimator.

    Model loading and inference run in a worker thread so the event loop
    driving the frame sampler is never blocked.
    """

    name = "movenet"

    LIGHTNING_INPUT_SIZE = 192
    THUNDER_INPUT_SIZE = 256

    def __init__(self, model_url: str = "https://tfhub.dev/google/movenet/singlepose/lightning/4"):
        self.model_url = model_url
        self.input_size = self.THUNDER_INPUT_SIZE if "thunder" in model_url else self.LIGHTNING_INPUT_SIZE
        self.movenet = None

    @classmethod
    def from_settings(cls, settings) -> "MoveNetPoseProvider":
        return cls(model_url=settings.movenet_model_url)

    def _load(self):
        logger.info(f"Loading MoveNet model from {self.model_url}...")
        model = hub.load(self.model_url)
        logger.info("MoveNet loaded successfully")
        return model.signatures["serving_default"]

    async def initialize(self) -> None:
        if self.movenet is None:
            self.movenet = await asyncio.to_thread(self._load)

    def _preprocess(self, frame: np.ndarray) -> tf.Tensor:
        """BGR frame -> int32 batch of one RGB image at the model input size."""
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        resized = cv2.resize(rgb, (self.input_size, self.input_size))
        input_image = tf.cast(resized, dtype=tf.int32)
        return tf.expand_dims(input_image, axis=0)

    def _infer(self, frame: np.ndarray) -> np.ndarray:
        outputs = self.movenet(self._preprocess(frame))
        return outputs["output_0"].numpy()[0, 0]  # Shape: (17, 3)

    async def detect(self, image: np.ndarray) -> List[Pose]:
        if self.movenet is None:
            await self.initialize()
        keypoints_with_scores = await asyncio.to_thread(self._infer, image)
        return [Pose.from_movenet(keypoints_with_scores)]

    def close(self) -> None:
        self.movenet = None
