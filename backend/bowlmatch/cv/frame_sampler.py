"""
Fixed-rate frame sampling from a video source.

The sampler seeks the source to evenly spaced timestamps (default 12 fps)
and yields a downscaled still at each one. Each seek+grab is bounded by a
timeout; a frame that times out or fails to decode is skipped with a
warning. Only a run of consecutive failures longer than
`max_consecutive_failures` aborts sampling with SeekTimeoutError.

The frame sequence is finite, ordered and can be iterated once. A
CancellationToken stops it between frames.
"""

import asyncio
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple

import cv2
import numpy as np

from bowlmatch.cv.errors import SeekTimeoutError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe stop flag shared between a session and its sampler."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class SampledFrame:
    index: int
    timestamp: float  # Seconds from the start of the clip
    image: np.ndarray  # BGR, already resized


class VideoSource(ABC):
    """A seekable video. Only the sampler moves its playback position."""

    @property
    @abstractmethod
    def duration(self) -> float:
        """Clip length in seconds."""

    @abstractmethod
    def grab_at(self, timestamp: float) -> Optional[np.ndarray]:
        """Seek to `timestamp` and return the BGR frame there, or None if unreadable. Blocking."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OpenCVVideoSource(VideoSource):
    """VideoSource backed by cv2.VideoCapture."""

    def __init__(self, path: str):
        self.path = path
        self._cap = cv2.VideoCapture(path)
        if not self._cap.isOpened():
            raise SeekTimeoutError(f"Failed to open video: {path}")

        fps = self._cap.get(cv2.CAP_PROP_FPS) or 0.0
        frame_count = self._cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        self.fps = fps
        self._duration = frame_count / fps if fps > 0 else 0.0
        self._lock = threading.Lock()

        logger.info(f"Opened video {path}: {fps:.1f} fps, {frame_count:.0f} frames, {self._duration:.2f}s")

    @property
    def duration(self) -> float:
        return self._duration

    def grab_at(self, timestamp: float) -> Optional[np.ndarray]:
        with self._lock:
            if self._cap is None:
                return None
            self._cap.set(cv2.CAP_PROP_POS_MSEC, timestamp * 1000.0)
            ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    def close(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None


class FrameSampler:
    """
    Produces SampledFrames from a VideoSource at a fixed rate.

    Usage:
        sampler = FrameSampler(source, target_fps=12)
        async for frame in sampler.frames():
            ...
    """

    def __init__(
        self,
        source: VideoSource,
        target_fps: float = 12.0,
        frame_size: Tuple[int, int] = (320, 240),
        seek_timeout: float = 1.0,
        max_consecutive_failures: int = 5,
        max_duration: Optional[float] = 15.0,
        cancel_token: Optional[CancellationToken] = None,
    ):
        if target_fps <= 0:
            raise ValueError(f"target_fps must be positive, got {target_fps}")
        self.source = source
        self.target_fps = target_fps
        self.frame_size = frame_size
        self.seek_timeout = seek_timeout
        self.max_consecutive_failures = max_consecutive_failures
        self.max_duration = max_duration
        self.cancel_token = cancel_token or CancellationToken()

        self.skipped_frames = 0
        self._started = False

    @property
    def sample_duration(self) -> float:
        duration = max(0.0, self.source.duration)
        if self.max_duration is not None:
            duration = min(duration, self.max_duration)
        return duration

    @property
    def estimated_total_frames(self) -> int:
        # Tolerate float noise such as 40 / 12 * 12 = 40.00000000000001
        return int(math.ceil(self.sample_duration * self.target_fps - 1e-9))

    def timestamps(self):
        interval = 1.0 / self.target_fps
        for i in range(self.estimated_total_frames):
            yield i * interval

    async def _grab(self, timestamp: float) -> Optional[np.ndarray]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.source.grab_at, timestamp),
                timeout=self.seek_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Seek to {timestamp:.3f}s timed out after {self.seek_timeout}s")
            return None

    async def frames(self) -> AsyncIterator[SampledFrame]:
        """Yield frames in timestamp order. Can only be iterated once."""
        if self._started:
            raise RuntimeError("FrameSampler sequence cannot be restarted")
        self._started = True

        logger.info(
            f"Sampling {self.sample_duration:.2f}s at {self.target_fps} fps "
            f"(~{self.estimated_total_frames} frames)"
        )

        consecutive_failures = 0
        index = 0
        for timestamp in self.timestamps():
            if self.cancel_token.is_cancelled:
                logger.info(f"Sampling cancelled at {timestamp:.3f}s")
                return

            image = await self._grab(timestamp)

            if self.cancel_token.is_cancelled:
                logger.info(f"Sampling cancelled at {timestamp:.3f}s")
                return

            if image is None:
                self.skipped_frames += 1
                consecutive_failures += 1
                logger.warning(f"Skipped frame at {timestamp:.3f}s ({consecutive_failures} in a row)")
                if consecutive_failures > self.max_consecutive_failures:
                    raise SeekTimeoutError(
                        f"{consecutive_failures} consecutive frames could not be captured "
                        f"(last at {timestamp:.3f}s)"
                    )
                continue

            consecutive_failures = 0
            if (image.shape[1], image.shape[0]) != tuple(self.frame_size):
                image = cv2.resize(image, tuple(self.frame_size), interpolation=cv2.INTER_LINEAR)

            yield SampledFrame(index=index, timestamp=timestamp, image=image)
            index += 1

        logger.info(f"Sampling finished: {index} frames, {self.skipped_frames} skipped")
