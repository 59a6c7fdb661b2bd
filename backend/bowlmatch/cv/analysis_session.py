"""
Analysis session: one bowling clip from video to result.

PIPELINE:
    VideoSource -> FrameSampler -> PoseProvider -> motion features
    -> PatternBuilder -> SimilarityEngine (vs benchmark) -> speed mapping

STATE MACHINE:
    IDLE -> SAMPLING -> AGGREGATING -> FINALIZING -> COMPLETE
    Any non-idle state -> ERRORED on a structural failure.
    reset() returns to IDLE from any state and discards in-progress data.

Frames are processed strictly one at a time: each velocity needs the
previous frame's pose, and pose detection is awaited before the next seek.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from bowlmatch.config import Settings, get_settings
from bowlmatch.cv.benchmark_store import BenchmarkStore
from bowlmatch.cv.errors import AnalysisError, InsufficientDataError, PoseProviderUnavailableError
from bowlmatch.cv.frame_sampler import CancellationToken, FrameSampler, OpenCVVideoSource, VideoSource
from bowlmatch.cv.intensity import PoseIntensityTracker
from bowlmatch.cv.motion_features import compute_motion_sample
from bowlmatch.cv.pattern_builder import MotionPattern, PatternBuilder
from bowlmatch.cv.pose import FrameSample, Pose
from bowlmatch.cv.pose_provider import PoseProvider
from bowlmatch.cv.similarity import SimilarityEngine
from bowlmatch.cv.speed_classifier import (
    SpeedClass,
    apply_similarity_reduction,
    calculate_accuracy_score,
    classify_speed,
    intensity_to_kmh,
    is_eligible,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    AGGREGATING = "aggregating"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERRORED = "errored"


class AnalysisMode(str, Enum):
    BENCHMARK = "benchmark"  # Compare against the benchmark pattern
    POSE = "pose"  # Score raw motion intensity, no benchmark


@dataclass
class ProgressEvent:
    percent: float  # 0-100
    frames_processed: int
    estimated_total: int
    timestamp: float = 0.0
    intensity: Optional[float] = None  # Smoothed, 0-100


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class AnalysisResult:
    """Final result record handed to persistence/presentation. Scores are 0-100."""
    final_intensity_similarity: float
    speed_class: SpeedClass
    confidence_percent: float
    kmh: float
    message: str = ""
    per_metric_breakdown: Dict[str, float] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    accuracy_score: Optional[float] = None
    is_eligible: bool = False
    mode: AnalysisMode = AnalysisMode.BENCHMARK
    frames_processed: int = 0
    skipped_frames: int = 0
    frame_intensities: List[Dict[str, float]] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "final_intensity_similarity": self.final_intensity_similarity,
            "speed_class": self.speed_class.value,
            "confidence_percent": self.confidence_percent,
            "kmh": self.kmh,
            "message": self.message,
            "per_metric_breakdown": dict(self.per_metric_breakdown),
            "recommendations": list(self.recommendations),
            "accuracy_score": self.accuracy_score,
            "is_eligible": self.is_eligible,
            "mode": self.mode.value,
            "frames_processed": self.frames_processed,
            "skipped_frames": self.skipped_frames,
            "frame_intensities": list(self.frame_intensities),
        }


class AnalysisSession:
    """
    Orchestrates the analysis of one clip.

    A session runs once. After COMPLETE or ERRORED it must be reset()
    before it can analyze another clip.
    """

    def __init__(
        self,
        pose_provider: PoseProvider,
        benchmark_store: Optional[BenchmarkStore] = None,
        mode: AnalysisMode = AnalysisMode.BENCHMARK,
        settings: Optional[Settings] = None,
        progress_callback: Optional[ProgressCallback] = None,
        engine: Optional[SimilarityEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.mode = AnalysisMode(mode)
        if self.mode == AnalysisMode.BENCHMARK and benchmark_store is None:
            raise ValueError("Benchmark mode needs a benchmark store")

        self.pose_provider = pose_provider
        self.benchmark_store = benchmark_store
        self.progress_callback = progress_callback
        self.engine = engine or SimilarityEngine.from_settings(self.settings)

        self.state = SessionState.IDLE
        self.error: Optional[AnalysisError] = None
        self.result: Optional[AnalysisResult] = None
        self.pattern: Optional[MotionPattern] = None
        self._init_run_state()

    def _init_run_state(self) -> None:
        self.builder = PatternBuilder.from_settings(self.settings)
        self.tracker = PoseIntensityTracker(
            alpha=self.settings.ema_alpha,
            ceiling=self.settings.pose_intensity_ceiling,
        )
        self.cancel_token = CancellationToken()
        self.frames_processed = 0
        self.skipped_frames = 0
        self._consecutive_pose_failures = 0

    # =========================================================
    # Lifecycle
    # =========================================================

    def _transition(self, state: SessionState) -> None:
        logger.info(f"Session {self.state.value} -> {state.value}")
        self.state = state

    def cancel(self) -> None:
        """Stop sampling promptly. The running analysis returns None."""
        self.cancel_token.cancel()

    def reset(self) -> None:
        """Discard everything and return to IDLE."""
        self.cancel_token.cancel()
        self.error = None
        self.result = None
        self.pattern = None
        self._init_run_state()
        self._transition(SessionState.IDLE)

    def _emit_progress(self, event: ProgressEvent) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(event)
        except Exception:
            logger.exception("Progress callback failed")

    # =========================================================
    # Sampling
    # =========================================================

    async def _detect(self, frame_image, token: CancellationToken) -> Optional[Pose]:
        """Primary pose of a frame; None if none was found or detection failed."""
        try:
            poses = await self.pose_provider.detect(frame_image)
        except AnalysisError:
            raise
        except Exception as e:
            if token.is_cancelled:
                return None
            self._consecutive_pose_failures += 1
            logger.warning(
                f"Pose detection failed ({self._consecutive_pose_failures} in a row): {e}"
            )
            if self._consecutive_pose_failures > self.settings.max_consecutive_pose_failures:
                raise PoseProviderUnavailableError(
                    f"Pose detection failed {self._consecutive_pose_failures} times in a row: {e}"
                ) from e
            return None

        self._consecutive_pose_failures = 0
        if not poses:
            return None
        return poses[0]

    async def capture_pattern(self, source: VideoSource) -> Optional[MotionPattern]:
        """
        Sample the clip and build its finalized motion pattern.

        Returns None if the session was cancelled while sampling.

        Raises:
            PoseProviderUnavailableError: provider failed to start or keeps failing
            SeekTimeoutError: too many consecutive frames could not be read
        """
        settings = self.settings
        token = self.cancel_token
        builder = self.builder
        tracker = self.tracker
        await self.pose_provider.initialize()

        sampler = FrameSampler(
            source,
            target_fps=settings.sampling_fps,
            frame_size=(settings.frame_width, settings.frame_height),
            seek_timeout=settings.seek_timeout_seconds,
            max_consecutive_failures=settings.max_consecutive_seek_failures,
            max_duration=settings.max_video_duration_seconds,
            cancel_token=token,
        )
        estimated_total = max(1, sampler.estimated_total_frames)
        previous: Optional[FrameSample] = None

        async for frame in sampler.frames():
            pose = await self._detect(frame.image, token)
            if token.is_cancelled:
                break

            self.frames_processed += 1
            current = FrameSample(timestamp=frame.timestamp, pose=pose)

            if not current.has_pose:
                # A missing pose breaks the chain; the next valid pose is the new reference
                previous = None
            else:
                if previous is not None:
                    sample = compute_motion_sample(
                        previous.pose,
                        current.pose,
                        current.timestamp - previous.timestamp,
                        settings.keypoint_confidence_threshold,
                    )
                    if sample is not None:
                        intensity = builder.add_sample(sample.arm_swing, sample.body_movement)
                        tracker.add(current.timestamp, intensity)
                previous = current

            smoothed = tracker.smoothed
            self._emit_progress(ProgressEvent(
                percent=min(99.0, self.frames_processed / estimated_total * 100),
                frames_processed=self.frames_processed,
                estimated_total=estimated_total,
                timestamp=frame.timestamp,
                intensity=tracker.to_percent(smoothed) if smoothed is not None else None,
            ))

        if token.is_cancelled:
            return None
        self.skipped_frames = sampler.skipped_frames

        logger.info(
            f"Sampling complete: {self.frames_processed} frames, "
            f"{builder.sample_count} motion samples, {self.skipped_frames} skipped"
        )

        self._transition(SessionState.AGGREGATING)
        pattern = builder.finalize()
        if not pattern.is_valid:
            raise InsufficientDataError(
                f"Only {pattern.length} motion samples collected "
                f"(minimum {builder.min_samples})"
            )
        return pattern

    # =========================================================
    # Scoring
    # =========================================================

    def _score(self, pattern: MotionPattern) -> AnalysisResult:
        settings = self.settings
        per_metric: Dict[str, float] = {}
        recommendations: List[str] = []
        accuracy: Optional[float] = None

        if self.mode == AnalysisMode.BENCHMARK:
            benchmark = self.benchmark_store.get()
            similarity = self.engine.compare(pattern, benchmark)
            score = similarity.overall_similarity * 100
            per_metric = {name: round(value * 100, 2) for name, value in similarity.per_metric.items()}
            recommendations = similarity.recommendations
        else:
            score = self.tracker.to_percent(self.tracker.final_intensity())

        score, per_metric = apply_similarity_reduction(
            score, per_metric, settings.similarity_reduction_percent
        )
        if per_metric:
            accuracy = calculate_accuracy_score(per_metric, per_metric)

        classification = classify_speed(score)
        score = round(score, 2)

        return AnalysisResult(
            final_intensity_similarity=score,
            speed_class=classification.speed_class,
            confidence_percent=classification.confidence_percent,
            kmh=intensity_to_kmh(score),
            message=classification.message,
            per_metric_breakdown=per_metric,
            recommendations=list(recommendations),
            accuracy_score=accuracy,
            is_eligible=is_eligible(score, settings.eligibility_threshold),
            mode=self.mode,
            frames_processed=self.frames_processed,
            skipped_frames=self.skipped_frames,
            frame_intensities=[
                {"timestamp": round(ts, 3), "intensity": round(self.tracker.to_percent(value), 2)}
                for ts, value in self.tracker.timeline
            ],
        )

    # =========================================================
    # Entry point
    # =========================================================

    async def run(self, source: VideoSource) -> Optional[AnalysisResult]:
        """
        Analyze one clip.

        Returns:
            AnalysisResult, or None if the session was cancelled

        Raises:
            AnalysisError subclasses after moving to ERRORED
            RuntimeError: the session is not IDLE
        """
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Session is {self.state.value}; reset() before running again")

        # reset() replaces the token; a superseded run leaves the session alone
        token = self.cancel_token
        try:
            self._transition(SessionState.SAMPLING)
            pattern = await self.capture_pattern(source)
            if pattern is None:
                if self.cancel_token is token:
                    logger.info("Session cancelled, discarding in-progress data")
                    self.reset()
                else:
                    logger.info("Superseded run stopped after reset")
                return None

            self._transition(SessionState.FINALIZING)
            result = self._score(pattern)
            self.pattern = pattern
        except AnalysisError as e:
            logger.error(f"Analysis failed [{e.code}]: {e.detail}")
            if self.cancel_token is token:
                self.error = e
                self._transition(SessionState.ERRORED)
            raise
        except Exception:
            logger.exception("Unexpected analysis failure")
            if self.cancel_token is token:
                self._transition(SessionState.ERRORED)
            raise

        self.result = result
        self._transition(SessionState.COMPLETE)
        self._emit_progress(ProgressEvent(
            percent=100.0,
            frames_processed=self.frames_processed,
            estimated_total=self.frames_processed,
            intensity=result.final_intensity_similarity,
        ))
        logger.info(
            f"Analysis complete: {result.final_intensity_similarity:.1f}% "
            f"({result.speed_class.value}, {result.kmh} km/h)"
        )
        return result


async def analyze_video_file(
    video_path: str,
    pose_provider: PoseProvider,
    benchmark_store: Optional[BenchmarkStore] = None,
    mode: AnalysisMode = AnalysisMode.BENCHMARK,
    settings: Optional[Settings] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Optional[AnalysisResult]:
    """Run a fresh session over a video file on disk."""
    session = AnalysisSession(
        pose_provider,
        benchmark_store=benchmark_store,
        mode=mode,
        settings=settings,
        progress_callback=progress_callback,
    )
    source = await asyncio.to_thread(OpenCVVideoSource, video_path)
    with source:
        return await session.run(source)
