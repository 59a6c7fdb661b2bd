"""
Computer vision pipeline for bowling action analysis.

PIPELINE COMPONENTS:
1. FrameSampler: Fixed-rate, cancellable frame extraction with seek timeouts
2. PoseProviderChain: MoveNet / MediaPipe pose detection in priority order
3. Motion features: Arm swing and body movement velocities per pose pair
4. PatternBuilder: Velocity time series, release point and phase segmentation
5. BenchmarkStore: Lazily loaded, validated reference pattern
6. SimilarityEngine: Resampled correlation per signal and phase, weighted score
7. Speed classifier: Similarity -> speed class, confidence and km/h
8. AnalysisSession: State machine driving 1-7 for one clip

Pose model modules (movenet_estimator, pose_estimator) are not imported
here; they are loaded on demand by the pose provider chain.

Usage:
    from bowlmatch.cv import AnalysisSession, build_pose_provider, get_benchmark_store

    session = AnalysisSession(build_pose_provider(settings), get_benchmark_store())
    result = await session.run(OpenCVVideoSource("delivery.mp4"))
"""

from bowlmatch.cv.errors import (
    AnalysisError,
    InsufficientDataError,
    PoseProviderUnavailableError,
    BenchmarkUnavailableError,
    SeekTimeoutError,
    InvalidPatternError,
)
from bowlmatch.cv.pose import Keypoint, Pose, FrameSample, KEYPOINT_NAMES
from bowlmatch.cv.motion_features import (
    MotionSample,
    compute_arm_swing_velocity,
    compute_body_movement_velocity,
    compute_motion_sample,
)
from bowlmatch.cv.pattern_builder import MotionPattern, PhaseRange, PatternBuilder
from bowlmatch.cv.similarity import (
    SimilarityEngine,
    SimilarityResult,
    SimilarityWeights,
    compare_arrays,
    resample_array,
)
from bowlmatch.cv.speed_classifier import (
    SpeedClass,
    SpeedClassification,
    classify_speed,
    intensity_to_kmh,
)
from bowlmatch.cv.benchmark_store import BenchmarkStore, get_benchmark_store, load_benchmark_pattern
from bowlmatch.cv.frame_sampler import (
    CancellationToken,
    FrameSampler,
    OpenCVVideoSource,
    SampledFrame,
    VideoSource,
)
from bowlmatch.cv.pose_provider import PoseProvider, PoseProviderChain, build_pose_provider
from bowlmatch.cv.analysis_session import (
    AnalysisMode,
    AnalysisResult,
    AnalysisSession,
    ProgressEvent,
    SessionState,
    analyze_video_file,
)

__all__ = [
    # Errors
    "AnalysisError",
    "InsufficientDataError",
    "PoseProviderUnavailableError",
    "BenchmarkUnavailableError",
    "SeekTimeoutError",
    "InvalidPatternError",

    # Pose types
    "Keypoint",
    "Pose",
    "FrameSample",
    "KEYPOINT_NAMES",

    # Motion features
    "MotionSample",
    "compute_arm_swing_velocity",
    "compute_body_movement_velocity",
    "compute_motion_sample",

    # Patterns
    "MotionPattern",
    "PhaseRange",
    "PatternBuilder",

    # Similarity
    "SimilarityEngine",
    "SimilarityResult",
    "SimilarityWeights",
    "compare_arrays",
    "resample_array",

    # Speed mapping
    "SpeedClass",
    "SpeedClassification",
    "classify_speed",
    "intensity_to_kmh",

    # Benchmark
    "BenchmarkStore",
    "get_benchmark_store",
    "load_benchmark_pattern",

    # Sampling
    "CancellationToken",
    "FrameSampler",
    "OpenCVVideoSource",
    "SampledFrame",
    "VideoSource",

    # Pose providers
    "PoseProvider",
    "PoseProviderChain",
    "build_pose_provider",

    # Session
    "AnalysisMode",
    "AnalysisResult",
    "AnalysisSession",
    "ProgressEvent",
    "SessionState",
    "analyze_video_file",
]
