"""
Structural failures of the bowling analysis pipeline.

Numeric anomalies (NaN/Infinity in velocities or correlations) are NOT
represented here: they are recovered locally with neutral defaults and only
logged. Everything below aborts the current analysis and is surfaced to the
user with a retry affordance.
"""

from typing import List, Optional


class AnalysisError(Exception):
    """Base class for user-actionable analysis failures."""

    code = "analysis_failed"
    user_message = "Analysis failed. Please try again."
    retryable = True

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.user_message
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.user_message,
            "detail": self.detail,
            "retryable": self.retryable,
        }


class InsufficientDataError(AnalysisError):
    """Too few valid frame samples were collected to score the clip."""

    code = "insufficient_motion_data"
    user_message = "Video too short or bowling action not detected clearly. Please record again."


class PoseProviderUnavailableError(AnalysisError):
    """Pose detection could not be initialized or keeps failing."""

    code = "pose_provider_unavailable"
    user_message = "Pose detection could not start. Please try again."

    def __init__(self, detail: Optional[str] = None, failures: Optional[List[str]] = None):
        self.failures = failures or []
        super().__init__(detail)


class BenchmarkUnavailableError(AnalysisError):
    """The benchmark pattern failed to load or is malformed."""

    code = "benchmark_unavailable"
    user_message = "Reference bowling action is unavailable right now. Please try again shortly."


class InvalidPatternError(ValueError):
    """A motion pattern document does not match the expected shape."""


class SeekTimeoutError(AnalysisError):
    """Too many consecutive frames could not be captured from the video."""

    code = "video_playback_failed"
    user_message = "We could not read your video. Please upload it again or try another file."
