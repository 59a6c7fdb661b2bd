"""Pydantic schemas for API request/response models."""

from bowlmatch.schemas.attempt import (
    AnalysisSummary,
    AttemptResponse,
    FrameIntensity,
    LeaderboardEntry,
    LeaderboardResponse,
)
from bowlmatch.schemas.benchmark import (
    BenchmarkStatusResponse,
    PhaseRangeResponse,
)

__all__ = [
    "AnalysisSummary",
    "AttemptResponse",
    "FrameIntensity",
    "LeaderboardEntry",
    "LeaderboardResponse",
    "BenchmarkStatusResponse",
    "PhaseRangeResponse",
]
