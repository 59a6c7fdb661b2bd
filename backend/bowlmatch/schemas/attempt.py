"""Bowling attempt schemas."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class FrameIntensity(BaseModel):
    timestamp: float
    intensity: float


class AnalysisSummary(BaseModel):
    """Breakdown stored alongside a completed attempt."""
    per_metric_breakdown: Dict[str, float] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    frames_processed: int = 0
    skipped_frames: int = 0
    frame_intensities: List[FrameIntensity] = Field(default_factory=list)


class AttemptResponse(BaseModel):
    """Schema for attempt status and result."""
    id: str
    player_name: Optional[str] = None
    video_filename: str
    analysis_mode: str
    processing_status: str
    processing_progress: float
    error_code: Optional[str] = None
    processing_error: Optional[str] = None
    retry_count: int

    similarity_percent: Optional[float] = None
    speed_class: Optional[str] = None
    confidence_percent: Optional[float] = None
    predicted_kmh: Optional[float] = None
    accuracy_score: Optional[float] = None
    is_eligible: bool = False
    analysis_summary: Optional[AnalysisSummary] = None

    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LeaderboardEntry(BaseModel):
    rank: int
    id: str
    player_name: Optional[str] = None
    predicted_kmh: float
    similarity_percent: float
    speed_class: Optional[str] = None
    is_eligible: bool
    created_at: datetime


class LeaderboardResponse(BaseModel):
    items: List[LeaderboardEntry]
    total: int
