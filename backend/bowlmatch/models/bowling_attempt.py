"""Bowling attempt model."""

import json
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bowlmatch.models.base import Base, TimestampMixin


class ProcessingStatus:
    """Attempt processing status."""
    PENDING = "pending"
    SAMPLING = "sampling"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def in_progress(cls) -> List[str]:
        return [cls.PENDING, cls.SAMPLING, cls.ANALYZING]


class BowlingAttempt(Base, TimestampMixin):
    """
    One uploaded bowling clip and its analysis result.

    Result columns are only populated when processing_status is COMPLETED;
    a failed attempt carries error_code/processing_error instead.
    """

    __tablename__ = "bowling_attempts"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    player_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Video metadata
    video_filename: Mapped[str] = mapped_column(String(500), nullable=False)
    video_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    analysis_mode: Mapped[str] = mapped_column(String(20), default="benchmark", nullable=False)

    # Processing status
    processing_status: Mapped[str] = mapped_column(
        String(50),
        default=ProcessingStatus.PENDING,
        nullable=False,
        index=True
    )
    processing_progress: Mapped[float] = mapped_column(Float, default=0.0)
    error_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Result
    similarity_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed_class: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    confidence_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    predicted_kmh: Mapped[Optional[float]] = mapped_column(Float, nullable=True, index=True)
    accuracy_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_eligible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Breakdown, recommendations and intensity timeline (stored as JSON string)
    _analysis_summary: Mapped[Optional[str]] = mapped_column("analysis_summary", Text, nullable=True)

    @property
    def analysis_summary(self) -> Optional[Dict]:
        if self._analysis_summary:
            return json.loads(self._analysis_summary)
        return None

    @analysis_summary.setter
    def analysis_summary(self, value: Optional[Dict]):
        if value is not None:
            self._analysis_summary = json.dumps(value)
        else:
            self._analysis_summary = None

    @property
    def is_in_progress(self) -> bool:
        return self.processing_status in ProcessingStatus.in_progress()

    def clear_result(self) -> None:
        """Drop the previous result before a retry."""
        self.similarity_percent = None
        self.speed_class = None
        self.confidence_percent = None
        self.predicted_kmh = None
        self.accuracy_score = None
        self.is_eligible = False
        self.analysis_summary = None
        self.error_code = None
        self.processing_error = None
        self.processing_progress = 0.0
        self.processing_started_at = None
        self.processing_completed_at = None
        self.processing_status = ProcessingStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<BowlingAttempt(id={self.id}, status={self.processing_status}, "
            f"similarity={self.similarity_percent}, kmh={self.predicted_kmh})>"
        )
