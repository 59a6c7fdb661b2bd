"""Database models."""

from bowlmatch.models.base import Base, TimestampMixin
from bowlmatch.models.bowling_attempt import BowlingAttempt, ProcessingStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "BowlingAttempt",
    "ProcessingStatus",
]
