"""Celery worker for async bowling analysis."""

import asyncio
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Optional

from celery import Celery
from sqlalchemy.orm import Session

from bowlmatch.config import Settings, get_settings
from bowlmatch.cv.analysis_session import AnalysisMode, AnalysisResult, ProgressEvent, analyze_video_file
from bowlmatch.cv.benchmark_store import BenchmarkStore, get_benchmark_store
from bowlmatch.cv.errors import AnalysisError
from bowlmatch.cv.pose_provider import PoseProvider, build_pose_provider
from bowlmatch.database import SyncSessionLocal
from bowlmatch.models.bowling_attempt import BowlingAttempt, ProcessingStatus

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "bowlmatch",
    broker=settings.redis_url,
    backend=settings.redis_url
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # Clips are capped at 15s of sampling
    worker_prefetch_multiplier=1,  # Process one task at a time
)

PROGRESS_STEP = 0.05  # Only write progress every 5%


@lru_cache
def get_pose_provider() -> PoseProvider:
    """Pose provider chain shared by all tasks in this worker process."""
    return build_pose_provider(get_settings())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get_attempt(db: Session, attempt_id: str) -> Optional[BowlingAttempt]:
    return db.query(BowlingAttempt).filter(BowlingAttempt.id == attempt_id).first()


def update_progress(db: Session, attempt_id: str, progress: float, status: str = None):
    """Update processing progress in database."""
    attempt = _get_attempt(db, attempt_id)
    if attempt:
        attempt.processing_progress = progress
        if status:
            attempt.processing_status = status
        db.commit()


def store_result(attempt: BowlingAttempt, result: AnalysisResult) -> None:
    """Copy an analysis result onto the attempt record."""
    attempt.similarity_percent = result.final_intensity_similarity
    attempt.speed_class = result.speed_class.value
    attempt.confidence_percent = result.confidence_percent
    attempt.predicted_kmh = result.kmh
    attempt.accuracy_score = result.accuracy_score
    attempt.is_eligible = result.is_eligible
    attempt.analysis_summary = {
        "per_metric_breakdown": result.per_metric_breakdown,
        "recommendations": result.recommendations,
        "message": result.message,
        "frames_processed": result.frames_processed,
        "skipped_frames": result.skipped_frames,
        "frame_intensities": result.frame_intensities,
    }


def run_attempt_analysis(
    db: Session,
    attempt_id: str,
    pose_provider: Optional[PoseProvider] = None,
    benchmark_store: Optional[BenchmarkStore] = None,
    settings: Optional[Settings] = None,
) -> Dict:
    """
    Analyze one attempt and persist the outcome.

    AnalysisError failures are stored on the attempt (status FAILED) and
    returned, since the user can retry them. Anything else is stored and
    re-raised.
    """
    settings = settings or get_settings()

    attempt = _get_attempt(db, attempt_id)
    if not attempt:
        logger.error(f"Attempt {attempt_id} not found")
        return {"error": "Attempt not found"}

    try:
        attempt.processing_status = ProcessingStatus.SAMPLING
        attempt.processing_started_at = _now()
        attempt.processing_progress = 0.0
        db.commit()

        if not os.path.exists(attempt.video_path):
            raise FileNotFoundError(f"Video file not found: {attempt.video_path}")

        mode = AnalysisMode(attempt.analysis_mode)
        last_written = {"progress": 0.0}

        def progress_callback(event: ProgressEvent):
            # Reserve the last 10% for scoring and storage
            progress = round(event.percent / 100 * 0.9, 3)
            if progress - last_written["progress"] >= PROGRESS_STEP:
                update_progress(db, attempt_id, progress)
                last_written["progress"] = progress

        result = asyncio.run(analyze_video_file(
            attempt.video_path,
            pose_provider or get_pose_provider(),
            benchmark_store=(benchmark_store or get_benchmark_store()) if mode == AnalysisMode.BENCHMARK else None,
            mode=mode,
            settings=settings,
            progress_callback=progress_callback,
        ))

        update_progress(db, attempt_id, 0.95, ProcessingStatus.ANALYZING)
        attempt = _get_attempt(db, attempt_id)
        store_result(attempt, result)

        attempt.processing_status = ProcessingStatus.COMPLETED
        attempt.processing_progress = 1.0
        attempt.processing_completed_at = _now()
        db.commit()

        logger.info(
            f"Processing complete for attempt {attempt_id}: "
            f"{attempt.similarity_percent}% ({attempt.speed_class}, {attempt.predicted_kmh} km/h)"
        )

        return {
            "attempt_id": attempt_id,
            "status": ProcessingStatus.COMPLETED,
            **result.to_dict(),
        }

    except AnalysisError as e:
        logger.warning(f"Analysis failed for attempt {attempt_id} [{e.code}]: {e.detail}")
        db.rollback()
        attempt = _get_attempt(db, attempt_id)
        if attempt:
            attempt.processing_status = ProcessingStatus.FAILED
            attempt.error_code = e.code
            attempt.processing_error = e.user_message
            db.commit()
        return {"attempt_id": attempt_id, "status": ProcessingStatus.FAILED, "error": e.to_dict()}

    except Exception as e:
        logger.exception(f"Error processing attempt {attempt_id}: {e}")
        db.rollback()
        attempt = _get_attempt(db, attempt_id)
        if attempt:
            attempt.processing_status = ProcessingStatus.FAILED
            attempt.error_code = "internal_error"
            attempt.processing_error = str(e)
            db.commit()
        raise


@celery_app.task(bind=True, name="process_attempt")
def process_attempt_task(self, attempt_id: str):
    """
    Analyze an uploaded bowling attempt asynchronously.

    Steps:
    1. Sample frames from the stored video
    2. Detect poses and build the motion pattern
    3. Compare against the benchmark (or score intensity in pose mode)
    4. Store result or user-facing error
    """
    logger.info(f"Starting analysis for attempt {attempt_id}")

    db = SyncSessionLocal()
    try:
        return run_attempt_analysis(db, attempt_id)
    finally:
        db.close()
