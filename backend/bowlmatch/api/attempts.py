"""Bowling attempt upload, status and retry endpoints."""

import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bowlmatch.config import get_settings
from bowlmatch.cv.analysis_session import AnalysisMode
from bowlmatch.database import get_db
from bowlmatch.models.bowling_attempt import BowlingAttempt, ProcessingStatus
from bowlmatch.schemas.attempt import AttemptResponse

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


ALLOWED_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm"}
MAX_FILE_SIZE = settings.max_video_size_mb * 1024 * 1024  # Convert to bytes


def validate_video_file(filename: Optional[str], file_size: int) -> None:
    """Validate video file extension and size."""
    ext = Path(filename or "").suffix.lower()

    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
        )

    if file_size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty"
        )

    if file_size > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum: {settings.max_video_size_mb}MB"
        )


def enqueue_analysis(attempt_id: str) -> None:
    """Queue the Celery analysis task for an attempt."""
    from bowlmatch.worker import process_attempt_task
    process_attempt_task.delay(attempt_id)


async def get_attempt_or_404(attempt_id: str, db: AsyncSession) -> BowlingAttempt:
    result = await db.execute(select(BowlingAttempt).where(BowlingAttempt.id == attempt_id))
    attempt = result.scalar_one_or_none()
    if not attempt:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attempt not found"
        )
    return attempt


@router.post("/upload", response_model=AttemptResponse, status_code=status.HTTP_201_CREATED)
async def upload_attempt(
    file: UploadFile = File(...),
    player_name: Optional[str] = Form(None),
    mode: str = Form(AnalysisMode.BENCHMARK.value),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload a bowling video for analysis.

    The video is queued for processing; poll GET /attempts/{id} for
    progress and the result.
    """
    valid_modes = [m.value for m in AnalysisMode]
    if mode not in valid_modes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid mode. Must be one of: {valid_modes}"
        )

    contents = await file.read()
    validate_video_file(file.filename, len(contents))

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)

    file_ext = Path(file.filename).suffix.lower()
    file_path = upload_dir / f"{uuid.uuid4()}{file_ext}"
    with open(file_path, "wb") as f:
        f.write(contents)

    attempt = BowlingAttempt(
        player_name=player_name,
        video_filename=file.filename,
        video_path=str(file_path),
        analysis_mode=mode,
        processing_status=ProcessingStatus.PENDING,
        processing_progress=0.0,
        retry_count=0,
        is_eligible=False,
    )
    db.add(attempt)
    await db.commit()
    await db.refresh(attempt)

    logger.info(f"Queued attempt {attempt.id} ({file.filename}, {len(contents)} bytes, mode={mode})")
    enqueue_analysis(attempt.id)

    return attempt


@router.get("/{attempt_id}", response_model=AttemptResponse)
async def get_attempt(attempt_id: str, db: AsyncSession = Depends(get_db)):
    """Get processing status and, once complete, the result."""
    return await get_attempt_or_404(attempt_id, db)


@router.post("/{attempt_id}/retry", response_model=AttemptResponse)
async def retry_attempt(attempt_id: str, db: AsyncSession = Depends(get_db)):
    """Discard the previous result or error and analyze the same video again."""
    attempt = await get_attempt_or_404(attempt_id, db)

    if attempt.is_in_progress:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Attempt is still {attempt.processing_status}"
        )

    attempt.clear_result()
    attempt.retry_count += 1
    await db.commit()
    await db.refresh(attempt)

    logger.info(f"Retrying attempt {attempt.id} (retry #{attempt.retry_count})")
    enqueue_analysis(attempt.id)

    return attempt
