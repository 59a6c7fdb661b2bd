"""Leaderboard endpoint."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bowlmatch.database import get_db
from bowlmatch.models.bowling_attempt import BowlingAttempt, ProcessingStatus
from bowlmatch.schemas.attempt import LeaderboardEntry, LeaderboardResponse

router = APIRouter()


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    limit: int = Query(50, ge=1, le=200),
    eligible_only: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    """Completed attempts, fastest first (ties broken by similarity)."""
    filters = [
        BowlingAttempt.processing_status == ProcessingStatus.COMPLETED,
        BowlingAttempt.predicted_kmh.is_not(None),
    ]
    if eligible_only:
        filters.append(BowlingAttempt.is_eligible.is_(True))

    total = await db.scalar(select(func.count()).select_from(BowlingAttempt).where(*filters))

    result = await db.execute(
        select(BowlingAttempt)
        .where(*filters)
        .order_by(
            BowlingAttempt.predicted_kmh.desc(),
            BowlingAttempt.similarity_percent.desc(),
            BowlingAttempt.created_at.asc(),
        )
        .limit(limit)
    )
    attempts = result.scalars().all()

    items = [
        LeaderboardEntry(
            rank=i + 1,
            id=a.id,
            player_name=a.player_name,
            predicted_kmh=a.predicted_kmh,
            similarity_percent=a.similarity_percent or 0.0,
            speed_class=a.speed_class,
            is_eligible=a.is_eligible,
            created_at=a.created_at,
        )
        for i, a in enumerate(attempts)
    ]

    return LeaderboardResponse(items=items, total=total or 0)
