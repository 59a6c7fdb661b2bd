"""Benchmark pattern status and reload endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from bowlmatch.cv.benchmark_store import BenchmarkStore, get_benchmark_store
from bowlmatch.cv.errors import BenchmarkUnavailableError
from bowlmatch.cv.pattern_builder import PHASE_DOCUMENT_KEYS, MotionPattern
from bowlmatch.schemas.benchmark import BenchmarkStatusResponse, PhaseRangeResponse

router = APIRouter()
logger = logging.getLogger(__name__)


def _status(store: BenchmarkStore, pattern: MotionPattern) -> BenchmarkStatusResponse:
    return BenchmarkStatusResponse(
        loaded=True,
        path=str(store.path),
        length=pattern.length,
        release_point_frame=pattern.release_point_frame,
        action_phases={
            PHASE_DOCUMENT_KEYS[name]: PhaseRangeResponse(start=r.start, end=r.end)
            for name, r in pattern.action_phases.items()
        },
    )


@router.get("", response_model=BenchmarkStatusResponse)
async def get_benchmark(store: BenchmarkStore = Depends(get_benchmark_store)):
    """Load status and shape of the benchmark pattern (loads it on first call)."""
    try:
        pattern = store.get()
    except BenchmarkUnavailableError as e:
        return BenchmarkStatusResponse(loaded=False, path=str(store.path), error=e.detail)
    return _status(store, pattern)


@router.post("/reload", response_model=BenchmarkStatusResponse)
async def reload_benchmark(store: BenchmarkStore = Depends(get_benchmark_store)):
    """Re-read the benchmark document from disk."""
    try:
        pattern = store.reload()
    except BenchmarkUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=e.to_dict()
        )
    logger.info(f"Benchmark reloaded from {store.path}")
    return _status(store, pattern)
