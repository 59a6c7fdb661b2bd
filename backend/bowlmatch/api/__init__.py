"""API routes."""

from fastapi import APIRouter

from bowlmatch.api import attempts, benchmark, leaderboard

api_router = APIRouter()

api_router.include_router(attempts.router, prefix="/attempts", tags=["Attempts"])
api_router.include_router(leaderboard.router, prefix="/leaderboard", tags=["Leaderboard"])
api_router.include_router(benchmark.router, prefix="/benchmark", tags=["Benchmark"])
