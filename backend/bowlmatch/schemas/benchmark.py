"""Benchmark pattern schemas."""

from typing import Dict, Optional

from pydantic import BaseModel


class PhaseRangeResponse(BaseModel):
    start: int
    end: int


class BenchmarkStatusResponse(BaseModel):
    """Load status and shape of the benchmark pattern."""
    loaded: bool
    path: str
    length: Optional[int] = None
    release_point_frame: Optional[int] = None
    action_phases: Optional[Dict[str, PhaseRangeResponse]] = None
    error: Optional[str] = None
