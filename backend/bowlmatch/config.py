"""Application configuration."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "BowlMatch"
    debug: bool = False
    api_prefix: str = "/api"

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite+aiosqlite:///./bowlmatch.db"
    database_url_sync: str = "sqlite:///./bowlmatch.db"

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Storage
    upload_dir: str = "./uploads"
    max_video_size_mb: int = 100

    # Frame sampling
    sampling_fps: float = 12.0
    frame_width: int = 320  # Downscaled capture size, pose models resize anyway
    frame_height: int = 240
    max_video_duration_seconds: float = 15.0  # Only the first 15s of a clip are analyzed
    seek_timeout_seconds: float = 1.0
    max_consecutive_seek_failures: int = 5

    # Pose estimation
    pose_providers: List[str] = ["movenet", "mediapipe"]  # Tried in order
    movenet_model_url: str = "https://tfhub.dev/google/movenet/singlepose/lightning/4"
    mediapipe_model_path: Optional[str] = None
    keypoint_confidence_threshold: float = 0.3
    max_consecutive_pose_failures: int = 5

    # Motion pattern
    min_pattern_samples: int = 10
    phase_smoothing_window: int = 3
    delivery_min_radius: int = 3  # Frames either side of the release point
    delivery_intensity_ratio: float = 0.5  # Delivery extends while intensity >= ratio * peak
    delivery_max_fraction: float = 0.5  # Delivery never spans more than half the clip

    # Similarity weights (applied as given; the overall score is clamped to 1.0)
    weight_arm_swing: float = 0.40
    weight_release_point: float = 0.25
    weight_rhythm: float = 0.15
    weight_follow_through: float = 0.15
    weight_run_up: float = 0.10
    weight_delivery: float = 0.05

    # Array comparison
    resample_max_length: int = 30
    near_identical_tolerance: float = 0.001
    near_identical_ratio: float = 0.8
    near_identical_similarity: float = 0.95

    # Score mapping
    eligibility_threshold: float = 85.0
    similarity_reduction_percent: float = 0.0  # Promotional builds used 18

    # Analysis mode
    analysis_mode: str = "benchmark"  # "benchmark" or "pose"
    pose_intensity_ceiling: float = 6.0  # Raw intensity mapped to 100 in pose mode
    ema_alpha: float = 0.3

    # Benchmark pattern (None = packaged default)
    benchmark_pattern_path: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
