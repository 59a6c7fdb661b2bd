import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from bowlmatch import worker
from bowlmatch.cv.analysis_session import AnalysisMode, AnalysisResult, ProgressEvent
from bowlmatch.cv.errors import InsufficientDataError
from bowlmatch.cv.speed_classifier import SpeedClass
from bowlmatch.models import Base
from bowlmatch.models.bowling_attempt import BowlingAttempt, ProcessingStatus
from conftest import FakePoseProvider, StaticBenchmarkStore


@pytest.fixture
def db(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'worker.db'}")
    Base.metadata.create_all(engine)
    session = sessionmaker(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def attempt(db, tmp_path):
    video = tmp_path / "delivery.mp4"
    video.write_bytes(b"not really a video")
    attempt = BowlingAttempt(video_filename="delivery.mp4", video_path=str(video), analysis_mode="benchmark")
    db.add(attempt)
    db.commit()
    return attempt


def _result() -> AnalysisResult:
    return AnalysisResult(
        final_intensity_similarity=91.2,
        speed_class=SpeedClass.ZOOOOOM,
        confidence_percent=94.1,
        kmh=134.6,
        message="Zooooom!",
        per_metric_breakdown={"arm_swing": 95.0, "release_point": 88.0},
        recommendations=["Great bowling action!"],
        accuracy_score=91.5,
        is_eligible=True,
        frames_processed=36,
        frame_intensities=[{"timestamp": 0.083, "intensity": 20.0}],
    )


def _run(db, attempt_id, settings):
    return worker.run_attempt_analysis(
        db,
        attempt_id,
        pose_provider=FakePoseProvider(),
        benchmark_store=StaticBenchmarkStore(),
        settings=settings,
    )


def test_successful_analysis_is_stored(db, attempt, settings, monkeypatch):
    progress_seen = []

    async def fake_analyze(video_path, pose_provider, benchmark_store=None, mode=None, settings=None,
                           progress_callback=None):
        assert mode == AnalysisMode.BENCHMARK
        assert benchmark_store is not None
        progress_callback(ProgressEvent(percent=50.0, frames_processed=18, estimated_total=36))
        progress_seen.append(db.get(BowlingAttempt, attempt.id).processing_progress)
        return _result()

    monkeypatch.setattr(worker, "analyze_video_file", fake_analyze)

    outcome = _run(db, attempt.id, settings)

    db.refresh(attempt)
    assert outcome["status"] == ProcessingStatus.COMPLETED
    assert progress_seen == [pytest.approx(0.45)]
    assert attempt.processing_status == ProcessingStatus.COMPLETED
    assert attempt.processing_progress == 1.0
    assert attempt.similarity_percent == 91.2
    assert attempt.speed_class == "Zooooom"
    assert attempt.predicted_kmh == 134.6
    assert attempt.is_eligible
    assert attempt.analysis_summary["recommendations"] == ["Great bowling action!"]
    assert attempt.processing_completed_at is not None


def test_pose_mode_skips_benchmark(db, attempt, settings, monkeypatch):
    attempt.analysis_mode = "pose"
    db.commit()
    seen = {}

    async def fake_analyze(video_path, pose_provider, benchmark_store=None, mode=None, **kwargs):
        seen["store"] = benchmark_store
        seen["mode"] = mode
        return _result()

    monkeypatch.setattr(worker, "analyze_video_file", fake_analyze)
    _run(db, attempt.id, settings)

    assert seen == {"store": None, "mode": AnalysisMode.POSE}


def test_analysis_error_is_stored_not_raised(db, attempt, settings, monkeypatch):
    async def fake_analyze(*args, **kwargs):
        raise InsufficientDataError("Only 4 motion samples collected")

    monkeypatch.setattr(worker, "analyze_video_file", fake_analyze)

    outcome = _run(db, attempt.id, settings)

    db.refresh(attempt)
    assert outcome["status"] == ProcessingStatus.FAILED
    assert outcome["error"]["retryable"] is True
    assert attempt.processing_status == ProcessingStatus.FAILED
    assert attempt.error_code == "insufficient_motion_data"
    assert attempt.processing_error == InsufficientDataError.user_message
    assert attempt.similarity_percent is None


def test_unexpected_error_is_stored_and_raised(db, attempt, settings, monkeypatch):
    async def fake_analyze(*args, **kwargs):
        raise ZeroDivisionError("boom")

    monkeypatch.setattr(worker, "analyze_video_file", fake_analyze)

    with pytest.raises(ZeroDivisionError):
        _run(db, attempt.id, settings)

    db.refresh(attempt)
    assert attempt.processing_status == ProcessingStatus.FAILED
    assert attempt.error_code == "internal_error"


def test_missing_video_file(db, attempt, settings):
    attempt.video_path = "/nonexistent/delivery.mp4"
    db.commit()

    with pytest.raises(FileNotFoundError):
        _run(db, attempt.id, settings)

    db.refresh(attempt)
    assert attempt.processing_status == ProcessingStatus.FAILED


def test_missing_attempt(db, settings):
    assert _run(db, "no-such-id", settings) == {"error": "Attempt not found"}
