import asyncio

import pytest

from bowlmatch.cv.analysis_session import AnalysisMode, AnalysisSession, SessionState
from bowlmatch.cv.errors import BenchmarkUnavailableError, InsufficientDataError, PoseProviderUnavailableError
from bowlmatch.cv.speed_classifier import SpeedClass
from conftest import SAMPLING_FPS, FakePoseProvider, FakeVideoSource, StaticBenchmarkStore, bowling_poses


def _source(frames: int, **kwargs) -> FakeVideoSource:
    return FakeVideoSource(duration=frames / SAMPLING_FPS, **kwargs)


def _capture_reference(settings, poses):
    session = AnalysisSession(FakePoseProvider(poses), mode=AnalysisMode.POSE, settings=settings)
    return asyncio.run(session.capture_pattern(_source(len(poses))))


def test_matching_delivery_scores_top_class(settings):
    poses = bowling_poses()
    store = StaticBenchmarkStore(_capture_reference(settings, poses))
    session = AnalysisSession(FakePoseProvider(poses), store, settings=settings)

    result = asyncio.run(session.run(_source(len(poses))))

    assert session.state == SessionState.COMPLETE
    assert result.final_intensity_similarity == 100.0
    assert result.kmh == 145.0
    assert result.speed_class == SpeedClass.ZOOOOOM
    assert result.is_eligible
    assert result.frames_processed == 36
    assert result.accuracy_score is not None
    assert set(result.per_metric_breakdown) >= {"arm_swing", "release_point", "rhythm", "body_movement"}
    assert len(result.frame_intensities) == 35
    assert session.pattern.release_point_frame == 17


def test_progress_is_monotone_and_finishes_at_100(settings):
    poses = bowling_poses()
    store = StaticBenchmarkStore(_capture_reference(settings, poses))
    events = []
    session = AnalysisSession(FakePoseProvider(poses), store, settings=settings, progress_callback=events.append)

    asyncio.run(session.run(_source(len(poses))))

    percents = [e.percent for e in events]
    assert percents == sorted(percents)
    assert max(percents[:-1]) <= 99.0
    assert percents[-1] == 100.0
    assert events[0].intensity is None
    assert events[5].intensity is not None


def test_no_poses_is_insufficient_data(settings, benchmark_pattern):
    session = AnalysisSession(FakePoseProvider([]), StaticBenchmarkStore(benchmark_pattern), settings=settings)

    with pytest.raises(InsufficientDataError):
        asyncio.run(session.run(_source(24)))

    assert session.state == SessionState.ERRORED
    assert session.error.code == "insufficient_motion_data"


def test_session_must_be_reset_before_rerun(settings, benchmark_pattern):
    session = AnalysisSession(FakePoseProvider([]), StaticBenchmarkStore(benchmark_pattern), settings=settings)
    with pytest.raises(InsufficientDataError):
        asyncio.run(session.run(_source(24)))

    with pytest.raises(RuntimeError):
        asyncio.run(session.run(_source(24)))

    session.reset()
    assert session.state == SessionState.IDLE
    assert session.error is None
    assert session.builder.sample_count == 0


def test_cancel_discards_progress(settings, benchmark_pattern):
    poses = bowling_poses()
    session = None

    def on_progress(event):
        if event.frames_processed == 5:
            session.cancel()

    session = AnalysisSession(
        FakePoseProvider(poses),
        StaticBenchmarkStore(benchmark_pattern),
        settings=settings,
        progress_callback=on_progress,
    )
    source = _source(len(poses))

    assert asyncio.run(session.run(source)) is None
    assert session.state == SessionState.IDLE
    assert session.result is None
    assert len(source.grabbed) == 5


def test_repeated_detection_errors_abort(settings, benchmark_pattern):
    provider = FakePoseProvider(bowling_poses(), errors=range(100))
    session = AnalysisSession(provider, StaticBenchmarkStore(benchmark_pattern), settings=settings)

    with pytest.raises(PoseProviderUnavailableError):
        asyncio.run(session.run(_source(36)))

    assert session.state == SessionState.ERRORED
    assert provider.calls == settings.max_consecutive_pose_failures + 1


def test_isolated_detection_errors_are_tolerated(settings):
    poses = bowling_poses()
    store = StaticBenchmarkStore(_capture_reference(settings, poses))
    session = AnalysisSession(FakePoseProvider(poses, errors={4, 20}), store, settings=settings)

    result = asyncio.run(session.run(_source(len(poses))))

    assert session.state == SessionState.COMPLETE
    assert result.frames_processed == 36


def test_provider_that_cannot_start_fails_the_session(settings, benchmark_pattern):
    provider = FakePoseProvider(fail_init=True)
    session = AnalysisSession(provider, StaticBenchmarkStore(benchmark_pattern), settings=settings)

    with pytest.raises(RuntimeError):
        asyncio.run(session.run(_source(12)))
    assert session.state == SessionState.ERRORED


def test_unavailable_benchmark_fails_after_sampling(settings):
    store = StaticBenchmarkStore(error=BenchmarkUnavailableError("benchmark file missing"))
    session = AnalysisSession(FakePoseProvider(bowling_poses()), store, settings=settings)

    with pytest.raises(BenchmarkUnavailableError):
        asyncio.run(session.run(_source(36)))

    assert session.state == SessionState.ERRORED
    assert session.pattern is None


def test_pose_mode_scores_intensity(settings):
    session = AnalysisSession(FakePoseProvider(bowling_poses()), mode=AnalysisMode.POSE, settings=settings)

    result = asyncio.run(session.run(_source(36)))

    assert result.mode == AnalysisMode.POSE
    assert 0 < result.final_intensity_similarity <= 100
    assert result.per_metric_breakdown == {}
    assert result.recommendations == []
    assert result.accuracy_score is None
    assert result.kmh >= 60.0


def test_missing_pose_breaks_velocity_chain(settings):
    poses = bowling_poses(n=24, peak=12)
    poses[5] = None
    session = AnalysisSession(FakePoseProvider(poses), mode=AnalysisMode.POSE, settings=settings)

    pattern = asyncio.run(session.capture_pattern(_source(24)))

    # 0-4 give four samples, 6-23 give seventeen
    assert pattern.length == 21
    assert session.frames_processed == 24


def test_benchmark_mode_needs_a_store(settings):
    with pytest.raises(ValueError):
        AnalysisSession(FakePoseProvider(), settings=settings)


def test_eligibility_follows_configured_threshold(settings):
    poses = bowling_poses()
    store = StaticBenchmarkStore(_capture_reference(settings, poses))
    strict = settings.model_copy(update={"eligibility_threshold": 100.5})
    session = AnalysisSession(FakePoseProvider(poses), store, settings=strict)

    result = asyncio.run(session.run(_source(len(poses))))

    assert result.final_intensity_similarity == 100.0
    assert not result.is_eligible


def test_reset_during_run_does_not_cancel_the_next_run(settings):
    provider = FakePoseProvider(bowling_poses(n=40))
    session = AnalysisSession(provider, mode=AnalysisMode.POSE, settings=settings)
    stalled = _source(36, slow_indices={2}, slow_seconds=0.3)

    async def scenario():
        first = asyncio.create_task(session.run(stalled))
        await asyncio.sleep(0.1)
        session.reset()
        second = await session.run(_source(36))
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second is not None
    assert second.frames_processed == 36
    assert session.state == SessionState.COMPLETE
    assert session.result is second
    assert len(stalled.grabbed) == 3
