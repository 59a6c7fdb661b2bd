from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from bowlmatch.api import attempts as attempts_api
from bowlmatch.cv.benchmark_store import get_benchmark_store
from bowlmatch.cv.errors import BenchmarkUnavailableError
from bowlmatch.database import get_db
from bowlmatch.main import app
from bowlmatch.models import Base
from bowlmatch.models.bowling_attempt import BowlingAttempt, ProcessingStatus
from conftest import StaticBenchmarkStore


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "api.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def sync_session(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    session = sessionmaker(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def queued(monkeypatch):
    ids = []
    monkeypatch.setattr(attempts_api, "enqueue_analysis", ids.append)
    return ids


@pytest.fixture
def client(db_path, tmp_path, monkeypatch, queued):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    monkeypatch.setattr(attempts_api.settings, "upload_dir", str(tmp_path / "uploads"))
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _upload(client, filename="delivery.mp4", content=b"fake video bytes", **data):
    return client.post(
        "/api/attempts/upload",
        files={"file": (filename, content, "video/mp4")},
        data=data,
    )


def _completed(session, name, kmh, similarity, eligible=True, offset=0):
    attempt = BowlingAttempt(
        player_name=name,
        video_filename=f"{name}.mp4",
        video_path=f"/tmp/{name}.mp4",
        processing_status=ProcessingStatus.COMPLETED,
        predicted_kmh=kmh,
        similarity_percent=similarity,
        speed_class="Fast",
        is_eligible=eligible,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=offset),
    )
    session.add(attempt)
    session.commit()
    return attempt.id


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_upload_queues_analysis(client, queued, tmp_path):
    response = _upload(client, player_name="Jas")

    assert response.status_code == 201
    body = response.json()
    assert body["processing_status"] == "pending"
    assert body["analysis_mode"] == "benchmark"
    assert body["player_name"] == "Jas"
    assert queued == [body["id"]]
    assert len(list((tmp_path / "uploads").iterdir())) == 1


def test_upload_pose_mode(client):
    response = _upload(client, mode="pose")
    assert response.status_code == 201
    assert response.json()["analysis_mode"] == "pose"


@pytest.mark.parametrize("filename,content,data", [
    ("delivery.txt", b"abc", {}),
    ("delivery.mp4", b"", {}),
    ("delivery.mp4", b"abc", {"mode": "turbo"}),
])
def test_upload_rejects_bad_input(client, queued, filename, content, data):
    response = _upload(client, filename=filename, content=content, **data)
    assert response.status_code == 400
    assert queued == []


def test_upload_rejects_large_file(client, monkeypatch):
    monkeypatch.setattr(attempts_api, "MAX_FILE_SIZE", 4)
    response = _upload(client, content=b"too many bytes")
    assert response.status_code == 400
    assert "too large" in response.json()["detail"]


def test_get_attempt(client):
    attempt_id = _upload(client).json()["id"]
    response = client.get(f"/api/attempts/{attempt_id}")
    assert response.status_code == 200
    assert response.json()["id"] == attempt_id


def test_get_missing_attempt(client):
    assert client.get("/api/attempts/does-not-exist").status_code == 404


def test_retry_in_progress_attempt_conflicts(client):
    attempt_id = _upload(client).json()["id"]
    response = client.post(f"/api/attempts/{attempt_id}/retry")
    assert response.status_code == 409


def test_retry_failed_attempt(client, sync_session, queued):
    attempt = BowlingAttempt(
        video_filename="a.mp4",
        video_path="/tmp/a.mp4",
        processing_status=ProcessingStatus.FAILED,
        error_code="insufficient_motion_data",
        processing_error="Video too short",
    )
    sync_session.add(attempt)
    sync_session.commit()

    response = client.post(f"/api/attempts/{attempt.id}/retry")

    assert response.status_code == 200
    body = response.json()
    assert body["processing_status"] == "pending"
    assert body["error_code"] is None
    assert body["retry_count"] == 1
    assert queued == [attempt.id]


def test_completed_attempt_exposes_summary(client, sync_session):
    attempt = BowlingAttempt(
        video_filename="a.mp4",
        video_path="/tmp/a.mp4",
        processing_status=ProcessingStatus.COMPLETED,
        similarity_percent=91.5,
        predicted_kmh=134.1,
        speed_class="Zooooom",
        is_eligible=True,
    )
    attempt.analysis_summary = {
        "per_metric_breakdown": {"arm_swing": 95.0},
        "recommendations": ["Great bowling action!"],
        "frame_intensities": [{"timestamp": 0.083, "intensity": 12.5}],
    }
    sync_session.add(attempt)
    sync_session.commit()

    body = client.get(f"/api/attempts/{attempt.id}").json()

    assert body["analysis_summary"]["per_metric_breakdown"] == {"arm_swing": 95.0}
    assert body["analysis_summary"]["frame_intensities"][0]["intensity"] == 12.5


def test_leaderboard_orders_by_speed_then_similarity(client, sync_session):
    slow = _completed(sync_session, "slow", 110.0, 60.0, eligible=False, offset=0)
    tie_low = _completed(sync_session, "tie_low", 130.0, 85.0, offset=1)
    tie_high = _completed(sync_session, "tie_high", 130.0, 88.0, offset=2)
    fastest = _completed(sync_session, "fastest", 142.0, 96.0, offset=3)
    sync_session.add(BowlingAttempt(video_filename="p.mp4", video_path="/tmp/p.mp4"))
    sync_session.commit()

    body = client.get("/api/leaderboard").json()

    assert body["total"] == 4
    assert [item["id"] for item in body["items"]] == [fastest, tie_high, tie_low, slow]
    assert [item["rank"] for item in body["items"]] == [1, 2, 3, 4]

    eligible = client.get("/api/leaderboard", params={"eligible_only": True}).json()
    assert eligible["total"] == 3
    assert slow not in [item["id"] for item in eligible["items"]]


def test_benchmark_status(client, benchmark_pattern):
    app.dependency_overrides[get_benchmark_store] = lambda: StaticBenchmarkStore(benchmark_pattern)

    body = client.get("/api/benchmark").json()

    assert body["loaded"] is True
    assert body["length"] == 7
    assert body["release_point_frame"] == 3
    assert body["action_phases"]["delivery"] == {"start": 2, "end": 4}
    assert set(body["action_phases"]) == {"runUp", "delivery", "followThrough"}


def test_benchmark_status_when_unavailable(client):
    store = StaticBenchmarkStore(error=BenchmarkUnavailableError("benchmark file missing"))
    app.dependency_overrides[get_benchmark_store] = lambda: store

    body = client.get("/api/benchmark").json()
    assert body["loaded"] is False
    assert body["error"] == "benchmark file missing"

    response = client.post("/api/benchmark/reload")
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "benchmark_unavailable"
