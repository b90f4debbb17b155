"""
Tests for the API endpoints

Runs the app in-process with FastAPI's TestClient. The render executor,
retry scheduler, render queue and engine pool are swapped through
dependency overrides; nothing touches ffmpeg, Redis or a real database.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import RedisError

from config import settings
from main import app
from pipeline.error_handler import ErrorType, PipelineError, ValidationError
from pipeline.models import CostTier, Engine, EngineType, FallbackMode, RenderedVideo, RenderResult
from pipeline.retry_scheduler import RetryResult
from redis_client import get_render_queue
from routers.engines import get_engine_pool
from routers.render import get_render_executor, get_retry_scheduler


ANALYSIS = {
    "id": "analysis-1",
    "source_video_id": "video-1",
    "segments": [
        {"id": "seg_hook", "type": "hook", "start_ms": 0, "end_ms": 3000},
        {"id": "seg_body", "type": "body", "start_ms": 3000, "end_ms": 9000},
        {"id": "seg_cta", "type": "cta", "start_ms": 9000, "end_ms": 11000},
    ],
    "metadata": {"duration_ms": 11000, "fps": 30, "aspect_ratio": "9:16"},
    "audio": {"has_voiceover": False},
}


def blueprint(*ideas):
    return {
        "id": "blueprint-1",
        "variation_ideas": [
            {"id": f"var_{i}", "action": action, "target_segment_type": target}
            for i, (action, target) in enumerate(ideas)
        ],
    }


@pytest.fixture
def executor():
    mock = MagicMock()
    mock.execute = AsyncMock(return_value=RenderResult(
        success=True,
        videos=[RenderedVideo(id="task-1-smart_cut_0", status="completed", url="http://test/v.mp4",
                              duration=6.0, ratio="9:16", outputPath="renders/task-1/smart_cut_0.mp4")],
        processing_time=1.5,
    ))
    return mock


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.retry = AsyncMock(return_value=RetryResult(
        success=True, video_id="var-1", retry_count=1,
        fallback_mode=FallbackMode.SAME_ENGINE, engine_used="ffmpeg",
        video_url="http://test/retry.mp4"
    ))
    return mock


@pytest.fixture
def queue():
    return MagicMock()


@pytest.fixture
def client(executor, scheduler, queue):
    app.dependency_overrides[get_render_executor] = lambda: executor
    app.dependency_overrides[get_retry_scheduler] = lambda: scheduler
    app.dependency_overrides[get_render_queue] = lambda: queue
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ===== Health / root =====

def test_health_check(client):
    with patch("main.FFmpegRunner.probe", AsyncMock(return_value=False)):
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "creative-render-pipeline"
    assert body["ffmpegAvailable"] is False


def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["endpoints"]["compile"] == "/api/creative/compile"


# ===== Compile =====

def test_compile_single_variation(client):
    response = client.post("/api/creative/compile", json={
        "analysis": ANALYSIS,
        "blueprint": blueprint(("remove_segment", "cta")),
        "asset_base_url": "https://cdn.example.com/source.mp4",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["meta"]["total"] == 1
    plan = body["plans"][0]
    assert plan["status"] == "compilable"
    assert plan["validation"]["total_duration_ms"] == 9000
    assert plan["timeline"][0]["asset_url"] == "https://cdn.example.com/source.mp4"


def test_compile_all(client):
    response = client.post("/api/creative/compile", json={
        "analysis": ANALYSIS,
        "blueprint": blueprint(("remove_segment", "cta"), ("replace_segment", "body")),
        "compile_all": True,
    })

    body = response.json()
    assert body["success"] is True
    assert body["meta"]["total"] == 2
    assert body["meta"]["compilable"] == 1
    assert body["meta"]["uncompilable"] == 1
    assert body["plans"][1]["reason"] == "replace_segment requires external asset reference"


def test_compile_nothing_compilable(client):
    response = client.post("/api/creative/compile", json={
        "analysis": ANALYSIS,
        "blueprint": blueprint(("merge_segments", "body")),
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["plans"][0]["status"] == "uncompilable"
    assert body["meta"]["compilable"] == 0
    assert body["meta"]["uncompilable"] == 1


def test_compile_negative_index_is_uncompilable_plan(client):
    response = client.post("/api/creative/compile", json={
        "analysis": ANALYSIS,
        "blueprint": blueprint(("remove_segment", "cta")),
        "variation_index": -1,
    })

    assert response.status_code == 200
    plan = response.json()["plans"][0]
    assert plan["status"] == "uncompilable"
    assert plan["reason"] == "Variation index -1 not found in blueprint"


def test_compile_all_without_ideas(client):
    response = client.post("/api/creative/compile", json={
        "analysis": ANALYSIS,
        "blueprint": blueprint(),
        "compile_all": True,
    })

    body = response.json()
    assert body["success"] is True
    assert body["plans"] == []
    assert (body["meta"]["total"], body["meta"]["compilable"], body["meta"]["uncompilable"]) == (0, 0, 0)


def test_compile_prefers_source_video_url(client):
    response = client.post("/api/creative/compile", json={
        "analysis": ANALYSIS,
        "blueprint": blueprint(("remove_segment", "cta")),
        "source_video_url": "https://cdn.example.com/preferred.mp4",
        "asset_base_url": "https://cdn.example.com/fallback.mp4",
    })

    assert response.json()["plans"][0]["timeline"][0]["asset_url"] == "https://cdn.example.com/preferred.mp4"


def test_compile_requires_analysis(client):
    response = client.post("/api/creative/compile", json={"blueprint": blueprint(("remove_segment", "cta"))})

    assert response.status_code == 400
    assert response.json()["detail"] == "analysis is required"


def test_compile_requires_blueprint(client):
    response = client.post("/api/creative/compile", json={"analysis": ANALYSIS})

    assert response.status_code == 400
    assert response.json()["detail"] == "blueprint is required"


# ===== Render =====

def test_render(client, executor):
    response = client.post("/api/render", json={
        "task": {"taskType": "smart-cut", "inputVideos": ["https://cdn.example.com/a.mp4"]},
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["result"]["totalVideos"] == 1
    assert body["result"]["ffmpegAvailable"] is True
    assert body["result"]["videos"][0]["outputPath"] == "renders/task-1/smart_cut_0.mp4"
    task, config = executor.execute.call_args.args
    assert task.task_type.value == "smart_cut"
    assert config is None


def test_render_validation_error_is_400(client, executor):
    executor.execute = AsyncMock(return_value=RenderResult(
        success=False,
        error=ValidationError("Render task has no input assets", field="inputVideos").to_dict()
    ))

    response = client.post("/api/render", json={"task": {"taskType": "full_assembly"}})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["errorType"] == "validation_error"
    assert body["error"]["suggestedFix"]


def test_render_failure_is_500(client, executor):
    executor.execute = AsyncMock(return_value=RenderResult(
        success=False,
        error=PipelineError(ErrorType.FFMPEG_ERROR, "ffmpeg exited with code 1", stage="execute").to_dict()
    ))

    response = client.post("/api/render", json={
        "task": {"taskType": "subtitles", "inputVideos": ["https://cdn.example.com/a.mp4"]},
    })

    assert response.status_code == 500
    assert response.json()["error"]["retryable"] is True


def test_render_unknown_task_type(client):
    response = client.post("/api/render", json={"task": {"taskType": "explode"}})
    assert response.status_code == 422


def test_render_retry_single_routes_to_scheduler(client, executor, scheduler):
    response = client.post("/api/render", json={"task": {"taskType": "retry_single", "videoId": "var-1"}})

    assert response.status_code == 200
    body = response.json()
    assert body["videoId"] == "var-1"
    assert body["fallbackMode"] == "same_engine"
    scheduler.retry.assert_awaited_once_with("var-1")
    executor.execute.assert_not_called()


def test_render_retry_single_requires_video_id(client):
    response = client.post("/api/render", json={"task": {"taskType": "retry_single"}})

    assert response.status_code == 400
    assert response.json()["detail"] == "videoId is required for retry_single"


# ===== Retry =====

def test_retry(client, scheduler):
    response = client.post("/api/render/retry", json={"task": {"taskType": "retry_single", "videoId": "var-1"}})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["retryCount"] == 1
    assert body["engineUsed"] == "ffmpeg"
    assert body["videoUrl"] == "http://test/retry.mp4"


def test_retry_limit_reached_is_400(client, scheduler):
    scheduler.retry = AsyncMock(return_value=RetryResult(
        success=False, video_id="var-1", retry_count=4, fallback_mode=FallbackMode.SAFE_MODE,
        error=ValidationError("Retry limit reached (4/4 attempts)", stage="retry").to_dict()
    ))

    response = client.post("/api/render/retry", json={"task": {"videoId": "var-1"}})

    assert response.status_code == 400
    assert response.json()["fallbackMode"] == "safe_mode"


def test_retry_rejects_other_task_types(client):
    response = client.post("/api/render/retry", json={"task": {"taskType": "smart_cut", "videoId": "var-1"}})
    assert response.status_code == 400


# ===== Queue =====

def test_enqueue_render(client, queue):
    queue.enqueue.return_value = "t-1"

    response = client.post("/api/render/jobs", json={
        "task": {"taskType": "full_assembly", "inputVideos": ["https://cdn.example.com/a.mp4"]},
        "priority": "high",
        "maxAttempts": 2,
    })

    assert response.status_code == 202
    assert response.json() == {"taskId": "t-1", "status": "queued"}
    payload = queue.enqueue.call_args.args[0]
    assert payload["task"]["taskType"] == "full_assembly"
    assert payload["task"]["inputVideos"] == ["https://cdn.example.com/a.mp4"]
    assert queue.enqueue.call_args.kwargs == {"priority": "high", "max_attempts": 2}


def test_enqueue_queue_unavailable(client, queue):
    queue.enqueue.side_effect = RedisError("Connection refused")

    response = client.post("/api/render/jobs", json={"task": {"taskType": "smart_cut", "inputVideos": ["a.mp4"]}})

    assert response.status_code == 503


def test_get_render_job(client, queue):
    queue.get_status.return_value = {
        "id": "t-1", "status": "completed", "priority": 100, "attempts": 1, "max_attempts": 3,
        "result": {"success": True}, "error": None,
    }

    response = client.get("/api/render/jobs/t-1")

    assert response.status_code == 200
    body = response.json()
    assert body["taskId"] == "t-1"
    assert body["maxAttempts"] == 3
    assert body["result"] == {"success": True}


def test_get_render_job_not_found(client, queue):
    queue.get_status.return_value = None

    response = client.get("/api/render/jobs/missing")

    assert response.status_code == 404


# ===== Engines =====

def test_select_engines(client):
    response = client.post("/api/engines/select", json={
        "scenes": [{"id": "s1", "sceneType": "avatar"}, {"id": "s2", "visualPrompt": "city"}],
        "pricingTier": "free",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["allowedTiers"] == ["free"]
    assert [a["sceneId"] for a in body["assignments"]] == ["s1", "s2"]
    assert {a["costTier"] for a in body["assignments"]} == {"free"}


def test_select_engines_none_available(client):
    app.dependency_overrides[get_engine_pool] = lambda: [
        Engine(id="premium", name="Premium", type=EngineType.TEXT_TO_VIDEO, cost_tier=CostTier.EXPENSIVE)
    ]

    response = client.post("/api/engines/select", json={"scenes": [{"id": "s1"}], "pricingTier": "free"})

    assert response.status_code == 422
    body = response.json()
    assert body["message"] == "No engines available for tiers: free"
    assert body["error"] == "validation_error"


def test_select_engines_requires_scenes(client):
    response = client.post("/api/engines/select", json={"scenes": []})
    assert response.status_code == 422


# ===== Authentication =====

def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret-key")

    missing = client.post("/api/engines/select", json={"scenes": [{"id": "s1"}]})
    wrong = client.post("/api/engines/select", json={"scenes": [{"id": "s1"}]}, headers={"X-API-Key": "nope"})
    header = client.post("/api/engines/select", json={"scenes": [{"id": "s1"}]}, headers={"X-API-Key": "secret-key"})
    query = client.post("/api/engines/select?api_key=secret-key", json={"scenes": [{"id": "s1"}]})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert header.status_code == 200
    assert query.status_code == 200


def test_health_is_public(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret-key")

    with patch("main.FFmpegRunner.probe", AsyncMock(return_value=True)):
        response = client.get("/health")

    assert response.status_code == 200
