"""
Render endpoint router

Handles synchronous renders (POST /api/render), variation retries
(POST /api/render/retry) and the render job queue (/api/render/jobs).
"""

import structlog
from fastapi import APIRouter, HTTPException, Depends, Path
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional, Union

from schemas import (
    RenderRequest,
    RenderResponse,
    RenderResultBody,
    RetryRequest,
    RetryResponse,
    EnqueueRequest,
    EnqueueResponse,
    JobStatusResponse,
    ErrorResponse,
)
from database import get_db
from redis_client import RenderQueue, get_render_queue
from pipeline.error_handler import ErrorType
from pipeline.models import RenderResult, TaskType
from pipeline.render_executor import RenderExecutor
from pipeline.retry_scheduler import RetryResult, RetryScheduler
from services.engine_client import get_engine_client
from services.variation_store import VariationStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api/render", tags=["Render"])


# ===== Dependencies =====

def get_render_executor() -> RenderExecutor:
    """FastAPI dependency for the render executor"""
    return RenderExecutor()


def get_retry_scheduler(
    db: Session = Depends(get_db),
    executor: RenderExecutor = Depends(get_render_executor)
) -> RetryScheduler:
    """FastAPI dependency for the retry scheduler"""
    return RetryScheduler(VariationStore(db), executor, get_engine_client())


# ===== Helpers =====

def error_status_code(error: Optional[Dict[str, Any]]) -> int:
    """HTTP status for a PipelineError body: 400 for validation, 500 otherwise"""
    if error and error.get("errorType") == ErrorType.VALIDATION_ERROR.value:
        return 400
    return 500


def to_render_response(result: RenderResult) -> RenderResponse:
    body = None
    if result.success:
        body = RenderResultBody(
            totalVideos=len(result.videos),
            videos=result.videos,
            processingTime=result.processing_time,
            ffmpegAvailable=result.ffmpeg_available,
            warnings=result.warnings
        )
    return RenderResponse(success=result.success, result=body, error=result.error)


def to_retry_response(result: RetryResult) -> RetryResponse:
    return RetryResponse(
        success=result.success,
        videoId=result.video_id,
        retryCount=result.retry_count,
        fallbackMode=result.fallback_mode,
        engineUsed=result.engine_used,
        videoUrl=result.video_url,
        ffmpegAvailable=result.ffmpeg_available,
        error=result.error
    )


def respond(response: Union[RenderResponse, RetryResponse]):
    if response.success:
        return response
    return JSONResponse(
        status_code=error_status_code(response.error),
        content=response.model_dump(mode="json")
    )


# ===== Endpoints =====

@router.post(
    "",
    response_model=Union[RenderResponse, RetryResponse],
    status_code=200,
    responses={
        400: {"model": RenderResponse, "description": "Invalid render task"},
        500: {"model": RenderResponse, "description": "Render failed"}
    },
    summary="Render Task",
    description="Render a task synchronously and publish the outputs"
)
async def render(
    request: RenderRequest,
    executor: RenderExecutor = Depends(get_render_executor),
    scheduler: RetryScheduler = Depends(get_retry_scheduler)
):
    """
    Run a render task end to end: probe, fetch, transform, execute, publish.

    A retry_single task is handed to the retry scheduler instead and
    answered with the retry response shape.
    """
    task = request.task
    logger.info("render_requested", task_type=task.task_type.value, inputs=len(task.input_videos))

    if task.task_type == TaskType.RETRY_SINGLE:
        if not task.video_id:
            raise HTTPException(status_code=400, detail="videoId is required for retry_single")
        result = await scheduler.retry(task.video_id)
        return respond(to_retry_response(result))

    result = await executor.execute(task, request.config)
    return respond(to_render_response(result))


@router.post(
    "/retry",
    response_model=RetryResponse,
    status_code=200,
    responses={
        400: {"model": RetryResponse, "description": "Unknown variation or retry limit reached"},
        500: {"model": RetryResponse, "description": "Retry render failed"}
    },
    summary="Retry Variation",
    description="Retry a failed variation with the next fallback mode"
)
async def retry_variation(
    request: RetryRequest,
    scheduler: RetryScheduler = Depends(get_retry_scheduler)
):
    """
    Retry one video variation.

    Escalates same_engine -> ffmpeg_only -> safe_mode across attempts and
    persists status, video_url and retry metadata on the variation.
    """
    if request.task.taskType.replace("-", "_") != TaskType.RETRY_SINGLE.value:
        raise HTTPException(status_code=400, detail="taskType must be retry_single")

    result = await scheduler.retry(request.task.videoId)
    return respond(to_retry_response(result))


@router.post(
    "/jobs",
    response_model=EnqueueResponse,
    status_code=202,
    responses={
        503: {"model": ErrorResponse, "description": "Render queue unavailable"}
    },
    summary="Queue Render Task",
    description="Queue a render task for the worker pool"
)
async def enqueue_render(
    request: EnqueueRequest,
    queue: RenderQueue = Depends(get_render_queue)
):
    """Queue a render task; poll GET /api/render/jobs/{task_id} for the result."""
    payload = {
        "task": request.task.model_dump(mode="json", by_alias=True),
        "config": request.config.model_dump(mode="json") if request.config else None,
    }
    try:
        task_id = queue.enqueue(payload, priority=request.priority, max_attempts=request.maxAttempts)
    except (RedisError, ValueError) as e:
        logger.error("render_enqueue_failed", error=str(e))
        raise HTTPException(status_code=503, detail=f"Render queue unavailable: {e}")

    return EnqueueResponse(taskId=task_id, status="queued")


@router.get(
    "/jobs/{task_id}",
    response_model=JobStatusResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Task not found"},
        503: {"model": ErrorResponse, "description": "Render queue unavailable"}
    },
    summary="Get Render Task Status",
    description="Retrieve the queue status of a render task"
)
async def get_render_job(
    task_id: str = Path(..., description="Task id returned when the task was queued"),
    queue: RenderQueue = Depends(get_render_queue)
):
    try:
        status = queue.get_status(task_id)
    except RedisError as e:
        logger.error("render_status_failed", task_id=task_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Render queue unavailable: {e}")

    if status is None:
        raise HTTPException(status_code=404, detail=f"Render task {task_id} not found")

    return JobStatusResponse(
        taskId=status["id"],
        status=status["status"],
        priority=status["priority"],
        attempts=status["attempts"],
        maxAttempts=status["max_attempts"],
        result=status["result"],
        error=status["error"]
    )
