"""
Retry/fallback scheduler for retry_single tasks.

Each retry moves a variation one step along a monotone ladder:

    attempt 1-2  same_engine   regenerate clips with the original engine, then render
    attempt 3    ffmpeg_only   skip the engine, re-render the assets already on hand
    attempt 4+   safe_mode     re-render with the safe encoding profile

The ladder never steps back to a less conservative mode.
"""

import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import BaseModel

from config import settings
from pipeline.error_handler import ErrorType, PipelineError, ValidationError, categorize_error
from pipeline.models import AssemblyConfig, FallbackMode, RenderResult, RenderTask, RetryState, TaskType
from pipeline.render_config import DEFAULT_RATIO, SAFE_PROFILE, STANDARD_PROFILE
from pipeline.render_executor import RenderExecutor
from services.engine_client import EngineClient
from services.variation_store import VariationStore

logger = structlog.get_logger()

DEFAULT_ENGINE = "ffmpeg"
SAFE_ENGINE = "ffmpeg_safe"
TRANSCODER_ENGINES = {DEFAULT_ENGINE, SAFE_ENGINE}


class RetryResult(BaseModel):
    success: bool
    video_id: str
    retry_count: int
    fallback_mode: FallbackMode
    engine_used: Optional[str] = None
    video_url: Optional[str] = None
    ffmpeg_available: bool = True
    error: Optional[Dict[str, Any]] = None


def fallback_mode_for_attempt(attempt: int) -> FallbackMode:
    if attempt <= 0:
        return FallbackMode.ORIGINAL
    if attempt <= 2:
        return FallbackMode.SAME_ENGINE
    if attempt == 3:
        return FallbackMode.FFMPEG_ONLY
    return FallbackMode.SAFE_MODE


def next_retry_state(previous: RetryState, now: Optional[datetime] = None) -> RetryState:
    """
    Advance a RetryState by one attempt.

    retry_count strictly increases and fallback_mode is never less
    conservative than previous.fallback_mode.
    """
    retry_count = previous.retry_count + 1
    mode = fallback_mode_for_attempt(retry_count)
    if mode.rank < previous.fallback_mode.rank:
        mode = previous.fallback_mode

    if mode == FallbackMode.SAME_ENGINE:
        engine = previous.engine_used or DEFAULT_ENGINE
    elif mode == FallbackMode.FFMPEG_ONLY:
        engine = DEFAULT_ENGINE
    else:
        engine = SAFE_ENGINE

    return previous.model_copy(update={
        "retry_count": retry_count,
        "fallback_mode": mode,
        "engine_used": engine,
        "last_retry_at": now or datetime.now(timezone.utc),
        "completed_at": None,
    })


def build_retry_task(variation_config: Dict[str, Any]) -> Tuple[RenderTask, AssemblyConfig]:
    """Render task and batch config reconstructed from a variation's stored inputs."""
    videos = variation_config.get("sourceVideos") or variation_config.get("inputVideos") or []
    if not videos:
        raise ValidationError("Variation has no source videos to render", stage="retry", field="variation_config")

    task_type = variation_config.get("taskType", TaskType.FULL_ASSEMBLY.value)
    if str(task_type).replace("-", "_") == TaskType.RETRY_SINGLE.value:
        task_type = TaskType.FULL_ASSEMBLY.value

    task = RenderTask.model_validate({
        "taskType": task_type,
        "inputVideos": videos,
        "outputRatio": variation_config.get("ratio") or variation_config.get("outputRatio") or DEFAULT_RATIO,
        "pacing": variation_config.get("pacing"),
        "transitions": variation_config.get("transitions") or [],
        "maxDuration": variation_config.get("maxDuration"),
    })
    config = AssemblyConfig(sourceVideos=videos, pacing=variation_config.get("pacing"))
    return task, config


class RetryScheduler:
    """
    Re-dispatches a failed variation under the next fallback mode and
    persists the outcome.

    Example:
        >>> scheduler = RetryScheduler(VariationStore(db), RenderExecutor())
        >>> result = await scheduler.retry("var-123")
        >>> result.fallback_mode
        <FallbackMode.SAME_ENGINE: 'same_engine'>
    """

    def __init__(
        self,
        store: VariationStore,
        executor: RenderExecutor,
        engine_client: Optional[EngineClient] = None,
        max_attempts: Optional[int] = None
    ):
        self.store = store
        self.executor = executor
        self.engine_client = engine_client
        self.max_attempts = max_attempts or settings.RETRY_MAX_ATTEMPTS

    async def retry(self, video_id: str) -> RetryResult:
        log = logger.bind(video_id=video_id)

        variation = self.store.get(video_id)
        if variation is None:
            error = ValidationError(f"Video variation {video_id} not found", stage="retry", field="videoId")
            return RetryResult(
                success=False, video_id=video_id, retry_count=0,
                fallback_mode=FallbackMode.ORIGINAL, error=error.to_dict()
            )

        previous = self.store.get_retry_state(variation)
        if previous.retry_count >= self.max_attempts:
            error = ValidationError(
                f"Retry limit reached ({previous.retry_count}/{self.max_attempts} attempts)",
                stage="retry"
            )
            log.warning("retry_limit_reached", retry_count=previous.retry_count)
            return RetryResult(
                success=False, video_id=video_id, retry_count=previous.retry_count,
                fallback_mode=previous.fallback_mode, engine_used=previous.engine_used,
                error=error.to_dict()
            )

        state = next_retry_state(previous)
        self.store.mark_processing(variation, state)
        log.info("retry_started", retry_count=state.retry_count, fallback_mode=state.fallback_mode.value,
                 engine_used=state.engine_used)

        try:
            result = await self._dispatch(variation.variation_config or {}, state)
        except PipelineError as e:
            e.log_error()
            result = RenderResult(success=False, error=e.to_dict())
        except Exception as e:
            log.error("retry_unexpected_error", error=str(e), traceback=traceback.format_exc())
            pipeline_error = PipelineError(
                categorize_error(e),
                str(e),
                stage="retry",
                details={"original_exception": type(e).__name__}
            )
            result = RenderResult(success=False, error=pipeline_error.to_dict())

        now = datetime.now(timezone.utc)
        if result.success and result.videos:
            output = result.videos[0]
            final = state.model_copy(update={"completed_at": now})
            self.store.mark_completed(
                variation, final, output.url, output.duration,
                status="completed" if result.ffmpeg_available else "placeholder"
            )
            log.info("retry_succeeded", retry_count=final.retry_count, fallback_mode=final.fallback_mode.value)
            return RetryResult(
                success=True, video_id=video_id, retry_count=final.retry_count,
                fallback_mode=final.fallback_mode, engine_used=final.engine_used,
                video_url=output.url, ffmpeg_available=result.ffmpeg_available
            )

        error = result.error or PipelineError(
            ErrorType.FFMPEG_ERROR, "Render produced no outputs", stage="execute"
        ).to_dict()
        failed = state.model_copy(update={"last_error_at": now})
        self.store.mark_failed(variation, failed, error)
        log.warning("retry_failed", retry_count=failed.retry_count, error_type=error.get("errorType"))
        return RetryResult(
            success=False, video_id=video_id, retry_count=failed.retry_count,
            fallback_mode=failed.fallback_mode, engine_used=failed.engine_used,
            ffmpeg_available=result.ffmpeg_available, error=error
        )

    async def _dispatch(self, variation_config: Dict[str, Any], state: RetryState) -> RenderResult:
        task, config = build_retry_task(variation_config)

        if state.fallback_mode == FallbackMode.SAME_ENGINE and state.engine_used not in TRANSCODER_ENGINES:
            if self.engine_client is None:
                raise PipelineError(
                    ErrorType.ENGINE_ERROR,
                    f"No engine gateway configured to regenerate with {state.engine_used}",
                    stage="engine",
                    details={"engine": state.engine_used}
                )
            clips = await self.engine_client.regenerate(state.engine_used, variation_config)
            task = task.model_copy(update={"input_videos": clips})
            config = config.model_copy(update={"sourceVideos": clips})

        profile = SAFE_PROFILE if state.fallback_mode == FallbackMode.SAFE_MODE else STANDARD_PROFILE
        return await self.executor.execute(
            task, config,
            task_id=f"retry-{state.video_id}-{state.retry_count}",
            profile=profile
        )
