"""
Render executor: probe -> fetch -> transform -> execute -> publish.

Each task runs inside its own AssetManager working area, which is removed
on every exit path. Stage failures come back as a RenderResult carrying a
PipelineError dict; the executor itself does not raise for them.

When ffmpeg cannot be invoked the executor degrades instead of failing:
it publishes a small placeholder image per expected output and flags
ffmpeg_available=False on the result.
"""

import asyncio
import os
import time
import uuid
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import structlog
from botocore.exceptions import ClientError
from PIL import Image, ImageDraw

from config import settings
from pipeline.asset_manager import AssetManager
from pipeline.error_handler import ErrorType, PipelineError, ValidationError
from pipeline.ffmpeg_runner import FFmpegRunner
from pipeline.filter_graphs import (
    BuildContext,
    RenderJob,
    build_plan_job,
    build_render_jobs,
    output_ratios,
    ratio_for_frame,
    required_sources,
)
from pipeline.models import AssemblyConfig, ExecutionPlan, RenderedVideo, RenderResult, RenderTask, TaskType
from pipeline.render_config import DEFAULT_RATIO, RATIO_PRESETS, STANDARD_PROFILE, EncodingProfile
from services.storage_backend import StorageBackend, get_storage_backend

logger = structlog.get_logger()

PLACEHOLDER_SCALE = 10
DEGRADED_WARNING = "FFmpeg unavailable; placeholder artifacts produced"

# Given the local inputs and the working area, produce the jobs to run plus any warnings
JobFactory = Callable[[dict, AssetManager], Tuple[List[RenderJob], List[str]]]


def write_placeholder(path: str, ratio: str) -> str:
    """Small solid PNG with the output's aspect ratio and a notice."""
    preset = RATIO_PRESETS.get(ratio, RATIO_PRESETS[DEFAULT_RATIO])
    size = (preset.width // PLACEHOLDER_SCALE, preset.height // PLACEHOLDER_SCALE)

    image = Image.new("RGB", size, (24, 24, 24))
    draw = ImageDraw.Draw(image)
    draw.text((4, 4), "preview", fill=(200, 200, 200))
    draw.text((4, 16), ratio, fill=(200, 200, 200))
    image.save(path, format="PNG")
    return path


class RenderExecutor:
    """
    Runs render tasks and compiled plans through ffmpeg.

    Example:
        >>> executor = RenderExecutor()
        >>> result = await executor.execute(RenderTask(taskType="full_assembly", inputVideos=[...]))
        >>> result.success, result.ffmpeg_available
    """

    def __init__(
        self,
        runner: Optional[FFmpegRunner] = None,
        storage: Optional[StorageBackend] = None,
        work_dir: Optional[str] = None
    ):
        self.runner = runner or FFmpegRunner(
            settings.ffmpeg_binary,
            timeout=settings.FFMPEG_TIMEOUT,
            probe_timeout=settings.FFMPEG_PROBE_TIMEOUT
        )
        self._storage = storage
        self.work_dir = work_dir or settings.RENDER_WORK_DIR

    @property
    def storage(self) -> StorageBackend:
        if self._storage is None:
            self._storage = get_storage_backend()
        return self._storage

    async def probe(self) -> bool:
        return await self.runner.probe()

    def _asset_manager(self, task_id: str) -> AssetManager:
        return AssetManager(
            task_id,
            base_path=self.work_dir,
            download_timeout=settings.DOWNLOAD_TIMEOUT,
            max_retries=settings.DOWNLOAD_MAX_RETRIES
        )

    async def execute(
        self,
        task: RenderTask,
        config: Optional[AssemblyConfig] = None,
        task_id: Optional[str] = None,
        profile: EncodingProfile = STANDARD_PROFILE
    ) -> RenderResult:
        """
        Render one task.

        Args:
            task: The render task (any type except retry_single)
            config: Batch options (source videos, pacing, ratios, ...)
            task_id: Id used for the working area and published keys
            profile: Encoding profile; the retry scheduler passes SAFE_PROFILE in safe mode

        Returns:
            RenderResult; on failure success=False and error holds PipelineError.to_dict()
        """
        task_id = task_id or f"render-{uuid.uuid4().hex[:12]}"

        def factory(inputs: dict, assets: AssetManager):
            ctx = BuildContext(
                task, inputs,
                output_dir=str(assets.outputs_dir),
                work_dir=str(assets.work_dir),
                config=config,
                profile=profile
            )
            return build_render_jobs(ctx), ctx.warnings

        if task.task_type == TaskType.RETRY_SINGLE:
            precheck = ValidationError(
                "retry_single tasks are handled by the retry scheduler",
                stage="validate",
                field="taskType"
            )
        elif not required_sources(task, config):
            precheck = ValidationError("Render task has no input assets", stage="validate", field="inputVideos")
        else:
            precheck = None

        return await self._run(
            task_id,
            task.task_type.value,
            sources=required_sources(task, config),
            ratios=output_ratios(task, config),
            factory=factory,
            precheck=precheck
        )

    async def execute_plan(
        self,
        plan: ExecutionPlan,
        task_id: Optional[str] = None,
        profile: EncodingProfile = STANDARD_PROFILE
    ) -> RenderResult:
        """Render a compiled ExecutionPlan into a single output file."""
        task_id = task_id or f"plan-{uuid.uuid4().hex[:12]}"
        sources = [e.asset_url for e in plan.timeline] + [t.asset_url for t in plan.audio_tracks]

        def factory(inputs: dict, assets: AssetManager):
            output = assets.output_path(f"{plan.variation_id or plan.plan_id}.mp4")
            return [build_plan_job(plan, inputs, output, profile)], list(plan.validation.warnings)

        precheck = None
        if not plan.compilable:
            precheck = ValidationError(f"Plan {plan.plan_id} is not compilable: {plan.reason}", stage="validate")
        elif not plan.timeline:
            precheck = ValidationError(f"Plan {plan.plan_id} has an empty timeline", stage="validate")

        return await self._run(
            task_id,
            "execution_plan",
            sources=sources,
            ratios=[ratio_for_frame(plan.output_format.width, plan.output_format.height)],
            factory=factory,
            precheck=precheck
        )

    async def _run(
        self,
        task_id: str,
        kind: str,
        sources: Sequence[str],
        ratios: Sequence[str],
        factory: JobFactory,
        precheck: Optional[PipelineError] = None
    ) -> RenderResult:
        log = logger.bind(task_id=task_id, kind=kind)
        started = time.monotonic()
        ffmpeg_available = True

        try:
            if precheck is not None:
                raise precheck

            ffmpeg_available = await self.probe()
            log.info("render_started", ffmpeg_available=ffmpeg_available, sources=len(sources))

            async with self._asset_manager(task_id) as assets:
                if ffmpeg_available:
                    videos, warnings = await self._render(task_id, sources, factory, assets)
                else:
                    log.warning("render_degraded", reason="ffmpeg_unavailable")
                    videos = await self._render_placeholders(task_id, ratios, assets)
                    warnings = [DEGRADED_WARNING]

        except PipelineError as e:
            e.log_error()
            log.error(
                "render_failed",
                stage=e.stage,
                error_type=e.error_type.value,
                message=e.message
            )
            return RenderResult(
                success=False,
                processing_time=round(time.monotonic() - started, 2),
                ffmpeg_available=ffmpeg_available,
                error=e.to_dict()
            )

        processing_time = round(time.monotonic() - started, 2)
        log.info("render_completed", videos=len(videos), processing_time=processing_time)
        return RenderResult(
            success=True,
            videos=videos,
            processing_time=processing_time,
            ffmpeg_available=ffmpeg_available,
            warnings=warnings
        )

    async def _render(
        self,
        task_id: str,
        sources: Sequence[str],
        factory: JobFactory,
        assets: AssetManager
    ) -> Tuple[List[RenderedVideo], List[str]]:
        inputs = await assets.fetch_all(sources)
        jobs, warnings = factory(inputs, assets)

        finished = []
        for job in jobs:
            for path, content in (job.files or {}).items():
                await assets.save_text(content, os.path.basename(path))
            result = await self.runner.run(job.args, output_path=job.output_path, stage="execute")
            if job.publish:
                finished.append((job, result.duration))

        videos = []
        for job, duration in finished:
            url, key = await self._publish(task_id, job.output_path)
            videos.append(RenderedVideo(
                id=f"{task_id}-{job.label}",
                status="completed",
                url=url,
                duration=duration,
                ratio=job.ratio,
                outputPath=key
            ))
        return videos, warnings

    async def _render_placeholders(
        self,
        task_id: str,
        ratios: Sequence[str],
        assets: AssetManager
    ) -> List[RenderedVideo]:
        videos = []
        for ratio in ratios:
            label = f"placeholder_{ratio.replace(':', 'x')}"
            path = assets.output_path(f"{label}.png")
            await asyncio.to_thread(write_placeholder, path, ratio)
            url, key = await self._publish(task_id, path)
            videos.append(RenderedVideo(
                id=f"{task_id}-{label}",
                status="placeholder",
                url=url,
                duration=None,
                ratio=ratio,
                outputPath=key
            ))
        return videos

    async def _publish(self, task_id: str, local_path: str) -> Tuple[str, str]:
        key = f"renders/{task_id}/{os.path.basename(local_path)}"
        try:
            url = await self.storage.upload_file(local_path, key)
        except (OSError, ClientError, ValueError) as e:
            raise PipelineError(
                ErrorType.UPLOAD_ERROR,
                f"Failed to publish {os.path.basename(local_path)}: {e}",
                stage="publish",
                details={"key": key, "exception": type(e).__name__}
            ) from e
        return url, key
