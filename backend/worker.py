"""
Queue Worker for the Render Pipeline

This worker:
- Claims render tasks from the Redis priority queue (BZPOPMIN)
- Runs RENDER_WORKER_CONCURRENCY independent render loops
- Re-enqueues retryable failures with exponential backoff until max_attempts
- Publishes status updates via Redis pub/sub
- Routes retry_single tasks through the retry scheduler
- Supports graceful shutdown (SIGTERM, SIGINT): in-flight tasks finish first
"""

import asyncio
import logging
import signal
import sys
import traceback
import structlog
from typing import Optional, Dict, Any, Tuple
from datetime import datetime, timezone

from redis.exceptions import RedisError

from redis_client import RenderQueue, render_queue
from database import get_db_context, init_db
from config import settings
from pipeline.error_handler import (
    ErrorType,
    PipelineError,
    ValidationError,
    categorize_error,
    get_retry_delay,
)
from pipeline.models import AssemblyConfig, RenderTask, TaskType
from pipeline.render_executor import RenderExecutor
from pipeline.retry_scheduler import RetryScheduler
from services.engine_client import get_engine_client
from services.variation_store import VariationStore

# Configure structured logging (same chain as the API)
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()

# Pause after a queue error before claiming again
QUEUE_ERROR_BACKOFF = 1.0


class WorkerState:
    """Worker state management for graceful shutdown"""

    def __init__(self):
        self.shutdown_event = asyncio.Event()
        self.current_tasks: Dict[int, str] = {}

    def request_shutdown(self, signum: Optional[int] = None):
        """Request graceful shutdown"""
        if not self.shutdown_event.is_set():
            logger.info(
                "shutdown_requested",
                signal=signal.Signals(signum).name if signum else None,
                in_flight=list(self.current_tasks.values())
            )
        self.shutdown_event.set()

    def is_running(self) -> bool:
        """Check if worker should keep claiming tasks"""
        return not self.shutdown_event.is_set()

    async def wait(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on shutdown

        Returns:
            bool: True if shutdown was requested while waiting
        """
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False


class RenderWorker:
    """
    Pool of render loops sharing one queue and one executor

    Each loop claims one task at a time, so at most `concurrency` renders
    run at once in this process.
    """

    def __init__(
        self,
        worker_id: Optional[str] = None,
        concurrency: Optional[int] = None,
        queue: Optional[RenderQueue] = None,
        executor: Optional[RenderExecutor] = None
    ):
        """
        Initialize worker

        Args:
            worker_id: Optional worker identifier for multi-worker setups
            concurrency: Number of render loops (RENDER_WORKER_CONCURRENCY)
            queue: Render queue (defaults to the global one)
            executor: Render executor (defaults to a settings-built one)
        """
        self.worker_id = worker_id or f"worker-{id(self)}"
        self.concurrency = max(1, concurrency or settings.RENDER_WORKER_CONCURRENCY)
        self.queue = queue or render_queue
        self.executor = executor or RenderExecutor()
        self.state = WorkerState()

        logger.info("worker_initialized", worker_id=self.worker_id, concurrency=self.concurrency)

    def install_signal_handlers(self):
        """Route SIGTERM and SIGINT to a graceful shutdown"""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self.state.request_shutdown, signum)

    async def run(self):
        """
        Main worker entry

        Starts the render loops and returns once all of them have exited
        after a shutdown request.
        """
        logger.info("worker_started", worker_id=self.worker_id)

        init_db()
        self.install_signal_handlers()

        loops = [asyncio.create_task(self._loop(slot)) for slot in range(self.concurrency)]
        await asyncio.gather(*loops)

        self.queue.close()
        logger.info("worker_shutdown_complete", worker_id=self.worker_id)

    async def _loop(self, slot: int):
        log = logger.bind(worker_id=self.worker_id, slot=slot)
        log.info("render_loop_started")

        while self.state.is_running():
            try:
                claimed = await asyncio.to_thread(self.queue.claim)
            except RedisError as e:
                log.error("task_claim_failed", error=str(e))
                await self.state.wait(QUEUE_ERROR_BACKOFF)
                continue

            if claimed is None:
                continue

            self.state.current_tasks[slot] = claimed["id"]
            try:
                await self.process(claimed)
            except Exception as e:
                log.error(
                    "task_outcome_not_recorded",
                    task_id=claimed["id"],
                    error=str(e),
                    traceback=traceback.format_exc()
                )
                await self.state.wait(QUEUE_ERROR_BACKOFF)
            finally:
                self.state.current_tasks.pop(slot, None)

        log.info("render_loop_stopped")

    async def process(self, claimed: Dict[str, Any]) -> bool:
        """
        Run one claimed task and record its outcome on the queue

        Args:
            claimed: Task record returned by RenderQueue.claim

        Returns:
            bool: True if the task completed
        """
        task_id = claimed["id"]
        attempts = claimed["attempts"]
        max_attempts = claimed["max_attempts"]
        log = logger.bind(task_id=task_id, attempts=attempts, max_attempts=max_attempts)
        log.info("task_processing_started", worker_id=self.worker_id)

        try:
            success, result, error = await self.execute_payload(task_id, claimed["payload"])
        except PipelineError as e:
            e.log_error()
            success, result, error = False, None, e.to_dict()
        except Exception as e:
            log.error("task_unexpected_error", error=str(e), traceback=traceback.format_exc())
            pipeline_error = PipelineError(
                categorize_error(e),
                str(e),
                stage="worker",
                details={"original_exception": type(e).__name__}
            )
            success, result, error = False, None, pipeline_error.to_dict()

        if success:
            await asyncio.to_thread(self.queue.complete, task_id, result)
            log.info("task_processing_completed")
            return True

        error = error or PipelineError(ErrorType.FFMPEG_ERROR, "Render produced no outputs", stage="execute").to_dict()
        retryable = bool(error.get("retryable"))
        if retryable and attempts < max_attempts:
            delay = get_retry_delay(attempts - 1)
            log.warning("task_retry_scheduled", retry_delay=delay, error_type=error.get("errorType"))
            await self.state.wait(delay)

        await asyncio.to_thread(self.queue.fail, task_id, error, retryable)
        return False

    async def execute_payload(
        self,
        task_id: str,
        payload: Dict[str, Any]
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """
        Dispatch a queued payload {"task": ..., "config": ...}

        Returns:
            (success, result body, error body)
        """
        if not payload.get("task"):
            raise ValidationError("Queued payload has no task", stage="worker", field="task")

        task = RenderTask.model_validate(payload["task"])

        if task.task_type == TaskType.RETRY_SINGLE:
            if not task.video_id:
                raise ValidationError("videoId is required for retry_single", stage="worker", field="videoId")
            with get_db_context() as db:
                scheduler = RetryScheduler(VariationStore(db), self.executor, get_engine_client())
                retry_result = await scheduler.retry(task.video_id)
            return retry_result.success, retry_result.model_dump(mode="json"), retry_result.error

        config = AssemblyConfig.model_validate(payload["config"]) if payload.get("config") else None
        result = await self.executor.execute(task, config, task_id=task_id)
        return result.success, result.model_dump(mode="json"), result.error

    def get_health_status(self) -> Dict[str, Any]:
        """
        Get current health status

        Returns:
            Dictionary with health status information
        """
        redis_healthy = self.queue.ping()

        return {
            "worker_id": self.worker_id,
            "running": self.state.is_running(),
            "concurrency": self.concurrency,
            "current_tasks": list(self.state.current_tasks.values()),
            "redis_healthy": redis_healthy,
            "healthy": redis_healthy and self.state.is_running(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }


def main():
    """
    Main entry point for worker

    Usage:
        python worker.py [worker_id]

    Example:
        python worker.py worker-1
    """
    worker_id = sys.argv[1] if len(sys.argv) > 1 else None

    try:
        asyncio.run(RenderWorker(worker_id=worker_id).run())
    except Exception as e:
        logger.error(
            "worker_fatal_error",
            error=str(e),
            traceback=traceback.format_exc()
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
