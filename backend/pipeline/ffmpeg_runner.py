"""
Bounded ffmpeg subprocess execution.

Every invocation has a hard wall-clock timeout; on expiry the child is
killed and a retryable timeout_error is raised.
"""

import asyncio
import re
import subprocess
import time
from typing import List, NamedTuple, Optional, Sequence

import structlog

from pipeline.asset_manager import AssetManager
from pipeline.error_handler import ErrorType, PipelineError
from pipeline.ffmpeg_error_parser import describe_ffmpeg_error, parse_ffmpeg_error

logger = structlog.get_logger()

_PROGRESS_TIME = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_INPUT_DURATION = re.compile(r"Duration: (\d{2}):(\d{2}):(\d{2}\.\d{2})")


class FFmpegResult(NamedTuple):
    returncode: int
    stdout: str
    stderr: str
    duration: Optional[float]
    elapsed: float


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_duration(stderr: str) -> Optional[float]:
    """
    Duration of the produced media, in seconds.

    Uses the last progress line (time=...), which reflects the output;
    falls back to the first input's Duration header.
    """
    if not stderr:
        return None

    progress = _PROGRESS_TIME.findall(stderr)
    if progress:
        return round(_to_seconds(*progress[-1]), 2)

    header = _INPUT_DURATION.search(stderr)
    if header:
        return round(_to_seconds(*header.groups()), 2)

    return None


class FFmpegRunner:
    """
    Runs ffmpeg in a worker thread so the event loop keeps serving other tasks.

    Example:
        >>> runner = FFmpegRunner("ffmpeg", timeout=120)
        >>> if await runner.probe():
        ...     result = await runner.run(["-i", "in.mp4", "out.mp4"], output_path="out.mp4")
    """

    def __init__(self, binary: str = "ffmpeg", timeout: int = 120, probe_timeout: int = 10):
        self.binary = binary
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    def _probe_sync(self) -> bool:
        try:
            completed = subprocess.run(
                [self.binary, "-version"],
                capture_output=True,
                timeout=self.probe_timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("ffmpeg_probe_failed", binary=self.binary, error=str(e))
            return False
        return completed.returncode == 0

    async def probe(self) -> bool:
        """Cheap version check; False means the executor must degrade."""
        available = await asyncio.to_thread(self._probe_sync)
        logger.debug("ffmpeg_probe", binary=self.binary, available=available)
        return available

    def build_command(self, args: Sequence[str]) -> List[str]:
        return [self.binary, "-y", "-hide_banner", *args]

    async def run(
        self,
        args: Sequence[str],
        output_path: Optional[str] = None,
        timeout: Optional[int] = None,
        stage: str = "execute"
    ) -> FFmpegResult:
        """
        Run ffmpeg with a hard timeout.

        Args:
            args: ffmpeg arguments (without the binary)
            output_path: File the command must produce; checked for existence and size
            timeout: Override of the runner's default timeout in seconds
            stage: Stage name recorded on raised errors

        Raises:
            PipelineError: timeout_error on expiry, ffmpeg_error on non-zero exit,
                           unstartable binary, or missing/empty output
        """
        timeout = timeout or self.timeout
        command = self.build_command(args)
        started = time.monotonic()

        logger.info("ffmpeg_started", stage=stage, timeout=timeout, output=output_path)

        try:
            completed = await asyncio.to_thread(
                subprocess.run,
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout
            )
        except subprocess.TimeoutExpired as e:
            logger.error("ffmpeg_timeout", stage=stage, timeout=timeout)
            raise PipelineError(
                ErrorType.TIMEOUT_ERROR,
                f"FFmpeg exceeded {timeout}s timeout",
                stage=stage,
                details={"timeout": timeout}
            ) from e
        except OSError as e:
            raise PipelineError(
                ErrorType.FFMPEG_ERROR,
                f"Could not start ffmpeg: {e}",
                stage=stage,
                details={"binary": self.binary}
            ) from e

        elapsed = time.monotonic() - started
        stderr = completed.stderr or ""

        if completed.returncode != 0:
            parsed = parse_ffmpeg_error(stderr)
            logger.error(
                "ffmpeg_failed",
                stage=stage,
                returncode=completed.returncode,
                code=parsed["code"],
                last_error=parsed["last_error_line"]
            )
            raise PipelineError(
                ErrorType.FFMPEG_ERROR,
                describe_ffmpeg_error(stderr),
                stage=stage,
                details={
                    "returncode": completed.returncode,
                    "code": parsed["code"],
                    "stderr_tail": stderr[-2000:]
                }
            )

        if output_path and not AssetManager.validate_file(output_path):
            raise PipelineError(
                ErrorType.FFMPEG_ERROR,
                "FFmpeg completed but produced no output file",
                stage=stage,
                details={"output_path": output_path}
            )

        duration = parse_duration(stderr)
        logger.info("ffmpeg_completed", stage=stage, elapsed=f"{elapsed:.2f}s", duration=duration)
        return FFmpegResult(completed.returncode, completed.stdout or "", stderr, duration, elapsed)
