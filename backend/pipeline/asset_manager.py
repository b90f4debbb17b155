"""
Asset manager for per-task working areas.

Each render task gets its own scratch directory:
- Fetching remote and local source assets with retry
- Writing generated inputs (subtitle files, placeholders)
- Allocating output paths
- Guaranteed removal when the task finishes, success or failure
"""

import os
import asyncio
import hashlib
import aiofiles
import aiohttp
from pathlib import Path
from typing import Dict, Optional, Sequence
from urllib.parse import urlparse
import shutil
import logging

from pipeline.error_handler import ErrorType, PipelineError

logger = logging.getLogger(__name__)


class AssetManager:
    """
    Owns the working area of a single render task.

    Layout:
    {base_path}/{task_id}/
        inputs/     - Downloaded source videos, images and music
        work/       - Intermediate files (assembled clips, subtitle files)
        outputs/    - Files to publish

    Use as an async context manager so the directory is always removed:

    Example:
        >>> async with AssetManager("task-123") as assets:
        ...     path = await assets.fetch("https://example.com/clip.mp4")
    """

    def __init__(
        self,
        task_id: str,
        base_path: str = "/tmp/render_tasks",
        download_timeout: int = 300,
        max_retries: int = 3
    ):
        """
        Initialize asset manager for a specific task.

        Args:
            task_id: Unique identifier of the render task
            base_path: Base directory for all working areas
            download_timeout: Per-download timeout in seconds
            max_retries: Download attempts before giving up
        """
        self.task_id = task_id
        self.base_path = Path(base_path)
        self.task_dir = self.base_path / task_id
        self.download_timeout = download_timeout
        self.max_retries = max_retries

        self.inputs_dir = self.task_dir / "inputs"
        self.work_dir = self.task_dir / "work"
        self.outputs_dir = self.task_dir / "outputs"

    async def __aenter__(self) -> "AssetManager":
        await self.create_task_directory()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    async def create_task_directory(self) -> None:
        """Create the working area and its subdirectories."""
        try:
            self.task_dir.mkdir(parents=True, exist_ok=True)
            self.inputs_dir.mkdir(exist_ok=True)
            self.work_dir.mkdir(exist_ok=True)
            self.outputs_dir.mkdir(exist_ok=True)

            logger.info(f"Created working area for {self.task_id}")
        except OSError as e:
            logger.error(f"Failed to create working area for {self.task_id}: {e}")
            raise

    @staticmethod
    def local_filename(url: str) -> str:
        """Stable filename for a source URL: md5 of the URL plus its extension."""
        suffix = Path(urlparse(url).path).suffix or ".bin"
        return f"{hashlib.md5(url.encode()).hexdigest()}{suffix}"

    async def download_file(self, url: str, filename: str) -> str:
        """
        Stream a remote file into inputs/.

        Raises:
            aiohttp.ClientError: If download fails
            asyncio.TimeoutError: If download times out
        """
        file_path = self.inputs_dir / filename

        try:
            timeout = aiohttp.ClientTimeout(total=self.download_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    response.raise_for_status()

                    # Download file in chunks to handle large files
                    async with aiofiles.open(file_path, 'wb') as f:
                        async for chunk in response.content.iter_chunked(8192):
                            await f.write(chunk)

            logger.info(f"Downloaded {url} to {file_path}")
            return str(file_path)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to download {url}: {e}")
            # Clean up partial download
            if file_path.exists():
                file_path.unlink()
            raise

    async def download_with_retry(self, url: str, filename: str) -> str:
        """
        Download with exponential backoff retry (1s, 2s, 4s, ...).

        Raises:
            aiohttp.ClientError / asyncio.TimeoutError from the last attempt
        """
        for attempt in range(self.max_retries):
            try:
                return await self.download_file(url, filename)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"All {self.max_retries} download attempts failed for {url}")
                    raise

                delay = 2 ** attempt
                logger.warning(
                    f"Download attempt {attempt + 1} failed for {url}, "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)

        raise RuntimeError(f"Failed to download {url} after {self.max_retries} attempts")

    async def copy_local(self, source: str, filename: str) -> str:
        """Copy a local path (or file:// URL) into inputs/."""
        path = urlparse(source).path if source.startswith("file://") else source
        if not os.path.isfile(path):
            raise FileNotFoundError(path)

        target = self.inputs_dir / filename
        await asyncio.to_thread(shutil.copyfile, path, target)
        return str(target)

    async def fetch(self, source: str) -> str:
        """
        Bring one asset into the working area.

        Raises:
            PipelineError: download_error (retryable) on any failure
        """
        filename = self.local_filename(source)
        scheme = urlparse(source).scheme

        try:
            if scheme in ("http", "https"):
                return await self.download_with_retry(source, filename)
            return await self.copy_local(source, filename)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise PipelineError(
                ErrorType.DOWNLOAD_ERROR,
                f"Failed to fetch {source}: {e}",
                stage="fetch",
                details={"url": source, "exception": type(e).__name__}
            ) from e

    async def fetch_all(self, sources: Sequence[str]) -> Dict[str, str]:
        """
        Fetch every distinct source once, in order.

        Returns:
            Mapping of source URL -> local path

        Raises:
            PipelineError: download_error on the first failed fetch
        """
        local_paths: Dict[str, str] = {}
        for source in sources:
            if source and source not in local_paths:
                local_paths[source] = await self.fetch(source)
        return local_paths

    async def save_text(self, content: str, filename: str) -> str:
        """Write a text file (e.g. an SRT) into work/."""
        file_path = self.work_dir / filename
        async with aiofiles.open(file_path, 'w', encoding='utf-8') as f:
            await f.write(content)
        return str(file_path)

    def output_path(self, filename: str) -> str:
        return str(self.outputs_dir / filename)

    @staticmethod
    def validate_file(file_path: str, min_size: int = 1) -> bool:
        """True if the file exists and is at least min_size bytes."""
        path = Path(file_path)
        if not path.exists():
            logger.warning(f"File does not exist: {path}")
            return False

        file_size = path.stat().st_size
        if file_size < min_size:
            logger.warning(f"File too small ({file_size} bytes): {path}")
            return False

        return True

    async def cleanup(self) -> None:
        """
        Remove the whole working area.

        Safe to call even if the directory doesn't exist.
        """
        try:
            if self.task_dir.exists():
                await asyncio.to_thread(shutil.rmtree, self.task_dir)
                logger.info(f"Cleaned up working area: {self.task_id}")
        except OSError as e:
            logger.error(f"Failed to cleanup working area {self.task_id}: {e}")
            raise

    def __repr__(self) -> str:
        return f"AssetManager(task_id='{self.task_id}', path='{self.task_dir}')"
