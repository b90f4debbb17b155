"""
Durable storage for rendered artifacts.

Provides a unified interface over a local directory (development) and
AWS S3 using fsspec, so the render executor's publish stage does not care
where outputs land.

Usage:
    >>> storage = get_storage_backend()
    >>> url = await storage.upload_file("/tmp/out.mp4", "renders/task-123/out.mp4")
"""

import os
import logging
from abc import ABC, abstractmethod
from pathlib import Path
import fsspec
import asyncio
from functools import partial
import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """
    Abstract interface for artifact storage.
    """

    @abstractmethod
    async def upload_file(self, local_path: str, cloud_path: str) -> str:
        """
        Upload file from local filesystem to storage.

        Args:
            local_path: Path to local file
            cloud_path: Destination key (e.g., "renders/task-123/assembly.mp4")

        Returns:
            URL to access the file

        Raises:
            FileNotFoundError: If local file doesn't exist
            OSError / ClientError: If upload fails
        """
        pass

    @abstractmethod
    async def exists(self, cloud_path: str) -> bool:
        """Check if a key exists in storage."""
        pass


class LocalStorageBackend(StorageBackend):
    """
    Filesystem storage served from PUBLIC_BASE_URL.

    Example:
        >>> storage = LocalStorageBackend("./storage", "http://localhost:8000/storage")
        >>> url = await storage.upload_file("/tmp/out.mp4", "renders/task-123/out.mp4")
        >>> url
        'http://localhost:8000/storage/renders/task-123/out.mp4'
    """

    def __init__(self, root_dir: str, public_base_url: str):
        self.root_dir = Path(root_dir).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.fs = fsspec.filesystem("file")
        logger.info(f"Initialized local storage backend at: {self.root_dir}")

    def _get_full_path(self, cloud_path: str) -> str:
        return str(self.root_dir / cloud_path)

    def _get_public_url(self, cloud_path: str) -> str:
        return f"{self.public_base_url}/{cloud_path}"

    async def upload_file(self, local_path: str, cloud_path: str) -> str:
        if not os.path.exists(local_path):
            raise FileNotFoundError(f"Local file not found: {local_path}")

        full_path = self._get_full_path(cloud_path)
        Path(full_path).parent.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, partial(self.fs.put, local_path, full_path))

        url = self._get_public_url(cloud_path)
        logger.info(f"Stored {local_path} at {full_path}")
        return url

    async def exists(self, cloud_path: str) -> bool:
        return os.path.exists(self._get_full_path(cloud_path))


class S3StorageBackend(StorageBackend):
    """
    AWS S3 storage implementation using s3fs.

    Returned URLs are presigned so outputs are viewable without making the
    bucket public.

    Example:
        >>> storage = S3StorageBackend(
        ...     bucket="my-render-bucket",
        ...     aws_access_key="AKIA...",
        ...     aws_secret_key="...",
        ...     region="us-east-1"
        ... )
        >>> url = await storage.upload_file("/tmp/out.mp4", "renders/task-123/out.mp4")
    """

    def __init__(
        self,
        bucket: str,
        aws_access_key: str,
        aws_secret_key: str,
        region: str = "us-east-1",
        url_expiry: int = 3600
    ):
        """
        Initialize S3 storage backend.

        Args:
            bucket: S3 bucket name
            aws_access_key: AWS access key ID
            aws_secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            url_expiry: Lifetime of returned presigned URLs in seconds
        """
        self.bucket = bucket
        self.region = region
        self.url_expiry = url_expiry

        # Initialize s3fs filesystem for file operations
        self.fs = fsspec.filesystem(
            's3',
            key=aws_access_key,
            secret=aws_secret_key,
            client_kwargs={'region_name': region}
        )

        # Initialize boto3 client for presigned URL generation
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=aws_access_key,
            aws_secret_access_key=aws_secret_key,
            region_name=region
        )

        logger.info(f"Initialized S3 storage backend with bucket: {bucket}")

    def _get_full_path(self, cloud_path: str) -> str:
        """Convert cloud path to full S3 path."""
        return f"{self.bucket}/{cloud_path}"

    def generate_presigned_url(self, cloud_path: str, expiry: int = 3600) -> str:
        """
        Generate a presigned URL for time-limited access to an S3 object.

        Raises:
            ClientError: If URL generation fails
        """
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': cloud_path},
                ExpiresIn=expiry
            )
        except ClientError as e:
            logger.error(f"Failed to generate presigned URL for {cloud_path}: {e}")
            raise

    async def upload_file(self, local_path: str, cloud_path: str) -> str:
        """Upload file to S3 and return a presigned URL."""
        if not os.path.exists(local_path):
            raise FileNotFoundError(f"Local file not found: {local_path}")

        full_path = self._get_full_path(cloud_path)
        logger.info(f"Uploading {local_path} to s3://{full_path}")

        try:
            # Run blocking I/O in thread pool
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(
                None,
                partial(self.fs.put, local_path, full_path)
            )

            url = self.generate_presigned_url(cloud_path, self.url_expiry)
            logger.info(f"Upload successful: s3://{full_path}")
            return url

        except (OSError, ClientError) as e:
            logger.error(f"Upload failed: {e}")
            raise

    async def exists(self, cloud_path: str) -> bool:
        """Check if file exists in S3."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            partial(self.fs.exists, self._get_full_path(cloud_path))
        )


def get_storage_backend() -> StorageBackend:
    """
    Factory function to get storage backend based on environment configuration.

    Reads STORAGE_BACKEND and returns the matching implementation.

    Raises:
        ValueError: If storage backend is invalid or required config is missing
    """
    from config import settings

    backend_type = settings.STORAGE_BACKEND.lower()

    if backend_type == "local":
        return LocalStorageBackend(
            root_dir=settings.LOCAL_STORAGE_DIR,
            public_base_url=settings.PUBLIC_BASE_URL
        )

    elif backend_type == "s3":
        if not settings.STORAGE_BUCKET:
            raise ValueError("STORAGE_BUCKET environment variable is required")
        if not settings.AWS_ACCESS_KEY_ID:
            raise ValueError("AWS_ACCESS_KEY_ID environment variable is required")
        if not settings.AWS_SECRET_ACCESS_KEY:
            raise ValueError("AWS_SECRET_ACCESS_KEY environment variable is required")

        return S3StorageBackend(
            bucket=settings.STORAGE_BUCKET,
            aws_access_key=settings.AWS_ACCESS_KEY_ID,
            aws_secret_key=settings.AWS_SECRET_ACCESS_KEY,
            region=settings.AWS_REGION,
            url_expiry=settings.PRESIGNED_URL_EXPIRY
        )

    else:
        raise ValueError(
            f"Invalid STORAGE_BACKEND: {backend_type}. "
            f"Must be 'local' or 's3'"
        )
