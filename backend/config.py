"""
Configuration management for the render pipeline service
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Settings:
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./render_pipeline.db")

    # Redis
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "50"))
    REDIS_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    REDIS_SOCKET_CONNECT_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5"))
    REDIS_RETRY_ON_TIMEOUT: bool = os.getenv("REDIS_RETRY_ON_TIMEOUT", "true").lower() == "true"
    REDIS_HEALTH_CHECK_INTERVAL: int = int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30"))

    # CORS
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    # Application
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_KEY: str = os.getenv("API_KEY", "")  # Comma-separated; empty disables auth

    # Render queue
    RENDER_QUEUE_NAME: str = os.getenv("RENDER_QUEUE_NAME", "render_task_queue")
    RENDER_STATUS_CHANNEL: str = os.getenv("RENDER_STATUS_CHANNEL", "render_task_status")
    RENDER_TASK_TTL: int = int(os.getenv("RENDER_TASK_TTL", "86400"))  # 24 hours
    QUEUE_MAX_ATTEMPTS: int = int(os.getenv("QUEUE_MAX_ATTEMPTS", "3"))
    QUEUE_DEFAULT_PRIORITY: int = int(os.getenv("QUEUE_DEFAULT_PRIORITY", "50"))
    QUEUE_CLAIM_TIMEOUT: int = int(os.getenv("QUEUE_CLAIM_TIMEOUT", "1"))

    # Worker pool
    RENDER_WORKER_CONCURRENCY: int = int(os.getenv("RENDER_WORKER_CONCURRENCY", "2"))

    # Transcoder
    FFMPEG_PATH: Optional[str] = os.getenv("FFMPEG_PATH", None)  # Optional path to ffmpeg executable
    FFMPEG_TIMEOUT: int = int(os.getenv("FFMPEG_TIMEOUT", "120"))
    FFMPEG_PROBE_TIMEOUT: int = int(os.getenv("FFMPEG_PROBE_TIMEOUT", "10"))

    # Scratch space for per-task working areas
    RENDER_WORK_DIR: str = os.getenv("RENDER_WORK_DIR", "/tmp/render_tasks")

    # Asset downloads
    DOWNLOAD_TIMEOUT: int = int(os.getenv("DOWNLOAD_TIMEOUT", "300"))
    DOWNLOAD_MAX_RETRIES: int = int(os.getenv("DOWNLOAD_MAX_RETRIES", "3"))

    # Retry/fallback ladder
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "4"))

    # Cloud Storage Configuration
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")  # Options: "s3" or "local"
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "")
    LOCAL_STORAGE_DIR: str = os.getenv("LOCAL_STORAGE_DIR", "./storage")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000/storage")

    # AWS S3 Configuration
    AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    PRESIGNED_URL_EXPIRY: int = int(os.getenv("PRESIGNED_URL_EXPIRY", "3600"))  # 1 hour in seconds

    # Upstream content-generation engines (same_engine retries)
    ENGINE_API_URL: str = os.getenv("ENGINE_API_URL", "")
    ENGINE_API_KEY: str = os.getenv("ENGINE_API_KEY", "")
    ENGINE_TIMEOUT: int = int(os.getenv("ENGINE_TIMEOUT", "600"))

    @property
    def cors_origins_list(self) -> list:
        """Parse CORS origins into a list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def ffmpeg_binary(self) -> str:
        """Executable used for every transcoder invocation"""
        return self.FFMPEG_PATH or "ffmpeg"

    def validate_storage_config(self) -> None:
        """
        Validate storage configuration at startup.
        Raises ValueError if the S3 backend lacks a bucket.
        """
        if self.STORAGE_BACKEND not in ("s3", "local"):
            raise ValueError(f"Unknown STORAGE_BACKEND: {self.STORAGE_BACKEND}")
        if self.STORAGE_BACKEND == "s3" and not self.STORAGE_BUCKET:
            raise ValueError("STORAGE_BUCKET is required when STORAGE_BACKEND=s3")


# Global settings instance
settings = Settings()
