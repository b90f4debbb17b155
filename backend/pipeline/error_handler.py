"""
Error handling for the creative render pipeline.

Provides structured error handling with:
- A closed taxonomy of error types shared by the executor and retry scheduler
- Retryable defaults per error type (only validation errors are fatal)
- A human-readable suggested fix for every failure
- Retry delay and exception categorization helpers
"""

import asyncio
import subprocess
from enum import Enum
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    """
    Enumeration of error types surfaced by the render pipeline.

    Every operational failure of the executor or retry scheduler is
    reported as exactly one of these.
    """

    VALIDATION_ERROR = "validation_error"
    ENGINE_ERROR = "engine_error"
    FFMPEG_ERROR = "ffmpeg_error"
    DOWNLOAD_ERROR = "download_error"
    UPLOAD_ERROR = "upload_error"
    TIMEOUT_ERROR = "timeout_error"


SUGGESTED_FIXES: Dict[ErrorType, str] = {
    ErrorType.VALIDATION_ERROR: "Input validation failed. Check video format and parameters.",
    ErrorType.ENGINE_ERROR: "Try using a different video engine or switch to FFMPEG-only mode",
    ErrorType.FFMPEG_ERROR: "Check input video format compatibility. Try converting to MP4 first.",
    ErrorType.DOWNLOAD_ERROR: "Source asset could not be fetched. Check the URL is reachable; will retry automatically.",
    ErrorType.UPLOAD_ERROR: "Check network connection. File may be too large.",
    ErrorType.TIMEOUT_ERROR: "Processing took too long. Try with a shorter video.",
}


class PipelineError(Exception):
    """
    Base exception for render pipeline errors.

    Carries the stage that failed, the error type, whether a resubmission
    can help, and a suggested fix for operators and end users.

    Example:
        >>> raise PipelineError(
        ...     ErrorType.FFMPEG_ERROR,
        ...     "ffmpeg exited with code 1",
        ...     stage="execute",
        ...     details={"returncode": 1}
        ... )
    """

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        stage: str = "unknown",
        retryable: Optional[bool] = None,
        suggested_fix: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize pipeline error.

        Args:
            error_type: Error type from ErrorType enum
            message: Detailed error message
            stage: Pipeline stage that failed (probe, fetch, transform, execute, publish, ...)
            retryable: Override for the type's retryable default
            suggested_fix: Override for the type's suggested fix
            details: Additional context (URLs, return codes, stderr tail, etc.)
        """
        self.error_type = ErrorType(error_type)
        self.message = message
        self.stage = stage
        self.retryable = (
            retryable if retryable is not None
            else self.error_type != ErrorType.VALIDATION_ERROR
        )
        self.suggested_fix = suggested_fix or SUGGESTED_FIXES[self.error_type]
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for API responses and persisted metadata.

        Example:
            >>> error = PipelineError(ErrorType.UPLOAD_ERROR, "S3 refused", stage="publish")
            >>> error.to_dict()["errorType"]
            'upload_error'
        """
        return {
            "stage": self.stage,
            "errorType": self.error_type.value,
            "message": self.message,
            "retryable": self.retryable,
            "suggestedFix": self.suggested_fix,
            "details": self.details
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineError":
        """Rebuild an error persisted with to_dict()"""
        return cls(
            ErrorType(data["errorType"]),
            data.get("message", ""),
            stage=data.get("stage", "unknown"),
            retryable=data.get("retryable"),
            suggested_fix=data.get("suggestedFix"),
            details=data.get("details")
        )

    def log_error(self) -> None:
        """
        Log error with appropriate level and context.

        - Validation errors: WARNING (caller input issues)
        - Retryable errors: WARNING
        - Everything else: ERROR
        """
        log_data = self.to_dict()

        if self.error_type == ErrorType.VALIDATION_ERROR:
            logger.warning(f"Validation error: {log_data}")
        elif self.retryable:
            logger.warning(f"Retryable error: {log_data}")
        else:
            logger.error(f"Pipeline error: {log_data}")

    def __str__(self) -> str:
        return f"{self.error_type.value} [{self.stage}]: {self.message}"


def should_retry(error: Exception) -> bool:
    """
    Determines if an error is transient and should be retried.

    Args:
        error: Exception to check

    Returns:
        True if a resubmission may succeed, False otherwise

    Example:
        >>> should_retry(PipelineError(ErrorType.TIMEOUT_ERROR, "too slow"))
        True
        >>> should_retry(PipelineError(ErrorType.VALIDATION_ERROR, "no inputs"))
        False
    """
    if isinstance(error, PipelineError):
        return error.retryable

    # Also retry on common Python exceptions
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    return False


def get_retry_delay(attempt: int, base_delay: float = 2.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay for retry attempts.

    Uses formula: min(base_delay * (2 ** attempt), max_delay)

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds (default: 2.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds for this attempt

    Example:
        >>> get_retry_delay(0)
        2.0
        >>> get_retry_delay(10)  # Caps at max_delay
        60.0
    """
    delay = base_delay * (2 ** attempt)
    return min(delay, max_delay)


def categorize_error(error: Exception) -> ErrorType:
    """
    Categorize a generic exception into an ErrorType.

    Useful for converting exceptions that escape a stage into the
    pipeline taxonomy.

    Example:
        >>> categorize_error(asyncio.TimeoutError())
        <ErrorType.TIMEOUT_ERROR: 'timeout_error'>
    """
    if isinstance(error, PipelineError):
        return error.error_type

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, subprocess.TimeoutExpired)):
        return ErrorType.TIMEOUT_ERROR

    if isinstance(error, (ValueError, TypeError, KeyError)):
        return ErrorType.VALIDATION_ERROR

    if isinstance(error, subprocess.CalledProcessError):
        return ErrorType.FFMPEG_ERROR

    if isinstance(error, ConnectionError):
        return ErrorType.DOWNLOAD_ERROR

    # Disk and permission problems surface at the transcoder step
    return ErrorType.FFMPEG_ERROR


class ValidationError(PipelineError):
    """
    Error for input validation failures.

    Convenience subclass; never retryable.
    """

    def __init__(
        self,
        message: str,
        stage: str = "validate",
        field: Optional[str] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field

        super().__init__(
            ErrorType.VALIDATION_ERROR,
            message,
            stage=stage,
            retryable=False,
            details=error_details
        )
