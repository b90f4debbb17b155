"""
Tests for the pipeline error taxonomy and retry helpers.
"""

import asyncio
import subprocess

import pytest

from pipeline.error_handler import (
    ErrorType,
    PipelineError,
    SUGGESTED_FIXES,
    ValidationError,
    categorize_error,
    get_retry_delay,
    should_retry,
)


def test_pipeline_error_to_dict():
    """Serialized errors carry every field the API and metadata expose."""
    error = PipelineError(
        ErrorType.FFMPEG_ERROR,
        "ffmpeg exited with code 1",
        stage="execute",
        details={"returncode": 1}
    )

    error_dict = error.to_dict()

    assert set(error_dict) == {"stage", "errorType", "message", "retryable", "suggestedFix", "details"}
    assert error_dict["errorType"] == "ffmpeg_error"
    assert error_dict["stage"] == "execute"
    assert error_dict["details"]["returncode"] == 1
    assert error_dict["suggestedFix"] == SUGGESTED_FIXES[ErrorType.FFMPEG_ERROR]


@pytest.mark.parametrize("error_type", list(ErrorType))
def test_retryable_defaults(error_type):
    """Only validation errors are fatal by default."""
    error = PipelineError(error_type, "boom")
    assert error.retryable == (error_type != ErrorType.VALIDATION_ERROR)
    assert error.suggested_fix


def test_retryable_override():
    error = PipelineError(ErrorType.UPLOAD_ERROR, "refused", retryable=False, suggested_fix="Call support")
    assert error.retryable is False
    assert error.suggested_fix == "Call support"


def test_from_dict_round_trip():
    original = PipelineError(ErrorType.DOWNLOAD_ERROR, "404", stage="fetch", details={"url": "http://x/a.mp4"})
    rebuilt = PipelineError.from_dict(original.to_dict())

    assert rebuilt.error_type == ErrorType.DOWNLOAD_ERROR
    assert rebuilt.stage == "fetch"
    assert rebuilt.retryable is True
    assert rebuilt.details == {"url": "http://x/a.mp4"}


def test_str_includes_type_and_stage():
    error = PipelineError(ErrorType.TIMEOUT_ERROR, "too slow", stage="execute")
    assert str(error) == "timeout_error [execute]: too slow"


def test_validation_error():
    """ValidationError records the offending field and is never retryable."""
    error = ValidationError("videoId is required", field="videoId")

    assert error.error_type == ErrorType.VALIDATION_ERROR
    assert error.details["field"] == "videoId"
    assert error.retryable is False
    assert should_retry(error) is False


def test_should_retry_logic():
    assert should_retry(PipelineError(ErrorType.ENGINE_ERROR, "down")) is True
    assert should_retry(PipelineError(ErrorType.TIMEOUT_ERROR, "slow")) is True
    assert should_retry(TimeoutError()) is True
    assert should_retry(ConnectionError()) is True
    assert should_retry(ValueError()) is False


def test_retry_delay_calculation():
    """Exponential backoff capped at max_delay."""
    assert get_retry_delay(0) == 2.0
    assert get_retry_delay(1) == 4.0
    assert get_retry_delay(2) == 8.0
    assert get_retry_delay(10) == 60.0
    assert get_retry_delay(3, base_delay=1.0, max_delay=5.0) == 5.0


def test_categorize_error():
    assert categorize_error(asyncio.TimeoutError()) == ErrorType.TIMEOUT_ERROR
    assert categorize_error(subprocess.TimeoutExpired("ffmpeg", 1)) == ErrorType.TIMEOUT_ERROR
    assert categorize_error(KeyError("task")) == ErrorType.VALIDATION_ERROR
    assert categorize_error(subprocess.CalledProcessError(1, "ffmpeg")) == ErrorType.FFMPEG_ERROR
    assert categorize_error(ConnectionError()) == ErrorType.DOWNLOAD_ERROR
    assert categorize_error(PermissionError()) == ErrorType.FFMPEG_ERROR
    assert categorize_error(PipelineError(ErrorType.UPLOAD_ERROR, "x")) == ErrorType.UPLOAD_ERROR
