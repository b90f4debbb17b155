"""
Turns raw ffmpeg stderr into a short, categorized failure description.

ffmpeg prints hundreds of lines of banner and progress output; the
useful part of a failure is usually one line near the end.
"""

import re
from typing import Dict, Optional


def extract_last_error(stderr: str) -> str:
    """Return the last line that looks like an error, else the last non-empty line."""
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    if not lines:
        return "Unknown FFmpeg error"

    for line in reversed(lines):
        lowered = line.lower()
        if "error" in lowered or "failed" in lowered or "invalid" in lowered:
            return line

    return lines[-1]


def _codec_details(stderr: str) -> Optional[str]:
    match = re.search(r"codec[:\s]+['\"]?([a-z0-9_]+)", stderr, re.IGNORECASE)
    return f"Codec: {match.group(1)}" if match else None


def parse_ffmpeg_error(stderr: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Parse ffmpeg stderr and classify the failure.

    Args:
        stderr: Captured stderr of the failed ffmpeg process

    Returns:
        Dict with code, message, details and last_error_line
    """
    if not stderr:
        return {
            "code": "FFMPEG_NO_OUTPUT",
            "message": "FFmpeg failed with no output",
            "details": None,
            "last_error_line": None,
        }

    lowered = stderr.lower()
    last_error = extract_last_error(stderr)

    def result(code: str, message: str, details: Optional[str]) -> Dict[str, Optional[str]]:
        return {"code": code, "message": message, "details": details, "last_error_line": last_error}

    if "unknown codec" in lowered or "codec not found" in lowered:
        return result("FFMPEG_INVALID_CODEC", "Requested codec not supported", _codec_details(stderr))

    if "encoding failed" in lowered or ("encoder" in lowered and "error" in lowered):
        return result("FFMPEG_ENCODING_FAILED", "Video encoding failed", last_error)

    if "invalid data" in lowered or "invalid file" in lowered or "moov atom not found" in lowered:
        return result("INPUT_FILE_CORRUPTED", "Source file is corrupted or invalid", last_error)

    if "could not write header" in lowered or "incompatible" in lowered:
        return result("FFMPEG_INCOMPATIBLE_FORMATS", "Input formats are incompatible", last_error)

    if "pts" in lowered and ("dts" in lowered or "timestamp" in lowered):
        return result("FFMPEG_AUDIO_SYNC_ERROR", "Audio/video synchronization failed", "Timestamp mismatch detected")

    if "permission denied" in lowered or "access denied" in lowered:
        return result("STORAGE_WRITE_FAILED", "Permission denied writing output file", last_error)

    if "no space" in lowered or "disk full" in lowered:
        return result("STORAGE_DISK_FULL", "Server disk space full", None)

    if "out of memory" in lowered or "cannot allocate" in lowered:
        return result("RESOURCE_OUT_OF_MEMORY", "Insufficient memory to process video", last_error)

    return result("FFMPEG_ERROR_UNKNOWN", "FFmpeg processing failed", last_error)


def describe_ffmpeg_error(stderr: Optional[str]) -> str:
    """One-line message suitable for PipelineError.message"""
    parsed = parse_ffmpeg_error(stderr)
    if parsed["details"]:
        return f"{parsed['message']}: {parsed['details']}"
    return parsed["message"]
