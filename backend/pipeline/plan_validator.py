"""
Structural checks on a compiled timeline.

Only overlaps make a plan uncompilable; gaps and duration bounds are
advisory warnings.
"""

from typing import List, Sequence

from pipeline.models import AudioTrack, PlanStatus, TimelineSegment, ValidationReport
from pipeline.render_config import MAX_OUTPUT_DURATION_MS, MIN_OUTPUT_DURATION_MS


def validate_timeline(
    timeline: Sequence[TimelineSegment],
    audio_tracks: Sequence[AudioTrack] = (),
) -> ValidationReport:
    """
    Scan adjacent timeline entries for gaps and overlaps and check duration bounds.

    Args:
        timeline: Timeline entries in playback order
        audio_tracks: Audio tracks compiled alongside the timeline

    Returns:
        ValidationReport
    """
    warnings: List[str] = []
    has_gaps = False
    has_overlaps = False

    total_duration_ms = timeline[-1].timeline_end_ms if timeline else 0

    for i in range(1, len(timeline)):
        prev_end = timeline[i - 1].timeline_end_ms
        curr_start = timeline[i].timeline_start_ms

        if curr_start > prev_end:
            has_gaps = True
            warnings.append(f"Gap detected: {prev_end}ms to {curr_start}ms ({curr_start - prev_end}ms)")
        elif curr_start < prev_end:
            has_overlaps = True
            warnings.append(
                f"Overlap detected: segment {i} starts at {curr_start}ms but previous ends at {prev_end}ms"
            )

    if total_duration_ms < MIN_OUTPUT_DURATION_MS:
        warnings.append(f"Very short output: {total_duration_ms}ms (min 15s)")
    elif total_duration_ms > MAX_OUTPUT_DURATION_MS:
        warnings.append(f"Very long output: {total_duration_ms}ms (>30s)")

    return ValidationReport(
        total_duration_ms=total_duration_ms,
        segment_count=len(timeline),
        audio_track_count=len(audio_tracks),
        has_gaps=has_gaps,
        has_overlaps=has_overlaps,
        warnings=warnings,
    )


def plan_status(report: ValidationReport) -> PlanStatus:
    """Overlaps are the only fatal finding."""
    return PlanStatus.UNCOMPILABLE if report.has_overlaps else PlanStatus.COMPILABLE
