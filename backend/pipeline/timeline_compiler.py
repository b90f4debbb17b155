"""
Timeline compiler: resolved actions + ordered segments -> output timeline.

Entries are laid end to end from a running cursor, so a compiled timeline
is contiguous and non-overlapping by construction. Removed segments are
skipped (with a warning) without leaving a hole.
"""

import math
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from pipeline.models import (
    AudioTrack,
    ResolvedAction,
    Segment,
    SourceAnalysis,
    TimelineSegment,
    Transformation,
)
from pipeline.render_config import VOICEOVER_FADE_OUT_MAX_MS, VOICEOVER_FADE_OUT_RATIO

logger = structlog.get_logger()

IDENTITY = Transformation()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (ms are never negative)."""
    return int(math.floor(value + 0.5))


def segment_timing(duration_ms: int, transformation: Transformation) -> Tuple[int, int, int]:
    """
    Apply trims and speed to one segment.

    Returns:
        (trim_start_ms, trimmed_duration_ms, output_duration_ms); trim_start_ms
        is the offset into the segment, not an absolute source time.
    """
    trim_start = round_half_up(duration_ms * (transformation.trim_percent_start or 0.0))
    trim_end = round_half_up(duration_ms * (transformation.trim_percent_end or 0.0))
    trimmed = duration_ms - trim_start - trim_end
    speed = transformation.speed_multiplier or 1.0
    return trim_start, trimmed, round_half_up(trimmed / speed)


def _index_actions(actions: Sequence[ResolvedAction]) -> Tuple[Set[str], Dict[str, Transformation], List[str]]:
    """Removal set and per-segment transform map. The first action touching a segment wins."""
    removed: Set[str] = set()
    transforms: Dict[str, Transformation] = {}
    warnings: List[str] = []

    for action in actions:
        if not action.resolved:
            continue
        for segment_id in action.target_segments:
            if segment_id in removed or segment_id in transforms:
                warnings.append(
                    f"Segment {segment_id} already transformed; ignoring {action.source_action} ({action.action_id})"
                )
                continue
            if action.transformation.remove:
                removed.add(segment_id)
            else:
                transforms[segment_id] = action.transformation

    return removed, transforms, warnings


def compile_timeline(
    segments: Sequence[Segment],
    actions: Sequence[ResolvedAction],
    source_video_id: Optional[str] = None,
    asset_url: str = "",
) -> Tuple[List[TimelineSegment], List[str]]:
    """
    Compile segments and resolved actions into timeline entries.

    Args:
        segments: Segments of the source analysis, any order
        actions: Resolved actions to apply (unresolved ones are ignored)
        source_video_id: Id of the source video recorded on each entry
        asset_url: URL of the source media each entry trims from

    Returns:
        (timeline, warnings)
    """
    ordered = sorted(segments, key=lambda s: s.start_ms)
    removed, transforms, warnings = _index_actions(actions)

    timeline: List[TimelineSegment] = []
    cursor = 0

    for segment in ordered:
        if segment.id in removed:
            warnings.append(f"Segment {segment.id} ({segment.type}) removed by action")
            continue

        transformation = transforms.get(segment.id, IDENTITY)
        trim_start, trimmed, output_duration = segment_timing(segment.duration_ms, transformation)

        timeline.append(TimelineSegment(
            segment_id=f"ts_{len(timeline)}",
            source_video_id=source_video_id,
            source_segment_id=segment.id,
            asset_url=asset_url,
            trim_start_ms=segment.start_ms + trim_start,
            trim_end_ms=segment.start_ms + trim_start + trimmed,
            source_duration_ms=trimmed,
            timeline_start_ms=cursor,
            timeline_end_ms=cursor + output_duration,
            output_duration_ms=output_duration,
            speed_multiplier=transformation.speed_multiplier or 1.0,
        ))
        cursor += output_duration

    logger.debug("timeline_compiled", entries=len(timeline), total_ms=cursor, skipped=len(removed))
    return timeline, warnings


def build_audio_tracks(analysis: SourceAnalysis, total_duration_ms: int, asset_url: str = "") -> List[AudioTrack]:
    """
    Voiceover track spanning the compiled timeline.

    Only produced when the source carries a voiceover and the timeline is
    non-empty.
    """
    if not analysis.audio.has_voiceover or total_duration_ms <= 0:
        return []

    return [AudioTrack(
        audio_id="audio_0",
        asset_url=asset_url,
        trim_start_ms=0,
        trim_end_ms=analysis.metadata.duration_ms,
        timeline_start_ms=0,
        timeline_end_ms=total_duration_ms,
        volume=1.0,
        fade_in_ms=0,
        fade_out_ms=min(VOICEOVER_FADE_OUT_MAX_MS, round_half_up(total_duration_ms * VOICEOVER_FADE_OUT_RATIO)),
        track="voiceover",
    )]
