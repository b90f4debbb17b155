"""
Tests for the timeline compiler and duration arithmetic.
"""

import pytest

from pipeline.models import (
    AnalysisAudio,
    AnalysisMetadata,
    ResolvedAction,
    Segment,
    SourceAnalysis,
    Transformation,
)
from pipeline.timeline_compiler import (
    build_audio_tracks,
    compile_timeline,
    round_half_up,
    segment_timing,
)


def resolved(action_id, targets, **transformation):
    return ResolvedAction(
        action_id=action_id,
        source_action="test_action",
        target_segments=targets,
        transformation=Transformation(**transformation),
        resolved=True,
    )


class TestDurationArithmetic:
    """Trim then retime, rounding half up."""

    def test_compress_4000ms_segment(self):
        t = Transformation(speed_multiplier=1.25, trim_percent_start=0.1, trim_percent_end=0.1)

        trim_start, trimmed, output = segment_timing(4000, t)

        assert trim_start == 400
        assert trimmed == 3200
        assert output == 2560

    def test_identity_keeps_duration(self):
        assert segment_timing(3000, Transformation()) == (0, 3000, 3000)

    def test_slow_down_lengthens(self):
        _, _, output = segment_timing(900, Transformation(speed_multiplier=0.9))
        assert output == 1000

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.4999) == 2


class TestCompileTimeline:
    """Layout, removal and contiguity."""

    def test_compress_segment_from_1000_to_5000(self):
        segments = [Segment(id="s1", type="body", start_ms=1000, end_ms=5000)]
        action = resolved("a1", ["s1"], speed_multiplier=1.25, trim_percent_start=0.1, trim_percent_end=0.1)

        timeline, warnings = compile_timeline(segments, [action], source_video_id="v1", asset_url="file:///v1.mp4")

        entry = timeline[0]
        assert entry.trim_start_ms == 1400
        assert entry.trim_end_ms == 4600
        assert entry.source_duration_ms == 3200
        assert entry.output_duration_ms == 2560
        assert entry.timeline_start_ms == 0
        assert entry.timeline_end_ms == 2560
        assert entry.speed_multiplier == 1.25
        assert entry.asset_url == "file:///v1.mp4"
        assert warnings == []

    def test_removed_segment_is_skipped_without_gap(self, segments):
        timeline, warnings = compile_timeline(segments, [resolved("a1", ["seg_body"], remove=True)])

        assert [e.source_segment_id for e in timeline] == ["seg_hook", "seg_cta"]
        assert [e.segment_id for e in timeline] == ["ts_0", "ts_1"]
        assert timeline[1].timeline_start_ms == timeline[0].timeline_end_ms == 3000
        assert warnings == ["Segment seg_body (body) removed by action"]

    def test_segments_sorted_by_start(self, segments):
        timeline, _ = compile_timeline(list(reversed(segments)), [])

        assert [e.source_segment_id for e in timeline] == ["seg_hook", "seg_body", "seg_cta"]

    @pytest.mark.parametrize("transformation", [
        {"speed_multiplier": 1.25, "trim_percent_start": 0.1, "trim_percent_end": 0.1},
        {"speed_multiplier": 0.9},
        {"trim_percent_end": 0.5},
        {"remove": True},
    ])
    def test_timeline_is_contiguous(self, segments, transformation):
        timeline, _ = compile_timeline(segments, [resolved("a1", ["seg_body"], **transformation)])

        assert timeline[0].timeline_start_ms == 0
        for prev, curr in zip(timeline, timeline[1:]):
            assert curr.timeline_start_ms == prev.timeline_end_ms
        for entry in timeline:
            assert entry.timeline_end_ms - entry.timeline_start_ms == entry.output_duration_ms

    def test_unresolved_actions_are_ignored(self, segments):
        failed = ResolvedAction(
            action_id="a1",
            source_action="replace_segment",
            target_segments=["seg_body"],
            resolved=False,
            resolution_error="replace_segment requires external asset reference",
        )

        timeline, warnings = compile_timeline(segments, [failed])

        assert len(timeline) == 3
        assert timeline[-1].timeline_end_ms == 11000
        assert warnings == []

    def test_first_action_per_segment_wins(self, segments):
        first = resolved("a1", ["seg_body"], speed_multiplier=2.0)
        second = resolved("a2", ["seg_body"], remove=True)

        timeline, warnings = compile_timeline(segments, [first, second])

        body = timeline[1]
        assert body.source_segment_id == "seg_body"
        assert body.output_duration_ms == 3000
        assert len(warnings) == 1
        assert "already transformed" in warnings[0]


class TestAudioTracks:
    """Voiceover track under the compiled timeline."""

    def test_no_voiceover_no_tracks(self, analysis):
        assert build_audio_tracks(analysis, 11000) == []

    def test_voiceover_spans_timeline_with_fade(self, segments):
        analysis = SourceAnalysis(
            id="a",
            segments=segments,
            metadata=AnalysisMetadata(duration_ms=11000),
            audio=AnalysisAudio(has_voiceover=True),
        )

        tracks = build_audio_tracks(analysis, 9000, asset_url="file:///v.mp4")

        assert len(tracks) == 1
        track = tracks[0]
        assert track.timeline_start_ms == 0
        assert track.timeline_end_ms == 9000
        assert track.fade_out_ms == 450
        assert track.asset_url == "file:///v.mp4"

    def test_fade_out_is_capped(self, segments):
        analysis = SourceAnalysis(id="a", segments=segments, audio=AnalysisAudio(has_voiceover=True))

        tracks = build_audio_tracks(analysis, 30000)

        assert tracks[0].fade_out_ms == 500
