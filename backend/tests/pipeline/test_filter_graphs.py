"""
Tests for the ffmpeg argument builders.

Builders are pure, so these tests only inspect the generated arguments.
"""

import pytest

from pipeline.error_handler import ErrorType, PipelineError
from pipeline.filter_graphs import (
    TASK_BUILDERS,
    BuildContext,
    build_plan_job,
    build_render_jobs,
    fmt,
    output_ratios,
    required_sources,
    subtitle_srt,
)
from pipeline.models import AssemblyConfig, RenderTask, SubtitleCue, TaskType
from pipeline.plan_builder import compile_plan
from pipeline.render_config import SAFE_PROFILE


def make_task(task_type, videos=("a.mp4",), **fields):
    return RenderTask(taskType=task_type, inputVideos=list(videos), **fields)


def make_ctx(task, config=None, profile=None):
    sources = required_sources(task, config)
    inputs = {s: f"/work/inputs/{i}_{s.split('/')[-1]}" for i, s in enumerate(sources)}
    kwargs = {"profile": profile} if profile else {}
    return BuildContext(task, inputs, "/work/outputs", "/work/work", config=config, **kwargs)


def filter_graph(job):
    return job.args[job.args.index("-filter_complex") + 1]


class TestDispatch:
    """Task type table and helpers."""

    def test_every_renderable_task_type_has_a_builder(self):
        assert set(TASK_BUILDERS) == set(TaskType) - {TaskType.RETRY_SINGLE}

    def test_retry_single_is_rejected(self):
        ctx = make_ctx(make_task("retry_single", videoId="v1"))

        with pytest.raises(PipelineError) as exc_info:
            build_render_jobs(ctx)

        assert exc_info.value.error_type == ErrorType.VALIDATION_ERROR

    def test_hyphenated_task_type_is_accepted(self):
        assert make_task("smart-cut").task_type == TaskType.SMART_CUT

    def test_fmt_strips_trailing_zeros(self):
        assert fmt(1.5) == "1.5"
        assert fmt(3.0) == "3"
        assert fmt(0.1234) == "0.123"

    def test_required_sources_include_images_and_music(self):
        motion = RenderTask(taskType="motion_effects", inputImages=["p.jpg"])
        music = make_task("music_sync", musicUrl="song.mp3")

        assert required_sources(motion) == ["p.jpg"]
        assert required_sources(music) == ["a.mp4", "song.mp3"]

    def test_config_source_videos_used_when_task_has_none(self):
        task = make_task("full_assembly", videos=())
        config = AssemblyConfig(sourceVideos=["x.mp4", "y.mp4"])

        assert required_sources(task, config) == ["x.mp4", "y.mp4"]


class TestSmartCut:
    def test_one_output_per_input(self):
        jobs = build_render_jobs(make_ctx(make_task("smart_cut", videos=["a.mp4", "b.mp4"])))

        assert [j.label for j in jobs] == ["smart_cut_0", "smart_cut_1"]
        args = jobs[0].args
        assert args[args.index("-af") + 1] == (
            "silenceremove=start_periods=1:start_silence=0.5:start_threshold=-50dB"
        )
        assert "libx264" in args
        assert args[-1] == "/work/outputs/smart_cut_0.mp4"


class TestTransitions:
    def test_xfade_chain_offsets(self):
        task = make_task("transitions", videos=["a.mp4", "b.mp4", "c.mp4"], transitions=["whip-pan", "glitch"])

        [job] = build_render_jobs(make_ctx(task))
        graph = filter_graph(job)

        assert "xfade=transition=wipeleft:duration=0.5:offset=1" in graph
        assert "xfade=transition=pixelize:duration=0.5:offset=2[vout]" in graph
        assert "scale=1080:1920:force_original_aspect_ratio=decrease" in graph

    def test_unknown_transition_falls_back_to_fade(self):
        task = make_task("transitions", videos=["a.mp4", "b.mp4"], transitions=["spin"])

        [job] = build_render_jobs(make_ctx(task))

        assert "xfade=transition=fade" in filter_graph(job)

    def test_safe_mode_uses_concat(self):
        task = make_task("transitions", videos=["a.mp4", "b.mp4"], transitions=["slide"])

        [job] = build_render_jobs(make_ctx(task, profile=SAFE_PROFILE))
        graph = filter_graph(job)

        assert "xfade" not in graph
        assert "concat=n=2:v=1:a=0[vout]" in graph
        assert job.args[job.args.index("-preset") + 1] == "veryfast"
        assert job.args[job.args.index("-crf") + 1] == "28"


class TestMotionEffects:
    def test_zoompan_frames(self):
        task = RenderTask(taskType="motion_effects", inputImages=["p.jpg"], motionEffect="pan", motionDuration=2)

        [job] = build_render_jobs(make_ctx(task))
        vf = job.args[job.args.index("-vf") + 1]

        assert "zoompan=" in vf
        assert "on/50" in vf
        assert ":d=50:s=1080x1920:fps=25" in vf
        assert job.args[job.args.index("-t") + 1] == "2"

    def test_default_effect_and_duration(self):
        task = RenderTask(taskType="motion_effects", inputImages=["p.jpg"])

        [job] = build_render_jobs(make_ctx(task))

        assert ":d=75:" in job.args[job.args.index("-vf") + 1]

    def test_unknown_effect(self):
        task = RenderTask(taskType="motion_effects", inputImages=["p.jpg"], motionEffect="spin")

        with pytest.raises(PipelineError, match="Unknown motion effect"):
            build_render_jobs(make_ctx(task))

    def test_safe_mode_renders_static_clip(self):
        task = RenderTask(taskType="motion_effects", inputImages=["p.jpg"])

        [job] = build_render_jobs(make_ctx(task, profile=SAFE_PROFILE))

        assert job.args[:2] == ["-loop", "1"]
        assert "zoompan" not in job.args[job.args.index("-vf") + 1]


class TestFullAssembly:
    def test_pacing_and_cap(self):
        task = make_task("full_assembly", videos=["a.mp4", "b.mp4"], pacing="medium", maxDuration=20)

        [job] = build_render_jobs(make_ctx(task))
        graph = filter_graph(job)

        assert graph.count("trim=duration=3,") == 2
        assert "concat=n=2:v=1:a=0[vout]" in graph
        assert job.args[job.args.index("-t") + 1] == "20"
        assert job.args[-1] == "/work/outputs/assembly.mp4"

    def test_default_pacing_is_fast(self):
        [job] = build_render_jobs(make_ctx(make_task("full_assembly")))

        assert "trim=duration=1.5," in filter_graph(job)
        assert job.args[job.args.index("-t") + 1] == "30"

    def test_no_inputs(self):
        with pytest.raises(PipelineError, match="requires at least 1 input video"):
            build_render_jobs(make_ctx(make_task("full_assembly", videos=())))


class TestMultiRatio:
    def test_one_output_per_ratio(self):
        task = make_task("multi_ratio")
        config = AssemblyConfig(ratios=["9:16", "1:1", "16:9", "4:5"])

        jobs = build_render_jobs(make_ctx(task, config))

        assert [j.output_path.split("/")[-1] for j in jobs] == [
            "output_9x16.mp4", "output_1x1.mp4", "output_16x9.mp4", "output_4x5.mp4"
        ]
        vf = jobs[2].args[jobs[2].args.index("-vf") + 1]
        assert vf.startswith("crop=iw:iw*9/16,scale=1920:1080:force_original_aspect_ratio=decrease")
        assert vf.endswith("pad=1920:1080:(ow-iw)/2:(oh-ih)/2")

    def test_unknown_ratio_skipped_with_warning(self):
        ctx = make_ctx(make_task("multi_ratio"), AssemblyConfig(ratios=["9:16", "3:2"]))

        jobs = build_render_jobs(ctx)

        assert len(jobs) == 1
        assert ctx.warnings == ["Skipping unsupported ratio: 3:2"]

    def test_no_valid_ratio_fails(self):
        ctx = make_ctx(make_task("multi_ratio"), AssemblyConfig(ratios=["3:2"]))

        with pytest.raises(PipelineError) as exc_info:
            build_render_jobs(ctx)

        assert exc_info.value.error_type == ErrorType.VALIDATION_ERROR

    def test_multiple_inputs_are_assembled_first(self):
        task = make_task("multi_ratio", videos=["a.mp4", "b.mp4"])

        jobs = build_render_jobs(make_ctx(task, AssemblyConfig(ratios=["1:1"])))

        assert jobs[0].publish is False
        assert jobs[0].output_path == "/work/work/assembled.mp4"
        assert jobs[1].args[1] == "/work/work/assembled.mp4"

    def test_output_ratios_for_placeholders(self):
        task = make_task("multi_ratio")

        assert output_ratios(task, AssemblyConfig(ratios=["1:1", "3:2"])) == ["1:1"]
        assert output_ratios(make_task("smart_cut", outputRatio="16:9")) == ["16:9"]


class TestMusicSync:
    def test_clips_snap_to_beats(self):
        task = make_task("music_sync", videos=["a.mp4", "b.mp4"], musicUrl="song.mp3", musicBpm=100)

        [job] = build_render_jobs(make_ctx(task))
        graph = filter_graph(job)

        # 1.5s at 100bpm (0.6s beats) rounds to 2 beats
        assert graph.count("trim=duration=1.2,") == 2
        assert "[2:a]volume=0.3,atrim=duration=2.4[aout]" in graph
        assert job.args.count("-map") == 2

    def test_requires_music(self):
        with pytest.raises(PipelineError, match="music"):
            build_render_jobs(make_ctx(make_task("music_sync")))


class TestSubtitles:
    def test_srt_written_and_burned_in(self):
        cues = [SubtitleCue(start=0, end=1.5, text="Hello"), SubtitleCue(start=1.5, end=3, text="World")]
        task = make_task("subtitles", subtitles=cues)

        [job] = build_render_jobs(make_ctx(task))

        assert job.files == {"/work/work/subs.srt": subtitle_srt(cues)}
        vf = job.args[job.args.index("-vf") + 1]
        assert vf.startswith("subtitles=/work/work/subs.srt:force_style='FontSize=24")

    def test_srt_format(self):
        srt = subtitle_srt([SubtitleCue(start=61.25, end=3723.5, text="Hi")])

        assert srt == "1\n00:01:01,250 --> 01:02:03,500\nHi\n"

    def test_requires_cues(self):
        with pytest.raises(PipelineError, match="cue"):
            build_render_jobs(make_ctx(make_task("subtitles")))


class TestPlanJob:
    def test_trim_retime_and_bitrate(self, analysis, make_blueprint):
        plan = compile_plan(analysis, make_blueprint(("compress_segment", "body")), asset_url="https://cdn/v.mp4")

        job = build_plan_job(plan, {"https://cdn/v.mp4": "/work/inputs/v.mp4"}, "/work/outputs/plan.mp4")
        graph = filter_graph(job)

        assert "trim=start=3.6:end=8.4,setpts=(PTS-STARTPTS)/1.25" in graph
        assert "concat=n=3:v=1:a=0[vout]" in graph
        assert job.args[job.args.index("-b:v") + 1] == "2500k"
        assert job.args[job.args.index("-r") + 1] == "30"
        assert job.args[job.args.index("-t") + 1] == fmt(plan.validation.total_duration_ms / 1000)
        assert "-an" in job.args

    def test_voiceover_track_is_mapped(self, analysis, make_blueprint):
        voiced = analysis.model_copy(update={"audio": analysis.audio.model_copy(update={"has_voiceover": True})})
        plan = compile_plan(voiced, make_blueprint(("remove_segment", "cta")), asset_url="https://cdn/v.mp4")

        job = build_plan_job(plan, {"https://cdn/v.mp4": "/work/inputs/v.mp4"}, "/work/outputs/plan.mp4")
        graph = filter_graph(job)

        assert "[0:a]atrim=start=0:end=9,asetpts=PTS-STARTPTS,volume=1.0" in graph
        assert "afade=t=out:st=8.55:d=0.45[aout]" in graph
        assert job.args.count("/work/inputs/v.mp4") == 1

    def test_uncompilable_plan_rejected(self, analysis, make_blueprint):
        plan = compile_plan(analysis, make_blueprint(("replace_segment", "body")))

        with pytest.raises(PipelineError) as exc_info:
            build_plan_job(plan, {}, "/work/outputs/plan.mp4")

        assert exc_info.value.error_type == ErrorType.VALIDATION_ERROR
