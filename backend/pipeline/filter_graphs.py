"""
ffmpeg argument builders, one per render task type.

Builders are pure: they turn a task plus local input paths into a list of
RenderJob commands. The executor runs the jobs in order and publishes the
ones marked for publishing.
"""

from typing import Callable, Dict, List, NamedTuple, Optional, Sequence

from pipeline.error_handler import ValidationError
from pipeline.models import AssemblyConfig, ExecutionPlan, RenderTask, SubtitleCue, TaskType
from pipeline.render_config import (
    COMMON_OUTPUT_ARGS,
    DEFAULT_MAX_DURATION_SEC,
    DEFAULT_MOTION_DURATION_SEC,
    DEFAULT_MOTION_EFFECT,
    DEFAULT_MUSIC_BPM,
    DEFAULT_PACING,
    DEFAULT_RATIO,
    MOTION_EFFECTS,
    MOTION_FPS,
    MUSIC_VOLUME,
    RATIO_PRESETS,
    STANDARD_PROFILE,
    SUBTITLE_STYLE,
    TRANSITION_DURATION_SEC,
    EncodingProfile,
    motion_frames,
    pacing_seconds,
    transition_effect,
)

SILENCE_FILTER = "silenceremove=start_periods=1:start_silence=0.5:start_threshold=-50dB"
ASSEMBLY_FPS = 30


class RenderJob(NamedTuple):
    label: str
    args: List[str]
    output_path: str
    ratio: Optional[str] = None
    publish: bool = True
    # Files to write (path -> text) before the command runs
    files: Optional[Dict[str, str]] = None


class BuildContext:
    """Everything a builder needs: the task, its local inputs, where to write."""

    def __init__(
        self,
        task: RenderTask,
        inputs: Dict[str, str],
        output_dir: str,
        work_dir: str,
        config: Optional[AssemblyConfig] = None,
        profile: EncodingProfile = STANDARD_PROFILE
    ):
        self.task = task
        self.inputs = inputs
        self.output_dir = output_dir
        self.work_dir = work_dir
        self.config = config or AssemblyConfig()
        self.profile = profile
        self.warnings: List[str] = []

    @property
    def videos(self) -> List[str]:
        return self.task.input_videos or self.config.sourceVideos

    @property
    def pacing(self) -> str:
        return self.task.pacing or self.config.pacing or DEFAULT_PACING

    @property
    def transitions(self) -> List[str]:
        return self.task.transitions or self.config.transitions

    @property
    def max_duration(self) -> float:
        return self.task.max_duration or DEFAULT_MAX_DURATION_SEC

    def local(self, source: str) -> str:
        return self.inputs[source]

    def output(self, filename: str) -> str:
        return f"{self.output_dir}/{filename}"

    def work(self, filename: str) -> str:
        return f"{self.work_dir}/{filename}"


def fmt(seconds: float) -> str:
    """Seconds for ffmpeg arguments: 3 decimals, no trailing zeros."""
    return ("%.3f" % seconds).rstrip("0").rstrip(".") or "0"


def fit_frame(width: int, height: int) -> str:
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def encode_args(profile: EncodingProfile) -> List[str]:
    return ["-c:v", "libx264", "-preset", profile.preset, "-crf", str(profile.crf), *COMMON_OUTPUT_ARGS]


def input_args(paths: Sequence[str]) -> List[str]:
    args: List[str] = []
    for path in paths:
        args += ["-i", path]
    return args


def ratio_for_frame(width: int, height: int) -> str:
    for ratio, preset in RATIO_PRESETS.items():
        if (preset.width, preset.height) == (width, height):
            return ratio
    return DEFAULT_RATIO


def frame_size(ratio: str):
    preset = RATIO_PRESETS.get(ratio)
    if preset is None:
        raise ValidationError(f"Unsupported output ratio: {ratio}", stage="transform", field="outputRatio")
    return preset.width, preset.height


def require_videos(ctx: BuildContext, minimum: int = 1) -> List[str]:
    videos = ctx.videos
    if len(videos) < minimum:
        raise ValidationError(
            f"{ctx.task.task_type.value} requires at least {minimum} input video(s)",
            stage="transform",
            field="inputVideos"
        )
    return [ctx.local(v) for v in videos]


def concat_clips(paths: Sequence[str], clip_seconds: float, width: int, height: int) -> str:
    """Trim every input to clip_seconds, fit to the frame, concatenate into [vout]."""
    parts = [
        f"[{i}:v]trim=duration={fmt(clip_seconds)},setpts=PTS-STARTPTS,"
        f"{fit_frame(width, height)},fps={ASSEMBLY_FPS}[v{i}]"
        for i in range(len(paths))
    ]
    labels = "".join(f"[v{i}]" for i in range(len(paths)))
    parts.append(f"{labels}concat=n={len(paths)}:v=1:a=0[vout]")
    return ";".join(parts)


def subtitle_srt(cues: Sequence[SubtitleCue]) -> str:
    def stamp(seconds: float) -> str:
        millis = int(round(seconds * 1000))
        hours, rem = divmod(millis, 3600000)
        minutes, rem = divmod(rem, 60000)
        secs, ms = divmod(rem, 1000)
        return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"

    blocks = [
        f"{i}\n{stamp(cue.start)} --> {stamp(cue.end)}\n{cue.text}\n"
        for i, cue in enumerate(cues, start=1)
    ]
    return "\n".join(blocks)


# ============================================================================
# Task builders
# ============================================================================

def build_smart_cut(ctx: BuildContext) -> List[RenderJob]:
    jobs = []
    for i, path in enumerate(require_videos(ctx)):
        out = ctx.output(f"smart_cut_{i}.mp4")
        args = ["-i", path, "-af", SILENCE_FILTER, *encode_args(ctx.profile), "-c:a", "aac", out]
        jobs.append(RenderJob(f"smart_cut_{i}", args, out, ctx.task.output_ratio))
    return jobs


def build_transitions(ctx: BuildContext) -> List[RenderJob]:
    paths = require_videos(ctx)
    width, height = frame_size(ctx.task.output_ratio)
    clip = pacing_seconds(ctx.pacing)
    out = ctx.output("transitions.mp4")

    if len(paths) == 1 or not ctx.profile.use_transitions:
        graph = concat_clips(paths, clip, width, height)
    else:
        parts = [
            f"[{i}:v]{fit_frame(width, height)},fps={ASSEMBLY_FPS},"
            f"trim=duration={fmt(clip)},setpts=PTS-STARTPTS[v{i}]"
            for i in range(len(paths))
        ]
        names = ctx.transitions
        previous = "v0"
        for i in range(1, len(paths)):
            effect = transition_effect(names[(i - 1) % len(names)]) if names else transition_effect("")
            offset = i * clip - i * TRANSITION_DURATION_SEC
            label = "vout" if i == len(paths) - 1 else f"x{i}"
            parts.append(
                f"[{previous}][v{i}]xfade=transition={effect}:"
                f"duration={fmt(TRANSITION_DURATION_SEC)}:offset={fmt(offset)}[{label}]"
            )
            previous = label
        graph = ";".join(parts)

    args = [*input_args(paths), "-filter_complex", graph, "-map", "[vout]", "-an", *encode_args(ctx.profile), out]
    return [RenderJob("transitions", args, out, ctx.task.output_ratio)]


def build_motion_effects(ctx: BuildContext) -> List[RenderJob]:
    images = ctx.task.input_images
    if not images:
        raise ValidationError("motion_effects requires at least 1 input image", stage="transform", field="inputImages")

    effect = ctx.task.motion_effect or DEFAULT_MOTION_EFFECT
    if effect not in MOTION_EFFECTS:
        raise ValidationError(f"Unknown motion effect: {effect}", stage="transform", field="motionEffect")

    width, height = frame_size(ctx.task.output_ratio)
    duration = ctx.task.motion_duration or DEFAULT_MOTION_DURATION_SEC
    frames = motion_frames(duration)

    jobs = []
    for i, image in enumerate(images):
        path = ctx.local(image)
        out = ctx.output(f"motion_{i}.mp4")
        if ctx.profile.use_motion:
            formula = MOTION_EFFECTS[effect].format(frames=frames)
            vf = (
                f"scale={width * 2}:{height * 2}:force_original_aspect_ratio=increase,"
                f"crop={width * 2}:{height * 2},"
                f"zoompan={formula}:d={frames}:s={width}x{height}:fps={MOTION_FPS}"
            )
            args = ["-i", path, "-vf", vf]
        else:
            args = ["-loop", "1", "-i", path, "-vf", f"{fit_frame(width, height)},fps={MOTION_FPS}"]
        args += ["-t", fmt(duration), *encode_args(ctx.profile), out]
        jobs.append(RenderJob(f"motion_{i}", args, out, ctx.task.output_ratio))
    return jobs


def _assembly_job(ctx: BuildContext, out: str, ratio: str, publish: bool = True) -> RenderJob:
    paths = require_videos(ctx)
    width, height = frame_size(ratio)
    graph = concat_clips(paths, pacing_seconds(ctx.pacing), width, height)
    args = [
        *input_args(paths),
        "-filter_complex", graph,
        "-map", "[vout]", "-an",
        "-t", fmt(ctx.max_duration),
        *encode_args(ctx.profile),
        out
    ]
    return RenderJob("assembly", args, out, ratio, publish)


def build_full_assembly(ctx: BuildContext) -> List[RenderJob]:
    return [_assembly_job(ctx, ctx.output("assembly.mp4"), ctx.task.output_ratio)]


def build_multi_ratio(ctx: BuildContext) -> List[RenderJob]:
    requested = ctx.config.ratios or [ctx.task.output_ratio]
    ratios = []
    for ratio in requested:
        if ratio in RATIO_PRESETS:
            ratios.append(ratio)
        else:
            ctx.warnings.append(f"Skipping unsupported ratio: {ratio}")
    if not ratios:
        raise ValidationError(f"No supported ratios in {requested}", stage="transform", field="ratios")

    jobs: List[RenderJob] = []
    paths = require_videos(ctx)
    if len(paths) > 1:
        assembled = ctx.work("assembled.mp4")
        jobs.append(_assembly_job(ctx, assembled, ctx.task.output_ratio, publish=False))
        source = assembled
    else:
        source = paths[0]

    for ratio in ratios:
        preset = RATIO_PRESETS[ratio]
        out = ctx.output(f"output_{ratio.replace(':', 'x')}.mp4")
        vf = (
            f"{preset.crop},scale={preset.width}:{preset.height}:force_original_aspect_ratio=decrease,"
            f"pad={preset.width}:{preset.height}:(ow-iw)/2:(oh-ih)/2"
        )
        args = ["-i", source, "-vf", vf, *encode_args(ctx.profile), "-c:a", "aac", out]
        jobs.append(RenderJob(f"ratio_{ratio.replace(':', 'x')}", args, out, ratio))
    return jobs


def build_music_sync(ctx: BuildContext) -> List[RenderJob]:
    if not ctx.task.music_url:
        raise ValidationError("music_sync requires a music track", stage="transform", field="musicUrl")

    paths = require_videos(ctx)
    width, height = frame_size(ctx.task.output_ratio)
    beat = 60.0 / (ctx.task.music_bpm or DEFAULT_MUSIC_BPM)
    beats_per_clip = max(1, int(round(pacing_seconds(ctx.pacing) / beat)))
    clip = beats_per_clip * beat
    total = min(clip * len(paths), ctx.max_duration)

    music_index = len(paths)
    graph = ";".join([
        concat_clips(paths, clip, width, height),
        f"[{music_index}:a]volume={MUSIC_VOLUME},atrim=duration={fmt(total)}[aout]"
    ])
    out = ctx.output("music_sync.mp4")
    args = [
        *input_args([*paths, ctx.local(ctx.task.music_url)]),
        "-filter_complex", graph,
        "-map", "[vout]", "-map", "[aout]",
        "-t", fmt(total),
        *encode_args(ctx.profile),
        "-c:a", "aac",
        out
    ]
    return [RenderJob("music_sync", args, out, ctx.task.output_ratio)]


def build_subtitles(ctx: BuildContext) -> List[RenderJob]:
    if not ctx.task.subtitles:
        raise ValidationError("subtitles requires at least 1 cue", stage="transform", field="subtitles")

    srt_path = ctx.work("subs.srt")
    srt = subtitle_srt(ctx.task.subtitles)

    jobs = []
    for i, path in enumerate(require_videos(ctx)):
        out = ctx.output(f"subtitles_{i}.mp4")
        vf = f"subtitles={srt_path}:force_style='{SUBTITLE_STYLE}'"
        args = ["-i", path, "-vf", vf, *encode_args(ctx.profile), "-c:a", "copy", out]
        jobs.append(RenderJob(f"subtitles_{i}", args, out, ctx.task.output_ratio, files={srt_path: srt}))
    return jobs


TaskBuilder = Callable[[BuildContext], List[RenderJob]]

TASK_BUILDERS: Dict[TaskType, TaskBuilder] = {
    TaskType.SMART_CUT: build_smart_cut,
    TaskType.TRANSITIONS: build_transitions,
    TaskType.MUSIC_SYNC: build_music_sync,
    TaskType.SUBTITLES: build_subtitles,
    TaskType.MULTI_RATIO: build_multi_ratio,
    TaskType.FULL_ASSEMBLY: build_full_assembly,
    TaskType.MOTION_EFFECTS: build_motion_effects,
}

_missing_builders = set(TaskType) - set(TASK_BUILDERS) - {TaskType.RETRY_SINGLE}
if _missing_builders:
    raise RuntimeError(f"TASK_BUILDERS has no builder for: {sorted(t.value for t in _missing_builders)}")


def build_render_jobs(ctx: BuildContext) -> List[RenderJob]:
    """Dispatch on task type; retry_single never reaches the transcoder directly."""
    if ctx.task.task_type == TaskType.RETRY_SINGLE:
        raise ValidationError(
            "retry_single tasks are handled by the retry scheduler",
            stage="transform",
            field="taskType"
        )
    return TASK_BUILDERS[ctx.task.task_type](ctx)


def required_sources(task: RenderTask, config: Optional[AssemblyConfig] = None) -> List[str]:
    """Every remote or local asset a task reads."""
    sources = list(task.input_videos or (config.sourceVideos if config else []))
    if task.task_type == TaskType.MOTION_EFFECTS:
        sources += task.input_images
    if task.task_type == TaskType.MUSIC_SYNC and task.music_url:
        sources.append(task.music_url)
    return sources


def output_ratios(task: RenderTask, config: Optional[AssemblyConfig] = None) -> List[str]:
    """Ratios a task will produce; used to size degraded-mode placeholders."""
    if task.task_type == TaskType.MULTI_RATIO:
        requested = (config.ratios if config else None) or [task.output_ratio]
        return [r for r in requested if r in RATIO_PRESETS] or [task.output_ratio]
    return [task.output_ratio]


# ============================================================================
# Execution plans
# ============================================================================

def build_plan_job(
    plan: ExecutionPlan,
    inputs: Dict[str, str],
    output_path: str,
    profile: EncodingProfile = STANDARD_PROFILE
) -> RenderJob:
    """
    Render a compiled plan: trim and retime every timeline entry, fit it to
    the plan's frame, concatenate, and lay the audio tracks underneath.
    """
    if not plan.compilable:
        raise ValidationError(f"Plan {plan.plan_id} is not compilable: {plan.reason}", stage="transform")
    if not plan.timeline:
        raise ValidationError(f"Plan {plan.plan_id} has an empty timeline", stage="transform")

    sources: List[str] = []
    for url in [e.asset_url for e in plan.timeline] + [t.asset_url for t in plan.audio_tracks]:
        if not url:
            raise ValidationError(f"Plan {plan.plan_id} references an entry without asset_url", stage="transform")
        if url not in sources:
            sources.append(url)
    index = {url: i for i, url in enumerate(sources)}

    fmt_out = plan.output_format
    parts = []
    for i, entry in enumerate(plan.timeline):
        parts.append(
            f"[{index[entry.asset_url]}:v]trim=start={fmt(entry.trim_start_ms / 1000)}:"
            f"end={fmt(entry.trim_end_ms / 1000)},"
            f"setpts=(PTS-STARTPTS)/{entry.speed_multiplier},"
            f"{fit_frame(fmt_out.width, fmt_out.height)},fps={fmt_out.fps}[v{i}]"
        )
    labels = "".join(f"[v{i}]" for i in range(len(plan.timeline)))
    parts.append(f"{labels}concat=n={len(plan.timeline)}:v=1:a=0[vout]")

    audio_labels = []
    single_track = len(plan.audio_tracks) == 1
    for j, track in enumerate(plan.audio_tracks):
        span = (track.timeline_end_ms - track.timeline_start_ms) / 1000
        start = track.trim_start_ms / 1000
        end = min(track.trim_end_ms / 1000, start + span)
        chain = (
            f"[{index[track.asset_url]}:a]atrim=start={fmt(start)}:end={fmt(end)},"
            f"asetpts=PTS-STARTPTS,volume={track.volume}"
        )
        if track.fade_in_ms:
            chain += f",afade=t=in:st=0:d={fmt(track.fade_in_ms / 1000)}"
        if track.fade_out_ms:
            chain += f",afade=t=out:st={fmt(span - track.fade_out_ms / 1000)}:d={fmt(track.fade_out_ms / 1000)}"
        if track.timeline_start_ms:
            chain += f",adelay={track.timeline_start_ms}|{track.timeline_start_ms}"
        label = "[aout]" if single_track else f"[a{j}]"
        parts.append(f"{chain}{label}")
        audio_labels.append(label)

    audio_args: List[str] = ["-an"]
    if single_track:
        audio_args = ["-map", "[aout]", "-c:a", "aac", "-b:a", f"{fmt_out.audio_bitrate_kbps}k"]
    elif audio_labels:
        parts.append(f"{''.join(audio_labels)}amix=inputs={len(audio_labels)}:duration=longest[aout]")
        audio_args = ["-map", "[aout]", "-c:a", "aac", "-b:a", f"{fmt_out.audio_bitrate_kbps}k"]

    args = [
        *input_args([inputs[url] for url in sources]),
        "-filter_complex", ";".join(parts),
        "-map", "[vout]",
        *audio_args,
        "-c:v", "libx264", "-preset", profile.preset,
        "-b:v", f"{fmt_out.bitrate_kbps}k",
        "-r", str(fmt_out.fps),
        "-t", fmt(plan.validation.total_duration_ms / 1000),
        *COMMON_OUTPUT_ARGS,
        output_path
    ]
    return RenderJob(f"plan_{plan.variation_id}", args, output_path, ratio_for_frame(fmt_out.width, fmt_out.height))
