"""
Domain types for the creative render pipeline.

Plan-side types (segments, resolved actions, timeline entries, plans) are
frozen: once the compiler emits them, nothing mutates them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from pipeline.render_config import DEFAULT_OUTPUT_FORMAT, DEFAULT_RATIO, OutputFormat


class ActionType(str, Enum):
    """Edit actions a variation idea may request"""
    REMOVE_SEGMENT = "remove_segment"
    COMPRESS_SEGMENT = "compress_segment"
    EMPHASIZE_SEGMENT = "emphasize_segment"
    REORDER_SEGMENTS = "reorder_segments"
    REPLACE_SEGMENT = "replace_segment"
    SPLIT_SEGMENT = "split_segment"
    MERGE_SEGMENTS = "merge_segments"


class PlanStatus(str, Enum):
    COMPILABLE = "compilable"
    UNCOMPILABLE = "uncompilable"


class TaskType(str, Enum):
    """Render task kinds accepted by the executor"""
    SMART_CUT = "smart_cut"
    TRANSITIONS = "transitions"
    MUSIC_SYNC = "music_sync"
    SUBTITLES = "subtitles"
    MULTI_RATIO = "multi_ratio"
    FULL_ASSEMBLY = "full_assembly"
    MOTION_EFFECTS = "motion_effects"
    RETRY_SINGLE = "retry_single"


class FallbackMode(str, Enum):
    """Retry escalation tiers, least to most conservative"""
    ORIGINAL = "original"
    SAME_ENGINE = "same_engine"
    FFMPEG_ONLY = "ffmpeg_only"
    SAFE_MODE = "safe_mode"

    @property
    def rank(self) -> int:
        return list(FallbackMode).index(self)


class CostTier(str, Enum):
    FREE = "free"
    CHEAP = "cheap"
    NORMAL = "normal"
    EXPENSIVE = "expensive"


class EngineType(str, Enum):
    AVATAR = "avatar"
    TEXT_TO_VIDEO = "text_to_video"
    IMAGE_TO_VIDEO = "image_to_video"
    TEMPLATE_BASED = "template_based"
    VOICE = "voice"


# ============================================================================
# Source analysis and blueprint (authored upstream)
# ============================================================================

class Segment(BaseModel):
    """A time-bounded structural unit of a source video"""
    id: str
    type: str = Field(..., description="Segment role, e.g. hook, body, cta")
    start_ms: int = Field(..., ge=0)
    end_ms: int = Field(..., ge=0)

    class Config:
        frozen = True

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


class AnalysisMetadata(BaseModel):
    duration_ms: int = 0
    fps: int = 30
    aspect_ratio: str = DEFAULT_RATIO


class AnalysisAudio(BaseModel):
    has_voiceover: bool = False


class SourceAnalysis(BaseModel):
    """Structural analysis of one source video"""
    id: str
    source_video_id: Optional[str] = None
    segments: List[Segment] = Field(default_factory=list)
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
    audio: AnalysisAudio = Field(default_factory=AnalysisAudio)

    class Config:
        frozen = True


class VariationIdea(BaseModel):
    """One abstract edit intent, e.g. 'remove the cta'"""
    id: str
    action: str = Field(..., description="Action name; unknown names resolve as failures")
    target_segment_type: str

    class Config:
        frozen = True


class CreativeBlueprint(BaseModel):
    id: str
    source_analysis_id: Optional[str] = None
    variation_ideas: List[VariationIdea] = Field(default_factory=list)

    class Config:
        frozen = True


# ============================================================================
# Compilation output
# ============================================================================

class Transformation(BaseModel):
    remove: Optional[bool] = None
    speed_multiplier: Optional[float] = None
    trim_percent_start: Optional[float] = None
    trim_percent_end: Optional[float] = None
    timeline_offset_ms: Optional[int] = None

    class Config:
        frozen = True


class ResolvedAction(BaseModel):
    """A variation idea bound to concrete segment ids and a transformation"""
    action_id: str
    source_action: str
    target_segments: List[str] = Field(default_factory=list)
    transformation: Transformation = Field(default_factory=Transformation)
    resolved: bool
    resolution_error: Optional[str] = None

    class Config:
        frozen = True


class TimelineSegment(BaseModel):
    segment_id: str
    source_video_id: Optional[str] = None
    source_segment_id: str
    asset_url: str = ""
    trim_start_ms: int
    trim_end_ms: int
    source_duration_ms: int
    timeline_start_ms: int
    timeline_end_ms: int
    output_duration_ms: int
    speed_multiplier: float = 1.0
    track: str = "video"
    layer: int = 0

    class Config:
        frozen = True


class AudioTrack(BaseModel):
    audio_id: str
    asset_url: str = ""
    trim_start_ms: int
    trim_end_ms: int
    timeline_start_ms: int
    timeline_end_ms: int
    volume: float = 1.0
    fade_in_ms: int = 0
    fade_out_ms: int = 0
    track: str = "voiceover"

    class Config:
        frozen = True


class ValidationReport(BaseModel):
    total_duration_ms: int = 0
    segment_count: int = 0
    audio_track_count: int = 0
    has_gaps: bool = False
    has_overlaps: bool = False
    warnings: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class ExecutionPlan(BaseModel):
    """The compiled, validated render plan for one variation"""
    plan_id: str
    source_analysis_id: str
    source_blueprint_id: str
    variation_id: str
    status: PlanStatus
    reason: Optional[str] = None
    output_format: OutputFormat = Field(default_factory=lambda: DEFAULT_OUTPUT_FORMAT.model_copy())
    timeline: List[TimelineSegment] = Field(default_factory=list)
    audio_tracks: List[AudioTrack] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)
    created_at: datetime

    class Config:
        frozen = True

    @property
    def compilable(self) -> bool:
        return self.status == PlanStatus.COMPILABLE


# ============================================================================
# Render side
# ============================================================================

class SubtitleCue(BaseModel):
    start: float = Field(..., ge=0, description="Cue start in seconds")
    end: float = Field(..., gt=0, description="Cue end in seconds")
    text: str


class RenderTask(BaseModel):
    """One unit of work for the render executor"""
    task_type: TaskType = Field(..., alias="taskType")
    input_videos: List[str] = Field(default_factory=list, alias="inputVideos")
    input_images: List[str] = Field(default_factory=list, alias="inputImages")
    output_ratio: str = Field(DEFAULT_RATIO, alias="outputRatio")
    transitions: List[str] = Field(default_factory=list)
    pacing: Optional[str] = None
    max_duration: Optional[float] = Field(None, alias="maxDuration", gt=0)
    motion_effect: Optional[str] = Field(None, alias="motionEffect")
    motion_duration: Optional[float] = Field(None, alias="motionDuration", gt=0)
    video_id: Optional[str] = Field(None, alias="videoId")
    music_url: Optional[str] = Field(None, alias="musicUrl")
    music_bpm: Optional[int] = Field(None, alias="musicBpm", gt=0)
    subtitles: List[SubtitleCue] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    @field_validator("task_type", mode="before")
    @classmethod
    def normalize_task_type(cls, v):
        """Accept hyphenated names (smart-cut) sent by older clients."""
        if isinstance(v, str):
            return v.replace("-", "_")
        return v


class AssemblyConfig(BaseModel):
    """Batch render options sent alongside a render task"""
    sourceVideos: List[str] = Field(default_factory=list)
    variations: int = Field(1, ge=1, le=10)
    hookStyles: List[str] = Field(default_factory=list)
    pacing: Optional[str] = None
    transitions: List[str] = Field(default_factory=list)
    ratios: List[str] = Field(default_factory=list)
    engineTier: Optional[CostTier] = None


class RetryState(BaseModel):
    """Retry bookkeeping for one variation; only the retry scheduler moves it forward"""
    video_id: str
    retry_count: int = Field(0, ge=0)
    fallback_mode: FallbackMode = FallbackMode.ORIGINAL
    engine_used: Optional[str] = None
    last_retry_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None

    class Config:
        frozen = True


class Engine(BaseModel):
    id: str
    name: str
    type: EngineType
    cost_tier: CostTier
    supports_free_tier: bool = False
    priority_score: int = 50

    class Config:
        frozen = True


class RenderedVideo(BaseModel):
    id: str
    status: str = Field(..., description="completed, or placeholder in degraded mode")
    url: str
    duration: Optional[float] = None
    ratio: Optional[str] = None
    outputPath: str


class RenderResult(BaseModel):
    success: bool
    videos: List[RenderedVideo] = Field(default_factory=list)
    processing_time: float = 0.0
    ffmpeg_available: bool = True
    warnings: List[str] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
