"""
Pydantic schemas for request/response validation
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, List, Dict, Any, Union
from datetime import datetime

from pipeline.models import (
    AssemblyConfig,
    CostTier,
    CreativeBlueprint,
    ExecutionPlan,
    FallbackMode,
    RenderedVideo,
    RenderTask,
    SourceAnalysis,
)
from services.engine_selector import SceneRequest


class CompileRequest(BaseModel):
    """Request model for compiling creative variations into execution plans"""
    analysis: Optional[SourceAnalysis] = Field(None, description="Segmented source video analysis")
    blueprint: Optional[CreativeBlueprint] = Field(None, description="Creative blueprint with variation ideas")
    variation_index: int = Field(0, description="Variation to compile when compile_all is false")
    compile_all: bool = Field(False, description="Compile every variation in the blueprint")
    source_video_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("source_video_url", "asset_base_url"),
        description="URL of the source video the timeline trims from"
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "analysis": {
                    "id": "analysis-1",
                    "source_video_id": "video-1",
                    "segments": [
                        {"id": "s1", "type": "hook", "start_ms": 0, "end_ms": 3000},
                        {"id": "s2", "type": "body", "start_ms": 3000, "end_ms": 10000},
                        {"id": "s3", "type": "cta", "start_ms": 10000, "end_ms": 15000}
                    ],
                    "metadata": {"duration_ms": 15000, "fps": 30, "aspect_ratio": "9:16"},
                    "audio": {"has_voiceover": True}
                },
                "blueprint": {
                    "id": "blueprint-1",
                    "variation_ideas": [
                        {"id": "v1", "action": "compress_segment", "target_segment_type": "body"}
                    ]
                },
                "compile_all": True,
                "source_video_url": "https://cdn.example.com/source.mp4"
            }
        }


class CompileMeta(BaseModel):
    total: int
    compilable: int
    uncompilable: int
    compiled_at: datetime


class CompileResponse(BaseModel):
    """Response model for the compile endpoint"""
    success: bool
    plans: List[ExecutionPlan] = Field(default_factory=list)
    meta: CompileMeta


class RenderRequest(BaseModel):
    """Request model for a synchronous render"""
    task: RenderTask
    config: Optional[AssemblyConfig] = None

    class Config:
        json_schema_extra = {
            "example": {
                "task": {
                    "taskType": "multi_ratio",
                    "inputVideos": ["https://cdn.example.com/clip.mp4"],
                    "outputRatio": "9:16"
                },
                "config": {
                    "sourceVideos": ["https://cdn.example.com/clip.mp4"],
                    "ratios": ["9:16", "1:1", "16:9"]
                }
            }
        }


class RenderResultBody(BaseModel):
    totalVideos: int
    videos: List[RenderedVideo] = Field(default_factory=list)
    processingTime: float
    ffmpegAvailable: bool
    warnings: List[str] = Field(default_factory=list)


class RenderResponse(BaseModel):
    """Response model for the render endpoint"""
    success: bool
    result: Optional[RenderResultBody] = None
    error: Optional[Dict[str, Any]] = Field(None, description="PipelineError body when success is false")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "result": {
                    "totalVideos": 1,
                    "videos": [
                        {
                            "id": "task-1-output_9x16",
                            "status": "completed",
                            "url": "http://localhost:8000/storage/renders/task-1/output_9x16.mp4",
                            "duration": 12.5,
                            "ratio": "9:16",
                            "outputPath": "renders/task-1/output_9x16.mp4"
                        }
                    ],
                    "processingTime": 8.42,
                    "ffmpegAvailable": True,
                    "warnings": []
                },
                "error": None
            }
        }


class RetryTaskBody(BaseModel):
    taskType: str = Field("retry_single", description="Must be retry_single")
    videoId: str = Field(..., min_length=1, description="Video variation to retry")


class RetryRequest(BaseModel):
    """Request model for retrying a failed variation"""
    task: RetryTaskBody

    class Config:
        json_schema_extra = {
            "example": {"task": {"taskType": "retry_single", "videoId": "var-123"}}
        }


class RetryResponse(BaseModel):
    """Response model for the retry endpoint"""
    success: bool
    videoId: str
    retryCount: int
    fallbackMode: FallbackMode
    engineUsed: Optional[str] = None
    videoUrl: Optional[str] = None
    ffmpegAvailable: bool = True
    error: Optional[Dict[str, Any]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "videoId": "var-123",
                "retryCount": 3,
                "fallbackMode": "ffmpeg_only",
                "engineUsed": "ffmpeg",
                "videoUrl": "http://localhost:8000/storage/renders/retry-var-123-3/assembly.mp4",
                "ffmpegAvailable": True,
                "error": None
            }
        }


class EnqueueRequest(BaseModel):
    """Request model for queueing a render task"""
    task: RenderTask
    config: Optional[AssemblyConfig] = None
    priority: Optional[Union[int, str]] = Field(None, description="Integer priority or high / normal / low")
    maxAttempts: Optional[int] = Field(None, ge=1, le=10, description="Attempts before the task is marked failed")

    class Config:
        json_schema_extra = {
            "example": {
                "task": {"taskType": "full_assembly", "inputVideos": ["https://cdn.example.com/a.mp4"]},
                "priority": "high",
                "maxAttempts": 3
            }
        }


class EnqueueResponse(BaseModel):
    taskId: str
    status: str


class JobStatusResponse(BaseModel):
    """Response model for queued render task status"""
    taskId: str
    status: str = Field(..., description="queued, running, completed or failed")
    priority: int
    attempts: int
    maxAttempts: int
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class EngineSelectRequest(BaseModel):
    """Request model for assigning generation engines to scenes"""
    scenes: List[SceneRequest] = Field(..., min_length=1)
    pricingTier: CostTier = CostTier.FREE

    class Config:
        json_schema_extra = {
            "example": {
                "scenes": [
                    {"id": "scene-1", "sceneType": "avatar", "visualPrompt": "Presenter talking to camera"},
                    {"id": "scene-2", "sceneType": "broll", "visualPrompt": "Product photo on a desk"}
                ],
                "pricingTier": "normal"
            }
        }


class EngineAssignment(BaseModel):
    sceneId: str
    engineId: str
    engineName: str
    engineType: str
    costTier: str


class EngineSelectResponse(BaseModel):
    success: bool
    pricingTier: CostTier
    allowedTiers: List[CostTier]
    assignments: List[EngineAssignment] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Any] = Field(None, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "ValidationError",
                "message": "Invalid input data",
                "details": "analysis is required"
            }
        }
