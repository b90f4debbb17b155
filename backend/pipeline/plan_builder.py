"""
Execution plan builder: resolver -> compiler -> validator -> ExecutionPlan.

Structural problems never raise here; they come back as an uncompilable
plan with a reason. Every plan carries a full (possibly zeroed) timeline,
audio track list and validation report.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel

from pipeline.action_resolver import resolve_action
from pipeline.models import (
    AudioTrack,
    CreativeBlueprint,
    ExecutionPlan,
    PlanStatus,
    SourceAnalysis,
    TimelineSegment,
    ValidationReport,
)
from pipeline.plan_validator import plan_status, validate_timeline
from pipeline.render_config import DEFAULT_OUTPUT_FORMAT, OutputFormat, RATIO_PRESETS
from pipeline.timeline_compiler import build_audio_tracks, compile_timeline

logger = structlog.get_logger()


class CompileBatch(BaseModel):
    """Plans compiled in one request plus aggregate counts"""
    plans: List[ExecutionPlan]
    total: int
    compilable: int
    uncompilable: int
    compiled_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_plan_id() -> str:
    return f"exec_{uuid.uuid4()}"


def build_output_format(analysis: Optional[SourceAnalysis]) -> OutputFormat:
    """Default output format adjusted to the source frame rate and aspect ratio"""
    if analysis is None:
        return DEFAULT_OUTPUT_FORMAT.model_copy()

    updates = {"fps": analysis.metadata.fps or DEFAULT_OUTPUT_FORMAT.fps}
    preset = RATIO_PRESETS.get(analysis.metadata.aspect_ratio)
    if preset is not None:
        updates.update(width=preset.width, height=preset.height)
    return DEFAULT_OUTPUT_FORMAT.model_copy(update=updates)


def _uncompilable(
    analysis: Optional[SourceAnalysis],
    blueprint: Optional[CreativeBlueprint],
    variation_id: str,
    reason: str,
) -> ExecutionPlan:
    return ExecutionPlan(
        plan_id=new_plan_id(),
        source_analysis_id=analysis.id if analysis else "",
        source_blueprint_id=blueprint.id if blueprint else "",
        variation_id=variation_id,
        status=PlanStatus.UNCOMPILABLE,
        reason=reason,
        output_format=build_output_format(analysis),
        timeline=[],
        audio_tracks=[],
        validation=ValidationReport(),
        created_at=_now(),
    )


def assemble_plan(
    analysis: SourceAnalysis,
    blueprint: CreativeBlueprint,
    variation_id: str,
    timeline: Sequence[TimelineSegment],
    audio_tracks: Sequence[AudioTrack] = (),
    compiler_warnings: Sequence[str] = (),
) -> ExecutionPlan:
    """
    Validate a timeline and wrap it in an ExecutionPlan.

    Works on any timeline, including ones not produced by compile_timeline.
    """
    report = validate_timeline(timeline, audio_tracks)
    if compiler_warnings:
        report = report.model_copy(update={"warnings": report.warnings + list(compiler_warnings)})

    status = plan_status(report)
    return ExecutionPlan(
        plan_id=new_plan_id(),
        source_analysis_id=analysis.id,
        source_blueprint_id=blueprint.id,
        variation_id=variation_id,
        status=status,
        reason="Timeline has overlapping segments" if status == PlanStatus.UNCOMPILABLE else None,
        output_format=build_output_format(analysis),
        timeline=list(timeline),
        audio_tracks=list(audio_tracks),
        validation=report,
        created_at=_now(),
    )


def compile_plan(
    analysis: Optional[SourceAnalysis],
    blueprint: Optional[CreativeBlueprint],
    variation_index: int = 0,
    asset_url: str = "",
) -> ExecutionPlan:
    """
    Compile one variation idea of a blueprint against a source analysis.

    Args:
        analysis: Source structure; may be None or empty (uncompilable)
        blueprint: Variation ideas; may be None or empty (uncompilable)
        variation_index: Which idea of the blueprint to compile
        asset_url: URL of the source video the timeline trims from

    Returns:
        ExecutionPlan (never raises for structural problems)
    """
    if analysis is None or not analysis.segments:
        return _uncompilable(analysis, blueprint, "", "VideoAnalysis is missing or has no segments")

    if blueprint is None or not blueprint.variation_ideas:
        return _uncompilable(analysis, blueprint, "", "CreativeBlueprint is missing or has no variation ideas")

    if variation_index < 0 or variation_index >= len(blueprint.variation_ideas):
        return _uncompilable(analysis, blueprint, "", f"Variation index {variation_index} not found in blueprint")

    idea = blueprint.variation_ideas[variation_index]
    action = resolve_action(idea, analysis.segments)
    if not action.resolved:
        return _uncompilable(analysis, blueprint, idea.id, action.resolution_error)

    timeline, warnings = compile_timeline(
        analysis.segments, [action],
        source_video_id=analysis.source_video_id or analysis.id,
        asset_url=asset_url,
    )
    total = timeline[-1].timeline_end_ms if timeline else 0
    audio_tracks = build_audio_tracks(analysis, total, asset_url)

    plan = assemble_plan(analysis, blueprint, idea.id, timeline, audio_tracks, warnings)
    logger.info(
        "plan_compiled",
        plan_id=plan.plan_id,
        variation_id=idea.id,
        status=plan.status.value,
        total_duration_ms=plan.validation.total_duration_ms,
        segments=len(plan.timeline),
    )
    return plan


def compile_all(
    analysis: Optional[SourceAnalysis],
    blueprint: Optional[CreativeBlueprint],
    asset_url: str = "",
) -> CompileBatch:
    """Compile every variation idea of the blueprint, one plan per index."""
    count = len(blueprint.variation_ideas) if blueprint else 0
    plans = [compile_plan(analysis, blueprint, i, asset_url) for i in range(count)]

    compilable = sum(1 for p in plans if p.compilable)
    return CompileBatch(
        plans=plans,
        total=len(plans),
        compilable=compilable,
        uncompilable=len(plans) - compilable,
        compiled_at=_now(),
    )
