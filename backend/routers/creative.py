"""
Creative compile endpoint router

Handles POST /api/creative/compile: turns a source analysis plus a creative
blueprint into execution plans. Compilation is pure; nothing is rendered.
"""

import structlog
from fastapi import APIRouter, HTTPException

from schemas import CompileRequest, CompileResponse, CompileMeta, ErrorResponse
from pipeline.plan_builder import compile_all, compile_plan

logger = structlog.get_logger()

router = APIRouter(prefix="/api/creative", tags=["Creative Compile"])


@router.post(
    "/compile",
    response_model=CompileResponse,
    status_code=200,
    responses={
        200: {"description": "Plans compiled (individual plans may be uncompilable)"},
        400: {"model": ErrorResponse, "description": "Missing analysis or blueprint"},
    },
    summary="Compile Variations",
    description="Compile creative variation ideas into validated execution plans"
)
async def compile_variations(request: CompileRequest):
    """
    Compile one variation (variation_index) or every variation (compile_all).

    Plans that cannot be compiled are still returned, with
    status "uncompilable" and a reason.
    """
    if request.analysis is None:
        raise HTTPException(status_code=400, detail="analysis is required")
    if request.blueprint is None:
        raise HTTPException(status_code=400, detail="blueprint is required")

    asset_url = request.source_video_url or ""

    if request.compile_all:
        batch = compile_all(request.analysis, request.blueprint, asset_url)
        plans = batch.plans
        compiled_at = batch.compiled_at
    else:
        plan = compile_plan(request.analysis, request.blueprint, request.variation_index, asset_url)
        plans = [plan]
        compiled_at = plan.created_at

    compilable = sum(1 for p in plans if p.compilable)
    logger.info(
        "compile_request_completed",
        analysis_id=request.analysis.id,
        blueprint_id=request.blueprint.id,
        total=len(plans),
        compilable=compilable
    )

    return CompileResponse(
        success=True,
        plans=plans,
        meta=CompileMeta(
            total=len(plans),
            compilable=compilable,
            uncompilable=len(plans) - compilable,
            compiled_at=compiled_at
        )
    )
