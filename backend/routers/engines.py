"""
Engine selection endpoint router

Handles POST /api/engines/select: assigns a content-generation engine to
each scene of a script within the caller's pricing tier.
"""

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from typing import List

from schemas import EngineSelectRequest, EngineSelectResponse, EngineAssignment, ErrorResponse
from pipeline.models import Engine
from services.engine_selector import DEFAULT_ENGINE_POOL, NoEngineAvailableError, allowed_tiers_for, assign_engines

logger = structlog.get_logger()

router = APIRouter(prefix="/api/engines", tags=["Engines"])


def get_engine_pool() -> List[Engine]:
    """FastAPI dependency for the engine pool"""
    return DEFAULT_ENGINE_POOL


@router.post(
    "/select",
    response_model=EngineSelectResponse,
    responses={
        422: {"model": ErrorResponse, "description": "No engine available for the pricing tier"}
    },
    summary="Select Engines",
    description="Assign an engine to every scene, restricted to the pricing tier"
)
async def select_engines(
    request: EngineSelectRequest,
    pool: List[Engine] = Depends(get_engine_pool)
):
    try:
        assignments = assign_engines(request.scenes, request.pricingTier, pool)
    except NoEngineAvailableError as e:
        logger.warning("engine_selection_failed", pricing_tier=request.pricingTier.value, error=e.message)
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error=e.error_type.value,
                message=e.message,
                details=e.to_dict()
            ).model_dump()
        )

    return EngineSelectResponse(
        success=True,
        pricingTier=request.pricingTier,
        allowedTiers=allowed_tiers_for(request.pricingTier),
        assignments=[
            EngineAssignment(
                sceneId=scene_id,
                engineId=engine.id,
                engineName=engine.name,
                engineType=engine.type.value,
                costTier=engine.cost_tier.value
            )
            for scene_id, engine in assignments.items()
        ]
    )
